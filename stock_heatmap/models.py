"""Records passed between the refresh pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

STATUS_OK = "ok"
STATUS_RATE_LIMITED = "rate_limited"
STATUS_MALFORMED = "malformed"
STATUS_ERROR = "error"
STATUS_TIMEOUT = "timeout"


@dataclass(frozen=True)
class TrackedTicker:
    """One row of the ``stock_list`` directory."""
    ticker: str
    name: str
    sector: str


@dataclass(frozen=True)
class StockSnapshot:
    """Latest market metrics for one ticker, as stored in ``stocks``."""
    ticker: str
    name: str
    sector: str
    market_cap: float
    change_percent: float
    logo: str
    last_updated: datetime


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one ticker retrieval.

    ``snapshot`` is set only when ``status`` is ``ok``; every other status is a
    skip marker with a short ``reason``.
    """
    ticker: str
    status: str
    snapshot: Optional[StockSnapshot] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK and self.snapshot is not None

    @classmethod
    def success(cls, snapshot: StockSnapshot) -> "FetchResult":
        return cls(ticker=snapshot.ticker, status=STATUS_OK, snapshot=snapshot)

    @classmethod
    def skipped(cls, ticker: str, status: str, reason: str) -> "FetchResult":
        return cls(ticker=ticker, status=status, reason=reason)


@dataclass
class BatchOutcome:
    """What the executor collected for one refresh batch."""
    succeeded: List[StockSnapshot] = field(default_factory=list)
    skipped: List[FetchResult] = field(default_factory=list)

    @property
    def skipped_reasons(self) -> Dict[str, str]:
        return {r.ticker: f"{r.status}: {r.reason}" if r.reason else r.status for r in self.skipped}


@dataclass
class RefreshSummary:
    """Result of one refresh cycle, returned to the trigger caller."""
    updated_count: int = 0
    updated_tickers: List[str] = field(default_factory=list)
    selected_count: int = 0
    skipped: Dict[str, str] = field(default_factory=dict)
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "success": True,
            "updated": self.updated_count,
            "tickers": list(self.updated_tickers),
            "skipped": dict(self.skipped),
            "message": self.message,
        }
