"""Finnhub quote provider client.

Responsibilities
- Retrieve the company profile (``/stock/profile2``) and current quote
  (``/quote``) for one ticker and merge them into a :class:`StockSnapshot`.
- Classify failures: HTTP 429 is a rate limit, other non-2xx or transport
  failures are provider errors, undecodable or incomplete payloads are
  malformed. ``fetch_ticker_data`` turns all of them into skipped
  :class:`FetchResult` values so one ticker never aborts a batch.

Notes
- The API token travels in the ``X-Finnhub-Token`` header, so request URLs
  (and the exception text built from them) never contain it.
- Every request carries a timeout; tests mock the HTTP session.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from .config import get_finnhub_api_key, get_finnhub_base_url, get_finnhub_timeout
from .errors import (
    ConfigurationError,
    ProviderError,
    ProviderMalformedResponse,
    ProviderRateLimited,
)
from .models import (
    STATUS_ERROR,
    STATUS_MALFORMED,
    STATUS_RATE_LIMITED,
    FetchResult,
    StockSnapshot,
    TrackedTicker,
)

logger = logging.getLogger(__name__)

PROFILE_PATH = "/stock/profile2"
QUOTE_PATH = "/quote"
TOKEN_HEADER = "X-Finnhub-Token"


def normalize_number(value: Any) -> float:
    """Coerce a provider numeric field to a finite float.

    Missing, empty, unparsable, NaN and infinite values become ``0.0``.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def normalize_market_cap(value: Any) -> float:
    """Like :func:`normalize_number`, but a market cap is never negative."""
    return max(normalize_number(value), 0.0)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class FinnhubClient:
    """Thin Finnhub REST client for profile and quote lookups.

    Parameters
    ----------
    api_key : str
        Finnhub token. Missing or empty raises :class:`ConfigurationError`.
    base_url : Optional[str]
        API root, defaults to ``FINNHUB_BASE_URL`` from the environment.
    timeout : Optional[float]
        Per-request timeout in seconds.
    session : Optional[requests.Session]
        HTTP session; a new one is created when omitted.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ConfigurationError(
                "FINNHUB_API_KEY is not configured",
                {"field": "FINNHUB_API_KEY"},
            )
        self._api_key = api_key
        self.base_url = (base_url or get_finnhub_base_url()).rstrip("/")
        self.timeout = timeout if timeout is not None else get_finnhub_timeout()
        self._session = session or requests.Session()

    @classmethod
    def from_env(cls, session: Optional[requests.Session] = None) -> "FinnhubClient":
        return cls(get_finnhub_api_key(), session=session)

    def close(self) -> None:
        self._session.close()

    def _get_json(self, ticker: str, path: str) -> Any:
        context = {"ticker": ticker, "endpoint": path, "status_code": None}
        try:
            resp = self._session.get(
                f"{self.base_url}{path}",
                params={"symbol": ticker},
                headers={TOKEN_HEADER: self._api_key},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ProviderError(f"request failed for {ticker} {path}: {e}", context) from e

        status = resp.status_code
        context["status_code"] = status
        if status == 429:
            raise ProviderRateLimited(f"rate limited for {ticker} {path}", context)
        if status < 200 or status >= 300:
            body = (resp.text or "")[:300]
            raise ProviderError(f"HTTP {status} for {ticker} {path}: {body}", context)
        try:
            return resp.json()
        except ValueError as e:
            raise ProviderMalformedResponse(f"invalid JSON for {ticker} {path}", context) from e

    def get_profile(self, ticker: str) -> Dict[str, Any]:
        """Return the company profile; an empty object is a valid profile."""
        payload = self._get_json(ticker, PROFILE_PATH)
        if not isinstance(payload, dict):
            raise ProviderMalformedResponse(
                f"profile for {ticker} is not an object",
                {"ticker": ticker, "endpoint": PROFILE_PATH},
            )
        return payload

    def get_quote(self, ticker: str) -> Dict[str, Any]:
        """Return the current quote; requires a price (``c``) and a ``dp`` field."""
        payload = self._get_json(ticker, QUOTE_PATH)
        if not isinstance(payload, dict) or payload.get("c") is None or "dp" not in payload:
            raise ProviderMalformedResponse(
                f"quote for {ticker} lacks price or change fields",
                {"ticker": ticker, "endpoint": QUOTE_PATH},
            )
        return payload

    def fetch_ticker_data(self, tracked: TrackedTicker) -> FetchResult:
        """Fetch profile and quote for ``tracked`` and merge them.

        Both sub-requests must succeed; the quote is not requested when the
        profile already failed.

        Returns
        -------
        FetchResult
            ``ok`` with a populated snapshot, or a skip marker
            (``rate_limited``, ``malformed``, ``error``).
        """
        ticker = tracked.ticker
        try:
            profile = self.get_profile(ticker)
            quote = self.get_quote(ticker)
        except ProviderRateLimited as e:
            logger.warning("[finnhub] rate limit hit for %s, skipping", ticker)
            return FetchResult.skipped(ticker, STATUS_RATE_LIMITED, str(e))
        except ProviderMalformedResponse as e:
            logger.warning("[finnhub] invalid or incomplete data for %s, skipping: %s", ticker, e)
            return FetchResult.skipped(ticker, STATUS_MALFORMED, str(e))
        except ProviderError as e:
            logger.error("[finnhub] error fetching %s: %s", ticker, e)
            return FetchResult.skipped(ticker, STATUS_ERROR, str(e))

        snapshot = StockSnapshot(
            ticker=ticker,
            name=tracked.name,
            sector=tracked.sector,
            market_cap=normalize_market_cap(profile.get("marketCapitalization")),
            change_percent=normalize_number(quote.get("dp")),
            logo=str(profile.get("logo") or ""),
            last_updated=_now_utc(),
        )
        logger.info("[finnhub] fetched %s market_cap=%s dp=%s", ticker, snapshot.market_cap, snapshot.change_percent)
        return FetchResult.success(snapshot)
