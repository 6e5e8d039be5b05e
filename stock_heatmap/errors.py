"""Exception hierarchy for the refresh pipeline.

Store, configuration and authorization errors propagate and end a refresh
cycle. Provider errors are per ticker: the client converts them into skipped
fetch results and they never leave the executor.
"""

from typing import Any, Dict, Optional


class StockHeatmapError(Exception):
    """Base error; ``context`` carries structured details for logs and responses."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


class ConfigurationError(StockHeatmapError):
    """Missing credentials or secrets. Fatal, never retried."""


class AuthorizationError(StockHeatmapError):
    """Trigger secret did not match. Raised before any pipeline phase runs."""


class StoreUnavailable(StockHeatmapError):
    """The database could not be reached or a read failed."""


class DirectoryUnavailable(StoreUnavailable):
    """The tracked-ticker directory (``stock_list``) could not be read."""


class ReconciliationTransactionFailure(StockHeatmapError):
    """The snapshot upsert transaction failed and was rolled back in full.

    Context keys:
        attempted: int, number of snapshots in the rolled back batch
    """


class ProviderError(StockHeatmapError):
    """Finnhub request failed (transport error or non-2xx status).

    Context keys:
        ticker: str
        endpoint: str
        status_code: int | None
    """


class ProviderRateLimited(ProviderError):
    """Finnhub answered HTTP 429. The ticker is skipped for this cycle."""


class ProviderMalformedResponse(ProviderError):
    """Finnhub payload could not be decoded or lacks required fields."""
