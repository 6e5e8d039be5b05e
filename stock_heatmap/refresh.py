"""Refresh cycle orchestration.

One cycle runs ``SELECT -> FETCH -> RECONCILE -> SUMMARY`` once, in that
order. An empty selection skips straight to the summary, as does a fetch
phase without a single success. Errors from any phase end the cycle and
propagate to the caller; only the reconciler's own transaction is rolled
back.

Cycles must not overlap against the same database: two reconcilers writing
the same tickers could interleave. Callers serialize them (the API holds a
process lock, the Dagster asset a concurrency key).
"""

from __future__ import annotations

import hmac
import logging
from enum import Enum
from typing import Optional

from .config import BATCH_SIZE, RefreshSettings, get_refresh_settings, get_update_secret
from .errors import AuthorizationError, ConfigurationError
from .executor import RefreshPolicy, fetch_batch
from .fetch_from_db import DatabasePool
from .finnhub_client import FinnhubClient
from .models import RefreshSummary
from .reconciler import upsert_batch
from .selector import select_refresh_batch

logger = logging.getLogger(__name__)


class RefreshPhase(str, Enum):
    SELECT = "select"
    FETCH = "fetch"
    RECONCILE = "reconcile"
    SUMMARY = "summary"


def run_refresh_cycle(
    pool: DatabasePool,
    client: FinnhubClient,
    policy: Optional[RefreshPolicy] = None,
    batch_size: int = BATCH_SIZE,
) -> RefreshSummary:
    """Run one refresh cycle and report what was updated.

    Parameters
    ----------
    pool : DatabasePool
        Shared connection pool used by selection and reconciliation.
    client : FinnhubClient
        Provider client used by the executor.
    policy : Optional[RefreshPolicy]
        Executor pacing; defaults to the grouped policy.
    batch_size : int
        Maximum tickers per cycle.

    Returns
    -------
    RefreshSummary
        Count and identifiers of updated tickers, plus skip reasons.

    Raises
    ------
    StoreUnavailable, DirectoryUnavailable, ReconciliationTransactionFailure
        Propagated unchanged; nothing is retried here.
    """
    logger.info("[refresh] phase=%s batch_size=%d", RefreshPhase.SELECT.value, batch_size)
    batch = select_refresh_batch(pool, batch_size)
    if not batch:
        message = "No tracked tickers to refresh."
        logger.info("[refresh] phase=%s %s", RefreshPhase.SUMMARY.value, message)
        return RefreshSummary(message=message)

    logger.info("[refresh] phase=%s tickers=%s", RefreshPhase.FETCH.value, [t.ticker for t in batch])
    outcome = fetch_batch(batch, client, policy)
    skipped = outcome.skipped_reasons
    if not outcome.succeeded:
        message = f"Update finished. No data fetched for {len(batch)} selected stocks."
        logger.warning("[refresh] phase=%s %s", RefreshPhase.SUMMARY.value, message)
        return RefreshSummary(selected_count=len(batch), skipped=skipped, message=message)

    logger.info("[refresh] phase=%s snapshots=%d", RefreshPhase.RECONCILE.value, len(outcome.succeeded))
    written = upsert_batch(pool, outcome.succeeded)

    tickers = [s.ticker for s in outcome.succeeded]
    message = f"Update finished. Processed {written} stocks."
    logger.info("[refresh] phase=%s %s skipped=%d", RefreshPhase.SUMMARY.value, message, len(skipped))
    return RefreshSummary(
        updated_count=written,
        updated_tickers=tickers,
        selected_count=len(batch),
        skipped=skipped,
        message=message,
    )


def check_trigger_secret(supplied: Optional[str]) -> None:
    """Compare ``supplied`` with ``UPDATE_SECRET_KEY``.

    Raises
    ------
    ConfigurationError
        If no secret is configured.
    AuthorizationError
        If ``supplied`` is missing or does not match.
    """
    expected = get_update_secret()
    if not expected:
        raise ConfigurationError("UPDATE_SECRET_KEY is not configured", {"field": "UPDATE_SECRET_KEY"})
    if supplied is None or not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise AuthorizationError("a valid secret key is required")


def trigger_refresh(
    supplied_secret: Optional[str],
    pool: DatabasePool,
    settings: Optional[RefreshSettings] = None,
    client: Optional[FinnhubClient] = None,
) -> RefreshSummary:
    """Authorize the caller, then run one refresh cycle.

    The secret and the provider credentials are both checked before any
    phase runs, so a rejected call has no side effects.
    """
    check_trigger_secret(supplied_secret)
    settings = settings or get_refresh_settings()
    owns_client = client is None
    if client is None:
        client = FinnhubClient.from_env()
    try:
        return run_refresh_cycle(
            pool,
            client,
            policy=RefreshPolicy.from_settings(settings),
            batch_size=settings.batch_size,
        )
    finally:
        if owns_client:
            client.close()
