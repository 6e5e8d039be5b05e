"""Refresh selection: which tickers the next cycle should fetch.

New tickers (tracked but without a snapshot) always come first so every
tracked ticker gets an initial snapshot before any ticker is refreshed twice.
Once none are left, the least recently refreshed snapshots are rotated
through, one bounded batch per cycle.
"""

from __future__ import annotations

import logging
from typing import List

from .config import BATCH_SIZE
from .fetch_from_db import (
    DatabasePool,
    count_tracked_tickers,
    list_oldest_updated,
    list_tickers_missing_snapshot,
)
from .models import TrackedTicker

logger = logging.getLogger(__name__)


def select_refresh_batch(pool: DatabasePool, batch_size: int = BATCH_SIZE) -> List[TrackedTicker]:
    """Return at most ``batch_size`` tickers to refresh this cycle.

    Parameters
    ----------
    pool : DatabasePool
        Shared connection pool.
    batch_size : int
        Upper bound on the returned batch.

    Returns
    -------
    List[TrackedTicker]
        New tickers in directory order if any exist, otherwise the oldest
        snapshots first. Empty when the directory is empty.

    Raises
    ------
    DirectoryUnavailable
        If ``stock_list`` cannot be read.
    StoreUnavailable
        If the connection or the ``stocks`` table cannot be read.
    """
    if batch_size <= 0:
        return []
    with pool.connection() as conn:
        with conn.cursor() as cursor:
            total = count_tracked_tickers(cursor)
            if total == 0:
                logger.info("[select] directory is empty; nothing to refresh")
                return []
            logger.info("[select] directory has %d tracked tickers", total)

            new_tickers = list_tickers_missing_snapshot(cursor, batch_size)
            if new_tickers:
                logger.info("[select] found %d NEW tickers to insert", len(new_tickers))
                return new_tickers[:batch_size]

            logger.info("[select] all tickers populated; switching to oldest entries")
            oldest = list_oldest_updated(cursor, batch_size)
            logger.info("[select] found %d oldest tickers to update", len(oldest))
            return oldest[:batch_size]
