"""Atomic write of fetched snapshots into ``stocks``."""

from __future__ import annotations

import logging
from typing import Sequence

import psycopg2

from .errors import ReconciliationTransactionFailure
from .fetch_from_db import DatabasePool, upsert_snapshot
from .models import StockSnapshot

logger = logging.getLogger(__name__)


def upsert_batch(pool: DatabasePool, snapshots: Sequence[StockSnapshot]) -> int:
    """Upsert ``snapshots`` in one all-or-nothing transaction.

    Parameters
    ----------
    pool : DatabasePool
        Shared connection pool.
    snapshots : Sequence[StockSnapshot]
        Fully populated snapshots, applied in the given order.

    Returns
    -------
    int
        Number of snapshots written. ``0`` for an empty input, in which case
        the database is not touched.

    Raises
    ------
    ReconciliationTransactionFailure
        If any upsert or the commit fails; the transaction is rolled back and
        no row of the batch is persisted. No retry happens here.
    """
    if not snapshots:
        return 0

    with pool.connection() as conn:
        try:
            with conn.cursor() as cursor:
                for snapshot in snapshots:
                    upsert_snapshot(cursor, snapshot)
            conn.commit()
        except psycopg2.Error as e:
            logger.error("[reconcile] upsert transaction failed; rolling back: %s", e)
            try:
                conn.rollback()
            except psycopg2.Error as rollback_err:
                # connection is gone; the server discards the open transaction
                logger.error("[reconcile] rollback failed: %s", rollback_err)
            raise ReconciliationTransactionFailure(
                f"snapshot upsert failed: {e}",
                {"attempted": len(snapshots)},
            ) from e

    logger.info("[reconcile] upserted %d snapshots", len(snapshots))
    return len(snapshots)
