"""Database access helpers (data operations only).

This module encapsulates PostgreSQL connectivity and data access/mutation
operations for the refresh pipeline. It intentionally excludes any schema
creation concerns (see ``stock_heatmap.db_schema``) to keep a clear
separation of responsibilities.

Conventions
- All functions assume required tables already exist.
- Data helpers accept a live DB cursor so callers control transactions;
  connections are checked out of a :class:`DatabasePool` that the process
  opens once and injects into the pipeline components.
- Read failures are translated into :class:`StoreUnavailable` (or
  :class:`DirectoryUnavailable` for the ticker directory). Write helpers let
  ``psycopg2.Error`` propagate so the reconciler can roll back.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import psycopg2
from psycopg2 import pool as pg_pool

from .config import DatabaseSettings, get_db_settings
from .errors import DirectoryUnavailable, StoreUnavailable
from .models import StockSnapshot, TrackedTicker

logger = logging.getLogger(__name__)


class DatabasePool:
    """Process-wide PostgreSQL connection pool with an explicit lifecycle.

    Open it on process start (or use it as a context manager), check
    connections out per operation with :meth:`connection`, and close it on
    shutdown.
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        self._settings = settings or get_db_settings()
        self._pool: Optional[pg_pool.ThreadedConnectionPool] = None

    @property
    def is_open(self) -> bool:
        return self._pool is not None and not self._pool.closed

    def open(self) -> "DatabasePool":
        """Create the underlying pool.

        Raises
        ------
        StoreUnavailable
            If PostgreSQL cannot be reached.
        """
        if self.is_open:
            return self
        try:
            self._pool = pg_pool.ThreadedConnectionPool(
                self._settings.pool_min,
                self._settings.pool_max,
                **self._settings.connect_kwargs(),
            )
        except psycopg2.Error as e:
            logger.error("[db] connection pool failed: %s", e)
            raise StoreUnavailable(f"cannot connect to PostgreSQL: {e}") from e
        logger.info("[db] pool opened min=%d max=%d", self._settings.pool_min, self._settings.pool_max)
        return self

    def close(self) -> None:
        if self.is_open:
            self._pool.closeall()
            logger.info("[db] pool closed")
        self._pool = None

    def __enter__(self) -> "DatabasePool":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Check out a connection for one operation.

        Any transaction the caller left open is rolled back before the
        connection goes back to the pool; broken connections are discarded.

        Raises
        ------
        StoreUnavailable
            If no connection can be obtained.
        """
        if not self.is_open:
            self.open()
        try:
            conn = self._pool.getconn()
        except (psycopg2.Error, pg_pool.PoolError) as e:
            logger.error("[db] checkout failed: %s", e)
            raise StoreUnavailable(f"cannot check out a connection: {e}") from e
        try:
            yield conn
        finally:
            broken = bool(conn.closed)
            if not broken:
                try:
                    conn.rollback()
                except psycopg2.Error:
                    broken = True
            self._pool.putconn(conn, close=broken)


def _row_to_tracked(row) -> TrackedTicker:
    return TrackedTicker(ticker=row[0], name=row[1] or "", sector=row[2] or "")


# --- stock_list (directory) helpers ---

def list_tracked_tickers(cursor) -> List[TrackedTicker]:
    """Return every tracked ticker in directory insertion order.

    Full directory read for readers and tests; the refresh cycle only needs
    :func:`count_tracked_tickers` plus the bounded selection queries.

    Parameters
    ----------
    cursor : psycopg2.extensions.cursor
        Open cursor bound to an active transaction.

    Raises
    ------
    DirectoryUnavailable
        If ``stock_list`` cannot be read. An empty directory returns ``[]``.
    """
    try:
        cursor.execute("SELECT ticker, name, sector FROM stock_list ORDER BY id, ticker;")
        rows = cursor.fetchall()
    except psycopg2.Error as e:
        logger.error("[db] error reading stock_list: %s", e)
        raise DirectoryUnavailable(f"failed to read stock_list: {e}") from e
    return [_row_to_tracked(r) for r in rows]


def count_tracked_tickers(cursor) -> int:
    """Return the number of rows in ``stock_list``.

    Raises
    ------
    DirectoryUnavailable
        If ``stock_list`` cannot be read.
    """
    try:
        cursor.execute("SELECT COUNT(*) FROM stock_list;")
        row = cursor.fetchone()
    except psycopg2.Error as e:
        logger.error("[db] error counting stock_list: %s", e)
        raise DirectoryUnavailable(f"failed to read stock_list: {e}") from e
    return int(row[0]) if row else 0


# --- stocks (snapshot) helpers ---

def list_tickers_missing_snapshot(cursor, limit: int) -> List[TrackedTicker]:
    """Return tracked tickers that have no ``stocks`` row yet.

    Parameters
    ----------
    cursor : psycopg2.extensions.cursor
        Open cursor bound to an active transaction.
    limit : int
        Maximum number of tickers to return.

    Returns
    -------
    List[TrackedTicker]
        In directory insertion order.
    """
    query = """
    SELECT l.ticker, l.name, l.sector
    FROM stock_list AS l
    LEFT JOIN stocks AS s ON s.ticker = l.ticker
    WHERE s.ticker IS NULL
    ORDER BY l.id, l.ticker
    LIMIT %s;
    """
    try:
        cursor.execute(query, (limit,))
        rows = cursor.fetchall()
    except psycopg2.Error as e:
        logger.error("[db] error listing missing snapshots: %s", e)
        raise StoreUnavailable(f"failed to list missing snapshots: {e}") from e
    logger.info("[db] missing snapshots count=%d limit=%d", len(rows), limit)
    return [_row_to_tracked(r) for r in rows]


def list_oldest_updated(cursor, limit: int) -> List[TrackedTicker]:
    """Return the least recently refreshed tickers.

    Parameters
    ----------
    cursor : psycopg2.extensions.cursor
        Open cursor bound to an active transaction.
    limit : int
        Maximum number of tickers to return.

    Returns
    -------
    List[TrackedTicker]
        Ordered by ``last_updated`` ascending (never-updated first, ties by
        ticker). Name and sector come from the directory; snapshots whose
        ticker left the directory are not returned.
    """
    query = """
    SELECT l.ticker, l.name, l.sector
    FROM stocks AS s
    JOIN stock_list AS l ON l.ticker = s.ticker
    ORDER BY s.last_updated ASC NULLS FIRST, s.ticker
    LIMIT %s;
    """
    try:
        cursor.execute(query, (limit,))
        rows = cursor.fetchall()
    except psycopg2.Error as e:
        logger.error("[db] error listing oldest snapshots: %s", e)
        raise StoreUnavailable(f"failed to list oldest snapshots: {e}") from e
    logger.info("[db] oldest snapshots count=%d limit=%d", len(rows), limit)
    return [_row_to_tracked(r) for r in rows]


def upsert_snapshot(cursor, snapshot: StockSnapshot) -> None:
    """Insert or update the ``stocks`` row for ``snapshot.ticker``.

    Parameters
    ----------
    cursor : psycopg2.extensions.cursor
        Open cursor bound to an active transaction.
    snapshot : StockSnapshot
        Fully populated snapshot.

    Raises
    ------
    psycopg2.Error
        Propagated unchanged; the caller owns the transaction.
    """
    query = """
    INSERT INTO stocks (ticker, name, sector, market_cap, change_percent, logo, last_updated)
    VALUES (%s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (ticker) DO UPDATE
    SET
        name = EXCLUDED.name,
        sector = EXCLUDED.sector,
        market_cap = EXCLUDED.market_cap,
        change_percent = EXCLUDED.change_percent,
        logo = EXCLUDED.logo,
        last_updated = EXCLUDED.last_updated;
    """
    cursor.execute(
        query,
        (
            snapshot.ticker,
            snapshot.name,
            snapshot.sector,
            snapshot.market_cap,
            snapshot.change_percent,
            snapshot.logo,
            snapshot.last_updated,
        ),
    )


def get_snapshots(cursor, tickers: Optional[List[str]] = None) -> Dict[str, Dict[str, Any]]:
    """Read ``stocks`` rows keyed by ticker, optionally restricted to ``tickers``.

    Reader-side helper (heatmap consumers, integration tests); the refresh
    cycle never reads snapshots back.

    Raises
    ------
    StoreUnavailable
        If the table cannot be read.
    """
    query = "SELECT ticker, name, sector, market_cap, change_percent, logo, last_updated FROM stocks"
    params: tuple = ()
    if tickers is not None:
        query += " WHERE ticker = ANY(%s)"
        params = (list(tickers),)
    try:
        cursor.execute(query + " ORDER BY ticker;", params)
        rows = cursor.fetchall()
    except psycopg2.Error as e:
        logger.error("[db] error reading stocks: %s", e)
        raise StoreUnavailable(f"failed to read stocks: {e}") from e
    return {
        r[0]: {
            "ticker": r[0],
            "name": r[1],
            "sector": r[2],
            "market_cap": float(r[3]) if r[3] is not None else None,
            "change_percent": float(r[4]) if r[4] is not None else None,
            "logo": r[5],
            "last_updated": r[6],
        }
        for r in rows
    }
