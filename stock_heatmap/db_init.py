"""Database initialization entry point.

Ensures the directory and snapshot tables exist. Intended to be called at
service startup (API lifespan, Dagster asset) before the first refresh cycle.
"""

import logging

import psycopg2

from .db_schema import create_stock_list_table, create_stocks_table
from .errors import StoreUnavailable
from .fetch_from_db import DatabasePool

logger = logging.getLogger(__name__)


def init_database(pool: DatabasePool) -> bool:
    """Initialize the database schema.

    Parameters
    ----------
    pool : DatabasePool
        Shared connection pool.

    Returns
    -------
    bool
        True if initialization ran without fatal errors, else False.

    Notes
    -----
    - Safe to call multiple times (DDL is idempotent).
    - Failures are logged and rolled back; the refresh cycle reports its own
      store errors if the schema is still missing.
    """
    try:
        with pool.connection() as conn:
            try:
                with conn.cursor() as cursor:
                    # stock_list first: stocks references it
                    create_stock_list_table(cursor)
                    create_stocks_table(cursor)
                conn.commit()
            except psycopg2.Error as e:
                logger.error("[db_init] initialization error: %s", e)
                conn.rollback()
                return False
    except StoreUnavailable as e:
        logger.warning("[db_init] DB connection unavailable; skipping initialization: %s", e)
        return False
    logger.info("[db_init] schema ensured")
    return True
