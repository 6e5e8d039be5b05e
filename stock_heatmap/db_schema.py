"""Database schema creation helpers.

This module contains idempotent functions that ensure required tables and
indexes exist. These functions accept a live psycopg2 cursor and perform DDL
statements. They are safe to call repeatedly and on every startup.

Errors propagate: a schema that cannot be created leaves the pipeline unusable,
so :func:`stock_heatmap.db_init.init_database` decides how to report it.
"""

import logging

logger = logging.getLogger(__name__)


def create_stock_list_table(cursor) -> None:
    """Ensure the ``stock_list`` directory table exists.

    Parameters
    ----------
    cursor : psycopg2.extensions.cursor
        Open cursor bound to an active connection/transaction.

    Notes
    -----
    ``id`` records insertion order, which the selector uses to pick new
    tickers deterministically. Rows are maintained outside the pipeline.
    """
    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS stock_list (
            id SERIAL,
            ticker VARCHAR(16) PRIMARY KEY,
            name TEXT NOT NULL DEFAULT '',
            sector TEXT NOT NULL DEFAULT ''
        );
        """
    )
    cursor.execute("ALTER TABLE stock_list ADD COLUMN IF NOT EXISTS id SERIAL;")
    logger.info("[db-schema] ensured table stock_list")


def create_stocks_table(cursor) -> None:
    """Ensure the ``stocks`` snapshot table and its freshness index exist.

    Parameters
    ----------
    cursor : psycopg2.extensions.cursor
        Open cursor bound to an active connection/transaction.

    Notes
    -----
    ``ticker`` references ``stock_list`` so a snapshot can only exist for a
    tracked ticker; ``market_cap`` may not be negative.
    """
    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS stocks (
            ticker VARCHAR(16) PRIMARY KEY REFERENCES stock_list (ticker),
            name TEXT NOT NULL DEFAULT '',
            sector TEXT NOT NULL DEFAULT '',
            market_cap DOUBLE PRECISION NOT NULL DEFAULT 0 CHECK (market_cap >= 0),
            change_percent DOUBLE PRECISION NOT NULL DEFAULT 0,
            logo TEXT NOT NULL DEFAULT '',
            last_updated TIMESTAMPTZ
        );
        """
    )
    cursor.execute("ALTER TABLE stocks ADD COLUMN IF NOT EXISTS logo TEXT NOT NULL DEFAULT '';")
    cursor.execute("ALTER TABLE stocks ADD COLUMN IF NOT EXISTS last_updated TIMESTAMPTZ;")
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS stocks_last_updated_idx ON stocks (last_updated NULLS FIRST, ticker);"
    )
    logger.info("[db-schema] ensured table stocks")
