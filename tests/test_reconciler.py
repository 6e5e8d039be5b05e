import unittest
from contextlib import contextmanager
from datetime import datetime, timezone
from unittest.mock import patch

import psycopg2

from stock_heatmap.errors import ReconciliationTransactionFailure
from stock_heatmap.models import StockSnapshot
from stock_heatmap.reconciler import upsert_batch

NOW = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class DummyCursor:
    def __enter__(self):
        return self
    def __exit__(self, exc_type, exc, tb):
        return False


class DummyConn:
    def __init__(self):
        self.commits = 0
        self.rollbacks = 0
    def cursor(self):
        return DummyCursor()
    def commit(self):
        self.commits += 1
    def rollback(self):
        self.rollbacks += 1


class DummyPool:
    def __init__(self):
        self.conn = DummyConn()
        self.checkouts = 0
        self.released = 0

    @contextmanager
    def connection(self):
        self.checkouts += 1
        try:
            yield self.conn
        finally:
            self.released += 1


def _snap(ticker):
    return StockSnapshot(ticker, ticker, "Tech", 10.0, 0.5, "", NOW)


class TestReconciler(unittest.TestCase):
    def test_empty_input_does_not_touch_store(self):
        pool = DummyPool()
        self.assertEqual(upsert_batch(pool, []), 0)
        self.assertEqual(pool.checkouts, 0)

    @patch("stock_heatmap.reconciler.upsert_snapshot")
    def test_commits_once_in_input_order(self, mock_upsert):
        pool = DummyPool()
        snaps = [_snap("A"), _snap("B"), _snap("C")]
        self.assertEqual(upsert_batch(pool, snaps), 3)
        self.assertEqual([c.args[1].ticker for c in mock_upsert.call_args_list], ["A", "B", "C"])
        self.assertEqual(pool.conn.commits, 1)
        self.assertEqual(pool.conn.rollbacks, 0)
        self.assertEqual(pool.released, 1)

    @patch("stock_heatmap.reconciler.upsert_snapshot")
    def test_failure_mid_batch_rolls_back_and_raises(self, mock_upsert):
        mock_upsert.side_effect = [None, psycopg2.IntegrityError("fk violation"), None]
        pool = DummyPool()
        with self.assertRaises(ReconciliationTransactionFailure) as ctx:
            upsert_batch(pool, [_snap("A"), _snap("B"), _snap("C")])
        self.assertEqual(ctx.exception.context["attempted"], 3)
        self.assertIsInstance(ctx.exception.__cause__, psycopg2.IntegrityError)
        self.assertEqual(mock_upsert.call_count, 2)
        self.assertEqual(pool.conn.commits, 0)
        self.assertEqual(pool.conn.rollbacks, 1)
        self.assertEqual(pool.released, 1)

    @patch("stock_heatmap.reconciler.upsert_snapshot")
    def test_commit_failure_rolls_back(self, _upsert):
        pool = DummyPool()

        def failing_commit():
            raise psycopg2.OperationalError("connection lost")
        pool.conn.commit = failing_commit
        with self.assertRaises(ReconciliationTransactionFailure):
            upsert_batch(pool, [_snap("A")])
        self.assertEqual(pool.conn.rollbacks, 1)


if __name__ == "__main__":
    unittest.main()
