import os
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from stock_heatmap.config import RefreshSettings
from stock_heatmap.errors import (
    AuthorizationError,
    ConfigurationError,
    DirectoryUnavailable,
    ReconciliationTransactionFailure,
)
from stock_heatmap.executor import RefreshPolicy
from stock_heatmap.models import BatchOutcome, FetchResult, StockSnapshot, TrackedTicker
from stock_heatmap.refresh import run_refresh_cycle, trigger_refresh

NOW = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def _tickers(*symbols):
    return [TrackedTicker(s, f"{s} Inc", "Tech") for s in symbols]


def _snap(ticker):
    return StockSnapshot(ticker, f"{ticker} Inc", "Tech", 10.0, 0.5, "", NOW)


class TestRunRefreshCycle(unittest.TestCase):
    @patch("stock_heatmap.refresh.upsert_batch")
    @patch("stock_heatmap.refresh.fetch_batch")
    @patch("stock_heatmap.refresh.select_refresh_batch", return_value=[])
    def test_empty_selection_short_circuits(self, _select, mock_fetch, mock_upsert):
        client = MagicMock()
        summary = run_refresh_cycle(MagicMock(), client)
        self.assertEqual(summary.updated_count, 0)
        self.assertEqual(summary.updated_tickers, [])
        mock_fetch.assert_not_called()
        mock_upsert.assert_not_called()
        client.fetch_ticker_data.assert_not_called()

    @patch("stock_heatmap.refresh.upsert_batch")
    @patch("stock_heatmap.refresh.fetch_batch")
    @patch("stock_heatmap.refresh.select_refresh_batch")
    def test_zero_successes_skip_reconcile(self, mock_select, mock_fetch, mock_upsert):
        mock_select.return_value = _tickers("A", "B")
        mock_fetch.return_value = BatchOutcome(
            skipped=[FetchResult.skipped("A", "rate_limited", None), FetchResult.skipped("B", "rate_limited", None)]
        )
        summary = run_refresh_cycle(MagicMock(), MagicMock())
        self.assertEqual(summary.updated_count, 0)
        self.assertEqual(summary.selected_count, 2)
        self.assertEqual(summary.skipped, {"A": "rate_limited", "B": "rate_limited"})
        mock_upsert.assert_not_called()

    @patch("stock_heatmap.refresh.upsert_batch", return_value=2)
    @patch("stock_heatmap.refresh.fetch_batch")
    @patch("stock_heatmap.refresh.select_refresh_batch")
    def test_successful_cycle_reports_updated_tickers(self, mock_select, mock_fetch, mock_upsert):
        pool, client = MagicMock(), MagicMock()
        policy = RefreshPolicy.sequential(delay=0)
        mock_select.return_value = _tickers("A", "B", "C")
        mock_fetch.return_value = BatchOutcome(
            succeeded=[_snap("A"), _snap("C")],
            skipped=[FetchResult.skipped("B", "error", "HTTP 500")],
        )
        summary = run_refresh_cycle(pool, client, policy=policy, batch_size=3)
        mock_select.assert_called_once_with(pool, 3)
        mock_fetch.assert_called_once_with(mock_select.return_value, client, policy)
        mock_upsert.assert_called_once_with(pool, [_snap("A"), _snap("C")])
        self.assertEqual(summary.updated_count, 2)
        self.assertEqual(summary.updated_tickers, ["A", "C"])
        self.assertEqual(summary.to_dict()["tickers"], ["A", "C"])
        self.assertEqual(summary.to_dict()["skipped"], {"B": "error: HTTP 500"})

    @patch("stock_heatmap.refresh.fetch_batch")
    @patch("stock_heatmap.refresh.select_refresh_batch", side_effect=DirectoryUnavailable("down"))
    def test_select_error_propagates(self, _select, mock_fetch):
        with self.assertRaises(DirectoryUnavailable):
            run_refresh_cycle(MagicMock(), MagicMock())
        mock_fetch.assert_not_called()

    @patch("stock_heatmap.refresh.upsert_batch", side_effect=ReconciliationTransactionFailure("rolled back"))
    @patch("stock_heatmap.refresh.fetch_batch")
    @patch("stock_heatmap.refresh.select_refresh_batch")
    def test_reconcile_error_propagates(self, mock_select, mock_fetch, _upsert):
        mock_select.return_value = _tickers("A")
        mock_fetch.return_value = BatchOutcome(succeeded=[_snap("A")])
        with self.assertRaises(ReconciliationTransactionFailure):
            run_refresh_cycle(MagicMock(), MagicMock())


class TestTriggerRefresh(unittest.TestCase):
    @patch("stock_heatmap.refresh.run_refresh_cycle")
    def test_wrong_secret_rejected_before_any_phase(self, mock_cycle):
        with patch.dict(os.environ, {"UPDATE_SECRET_KEY": "s3cret"}):
            with self.assertRaises(AuthorizationError):
                trigger_refresh("wrong", MagicMock(), client=MagicMock())
            with self.assertRaises(AuthorizationError):
                trigger_refresh(None, MagicMock(), client=MagicMock())
        mock_cycle.assert_not_called()

    @patch("stock_heatmap.refresh.run_refresh_cycle")
    def test_missing_configured_secret_is_configuration_error(self, mock_cycle):
        with patch.dict(os.environ, {"UPDATE_SECRET_KEY": ""}):
            with self.assertRaises(ConfigurationError):
                trigger_refresh("anything", MagicMock(), client=MagicMock())
        mock_cycle.assert_not_called()

    @patch("stock_heatmap.refresh.run_refresh_cycle")
    def test_missing_provider_key_is_configuration_error(self, mock_cycle):
        with patch.dict(os.environ, {"UPDATE_SECRET_KEY": "s3cret", "FINNHUB_API_KEY": ""}):
            with self.assertRaises(ConfigurationError):
                trigger_refresh("s3cret", MagicMock())
        mock_cycle.assert_not_called()

    @patch("stock_heatmap.refresh.run_refresh_cycle")
    def test_valid_secret_runs_cycle_with_settings(self, mock_cycle):
        pool, client = MagicMock(), MagicMock()
        settings = RefreshSettings(batch_size=7, mode="sequential", item_delay=0.1)
        with patch.dict(os.environ, {"UPDATE_SECRET_KEY": "s3cret"}):
            trigger_refresh("s3cret", pool, settings=settings, client=client)
        mock_cycle.assert_called_once_with(
            pool, client, policy=RefreshPolicy.sequential(delay=0.1), batch_size=7
        )
        client.close.assert_not_called()


if __name__ == "__main__":
    unittest.main()
