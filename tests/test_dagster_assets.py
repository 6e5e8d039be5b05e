import unittest
from unittest.mock import MagicMock, patch

from dagster import Failure, build_asset_context, materialize

from dagster_pipeline.assets import refresh_stock_snapshots
from stock_heatmap.errors import ConfigurationError
from stock_heatmap.models import RefreshSummary

CONFIG = {"batch_size": 5, "mode": "grouped"}


class TestRefreshAsset(unittest.TestCase):
    @patch("dagster_pipeline.assets.DatabasePool")
    @patch("dagster_pipeline.assets.FinnhubClient.from_env",
           side_effect=ConfigurationError("FINNHUB_API_KEY is not configured", {"field": "FINNHUB_API_KEY"}))
    def test_missing_provider_key_fails_without_retry(self, _from_env, mock_pool):
        with self.assertRaises(Failure) as ctx:
            refresh_stock_snapshots(build_asset_context(asset_config=CONFIG))
        self.assertFalse(ctx.exception.allow_retries)
        self.assertIn("FINNHUB_API_KEY", ctx.exception.description)
        mock_pool.assert_not_called()

    @patch("dagster_pipeline.assets.DatabasePool")
    @patch("dagster_pipeline.assets.FinnhubClient.from_env",
           side_effect=ConfigurationError("FINNHUB_API_KEY is not configured"))
    def test_configuration_error_runs_step_once(self, mock_from_env, _pool):
        result = materialize([refresh_stock_snapshots], raise_on_error=False)
        self.assertFalse(result.success)
        self.assertEqual(mock_from_env.call_count, 1)

    @patch("dagster_pipeline.assets.run_refresh_cycle")
    @patch("dagster_pipeline.assets.init_database", return_value=True)
    @patch("dagster_pipeline.assets.DatabasePool")
    @patch("dagster_pipeline.assets.FinnhubClient.from_env")
    def test_successful_cycle_returns_summary(self, mock_from_env, _pool, _init, mock_cycle):
        client = MagicMock()
        mock_from_env.return_value = client
        mock_cycle.return_value = RefreshSummary(
            updated_count=1, updated_tickers=["AAPL"], selected_count=2,
            skipped={"MSFT": "rate_limited"}, message="Update finished. Processed 1 stocks.",
        )
        out = refresh_stock_snapshots(build_asset_context(asset_config=CONFIG))
        self.assertEqual(out["updated"], 1)
        self.assertEqual(out["tickers"], ["AAPL"])
        self.assertEqual(mock_cycle.call_args.kwargs["batch_size"], 5)
        client.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
