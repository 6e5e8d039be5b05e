from dagster import asset, Failure, Field, Int, String, RetryPolicy
from dataclasses import replace
import logging

from stock_heatmap.config import get_refresh_settings
from stock_heatmap.db_init import init_database
from stock_heatmap.errors import ConfigurationError
from stock_heatmap.executor import RefreshPolicy
from stock_heatmap.fetch_from_db import DatabasePool
from stock_heatmap.finnhub_client import FinnhubClient
from stock_heatmap.refresh import run_refresh_cycle

_SETTINGS = get_refresh_settings()


@asset(
    config_schema={
        "batch_size": Field(
            Int,
            description="Maximum number of tickers refreshed per run.",
            default_value=_SETTINGS.batch_size,
        ),
        "mode": Field(
            String,
            description="Executor pacing: 'grouped' or 'sequential'.",
            default_value=_SETTINGS.mode,
        ),
    },
    # one cycle at a time across runs
    op_tags={"dagster/concurrency_key": "stock_refresh"},
    # configuration errors raise Failure(allow_retries=False) instead
    retry_policy=RetryPolicy(max_retries=1, delay=60),
)
def refresh_stock_snapshots(context):
    """
    Run one refresh cycle: select due tickers, fetch them from Finnhub, and
    upsert the snapshots into the ``stocks`` table in one transaction.

    Returns the summary dict (updated count, tickers, skip reasons).
    """
    # Ensure our library logs are visible in Dagster
    logging.getLogger("stock_heatmap").setLevel(logging.DEBUG)

    batch_size = context.op_config["batch_size"]
    mode = context.op_config["mode"]
    policy = RefreshPolicy.from_settings(replace(_SETTINGS, mode=mode))
    context.log.info(f"Starting refresh cycle batch_size={batch_size} mode={mode}")

    try:
        client = FinnhubClient.from_env()
    except ConfigurationError as e:
        context.log.error(f"Configuration error, not retrying: {e}")
        raise Failure(description=str(e), metadata=e.context, allow_retries=False) from e

    try:
        with DatabasePool() as pool:
            init_database(pool)
            summary = run_refresh_cycle(pool, client, policy=policy, batch_size=batch_size)
    finally:
        client.close()

    context.add_output_metadata({
        "updated_count": summary.updated_count,
        "selected_count": summary.selected_count,
        "skipped": list(summary.skipped.keys()),
    })
    context.log.info(f"Updated: {summary.updated_tickers}, Skipped: {summary.skipped}")
    return summary.to_dict()
