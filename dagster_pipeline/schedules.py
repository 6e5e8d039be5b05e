from dagster import define_asset_job, schedule, DefaultScheduleStatus

from . import assets

stock_refresh_job = define_asset_job(
    name="stock_refresh_job",
    selection=[assets.refresh_stock_snapshots],
)


@schedule(
    cron_schedule="*/15 * * * *",
    job=stock_refresh_job,
    default_status=DefaultScheduleStatus.RUNNING,
)
def stock_refresh_schedule(context):
    return {}
