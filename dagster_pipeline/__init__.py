from dagster import Definitions, load_assets_from_modules

from . import assets
from .schedules import stock_refresh_job, stock_refresh_schedule

all_assets = load_assets_from_modules([assets])

defs = Definitions(
    assets=all_assets,
    jobs=[stock_refresh_job],
    schedules=[stock_refresh_schedule],
)
