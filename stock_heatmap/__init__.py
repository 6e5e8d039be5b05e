"""Stock heatmap refresh package.

Contains modules to select tickers due for a refresh, fetch their profile and
quote from Finnhub under a bounded-concurrency policy, and upsert the results
into PostgreSQL in one transaction.
"""

__all__ = [
    "refresh",
    "fetch_from_db",
]
