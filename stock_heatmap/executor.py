"""Bounded-concurrency retrieval for one refresh batch.

Firing every ticker at Finnhub at once trips its rate limit, so the batch is
processed as consecutive groups of ``width`` concurrent fetches with a pause
between groups. Sequential processing is the same policy with ``width=1`` and
the pause acting as a fixed per-item delay.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Iterator, List, Sequence

from .config import RefreshSettings
from .finnhub_client import FinnhubClient
from .models import STATUS_ERROR, STATUS_TIMEOUT, BatchOutcome, FetchResult, TrackedTicker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefreshPolicy:
    """Pacing for the executor.

    Attributes
    ----------
    width : int
        Number of tickers fetched concurrently per group.
    group_pause : float
        Seconds to sleep between groups (not after the last one).
    item_timeout : float
        Seconds a group waits for its fetches. A fetch still running after
        that is recorded as ``timeout`` and left behind on its own worker;
        the next group runs on fresh workers. The whole batch is capped at
        ``len(batch) * item_timeout`` plus the pauses between groups.
    """
    width: int = 5
    group_pause: float = 1.0
    item_timeout: float = 30.0

    def __post_init__(self):
        if self.width < 1:
            raise ValueError("width must be at least 1")
        if self.group_pause < 0:
            raise ValueError("group_pause must not be negative")
        if self.item_timeout <= 0:
            raise ValueError("item_timeout must be positive")

    @classmethod
    def grouped(cls, width: int = 5, group_pause: float = 1.0, item_timeout: float = 30.0) -> "RefreshPolicy":
        return cls(width=width, group_pause=group_pause, item_timeout=item_timeout)

    @classmethod
    def sequential(cls, delay: float = 0.2, item_timeout: float = 30.0) -> "RefreshPolicy":
        return cls(width=1, group_pause=delay, item_timeout=item_timeout)

    @classmethod
    def from_settings(cls, settings: RefreshSettings) -> "RefreshPolicy":
        if settings.mode == "sequential":
            return cls.sequential(delay=settings.item_delay, item_timeout=settings.item_timeout)
        return cls.grouped(
            width=settings.width,
            group_pause=settings.group_pause,
            item_timeout=settings.item_timeout,
        )


def _groups(items: Sequence[TrackedTicker], size: int) -> Iterator[List[TrackedTicker]]:
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def _new_pool(policy: RefreshPolicy) -> ThreadPoolExecutor:
    return ThreadPoolExecutor(max_workers=policy.width, thread_name_prefix="refresh")


def _record(outcome: BatchOutcome, result: FetchResult) -> None:
    if result.ok:
        outcome.succeeded.append(result.snapshot)
    else:
        outcome.skipped.append(result)


def fetch_batch(
    batch: Sequence[TrackedTicker],
    client: FinnhubClient,
    policy: RefreshPolicy | None = None,
) -> BatchOutcome:
    """Fetch every ticker of ``batch`` under ``policy``.

    Parameters
    ----------
    batch : Sequence[TrackedTicker]
        Tickers selected for this cycle.
    client : FinnhubClient
        Provider client; its ``fetch_ticker_data`` must not raise for
        provider failures, anything it does raise is recorded as an error.
    policy : RefreshPolicy | None
        Pacing; defaults to :meth:`RefreshPolicy.grouped`.

    Returns
    -------
    BatchOutcome
        Successful snapshots in batch order and skip markers for the rest.
        Returned normally even when nothing succeeded.
    """
    policy = policy or RefreshPolicy.grouped()
    outcome = BatchOutcome()
    if not batch:
        return outcome

    groups = list(_groups(batch, policy.width))
    deadline = time.monotonic() + len(batch) * policy.item_timeout + (len(groups) - 1) * policy.group_pause
    logger.info(
        "[executor] batch=%d groups=%d width=%d pause=%.2fs",
        len(batch), len(groups), policy.width, policy.group_pause,
    )

    pool = _new_pool(policy)
    try:
        for index, group in enumerate(groups):
            if time.monotonic() >= deadline:
                logger.warning("[executor] batch deadline reached; skipping %d tickers", len(group))
                for tracked in group:
                    _record(outcome, FetchResult.skipped(tracked.ticker, STATUS_TIMEOUT, "batch deadline exceeded"))
                continue

            futures = [(tracked, pool.submit(client.fetch_ticker_data, tracked)) for tracked in group]
            wait([f for _, f in futures], timeout=policy.item_timeout)
            stuck = False
            for tracked, future in futures:
                if not future.done():
                    future.cancel()
                    stuck = True
                    logger.warning("[executor] %s timed out after %.1fs", tracked.ticker, policy.item_timeout)
                    _record(outcome, FetchResult.skipped(tracked.ticker, STATUS_TIMEOUT, "fetch timed out"))
                    continue
                try:
                    _record(outcome, future.result())
                except Exception as e:
                    logger.exception("[executor] unexpected error for %s", tracked.ticker)
                    _record(outcome, FetchResult.skipped(tracked.ticker, STATUS_ERROR, str(e)))

            if stuck:
                # timed-out fetches keep their workers; later groups get fresh ones
                pool.shutdown(wait=False, cancel_futures=True)
                pool = _new_pool(policy)

            if index < len(groups) - 1 and policy.group_pause > 0:
                time.sleep(policy.group_pause)
    finally:
        pool.shutdown(wait=False, cancel_futures=True)

    logger.info(
        "[executor] fetched %d of %d tickers (skipped=%d)",
        len(outcome.succeeded), len(batch), len(outcome.skipped),
    )
    return outcome
