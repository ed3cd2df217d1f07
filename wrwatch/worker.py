"""
wrwatch.worker — Periodic loops
================================

Two ``discord.ext.tasks`` loops drive the process:

- **sync_loop** — every ``poll_interval_seconds``, one
  :meth:`Synchronizer.run_once` pass.  After a failed pass the following
  ticks are skipped until the next delay from ``retry_backoff_seconds``
  has elapsed (the last delay repeats); a successful pass resets it.
- **dispatch_loop** — every ``dispatch_interval_seconds``, drains the
  notification queue.  Independent of the sync loop.

All database work inside the loops already goes through ``run_db()``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence

from discord.ext import tasks

from wrwatch.config import WrwatchConfig
from wrwatch.services.notification_service import DrainReport, NotificationDispatcher
from wrwatch.services.sync_service import SyncReport, Synchronizer

logger = logging.getLogger(__name__)


def backoff_delay(failures: int, schedule: Sequence[int]) -> int:
    """Seconds to wait after *failures* consecutive failed passes."""
    if failures <= 0 or not schedule:
        return 0
    return schedule[min(failures, len(schedule)) - 1]


class SyncWorker:
    """Owns the sync and dispatch loops."""

    def __init__(
        self,
        synchronizer: Synchronizer,
        dispatcher: NotificationDispatcher,
        cfg: WrwatchConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._synchronizer = synchronizer
        self._dispatcher = dispatcher
        self._schedule = cfg.retry_backoff_seconds
        self._clock = clock
        self._failures = 0
        self._resume_at = 0.0

        self.sync_loop.change_interval(seconds=cfg.poll_interval_seconds)
        self.dispatch_loop.change_interval(seconds=cfg.dispatch_interval_seconds)

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def start(self) -> None:
        """Start both loops (needs a running event loop)."""
        self.sync_loop.start()
        self.dispatch_loop.start()
        logger.info("Worker started")

    def stop(self) -> None:
        """Let in-flight iterations finish, then stop both loops."""
        self.sync_loop.stop()
        self.dispatch_loop.stop()
        logger.info("Worker stopping")

    # -------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------
    async def sync_tick(self) -> SyncReport | None:
        """One scheduled sync attempt.  None when skipped or failed."""
        now = self._clock()
        if now < self._resume_at:
            logger.debug("Sync tick skipped; backing off for %.0fs more", self._resume_at - now)
            return None

        try:
            report = await self._synchronizer.run_once()
        except Exception:
            self._failures += 1
            delay = backoff_delay(self._failures, self._schedule)
            self._resume_at = now + delay
            logger.exception(
                "Sync pass failed (%d in a row); next attempt in %ds",
                self._failures, delay, extra={"task": "sync"},
            )
            return None

        if self._failures:
            logger.info("Sync recovered after %d failed passes", self._failures)
        self._failures = 0
        self._resume_at = 0.0
        return report

    @tasks.loop(seconds=60)
    async def sync_loop(self):
        await self.sync_tick()

    # -------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------
    async def dispatch_tick(self) -> DrainReport | None:
        try:
            return await self._dispatcher.drain()
        except Exception:
            logger.exception("Notification drain failed", extra={"task": "dispatch"})
            return None

    @tasks.loop(seconds=5)
    async def dispatch_loop(self):
        await self.dispatch_tick()
