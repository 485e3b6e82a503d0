"""Background eviction of expired fast-tier entries and rate-limit counters."""

from __future__ import annotations

import asyncio
import logging

from fieldalert.notifications.dedup import DedupStore
from fieldalert.notifications.ratelimit import RateLimiter

logger = logging.getLogger(__name__)


class CleanupSweeper:
    """Runs ``evict_expired`` on a fixed interval until stopped."""

    def __init__(
        self,
        dedup_store: DedupStore,
        rate_limiter: RateLimiter | None = None,
        interval_ms: int | None = None,
    ) -> None:
        self._store = dedup_store
        self._limiter = rate_limiter
        self._interval = (interval_ms or dedup_store.config.cleanup_interval_ms) / 1000
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="fieldalert-cleanup-sweeper")

    async def run_once(self) -> int:
        evicted = await self._store.evict_expired()
        if self._limiter is not None:
            self._limiter.evict_expired()
        return evicted

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Cleanup sweep failed")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
