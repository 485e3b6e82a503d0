"""Delivery status tracking and admission counters."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter, deque
from typing import Any, Callable, Coroutine

from fieldalert.core.types import EventStatus
from fieldalert.notifications.dedup import DedupStore
from fieldalert.notifications.models import Decision, ServiceStats

logger = logging.getLogger(__name__)


class StatusTracker:
    """Records terminal delivery status and keeps aggregate decision counters.

    The cached event moves to its terminal status synchronously. Durable
    status writes run as background tasks held in ``_background_tasks`` so a
    caller abandoning ``dispatch`` does not cancel them; ``drain()`` waits
    for whatever is still in flight.
    """

    def __init__(
        self,
        dedup_store: DedupStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = dedup_store
        self._clock = clock
        self._retention_seconds = dedup_store.config.max_history_age_ms / 1000
        self._background_tasks: set[asyncio.Task[None]] = set()
        self._total = 0
        self._degraded = 0
        self._blocked_by_reason: Counter[str] = Counter()
        self._recent_blocked: deque[float] = deque()

    def record_decision(self, decision: Decision) -> None:
        self._total += 1
        if decision.degraded:
            self._degraded += 1
        if decision.allowed:
            return
        if decision.block_reason is not None:
            self._blocked_by_reason[decision.block_reason.value] += 1
        self._recent_blocked.append(self._clock())

    def mark_sent(self, event_id: str) -> asyncio.Task[None]:
        """Mark the cached event sent now; the durable write runs in the background."""
        change = self._store.apply_status(event_id, EventStatus.SENT, None)
        return self._schedule(self._store.write_status(change))

    def mark_failed(self, event_id: str, error_summary: str) -> asyncio.Task[None]:
        change = self._store.apply_status(event_id, EventStatus.FAILED, error_summary)
        return self._schedule(self._store.write_status(change))

    def _schedule(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(self._guarded(coro))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    @staticmethod
    async def _guarded(coro: Coroutine[Any, Any, None]) -> None:
        try:
            await coro
        except Exception:
            logger.exception("Status write failed")

    async def drain(self) -> None:
        """Wait for every in-flight status write to finish."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    @property
    def pending_writes(self) -> int:
        return len(self._background_tasks)

    def _prune(self) -> None:
        cutoff = self._clock() - self._retention_seconds
        while self._recent_blocked and self._recent_blocked[0] < cutoff:
            self._recent_blocked.popleft()

    def stats(self) -> ServiceStats:
        self._prune()
        return ServiceStats(
            memory_cache_size=self._store.memory_cache_size,
            recent_blocked_count=len(self._recent_blocked),
            total_processed_count=self._total,
            blocked_by_reason=dict(self._blocked_by_reason),
            degraded_count=self._degraded,
            pending_status_writes=self.pending_writes,
        )
