"""Two-tier dedup store: an in-process fast tier backed by the durable event store.

The fast tier maps each fingerprint to the most recent event seen for it.
``check_and_reserve`` decides and reserves inside one critical section, so
concurrent callers racing on the same fingerprint produce a single winner.
The durable tier is only consulted on a fast-tier miss, and by then the
winner's placeholder is already in place: racers wait for the placeholder
to settle instead of issuing their own durable lookups.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pydantic import BaseModel

from fieldalert.core.config import DedupConfig
from fieldalert.core.types import EventStatus
from fieldalert.notifications.models import NotificationEvent
from fieldalert.repositories.protocols import EventRepository

logger = logging.getLogger(__name__)

FAST_CACHE = "fast-cache"
PERSISTENT = "persistent"


class Reservation(BaseModel):
    """Result of ``DedupStore.check_and_reserve``.

    ``existing_event`` is always set when ``reserved`` is false.
    """

    reserved: bool
    existing_event: NotificationEvent | None = None
    source: str | None = None
    content_conflict: bool = False
    degraded: bool = False


class StatusChange(BaseModel):
    """A terminal status applied to the fast tier, pending its durable write."""

    event_id: str
    status: EventStatus
    error: str | None = None
    at: datetime
    attempts: int | None = None


class _CacheEntry:
    """Fast-tier slot. Pending while its owner is still consulting the durable tier."""

    __slots__ = ("event", "source", "ready")

    def __init__(self, event: NotificationEvent, *, pending: bool) -> None:
        self.event = event
        self.source = FAST_CACHE
        self.ready = asyncio.Event()
        if not pending:
            self.ready.set()

    @property
    def pending(self) -> bool:
        return not self.ready.is_set()


class DedupStore:
    """Fingerprint-keyed dedup cache with durable fallback.

    Args:
        config: Window and retention settings.
        repository: Durable event store. ``None`` (or
            ``persistent_storage_enabled=False``) keeps dedup in-process only.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        config: DedupConfig | None = None,
        repository: EventRepository | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or DedupConfig()
        self._repository = repository
        self._clock = clock
        self._by_fingerprint: dict[str, _CacheEntry] = {}
        self._by_id: dict[str, _CacheEntry] = {}
        self._lock = asyncio.Lock()

    @property
    def config(self) -> DedupConfig:
        return self._config

    @property
    def durable_enabled(self) -> bool:
        return self._repository is not None and self._config.persistent_storage_enabled

    def resolve_window(self, event_type: str) -> int:
        return self._config.window_for(event_type)

    # ------------------------------------------------------------------
    # Admission path
    # ------------------------------------------------------------------

    async def check_and_reserve(self, candidate: NotificationEvent) -> Reservation:
        """Reserve ``candidate``'s fingerprint unless a live event already holds it.

        ``candidate`` must carry its fingerprint, content hash and frozen
        ``dedup_window_ms``. On success the candidate itself becomes the
        fast-tier entry for its fingerprint.
        """
        fingerprint = candidate.fingerprint
        while True:
            async with self._lock:
                entry = self._by_fingerprint.get(fingerprint)
                if entry is None or (
                    not entry.pending and not entry.event.is_within_window(self._clock())
                ):
                    owned = _CacheEntry(candidate, pending=True)
                    self._by_fingerprint[fingerprint] = owned
                    self._by_id[candidate.id] = owned
                    break
            if entry.pending:
                await entry.ready.wait()
                continue
            return self._duplicate_of(entry, candidate)

        return await self._settle(owned, candidate)

    async def _settle(self, entry: _CacheEntry, candidate: NotificationEvent) -> Reservation:
        settled = False
        try:
            existing: NotificationEvent | None = None
            degraded = False
            if self.durable_enabled:
                window_start = candidate.created_at - timedelta(
                    milliseconds=candidate.dedup_window_ms
                )
                try:
                    existing = await self._repository.find_by_fingerprint_within_window(  # type: ignore[union-attr]
                        candidate.fingerprint, window_start
                    )
                except Exception:
                    degraded = True
                    logger.warning(
                        "Durable dedup lookup failed for %s %s -> %s; degraded mode, allowing",
                        candidate.event_type,
                        candidate.entity_id,
                        candidate.recipient_id,
                        exc_info=True,
                    )

            async with self._lock:
                if existing is not None:
                    if existing.dedup_window_ms <= 0:
                        existing.dedup_window_ms = candidate.dedup_window_ms
                    self._by_id.pop(candidate.id, None)
                    entry.event = existing
                    entry.source = PERSISTENT
                    self._by_id[existing.id] = entry
                entry.ready.set()
            settled = True
        finally:
            if not settled:
                self._release(entry)

        if existing is not None:
            return self._duplicate_of(entry, candidate)
        return Reservation(reserved=True, degraded=degraded)

    def _release(self, entry: _CacheEntry) -> None:
        # No awaits here: this must complete even while the owner is being cancelled.
        event = entry.event
        if self._by_fingerprint.get(event.fingerprint) is entry:
            del self._by_fingerprint[event.fingerprint]
        if self._by_id.get(event.id) is entry:
            del self._by_id[event.id]
        entry.ready.set()

    @staticmethod
    def _duplicate_of(entry: _CacheEntry, candidate: NotificationEvent) -> Reservation:
        return Reservation(
            reserved=False,
            existing_event=entry.event,
            source=entry.source,
            content_conflict=entry.event.content_hash != candidate.content_hash,
        )

    async def persist(self, event: NotificationEvent) -> bool:
        """Write a newly admitted event to the durable tier. Best-effort."""
        if not self.durable_enabled:
            return True
        try:
            await self._repository.create(event)  # type: ignore[union-attr]
        except Exception:
            logger.warning(
                "Could not persist event %s to the durable store; degraded mode",
                event.id,
                exc_info=True,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Status tracking
    # ------------------------------------------------------------------

    async def mark_sent(self, event_id: str) -> None:
        await self.write_status(self.apply_status(event_id, EventStatus.SENT, None))

    async def mark_failed(self, event_id: str, error_summary: str) -> None:
        await self.write_status(self.apply_status(event_id, EventStatus.FAILED, error_summary))

    def apply_status(
        self, event_id: str, status: EventStatus, error: str | None
    ) -> StatusChange | None:
        """Move the cached event to ``status`` without awaiting.

        Returns the change still to be written to the durable tier, or
        ``None`` when the cached event is already terminal.
        """
        change = StatusChange(
            event_id=event_id,
            status=status,
            error=error,
            at=datetime.fromtimestamp(self._clock(), timezone.utc),
        )
        entry = self._by_id.get(event_id)
        if entry is None:
            return change
        event = entry.event
        if event.status.is_terminal:
            logger.debug("Ignoring %s for event %s already %s", status, event_id, event.status)
            return None
        event.status = status
        event.delivery_attempts += 1
        event.last_attempt_at = change.at
        event.error_message = error
        change.attempts = event.delivery_attempts
        return change

    async def write_status(self, change: StatusChange | None) -> None:
        """Record a status change applied by ``apply_status`` in the durable tier."""
        if change is None or not self.durable_enabled:
            return
        try:
            attempts = change.attempts
            if attempts is None:
                stored = await self._repository.get(change.event_id)  # type: ignore[union-attr]
                attempts = (stored.delivery_attempts if stored else 0) + 1
            fields: dict[str, Any] = {
                "status": change.status,
                "delivery_attempts": attempts,
                "last_attempt_at": change.at,
                "error_message": change.error,
            }
            await self._repository.update(change.event_id, fields)  # type: ignore[union-attr]
        except Exception:
            logger.exception(
                "Failed to record %s status for event %s", change.status, change.event_id
            )

    # ------------------------------------------------------------------
    # Lookup, eviction and stats
    # ------------------------------------------------------------------

    async def get_event(self, event_id: str) -> NotificationEvent | None:
        entry = self._by_id.get(event_id)
        if entry is not None:
            return entry.event
        if not self.durable_enabled:
            return None
        try:
            return await self._repository.get(event_id)  # type: ignore[union-attr]
        except Exception:
            logger.warning("Durable lookup of event %s failed", event_id, exc_info=True)
            return None

    async def evict_expired(self, now: float | None = None) -> int:
        """Drop fast-tier entries older than ``max_history_age_ms``.

        Pending reservations are never evicted.
        """
        now = self._clock() if now is None else now
        cutoff = now - self._config.max_history_age_ms / 1000
        async with self._lock:
            expired = [
                event_id
                for event_id, entry in self._by_id.items()
                if not entry.pending and entry.event.created_at.timestamp() < cutoff
            ]
            for event_id in expired:
                entry = self._by_id.pop(event_id)
                if self._by_fingerprint.get(entry.event.fingerprint) is entry:
                    del self._by_fingerprint[entry.event.fingerprint]
        if expired:
            logger.info("Evicted %d expired notification events from the fast tier", len(expired))
        return len(expired)

    def clear(self) -> None:
        for entry in self._by_id.values():
            entry.ready.set()
        self._by_fingerprint.clear()
        self._by_id.clear()

    @property
    def memory_cache_size(self) -> int:
        return len(self._by_id)

    def stats(self) -> dict[str, int]:
        return {
            "memory_cache_size": self.memory_cache_size,
            "pending_reservations": sum(1 for e in self._by_id.values() if e.pending),
        }
