"""In-memory durable-tier stand-in for notification events."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fieldalert.notifications.models import NotificationEvent


class InMemoryEventRepository:
    """In-memory store satisfying the EventRepository protocol.

    Used when no database URL is configured, and in tests. Writes are
    idempotent by event id and status never leaves a terminal state.
    """

    def __init__(self) -> None:
        self._events: dict[str, NotificationEvent] = {}

    async def find_by_fingerprint_within_window(
        self, fingerprint: str, window_start: datetime
    ) -> NotificationEvent | None:
        matches = [
            e for e in self._events.values()
            if e.fingerprint == fingerprint and e.created_at > window_start
        ]
        if not matches:
            return None
        return max(matches, key=lambda e: e.created_at).model_copy(deep=True)

    async def create(self, event: NotificationEvent) -> NotificationEvent:
        if event.id not in self._events:
            self._events[event.id] = event.model_copy(deep=True)
        return event

    async def update(self, event_id: str, fields: dict[str, Any]) -> bool:
        stored = self._events.get(event_id)
        if stored is None:
            return False
        if "status" in fields and stored.status.is_terminal:
            return False
        self._events[event_id] = stored.model_copy(update=fields)
        return True

    async def get(self, event_id: str) -> NotificationEvent | None:
        stored = self._events.get(event_id)
        return stored.model_copy(deep=True) if stored else None

    @property
    def count(self) -> int:
        return len(self._events)
