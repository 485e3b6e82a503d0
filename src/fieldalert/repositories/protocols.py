"""Protocol definitions for the collaborators the engine consumes.

The in-memory implementations and the SQL implementation satisfy the same
async interface, so the dedup store never needs to know which one it has.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from fieldalert.core.types import RecipientRole
from fieldalert.directory.models import RecipientProfile
from fieldalert.notifications.models import NotificationEvent


@runtime_checkable
class EventRepository(Protocol):
    """Protocol for the durable notification event store."""

    async def find_by_fingerprint_within_window(
        self, fingerprint: str, window_start: datetime
    ) -> NotificationEvent | None: ...

    async def create(self, event: NotificationEvent) -> NotificationEvent: ...

    async def update(self, event_id: str, fields: dict[str, Any]) -> bool: ...

    async def get(self, event_id: str) -> NotificationEvent | None: ...


@runtime_checkable
class RecipientDirectory(Protocol):
    """Protocol for recipient preference and channel address lookup."""

    async def get_profile(self, recipient_id: str) -> RecipientProfile: ...

    async def list_recipients(
        self, roles: list[RecipientRole] | None = None
    ) -> list[RecipientProfile]: ...
