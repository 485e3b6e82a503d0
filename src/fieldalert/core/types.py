"""Core type definitions shared across all FieldAlert modules."""

from __future__ import annotations

from enum import StrEnum

class Priority(StrEnum):
    """Notification priority as supplied by the caller."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class EventStatus(StrEnum):
    """Delivery status of a notification event. Moves out of PENDING once."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not EventStatus.PENDING


class BlockReason(StrEnum):
    """Why an admission decision did not allow a notification."""

    RATE_LIMITED = "rate limited"
    DUPLICATE_FAST_CACHE = "duplicate: fast-cache"
    DUPLICATE_CONTENT = "duplicate: content"
    DUPLICATE_PERSISTENT = "duplicate: persistent"


class RecipientRole(StrEnum):
    """Directory roles of notification recipients."""

    STAFF = "staff"
    ADMIN = "admin"
    MANAGER = "manager"

