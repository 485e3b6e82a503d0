"""Notification data models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from fieldalert.core.types import BlockReason, EventStatus, Priority


def generate_event_id() -> str:
    return f"notif_{uuid.uuid4().hex}"


class NotificationContent(BaseModel):
    title: str = ""
    body: str = ""
    data: dict[str, Any] = Field(default_factory=dict)


class NotificationRequest(BaseModel):
    """A caller's request to notify one recipient about one event."""

    event_type: str = ""
    entity_id: str = ""
    recipient_id: str = ""
    content: NotificationContent = Field(default_factory=NotificationContent)
    source: str = ""
    priority: Priority = Priority.NORMAL
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotificationEvent(BaseModel):
    """An admitted notification, persisted in both dedup tiers."""

    id: str = Field(default_factory=generate_event_id)
    event_type: str = ""
    entity_id: str = ""
    recipient_id: str = ""
    fingerprint: str = ""
    content_hash: str = ""
    content: NotificationContent = Field(default_factory=NotificationContent)
    source: str = ""
    priority: Priority = Priority.NORMAL
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: EventStatus = EventStatus.PENDING
    dedup_window_ms: int = 0
    delivery_attempts: int = 0
    last_attempt_at: datetime | None = None
    error_message: str | None = None

    def is_within_window(self, now: float) -> bool:
        """Whether ``now`` (epoch seconds) falls inside this event's frozen dedup window."""
        elapsed_ms = (now - self.created_at.timestamp()) * 1000
        return elapsed_ms < self.dedup_window_ms


class RateLimitResult(BaseModel):
    """Outcome of a rate limit check.

    ``reset_time`` is the epoch second at which the most constrained window
    resets; ``retry_after`` is only set when the request was blocked.
    """

    allowed: bool
    current_count: int = 0
    limit: int = 0
    reset_time: float = 0.0
    retry_after: float | None = None
    scope: str = ""
    reason: str | None = None


class Decision(BaseModel):
    """Admission verdict for a single NotificationRequest."""

    allowed: bool
    reason: str | None = None
    block_reason: BlockReason | None = None
    duplicate_id: str | None = None
    event: NotificationEvent | None = None
    fingerprint: str = ""
    content_hash: str = ""
    conflicting_content_hash: str | None = None
    degraded: bool = False
    rate_limit: RateLimitResult | None = None


class ChannelOutcome(BaseModel):
    success: int = 0
    failed: int = 0
    skipped: int = 0


class DeliveryResult(BaseModel):
    """Per-channel outcome of delivering one event to one recipient."""

    event_id: str
    recipient_id: str
    per_channel: dict[str, ChannelOutcome] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return any(outcome.success > 0 for outcome in self.per_channel.values())

    def channel(self, name: str) -> ChannelOutcome:
        return self.per_channel.setdefault(name, ChannelOutcome())


class NotifyResult(BaseModel):
    """Combined result of ``decide`` followed, when allowed, by ``dispatch``."""

    decision: Decision
    delivery: DeliveryResult | None = None

    @property
    def admitted(self) -> bool:
        return self.decision.allowed


class ServiceStats(BaseModel):
    memory_cache_size: int = 0
    recent_blocked_count: int = 0
    total_processed_count: int = 0
    blocked_by_reason: dict[str, int] = Field(default_factory=dict)
    degraded_count: int = 0
    pending_status_writes: int = 0
