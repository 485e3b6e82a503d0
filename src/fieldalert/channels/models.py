"""Channel transport data models."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from fieldalert.core.types import Priority
from fieldalert.notifications.models import NotificationEvent


class ConnectionStatus(str, Enum):
    """Transport health status."""

    CONNECTED = "connected"
    DEGRADED = "degraded"


class ChannelPayload(BaseModel):
    """Provider-neutral message handed to every transport."""

    event_id: str
    event_type: str
    entity_id: str
    recipient_id: str
    title: str = ""
    body: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    priority: Priority = Priority.NORMAL

    @classmethod
    def from_event(cls, event: NotificationEvent) -> ChannelPayload:
        return cls(
            event_id=event.id,
            event_type=event.event_type,
            entity_id=event.entity_id,
            recipient_id=event.recipient_id,
            title=event.content.title,
            body=event.content.body,
            data=dict(event.content.data),
            priority=event.priority,
        )


class SendOutcome(BaseModel):
    success: bool
    error: str | None = None
    detail: dict[str, Any] = Field(default_factory=dict)


class TransportSchema(BaseModel):
    name: str
    description: str = ""
    enabled: bool = True
    status: ConnectionStatus = ConnectionStatus.CONNECTED
