"""Recipient directory data models."""

from __future__ import annotations

from pydantic import BaseModel, Field

from fieldalert.core.types import Priority, RecipientRole


class ChannelPreference(BaseModel):
    enabled: bool = True
    addresses: list[str] = Field(default_factory=list)


class RecipientProfile(BaseModel):
    """Delivery preferences and channel addresses for one recipient.

    An empty ``enabled_event_types`` means every event type is wanted.
    """

    recipient_id: str
    name: str = ""
    role: RecipientRole = RecipientRole.STAFF
    channels: dict[str, ChannelPreference] = Field(default_factory=dict)
    enabled_event_types: list[str] = Field(default_factory=list)
    urgent_only: bool = False

    def wants(self, event_type: str, priority: Priority) -> bool:
        if self.urgent_only and priority is not Priority.URGENT:
            return False
        if self.enabled_event_types and event_type not in self.enabled_event_types:
            return False
        return True

    def addresses_for(self, channel: str) -> list[str]:
        """Addresses registered for ``channel``; empty when disabled or unset."""
        preference = self.channels.get(channel)
        if preference is None or not preference.enabled:
            return []
        return [address for address in preference.addresses if address]
