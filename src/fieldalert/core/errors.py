"""Hard errors surfaced to callers of the admission and delivery API.

Soft outcomes (rate limits, duplicates, per-channel delivery failures) are
reported through result objects instead.
"""

from __future__ import annotations


class FieldAlertError(Exception):
    """Base class for FieldAlert errors."""


class RecipientNotFoundError(FieldAlertError, KeyError):
    """The recipient directory has no profile for the requested id."""

    def __init__(self, recipient_id: str) -> None:
        super().__init__(recipient_id)
        self.recipient_id = recipient_id

    def __str__(self) -> str:
        return f"Recipient {self.recipient_id!r} not found"


class EventNotFoundError(FieldAlertError, KeyError):
    """No notification event exists with the requested id."""

    def __init__(self, event_id: str) -> None:
        super().__init__(event_id)
        self.event_id = event_id

    def __str__(self) -> str:
        return f"Notification event {self.event_id!r} not found"


class EventStateError(FieldAlertError):
    """The event is not in a state that allows the requested operation."""
