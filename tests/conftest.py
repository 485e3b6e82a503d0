"""Shared test fixtures and helpers."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from fieldalert.channels.mock import MockTransport
from fieldalert.channels.realtime import RealtimeTransport
from fieldalert.channels.registry import ChannelRegistry
from fieldalert.core.config import Settings
from fieldalert.core.types import RecipientRole
from fieldalert.directory.models import ChannelPreference, RecipientProfile
from fieldalert.directory.service import InMemoryRecipientDirectory
from fieldalert.notifications.models import NotificationContent, NotificationRequest
from fieldalert.notifications.service import NotificationService, create_notification_service
from fieldalert.notifications.store import InMemoryEventRepository

# Aligned to minute and hour boundaries so fixed windows start fresh.
EPOCH = 1_800_000_000.0


class FakeClock:
    """Injectable epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = EPOCH) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float = 0, seconds: float = 0) -> None:
        self.now += seconds + ms / 1000


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_request() -> Callable[..., NotificationRequest]:
    def _make(
        event_type: str = "job.assigned",
        entity_id: str = "job-1",
        recipient_id: str = "staff-001",
        title: str = "New Job Assignment",
        body: str = "Pool cleaning at Villa Mango",
        data: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> NotificationRequest:
        return NotificationRequest(
            event_type=event_type,
            entity_id=entity_id,
            recipient_id=recipient_id,
            content=NotificationContent(title=title, body=body, data=data or {}),
            **kwargs,
        )

    return _make


def staff_profile(recipient_id: str = "staff-001", **kwargs: Any) -> RecipientProfile:
    channels = kwargs.pop(
        "channels",
        {
            "push": ChannelPreference(addresses=[f"ExponentPushToken[{recipient_id}]"]),
            "realtime": ChannelPreference(addresses=[recipient_id]),
        },
    )
    return RecipientProfile(recipient_id=recipient_id, name=recipient_id, channels=channels, **kwargs)


@pytest.fixture
def directory() -> InMemoryRecipientDirectory:
    directory = InMemoryRecipientDirectory(load_fixtures=False)
    directory.add(staff_profile("staff-001"))
    directory.add(staff_profile("staff-002"))
    directory.add(staff_profile("admin-001", role=RecipientRole.ADMIN))
    directory.add(staff_profile("manager-001", role=RecipientRole.MANAGER))
    return directory


@pytest.fixture
def push() -> MockTransport:
    return MockTransport("push")


@pytest.fixture
def realtime() -> RealtimeTransport:
    return RealtimeTransport()


@pytest.fixture
def registry(push: MockTransport, realtime: RealtimeTransport) -> ChannelRegistry:
    registry = ChannelRegistry()
    registry.register(push)
    registry.register(realtime)
    return registry


@pytest.fixture
def repository() -> InMemoryEventRepository:
    return InMemoryEventRepository()


@pytest.fixture
async def service(
    clock: FakeClock,
    directory: InMemoryRecipientDirectory,
    registry: ChannelRegistry,
    repository: InMemoryEventRepository,
) -> NotificationService:
    service = create_notification_service(
        Settings(),
        repository=repository,
        directory=directory,
        channels=registry,
        clock=clock,
    )
    yield service
    await service.destroy()
