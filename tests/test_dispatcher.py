"""Tests for multi-channel delivery."""

from __future__ import annotations

import asyncio

import pytest

from fieldalert.channels.base import BaseChannelTransport
from fieldalert.channels.mock import MockTransport
from fieldalert.channels.models import SendOutcome
from fieldalert.channels.realtime import RealtimeTransport
from fieldalert.channels.registry import ChannelRegistry
from fieldalert.core.config import DedupConfig
from fieldalert.core.errors import EventStateError, RecipientNotFoundError
from fieldalert.core.types import EventStatus, Priority
from fieldalert.directory.models import ChannelPreference
from fieldalert.notifications.dedup import DedupStore
from fieldalert.notifications.dispatcher import Dispatcher
from fieldalert.notifications.engine import DecisionEngine
from fieldalert.notifications.ratelimit import RateLimiter
from fieldalert.notifications.store import InMemoryEventRepository
from fieldalert.notifications.tracker import StatusTracker

from conftest import staff_profile


class HangingTransport(BaseChannelTransport):
    def __init__(self) -> None:
        super().__init__("push", max_retries=0)

    async def _do_send(self, address, payload) -> SendOutcome:
        await asyncio.sleep(10)
        return SendOutcome(success=True)


@pytest.fixture
async def parts(clock, directory, registry):
    repository = InMemoryEventRepository()
    store = DedupStore(DedupConfig(), repository, clock=clock)
    tracker = StatusTracker(store, clock=clock)
    engine = DecisionEngine(store, RateLimiter(clock=clock), tracker, clock=clock)
    dispatcher = Dispatcher(registry, directory, tracker, timeout_seconds=1.0)
    yield engine, dispatcher, tracker, repository
    await tracker.drain()


async def _admit(engine, make_request, **kwargs):
    decision = await engine.decide(make_request(**kwargs))
    assert decision.allowed
    return decision.event


async def test_delivers_on_every_channel(parts, make_request, push, realtime) -> None:
    engine, dispatcher, tracker, repository = parts
    event = await _admit(engine, make_request)
    result = await dispatcher.dispatch(event, "staff-001")
    await tracker.drain()

    assert result.per_channel["push"].success == 1
    assert result.per_channel["realtime"].success == 1
    assert result.errors == []
    assert push.sent[0][0] == "ExponentPushToken[staff-001]"
    assert realtime.manager.backlog("staff-001")[0]["data"]["event_id"] == event.id
    stored = await repository.get(event.id)
    assert stored.status == EventStatus.SENT
    assert stored.delivery_attempts == 1


async def test_channel_failure_is_isolated(parts, make_request, push) -> None:
    engine, dispatcher, tracker, _ = parts
    push.raise_addresses.add("ExponentPushToken[staff-001]")
    event = await _admit(engine, make_request)
    result = await dispatcher.dispatch(event, "staff-001")
    await tracker.drain()

    assert result.per_channel["push"].failed == 1
    assert result.per_channel["realtime"].success == 1
    assert "ConnectionError" in result.errors[0]
    assert event.status == EventStatus.SENT


async def test_all_channels_failing_marks_failed(clock, directory, make_request) -> None:
    registry = ChannelRegistry()
    registry.register(MockTransport("push", fail_addresses={"ExponentPushToken[staff-001]"}))
    registry.register(MockTransport("realtime", raise_addresses={"staff-001"}))
    repository = InMemoryEventRepository()
    store = DedupStore(DedupConfig(), repository, clock=clock)
    tracker = StatusTracker(store, clock=clock)
    engine = DecisionEngine(store, RateLimiter(clock=clock), tracker, clock=clock)
    dispatcher = Dispatcher(registry, directory, tracker)

    event = await _admit(engine, make_request)
    result = await dispatcher.dispatch(event, "staff-001")
    await tracker.drain()

    assert not result.delivered
    stored = await repository.get(event.id)
    assert stored.status == EventStatus.FAILED
    assert stored.error_message.startswith("All channels failed")


async def test_timeout_recorded_as_failure(clock, directory, make_request) -> None:
    registry = ChannelRegistry()
    registry.register(HangingTransport())
    registry.register(RealtimeTransport())
    store = DedupStore(DedupConfig(), InMemoryEventRepository(), clock=clock)
    tracker = StatusTracker(store, clock=clock)
    engine = DecisionEngine(store, RateLimiter(clock=clock), tracker, clock=clock)
    dispatcher = Dispatcher(registry, directory, tracker, timeout_seconds=0.05)

    event = await _admit(engine, make_request)
    result = await dispatcher.dispatch(event, "staff-001")
    assert result.per_channel["push"].failed == 1
    assert "timed out" in result.errors[0]
    assert result.per_channel["realtime"].success == 1
    await tracker.drain()


async def test_missing_address_counts_as_skipped(parts, make_request, directory) -> None:
    engine, dispatcher, *_ = parts
    directory.add(
        staff_profile("staff-003", channels={"realtime": ChannelPreference(addresses=["staff-003"])})
    )
    event = await _admit(engine, make_request, recipient_id="staff-003")
    result = await dispatcher.dispatch(event, "staff-003")
    assert result.per_channel["push"].skipped == 1
    assert result.per_channel["realtime"].success == 1


async def test_disabled_channel_preference_skipped(parts, make_request, directory, push) -> None:
    engine, dispatcher, *_ = parts
    directory.add(
        staff_profile(
            "staff-004",
            channels={
                "push": ChannelPreference(enabled=False, addresses=["ExponentPushToken[x]"]),
                "realtime": ChannelPreference(addresses=["staff-004"]),
            },
        )
    )
    event = await _admit(engine, make_request, recipient_id="staff-004")
    result = await dispatcher.dispatch(event, "staff-004")
    assert result.per_channel["push"].skipped == 1
    assert push.sent == []


async def test_each_address_counted(parts, make_request, directory, push) -> None:
    engine, dispatcher, *_ = parts
    directory.add(
        staff_profile(
            "staff-005",
            channels={"push": ChannelPreference(addresses=["tok-phone", "tok-tablet"])},
        )
    )
    push.fail_addresses.add("tok-tablet")
    event = await _admit(engine, make_request, recipient_id="staff-005")
    result = await dispatcher.dispatch(event, "staff-005")
    assert result.per_channel["push"].success == 1
    assert result.per_channel["push"].failed == 1


async def test_preferences_suppress_delivery(parts, make_request, directory, push) -> None:
    engine, dispatcher, tracker, repository = parts
    directory.add(staff_profile("staff-006", urgent_only=True))
    event = await _admit(engine, make_request, recipient_id="staff-006")
    result = await dispatcher.dispatch(event, "staff-006")
    await tracker.drain()

    assert not result.delivered
    assert push.sent == []
    assert (await repository.get(event.id)).status == EventStatus.FAILED

    urgent = await _admit(engine, make_request, recipient_id="staff-006", entity_id="job-9", priority=Priority.URGENT)
    assert (await dispatcher.dispatch(urgent, "staff-006")).delivered


async def test_non_pending_event_rejected(parts, make_request) -> None:
    engine, dispatcher, tracker, _ = parts
    event = await _admit(engine, make_request)
    await dispatcher.dispatch(event, "staff-001")
    await tracker.drain()
    with pytest.raises(EventStateError):
        await dispatcher.dispatch(event, "staff-001")


async def test_unknown_recipient_raises(parts, make_request) -> None:
    engine, dispatcher, *_ = parts
    event = await _admit(engine, make_request, recipient_id="ghost")
    with pytest.raises(RecipientNotFoundError):
        await dispatcher.dispatch(event, "ghost")


async def test_back_to_back_dispatch_delivers_once(parts, make_request, push) -> None:
    engine, dispatcher, tracker, repository = parts
    event = await _admit(engine, make_request)
    await dispatcher.dispatch(event, "staff-001")
    assert event.status == EventStatus.SENT
    with pytest.raises(EventStateError):
        await dispatcher.dispatch(event, "staff-001")
    await tracker.drain()

    assert len(push.sent) == 1
    assert (await repository.get(event.id)).delivery_attempts == 1


async def test_stale_copy_rejected_until_status_written(parts, make_request, push) -> None:
    engine, dispatcher, tracker, _ = parts
    event = await _admit(engine, make_request)
    stale = event.model_copy(deep=True)
    await dispatcher.dispatch(event, "staff-001")
    with pytest.raises(EventStateError, match="already being dispatched"):
        await dispatcher.dispatch(stale, "staff-001")
    await tracker.drain()
    assert len(push.sent) == 1
