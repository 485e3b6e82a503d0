"""Tests for admission decisions: rate limiting, dedup and stats."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from fieldalert.core.config import DedupConfig, RateLimitConfig, RateLimitScope
from fieldalert.core.types import BlockReason, EventStatus
from fieldalert.notifications.dedup import DedupStore, Reservation
from fieldalert.notifications.engine import DecisionEngine
from fieldalert.notifications.fingerprint import content_hash
from fieldalert.notifications.ratelimit import RateLimiter
from fieldalert.notifications.store import InMemoryEventRepository
from fieldalert.notifications.tracker import StatusTracker

from conftest import FakeClock


class SlowRepository(InMemoryEventRepository):
    async def find_by_fingerprint_within_window(self, fingerprint, window_start):
        await asyncio.sleep(0.01)
        return await super().find_by_fingerprint_within_window(fingerprint, window_start)


def build_engine(
    clock: FakeClock,
    *,
    repository=None,
    dedup: DedupConfig | None = None,
    rate: RateLimitConfig | None = None,
) -> tuple[DecisionEngine, StatusTracker, RateLimiter, DedupStore]:
    store = DedupStore(dedup or DedupConfig(), repository or InMemoryEventRepository(), clock=clock)
    limiter = RateLimiter(rate or RateLimitConfig(), clock=clock)
    tracker = StatusTracker(store, clock=clock)
    return DecisionEngine(store, limiter, tracker, clock=clock), tracker, limiter, store


async def test_first_request_allowed_and_persisted(clock, make_request) -> None:
    repository = InMemoryEventRepository()
    engine, *_ = build_engine(clock, repository=repository)
    decision = await engine.decide(make_request())
    assert decision.allowed
    assert decision.event is not None
    assert decision.event.status == EventStatus.PENDING
    assert decision.event.dedup_window_ms == 60_000
    assert repository.count == 1


async def test_identical_request_is_idempotent(clock, make_request) -> None:
    engine, *_ = build_engine(clock)
    first = await engine.decide(make_request())
    second = await engine.decide(make_request())
    assert not second.allowed
    assert second.reason == "duplicate: fast-cache"
    assert second.block_reason is BlockReason.DUPLICATE_FAST_CACHE
    assert second.duplicate_id == first.event.id
    assert second.event is None


async def test_concurrent_identical_requests_admit_one(clock, make_request) -> None:
    rate = RateLimitConfig(
        rate_limits={"per-minute": RateLimitScope(limit=100, window_ms=60_000)},
        event_type_rate_limits={},
    )
    engine, *_ = build_engine(clock, repository=SlowRepository(), rate=rate)
    decisions = await asyncio.gather(*(engine.decide(make_request()) for _ in range(10)))
    allowed = [d for d in decisions if d.allowed]
    assert len(allowed) == 1
    assert all(d.duplicate_id == allowed[0].event.id for d in decisions if not d.allowed)


async def test_window_expiry(clock, make_request) -> None:
    engine, *_ = build_engine(
        clock, dedup=DedupConfig(default_window_ms=100, event_type_windows_ms={})
    )
    assert (await engine.decide(make_request())).allowed
    clock.advance(ms=50)
    assert not (await engine.decide(make_request())).allowed
    clock.advance(ms=100)
    assert (await engine.decide(make_request())).allowed


async def test_event_type_window_override(clock, make_request) -> None:
    engine, *_ = build_engine(
        clock,
        dedup=DedupConfig(default_window_ms=100, event_type_windows_ms={"emergency": 1000}),
    )
    await engine.decide(make_request(event_type="emergency"))
    await engine.decide(make_request(event_type="other"))
    clock.advance(ms=500)
    assert not (await engine.decide(make_request(event_type="emergency"))).allowed
    assert (await engine.decide(make_request(event_type="other"))).allowed


async def test_configured_window_blocks_within_it(clock, make_request) -> None:
    engine, *_ = build_engine(
        clock,
        dedup=DedupConfig(default_window_ms=30_000, event_type_windows_ms={"emergency": 5000}),
    )
    await engine.decide(make_request(event_type="emergency"))
    await engine.decide(make_request(event_type="unconfigured"))
    clock.advance(ms=2000)
    assert not (await engine.decide(make_request(event_type="emergency"))).allowed
    assert not (await engine.decide(make_request(event_type="unconfigured"))).allowed


async def test_shorter_override_uses_its_own_window(clock, make_request) -> None:
    engine, *_ = build_engine(
        clock,
        dedup=DedupConfig(default_window_ms=30_000, event_type_windows_ms={"fast": 1000}),
    )
    first = await engine.decide(make_request(event_type="fast"))
    assert first.event.dedup_window_ms == 1000
    await engine.decide(make_request(event_type="unconfigured"))
    clock.advance(ms=2000)
    assert (await engine.decide(make_request(event_type="fast"))).allowed
    assert not (await engine.decide(make_request(event_type="unconfigured"))).allowed


async def test_content_change_blocked_as_content_duplicate(clock, make_request) -> None:
    engine, *_ = build_engine(clock)
    first = await engine.decide(make_request(body="Pool cleaning at 10:00"))
    second = await engine.decide(make_request(body="Pool cleaning at 11:00"))
    assert not second.allowed
    assert second.reason == "duplicate: content"
    assert second.duplicate_id == first.event.id
    assert second.conflicting_content_hash == content_hash(
        "New Job Assignment", "Pool cleaning at 11:00"
    )


async def test_source_and_metadata_do_not_affect_dedup(clock, make_request) -> None:
    engine, *_ = build_engine(clock)
    await engine.decide(make_request(source="api", metadata={"a": 1}))
    decision = await engine.decide(make_request(source="cron", metadata={"a": 2}))
    assert decision.reason == "duplicate: fast-cache"


async def test_rate_limited_request_leaves_no_dedup_slot(clock, make_request) -> None:
    rate = RateLimitConfig(
        rate_limits={"per-minute": RateLimitScope(limit=1, window_ms=60_000)},
        event_type_rate_limits={},
    )
    engine, _, limiter, store = build_engine(clock, rate=rate)
    assert (await engine.decide(make_request(entity_id="job-1"))).allowed

    blocked = await engine.decide(make_request(entity_id="job-2"))
    assert not blocked.allowed
    assert blocked.block_reason is BlockReason.RATE_LIMITED
    assert blocked.reason.startswith("rate limited: ")
    assert blocked.rate_limit.retry_after is not None
    assert store.memory_cache_size == 1

    limiter.reset("staff-001")
    assert (await engine.decide(make_request(entity_id="job-2"))).allowed


async def test_duplicates_still_consume_rate_budget(clock, make_request) -> None:
    rate = RateLimitConfig(
        rate_limits={"per-minute": RateLimitScope(limit=2, window_ms=60_000)},
        event_type_rate_limits={},
    )
    engine, *_ = build_engine(clock, rate=rate)
    await engine.decide(make_request())
    assert (await engine.decide(make_request())).reason == "duplicate: fast-cache"
    third = await engine.decide(make_request())
    assert third.block_reason is BlockReason.RATE_LIMITED


async def test_degraded_mode_allows(clock, make_request) -> None:
    repository = MagicMock()
    repository.find_by_fingerprint_within_window = AsyncMock(side_effect=TimeoutError())
    repository.create = AsyncMock(side_effect=TimeoutError())
    engine, tracker, *_ = build_engine(clock, repository=repository)
    decision = await engine.decide(make_request())
    assert decision.allowed
    assert decision.degraded
    assert tracker.stats().degraded_count == 1
    # The fast tier still dedups while the durable tier is down.
    assert not (await engine.decide(make_request())).allowed


async def test_malformed_request_processed_with_warning(clock, make_request, caplog) -> None:
    engine, *_ = build_engine(clock)
    decision = await engine.decide(make_request(recipient_id=""))
    assert decision.allowed
    assert "Malformed notification request" in caplog.text


async def test_stats_accounting(clock, make_request) -> None:
    engine, tracker, *_ = build_engine(clock)
    for i in range(3):
        await engine.decide(make_request(entity_id=f"job-{i}"))
    for _ in range(2):
        await engine.decide(make_request(entity_id="job-0"))

    stats = tracker.stats()
    assert stats.total_processed_count == 5
    assert stats.recent_blocked_count == 2
    assert stats.blocked_by_reason == {"duplicate: fast-cache": 2}
    assert stats.memory_cache_size == 3


async def test_recent_blocked_pruned_after_retention(clock, make_request) -> None:
    engine, tracker, *_ = build_engine(clock, dedup=DedupConfig(max_history_age_ms=1000))
    await engine.decide(make_request())
    await engine.decide(make_request())
    assert tracker.stats().recent_blocked_count == 1
    clock.advance(seconds=2)
    stats = tracker.stats()
    assert stats.recent_blocked_count == 0
    assert stats.total_processed_count == 2


async def test_refusal_without_holder_raises(clock, make_request) -> None:
    engine, _, _, store = build_engine(clock)
    store.check_and_reserve = AsyncMock(return_value=Reservation(reserved=False))
    with pytest.raises(RuntimeError, match="without naming the holding event"):
        await engine.decide(make_request())
