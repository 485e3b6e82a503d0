"""Admission control: rate limit, then dedup, then event creation."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable

from fieldalert.core.types import BlockReason
from fieldalert.notifications.dedup import FAST_CACHE, PERSISTENT, DedupStore
from fieldalert.notifications.fingerprint import content_hash, fingerprint
from fieldalert.notifications.models import Decision, NotificationEvent, NotificationRequest
from fieldalert.notifications.ratelimit import RateLimiter
from fieldalert.notifications.tracker import StatusTracker

logger = logging.getLogger(__name__)


class DecisionEngine:
    """Single admission entry point for every notification source.

    The rate check runs before the dedup reservation so a request rejected
    for its rate never occupies a dedup slot; a later request with the same
    fingerprint is then evaluated as first-seen.
    """

    def __init__(
        self,
        dedup_store: DedupStore,
        rate_limiter: RateLimiter,
        tracker: StatusTracker,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = dedup_store
        self._limiter = rate_limiter
        self._tracker = tracker
        self._clock = clock

    async def decide(self, request: NotificationRequest) -> Decision:
        decision = await self._decide(request)
        self._tracker.record_decision(decision)
        return decision

    async def _decide(self, request: NotificationRequest) -> Decision:
        if not (request.event_type and request.entity_id and request.recipient_id):
            logger.warning(
                "Malformed notification request from %r: event_type=%r entity_id=%r recipient_id=%r",
                request.source,
                request.event_type,
                request.entity_id,
                request.recipient_id,
            )

        fp = fingerprint(request.event_type, request.entity_id, request.recipient_id)
        digest = content_hash(request.content.title, request.content.body, request.content.data)

        rate = self._limiter.check_rate_limit(
            request.recipient_id,
            event_type=request.event_type,
            priority=request.priority,
        )
        if not rate.allowed:
            return Decision(
                allowed=False,
                reason=f"{BlockReason.RATE_LIMITED.value}: {rate.reason}",
                block_reason=BlockReason.RATE_LIMITED,
                fingerprint=fp,
                content_hash=digest,
                rate_limit=rate,
            )

        candidate = NotificationEvent(
            event_type=request.event_type,
            entity_id=request.entity_id,
            recipient_id=request.recipient_id,
            fingerprint=fp,
            content_hash=digest,
            content=request.content.model_copy(deep=True),
            source=request.source,
            priority=request.priority,
            metadata=dict(request.metadata),
            created_at=datetime.fromtimestamp(self._clock(), timezone.utc),
            dedup_window_ms=self._store.resolve_window(request.event_type),
        )

        reservation = await self._store.check_and_reserve(candidate)
        if not reservation.reserved:
            existing = reservation.existing_event
            if existing is None:
                raise RuntimeError(
                    f"Dedup store refused {candidate.id} without naming the holding event"
                )
            if reservation.source == PERSISTENT:
                block = BlockReason.DUPLICATE_PERSISTENT
            elif reservation.content_conflict:
                block = BlockReason.DUPLICATE_CONTENT
            else:
                block = BlockReason.DUPLICATE_FAST_CACHE
            conflicting = digest if reservation.content_conflict else None
            if conflicting is not None:
                logger.warning(
                    "Content changed for duplicate %s of %s (%s != %s)",
                    request.event_type,
                    request.entity_id,
                    digest[:12],
                    existing.content_hash[:12],
                )
            else:
                logger.debug(
                    "Duplicate %s for %s blocked (%s), original %s",
                    request.event_type,
                    request.entity_id,
                    reservation.source or FAST_CACHE,
                    existing.id,
                )
            return Decision(
                allowed=False,
                reason=block.value,
                block_reason=block,
                duplicate_id=existing.id,
                fingerprint=fp,
                content_hash=digest,
                conflicting_content_hash=conflicting,
                rate_limit=rate,
            )

        persisted = await self._store.persist(candidate)
        logger.info(
            "Notification admitted: %s for %s -> %s (event %s)",
            request.event_type,
            request.entity_id,
            request.recipient_id,
            candidate.id,
        )
        return Decision(
            allowed=True,
            event=candidate,
            fingerprint=fp,
            content_hash=digest,
            degraded=reservation.degraded or not persisted,
            rate_limit=rate,
        )
