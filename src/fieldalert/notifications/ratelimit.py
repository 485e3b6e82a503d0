"""Fixed-window rate limiting: global, per (recipient, scope) and per (event type, scope).

Windows are aligned to multiples of the scope's length since the epoch, so a
counter resets atomically at the boundary with no carry-over. All counters a
request touches are checked and incremented in one critical section: either
every applicable counter has room and all are incremented, or none is.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from pydantic import BaseModel

from fieldalert.core.config import RateLimitConfig, RateLimitScope
from fieldalert.core.types import Priority
from fieldalert.notifications.models import RateLimitResult

logger = logging.getLogger(__name__)

GLOBAL = "global"
RECIPIENT = "recipient"
EVENT_TYPE = "event type"


class RateLimitRecord(BaseModel):
    """Counter for one fixed window of one scope."""

    kind: str
    key: str
    scope: str
    window_start_ms: int
    window_ms: int
    count: int = 0
    limit: int

    @property
    def reset_time(self) -> float:
        return (self.window_start_ms + self.window_ms) / 1000


class RateLimiter:
    """In-process fixed-window rate limiter.

    Args:
        config: Scope definitions. Urgent requests get every recipient and
            event-type limit scaled by ``config.urgent_multiplier``; global
            limits are never scaled.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or RateLimitConfig()
        self._clock = clock
        self._records: dict[tuple[str, str, str], RateLimitRecord] = {}
        self._lock = threading.Lock()
        self._blocked_count = 0

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def check_rate_limit(
        self,
        recipient_id: str,
        scope: str | None = None,
        *,
        event_type: str = "",
        priority: Priority = Priority.NORMAL,
    ) -> RateLimitResult:
        """Count one request against every applicable scope, or block it.

        With ``scope`` set only that recipient scope is evaluated; otherwise
        the global scopes, all recipient scopes, and any scopes configured
        for ``event_type``, in that order.
        """
        buckets = self._applicable(recipient_id, scope, event_type)
        if not buckets:
            return RateLimitResult(allowed=True)

        now_ms = int(self._clock() * 1000)
        multiplier = self._config.urgent_multiplier if priority is Priority.URGENT else 1.0

        with self._lock:
            records = [
                self._current(kind, key, name, spec, now_ms, 1.0 if kind == GLOBAL else multiplier)
                for kind, key, name, spec in buckets
            ]
            for record in records:
                if record.count >= record.limit:
                    self._blocked_count += 1
                    result = self._blocked(record, now_ms)
                    break
            else:
                for record in records:
                    record.count += 1
                tightest = min(records, key=lambda r: r.limit - r.count)
                return RateLimitResult(
                    allowed=True,
                    current_count=tightest.count,
                    limit=tightest.limit,
                    reset_time=tightest.reset_time,
                    scope=tightest.scope,
                )

        logger.warning("Rate limit exceeded: %s", result.reason)
        return result

    def _applicable(
        self, recipient_id: str, scope: str | None, event_type: str
    ) -> list[tuple[str, str, str, RateLimitScope]]:
        if scope is not None:
            spec = self._config.rate_limits.get(scope)
            if spec is None:
                raise ValueError(f"Unknown rate limit scope {scope!r}")
            return [(RECIPIENT, recipient_id, scope, spec)]

        buckets = [
            (GLOBAL, "requests", name, spec)
            for name, spec in self._config.global_rate_limits.items()
        ]
        for name, spec in self._config.rate_limits.items():
            buckets.append((RECIPIENT, recipient_id, name, spec))
        for name, spec in self._config.event_type_rate_limits.get(event_type, {}).items():
            buckets.append((EVENT_TYPE, event_type, name, spec))
        return buckets

    def _current(
        self,
        kind: str,
        key: str,
        name: str,
        spec: RateLimitScope,
        now_ms: int,
        multiplier: float,
    ) -> RateLimitRecord:
        window_start = now_ms // spec.window_ms * spec.window_ms
        record = self._records.get((kind, key, name))
        if record is None or record.window_start_ms != window_start:
            record = RateLimitRecord(
                kind=kind,
                key=key,
                scope=name,
                window_start_ms=window_start,
                window_ms=spec.window_ms,
                limit=spec.limit,
            )
            self._records[(kind, key, name)] = record
        record.limit = max(1, int(spec.limit * multiplier))
        return record

    @staticmethod
    def _blocked(record: RateLimitRecord, now_ms: int) -> RateLimitResult:
        return RateLimitResult(
            allowed=False,
            current_count=record.count,
            limit=record.limit,
            reset_time=record.reset_time,
            retry_after=max(0.0, record.reset_time - now_ms / 1000),
            scope=record.scope,
            reason=f"{record.scope} limit of {record.limit} reached for {record.kind} {record.key}",
        )

    def peek(self, recipient_id: str) -> dict[str, RateLimitResult]:
        """Current usage of each recipient scope, without counting a request."""
        now_ms = int(self._clock() * 1000)
        status: dict[str, RateLimitResult] = {}
        with self._lock:
            for name, spec in self._config.rate_limits.items():
                window_start = now_ms // spec.window_ms * spec.window_ms
                record = self._records.get((RECIPIENT, recipient_id, name))
                count = record.count if record and record.window_start_ms == window_start else 0
                status[name] = RateLimitResult(
                    allowed=count < spec.limit,
                    current_count=count,
                    limit=spec.limit,
                    reset_time=(window_start + spec.window_ms) / 1000,
                    scope=name,
                )
        return status

    def reset(self, recipient_id: str) -> int:
        """Drop every counter held for ``recipient_id``."""
        with self._lock:
            keys = [k for k in self._records if k[0] == RECIPIENT and k[1] == recipient_id]
            for k in keys:
                del self._records[k]
        if keys:
            logger.info("Reset %d rate limit counters for recipient %s", len(keys), recipient_id)
        return len(keys)

    def evict_expired(self, now: float | None = None) -> int:
        """Drop counters whose window has already closed."""
        now_ms = int((self._clock() if now is None else now) * 1000)
        with self._lock:
            keys = [
                k for k, r in self._records.items()
                if r.window_start_ms + r.window_ms <= now_ms
            ]
            for k in keys:
                del self._records[k]
        return len(keys)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"active_keys": len(self._records), "blocked_count": self._blocked_count}
