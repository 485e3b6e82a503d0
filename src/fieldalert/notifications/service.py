"""Notification service facade and its factory."""

from __future__ import annotations

import logging
import time
from typing import Callable

from fieldalert.channels.mock import MockTransport
from fieldalert.channels.push import PushTransport
from fieldalert.channels.realtime import RealtimeConnectionManager, RealtimeTransport
from fieldalert.channels.registry import ChannelRegistry
from fieldalert.channels.webhook import WebhookTransport
from fieldalert.core.config import Settings
from fieldalert.core.errors import EventNotFoundError
from fieldalert.db.engine import DatabaseManager
from fieldalert.directory.service import InMemoryRecipientDirectory
from fieldalert.notifications.dedup import DedupStore
from fieldalert.notifications.dispatcher import Dispatcher
from fieldalert.notifications.engine import DecisionEngine
from fieldalert.notifications.models import (
    Decision,
    DeliveryResult,
    NotificationEvent,
    NotificationRequest,
    NotifyResult,
    RateLimitResult,
    ServiceStats,
)
from fieldalert.notifications.ratelimit import RateLimiter
from fieldalert.notifications.store import InMemoryEventRepository
from fieldalert.notifications.sweeper import CleanupSweeper
from fieldalert.notifications.tracker import StatusTracker
from fieldalert.repositories.protocols import EventRepository, RecipientDirectory
from fieldalert.repositories.sql.events import SqlEventRepository

logger = logging.getLogger(__name__)


class NotificationService:
    """Admission, delivery and stats for every notification source.

    Build one with ``create_notification_service``. Each instance owns its
    caches, counters and background tasks; call ``destroy()`` when done.
    """

    def __init__(
        self,
        *,
        engine: DecisionEngine,
        dispatcher: Dispatcher,
        dedup_store: DedupStore,
        rate_limiter: RateLimiter,
        tracker: StatusTracker,
        sweeper: CleanupSweeper,
        registry: ChannelRegistry,
        directory: RecipientDirectory,
        database: DatabaseManager | None = None,
    ) -> None:
        self._engine = engine
        self._dispatcher = dispatcher
        self._store = dedup_store
        self._limiter = rate_limiter
        self._tracker = tracker
        self._sweeper = sweeper
        self._registry = registry
        self._directory = directory
        self._database = database

    @property
    def directory(self) -> RecipientDirectory:
        return self._directory

    @property
    def registry(self) -> ChannelRegistry:
        return self._registry

    @property
    def dedup_store(self) -> DedupStore:
        return self._store

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def database(self) -> DatabaseManager | None:
        return self._database

    @property
    def realtime(self) -> RealtimeConnectionManager | None:
        transport = self._registry.get("realtime")
        if isinstance(transport, RealtimeTransport):
            return transport.manager
        return None

    async def decide(self, request: NotificationRequest) -> Decision:
        return await self._engine.decide(request)

    async def dispatch(
        self, event: NotificationEvent | str, recipient_id: str | None = None
    ) -> DeliveryResult:
        """Deliver an admitted event, given either the event or its id."""
        if isinstance(event, str):
            event = await self.get_event(event)
        return await self._dispatcher.dispatch(event, recipient_id or event.recipient_id)

    async def notify(self, request: NotificationRequest) -> NotifyResult:
        """Decide, then dispatch when the request is admitted."""
        decision = await self.decide(request)
        if not decision.allowed or decision.event is None:
            return NotifyResult(decision=decision)
        delivery = await self._dispatcher.dispatch(decision.event, request.recipient_id)
        return NotifyResult(decision=decision, delivery=delivery)

    async def get_event(self, event_id: str) -> NotificationEvent:
        event = await self._store.get_event(event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        return event

    def stats(self) -> ServiceStats:
        return self._tracker.stats()

    def rate_limit_status(self, recipient_id: str) -> dict[str, RateLimitResult]:
        return self._limiter.peek(recipient_id)

    def reset_rate_limit(self, recipient_id: str) -> int:
        return self._limiter.reset(recipient_id)

    async def init_storage(self) -> None:
        """Create the event table when backed by a database that lacks it."""
        if self._database is not None:
            await self._database.create_all()

    def start(self) -> None:
        """Start the background cleanup sweeper. Needs a running event loop."""
        self._sweeper.start()

    async def flush(self) -> None:
        """Wait for in-flight status writes."""
        await self._tracker.drain()

    async def destroy(self) -> None:
        await self._sweeper.stop()
        await self._tracker.drain()
        await self._registry.close()
        self._store.clear()
        if self._database is not None:
            await self._database.close()
        logger.info("Notification service shut down")


def _build_registry(settings: Settings) -> ChannelRegistry:
    cfg = settings.channels
    registry = ChannelRegistry()
    for name in cfg.enabled:
        if name == "push":
            registry.register(
                PushTransport(cfg.expo_push_url, timeout_seconds=cfg.timeout_seconds)
            )
        elif name == "realtime":
            registry.register(
                RealtimeTransport(RealtimeConnectionManager(cfg.realtime_backlog_size))
            )
        elif name == "webhook":
            registry.register(
                WebhookTransport(
                    timeout_seconds=cfg.timeout_seconds, headers=cfg.webhook_headers
                )
            )
        elif name == "mock":
            registry.register(MockTransport())
        else:
            logger.warning("Unknown channel %r in configuration, skipping", name)
    return registry


def create_notification_service(
    settings: Settings | None = None,
    *,
    repository: EventRepository | None = None,
    directory: RecipientDirectory | None = None,
    channels: ChannelRegistry | None = None,
    clock: Callable[[], float] = time.time,
) -> NotificationService:
    """Wire a NotificationService from settings.

    Any collaborator passed explicitly replaces the one settings would
    build. With no database URL the durable tier is in-memory.
    """
    if settings is None:
        settings = Settings()

    database: DatabaseManager | None = None
    if repository is None:
        if settings.db.database_url:
            database = DatabaseManager(
                settings.db.database_url,
                echo=settings.db.echo,
                pool_size=settings.db.pool_size,
            )
            repository = SqlEventRepository(database)
        else:
            repository = InMemoryEventRepository()

    if directory is None:
        directory = InMemoryRecipientDirectory(settings.directory.fixtures_path or None)
    if channels is None:
        channels = _build_registry(settings)

    dedup_store = DedupStore(settings.dedup, repository, clock=clock)
    rate_limiter = RateLimiter(settings.ratelimit, clock=clock)
    tracker = StatusTracker(dedup_store, clock=clock)
    return NotificationService(
        engine=DecisionEngine(dedup_store, rate_limiter, tracker, clock=clock),
        dispatcher=Dispatcher(
            channels, directory, tracker, timeout_seconds=settings.channels.timeout_seconds
        ),
        dedup_store=dedup_store,
        rate_limiter=rate_limiter,
        tracker=tracker,
        sweeper=CleanupSweeper(dedup_store, rate_limiter, settings.dedup.cleanup_interval_ms),
        registry=channels,
        directory=directory,
        database=database,
    )
