"""FastAPI application for FieldAlert.

Exposes notification admission and delivery, job lifecycle notifications,
rate limit inspection and the realtime websocket channel.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fieldalert.core.config import Settings
from fieldalert.notifications.jobs import JobNotificationService
from fieldalert.notifications.service import NotificationService, create_notification_service
from fieldalert.web.job_router import router as job_router
from fieldalert.web.notification_router import router as notification_router
from fieldalert.web.realtime_router import router as realtime_router

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    service: NotificationService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Uses the factory pattern so tests can create isolated app instances
    with a pre-wired NotificationService.

    Args:
        settings: Application settings. Defaults to Settings().
        service: Optional pre-built NotificationService.

    Returns:
        A configured FastAPI instance.
    """
    if settings is None:
        settings = Settings()

    # Handlers and formatting belong to the server entry point (uvicorn --log-config).
    logging.getLogger("fieldalert").setLevel(settings.log_level.upper())

    if service is None:
        service = create_notification_service(settings)
    job_notifications = JobNotificationService(
        service, templates_path=settings.templates.templates_path or None
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await service.init_storage()
        service.start()
        logger.info("FieldAlert started (%s)", settings.environment)
        try:
            yield
        finally:
            await service.destroy()

    app = FastAPI(
        title="FieldAlert",
        description="Notification deduplication and rate-limited multi-channel delivery",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store on app state for access in route handlers
    app.state.settings = settings
    app.state.notification_service = service
    app.state.job_notifications = job_notifications
    if service.database is not None:
        app.state.db_manager = service.database

    app.include_router(notification_router)
    app.include_router(job_router)
    app.include_router(realtime_router)

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        """Liveness plus transport health and dedup/limiter counters."""
        channels = service.registry.health_check_all()
        return {
            "status": "ok",
            "service": "fieldalert",
            "version": "0.1.0",
            "channels": {name: status.value for name, status in channels.items()},
            "transports": [t.model_dump(mode="json") for t in service.registry.list_transports()],
            "dedup": service.dedup_store.stats(),
            "rate_limiter": service.rate_limiter.stats(),
        }

    return app
