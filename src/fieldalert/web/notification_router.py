"""FastAPI router for notification admission, delivery and stats."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from fieldalert.core.errors import EventNotFoundError, EventStateError, RecipientNotFoundError
from fieldalert.notifications.models import (
    Decision,
    DeliveryResult,
    NotificationEvent,
    NotificationRequest,
    NotifyResult,
    RateLimitResult,
    ServiceStats,
)
from fieldalert.notifications.service import NotificationService

router = APIRouter()


class DispatchRequest(BaseModel):
    event_id: str
    recipient_id: str | None = None


def _service(request: Request) -> NotificationService:
    service = getattr(request.app.state, "notification_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Notification service not available")
    return service


@router.post("/api/notifications/decide", response_model=Decision)
async def decide(body: NotificationRequest, request: Request) -> Decision:
    """Run admission control without delivering."""
    return await _service(request).decide(body)


@router.post("/api/notifications/dispatch", response_model=DeliveryResult)
async def dispatch(body: DispatchRequest, request: Request) -> DeliveryResult:
    """Deliver a previously admitted event."""
    service = _service(request)
    try:
        return await service.dispatch(body.event_id, body.recipient_id)
    except (EventNotFoundError, RecipientNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except EventStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.post("/api/notifications/send", response_model=NotifyResult)
async def send(body: NotificationRequest, request: Request) -> NotifyResult:
    """Decide, and deliver when admitted."""
    try:
        return await _service(request).notify(body)
    except RecipientNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.get("/api/notifications/events/{event_id}", response_model=NotificationEvent)
async def get_event(event_id: str, request: Request) -> NotificationEvent:
    try:
        return await _service(request).get_event(event_id)
    except EventNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.get("/api/notifications/stats", response_model=ServiceStats)
async def stats(request: Request) -> ServiceStats:
    return _service(request).stats()


@router.get("/api/rate-limits/{recipient_id}")
async def rate_limit_status(recipient_id: str, request: Request) -> dict[str, RateLimitResult]:
    """Current usage of every recipient scope, without consuming a slot."""
    return _service(request).rate_limit_status(recipient_id)


@router.delete("/api/rate-limits/{recipient_id}")
async def reset_rate_limit(recipient_id: str, request: Request) -> dict[str, Any]:
    cleared = _service(request).reset_rate_limit(recipient_id)
    return {"recipient_id": recipient_id, "cleared": cleared}
