"""Websocket subscriptions for the in-app realtime channel."""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/notifications/{recipient_id}")
async def notifications_websocket(websocket: WebSocket, recipient_id: str) -> None:
    """Stream a recipient's realtime notifications, starting with any backlog."""
    service = getattr(websocket.app.state, "notification_service", None)
    manager = service.realtime if service is not None else None
    if manager is None:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    flushed = await manager.connect(recipient_id, websocket)
    if flushed:
        logger.info("Flushed %d backlogged notifications to %s", flushed, recipient_id)
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except WebSocketDisconnect:
                raise
            except ValueError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        manager.disconnect(recipient_id, websocket)
