"""In-app realtime delivery over websocket subscriptions."""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from typing import Any, DefaultDict, Protocol

from fieldalert.channels.base import BaseChannelTransport
from fieldalert.channels.models import ChannelPayload, SendOutcome

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    async def send_json(self, data: Any) -> None: ...


class RealtimeConnectionManager:
    """Active subscriber connections grouped by recipient.

    Messages for a recipient with no live connection are held in a bounded
    backlog and flushed when the recipient next connects.
    """

    def __init__(self, backlog_size: int = 50) -> None:
        self._connections: DefaultDict[str, set[Subscriber]] = defaultdict(set)
        self._backlog: DefaultDict[str, deque[dict[str, Any]]] = defaultdict(
            lambda: deque(maxlen=backlog_size)
        )

    async def connect(self, recipient_id: str, subscriber: Subscriber) -> int:
        """Register ``subscriber`` and flush any backlog. Returns messages flushed."""
        self._connections[recipient_id].add(subscriber)
        pending = self._backlog.pop(recipient_id, None)
        flushed = 0
        while pending:
            message = pending.popleft()
            try:
                await subscriber.send_json(message)
            except Exception:
                logger.warning("Backlog flush to %s failed", recipient_id, exc_info=True)
                pending.appendleft(message)
                self._backlog[recipient_id].extend(pending)
                self.disconnect(recipient_id, subscriber)
                break
            flushed += 1
        return flushed

    def disconnect(self, recipient_id: str, subscriber: Subscriber) -> None:
        connections = self._connections.get(recipient_id)
        if connections is None:
            return
        connections.discard(subscriber)
        if not connections:
            self._connections.pop(recipient_id, None)

    async def send_to_recipient(self, recipient_id: str, message: dict[str, Any]) -> int:
        """Send ``message`` to every live connection. Returns how many received it."""
        delivered = 0
        for connection in list(self._connections.get(recipient_id, set())):
            try:
                await connection.send_json(message)
            except Exception:
                logger.info("Dropping dead realtime connection for %s", recipient_id)
                self.disconnect(recipient_id, connection)
                continue
            delivered += 1
        return delivered

    def buffer(self, recipient_id: str, message: dict[str, Any]) -> None:
        self._backlog[recipient_id].append(message)

    def connection_count(self, recipient_id: str | None = None) -> int:
        if recipient_id is not None:
            return len(self._connections.get(recipient_id, ()))
        return sum(len(c) for c in self._connections.values())

    def backlog(self, recipient_id: str) -> list[dict[str, Any]]:
        return list(self._backlog.get(recipient_id, ()))


class RealtimeTransport(BaseChannelTransport):
    """Publishes notifications to a recipient's websocket subscribers.

    The address is the subscription key (normally the recipient id). With
    no live subscriber the message is queued in the backlog, which still
    counts as delivered to the in-app inbox.
    """

    description = "In-app realtime notifications over websocket"

    def __init__(self, manager: RealtimeConnectionManager | None = None, *, enabled: bool = True) -> None:
        super().__init__("realtime", enabled=enabled)
        self._manager = manager or RealtimeConnectionManager()

    @property
    def manager(self) -> RealtimeConnectionManager:
        return self._manager

    @staticmethod
    def build_message(payload: ChannelPayload) -> dict[str, Any]:
        return {"type": "notification", "data": payload.model_dump(mode="json")}

    async def _do_send(self, address: str, payload: ChannelPayload) -> SendOutcome:
        message = self.build_message(payload)
        delivered = await self._manager.send_to_recipient(address, message)
        if delivered == 0:
            self._manager.buffer(address, message)
            return SendOutcome(success=True, detail={"buffered": True})
        return SendOutcome(success=True, detail={"connections": delivered})
