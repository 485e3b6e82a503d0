"""Mobile push delivery through the Expo push service."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from fieldalert.channels.base import BaseChannelTransport
from fieldalert.channels.models import ChannelPayload, SendOutcome
from fieldalert.core.types import Priority

logger = logging.getLogger(__name__)

DEFAULT_EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"


class PushTransport(BaseChannelTransport):
    """Sends one Expo push message per device token.

    5xx responses and transport errors raise (and are retried once by the
    base class); 4xx responses and per-ticket errors such as
    ``DeviceNotRegistered`` are reported as failed outcomes.
    """

    description = "Expo push notifications to registered device tokens"

    def __init__(
        self,
        push_url: str = DEFAULT_EXPO_PUSH_URL,
        *,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        enabled: bool = True,
    ) -> None:
        super().__init__("push", enabled=enabled)
        self._push_url = push_url
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Accept": "application/json"},
        )

    @staticmethod
    def build_message(token: str, payload: ChannelPayload) -> dict[str, Any]:
        urgent = payload.priority is Priority.URGENT
        return {
            "to": token,
            "title": payload.title,
            "body": payload.body,
            "data": {**payload.data, "eventId": payload.event_id, "eventType": payload.event_type},
            "sound": "urgent_notification.wav" if urgent else "default",
            "priority": "high" if urgent or payload.priority is Priority.HIGH else "normal",
        }

    async def _do_send(self, address: str, payload: ChannelPayload) -> SendOutcome:
        resp = await self._http.post(self._push_url, json=self.build_message(address, payload))
        if resp.status_code >= 500:
            resp.raise_for_status()
        if resp.status_code >= 400:
            return SendOutcome(success=False, error=f"Push service returned {resp.status_code}")

        ticket = resp.json().get("data") or {}
        if isinstance(ticket, list):
            ticket = ticket[0] if ticket else {}
        if ticket.get("status") == "ok":
            return SendOutcome(success=True, detail={"ticket_id": ticket.get("id")})

        details = ticket.get("details") or {}
        error = details.get("error") or ticket.get("message") or "Unknown push error"
        logger.info("Push ticket error for event %s: %s", payload.event_id, error)
        return SendOutcome(success=False, error=error, detail=details)

    async def close(self) -> None:
        await self._http.aclose()
