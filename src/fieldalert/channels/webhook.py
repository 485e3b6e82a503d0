"""Outbound webhook delivery: one JSON POST per registered URL."""

from __future__ import annotations

import httpx

from fieldalert.channels.base import BaseChannelTransport
from fieldalert.channels.models import ChannelPayload, SendOutcome


class WebhookTransport(BaseChannelTransport):
    description = "JSON POST to recipient-registered webhook URLs"

    def __init__(
        self,
        *,
        timeout_seconds: float = 10.0,
        headers: dict[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        enabled: bool = True,
    ) -> None:
        super().__init__("webhook", enabled=enabled)
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers or {},
        )

    async def _do_send(self, address: str, payload: ChannelPayload) -> SendOutcome:
        resp = await self._http.post(
            address,
            json=payload.model_dump(mode="json"),
            headers={"X-FieldAlert-Event": payload.event_type},
        )
        if resp.status_code >= 500:
            resp.raise_for_status()
        if resp.status_code >= 400:
            return SendOutcome(success=False, error=f"Webhook returned {resp.status_code}")
        return SendOutcome(success=True, detail={"status_code": resp.status_code})

    async def close(self) -> None:
        await self._http.aclose()
