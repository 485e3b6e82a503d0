"""Mock channel transport for development and tests."""

from __future__ import annotations

from fieldalert.channels.base import BaseChannelTransport
from fieldalert.channels.models import ChannelPayload, SendOutcome


class MockTransport(BaseChannelTransport):
    """Records every send. Can be told to fail or raise for given addresses."""

    description = "Records deliveries in memory"

    def __init__(
        self,
        name: str = "mock",
        *,
        fail_addresses: set[str] | None = None,
        raise_addresses: set[str] | None = None,
        enabled: bool = True,
        max_retries: int = 0,
    ) -> None:
        super().__init__(name, enabled=enabled, max_retries=max_retries)
        self.fail_addresses = set(fail_addresses or ())
        self.raise_addresses = set(raise_addresses or ())
        self.sent: list[tuple[str, ChannelPayload]] = []

    async def _do_send(self, address: str, payload: ChannelPayload) -> SendOutcome:
        if address in self.raise_addresses:
            raise ConnectionError(f"{self.name} transport unreachable")
        if address in self.fail_addresses:
            return SendOutcome(success=False, error=f"{self.name} rejected {address}")
        self.sent.append((address, payload))
        return SendOutcome(success=True)
