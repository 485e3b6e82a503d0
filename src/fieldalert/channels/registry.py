"""Registry of delivery channels available to the dispatcher."""

from __future__ import annotations

from fieldalert.channels.base import ChannelTransport
from fieldalert.channels.models import ConnectionStatus, TransportSchema


class ChannelRegistry:
    """Register/get/list channel transports and check their health."""

    def __init__(self) -> None:
        self._transports: dict[str, ChannelTransport] = {}

    def register(self, transport: ChannelTransport) -> None:
        self._transports[transport.name] = transport

    def get(self, name: str) -> ChannelTransport | None:
        return self._transports.get(name)

    def all(self) -> list[ChannelTransport]:
        return list(self._transports.values())

    def list_transports(self) -> list[TransportSchema]:
        """List all registered transports with their schemas."""
        return [t.schema for t in self._transports.values()]

    def health_check_all(self) -> dict[str, ConnectionStatus]:
        return {name: t.health_check() for name, t in self._transports.items()}

    async def close(self) -> None:
        for transport in self._transports.values():
            close = getattr(transport, "close", None)
            if close is not None:
                await close()

    @property
    def channel_names(self) -> list[str]:
        return list(self._transports.keys())
