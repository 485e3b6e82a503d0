"""Channel transport Protocol and shared base class."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

from fieldalert.channels.models import (
    ChannelPayload,
    ConnectionStatus,
    SendOutcome,
    TransportSchema,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class ChannelTransport(Protocol):
    """Protocol every delivery channel implements."""

    @property
    def name(self) -> str: ...

    @property
    def schema(self) -> TransportSchema: ...

    async def send(self, address: str, payload: ChannelPayload) -> SendOutcome: ...

    def health_check(self) -> ConnectionStatus: ...


class BaseChannelTransport(ABC):
    """Abstract base for transports.

    Provides an enabled switch, at-most-1 retry on exceptions and health
    tracking. A second consecutive exception marks the transport degraded
    and propagates to the dispatcher, which records it as a channel failure.
    """

    description = ""

    def __init__(self, name: str, *, enabled: bool = True, max_retries: int = 1) -> None:
        self._name = name
        self._enabled = enabled
        self._max_retries = max_retries
        self._status = ConnectionStatus.CONNECTED

    @property
    def name(self) -> str:
        return self._name

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def schema(self) -> TransportSchema:
        return TransportSchema(
            name=self._name,
            description=self.description,
            enabled=self._enabled,
            status=self._status,
        )

    @abstractmethod
    async def _do_send(self, address: str, payload: ChannelPayload) -> SendOutcome:
        """Deliver ``payload`` to ``address``. Subclasses implement this."""

    async def send(self, address: str, payload: ChannelPayload) -> SendOutcome:
        if not self._enabled:
            return SendOutcome(success=False, error=f"Channel {self._name} is disabled")

        attempt = 0
        while True:
            try:
                outcome = await self._do_send(address, payload)
            except Exception as exc:
                if attempt < self._max_retries:
                    attempt += 1
                    logger.warning(
                        "%s send to %s failed (%s), retrying", self._name, address, exc
                    )
                    continue
                self._status = ConnectionStatus.DEGRADED
                raise
            self._status = ConnectionStatus.CONNECTED
            return outcome

    def health_check(self) -> ConnectionStatus:
        return self._status

    async def close(self) -> None:
        """Release transport resources."""
