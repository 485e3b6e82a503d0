"""Concurrent multi-channel delivery of admitted notification events."""

from __future__ import annotations

import asyncio
import logging

from fieldalert.channels.base import ChannelTransport
from fieldalert.channels.models import ChannelPayload, SendOutcome
from fieldalert.channels.registry import ChannelRegistry
from fieldalert.core.errors import EventStateError
from fieldalert.notifications.models import DeliveryResult, NotificationEvent
from fieldalert.notifications.tracker import StatusTracker
from fieldalert.repositories.protocols import RecipientDirectory

logger = logging.getLogger(__name__)


class Dispatcher:
    """Fans an admitted event out to every channel the recipient can receive.

    Channels, and addresses within a channel, are sent concurrently and
    joined on completion of all of them. A transport exception or timeout is
    recorded against its own channel only. The event is marked sent when at
    least one address succeeded, failed otherwise. The cached event takes
    that status before ``dispatch`` returns; the durable write is scheduled
    on the tracker and not awaited.
    """

    def __init__(
        self,
        registry: ChannelRegistry,
        directory: RecipientDirectory,
        tracker: StatusTracker,
        *,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._registry = registry
        self._directory = directory
        self._tracker = tracker
        self._timeout = timeout_seconds
        self._in_flight: set[str] = set()

    async def dispatch(self, event: NotificationEvent, recipient_id: str) -> DeliveryResult:
        """Deliver ``event`` to ``recipient_id`` on every applicable channel.

        Raises:
            EventStateError: the event is not pending, or is already being
                dispatched.
            RecipientNotFoundError: the directory has no such recipient.
        """
        if event.status.is_terminal:
            raise EventStateError(f"Event {event.id} is already {event.status.value}")
        if event.id in self._in_flight:
            raise EventStateError(f"Event {event.id} is already being dispatched")

        self._in_flight.add(event.id)
        try:
            result, status_write = await self._dispatch(event, recipient_id)
        except BaseException:
            self._in_flight.discard(event.id)
            raise
        # Held until the status write lands, for callers re-reading the durable tier.
        status_write.add_done_callback(lambda _: self._in_flight.discard(event.id))
        return result

    async def _dispatch(
        self, event: NotificationEvent, recipient_id: str
    ) -> tuple[DeliveryResult, asyncio.Task[None]]:
        profile = await self._directory.get_profile(recipient_id)
        result = DeliveryResult(event_id=event.id, recipient_id=recipient_id)
        transports = self._registry.all()

        if not profile.wants(event.event_type, event.priority):
            for transport in transports:
                result.channel(transport.name).skipped += 1
            result.errors.append(f"{event.event_type} suppressed by recipient preferences")
            return result, self._tracker.mark_failed(event.id, result.errors[0])

        payload = ChannelPayload.from_event(event)
        deliveries = []
        for transport in transports:
            addresses = profile.addresses_for(transport.name)
            if not addresses:
                result.channel(transport.name).skipped += 1
                continue
            deliveries.append(self._deliver_channel(transport, addresses, payload, result))
        await asyncio.gather(*deliveries)

        if result.delivered:
            status_write = self._tracker.mark_sent(event.id)
        else:
            summary = "; ".join(result.errors) or "no deliverable channels"
            status_write = self._tracker.mark_failed(event.id, f"All channels failed: {summary}")

        logger.info(
            "Dispatched %s to %s: %s",
            event.id,
            recipient_id,
            {name: o.model_dump() for name, o in result.per_channel.items()},
        )
        return result, status_write

    async def _deliver_channel(
        self,
        transport: ChannelTransport,
        addresses: list[str],
        payload: ChannelPayload,
        result: DeliveryResult,
    ) -> None:
        outcomes = await asyncio.gather(
            *(self._send_one(transport, address, payload) for address in addresses)
        )
        channel = result.channel(transport.name)
        for address, outcome in zip(addresses, outcomes):
            if outcome.success:
                channel.success += 1
            else:
                channel.failed += 1
                result.errors.append(f"{transport.name} to {address}: {outcome.error}")

    async def _send_one(
        self, transport: ChannelTransport, address: str, payload: ChannelPayload
    ) -> SendOutcome:
        try:
            return await asyncio.wait_for(transport.send(address, payload), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("%s send for %s timed out", transport.name, payload.event_id)
            return SendOutcome(success=False, error=f"timed out after {self._timeout:g}s")
        except Exception as exc:
            logger.warning(
                "%s send for %s raised %s", transport.name, payload.event_id, exc, exc_info=True
            )
            return SendOutcome(success=False, error=f"{type(exc).__name__}: {exc}")
