"""SQLAlchemy-backed notification event repository."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import func, select, update

from fieldalert.core.types import EventStatus, Priority
from fieldalert.db.engine import DatabaseManager
from fieldalert.db.models import NotificationEventRow
from fieldalert.notifications.models import NotificationContent, NotificationEvent

_FIELD_COLUMNS = {"metadata": "metadata_json"}


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlEventRepository:
    """Durable event store on Postgres (asyncpg) or SQLite (aiosqlite).

    ``create`` is idempotent by event id. ``update`` refuses to move the
    status of an event that has already left ``pending``.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def find_by_fingerprint_within_window(
        self, fingerprint: str, window_start: datetime
    ) -> NotificationEvent | None:
        async with self._db.session() as db:
            result = await db.execute(
                select(NotificationEventRow)
                .where(
                    NotificationEventRow.fingerprint == fingerprint,
                    NotificationEventRow.created_at > _as_utc(window_start),
                )
                .order_by(NotificationEventRow.created_at.desc())
                .limit(1)
            )
            row = result.scalars().first()
            return self._row_to_event(row) if row else None

    async def create(self, event: NotificationEvent) -> NotificationEvent:
        async with self._db.session() as db:
            if await db.get(NotificationEventRow, event.id) is not None:
                return event
            db.add(
                NotificationEventRow(
                    id=event.id,
                    event_type=event.event_type,
                    entity_id=event.entity_id,
                    recipient_id=event.recipient_id,
                    fingerprint=event.fingerprint,
                    content_hash=event.content_hash,
                    content=event.content.model_dump(mode="json"),
                    source=event.source,
                    priority=event.priority.value,
                    metadata_json=event.metadata,
                    status=event.status.value,
                    dedup_window_ms=event.dedup_window_ms,
                    delivery_attempts=event.delivery_attempts,
                    created_at=_as_utc(event.created_at),
                    last_attempt_at=_as_utc(event.last_attempt_at),
                    error_message=event.error_message,
                )
            )
            await db.commit()
        return event

    async def update(self, event_id: str, fields: dict[str, Any]) -> bool:
        values: dict[str, Any] = {}
        for name, value in fields.items():
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = _as_utc(value)
            elif isinstance(value, NotificationContent):
                value = value.model_dump(mode="json")
            values[_FIELD_COLUMNS.get(name, name)] = value

        stmt = update(NotificationEventRow).where(NotificationEventRow.id == event_id)
        if "status" in values:
            stmt = stmt.where(NotificationEventRow.status == EventStatus.PENDING.value)
        async with self._db.session() as db:
            result = await db.execute(stmt.values(**values))
            await db.commit()
            return result.rowcount > 0

    async def get(self, event_id: str) -> NotificationEvent | None:
        async with self._db.session() as db:
            row = await db.get(NotificationEventRow, event_id)
            if row is None:
                return None
            return self._row_to_event(row)

    async def list_by_status(self, status: EventStatus) -> list[NotificationEvent]:
        async with self._db.session() as db:
            result = await db.execute(
                select(NotificationEventRow).where(NotificationEventRow.status == status.value)
            )
            return [self._row_to_event(r) for r in result.scalars().all()]

    async def async_count(self) -> int:
        async with self._db.session() as db:
            result = await db.execute(select(func.count()).select_from(NotificationEventRow))
            return result.scalar_one()

    @staticmethod
    def _row_to_event(row: NotificationEventRow) -> NotificationEvent:
        return NotificationEvent(
            id=row.id,
            event_type=row.event_type,
            entity_id=row.entity_id,
            recipient_id=row.recipient_id,
            fingerprint=row.fingerprint,
            content_hash=row.content_hash,
            content=NotificationContent(**(row.content or {})),
            source=row.source,
            priority=Priority(row.priority),
            metadata=row.metadata_json or {},
            created_at=_as_utc(row.created_at),
            status=EventStatus(row.status),
            dedup_window_ms=row.dedup_window_ms,
            delivery_attempts=row.delivery_attempts,
            last_attempt_at=_as_utc(row.last_attempt_at),
            error_message=row.error_message,
        )
