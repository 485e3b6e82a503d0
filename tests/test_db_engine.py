"""Tests for DatabaseManager and the notification_events table with SQLite async."""

from __future__ import annotations

import pytest
from sqlalchemy import inspect, select

from fieldalert.db.engine import DatabaseManager
from fieldalert.db.models import NotificationEventRow


@pytest.fixture
async def db_manager():
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.create_all()
    yield manager
    await manager.close()


async def test_engine_creation(db_manager):
    assert db_manager.engine is not None


async def test_create_all_builds_events_table(db_manager):
    async with db_manager.engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    assert "notification_events" in tables


async def test_row_defaults(db_manager):
    """A row inserted with only its identity columns picks up defaults."""
    async with db_manager.session() as session:
        session.add(
            NotificationEventRow(
                id="notif_1",
                event_type="job.assigned",
                entity_id="job-1",
                recipient_id="staff-001",
                fingerprint="fp",
                content_hash="hash",
            )
        )
        await session.commit()

    async with db_manager.session() as session:
        result = await session.execute(
            select(NotificationEventRow).where(NotificationEventRow.id == "notif_1")
        )
        found = result.scalar_one()
        assert found.status == "pending"
        assert found.priority == "normal"
        assert found.delivery_attempts == 0
        assert found.created_at is not None
