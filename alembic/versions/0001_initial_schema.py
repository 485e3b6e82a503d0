"""Initial schema — notification events.

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -- Notification Events --
    op.create_table(
        "notification_events",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column("entity_id", sa.String(256), nullable=False),
        sa.Column("recipient_id", sa.String(256), nullable=False),
        sa.Column("fingerprint", sa.String(64), nullable=False),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("content", sa.JSON, nullable=False),
        sa.Column("source", sa.String(128), server_default=""),
        sa.Column("priority", sa.String(16), server_default="normal"),
        sa.Column("metadata_json", sa.JSON, nullable=True),
        sa.Column("status", sa.String(16), server_default="pending"),
        sa.Column("dedup_window_ms", sa.Integer, server_default="0"),
        sa.Column("delivery_attempts", sa.Integer, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
    )
    op.create_index(
        "ix_notification_events_fingerprint_created",
        "notification_events",
        ["fingerprint", "created_at"],
    )
    op.create_index(
        "ix_notification_events_recipient_id", "notification_events", ["recipient_id"]
    )
    op.create_index("ix_notification_events_status", "notification_events", ["status"])


def downgrade() -> None:
    op.drop_index("ix_notification_events_status", table_name="notification_events")
    op.drop_index("ix_notification_events_recipient_id", table_name="notification_events")
    op.drop_index("ix_notification_events_fingerprint_created", table_name="notification_events")
    op.drop_table("notification_events")
