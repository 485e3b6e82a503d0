"""Database layer for FieldAlert (SQLAlchemy 2.0 async)."""

from __future__ import annotations

from fieldalert.db.base import Base
from fieldalert.db.engine import DatabaseManager

__all__ = ["Base", "DatabaseManager"]
