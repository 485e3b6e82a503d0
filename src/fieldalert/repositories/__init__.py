"""Repository layer for FieldAlert.

Protocol interfaces live in ``protocols``; the SQLAlchemy-backed event
store lives in ``sql``. The in-memory implementations sit beside the
services that default to them.
"""
