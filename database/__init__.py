"""
Database layer — Multi-backend persistence.

Backends:
  - SQL (PostgreSQL / MySQL / SQLite via SQLAlchemy async)
  - In-memory (dict-based, for development/testing)

Quick start:
  from database import create_store
  store = create_store({"store_backend": "memory"})
  incident = await store.get_sos_incident("abc123")
"""
from database.models import (
    Base, UserRow, SosIncidentRow, SosDispatchRow, CorruptionReportRow,
    MediaAssetRow, CaseRow, CaseEventRow, CaseFollowRow, NotificationLogRow,
)
from database.session import get_engine, get_session, init_db, close_db
from database.store_base import BaseStore
from database.store import SqlStore
from database.store_memory import InMemoryStore
from database.store_factory import create_store

__all__ = [
    # ORM models
    "Base", "UserRow", "SosIncidentRow", "SosDispatchRow", "CorruptionReportRow",
    "MediaAssetRow", "CaseRow", "CaseEventRow", "CaseFollowRow", "NotificationLogRow",
    # Session management
    "get_engine", "get_session", "init_db", "close_db",
    # Store interface
    "BaseStore",
    # Store backends
    "SqlStore", "InMemoryStore",
    # Factory
    "create_store",
]
