"""Shared pytest fixtures for EventLens."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from eventlens import database, retention, storage
from eventlens.engine import AccessControlEngine
from eventlens.models import Base
from eventlens.records import EventRecord
from eventlens.store import MemoryEventStore

NOW = datetime(2026, 6, 1, 12, 0, 0)


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = database.make_session_factory(engine)
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    retention.engine = engine
    storage.init_db()
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield


def make_event(
    event_id: str = "summer-party",
    *,
    owner_id: str = "host",
    start: datetime | str | None = None,
    end: datetime | str | None = None,
    is_private: bool = False,
    allow_list: set[str] | None = None,
    members: set[str] | None = None,
    token: str = "valid-token",
) -> EventRecord:
    return EventRecord(
        id=event_id,
        title="Summer Party",
        owner_id=owner_id,
        access_token=token,
        start=start if start is not None else NOW - timedelta(hours=1),
        end=end if end is not None else NOW + timedelta(hours=5),
        is_private=is_private,
        allow_list=frozenset(allow_list) if allow_list else None,
        members=frozenset(members) if members else None,
    )


@pytest.fixture()
def memory_store() -> MemoryEventStore:
    return MemoryEventStore()


@pytest.fixture()
def engine(memory_store) -> AccessControlEngine:
    """Engine over an in-memory store with a frozen clock."""
    return AccessControlEngine(memory_store, clock=lambda: NOW)
