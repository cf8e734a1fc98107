from __future__ import annotations

import types

import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine

from eventlens import database, storage
from eventlens.models import Base

TABLES = (
    "events",
    "event_members",
    "posts",
    "dm_threads",
    "dm_messages",
    "event_user_preferences",
)


def _patch_db(monkeypatch: pytest.MonkeyPatch, engine: Engine, db_path) -> None:
    monkeypatch.setattr(storage, "engine", engine)
    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(database, "DATABASE_URL", str(engine.url))
    fake_settings = types.SimpleNamespace(database_path=db_path)
    monkeypatch.setattr(storage, "settings", fake_settings)


def _get_version(engine: Engine) -> str | None:
    with engine.connect() as conn:
        try:
            return conn.execute(
                text("select version_num from alembic_version")
            ).scalar()
        except Exception:
            return None


def test_upgrade_database_creates_fresh_schema(monkeypatch, tmp_path):
    db_path = tmp_path / "fresh.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)

    actions = storage.upgrade_database(make_backup=False)

    assert "Ran Alembic upgrade to head (fresh database)" in actions
    assert _get_version(engine) == "0001_initial"
    inspector = inspect(engine)
    for table in TABLES:
        assert inspector.has_table(table)
    columns = {col["name"] for col in inspector.get_columns("dm_threads")}
    assert {"message_count", "last_message_at"} <= columns


def test_upgrade_database_is_idempotent_and_backs_up(monkeypatch, tmp_path):
    db_path = tmp_path / "repeat.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)
    storage.upgrade_database(make_backup=False)

    actions = storage.upgrade_database()

    assert actions[0].startswith("Backup created at")
    assert (tmp_path / "repeat.sqlite.bak").exists()
    assert "Applied Alembic migrations to head" in actions
    assert _get_version(engine) == "0001_initial"


def test_migrated_schema_matches_models(monkeypatch, tmp_path):
    db_path = tmp_path / "models.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    _patch_db(monkeypatch, engine, db_path)
    storage.upgrade_database(make_backup=False)

    inspector = inspect(engine)
    for table in Base.metadata.sorted_tables:
        migrated = {col["name"] for col in inspector.get_columns(table.name)}
        assert migrated == {col.name for col in table.columns}, table.name
