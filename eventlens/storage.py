"""Schema creation and upgrades for the SQLite database."""

from __future__ import annotations

import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from .config import settings
from .database import engine


def init_db() -> None:
    upgrade_database(make_backup=False)


def backup_database(db_path: Path) -> Path | None:
    """Copy the database file next to itself with a ``.bak`` suffix."""
    if not db_path.exists():
        return None
    backup_path = db_path.with_suffix(db_path.suffix + ".bak")
    shutil.copy(db_path, backup_path)
    return backup_path


def _alembic_config() -> Config:
    script_location = Path(__file__).resolve().parent / "alembic"
    ini_path = script_location.parent / "alembic.ini"

    config = Config(str(ini_path)) if ini_path.exists() else Config()
    config.set_main_option("script_location", str(script_location))
    config.set_main_option("sqlalchemy.url", str(engine.url))
    return config


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Bring the schema to the latest Alembic revision.

    Returns the actions taken, in order.
    """
    actions: list[str] = []
    if make_backup:
        backup_path = backup_database(Path(settings.database_path))
        if backup_path is not None:
            actions.append(f"Backup created at {backup_path}")

    fresh = not inspect(engine).has_table("alembic_version")
    command.upgrade(_alembic_config(), "head")
    if fresh:
        actions.append("Ran Alembic upgrade to head (fresh database)")
    else:
        actions.append("Applied Alembic migrations to head")
    return actions
