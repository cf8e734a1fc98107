"""SQLAlchemy engine and session plumbing for EventLens."""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker

from .config import settings

DATABASE_URL = f"sqlite:///{settings.database_path}"

# Seconds a writer waits for a competing transaction before SQLite reports
# "database is locked".
SQLITE_BUSY_TIMEOUT = 30


def apply_sqlite_pragmas(target: Engine) -> Engine:
    """Turn on foreign keys and WAL journaling for every new connection."""

    @event.listens_for(target, "connect")
    def _set_pragmas(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL")
        finally:
            cursor.close()

    return target


def make_engine(url: str = DATABASE_URL) -> Engine:
    engine = create_engine(
        url,
        connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
        future=True,
    )
    return apply_sqlite_pragmas(engine) if engine.dialect.name == "sqlite" else engine


def make_session_factory(bind: Engine) -> scoped_session:
    return scoped_session(
        sessionmaker(
            bind=bind,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )


engine = make_engine()
SessionLocal = make_session_factory(engine)


@contextmanager
def get_session():
    """Yield a session that commits on success and rolls back on error."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
