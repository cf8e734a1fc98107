"""DM retention cycle.

Direct messages only live for the event they belong to. Once an event's
validity instant (end time, or start time when there is no end) is more than
``dm_retention_days`` in the past, its threads and messages are removed.
Events and their posts are left alone.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import and_, func, or_, select

from .config import settings
from .database import engine, get_session
from .models import DMMessage, DMThread, Event
from .utils import utcnow

# Use uvicorn's error logger so retention messages show up with level prefixes.
logger = logging.getLogger("uvicorn.error")

RETENTION_BATCH_SIZE = 200


def _expired_event_filter(cutoff: datetime):
    return or_(
        and_(Event.end_time.is_not(None), Event.end_time < cutoff),
        and_(Event.end_time.is_(None), Event.start_time < cutoff),
    )


def run_retention_cycle(*, now: datetime | None = None) -> dict:
    """Delete DM threads whose event ended more than the retention window ago."""
    stats = {
        "threads_deleted": 0,
        "messages_deleted": 0,
        "batches": 0,
    }
    now = now or utcnow()
    cutoff = now - settings.dm_retention

    logger.info(
        "Retention cycle started (dm_retention_days=%d, cutoff=%s)",
        settings.dm_retention_days,
        cutoff.isoformat(),
    )

    expired_events = select(Event.id).where(_expired_event_filter(cutoff))

    with get_session() as session:
        while True:
            batch = session.scalars(
                select(DMThread)
                .where(DMThread.event_id.in_(expired_events))
                .order_by(DMThread.id)
                .limit(RETENTION_BATCH_SIZE)
            ).all()
            if not batch:
                break
            for thread in batch:
                message_count = (
                    session.scalar(
                        select(func.count())
                        .select_from(DMMessage)
                        .where(DMMessage.thread_id == thread.id)
                    )
                    or 0
                )
                logger.debug(
                    "Deleting DM thread %s for event %s (%d messages)",
                    thread.id,
                    thread.event_id,
                    message_count,
                )
                session.delete(thread)
                stats["threads_deleted"] += 1
                stats["messages_deleted"] += message_count
            stats["batches"] += 1
            session.commit()

    logger.info(
        "Retention cycle finished: threads deleted=%d, messages deleted=%d across %d batches",
        stats["threads_deleted"],
        stats["messages_deleted"],
        stats["batches"],
    )
    return stats


def vacuum_database() -> None:
    with engine.connect() as connection:
        connection.execution_options(isolation_level="AUTOCOMMIT").exec_driver_sql(
            "VACUUM"
        )
