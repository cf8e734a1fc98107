"""Background maintenance jobs run by APScheduler."""

from __future__ import annotations

import logging
from collections.abc import Callable

from apscheduler.schedulers.background import BackgroundScheduler

from .config import settings
from .retention import run_retention_cycle, vacuum_database

logger = logging.getLogger("uvicorn.error")

_scheduler: BackgroundScheduler | None = None


def maintenance_jobs() -> list[tuple[str, Callable[[], object], int]]:
    """Return ``(job id, callable, interval hours)`` for each enabled job.

    A non-positive interval disables that job.
    """
    jobs = [
        ("dm-retention", run_retention_cycle, settings.retention_interval_hours),
        ("vacuum", vacuum_database, settings.sqlite_vacuum_hours),
    ]
    return [job for job in jobs if job[2] > 0]


def start_scheduler() -> BackgroundScheduler:
    global _scheduler
    if _scheduler and _scheduler.running:
        return _scheduler
    scheduler = BackgroundScheduler(timezone="UTC")
    for job_id, func, hours in maintenance_jobs():
        scheduler.add_job(
            func,
            "interval",
            hours=hours,
            id=job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info("Scheduled %s every %d hour(s)", job_id, hours)
    scheduler.start()
    _scheduler = scheduler
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
    _scheduler = None
