"""Typer CLI for EventLens."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .crud import rotate_access_token
from .database import get_session
from .models import Event
from .retention import run_retention_cycle, vacuum_database
from .scheduler import start_scheduler, stop_scheduler
from .seed import seed_fake_data
from .storage import init_db, upgrade_database
from .utils import humanize_time, normalize_identity

app = typer.Typer(help="EventLens command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _exit_if_readonly(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            f"Unable to {action} because the database is read-only. "
            f"Ensure write access to {settings.database_path}.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


def _load_event(session, event_id: str) -> Event:
    event = session.get(Event, normalize_identity(event_id))
    if event is None:
        typer.secho(f"Event {event_id} not found.", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return event


@app.command("event-token")
def event_token(event_id: str = typer.Argument(..., help="Event id")) -> None:
    """Print an event's capability token for its host."""
    init_db()
    with get_session() as session:
        event = _load_event(session, event_id)
        typer.echo(event.access_token)
        ends = event.end_time or event.start_time
        typer.echo(f"Valid until {ends.isoformat()} ({humanize_time(ends)})", err=True)


@app.command("rotate-event-token")
def rotate_event_token(event_id: str = typer.Argument(..., help="Event id")) -> None:
    """Issue a new capability token; existing links and QR codes stop working."""
    try:
        init_db()
        with get_session() as session:
            token = rotate_access_token(session, _load_event(session, event_id))
    except OperationalError as exc:
        _exit_if_readonly(exc, "rotate the event token")
        raise
    typer.echo(token)


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _exit_if_readonly(exc, "upgrade")
        raise

    if not actions:
        typer.echo("Database already up to date.")
        return

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("retention")
def retention(
    vacuum: bool = typer.Option(
        False,
        "--vacuum",
        help="Run SQLite VACUUM after the retention cycle completes",
    ),
) -> None:
    """Delete expired DM threads manually."""
    init_db()
    stats = run_retention_cycle()
    typer.echo(f"Retention complete: {stats}")
    if vacuum:
        vacuum_database()
        typer.echo("Database vacuum complete.")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start FastAPI with APScheduler."""
    init_db()
    if settings.enable_scheduler:
        start_scheduler()
    config = uvicorn.Config(
        "eventlens.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    try:
        typer.echo(f"Starting EventLens on {host}:{port}")
        server.run()
    finally:
        stop_scheduler()


@app.command("seed-data")
def seed_data(
    events: int = typer.Option(
        settings.seed_events, "--events", min=0, help="Number of events to create"
    ),
    members: int = typer.Option(
        settings.seed_members_per_event,
        "--members",
        min=0,
        help="Members (or allow-listed guests) per event",
    ),
    posts: int = typer.Option(
        settings.seed_posts_per_event,
        "--posts",
        min=0,
        help="Posts per event, spread across visibility tiers",
    ),
    private_percent: int = typer.Option(
        30,
        "--private-percent",
        min=0,
        max=100,
        help="Percentage of events that should be private (0-100)",
    ),
):
    """Populate the database with fake events for testing."""
    stats = seed_fake_data(
        event_count=events,
        members_per_event=members,
        posts_per_event=posts,
        private_percentage=private_percent,
    )
    typer.echo(
        f"Seed complete: {stats['events']} events, {stats['members']} members, "
        f"{stats['posts']} posts, {stats['threads']} DM threads created."
    )


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    dm_message_budget: int | None = typer.Option(
        None, "--dm-message-budget", min=1, help="Messages allowed per DM thread"
    ),
    dm_warning_threshold: int | None = typer.Option(
        None,
        "--dm-warning-threshold",
        min=0,
        help="Remaining messages at which senders are warned",
    ),
    dm_retention_days: int | None = typer.Option(
        None,
        "--dm-retention-days",
        min=0,
        help="Days after an event ends before its DM threads are deleted",
    ),
    retention_interval_hours: int | None = typer.Option(
        None,
        "--retention-interval-hours",
        min=1,
        help="Hours between retention runs",
    ),
    vacuum_hours: int | None = typer.Option(
        None, "--vacuum-hours", help="Hours between SQLite VACUUM runs"
    ),
    feed_page_size: int | None = typer.Option(
        None, "--feed-page-size", min=1, help="Default feed page size"
    ),
    qr_base_url: str | None = typer.Option(
        None, "--qr-base-url", help="Base URL encoded in QR payloads"
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to eventlens.toml (default: ./eventlens.toml)"
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle background scheduler (retention/vacuum)",
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "dm_message_budget": dm_message_budget,
        "dm_warning_threshold": dm_warning_threshold,
        "dm_retention_days": dm_retention_days,
        "retention_interval_hours": retention_interval_hours,
        "sqlite_vacuum_hours": vacuum_hours,
        "feed_page_size": feed_page_size,
        "qr_base_url": qr_base_url,
        "app_host": host,
        "app_port": port,
        "enable_scheduler": enable_scheduler,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    settings_ref = settings
    target_path = config_path or settings.config_path
    if clean_updates:
        try:
            settings_ref = update_config_file(clean_updates, path=target_path)
        except ValueError as exc:
            typer.secho(str(exc), err=True, fg=typer.colors.RED)
            raise typer.Exit(code=1) from exc
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


if __name__ == "__main__":
    app()
