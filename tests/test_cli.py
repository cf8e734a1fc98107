from __future__ import annotations

import json
from datetime import timedelta

from typer.testing import CliRunner

from eventlens import cli, database
from eventlens.crud import create_event
from eventlens.models import Event
from eventlens.utils import utcnow

runner = CliRunner()


def _seed_event() -> str:
    with database.get_session() as session:
        event = create_event(
            session,
            title="Launch",
            owner_id="host",
            start_time=utcnow(),
            end_time=utcnow() + timedelta(hours=2),
            event_id="launch",
        )
        return event.access_token


def test_event_token_prints_token():
    token = _seed_event()
    result = runner.invoke(cli.app, ["event-token", "launch"])
    assert result.exit_code == 0
    assert result.stdout.splitlines()[0] == token


def test_event_token_unknown_event_exits_nonzero():
    result = runner.invoke(cli.app, ["event-token", "missing"])
    assert result.exit_code == 1


def test_rotate_event_token_replaces_token():
    previous = _seed_event()
    result = runner.invoke(cli.app, ["rotate-event-token", "launch"])
    assert result.exit_code == 0
    rotated = result.stdout.strip()
    assert rotated != previous
    with database.get_session() as session:
        assert session.get(Event, "launch").access_token == rotated


def test_config_show_reads_given_path(tmp_path):
    path = tmp_path / "eventlens.toml"
    path.write_text("dm_message_budget = 4\n", encoding="utf-8")
    result = runner.invoke(cli.app, ["config", "--show", "--config-path", str(path)])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["dm_message_budget"] == 4
    assert payload["config_path"] == str(path)


def test_config_rejects_invalid_update(tmp_path):
    path = tmp_path / "eventlens.toml"
    result = runner.invoke(
        cli.app, ["config", "--dm-message-budget", "2", "--config-path", str(path)]
    )
    assert result.exit_code == 1
    assert not path.exists()
