from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, make_event
from eventlens.expiration import (
    EventDataError,
    ExpirationGuard,
    parse_timestamp,
    validity_instant,
)
from eventlens.results import ErrorKind


@pytest.fixture()
def guard() -> ExpirationGuard:
    return ExpirationGuard(clock=lambda: NOW)


def test_event_inside_window_is_not_expired(guard):
    event = make_event(start=NOW - timedelta(hours=2), end=NOW + timedelta(hours=1))
    assert guard.is_expired(event) is False
    assert guard.check(event) is None


def test_event_past_end_is_expired(guard):
    event = make_event(start=NOW - timedelta(hours=3), end=NOW - timedelta(seconds=1))
    assert guard.is_expired(event) is True
    failure = guard.check(event)
    assert failure is not None and failure.kind is ErrorKind.EVENT_EXPIRED


def test_exactly_now_is_not_expired(guard):
    event = make_event(start=NOW - timedelta(hours=3), end=NOW)
    assert guard.is_expired(event) is False


def test_start_only_event_expires_after_its_start(guard):
    upcoming = make_event(start=NOW + timedelta(minutes=5), end="")
    started = make_event(start=NOW - timedelta(minutes=5), end="")
    assert guard.is_expired(upcoming) is False
    assert guard.is_expired(started) is True


def test_explicit_now_overrides_clock(guard):
    event = make_event(end=NOW + timedelta(hours=1))
    assert guard.is_expired(event, now=NOW + timedelta(hours=2)) is True


def test_iso_strings_and_aware_datetimes_are_accepted(guard):
    iso_event = make_event(
        start="2026-06-01T08:00:00Z", end="2026-06-01T13:00:00+00:00"
    )
    assert guard.is_expired(iso_event) is False
    aware_end = datetime(2026, 6, 1, 13, 30, tzinfo=timezone(timedelta(hours=2)))
    aware_event = make_event(start=NOW - timedelta(hours=1), end=aware_end)
    # 13:30+02:00 is 11:30 UTC, before NOW.
    assert guard.is_expired(aware_event) is True


def test_malformed_timestamps_are_invalid_event_data(guard):
    event = make_event(end="next tuesday")
    with pytest.raises(EventDataError):
        guard.is_expired(event)
    failure = guard.check(event)
    assert failure is not None
    assert failure.kind is ErrorKind.INVALID_EVENT_DATA
    assert failure.is_validation


def test_missing_start_and_end_is_invalid_event_data(guard):
    event = make_event(start="", end="")
    failure = guard.check(event)
    assert failure is not None and failure.kind is ErrorKind.INVALID_EVENT_DATA


def test_validity_instant_prefers_end():
    start = NOW - timedelta(hours=1)
    end = NOW + timedelta(hours=1)
    assert validity_instant(make_event(start=start, end=end)) == end
    assert validity_instant(make_event(start=start, end="")) == start


def test_parse_timestamp_rejects_unsupported_types():
    assert parse_timestamp(None) is None
    assert parse_timestamp("  ") is None
    with pytest.raises(EventDataError):
        parse_timestamp(1234567890)  # type: ignore[arg-type]
