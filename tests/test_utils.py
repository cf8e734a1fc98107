from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

from eventlens.utils import (
    humanize_time,
    normalize_identity,
    ordered_pair,
    same_identity,
    to_naive_utc,
)


def test_humanize_time_handles_future_and_past():
    now = datetime(2024, 1, 1, 12, 0, 0)
    future = now + timedelta(days=2, hours=3)
    past = now - timedelta(seconds=10)
    assert humanize_time(future, now=now) == "in 2 days"
    assert humanize_time(past, now=now) == "moments ago"
    assert humanize_time(now - timedelta(hours=1), now=now) == "1 hour ago"
    assert humanize_time(None) == ""


def test_to_naive_utc_converts_aware_values():
    aware = datetime(2026, 1, 1, 10, 0, tzinfo=timezone(timedelta(hours=-5)))
    assert to_naive_utc(aware) == datetime(2026, 1, 1, 15, 0)
    naive = datetime(2026, 1, 1, 10, 0)
    assert to_naive_utc(naive) is naive
    assert to_naive_utc(datetime(2026, 1, 1, tzinfo=UTC)).tzinfo is None
    assert to_naive_utc(None) is None


def test_normalize_identity_uses_nfc():
    assert normalize_identity("cafe\u0301") == "caf\u00e9"
    assert normalize_identity(None) is None


def test_same_identity_ignores_normalization_form():
    assert same_identity("Zo\u00eb", "Zoe\u0308")
    assert not same_identity("zoe", "Zoe")
    assert not same_identity(None, None)


def test_ordered_pair_sorts_normalized_ids():
    assert ordered_pair("zoe", "ana") == ("ana", "zoe")
    assert ordered_pair("ana", "zoe") == ("ana", "zoe")
    assert ordered_pair("café", "bob") == ("bob", "café")
