"""Utility helpers for EventLens."""

from __future__ import annotations

from datetime import UTC, datetime
import unicodedata


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Convert aware datetimes to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def normalize_identity(value: str | None) -> str | None:
    """Return the NFC form of an identifier so composed and decomposed ids compare equal."""
    if value is None:
        return None
    return unicodedata.normalize("NFC", value)


def same_identity(left: str | None, right: str | None) -> bool:
    if left is None or right is None:
        return False
    return normalize_identity(left) == normalize_identity(right)


def ordered_pair(first: str, second: str) -> tuple[str, str]:
    """Return the two participant ids in storage order (lowest first)."""
    a = normalize_identity(first) or ""
    b = normalize_identity(second) or ""
    return (a, b) if a < b else (b, a)


def humanize_time(value: datetime | None, *, now: datetime | None = None) -> str:
    """Return a friendly string such as 'in 2 hours' or '3 days ago'."""
    if not value:
        return ""
    now = now or utcnow()
    delta_seconds = (value - now).total_seconds()
    past = delta_seconds < 0
    seconds = abs(delta_seconds)

    units = [
        ("day", 24 * 3600),
        ("hour", 3600),
        ("minute", 60),
    ]

    for name, step in units:
        amount = int(seconds // step)
        if amount >= 1:
            label = name if amount == 1 else f"{name}s"
            return f"{amount} {label} ago" if past else f"in {amount} {label}"
    return "moments ago" if past else "in moments"
