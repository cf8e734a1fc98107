"""Event validity window checks."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from .records import EventRecord, Timestamp
from .results import EVENT_EXPIRED, ErrorKind, Failure
from .utils import to_naive_utc, utcnow


class EventDataError(ValueError):
    """Raised by ``is_expired`` when an event carries unusable timestamps."""


def parse_timestamp(value: Timestamp) -> datetime | None:
    """Return ``value`` as a naive UTC datetime, or ``None`` when absent.

    Raises ``EventDataError`` for values that are neither datetimes nor
    ISO-8601 strings.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if raw.endswith(("Z", "z")):
            raw = f"{raw[:-1]}+00:00"
        try:
            return to_naive_utc(datetime.fromisoformat(raw))
        except ValueError as exc:
            raise EventDataError(f"Unparsable timestamp {value!r}") from exc
    raise EventDataError(f"Unsupported timestamp type {type(value).__name__}")


def validity_instant(event: EventRecord) -> datetime:
    """Return the instant after which the event no longer grants access.

    The end timestamp wins when present; otherwise the start is the only
    valid instant.
    """
    end = parse_timestamp(event.end)
    if end is not None:
        return end
    start = parse_timestamp(event.start)
    if start is None:
        raise EventDataError(f"Event {event.id} has no start timestamp")
    return start


class ExpirationGuard:
    """Decide whether an event is still inside its access window.

    "Exactly now" is not expired: the comparison is strict.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self.clock = clock

    def is_expired(self, event: EventRecord, *, now: datetime | None = None) -> bool:
        current = to_naive_utc(now) if now is not None else self.clock()
        return validity_instant(event) < current

    def check(self, event: EventRecord, *, now: datetime | None = None) -> Failure | None:
        """Return a failure for expired or malformed events, ``None`` otherwise."""
        try:
            expired = self.is_expired(event, now=now)
        except EventDataError as exc:
            return Failure(ErrorKind.INVALID_EVENT_DATA, str(exc))
        return EVENT_EXPIRED if expired else None
