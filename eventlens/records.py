"""Immutable records handed to the access-control engine.

The engine never touches ORM objects: the store converts rows into these
frozen dataclasses so every decision function works on plain data and can be
called concurrently without coordination.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Union

Timestamp = Union[datetime, str, None]


class Visibility(str, Enum):
    """Per-post visibility tier."""

    PUBLIC = "public"
    EVENT_ONLY = "event-only"
    PRIVATE = "private"

    @classmethod
    def coerce(cls, raw: object) -> Visibility:
        """Return the tier for ``raw``; unknown values fail closed to PRIVATE."""
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.PRIVATE


@dataclass(frozen=True)
class EventRecord:
    id: str
    title: str
    owner_id: str
    access_token: str
    start: Timestamp
    end: Timestamp = None
    is_private: bool = False
    allow_list: frozenset[str] | None = None
    members: frozenset[str] | None = None


@dataclass(frozen=True)
class PostRecord:
    id: str
    event_id: str
    author_id: str
    visibility: Visibility = Visibility.EVENT_ONLY
    caption: str | None = None
    image_url: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class DMThreadRecord:
    id: str
    event_id: str
    participants: tuple[str, str]
    message_count: int = 0
    last_message_at: datetime | None = None

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def other_participant(self, user_id: str) -> str | None:
        if not self.has_participant(user_id):
            return None
        first, second = self.participants
        return second if user_id == first else first


@dataclass(frozen=True)
class DMMessageRecord:
    thread_id: str
    sender_id: str
    content: str
    created_at: datetime
    id: str | None = None
