"""CRUD helpers for events, members, posts, and DM preferences."""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import MEMBER_KINDS, POST_VISIBILITIES, Event, EventMember, EventUserPreference, Post
from .results import Failure
from .sanitize import IdentifierSanitizer
from .utils import normalize_identity, to_naive_utc, utcnow


def _now() -> datetime:
    return utcnow()


def mint_access_token() -> str:
    return secrets.token_urlsafe(32)


def create_event(
    session: Session,
    *,
    title: str,
    owner_id: str,
    start_time: datetime,
    end_time: datetime | None = None,
    is_private: bool = False,
    event_id: str | None = None,
    allow_list: Iterable[str] = (),
    members: Iterable[str] = (),
) -> Event:
    """Create and persist a new event with a freshly minted access token.

    A caller-chosen ``event_id`` must survive identifier sanitizing unchanged,
    otherwise the event could never be looked up again.
    """
    if event_id:
        clean_id = IdentifierSanitizer().sanitize(event_id)
        if isinstance(clean_id, Failure) or clean_id != normalize_identity(event_id):
            raise ValueError("Invalid event id")
    event = Event(
        access_token=mint_access_token(),
        title=title,
        owner_id=normalize_identity(owner_id),
        is_private=is_private,
        start_time=to_naive_utc(start_time),
        end_time=to_naive_utc(end_time),
    )
    if event_id:
        event.id = clean_id
    session.add(event)
    session.flush()
    for user_id in allow_list:
        add_member(session, event=event, user_id=user_id, kind="allowed")
    for user_id in members:
        add_member(session, event=event, user_id=user_id, kind="member")
    return event


def add_member(
    session: Session, *, event: Event, user_id: str, kind: str = "member"
) -> EventMember:
    """Add ``user_id`` to the event's allow-list or membership set."""
    kind = kind.lower()
    if kind not in MEMBER_KINDS:
        raise ValueError("Invalid member kind")
    normalized = normalize_identity(user_id)
    stmt = select(EventMember).where(
        EventMember.event_id == event.id,
        EventMember.user_id == normalized,
        EventMember.kind == kind,
    )
    existing = session.scalars(stmt).first()
    if existing:
        return existing
    member = EventMember(event=event, user_id=normalized, kind=kind)
    session.add(member)
    session.flush()
    return member


def create_post(
    session: Session,
    *,
    event: Event,
    author_id: str,
    visibility: str = "event-only",
    caption: str | None = None,
    image_url: str | None = None,
    created_at: datetime | None = None,
) -> Post:
    visibility = visibility.lower()
    if visibility not in POST_VISIBILITIES:
        raise ValueError("Invalid post visibility")
    post = Post(
        event=event,
        author_id=normalize_identity(author_id),
        visibility=visibility,
        caption=(caption or "").strip() or None,
        image_url=image_url,
        created_at=to_naive_utc(created_at) or _now(),
    )
    session.add(post)
    session.flush()
    return post


def set_dm_preference(
    session: Session, *, event: Event, user_id: str, allow_dms: bool
) -> EventUserPreference:
    """Opt a user in or out of DMs for one event."""
    normalized = normalize_identity(user_id)
    stmt = select(EventUserPreference).where(
        EventUserPreference.event_id == event.id,
        EventUserPreference.user_id == normalized,
    )
    preference = session.scalars(stmt).first()
    if preference is None:
        preference = EventUserPreference(event=event, user_id=normalized)
    preference.allow_dms = bool(allow_dms)
    preference.last_modified = _now()
    session.add(preference)
    session.flush()
    return preference


def rotate_access_token(session: Session, event: Event) -> str:
    """Replace the event's token; links minted from the old one stop working."""
    event.access_token = mint_access_token()
    event.last_modified = _now()
    session.add(event)
    session.flush()
    return event.access_token
