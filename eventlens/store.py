"""Stores the access-control engine reads events, posts and DM threads from."""

from __future__ import annotations

import dataclasses
import threading
import uuid
from collections import defaultdict
from collections.abc import Callable
from contextlib import contextmanager
from typing import Iterator, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import database
from .models import DMMessage, DMThread, Event, EventUserPreference, Post
from .records import (
    DMMessageRecord,
    DMThreadRecord,
    EventRecord,
    PostRecord,
    Visibility,
)
from .utils import ordered_pair, utcnow


class EventStore(Protocol):
    def get_event(self, event_id: str) -> EventRecord | None: ...

    def get_posts_for_event(self, event_id: str) -> list[PostRecord]: ...

    def get_dm_thread(self, thread_id: str) -> DMThreadRecord | None: ...

    def increment_message_count_if_under_budget(
        self, thread_id: str, budget: int
    ) -> int | None:
        """Atomically bump the counter when it is below ``budget``.

        Returns the new count, or ``None`` when the budget is exhausted or
        the thread is gone.
        """
        ...

    def insert_message(
        self, thread_id: str, message: DMMessageRecord
    ) -> DMMessageRecord: ...

    def find_dm_thread(
        self, event_id: str, first_id: str, second_id: str
    ) -> DMThreadRecord | None: ...

    def create_dm_thread(
        self, event_id: str, first_id: str, second_id: str
    ) -> DMThreadRecord: ...

    def allows_dms(self, event_id: str, user_id: str) -> bool: ...


def event_record(event: Event) -> EventRecord:
    allow_list = frozenset(event.allow_list)
    members = frozenset(event.member_ids)
    return EventRecord(
        id=event.id,
        title=event.title,
        owner_id=event.owner_id,
        access_token=event.access_token,
        start=event.start_time,
        end=event.end_time,
        is_private=bool(event.is_private),
        allow_list=allow_list or None,
        members=members or None,
    )


def post_record(post: Post) -> PostRecord:
    return PostRecord(
        id=post.id,
        event_id=post.event_id,
        author_id=post.author_id,
        visibility=Visibility.coerce(post.visibility),
        caption=post.caption,
        image_url=post.image_url,
        created_at=post.created_at,
    )


def thread_record(thread: DMThread) -> DMThreadRecord:
    return DMThreadRecord(
        id=thread.id,
        event_id=thread.event_id,
        participants=(thread.participant1_id, thread.participant2_id),
        message_count=thread.message_count,
        last_message_at=thread.last_message_at,
    )


def message_record(message: DMMessage) -> DMMessageRecord:
    return DMMessageRecord(
        id=message.id,
        thread_id=message.thread_id,
        sender_id=message.sender_id,
        content=message.content,
        created_at=message.created_at,
    )


class SqlEventStore:
    """``EventStore`` backed by the SQLAlchemy models.

    Each call runs in its own short transaction so the guarded counter update
    is the first write of its transaction and holds the row (or, on SQLite,
    the database) lock only for the duration of that statement.
    """

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        factory = self._session_factory or database.SessionLocal
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_event(self, event_id: str) -> EventRecord | None:
        with self._session() as session:
            event = session.get(Event, event_id)
            return event_record(event) if event else None

    def get_posts_for_event(self, event_id: str) -> list[PostRecord]:
        stmt = (
            select(Post)
            .where(Post.event_id == event_id)
            .order_by(Post.created_at.desc(), Post.id)
        )
        with self._session() as session:
            return [post_record(post) for post in session.scalars(stmt).all()]

    def get_dm_thread(self, thread_id: str) -> DMThreadRecord | None:
        with self._session() as session:
            thread = session.get(DMThread, thread_id)
            return thread_record(thread) if thread else None

    def increment_message_count_if_under_budget(
        self, thread_id: str, budget: int
    ) -> int | None:
        stmt = (
            update(DMThread)
            .where(DMThread.id == thread_id, DMThread.message_count < budget)
            .values(
                message_count=DMThread.message_count + 1,
                last_message_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        with self._session() as session:
            result = session.execute(stmt)
            if result.rowcount != 1:
                return None
            return session.scalar(
                select(DMThread.message_count).where(DMThread.id == thread_id)
            )

    def insert_message(
        self, thread_id: str, message: DMMessageRecord
    ) -> DMMessageRecord:
        with self._session() as session:
            row = DMMessage(
                thread_id=thread_id,
                sender_id=message.sender_id,
                content=message.content,
                created_at=message.created_at,
            )
            session.add(row)
            session.flush()
            return message_record(row)

    def find_dm_thread(
        self, event_id: str, first_id: str, second_id: str
    ) -> DMThreadRecord | None:
        low, high = ordered_pair(first_id, second_id)
        stmt = select(DMThread).where(
            DMThread.event_id == event_id,
            DMThread.participant1_id == low,
            DMThread.participant2_id == high,
        )
        with self._session() as session:
            thread = session.scalars(stmt).first()
            return thread_record(thread) if thread else None

    def create_dm_thread(
        self, event_id: str, first_id: str, second_id: str
    ) -> DMThreadRecord:
        low, high = ordered_pair(first_id, second_id)
        try:
            with self._session() as session:
                thread = DMThread(
                    event_id=event_id,
                    participant1_id=low,
                    participant2_id=high,
                    message_count=0,
                )
                session.add(thread)
                session.flush()
                return thread_record(thread)
        except IntegrityError:
            # Another request opened the same pair first.
            existing = self.find_dm_thread(event_id, low, high)
            if existing is None:
                raise
            return existing

    def allows_dms(self, event_id: str, user_id: str) -> bool:
        stmt = select(EventUserPreference.allow_dms).where(
            EventUserPreference.event_id == event_id,
            EventUserPreference.user_id == user_id,
        )
        with self._session() as session:
            value = session.scalar(stmt)
        return True if value is None else bool(value)


class MemoryEventStore:
    """In-process ``EventStore`` for tests and local tooling."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: dict[str, EventRecord] = {}
        self.posts: dict[str, list[PostRecord]] = defaultdict(list)
        self.threads: dict[str, DMThreadRecord] = {}
        self.messages: dict[str, list[DMMessageRecord]] = defaultdict(list)
        self.dm_opt_outs: set[tuple[str, str]] = set()

    def add_event(self, event: EventRecord) -> EventRecord:
        self.events[event.id] = event
        return event

    def add_post(self, post: PostRecord) -> PostRecord:
        self.posts[post.event_id].append(post)
        return post

    def add_thread(self, thread: DMThreadRecord) -> DMThreadRecord:
        with self._lock:
            self.threads[thread.id] = thread
        return thread

    def set_allow_dms(self, event_id: str, user_id: str, allow: bool) -> None:
        key = (event_id, user_id)
        if allow:
            self.dm_opt_outs.discard(key)
        else:
            self.dm_opt_outs.add(key)

    def get_event(self, event_id: str) -> EventRecord | None:
        return self.events.get(event_id)

    def get_posts_for_event(self, event_id: str) -> list[PostRecord]:
        return list(self.posts.get(event_id, ()))

    def get_dm_thread(self, thread_id: str) -> DMThreadRecord | None:
        return self.threads.get(thread_id)

    def increment_message_count_if_under_budget(
        self, thread_id: str, budget: int
    ) -> int | None:
        with self._lock:
            thread = self.threads.get(thread_id)
            if thread is None or thread.message_count >= budget:
                return None
            updated = dataclasses.replace(
                thread,
                message_count=thread.message_count + 1,
                last_message_at=utcnow(),
            )
            self.threads[thread_id] = updated
            return updated.message_count

    def insert_message(
        self, thread_id: str, message: DMMessageRecord
    ) -> DMMessageRecord:
        stored = dataclasses.replace(message, id=message.id or str(uuid.uuid4()))
        with self._lock:
            self.messages[thread_id].append(stored)
        return stored

    def _match_thread(
        self, event_id: str, first_id: str, second_id: str
    ) -> DMThreadRecord | None:
        # Caller holds _lock.
        pair = ordered_pair(first_id, second_id)
        for thread in self.threads.values():
            if thread.event_id == event_id and thread.participants == pair:
                return thread
        return None

    def find_dm_thread(
        self, event_id: str, first_id: str, second_id: str
    ) -> DMThreadRecord | None:
        with self._lock:
            return self._match_thread(event_id, first_id, second_id)

    def create_dm_thread(
        self, event_id: str, first_id: str, second_id: str
    ) -> DMThreadRecord:
        with self._lock:
            existing = self._match_thread(event_id, first_id, second_id)
            if existing is not None:
                return existing
            thread = DMThreadRecord(
                id=str(uuid.uuid4()),
                event_id=event_id,
                participants=ordered_pair(first_id, second_id),
            )
            self.threads[thread.id] = thread
            return thread

    def allows_dms(self, event_id: str, user_id: str) -> bool:
        return (event_id, user_id) not in self.dm_opt_outs
