"""SQLAlchemy models for EventLens."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()

POST_VISIBILITIES = ("public", "event-only", "private")
MEMBER_KINDS = ("allowed", "member")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class Event(Base):
    __tablename__ = "events"

    id = Column(String(255), primary_key=True, default=_uuid)
    access_token = Column(String(128), nullable=False, unique=True)
    title = Column(String(255), nullable=False)
    owner_id = Column(String(255), nullable=False)
    is_private = Column(Boolean, default=False, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    members = relationship(
        "EventMember", back_populates="event", cascade="all, delete-orphan"
    )
    posts = relationship(
        "Post",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="Post.created_at",
    )
    dm_threads = relationship(
        "DMThread", back_populates="event", cascade="all, delete-orphan"
    )
    preferences = relationship(
        "EventUserPreference", back_populates="event", cascade="all, delete-orphan"
    )

    @property
    def allow_list(self) -> set[str]:
        return {m.user_id for m in self.members if m.kind == "allowed"}

    @property
    def member_ids(self) -> set[str]:
        return {m.user_id for m in self.members if m.kind == "member"}


class EventMember(Base):
    __tablename__ = "event_members"
    __table_args__ = (UniqueConstraint("event_id", "user_id", "kind"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(255), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(255), nullable=False)
    kind = Column(String(16), nullable=False, default="member")
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="members")


class Post(Base):
    __tablename__ = "posts"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(255), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    author_id = Column(String(255), nullable=False)
    visibility = Column(String(16), nullable=False, default="event-only")
    caption = Column(Text, nullable=True)
    image_url = Column(String(2048), nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="posts")


class DMThread(Base):
    __tablename__ = "dm_threads"
    __table_args__ = (
        UniqueConstraint("event_id", "participant1_id", "participant2_id"),
        CheckConstraint(
            "participant1_id < participant2_id", name="ordered_participants"
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(255), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    participant1_id = Column(String(255), nullable=False)
    participant2_id = Column(String(255), nullable=False)
    message_count = Column(Integer, default=0, nullable=False)
    last_message_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="dm_threads")
    messages = relationship(
        "DMMessage",
        back_populates="thread",
        cascade="all, delete-orphan",
        order_by="DMMessage.created_at",
    )


class DMMessage(Base):
    __tablename__ = "dm_messages"
    __table_args__ = (
        CheckConstraint("length(content) <= 1000", name="content_max_length"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    thread_id = Column(
        String(36), ForeignKey("dm_threads.id", ondelete="CASCADE"), nullable=False
    )
    sender_id = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    thread = relationship("DMThread", back_populates="messages")


class EventUserPreference(Base):
    __tablename__ = "event_user_preferences"
    __table_args__ = (UniqueConstraint("event_id", "user_id"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(255), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(255), nullable=False)
    allow_dms = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    event = relationship("Event", back_populates="preferences")
