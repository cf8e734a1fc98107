"""Development helpers for populating fake events, feeds and DM threads."""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .crud import add_member, create_event, create_post, set_dm_preference
from .database import get_session
from .models import POST_VISIBILITIES, DMThread, Event
from .storage import init_db
from .utils import ordered_pair, utcnow

_event_types = [
    "Wedding",
    "Birthday",
    "Reunion",
    "Launch Party",
    "Hackathon",
    "Dinner",
    "Picnic",
]


def seed_fake_data(
    *,
    event_count: int = 3,
    members_per_event: int = 4,
    posts_per_event: int = 6,
    private_percentage: int = 30,
) -> dict[str, int]:
    """Populate the SQLite database with synthetic events, posts and DM threads."""
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if members_per_event < 0:
        raise ValueError("members_per_event must be >= 0")
    if posts_per_event < 0:
        raise ValueError("posts_per_event must be >= 0")
    if not 0 <= private_percentage <= 100:
        raise ValueError("private_percentage must be between 0 and 100")

    init_db()
    fake = Faker()
    stats = {"events": 0, "members": 0, "posts": 0, "threads": 0}

    with get_session() as session:
        for _ in range(event_count):
            event = _create_event(session, fake, private_percentage=private_percentage)
            stats["events"] += 1
            people = _create_members(session, fake, event, members_per_event)
            stats["members"] += len(people)
            stats["posts"] += _create_posts(
                session, fake, event, [event.owner_id, *people], posts_per_event
            )
            stats["threads"] += _create_threads(session, event, people)

    return stats


def _create_event(session: Session, fake: Faker, *, private_percentage: int) -> Event:
    start_time = _random_start_time()
    return create_event(
        session,
        title=f"{fake.first_name()}'s {random.choice(_event_types)}",
        owner_id=fake.user_name(),
        start_time=start_time,
        end_time=_maybe_end_time(start_time),
        is_private=random.randint(1, 100) <= private_percentage,
    )


def _random_start_time() -> datetime:
    now = utcnow()
    day_offset = random.randint(-1, 14)
    minute_offset = random.randint(0, 23 * 60)
    return now + timedelta(days=day_offset, minutes=minute_offset)


def _maybe_end_time(start_time: datetime) -> datetime | None:
    if random.random() < 0.3:
        return None
    return start_time + timedelta(hours=random.randint(2, 48))


def _create_members(
    session: Session, fake: Faker, event: Event, total: int
) -> list[str]:
    people: list[str] = []
    kind = "allowed" if event.is_private else "member"
    while len(people) < total:
        user_id = fake.unique.user_name()
        if user_id == event.owner_id:
            continue
        add_member(session, event=event, user_id=user_id, kind=kind)
        if random.random() < 0.2:
            set_dm_preference(session, event=event, user_id=user_id, allow_dms=False)
        people.append(user_id)
    return people


def _create_posts(
    session: Session, fake: Faker, event: Event, authors: list[str], total: int
) -> int:
    for index in range(total):
        # Cycle through the tiers so every feed has at least one of each.
        visibility = POST_VISIBILITIES[index % len(POST_VISIBILITIES)]
        create_post(
            session,
            event=event,
            author_id=random.choice(authors),
            visibility=visibility,
            caption=fake.sentence() if random.random() < 0.8 else None,
            image_url=fake.image_url(),
            created_at=utcnow() - timedelta(minutes=random.randint(0, 600)),
        )
    return total


def _create_threads(session: Session, event: Event, people: list[str]) -> int:
    created = 0
    for first, second in zip(people[::2], people[1::2]):
        low, high = ordered_pair(first, second)
        session.add(
            DMThread(
                event=event,
                participant1_id=low,
                participant2_id=high,
                message_count=random.randint(0, 5),
            )
        )
        created += 1
    session.flush()
    return created
