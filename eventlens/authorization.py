"""Capability-token and membership resolution over already-sanitized ids."""

from __future__ import annotations

import hmac
import logging

from .records import EventRecord
from .results import EVENT_NOT_FOUND, Failure, Membership, MembershipRole
from .store import EventStore
from .utils import normalize_identity, same_identity

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")


def token_matches(event: EventRecord, token: str | None) -> bool:
    if not token or not event.access_token:
        return False
    return hmac.compare_digest(token.encode("utf-8"), event.access_token.encode("utf-8"))


def _listed(viewer_id: str | None, identities: frozenset[str] | None) -> bool:
    if viewer_id is None or not identities:
        return False
    normalized = normalize_identity(viewer_id)
    return any(normalize_identity(identity) == normalized for identity in identities)


class TokenAuthorizer:
    def __init__(self, store: EventStore) -> None:
        self.store = store

    def lookup(self, event_id: str) -> EventRecord | Failure:
        event = self.store.get_event(event_id)
        return event if event is not None else EVENT_NOT_FOUND

    def authorize(
        self,
        event_id: str,
        token: str | None = None,
        viewer_id: str | None = None,
    ) -> Membership | Failure:
        event = self.lookup(event_id)
        if isinstance(event, Failure):
            return event
        return self.resolve(event, token=token, viewer_id=viewer_id)

    def resolve(
        self,
        event: EventRecord,
        *,
        token: str | None = None,
        viewer_id: str | None = None,
    ) -> Membership | Failure:
        """Resolve ``viewer_id`` (and an optional token) against ``event``."""
        role = self._role(event, token=token, viewer_id=viewer_id)
        if isinstance(role, Failure):
            return role
        logger.debug(
            "Resolved %s membership for event %s", role.value, event.id
        )
        return Membership(event_id=event.id, role=role, viewer_id=viewer_id)

    def _role(
        self,
        event: EventRecord,
        *,
        token: str | None,
        viewer_id: str | None,
    ) -> MembershipRole | Failure:
        presented = token is not None
        valid_token = token_matches(event, token)

        if same_identity(viewer_id, event.owner_id):
            return MembershipRole.OWNER

        restricted = event.allow_list if event.is_private else event.members
        if restricted:
            if presented and not valid_token:
                return EVENT_NOT_FOUND
            return (
                MembershipRole.MEMBER
                if _listed(viewer_id, restricted)
                else MembershipRole.NONE
            )

        if _listed(viewer_id, event.members):
            return MembershipRole.MEMBER
        if valid_token:
            return MembershipRole.GUEST
        if event.is_private:
            return EVENT_NOT_FOUND if presented else MembershipRole.NONE
        return MembershipRole.VISITOR
