"""Access-control entry points called by the request handlers."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from .authorization import TokenAuthorizer
from .config import settings
from .expiration import ExpirationGuard
from .ledger import MessageBudgetLedger
from .qr import QRPayload, build_qr_payload, parse_qr_payload
from .records import DMThreadRecord, EventRecord, PostRecord
from .results import EVENT_NOT_FOUND, ErrorKind, Failure, Membership, SendReceipt
from .sanitize import IdentifierContext, IdentifierSanitizer, SanitizedId
from .store import EventStore
from .utils import same_identity, utcnow
from .visibility import VisibilityFilter

DM_FORBIDDEN = Failure(ErrorKind.FORBIDDEN, "You cannot message this person")


class AccessControlEngine:
    def __init__(
        self,
        store: EventStore,
        *,
        sanitizer: IdentifierSanitizer | None = None,
        guard: ExpirationGuard | None = None,
        ledger: MessageBudgetLedger | None = None,
        visibility: VisibilityFilter | None = None,
        clock: Callable[[], datetime] = utcnow,
        token_max_length: int | None = None,
        qr_base_url: str | None = None,
    ) -> None:
        self.store = store
        self.sanitizer = sanitizer or IdentifierSanitizer()
        self.guard = guard or ExpirationGuard(clock=clock)
        self.authorizer = TokenAuthorizer(store)
        self.ledger = ledger or MessageBudgetLedger(store, clock=clock)
        self.visibility = visibility or VisibilityFilter()
        self.token_max_length = token_max_length or settings.token_max_length
        self.qr_base_url = qr_base_url or settings.qr_base_url

    def _check_token(self, token: object) -> str | Failure | None:
        if token is None:
            return None
        if not isinstance(token, str):
            return Failure(ErrorKind.INVALID_TYPE, "Token must be a string")
        if not token.strip():
            return Failure(ErrorKind.EMPTY, "Token is required")
        if len(token) > self.token_max_length:
            return Failure(
                ErrorKind.TOO_LONG,
                f"Token must be at most {self.token_max_length} characters",
            )
        return token.strip()

    def _sanitize_optional(
        self, raw: object, context: IdentifierContext = IdentifierContext.QUERY
    ) -> SanitizedId | Failure | None:
        if raw is None:
            return None
        return self.sanitizer.sanitize(raw, context)

    def authorize_event_access(
        self,
        event_id: object,
        token: object = None,
        viewer_id: object = None,
        *,
        context: IdentifierContext = IdentifierContext.QUERY,
    ) -> Membership | Failure:
        """Resolve the viewer's membership, or fail.

        An event the viewer cannot see fails with the same ``EventNotFound``
        as an event that does not exist.
        """
        resolved = self._resolve(event_id, token, viewer_id, context)
        return resolved if isinstance(resolved, Failure) else resolved[1]

    def _resolve(
        self,
        event_id: object,
        token: object,
        viewer_id: object,
        context: IdentifierContext,
    ) -> tuple[EventRecord, Membership] | Failure:
        clean_event_id = self.sanitizer.sanitize(event_id, context)
        if isinstance(clean_event_id, Failure):
            return clean_event_id
        clean_viewer = self._sanitize_optional(viewer_id)
        if isinstance(clean_viewer, Failure):
            return clean_viewer
        clean_token = self._check_token(token)
        if isinstance(clean_token, Failure):
            return clean_token

        event = self.authorizer.lookup(clean_event_id)
        if isinstance(event, Failure):
            return event
        expired = self.guard.check(event)
        if expired is not None:
            return expired
        membership = self.authorizer.resolve(
            event, token=clean_token, viewer_id=clean_viewer
        )
        if isinstance(membership, Failure):
            return membership
        if not membership.grants_access:
            return EVENT_NOT_FOUND
        return event, membership

    def filter_feed(
        self,
        event_id: object,
        viewer_id: object = None,
        token: object = None,
    ) -> list[PostRecord] | Failure:
        membership = self.authorize_event_access(event_id, token, viewer_id)
        if isinstance(membership, Failure):
            return membership
        posts = self.store.get_posts_for_event(membership.event_id)
        return self.visibility.filter_feed(posts, membership)

    def try_send(
        self, thread_id: object, sender_id: object, content: object
    ) -> SendReceipt | Failure:
        clean_thread = self.sanitizer.sanitize(thread_id)
        if isinstance(clean_thread, Failure):
            return clean_thread
        clean_sender = self.sanitizer.sanitize(sender_id)
        if isinstance(clean_sender, Failure):
            return clean_sender
        return self.ledger.try_send(clean_thread, clean_sender, content)

    def open_dm_thread(
        self,
        event_id: object,
        initiator_id: object,
        recipient_id: object,
        token: object = None,
    ) -> DMThreadRecord | Failure:
        """Return the DM thread between two people at one event, creating it once."""
        clean_recipient = self.sanitizer.sanitize(recipient_id)
        if isinstance(clean_recipient, Failure):
            return clean_recipient
        if initiator_id is None:
            return DM_FORBIDDEN
        membership = self.authorize_event_access(event_id, token, initiator_id)
        if isinstance(membership, Failure):
            return membership
        initiator = membership.viewer_id
        if not membership.is_member or same_identity(initiator, clean_recipient):
            return DM_FORBIDDEN
        if not self.store.allows_dms(membership.event_id, clean_recipient):
            return DM_FORBIDDEN

        existing = self.store.find_dm_thread(
            membership.event_id, initiator, clean_recipient
        )
        if existing is not None:
            return existing
        return self.store.create_dm_thread(
            membership.event_id, initiator, clean_recipient
        )

    def issue_qr_payload(
        self, event_id: object, viewer_id: object
    ) -> str | Failure:
        """Build the join link for an event; only its owner may request it."""
        resolved = self._resolve(event_id, None, viewer_id, IdentifierContext.QR)
        if isinstance(resolved, Failure):
            return resolved
        event, membership = resolved
        if not membership.is_owner:
            return Failure(ErrorKind.FORBIDDEN, "Only the host can share this event")
        return build_qr_payload(event.id, event.access_token, self.qr_base_url)

    def resolve_qr_payload(self, payload: object) -> QRPayload | Failure:
        return parse_qr_payload(payload, self.sanitizer)
