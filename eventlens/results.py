"""Result and failure types returned by the access-control engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .records import DMMessageRecord


class ErrorKind(str, Enum):
    """Stable error kinds; the calling layer maps them to user-facing messages."""

    INVALID_TYPE = "InvalidType"
    EMPTY = "Empty"
    TOO_LONG = "TooLong"
    SECURITY_VIOLATION = "SecurityViolation"
    EVENT_NOT_FOUND = "EventNotFound"
    EVENT_EXPIRED = "EventExpired"
    FORBIDDEN = "Forbidden"
    BUDGET_EXCEEDED = "BudgetExceeded"
    VALIDATION_FAILURE = "ValidationFailure"
    INVALID_EVENT_DATA = "InvalidEventData"


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str
    hint: str | None = None

    @property
    def is_validation(self) -> bool:
        return self.kind in {ErrorKind.VALIDATION_FAILURE, ErrorKind.INVALID_EVENT_DATA}

    def as_dict(self) -> dict[str, str | None]:
        return {"error": self.kind.value, "message": self.message, "hint": self.hint}


# Shared so that "missing" and "hidden" are indistinguishable to callers.
EVENT_NOT_FOUND = Failure(ErrorKind.EVENT_NOT_FOUND, "Event not found")
EVENT_EXPIRED = Failure(ErrorKind.EVENT_EXPIRED, "This event has ended")
THREAD_FORBIDDEN = Failure(
    ErrorKind.FORBIDDEN, "You cannot send messages in this conversation"
)


class MembershipRole(str, Enum):
    OWNER = "owner"
    MEMBER = "member"
    GUEST = "guest"
    VISITOR = "visitor"
    NONE = "none"


@dataclass(frozen=True)
class Membership:
    """Resolved relationship between a viewer and one event."""

    event_id: str
    role: MembershipRole
    viewer_id: str | None = None

    @property
    def grants_access(self) -> bool:
        return self.role is not MembershipRole.NONE

    @property
    def is_member(self) -> bool:
        return self.role in {
            MembershipRole.OWNER,
            MembershipRole.MEMBER,
            MembershipRole.GUEST,
        }

    @property
    def is_owner(self) -> bool:
        return self.role is MembershipRole.OWNER


@dataclass(frozen=True)
class SendReceipt:
    message: DMMessageRecord
    message_count: int
    remaining: int
    hint: str | None = None

    @property
    def near_limit(self) -> bool:
        return self.hint is not None and self.remaining > 0
