"""Fixed-size message budget for ephemeral DM threads."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from .config import settings
from .records import DMMessageRecord
from .results import THREAD_FORBIDDEN, ErrorKind, Failure, SendReceipt
from .store import EventStore
from .utils import same_identity, utcnow

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

CONTACT_HINT = "Exchange contact info directly to keep the conversation going."


def budget_exceeded(budget: int) -> Failure:
    return Failure(
        ErrorKind.BUDGET_EXCEEDED,
        f"You've reached the {budget} message limit.",
        hint=CONTACT_HINT,
    )


class MessageBudgetLedger:
    """Guard the write path for DM messages.

    The counter is only ever advanced through the store's atomic
    ``increment_message_count_if_under_budget``; this class never reads the
    count and writes it back.
    """

    def __init__(
        self,
        store: EventStore,
        *,
        budget: int | None = None,
        max_length: int | None = None,
        warning_threshold: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.budget = budget if budget is not None else settings.dm_message_budget
        self.max_length = (
            max_length if max_length is not None else settings.dm_content_max_length
        )
        self.warning_threshold = (
            warning_threshold
            if warning_threshold is not None
            else settings.dm_warning_threshold
        )
        self.clock = clock

    def validate_content(self, content: object) -> str | Failure:
        if not isinstance(content, str) or not content.strip():
            return Failure(ErrorKind.VALIDATION_FAILURE, "Message content is required")
        if len(content) > self.max_length:
            return Failure(
                ErrorKind.VALIDATION_FAILURE,
                f"Message must be at most {self.max_length} characters",
            )
        return content.strip()

    def remaining_hint(self, remaining: int) -> str | None:
        if remaining <= 0:
            return (
                f"You've used all {self.budget} messages. Time to meet in person "
                "or exchange contact info."
            )
        if remaining <= self.warning_threshold:
            suffix = "" if remaining == 1 else "s"
            return (
                f"Only {remaining} message{suffix} left. Exchange contact info "
                "before the limit runs out."
            )
        return None

    def try_send(
        self, thread_id: str, sender_id: str, content: object
    ) -> SendReceipt | Failure:
        cleaned = self.validate_content(content)
        if isinstance(cleaned, Failure):
            return cleaned

        thread = self.store.get_dm_thread(thread_id)
        if thread is None or not any(
            same_identity(sender_id, participant) for participant in thread.participants
        ):
            return THREAD_FORBIDDEN

        count = self.store.increment_message_count_if_under_budget(
            thread_id, self.budget
        )
        if not count:
            logger.info("DM thread %s reached its %d message budget", thread_id, self.budget)
            return budget_exceeded(self.budget)

        message = self.store.insert_message(
            thread_id,
            DMMessageRecord(
                thread_id=thread_id,
                sender_id=sender_id,
                content=cleaned,
                created_at=self.clock(),
            ),
        )
        remaining = max(self.budget - count, 0)
        return SendReceipt(
            message=message,
            message_count=count,
            remaining=remaining,
            hint=self.remaining_hint(remaining),
        )
