"""Identifier screening and cleaning.

Every event, user and thread id that arrives from a request passes through
``IdentifierSanitizer`` before it reaches the store. Rejected values are
logged by length and pattern group only.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import NewType

from .config import settings
from .results import ErrorKind, Failure

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

SanitizedId = NewType("SanitizedId", str)

DISALLOWED_CHARACTERS = "<>'\"&;"
COMMENT_MARKERS = ("--", "/*", "*/")

_STRIP_TABLE = str.maketrans("", "", DISALLOWED_CHARACTERS)

SQL_PATTERNS: tuple[str, ...] = (
    r"\b(?:drop|truncate|alter|create)\s+(?:table|database|schema|index|view|user)\b",
    r"\bunion\s+(?:all\s+)?select\b",
    r"\bselect\s+[\w\s,*().]+?\s+from\s+\w+",
    r"\bdelete\s+from\b",
    r"\binsert\s+into\b",
    r"\bupdate\s+\w+\s+set\b",
    r"['\"]\s*(?:or|and)\s+['\"]?\w+['\"]?\s*(?:=|<|>|\blike\b)",
    r"\b(?:or|and)\s+(\d+)\s*=\s*\1\b",
    r"[;'\"]\s*--",
    r";\s*(?:drop|delete|insert|update|select|alter|create|truncate|exec|shutdown)\b",
    r"/\*|\*/",
    r"\bexec(?:ute)?\s+(?:xp|sp)_\w+",
    r"\b(?:sleep|benchmark|pg_sleep|waitfor\s+delay)\s*\(",
)

MARKUP_PATTERNS: tuple[str, ...] = (
    r"<\s*/?\s*script\b",
    r"\b(?:java|vb)script\s*:",
    r"\bdata\s*:\s*text/html",
    r"\bon(?:abort|blur|change|click|dblclick|error|focus|input|keydown|keypress"
    r"|keyup|load|mousedown|mouseenter|mouseleave|mousemove|mouseout|mouseover"
    r"|mouseup|reset|resize|scroll|select|submit|unload)\s*=",
    r"<\s*(?:iframe|embed|object)\b",
    r"\beval\s*\(",
)


class IdentifierContext(str, Enum):
    """Where an identifier is used; each context has its own length cap."""

    QUERY = "query"
    QR = "qr"


@dataclass(frozen=True)
class PatternSet:
    """Immutable groups of compiled, case-insensitive security patterns."""

    groups: Mapping[str, tuple[re.Pattern[str], ...]]

    @classmethod
    def compile(cls, **groups: Iterable[str]) -> PatternSet:
        compiled = {
            name: tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)
            for name, patterns in groups.items()
        }
        return cls(groups=MappingProxyType(compiled))

    def first_match(self, value: str) -> str | None:
        """Return the name of the first group with a matching pattern."""
        for name, patterns in self.groups.items():
            if any(pattern.search(value) for pattern in patterns):
                return name
        return None


DEFAULT_PATTERNS = PatternSet.compile(sql=SQL_PATTERNS, markup=MARKUP_PATTERNS)


def default_limits() -> Mapping[IdentifierContext, int]:
    return MappingProxyType(
        {
            IdentifierContext.QUERY: settings.event_id_max_length,
            IdentifierContext.QR: settings.qr_id_max_length,
        }
    )


def strip_disallowed(value: str) -> str:
    """Remove markup/SQL punctuation and comment markers, then trim."""
    cleaned = value.translate(_STRIP_TABLE)
    while any(marker in cleaned for marker in COMMENT_MARKERS):
        for marker in COMMENT_MARKERS:
            cleaned = cleaned.replace(marker, "")
    return cleaned.strip()


class IdentifierSanitizer:
    """Validate and normalize untrusted identifiers."""

    def __init__(
        self,
        patterns: PatternSet = DEFAULT_PATTERNS,
        limits: Mapping[IdentifierContext, int] | None = None,
    ) -> None:
        self.patterns = patterns
        self.limits = limits if limits is not None else default_limits()

    def sanitize(
        self, raw: object, context: IdentifierContext = IdentifierContext.QUERY
    ) -> SanitizedId | Failure:
        if not isinstance(raw, str):
            return Failure(ErrorKind.INVALID_TYPE, "Identifier must be a string")
        if not raw.strip():
            return Failure(ErrorKind.EMPTY, "Identifier is required")

        max_length = self.limits[context]
        if len(raw) > max_length:
            return Failure(
                ErrorKind.TOO_LONG,
                f"Identifier must be at most {max_length} characters",
            )

        normalized = unicodedata.normalize("NFC", raw)
        group = self.patterns.first_match(normalized)
        if group is not None:
            logger.warning(
                "Rejected %s identifier (%d chars) matching %s patterns",
                context.value,
                len(raw),
                group,
            )
            return Failure(ErrorKind.SECURITY_VIOLATION, "Identifier is not allowed")

        cleaned = strip_disallowed(normalized)
        if not cleaned:
            return Failure(ErrorKind.EMPTY, "Identifier is required")
        return SanitizedId(cleaned)
