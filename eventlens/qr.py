"""QR payload links used to join an event feed.

Rendering the QR image is left to the client; this module only builds and
parses the link it encodes: ``{base_url}/event/{event_id}?token={token}``.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import parse_qs, quote, unquote, urlencode, urlsplit

from .results import ErrorKind, Failure
from .sanitize import IdentifierContext, IdentifierSanitizer, SanitizedId

INVALID_PAYLOAD = Failure(ErrorKind.VALIDATION_FAILURE, "Not an event QR code")


@dataclass(frozen=True)
class QRPayload:
    event_id: SanitizedId
    token: str | None


def build_qr_payload(event_id: str, token: str | None, base_url: str) -> str:
    url = f"{base_url.rstrip('/')}/event/{quote(event_id, safe='')}"
    if token:
        url = f"{url}?{urlencode({'token': token})}"
    return url


def parse_qr_payload(
    payload: object, sanitizer: IdentifierSanitizer
) -> QRPayload | Failure:
    """Extract the event id (and token, if any) from a scanned link."""
    if not isinstance(payload, str):
        return Failure(ErrorKind.INVALID_TYPE, "QR payload must be a string")
    try:
        parts = urlsplit(payload.strip())
    except ValueError:
        return INVALID_PAYLOAD
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        return INVALID_PAYLOAD

    segments = [segment for segment in parts.path.split("/") if segment]
    if len(segments) < 2 or segments[-2] != "event":
        return INVALID_PAYLOAD

    event_id = sanitizer.sanitize(unquote(segments[-1]), IdentifierContext.QR)
    if isinstance(event_id, Failure):
        return event_id

    tokens = parse_qs(parts.query).get("token") or [None]
    return QRPayload(event_id=event_id, token=tokens[0])
