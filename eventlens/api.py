"""FastAPI application for EventLens."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib

from fastapi import Depends, FastAPI, Header, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .engine import AccessControlEngine
from .records import DMMessageRecord, DMThreadRecord, PostRecord
from .results import ErrorKind, Failure
from .scheduler import start_scheduler, stop_scheduler
from .storage import init_db
from .store import SqlEventStore

# Use uvicorn's error logger so messages get the level prefix in the default log
# format (needed for downstream filtering like Loki).
logger = logging.getLogger("uvicorn.error")

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_TYPE: 400,
    ErrorKind.EMPTY: 400,
    ErrorKind.TOO_LONG: 400,
    ErrorKind.SECURITY_VIOLATION: 400,
    ErrorKind.VALIDATION_FAILURE: 400,
    ErrorKind.EVENT_NOT_FOUND: 404,
    ErrorKind.EVENT_EXPIRED: 410,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.BUDGET_EXCEEDED: 429,
    ErrorKind.INVALID_EVENT_DATA: 422,
}


def _no_cache(response: Response) -> Response:
    """Prevent clients from caching access decisions so fresh data is shown."""
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return response


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("eventlens")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    if settings.enable_scheduler:
        start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="EventLens", version=APP_VERSION, lifespan=lifespan)


def get_engine() -> AccessControlEngine:
    return AccessControlEngine(SqlEventStore())


def _failure_response(failure: Failure) -> JSONResponse:
    status = STATUS_BY_KIND.get(failure.kind, 400)
    return _no_cache(JSONResponse(failure.as_dict(), status_code=status))


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def _get_event_token(request: Request) -> str | None:
    """Return the capability token from the header, bearer auth or query string."""
    return (
        _get_bearer_token(request)
        or request.headers.get("x-event-token")
        or request.query_params.get("token")
    )


def _serialize_post(post: PostRecord):
    return {
        "id": post.id,
        "event_id": post.event_id,
        "author_id": post.author_id,
        "visibility": post.visibility.value,
        "caption": post.caption,
        "image_url": post.image_url,
        "created_at": post.created_at.isoformat() if post.created_at else None,
    }


def _serialize_thread(thread: DMThreadRecord):
    return {
        "id": thread.id,
        "event_id": thread.event_id,
        "participants": list(thread.participants),
        "message_count": thread.message_count,
        "last_message_at": (
            thread.last_message_at.isoformat() if thread.last_message_at else None
        ),
    }


def _serialize_message(message: DMMessageRecord):
    return {
        "id": message.id,
        "thread_id": message.thread_id,
        "sender_id": message.sender_id,
        "content": message.content,
        "created_at": message.created_at.isoformat(),
    }


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    return JSONResponse({"detail": detail}, status_code=status)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"detail": exc.errors()}, status_code=422)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


class QRResolvePayload(BaseModel):
    payload: str


class DMThreadCreatePayload(BaseModel):
    recipient_id: str


class DMMessageCreatePayload(BaseModel):
    content: str


# -------- JSON API (v1) --------


@app.get("/api/v1/health")
def api_health():
    return {"status": "ok", "version": APP_VERSION}


@app.get("/api/v1/events/{event_id}/access")
def api_event_access(
    event_id: str,
    request: Request,
    viewer_id: str | None = Header(None, alias="X-Viewer-Id"),
    engine: AccessControlEngine = Depends(get_engine),
):
    membership = engine.authorize_event_access(
        event_id, _get_event_token(request), viewer_id
    )
    if isinstance(membership, Failure):
        return _failure_response(membership)
    return _no_cache(
        JSONResponse(
            {
                "event_id": membership.event_id,
                "role": membership.role.value,
                "viewer_id": membership.viewer_id,
            }
        )
    )


@app.get("/api/v1/events/{event_id}/feed")
def api_event_feed(
    event_id: str,
    request: Request,
    limit: int | None = Query(None),
    offset: int = Query(0, ge=0),
    viewer_id: str | None = Header(None, alias="X-Viewer-Id"),
    engine: AccessControlEngine = Depends(get_engine),
):
    posts = engine.filter_feed(event_id, viewer_id, _get_event_token(request))
    if isinstance(posts, Failure):
        return _failure_response(posts)
    page_size = settings.feed_page_size if limit is None else limit
    page_size = max(1, min(page_size, settings.feed_max_page_size))
    page = posts[offset : offset + page_size]
    return _no_cache(
        JSONResponse(
            {
                "posts": [_serialize_post(post) for post in page],
                "pagination": {
                    "limit": page_size,
                    "offset": offset,
                    "total": len(posts),
                },
            }
        )
    )


@app.get("/api/v1/events/{event_id}/qr")
def api_event_qr(
    event_id: str,
    viewer_id: str | None = Header(None, alias="X-Viewer-Id"),
    engine: AccessControlEngine = Depends(get_engine),
):
    payload = engine.issue_qr_payload(event_id, viewer_id)
    if isinstance(payload, Failure):
        return _failure_response(payload)
    return _no_cache(JSONResponse({"payload": payload}))


@app.post("/api/v1/qr/resolve")
def api_resolve_qr(
    body: QRResolvePayload, engine: AccessControlEngine = Depends(get_engine)
):
    resolved = engine.resolve_qr_payload(body.payload)
    if isinstance(resolved, Failure):
        return _failure_response(resolved)
    return {"event_id": resolved.event_id, "token": resolved.token}


@app.post("/api/v1/events/{event_id}/dm-threads", status_code=201)
def api_open_dm_thread(
    event_id: str,
    body: DMThreadCreatePayload,
    request: Request,
    viewer_id: str | None = Header(None, alias="X-Viewer-Id"),
    engine: AccessControlEngine = Depends(get_engine),
):
    thread = engine.open_dm_thread(
        event_id, viewer_id, body.recipient_id, _get_event_token(request)
    )
    if isinstance(thread, Failure):
        return _failure_response(thread)
    return _no_cache(
        JSONResponse({"thread": _serialize_thread(thread)}, status_code=201)
    )


@app.post("/api/v1/dm-threads/{thread_id}/messages", status_code=201)
def api_send_dm(
    thread_id: str,
    body: DMMessageCreatePayload,
    viewer_id: str | None = Header(None, alias="X-Viewer-Id"),
    engine: AccessControlEngine = Depends(get_engine),
):
    receipt = engine.try_send(thread_id, viewer_id, body.content)
    if isinstance(receipt, Failure):
        return _failure_response(receipt)
    payload = {
        "message": _serialize_message(receipt.message),
        "messageCount": receipt.message_count,
        "remaining": receipt.remaining,
    }
    if receipt.hint:
        payload["warning"] = receipt.hint
    return _no_cache(JSONResponse(payload, status_code=201))
