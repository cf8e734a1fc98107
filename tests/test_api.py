from __future__ import annotations

from datetime import timedelta
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from eventlens import api, database
from eventlens.crud import create_event, create_post, set_dm_preference
from eventlens.engine import AccessControlEngine
from eventlens.models import Event
from eventlens.records import EventRecord
from eventlens.results import ErrorKind
from eventlens.store import MemoryEventStore
from eventlens.utils import utcnow


@pytest.fixture()
def client(monkeypatch):
    """FastAPI test client with the scheduler disabled."""

    monkeypatch.setattr(api, "start_scheduler", lambda: None)
    monkeypatch.setattr(api, "stop_scheduler", lambda: None)
    with TestClient(api.app) as test_client:
        yield test_client
    api.app.dependency_overrides.clear()


def _make_event(
    *,
    event_id: str = "garden-party",
    is_private: bool = False,
    ended: bool = False,
    members: tuple[str, ...] = (),
    allow_list: tuple[str, ...] = (),
    posts: bool = True,
) -> str:
    now = utcnow()
    start = now - timedelta(days=3) if ended else now - timedelta(hours=1)
    end = now - timedelta(days=2) if ended else now + timedelta(hours=6)
    with database.get_session() as session:
        event = create_event(
            session,
            title="Garden Party",
            owner_id="host",
            start_time=start,
            end_time=end,
            is_private=is_private,
            event_id=event_id,
            members=members,
            allow_list=allow_list,
        )
        if posts:
            for offset, (author, visibility) in enumerate(
                [("ana", "public"), ("ana", "event-only"), ("ana", "private")]
            ):
                create_post(
                    session,
                    event=event,
                    author_id=author,
                    visibility=visibility,
                    caption=visibility,
                    created_at=now - timedelta(minutes=offset),
                )
        return event.access_token


def test_health(client):
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_access_reports_role(client):
    token = _make_event(is_private=True)
    owner = client.get(
        "/api/v1/events/garden-party/access", headers={"X-Viewer-Id": "host"}
    )
    guest = client.get(
        "/api/v1/events/garden-party/access",
        headers={"Authorization": f"Bearer {token}", "X-Viewer-Id": "zoe"},
    )
    nobody = client.get("/api/v1/events/garden-party/access")
    assert owner.json()["role"] == "owner"
    assert guest.json()["role"] == "guest"
    assert nobody.status_code == 404
    assert nobody.json()["error"] == "EventNotFound"
    assert owner.headers["cache-control"].startswith("no-store")


def test_wrong_token_looks_like_missing_event(client):
    _make_event(is_private=True)
    wrong = client.get("/api/v1/events/garden-party/access?token=forged")
    missing = client.get("/api/v1/events/nope/access?token=forged")
    assert wrong.status_code == missing.status_code == 404
    assert wrong.json() == missing.json()
    assert wrong.json()["error"] == "EventNotFound"


def test_hidden_event_looks_like_missing_event(client):
    _make_event(is_private=True, allow_list=("vip",))
    for suffix in ("access", "feed"):
        hidden = client.get(
            f"/api/v1/events/garden-party/{suffix}", headers={"X-Viewer-Id": "stranger"}
        )
        missing = client.get(
            f"/api/v1/events/nope/{suffix}", headers={"X-Viewer-Id": "stranger"}
        )
        assert hidden.status_code == missing.status_code == 404
        assert hidden.json() == missing.json()


def test_injection_in_path_is_rejected(client):
    _make_event()
    payload = quote("'; DROP TABLE events; --", safe="")
    resp = client.get(f"/api/v1/events/{payload}/access")
    assert resp.status_code == 400
    assert resp.json()["error"] == "SecurityViolation"
    # The table survived.
    assert client.get("/api/v1/events/garden-party/access").status_code == 200


def test_oversized_id_is_rejected(client):
    resp = client.get(f"/api/v1/events/{'e' * 256}/access")
    assert resp.status_code == 400
    assert resp.json()["error"] == "TooLong"


def test_expired_event_returns_gone(client):
    _make_event(ended=True)
    resp = client.get("/api/v1/events/garden-party/feed", headers={"X-Viewer-Id": "host"})
    assert resp.status_code == 410
    assert resp.json()["error"] == "EventExpired"


def test_feed_respects_visibility_tiers(client):
    token = _make_event(is_private=True)
    guest = client.get(
        "/api/v1/events/garden-party/feed",
        headers={"X-Event-Token": token, "X-Viewer-Id": "zoe"},
    )
    author = client.get(
        f"/api/v1/events/garden-party/feed?token={token}",
        headers={"X-Viewer-Id": "ana"},
    )
    outsider = client.get("/api/v1/events/garden-party/feed")
    assert [p["caption"] for p in guest.json()["posts"]] == ["public", "event-only"]
    assert [p["caption"] for p in author.json()["posts"]] == [
        "public",
        "event-only",
        "private",
    ]
    assert outsider.status_code == 404
    assert outsider.json()["error"] == "EventNotFound"


def test_feed_pagination_is_clamped(client):
    _make_event()
    first = client.get("/api/v1/events/garden-party/feed?limit=0")
    huge = client.get("/api/v1/events/garden-party/feed?limit=5000&offset=0")
    assert first.json()["pagination"] == {"limit": 1, "offset": 0, "total": 1}
    assert huge.json()["pagination"]["limit"] == 100


def test_qr_is_owner_only(client):
    token = _make_event()
    owner = client.get("/api/v1/events/garden-party/qr", headers={"X-Viewer-Id": "host"})
    other = client.get("/api/v1/events/garden-party/qr", headers={"X-Viewer-Id": "ana"})
    assert owner.status_code == 200
    assert owner.json()["payload"].endswith(f"/event/garden-party?token={token}")
    assert other.status_code == 403
    assert other.json()["error"] == "Forbidden"


def test_qr_resolve(client):
    resolved = client.post(
        "/api/v1/qr/resolve",
        json={"payload": "https://eventlens.app/event/garden-party?token=abc"},
    )
    hostile = client.post(
        "/api/v1/qr/resolve", json={"payload": "javascript:alert(1)//event/x"}
    )
    assert resolved.json() == {"event_id": "garden-party", "token": "abc"}
    assert hostile.status_code == 400
    assert hostile.json()["error"] == "ValidationFailure"


def test_dm_budget_flow(client):
    _make_event(members=("ana", "ben"), posts=False)
    opened = client.post(
        "/api/v1/events/garden-party/dm-threads",
        json={"recipient_id": "ben"},
        headers={"X-Viewer-Id": "ana"},
    )
    assert opened.status_code == 201
    thread_id = opened.json()["thread"]["id"]
    assert opened.json()["thread"]["participants"] == ["ana", "ben"]

    url = f"/api/v1/dm-threads/{thread_id}/messages"
    responses = [
        client.post(url, json={"content": f"hi {i}"}, headers={"X-Viewer-Id": "ana"})
        for i in range(10)
    ]
    assert all(r.status_code == 201 for r in responses)
    assert responses[0].json()["messageCount"] == 1
    assert "warning" not in responses[0].json()
    assert responses[7].json()["remaining"] == 2
    assert "2 messages left" in responses[7].json()["warning"]

    blocked = client.post(url, json={"content": "one more"}, headers={"X-Viewer-Id": "ben"})
    assert blocked.status_code == 429
    body = blocked.json()
    assert body["error"] == "BudgetExceeded"
    assert body["hint"]


def test_dm_send_by_outsider_is_forbidden(client):
    _make_event(members=("ana", "ben"), posts=False)
    opened = client.post(
        "/api/v1/events/garden-party/dm-threads",
        json={"recipient_id": "ben"},
        headers={"X-Viewer-Id": "ana"},
    )
    thread_id = opened.json()["thread"]["id"]
    resp = client.post(
        f"/api/v1/dm-threads/{thread_id}/messages",
        json={"content": "hello"},
        headers={"X-Viewer-Id": "mallory"},
    )
    assert resp.status_code == 403


def test_dm_opt_out_blocks_new_threads(client):
    _make_event(members=("ana", "ben"), posts=False)
    with database.get_session() as session:
        event = session.get(Event, "garden-party")
        set_dm_preference(session, event=event, user_id="ben", allow_dms=False)
    resp = client.post(
        "/api/v1/events/garden-party/dm-threads",
        json={"recipient_id": "ben"},
        headers={"X-Viewer-Id": "ana"},
    )
    assert resp.status_code == 403


def test_overlong_message_is_bad_request(client):
    _make_event(members=("ana", "ben"), posts=False)
    thread_id = client.post(
        "/api/v1/events/garden-party/dm-threads",
        json={"recipient_id": "ben"},
        headers={"X-Viewer-Id": "ana"},
    ).json()["thread"]["id"]
    resp = client.post(
        f"/api/v1/dm-threads/{thread_id}/messages",
        json={"content": "x" * 1001},
        headers={"X-Viewer-Id": "ana"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "ValidationFailure"


def test_status_mapping_covers_every_kind():
    assert set(api.STATUS_BY_KIND) == set(ErrorKind)
    assert api.STATUS_BY_KIND[ErrorKind.INVALID_EVENT_DATA] == 422


class _LockedStore(MemoryEventStore):
    def get_event(self, event_id):
        raise OperationalError("SELECT", {}, Exception("database is locked"))


def test_database_locked_returns_service_unavailable(client):
    api.app.dependency_overrides[api.get_engine] = lambda: AccessControlEngine(
        _LockedStore()
    )
    resp = client.get("/api/v1/events/garden-party/access")
    assert resp.status_code == 503


def test_invalid_event_data_is_unprocessable(client):
    store = MemoryEventStore()
    store.add_event(
        EventRecord(
            id="broken",
            title="Broken",
            owner_id="host",
            access_token="tok",
            start="not a date",
            end=None,
        )
    )
    api.app.dependency_overrides[api.get_engine] = lambda: AccessControlEngine(store)
    resp = client.get("/api/v1/events/broken/access")
    assert resp.status_code == 422
    assert resp.json()["error"] == "InvalidEventData"
