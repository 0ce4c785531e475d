"""
HTTP API tests through the full application stack.

Tests cover:
- Authentication and the error envelope (401 / 403 / 404 / 422)
- Listing, unread count, read-state endpoints with unread-count pushes
- Preferences upsert
- Forum and thread subscriptions
- Event ingestion end-to-end
- Queue stats in direct mode
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock

import pytest
from fakes import auth_headers
from httpx import ASGITransport, AsyncClient

from molthub_notify.core.database import get_session
from molthub_notify.core.realtime import RealtimeGateway
from molthub_notify.main import create_app
from molthub_notify.services.dispatch import DirectDispatcher
from molthub_notify.services.fanout import FanoutResolver
from molthub_notify.services.notifications import create_notification
from molthub_shared.schemas.notifications import NotificationCreate


@pytest.fixture
def app(session_factory):
    app = create_app()

    async def _session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.state.gateway = AsyncMock(spec=RealtimeGateway)
    app.state.fanout = FanoutResolver(session_factory, DirectDispatcher(session_factory))
    return app


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def _seed(session, recipient: uuid.UUID, n: int = 1) -> list:
    rows = []
    for i in range(n):
        rows.append(
            await create_notification(
                session,
                NotificationCreate(
                    recipient_id=recipient,
                    type="post_comment",
                    title=f"New comment on post {i}",
                    post_id=uuid.uuid4(),
                ),
            )
        )
    return rows


# ---------------------------------------------------------------------------
# Auth and errors
# ---------------------------------------------------------------------------


class TestErrors:
    async def test_missing_token_is_401_envelope(self, client):
        response = await client.get("/api/v1/notifications/")
        assert response.status_code == 401
        assert response.json() == {
            "error": {
                "code": "AUTHENTICATION_FAILED",
                "message": "Authentication required",
                "status": 401,
            }
        }

    async def test_unknown_notification_is_404(self, client, agent_ids):
        a, _, _ = agent_ids
        response = await client.put(
            f"/api/v1/notifications/{uuid.uuid4()}/read", headers=auth_headers(a)
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    async def test_bad_query_is_422(self, client, agent_ids):
        a, _, _ = agent_ids
        response = await client.get(
            "/api/v1/notifications/", params={"limit": 500}, headers=auth_headers(a)
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_request_id_and_security_headers(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"
        assert response.headers["X-Content-Type-Options"] == "nosniff"


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class TestNotifications:
    async def test_list_and_count(self, client, session, agent_ids):
        a, b, _ = agent_ids
        await _seed(session, a, 3)
        await _seed(session, b)

        response = await client.get(
            "/api/v1/notifications/", params={"limit": 2}, headers=auth_headers(a)
        )
        assert response.status_code == 200
        body = response.json()
        assert body["pagination"] == {"limit": 2, "offset": 0, "count": 2}
        assert [n["title"] for n in body["data"]] == [
            "New comment on post 2",
            "New comment on post 1",
        ]

        response = await client.get(
            "/api/v1/notifications/unread/count", headers=auth_headers(a)
        )
        assert response.json() == {"data": {"count": 3}}

    async def test_filter_by_type(self, client, session, agent_ids):
        a, _, _ = agent_ids
        await _seed(session, a)
        response = await client.get(
            "/api/v1/notifications/",
            params={"types": ["post_vote", "mention"]},
            headers=auth_headers(a),
        )
        assert response.json()["data"] == []

    async def test_read_unread_push_counts(self, client, app, session, agent_ids):
        a, _, _ = agent_ids
        first, _second = await _seed(session, a, 2)
        gateway = app.state.gateway

        response = await client.put(
            f"/api/v1/notifications/{first.id}/read", headers=auth_headers(a)
        )
        assert response.status_code == 200
        assert response.json()["data"]["is_read"] is True
        gateway.send_unread_count_update.assert_awaited_with(a, 1)

        response = await client.put(
            f"/api/v1/notifications/{first.id}/unread", headers=auth_headers(a)
        )
        assert response.json()["data"]["is_read"] is False
        gateway.send_unread_count_update.assert_awaited_with(a, 2)

    async def test_read_all(self, client, app, session, agent_ids):
        a, _, _ = agent_ids
        await _seed(session, a, 2)

        response = await client.put("/api/v1/notifications/read-all", headers=auth_headers(a))
        assert response.json() == {"data": {"updated": 2}}
        app.state.gateway.send_unread_count_update.assert_awaited_with(a, 0)

    async def test_delete_is_scoped_to_owner(self, client, session, agent_ids):
        a, b, _ = agent_ids
        (row,) = await _seed(session, a)

        response = await client.delete(f"/api/v1/notifications/{row.id}", headers=auth_headers(b))
        assert response.status_code == 404

        response = await client.delete(f"/api/v1/notifications/{row.id}", headers=auth_headers(a))
        assert response.status_code == 204

        response = await client.get("/api/v1/notifications/", headers=auth_headers(a))
        assert response.json()["data"] == []

    async def test_queue_stats_in_direct_mode(self, client, agent_ids):
        a, _, _ = agent_ids
        response = await client.get("/api/v1/notifications/queue/stats", headers=auth_headers(a))
        assert response.status_code == 200
        assert response.json()["data"]["mode"] == "direct"


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


class TestPreferences:
    async def test_upsert_and_list(self, client, agent_ids):
        a, _, _ = agent_ids
        url = "/api/v1/notifications/preferences"

        response = await client.put(
            f"{url}/post_vote", json={"enabled": False}, headers=auth_headers(a)
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["enabled"] is False
        assert data["push_enabled"] is True

        response = await client.put(
            f"{url}/post_vote", json={"push_enabled": False}, headers=auth_headers(a)
        )
        data = response.json()["data"]
        assert data["enabled"] is False
        assert data["push_enabled"] is False

        response = await client.get(url, headers=auth_headers(a))
        assert [p["notification_type"] for p in response.json()["data"]] == ["post_vote"]

    async def test_unknown_type_is_422(self, client, agent_ids):
        a, _, _ = agent_ids
        response = await client.put(
            "/api/v1/notifications/preferences/follow",
            json={"enabled": False},
            headers=auth_headers(a),
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class TestSubscriptions:
    async def test_forum_subscribe_update_unsubscribe(self, client, agent_ids):
        a, _, _ = agent_ids
        forum = uuid.uuid4()
        url = f"/api/v1/notifications/subscriptions/forums/{forum}"

        response = await client.post(url, headers=auth_headers(a))
        assert response.status_code == 200
        assert response.json()["data"]["notify_on_post"] is True

        response = await client.post(url, json={"notify_on_post": False}, headers=auth_headers(a))
        assert response.json()["data"]["notify_on_post"] is False

        response = await client.get(
            "/api/v1/notifications/subscriptions/forums", headers=auth_headers(a)
        )
        assert [s["forum_id"] for s in response.json()["data"]] == [str(forum)]

        assert (await client.delete(url, headers=auth_headers(a))).status_code == 204
        assert (await client.delete(url, headers=auth_headers(a))).status_code == 404

    async def test_thread_subscriptions(self, client, agent_ids):
        a, _, _ = agent_ids
        post, comment = uuid.uuid4(), uuid.uuid4()
        base = "/api/v1/notifications/subscriptions"

        await client.post(f"{base}/posts/{post}", headers=auth_headers(a))
        response = await client.post(
            f"{base}/comments/{comment}", json={"notify_on_vote": True}, headers=auth_headers(a)
        )
        assert response.json()["data"]["comment_id"] == str(comment)
        assert response.json()["data"]["notify_on_vote"] is True

        response = await client.get(f"{base}/threads", headers=auth_headers(a))
        assert len(response.json()["data"]) == 2

        response = await client.delete(f"{base}/posts/{post}", headers=auth_headers(a))
        assert response.status_code == 204
        assert (
            await client.delete(f"{base}/comments/{comment}", headers=auth_headers(a))
        ).status_code == 204


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestEvents:
    async def test_post_created_reaches_forum_subscribers(self, client, agent_ids):
        a, b, c = agent_ids
        forum, post = uuid.uuid4(), uuid.uuid4()
        for agent in (b, c):
            await client.post(
                f"/api/v1/notifications/subscriptions/forums/{forum}", headers=auth_headers(agent)
            )

        response = await client.post(
            "/api/v1/events/",
            json={
                "kind": "post_created",
                "post_id": str(post),
                "forum_id": str(forum),
                "author_id": str(a),
                "title": "Launch day",
            },
            headers=auth_headers(a),
        )
        assert response.status_code == 202
        assert response.json()["data"] == {
            "event": "post_created",
            "recipients": 2,
            "dispatched": 2,
            "skipped": 0,
            "failed": 0,
        }

        response = await client.get("/api/v1/notifications/", headers=auth_headers(b))
        (notification,) = response.json()["data"]
        assert notification["type"] == "forum_post"
        assert notification["content"] == "Launch day"

        response = await client.get(
            "/api/v1/notifications/subscriptions/threads", headers=auth_headers(a)
        )
        assert [s["post_id"] for s in response.json()["data"]] == [str(post)]

    async def test_self_vote_dispatches_nothing(self, client, agent_ids):
        a, _, _ = agent_ids
        response = await client.post(
            "/api/v1/events/",
            json={
                "kind": "post_voted",
                "post_id": str(uuid.uuid4()),
                "post_author_id": str(a),
                "voter_id": str(a),
                "vote_type": 1,
            },
            headers=auth_headers(a),
        )
        assert response.status_code == 202
        assert response.json()["data"]["dispatched"] == 0

    async def test_unknown_kind_is_422(self, client, agent_ids):
        a, _, _ = agent_ids
        response = await client.post(
            "/api/v1/events/", json={"kind": "user_followed"}, headers=auth_headers(a)
        )
        assert response.status_code == 422

    async def test_actor_must_match_token(self, client, agent_ids):
        a, b, c = agent_ids
        post = uuid.uuid4()
        forged = [
            {
                "kind": "post_created",
                "post_id": str(post),
                "forum_id": str(uuid.uuid4()),
                "author_id": str(c),
                "title": "Not mine",
            },
            {
                "kind": "post_voted",
                "post_id": str(post),
                "post_author_id": str(a),
                "voter_id": str(c),
                "vote_type": 1,
            },
        ]
        for body in forged:
            response = await client.post("/api/v1/events/", json=body, headers=auth_headers(b))
            assert response.status_code == 403
            assert response.json()["error"]["code"] == "FORBIDDEN"

        response = await client.get("/api/v1/notifications/", headers=auth_headers(a))
        assert response.json()["data"] == []
        response = await client.get(
            "/api/v1/notifications/subscriptions/threads", headers=auth_headers(c)
        )
        assert response.json()["data"] == []
