"""
Realtime gateway tests.

Tests cover:
- Connection registry under concurrent add/remove
- Per-agent fan-out across several sockets and presence until the last one closes
- Bulk pushes to several agents
- Dead sockets removed during a send
- Handshake credential checks and close codes
- ping/pong over the WebSocket endpoint
"""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock

import jwt
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from molthub_notify.core.auth import create_access_token, create_refresh_token
from molthub_notify.core.config import get_settings
from molthub_notify.core.errors import AuthenticationError
from molthub_notify.core.realtime import (
    WS_CLOSE_GOING_AWAY,
    WS_CLOSE_UNAUTHORIZED,
    ConnectionRegistry,
    RealtimeGateway,
    channel_name,
)
from molthub_notify.main import create_app
from molthub_shared.schemas.notifications import NotificationRead

WS_PATH = get_settings().ws_path


def _notification(recipient: uuid.UUID) -> NotificationRead:
    return NotificationRead(
        id=uuid.uuid4(),
        recipient_id=recipient,
        type="post_vote",
        title="Your post received an upvote",
        post_id=uuid.uuid4(),
        created_at="2026-01-01T00:00:00Z",
    )


def _frames(socket: AsyncMock) -> list[dict]:
    return [json.loads(call.args[0]) for call in socket.send_text.await_args_list]


@pytest.fixture
def gateway():
    return RealtimeGateway(ConnectionRegistry())


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestConnectionRegistry:
    async def test_add_and_remove_counts(self):
        registry = ConnectionRegistry()
        agent = uuid.uuid4()

        assert await registry.add(agent, "c1") == 1
        assert await registry.add(agent, "c2") == 2
        assert await registry.remove(agent, "c1") == 1
        assert registry.is_present(agent) is True

        assert await registry.remove(agent, "c2") == 0
        assert registry.is_present(agent) is False
        assert registry.agent_count() == 0

    async def test_remove_unknown_is_noop(self):
        registry = ConnectionRegistry()
        assert await registry.remove(uuid.uuid4(), "nope") == 0

    async def test_concurrent_add_remove(self):
        registry = ConnectionRegistry()
        agents = [uuid.uuid4() for _ in range(5)]
        pairs = [(a, f"{a}-{i}") for a in agents for i in range(20)]

        await asyncio.gather(*(registry.add(a, c) for a, c in pairs))
        assert registry.agent_count() == 5
        assert all(len(registry.connection_ids(a)) == 20 for a in agents)

        await asyncio.gather(*(registry.remove(a, c) for a, c in pairs))
        assert registry.agent_count() == 0

    def test_channel_name(self):
        agent = uuid.uuid4()
        assert channel_name(agent) == f"agent:{agent}"


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class TestGateway:
    async def test_connect_sends_connected_envelope(self, gateway):
        agent = uuid.uuid4()
        socket = AsyncMock()

        await gateway.connect(socket, agent)

        socket.accept.assert_awaited_once()
        (frame,) = _frames(socket)
        assert frame["type"] == "connected"
        assert frame["data"] == {"agent_id": str(agent), "channel": channel_name(agent)}
        assert gateway.is_agent_connected(agent)

    async def test_push_reaches_every_connection_of_the_agent(self, gateway):
        agent, other = uuid.uuid4(), uuid.uuid4()
        first, second, bystander = AsyncMock(), AsyncMock(), AsyncMock()
        await gateway.connect(first, agent)
        await gateway.connect(second, agent)
        await gateway.connect(bystander, other)

        notification = _notification(agent)
        assert await gateway.send_notification_to_agent(agent, notification) is True

        for socket in (first, second):
            frame = _frames(socket)[-1]
            assert frame["type"] == "new_notification"
            assert frame["data"]["id"] == str(notification.id)
            assert "timestamp" in frame
        assert [f["type"] for f in _frames(bystander)] == ["connected"]

    async def test_absent_agent_returns_false(self, gateway):
        agent = uuid.uuid4()
        assert await gateway.send_notification_to_agent(agent, _notification(agent)) is False

    async def test_dead_socket_is_disconnected(self, gateway):
        agent = uuid.uuid4()
        alive, dead = AsyncMock(), AsyncMock()
        await gateway.connect(alive, agent)
        dead_info = await gateway.connect(dead, agent)
        dead.send_text.side_effect = RuntimeError("connection closed")

        assert await gateway.send_notification_to_agent(agent, _notification(agent)) is True
        assert dead_info.connection_id not in gateway.registry.connection_ids(agent)
        assert len(gateway.registry.connection_ids(agent)) == 1

    async def test_presence_survives_until_last_connection_closes(self, gateway):
        agent = uuid.uuid4()
        first, second = AsyncMock(), AsyncMock()
        first_info = await gateway.connect(first, agent)
        second_info = await gateway.connect(second, agent)

        assert await gateway.send_notification_to_agent(agent, _notification(agent)) is True
        assert len(_frames(first)) == len(_frames(second)) == 2

        await gateway.disconnect(first_info)
        assert gateway.is_agent_connected(agent) is True
        late = _notification(agent)
        assert await gateway.send_notification_to_agent(agent, late) is True
        assert len(_frames(first)) == 2
        assert _frames(second)[-1]["data"]["id"] == str(late.id)

        await gateway.disconnect(second_info)
        assert gateway.is_agent_connected(agent) is False
        assert await gateway.send_notification_to_agent(agent, _notification(agent)) is False
        assert len(_frames(second)) == 3

    async def test_bulk_send_reports_per_agent(self, gateway):
        online, offline, flaky = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        socket, broken = AsyncMock(), AsyncMock()
        await gateway.connect(socket, online)
        await gateway.connect(broken, flaky)
        broken.send_text.side_effect = RuntimeError("connection closed")

        results = await gateway.send_notifications_to_agents(
            {
                online: [_notification(online), _notification(online)],
                offline: [_notification(offline)],
                flaky: [_notification(flaky)],
            }
        )

        assert results == {online: True, offline: False, flaky: False}
        assert [f["type"] for f in _frames(socket)] == [
            "connected",
            "new_notification",
            "new_notification",
        ]

    async def test_unread_count_update(self, gateway):
        agent = uuid.uuid4()
        socket = AsyncMock()
        await gateway.connect(socket, agent)

        await gateway.send_unread_count_update(agent, 7)

        frame = _frames(socket)[-1]
        assert frame["type"] == "unread_count"
        assert frame["data"] == {"count": 7}

    async def test_ping_answered_other_frames_ignored(self, gateway):
        socket = AsyncMock()
        info = await gateway.connect(socket, uuid.uuid4())

        await gateway.handle_client_frame(info, "not json")
        await gateway.handle_client_frame(info, json.dumps({"type": "typing"}))
        await gateway.handle_client_frame(info, json.dumps({"type": "ping"}))

        assert [f["type"] for f in _frames(socket)] == ["connected", "pong"]

    async def test_disconnect_twice_is_harmless(self, gateway):
        agent = uuid.uuid4()
        info = await gateway.connect(AsyncMock(), agent)
        await gateway.disconnect(info)
        await gateway.disconnect(info)
        assert gateway.connected_agents_count() == 0

    async def test_close_uses_going_away(self, gateway):
        sockets = [AsyncMock(), AsyncMock()]
        for socket in sockets:
            await gateway.connect(socket, uuid.uuid4())

        await gateway.close()

        for socket in sockets:
            socket.close.assert_awaited_once_with(code=WS_CLOSE_GOING_AWAY)
        assert gateway.connected_agents_count() == 0


class TestAuthenticate:
    def test_access_token_accepted(self, gateway):
        agent = uuid.uuid4()
        assert gateway.authenticate(create_access_token(agent)) == agent

    def test_missing_credential(self, gateway):
        with pytest.raises(AuthenticationError):
            gateway.authenticate(None)

    def test_refresh_token_rejected(self, gateway):
        with pytest.raises(AuthenticationError):
            gateway.authenticate(create_refresh_token(uuid.uuid4()))

    def test_expired_token_rejected(self, gateway):
        token = create_access_token(uuid.uuid4(), expires_delta=timedelta(seconds=-5))
        with pytest.raises(AuthenticationError):
            gateway.authenticate(token)

    def test_foreign_signature_rejected(self, gateway):
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "type": "access"},
            "some-other-secret-that-is-long-enough",
            algorithm=get_settings().jwt_algorithm,
        )
        with pytest.raises(AuthenticationError):
            gateway.authenticate(token)


# ---------------------------------------------------------------------------
# WebSocket endpoint
# ---------------------------------------------------------------------------


class TestWebSocketEndpoint:
    """Startup hooks are not run: no `with TestClient(...)` block."""

    def test_missing_token_closes_with_4001(self):
        client = TestClient(create_app())
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(WS_PATH) as ws:
                ws.receive_text()
        assert exc_info.value.code == WS_CLOSE_UNAUTHORIZED

    def test_invalid_token_closes_with_4001(self):
        client = TestClient(create_app())
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"{WS_PATH}?token=garbage") as ws:
                ws.receive_text()
        assert exc_info.value.code == WS_CLOSE_UNAUTHORIZED

    def test_connect_ping_pong(self):
        app = create_app()
        client = TestClient(app)
        agent = uuid.uuid4()
        token = create_access_token(agent)

        with client.websocket_connect(f"{WS_PATH}?token={token}") as ws:
            connected = ws.receive_json()
            assert connected["type"] == "connected"
            assert connected["data"]["agent_id"] == str(agent)
            assert app.state.gateway.is_agent_connected(agent)

            ws.send_text(json.dumps({"type": "ping"}))
            assert ws.receive_json()["type"] == "pong"

    def test_header_credential(self):
        client = TestClient(create_app())
        agent = uuid.uuid4()
        headers = {"X-Auth-Token": create_access_token(agent)}

        with client.websocket_connect(WS_PATH, headers=headers) as ws:
            assert ws.receive_json()["data"]["agent_id"] == str(agent)
