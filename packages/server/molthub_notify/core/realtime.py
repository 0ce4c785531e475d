"""
Realtime notification delivery over WebSockets.

Features:
- Access-token handshake; rejected before any registry change
- Per-agent channel (`agent:<id>`) fanning out to every live connection
- Typed push envelope: new_notification / unread_count / connected / pong
- Dead sockets found during a send are disconnected
- Graceful shutdown closing every socket with 1001
"""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

import structlog
from fastapi import WebSocket

from molthub_notify.core.auth import decode_access_token
from molthub_notify.core.errors import AuthenticationError
from molthub_shared.schemas.common import PushMessageType
from molthub_shared.schemas.notifications import NotificationRead, PushEnvelope

log = structlog.get_logger()

WS_CLOSE_GOING_AWAY = 1001
WS_CLOSE_UNAUTHORIZED = 4001


def channel_name(agent_id: uuid.UUID) -> str:
    return f"agent:{agent_id}"


class ConnectionRegistry:
    """agent id -> set of connection ids, safe for concurrent add/remove."""

    def __init__(self) -> None:
        self._agents: dict[uuid.UUID, set[str]] = {}
        self._lock = asyncio.Lock()

    async def add(self, agent_id: uuid.UUID, connection_id: str) -> int:
        """Register a connection. Returns the agent's connection count."""
        async with self._lock:
            connections = self._agents.setdefault(agent_id, set())
            connections.add(connection_id)
            return len(connections)

    async def remove(self, agent_id: uuid.UUID, connection_id: str) -> int:
        """Unregister a connection. An agent with no connections is dropped."""
        async with self._lock:
            connections = self._agents.get(agent_id)
            if connections is None:
                return 0
            connections.discard(connection_id)
            if not connections:
                del self._agents[agent_id]
                return 0
            return len(connections)

    def is_present(self, agent_id: uuid.UUID) -> bool:
        return bool(self._agents.get(agent_id))

    def connection_ids(self, agent_id: uuid.UUID) -> frozenset[str]:
        return frozenset(self._agents.get(agent_id, ()))

    def agent_count(self) -> int:
        return len(self._agents)

    async def clear(self) -> None:
        async with self._lock:
            self._agents.clear()


class ConnectionInfo:
    """Tracks a single WebSocket connection."""

    __slots__ = ("websocket", "agent_id", "connection_id")

    def __init__(self, websocket: WebSocket, agent_id: uuid.UUID):
        self.websocket = websocket
        self.agent_id = agent_id
        self.connection_id = uuid.uuid4().hex


class RealtimeGateway:
    """
    Owns live sockets on top of a ConnectionRegistry.

    The registry answers presence; the gateway maps connection ids back to
    sockets and does the actual sending.
    """

    def __init__(self, registry: ConnectionRegistry):
        self._registry = registry
        self._sockets: dict[str, ConnectionInfo] = {}

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    # --- Handshake ---

    def authenticate(self, credential: str | None) -> uuid.UUID:
        if not credential:
            raise AuthenticationError("Authentication required")
        return decode_access_token(credential)

    async def connect(self, websocket: WebSocket, agent_id: uuid.UUID) -> ConnectionInfo:
        """Accept an authenticated socket and join it to the agent's channel."""
        await websocket.accept()
        info = ConnectionInfo(websocket, agent_id)
        self._sockets[info.connection_id] = info
        count = await self._registry.add(agent_id, info.connection_id)

        await self._send(
            info,
            self._envelope(
                PushMessageType.CONNECTED,
                {"agent_id": str(agent_id), "channel": channel_name(agent_id)},
            ),
        )
        log.info(
            "realtime.connected",
            agent_id=str(agent_id),
            connection_id=info.connection_id,
            connections=count,
        )
        return info

    async def disconnect(self, info: ConnectionInfo) -> None:
        if self._sockets.pop(info.connection_id, None) is None:
            return
        remaining = await self._registry.remove(info.agent_id, info.connection_id)
        log.info(
            "realtime.disconnected",
            agent_id=str(info.agent_id),
            connection_id=info.connection_id,
            connections=remaining,
        )

    # --- Sending ---

    @staticmethod
    def _envelope(message_type: PushMessageType, data: Any = None) -> str:
        envelope = PushEnvelope(
            type=message_type, data=data, timestamp=datetime.now(timezone.utc)
        )
        return envelope.model_dump_json()

    async def _send(self, info: ConnectionInfo, text: str) -> bool:
        try:
            await info.websocket.send_text(text)
            return True
        except Exception:
            return False

    async def _broadcast(self, agent_id: uuid.UUID, text: str) -> int:
        """Send to every connection in the agent's channel. Returns delivered count."""
        delivered = 0
        dead: list[ConnectionInfo] = []
        for connection_id in self._registry.connection_ids(agent_id):
            info = self._sockets.get(connection_id)
            if info is None:
                continue
            if await self._send(info, text):
                delivered += 1
            else:
                dead.append(info)

        for info in dead:
            await self.disconnect(info)
        return delivered

    async def send_notification_to_agent(
        self, agent_id: uuid.UUID, notification: NotificationRead
    ) -> bool:
        """Push a notification. False when the agent has no live connection."""
        if not self._registry.is_present(agent_id):
            return False
        text = self._envelope(
            PushMessageType.NEW_NOTIFICATION, notification.model_dump(mode="json")
        )
        delivered = await self._broadcast(agent_id, text)
        log.debug(
            "realtime.notification_sent",
            agent_id=str(agent_id),
            notification_id=str(notification.id),
            delivered=delivered,
        )
        return delivered > 0

    async def send_notifications_to_agents(
        self, notifications: Mapping[uuid.UUID, Sequence[NotificationRead]]
    ) -> dict[uuid.UUID, bool]:
        """Push several notifications per agent.

        An agent maps to True only when every one of its notifications reached
        a live connection. A failure for one agent does not stop the others.
        """
        results: dict[uuid.UUID, bool] = {}
        for agent_id, items in notifications.items():
            try:
                sent = [await self.send_notification_to_agent(agent_id, n) for n in items]
            except Exception as exc:
                log.error("realtime.bulk_send_failed", agent_id=str(agent_id), error=str(exc))
                sent = [False]
            results[agent_id] = bool(sent) and all(sent)
        return results

    async def send_unread_count_update(self, agent_id: uuid.UUID, count: int) -> None:
        if not self._registry.is_present(agent_id):
            return
        await self._broadcast(
            agent_id, self._envelope(PushMessageType.UNREAD_COUNT, {"count": count})
        )

    async def handle_client_frame(self, info: ConnectionInfo, raw: str) -> None:
        """Answer client frames. Only `ping` is understood; the rest is ignored."""
        try:
            frame = json.loads(raw)
        except ValueError:
            return
        if isinstance(frame, dict) and frame.get("type") == "ping":
            await self._send(info, self._envelope(PushMessageType.PONG))

    # --- Presence ---

    def is_agent_connected(self, agent_id: uuid.UUID) -> bool:
        return self._registry.is_present(agent_id)

    def connected_agents_count(self) -> int:
        return self._registry.agent_count()

    # --- Shutdown ---

    async def close(self) -> None:
        """Close every live socket and empty the registry."""
        for info in list(self._sockets.values()):
            try:
                await info.websocket.close(code=WS_CLOSE_GOING_AWAY)
            except Exception as exc:
                log.debug(
                    "realtime.close_failed", connection_id=info.connection_id, error=str(exc)
                )
        self._sockets.clear()
        await self._registry.clear()
        log.info("realtime.closed")
