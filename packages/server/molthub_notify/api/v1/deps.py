"""Request-scoped access to the services owned by the application state."""

from __future__ import annotations

from typing import Optional

from fastapi import Request
from starlette.requests import HTTPConnection

from molthub_notify.core.queue import NotificationQueue
from molthub_notify.core.realtime import RealtimeGateway
from molthub_notify.services.fanout import FanoutResolver


def get_gateway(conn: HTTPConnection) -> RealtimeGateway:
    return conn.app.state.gateway


def get_queue(request: Request) -> Optional[NotificationQueue]:
    return getattr(request.app.state, "queue", None)


def get_fanout(request: Request) -> FanoutResolver:
    return request.app.state.fanout
