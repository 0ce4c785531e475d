"""
Dispatch strategies used by the fan-out resolver.

The queued strategy hands work to the durable queue. The direct strategy
persists and pushes inline and is chosen when Redis is unreachable at
startup, so a broker outage degrades latency instead of failing requests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Protocol

import redis.asyncio as redis
import structlog

from molthub_notify.core.config import Settings
from molthub_notify.core.database import SessionFactory
from molthub_notify.core.queue import NotificationQueue, RedisJobBroker
from molthub_notify.core.redis import redis_available
from molthub_notify.services.notifications import create_notification, notification_to_read
from molthub_shared.schemas.notifications import NotificationCreate

if TYPE_CHECKING:
    from molthub_notify.core.realtime import RealtimeGateway

log = structlog.get_logger()


class NotificationDispatcher(Protocol):
    mode: str

    async def dispatch(self, data: NotificationCreate, priority: int | None = None) -> None: ...


class QueuedDispatcher:
    mode = "queued"

    def __init__(self, queue: NotificationQueue):
        self._queue = queue

    async def dispatch(self, data: NotificationCreate, priority: int | None = None) -> None:
        await self._queue.queue_notification(data, priority)


class DirectDispatcher:
    """Persist in the caller's task, then push best-effort."""

    mode = "direct"

    def __init__(
        self,
        session_factory: SessionFactory,
        gateway: Optional["RealtimeGateway"] = None,
    ):
        self._session_factory = session_factory
        self._gateway = gateway

    async def dispatch(self, data: NotificationCreate, priority: int | None = None) -> None:
        async with self._session_factory() as session:
            notification = await create_notification(session, data)
            read = notification_to_read(notification)

        if self._gateway is None:
            return
        try:
            await self._gateway.send_notification_to_agent(read.recipient_id, read)
        except Exception as exc:
            log.warning("dispatch.push_failed", notification_id=str(read.id), error=str(exc))


async def select_dispatcher(
    client: redis.Redis,
    session_factory: SessionFactory,
    gateway: Optional["RealtimeGateway"],
    settings: Settings,
) -> tuple[NotificationDispatcher, Optional[NotificationQueue]]:
    """Ping Redis once and pick a strategy for the process lifetime."""
    if not await redis_available(client):
        log.warning("dispatch.direct_mode")
        return DirectDispatcher(session_factory, gateway), None

    broker = RedisJobBroker(
        client,
        settings.queue_name,
        keep_completed=settings.queue_keep_completed,
        keep_failed=settings.queue_keep_failed,
    )
    queue = NotificationQueue(broker, session_factory, gateway, settings=settings)
    await queue.start()
    log.info("dispatch.queued_mode", queue=settings.queue_name)
    return QueuedDispatcher(queue), queue
