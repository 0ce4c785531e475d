"""
Redis client used as the delivery queue transport.

One lazily created client per process. `redis_available` is the single
probe used both when choosing a dispatcher at startup and by /ready.
"""

from __future__ import annotations

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from molthub_notify.core.config import get_settings

settings = get_settings()
log = structlog.get_logger()

_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Return the shared client, creating it on first use."""
    global _client
    if _client is None:
        _client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            health_check_interval=30,
        )
    return _client


async def redis_available(client: redis.Redis) -> bool:
    """Send one PING. Connection and protocol errors count as unavailable."""
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        log.warning("redis.unavailable", error=str(exc))
        return False
    return True


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
