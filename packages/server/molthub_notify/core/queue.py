"""
Durable notification delivery queue backed by Redis.

Features:
- Two job kinds: `create` (persist, then push) and `send` (push only)
- Bounded worker pools per kind (5 create / 10 send by default)
- Priority ordering (lower number first), FIFO within a priority
- Exponential backoff retries (2s, 4s, ...) up to max attempts
- Lease-based stall detection: an expired lease is requeued once, then failed
- Bounded retention of completed and failed jobs
- Global pause/resume that lets in-flight jobs finish
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Optional, Protocol

import redis.asyncio as redis
import structlog

from molthub_notify.core.config import Settings, get_settings
from molthub_notify.core.database import SessionFactory
from molthub_notify.core.errors import ValidationError
from molthub_notify.services.notifications import create_notification, notification_to_read
from molthub_shared.schemas.common import JobKind, JobState
from molthub_shared.schemas.notifications import NotificationCreate, NotificationRead
from molthub_shared.schemas.queue import QueueStats

if TYPE_CHECKING:
    from molthub_notify.core.realtime import RealtimeGateway

log = structlog.get_logger()

REDIS_QUEUE_KEY_PREFIX = "molthub:queue:"
STALLED_REASON = "job stalled more than allowable limit"


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------


@dataclass
class Job:
    id: str
    kind: str
    payload: dict[str, Any]
    priority: int = 5
    attempts_made: int = 0
    max_attempts: int = 3
    stalled_count: int = 0
    created_at: float = field(default_factory=time.time)
    processed_at: Optional[float] = None
    finished_at: Optional[float] = None
    failed_reason: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "Job":
        return cls(**json.loads(raw))


class JobBroker(Protocol):
    """Owns job state. Every transition goes through the broker."""

    async def next_id(self) -> str: ...

    async def add(self, job: Job) -> None: ...

    async def add_bulk(self, jobs: Iterable[Job]) -> None: ...

    async def claim(self, kind: str, lease_seconds: float) -> Job | None: ...

    async def heartbeat(self, job: Job, lease_seconds: float) -> None: ...

    async def complete(self, job: Job) -> None: ...

    async def fail(self, job: Job, reason: str) -> None: ...

    async def retry_later(self, job: Job, delay: float) -> None: ...

    async def promote_delayed(self) -> int: ...

    async def requeue_stalled(self, max_stalled_count: int) -> tuple[int, int]: ...

    async def counts(self) -> dict[str, int]: ...

    async def clean(self, grace_seconds: float, state: str) -> int: ...

    async def pause(self) -> None: ...

    async def resume(self) -> None: ...

    async def is_paused(self) -> bool: ...


# ---------------------------------------------------------------------------
# Redis broker
# ---------------------------------------------------------------------------


class RedisJobBroker:
    """
    Job storage on plain Redis structures.

    Keys (prefix `molthub:queue:<name>:`):
    - `jobs`            hash   job id -> job JSON
    - `waiting:<kind>`  zset   score = priority * 1e13 + created ms
    - `active`          zset   score = lease deadline
    - `delayed`         zset   score = ready-at
    - `completed`       zset   score = finished-at
    - `failed`          zset   score = finished-at
    - `paused`          string present while paused
    - `id`              counter for job ids
    """

    def __init__(
        self,
        client: redis.Redis,
        name: str = "notifications",
        *,
        keep_completed: int = 100,
        keep_failed: int = 500,
    ):
        self._redis = client
        self._prefix = f"{REDIS_QUEUE_KEY_PREFIX}{name}:"
        self._keep = {
            JobState.COMPLETED.value: keep_completed,
            JobState.FAILED.value: keep_failed,
        }

    def _key(self, suffix: str) -> str:
        return f"{self._prefix}{suffix}"

    @staticmethod
    def _waiting_score(job: Job) -> float:
        return job.priority * 1e13 + int(job.created_at * 1000)

    async def next_id(self) -> str:
        return str(await self._redis.incr(self._key("id")))

    async def add(self, job: Job) -> None:
        await self.add_bulk([job])

    async def add_bulk(self, jobs: Iterable[Job]) -> None:
        async with self._redis.pipeline() as pipe:
            for job in jobs:
                pipe.hset(self._key("jobs"), job.id, job.to_json())
                pipe.zadd(self._key(f"waiting:{job.kind}"), {job.id: self._waiting_score(job)})
            await pipe.execute()

    async def _load(self, job_id: str) -> Job | None:
        raw = await self._redis.hget(self._key("jobs"), job_id)
        return Job.from_json(raw) if raw else None

    async def claim(self, kind: str, lease_seconds: float) -> Job | None:
        if await self.is_paused():
            return None
        popped = await self._redis.zpopmin(self._key(f"waiting:{kind}"))
        if not popped:
            return None
        job_id = popped[0][0]
        job = await self._load(job_id)
        if job is None:
            return None

        now = time.time()
        job.processed_at = now
        async with self._redis.pipeline() as pipe:
            pipe.zadd(self._key("active"), {job.id: now + lease_seconds})
            pipe.hset(self._key("jobs"), job.id, job.to_json())
            await pipe.execute()
        return job

    async def heartbeat(self, job: Job, lease_seconds: float) -> None:
        # xx: never resurrect a job that already left the active set
        await self._redis.zadd(
            self._key("active"), {job.id: time.time() + lease_seconds}, xx=True
        )

    async def _finish(self, job: Job, state: str) -> None:
        job.finished_at = time.time()
        async with self._redis.pipeline() as pipe:
            pipe.zrem(self._key("active"), job.id)
            pipe.hset(self._key("jobs"), job.id, job.to_json())
            pipe.zadd(self._key(state), {job.id: job.finished_at})
            await pipe.execute()
        await self._trim(state)

    async def _trim(self, state: str) -> None:
        keep = self._keep[state]
        excess = await self._redis.zrange(self._key(state), 0, -(keep + 1))
        if not excess:
            return
        async with self._redis.pipeline() as pipe:
            pipe.zrem(self._key(state), *excess)
            pipe.hdel(self._key("jobs"), *excess)
            await pipe.execute()

    async def complete(self, job: Job) -> None:
        await self._finish(job, JobState.COMPLETED.value)

    async def fail(self, job: Job, reason: str) -> None:
        job.failed_reason = reason
        await self._finish(job, JobState.FAILED.value)

    async def retry_later(self, job: Job, delay: float) -> None:
        async with self._redis.pipeline() as pipe:
            pipe.zrem(self._key("active"), job.id)
            pipe.hset(self._key("jobs"), job.id, job.to_json())
            pipe.zadd(self._key("delayed"), {job.id: time.time() + delay})
            await pipe.execute()

    async def promote_delayed(self) -> int:
        due = await self._redis.zrangebyscore(self._key("delayed"), "-inf", time.time())
        promoted = 0
        for job_id in due:
            # zrem decides ownership when several processes sweep at once
            if not await self._redis.zrem(self._key("delayed"), job_id):
                continue
            job = await self._load(job_id)
            if job is None:
                continue
            await self._redis.zadd(
                self._key(f"waiting:{job.kind}"), {job.id: self._waiting_score(job)}
            )
            promoted += 1
        return promoted

    async def requeue_stalled(self, max_stalled_count: int) -> tuple[int, int]:
        expired = await self._redis.zrangebyscore(self._key("active"), "-inf", time.time())
        requeued = failed = 0
        for job_id in expired:
            if not await self._redis.zrem(self._key("active"), job_id):
                continue
            job = await self._load(job_id)
            if job is None:
                continue
            job.stalled_count += 1
            if job.stalled_count > max_stalled_count:
                await self.fail(job, STALLED_REASON)
                failed += 1
            else:
                async with self._redis.pipeline() as pipe:
                    pipe.hset(self._key("jobs"), job.id, job.to_json())
                    pipe.zadd(
                        self._key(f"waiting:{job.kind}"), {job.id: self._waiting_score(job)}
                    )
                    await pipe.execute()
                requeued += 1
        return requeued, failed

    async def counts(self) -> dict[str, int]:
        async with self._redis.pipeline(transaction=False) as pipe:
            for kind in JobKind:
                pipe.zcard(self._key(f"waiting:{kind.value}"))
            for state in ("active", "delayed", "completed", "failed"):
                pipe.zcard(self._key(state))
            results = await pipe.execute()

        n_kinds = len(JobKind)
        active, delayed, completed, failed = results[n_kinds:]
        return {
            "waiting": sum(results[:n_kinds]),
            "active": active,
            "delayed": delayed,
            "completed": completed,
            "failed": failed,
        }

    async def clean(self, grace_seconds: float, state: str) -> int:
        stale = await self._redis.zrangebyscore(
            self._key(state), "-inf", time.time() - grace_seconds
        )
        if not stale:
            return 0
        async with self._redis.pipeline() as pipe:
            pipe.zrem(self._key(state), *stale)
            pipe.hdel(self._key("jobs"), *stale)
            await pipe.execute()
        return len(stale)

    async def pause(self) -> None:
        await self._redis.set(self._key("paused"), "1")

    async def resume(self) -> None:
        await self._redis.delete(self._key("paused"))

    async def is_paused(self) -> bool:
        return await self._redis.exists(self._key("paused")) > 0


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------

class NotificationQueue:
    """
    Worker pools and the public enqueue API over a JobBroker.

    `create` jobs carry a pre-assigned notification id so a retried attempt
    finds the row written by an earlier attempt instead of inserting again.
    """

    def __init__(
        self,
        broker: JobBroker,
        session_factory: SessionFactory,
        gateway: Optional["RealtimeGateway"] = None,
        *,
        settings: Settings | None = None,
    ):
        self._broker = broker
        self._session_factory = session_factory
        self._gateway = gateway
        self._settings = settings or get_settings()
        self._workers: list[asyncio.Task] = []
        self._maintenance: asyncio.Task | None = None
        self._closing = asyncio.Event()

    # --- Enqueue ---

    async def _new_job(self, kind: JobKind, payload: dict, priority: int | None) -> Job:
        job_id = await self._broker.next_id()
        return Job(
            id=job_id,
            kind=kind.value,
            payload=payload,
            priority=self._settings.queue_default_priority if priority is None else priority,
            max_attempts=self._settings.queue_max_attempts,
        )

    async def _create_job(self, data: NotificationCreate, priority: int | None) -> Job:
        payload = {
            "notification_id": str(uuid.uuid4()),
            "data": data.model_dump(mode="json"),
        }
        return await self._new_job(JobKind.CREATE, payload, priority)

    async def queue_notification(
        self, data: NotificationCreate, priority: int | None = None
    ) -> Job:
        job = await self._create_job(data, priority)
        await self._broker.add(job)
        log.debug("queue.job_added", job_id=job.id, kind=job.kind, priority=job.priority)
        return job

    async def queue_notifications(
        self, items: Iterable[NotificationCreate], priority: int | None = None
    ) -> list[Job]:
        jobs = [await self._create_job(data, priority) for data in items]
        if jobs:
            await self._broker.add_bulk(jobs)
        log.debug("queue.jobs_added", count=len(jobs), kind=JobKind.CREATE.value)
        return jobs

    async def queue_notification_send(
        self, notification: NotificationRead, priority: int | None = None
    ) -> Job:
        job = await self._new_job(
            JobKind.SEND, {"notification": notification.model_dump(mode="json")}, priority
        )
        await self._broker.add(job)
        log.debug("queue.job_added", job_id=job.id, kind=job.kind, priority=job.priority)
        return job

    # --- Admin ---

    async def get_stats(self) -> QueueStats:
        counts = await self._broker.counts()
        return QueueStats(**counts, paused=await self._broker.is_paused(), mode="queued")

    async def pause(self) -> None:
        await self._broker.pause()
        log.info("queue.paused")

    async def resume(self) -> None:
        await self._broker.resume()
        log.info("queue.resumed")

    async def clean_old_jobs(self, grace_period: float = 86400) -> int:
        """Drop completed and failed jobs older than `grace_period` seconds."""
        removed = await self._broker.clean(grace_period, JobState.COMPLETED.value)
        removed += await self._broker.clean(grace_period, JobState.FAILED.value)
        log.info("queue.cleaned", removed=removed, grace_period=grace_period)
        return removed

    # --- Processors ---

    async def _push(self, notification: NotificationRead) -> bool:
        if self._gateway is None:
            return False
        try:
            return await self._gateway.send_notification_to_agent(
                notification.recipient_id, notification
            )
        except Exception as exc:
            log.warning(
                "queue.push_failed",
                notification_id=str(notification.id),
                error=str(exc),
            )
            return False

    async def _process_create(self, job: Job) -> dict:
        data = NotificationCreate.model_validate(job.payload["data"])
        notification_id = uuid.UUID(job.payload["notification_id"])
        async with self._session_factory() as session:
            notification = await create_notification(
                session, data, notification_id=notification_id
            )
            read = notification_to_read(notification)

        delivered = await self._push(read)
        return {"notification_id": str(read.id), "delivered": delivered}

    async def _process_send(self, job: Job) -> dict:
        notification = NotificationRead.model_validate(job.payload["notification"])
        delivered = await self._push(notification)
        if not delivered:
            log.debug("queue.recipient_offline", recipient_id=str(notification.recipient_id))
        return {"notification_id": str(notification.id), "delivered": delivered}

    def _processor(self, kind: str) -> Callable[[Job], Awaitable[dict]]:
        if kind == JobKind.CREATE.value:
            return self._process_create
        return self._process_send

    # --- Execution ---

    def backoff_delay(self, attempts_made: int) -> float:
        return self._settings.queue_backoff_base_seconds * 2 ** (attempts_made - 1)

    async def _heartbeat(self, job: Job) -> None:
        lease = self._settings.queue_stall_timeout_seconds
        while True:
            await asyncio.sleep(lease / 3)
            try:
                await self._broker.heartbeat(job, lease)
            except Exception as exc:
                log.warning("queue.heartbeat_failed", job_id=job.id, error=str(exc))

    async def run_job(self, job: Job) -> None:
        """Process one claimed job and record its outcome with the broker."""
        heartbeat = asyncio.create_task(self._heartbeat(job))
        error: Exception | None = None
        try:
            result = await self._processor(job.kind)(job)
        except Exception as exc:
            error = exc
        finally:
            heartbeat.cancel()

        job.attempts_made += 1
        if error is None:
            await self._broker.complete(job)
            log.debug("queue.job_completed", job_id=job.id, kind=job.kind, **result)
            return

        if isinstance(error, ValidationError):
            # Retrying cannot fix bad input
            await self._broker.fail(job, error.message)
            log.error("queue.job_rejected", job_id=job.id, kind=job.kind, error=error.message)
            return

        if job.attempts_made >= job.max_attempts:
            await self._broker.fail(job, str(error))
            log.error(
                "queue.job_failed",
                job_id=job.id,
                kind=job.kind,
                attempts=job.attempts_made,
                error=str(error),
            )
            return

        delay = self.backoff_delay(job.attempts_made)
        await self._broker.retry_later(job, delay)
        log.warning(
            "queue.job_retry",
            job_id=job.id,
            kind=job.kind,
            attempts=job.attempts_made,
            delay=delay,
            error=str(error),
        )

    async def process_next(self, kind: str) -> Job | None:
        job = await self._broker.claim(kind, self._settings.queue_stall_timeout_seconds)
        if job is not None:
            await self.run_job(job)
        return job

    async def _worker(self, kind: str) -> None:
        poll = self._settings.queue_poll_interval_seconds
        while not self._closing.is_set():
            try:
                job = await self.process_next(kind)
            except Exception as exc:
                log.error("queue.worker_error", kind=kind, error=str(exc))
                job = None
            if job is None:
                try:
                    await asyncio.wait_for(self._closing.wait(), timeout=poll)
                except asyncio.TimeoutError:
                    pass

    async def sweep(self) -> None:
        promoted = await self._broker.promote_delayed()
        requeued, failed = await self._broker.requeue_stalled(
            self._settings.queue_max_stalled_count
        )
        if requeued or failed:
            log.warning("queue.jobs_stalled", requeued=requeued, failed=failed)
        if promoted:
            log.debug("queue.delayed_promoted", count=promoted)

    async def _maintenance_loop(self) -> None:
        interval = max(self._settings.queue_poll_interval_seconds, 0.1)
        while not self._closing.is_set():
            try:
                await self.sweep()
            except Exception as exc:
                log.error("queue.maintenance_error", error=str(exc))
            try:
                await asyncio.wait_for(self._closing.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    # --- Lifecycle ---

    async def start(self) -> None:
        pools = {
            JobKind.CREATE.value: self._settings.queue_create_concurrency,
            JobKind.SEND.value: self._settings.queue_send_concurrency,
        }
        for kind, size in pools.items():
            for _ in range(size):
                self._workers.append(asyncio.create_task(self._worker(kind)))
        self._maintenance = asyncio.create_task(self._maintenance_loop())
        log.info("queue.started", **{f"{k}_workers": v for k, v in pools.items()})

    async def close(self) -> None:
        """Stop taking jobs and wait for in-flight ones to finish."""
        self._closing.set()
        tasks = list(self._workers)
        if self._maintenance is not None:
            tasks.append(self._maintenance)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._maintenance = None
        log.info("queue.closed")
