"""
Job Store - Per-Queue Job State Ledger

Two implementations of the same contract:
- RedisJobStore: durable ledger shared by every worker process.
- MemoryJobStore: process-local ledger for the in-process backend and tests.

Only the worker pool and the backends mutate the ledger; processors see
their job through a JobContext.

Redis layout (one namespace per queue, <prefix>:<queue>:...):
- job:<id>    orjson JobDescriptor
- wait        ZSET id -> priority * 10^12 + arrival seq (ZPOPMIN = next job)
- delayed     ZSET id -> available_at epoch ms
- active      SET of ids
- completed   ZSET id -> finished_at epoch ms
- failed      ZSET id -> finished_at epoch ms
- paused      flag key
- seq         arrival counter
"""

import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

import orjson
import redis.asyncio as redis

from utils.config import settings
from utils.errors import TransportUnavailableError
from utils.schemas import JobDescriptor, JobStatus, utcnow

logger = logging.getLogger(__name__)

CLEANABLE_STATUSES = ("completed", "failed", "waiting")
_PRIORITY_SPAN = 10**12


def to_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class JobStore(ABC):
    """Ledger contract used by the worker pools and backends."""

    durable = False

    @abstractmethod
    async def add(self, job: JobDescriptor) -> JobDescriptor:
        """Persist a new WAITING job and index it as ready or delayed."""

    @abstractmethod
    async def save(self, job: JobDescriptor) -> None:
        """Overwrite the stored copy of a job (status, progress...)."""

    @abstractmethod
    async def get(self, queue: str, job_id: str) -> Optional[JobDescriptor]:
        """Return a job, or None when unknown or already trimmed."""

    @abstractmethod
    async def claim_next(self, queue: str, now: Optional[datetime] = None) -> Optional[JobDescriptor]:
        """Atomically take the next runnable job off the waiting list."""

    @abstractmethod
    async def release(self, job: JobDescriptor) -> None:
        """Put an active job back to waiting (retry), honouring available_at."""

    @abstractmethod
    async def finish(self, job: JobDescriptor, keep: int) -> None:
        """Record a terminal job and trim its status list to `keep` entries."""

    @abstractmethod
    async def pause(self, queue: str) -> None:
        ...

    @abstractmethod
    async def resume(self, queue: str) -> None:
        ...

    @abstractmethod
    async def is_paused(self, queue: str) -> bool:
        ...

    @abstractmethod
    async def clean(self, queue: str, grace_ms: int, limit: int, status: str) -> int:
        """Remove jobs in `status` older than grace_ms; limit 0 means no limit."""

    @abstractmethod
    async def counts(self, queue: str) -> dict[str, int]:
        ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


def _check_status(status: str) -> None:
    if status not in CLEANABLE_STATUSES:
        raise ValueError(f"Cannot clean status '{status}', expected one of {CLEANABLE_STATUSES}")


def _is_ready(job: JobDescriptor, now: datetime) -> bool:
    return job.available_at is None or job.available_at <= now


class _MemoryQueue:
    def __init__(self) -> None:
        self.jobs: dict[str, JobDescriptor] = {}
        self.ready: list[tuple[int, int, str]] = []
        self.delayed: dict[str, datetime] = {}
        self.active: set[str] = set()
        self.finished: dict[str, dict[str, datetime]] = {"completed": {}, "failed": {}}
        self.paused = False
        self.seq = itertools.count(1)


class MemoryJobStore(JobStore):
    """Process-local ledger. Methods never await, so each is atomic on the loop."""

    def __init__(self) -> None:
        self._queues: dict[str, _MemoryQueue] = {}

    def _q(self, queue: str) -> _MemoryQueue:
        return self._queues.setdefault(queue, _MemoryQueue())

    @staticmethod
    def _is_queued(q: _MemoryQueue, job: JobDescriptor) -> bool:
        # Claimed jobs stay WAITING until the runner saves them as ACTIVE
        return job.status == JobStatus.WAITING and job.id not in q.active

    def _index(self, q: _MemoryQueue, job: JobDescriptor) -> None:
        if _is_ready(job, utcnow()):
            heapq.heappush(q.ready, (job.options.priority or 0, job.seq, job.id))
        else:
            q.delayed[job.id] = job.available_at

    async def add(self, job: JobDescriptor) -> JobDescriptor:
        q = self._q(job.queue)
        job.seq = next(q.seq)
        q.jobs[job.id] = job
        self._index(q, job)
        return job

    async def save(self, job: JobDescriptor) -> None:
        self._q(job.queue).jobs[job.id] = job

    async def get(self, queue: str, job_id: str) -> Optional[JobDescriptor]:
        job = self._q(queue).jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def claim_next(self, queue: str, now: Optional[datetime] = None) -> Optional[JobDescriptor]:
        q = self._q(queue)
        now = now or utcnow()

        for job_id, available_at in list(q.delayed.items()):
            if available_at <= now:
                del q.delayed[job_id]
                job = q.jobs.get(job_id)
                if job is not None:
                    heapq.heappush(q.ready, (job.options.priority or 0, job.seq, job_id))

        while q.ready:
            _, _, job_id = heapq.heappop(q.ready)
            job = q.jobs.get(job_id)
            # Entries of cleaned jobs are dropped lazily
            if job is not None and job.status == JobStatus.WAITING:
                q.active.add(job_id)
                return job
        return None

    async def release(self, job: JobDescriptor) -> None:
        q = self._q(job.queue)
        q.active.discard(job.id)
        q.jobs[job.id] = job
        self._index(q, job)

    async def finish(self, job: JobDescriptor, keep: int) -> None:
        q = self._q(job.queue)
        q.active.discard(job.id)
        q.jobs[job.id] = job

        bucket = q.finished[job.status.value]
        bucket[job.id] = job.finished_at or utcnow()
        while len(bucket) > keep:
            oldest = next(iter(bucket))
            del bucket[oldest]
            q.jobs.pop(oldest, None)

    async def pause(self, queue: str) -> None:
        self._q(queue).paused = True

    async def resume(self, queue: str) -> None:
        self._q(queue).paused = False

    async def is_paused(self, queue: str) -> bool:
        return self._q(queue).paused

    async def clean(self, queue: str, grace_ms: int, limit: int, status: str) -> int:
        _check_status(status)
        q = self._q(queue)
        cutoff = to_ms(utcnow()) - grace_ms
        removed = 0

        if status == "waiting":
            candidates = [
                job.id for job in q.jobs.values()
                if self._is_queued(q, job) and to_ms(job.created_at) <= cutoff
            ]
        else:
            candidates = [
                job_id for job_id, finished_at in q.finished[status].items() if to_ms(finished_at) <= cutoff
            ]

        for job_id in candidates:
            if limit and removed >= limit:
                break
            q.jobs.pop(job_id, None)
            q.delayed.pop(job_id, None)
            q.finished["completed"].pop(job_id, None)
            q.finished["failed"].pop(job_id, None)
            removed += 1

        return removed

    async def counts(self, queue: str) -> dict[str, int]:
        q = self._q(queue)
        waiting = sum(
            1 for job in q.jobs.values() if self._is_queued(q, job) and job.id not in q.delayed
        )
        return {
            "waiting": waiting,
            "delayed": len(q.delayed),
            "active": len(q.active),
            "completed": len(q.finished["completed"]),
            "failed": len(q.finished["failed"]),
        }


@contextmanager
def _transport(operation: str) -> Iterator[None]:
    try:
        yield
    except (redis.ConnectionError, redis.TimeoutError) as e:
        raise TransportUnavailableError(f"Redis {operation} failed: {e}") from e


class RedisJobStore(JobStore):
    """Durable ledger on Redis, shared by every worker process."""

    durable = True

    def __init__(self, client: redis.Redis, prefix: Optional[str] = None) -> None:
        """Initialize Redis job store.

        Args:
            client: redis.asyncio client (bytes responses)
            prefix: Key prefix, defaults to settings.QUEUE_PREFIX
        """
        self.client = client
        self.prefix = prefix or settings.QUEUE_PREFIX

    def _key(self, queue: str, suffix: str) -> str:
        return f"{self.prefix}:{queue}:{suffix}"

    def _job_key(self, queue: str, job_id: str) -> str:
        return self._key(queue, f"job:{job_id}")

    @staticmethod
    def _wait_score(job: JobDescriptor) -> int:
        return (job.options.priority or 0) * _PRIORITY_SPAN + job.seq

    @staticmethod
    def _dump(job: JobDescriptor) -> bytes:
        return orjson.dumps(job.model_dump(mode="json"))

    async def _load(self, queue: str, job_id: str) -> Optional[JobDescriptor]:
        raw = await self.client.get(self._job_key(queue, job_id))
        return JobDescriptor.model_validate(orjson.loads(raw)) if raw else None

    async def add(self, job: JobDescriptor) -> JobDescriptor:
        with _transport("add"):
            job.seq = await self.client.incr(self._key(job.queue, "seq"))
            pipe = self.client.pipeline(transaction=True)
            pipe.set(self._job_key(job.queue, job.id), self._dump(job))
            self._index(pipe, job)
            await pipe.execute()
        return job

    def _index(self, pipe, job: JobDescriptor) -> None:
        if _is_ready(job, utcnow()):
            pipe.zadd(self._key(job.queue, "wait"), {job.id: self._wait_score(job)})
        else:
            pipe.zadd(self._key(job.queue, "delayed"), {job.id: to_ms(job.available_at)})

    async def save(self, job: JobDescriptor) -> None:
        with _transport("save"):
            await self.client.set(self._job_key(job.queue, job.id), self._dump(job))

    async def get(self, queue: str, job_id: str) -> Optional[JobDescriptor]:
        with _transport("get"):
            return await self._load(queue, job_id)

    async def claim_next(self, queue: str, now: Optional[datetime] = None) -> Optional[JobDescriptor]:
        now = now or utcnow()
        wait_key = self._key(queue, "wait")
        delayed_key = self._key(queue, "delayed")

        with _transport("claim"):
            for raw_id in await self.client.zrangebyscore(delayed_key, "-inf", to_ms(now)):
                # ZREM decides which worker promotes the job
                if await self.client.zrem(delayed_key, raw_id):
                    job = await self._load(queue, raw_id.decode())
                    if job is not None:
                        await self.client.zadd(wait_key, {job.id: self._wait_score(job)})

            while True:
                popped = await self.client.zpopmin(wait_key, 1)
                if not popped:
                    return None

                job = await self._load(queue, popped[0][0].decode())
                if job is not None and job.status == JobStatus.WAITING:
                    break

            await self.client.sadd(self._key(queue, "active"), job.id)
            return job

    async def release(self, job: JobDescriptor) -> None:
        with _transport("release"):
            pipe = self.client.pipeline(transaction=True)
            pipe.srem(self._key(job.queue, "active"), job.id)
            pipe.set(self._job_key(job.queue, job.id), self._dump(job))
            self._index(pipe, job)
            await pipe.execute()

    async def finish(self, job: JobDescriptor, keep: int) -> None:
        bucket = self._key(job.queue, job.status.value)

        with _transport("finish"):
            pipe = self.client.pipeline(transaction=True)
            pipe.srem(self._key(job.queue, "active"), job.id)
            pipe.set(self._job_key(job.queue, job.id), self._dump(job))
            pipe.zadd(bucket, {job.id: to_ms(job.finished_at or utcnow())})
            await pipe.execute()

            excess = await self.client.zcard(bucket) - keep
            if excess > 0:
                stale = await self.client.zrange(bucket, 0, excess - 1)
                await self._remove(job.queue, bucket, stale)

    async def _remove(self, queue: str, index_key: str, raw_ids: list[bytes]) -> None:
        if not raw_ids:
            return
        pipe = self.client.pipeline(transaction=True)
        pipe.zrem(index_key, *raw_ids)
        pipe.delete(*(self._job_key(queue, raw_id.decode()) for raw_id in raw_ids))
        await pipe.execute()

    async def pause(self, queue: str) -> None:
        with _transport("pause"):
            await self.client.set(self._key(queue, "paused"), b"1")

    async def resume(self, queue: str) -> None:
        with _transport("resume"):
            await self.client.delete(self._key(queue, "paused"))

    async def is_paused(self, queue: str) -> bool:
        with _transport("is_paused"):
            return bool(await self.client.exists(self._key(queue, "paused")))

    async def clean(self, queue: str, grace_ms: int, limit: int, status: str) -> int:
        _check_status(status)
        cutoff = to_ms(utcnow()) - grace_ms

        with _transport("clean"):
            if status != "waiting":
                index_key = self._key(queue, status)
                if limit:
                    stale = await self.client.zrangebyscore(index_key, "-inf", cutoff, start=0, num=limit)
                else:
                    stale = await self.client.zrangebyscore(index_key, "-inf", cutoff)
                await self._remove(queue, index_key, stale)
                return len(stale)

            removed = 0
            for index_key in (self._key(queue, "wait"), self._key(queue, "delayed")):
                stale = []
                for raw_id in await self.client.zrange(index_key, 0, -1):
                    if limit and removed + len(stale) >= limit:
                        break
                    job = await self._load(queue, raw_id.decode())
                    if job is None or to_ms(job.created_at) <= cutoff:
                        stale.append(raw_id)
                await self._remove(queue, index_key, stale)
                removed += len(stale)
            return removed

    async def counts(self, queue: str) -> dict[str, int]:
        with _transport("counts"):
            pipe = self.client.pipeline(transaction=False)
            pipe.zcard(self._key(queue, "wait"))
            pipe.zcard(self._key(queue, "delayed"))
            pipe.scard(self._key(queue, "active"))
            pipe.zcard(self._key(queue, "completed"))
            pipe.zcard(self._key(queue, "failed"))
            waiting, delayed, active, completed, failed = await pipe.execute()

        return {
            "waiting": waiting,
            "delayed": delayed,
            "active": active,
            "completed": completed,
            "failed": failed,
        }

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (redis.ConnectionError, redis.TimeoutError):
            return False
