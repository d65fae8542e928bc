"""
Result Cache - Job Result Storage

Key-value store for ETL job results, independent of queue metadata.

A miss means "not yet available or expired", never an error: callers poll or
subscribe to completion events instead of treating absence as failure.

Implementations:
- RedisResultCache: orjson payloads under <CACHE_PREFIX>:etl:result:<job_id>
  with a TTL. Falls through to an in-memory copy when Redis is unreachable.
- MemoryResultCache: process-local TTL cache used in degraded mode and tests.

Usage:
    cache = RedisResultCache(client)
    await cache.set(job_id, result, ttl_seconds=21600)
    result = await cache.get(job_id)  # JobResult | None
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

import orjson
import redis.asyncio as redis
from pydantic import ValidationError

from utils.config import settings
from utils.schemas import JobResult

logger = logging.getLogger(__name__)


class ResultCache(ABC):
    """Contract shared by the result cache implementations."""

    @abstractmethod
    async def set(self, job_id: str, result: JobResult, ttl_seconds: Optional[int] = None) -> None:
        """Store a job result, replacing any previous value."""

    @abstractmethod
    async def get(self, job_id: str) -> Optional[JobResult]:
        """Return the stored result, or None on a miss."""

    @abstractmethod
    async def delete(self, job_id: str) -> None:
        """Evict a stored result."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the backing store is reachable."""


class MemoryResultCache(ResultCache):
    """Process-local result cache with per-key expiry."""

    def __init__(self, default_ttl: Optional[int] = None) -> None:
        self.default_ttl = default_ttl or settings.ETL_RESULT_TTL
        self._entries: dict[str, tuple[float, JobResult]] = {}

    async def set(self, job_id: str, result: JobResult, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds or self.default_ttl
        now = time.monotonic()
        self._purge_expired(now)
        self._entries[job_id] = (now + ttl, result)

    def _purge_expired(self, now: float) -> None:
        expired = [job_id for job_id, (expires_at, _) in self._entries.items() if expires_at <= now]
        for job_id in expired:
            del self._entries[job_id]

    async def get(self, job_id: str) -> Optional[JobResult]:
        entry = self._entries.get(job_id)
        if entry is None:
            return None

        expires_at, result = entry
        if time.monotonic() >= expires_at:
            del self._entries[job_id]
            return None
        return result

    async def delete(self, job_id: str) -> None:
        self._entries.pop(job_id, None)

    async def ping(self) -> bool:
        return True


class RedisResultCache(ResultCache):
    """Redis-backed result cache with in-memory fall-through."""

    def __init__(
        self,
        client: redis.Redis,
        prefix: Optional[str] = None,
        default_ttl: Optional[int] = None,
    ) -> None:
        """Initialize Redis result cache.

        Args:
            client: redis.asyncio client (bytes responses)
            prefix: Key prefix, defaults to settings.CACHE_PREFIX
            default_ttl: TTL in seconds, defaults to settings.ETL_RESULT_TTL
        """
        self.client = client
        self.prefix = prefix or settings.CACHE_PREFIX
        self.default_ttl = default_ttl or settings.ETL_RESULT_TTL
        self._fallback = MemoryResultCache(default_ttl=self.default_ttl)

    def _key(self, job_id: str) -> str:
        return f"{self.prefix}:etl:result:{job_id}"

    async def set(self, job_id: str, result: JobResult, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds or self.default_ttl
        try:
            data = orjson.dumps(result.model_dump(mode="json"))
        except orjson.JSONEncodeError as e:
            logger.warning(
                "Result not serializable, keeping in-process copy",
                extra={"job_id": job_id, "error": str(e)},
            )
            await self._fallback.set(job_id, result, ttl)
            return

        try:
            await self.client.set(self._key(job_id), data, ex=ttl)
        except redis.RedisError as e:
            logger.warning(
                "Result cache write failed, keeping in-process copy",
                extra={"job_id": job_id, "error": str(e)},
            )
            await self._fallback.set(job_id, result, ttl)
            return

        logger.debug("Result cached: job_id=%s, ttl=%ds", job_id, ttl)

    async def get(self, job_id: str) -> Optional[JobResult]:
        try:
            raw = await self.client.get(self._key(job_id))
        except redis.RedisError as e:
            logger.warning("Result cache read failed", extra={"job_id": job_id, "error": str(e)})
            return await self._fallback.get(job_id)

        if raw is None:
            return await self._fallback.get(job_id)

        try:
            return JobResult.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError) as e:
            logger.warning("Discarding undecodable cached result", extra={"job_id": job_id, "error": str(e)})
            return None

    async def delete(self, job_id: str) -> None:
        await self._fallback.delete(job_id)
        try:
            await self.client.delete(self._key(job_id))
        except redis.RedisError as e:
            logger.warning("Result cache delete failed", extra={"job_id": job_id, "error": str(e)})

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except redis.RedisError:
            return False
