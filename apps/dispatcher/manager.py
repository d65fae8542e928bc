"""
Queue Manager - Job Submission and Queue Control

The QueueManager owns the queue registry, the processors, the event stream
and the result cache. It is constructed explicitly and passed by handle; no
module-level singleton exists.

Backend selection (QUEUE_BACKEND):
- auto:   Redis when reachable, otherwise in-process (degraded) with a warning
- redis:  Redis or fail at start()
- memory: worker pools on a process-local store (tests, single process)
- inline: in-process synchronous execution

Usage:
    manager = QueueManager()
    await manager.start()
    manager.register_processor("etl", ExcelProcessingJob(manager.cache))

    job = await manager.submit("etl", "process-excel", {"file_path": "...", "audit_id": "A-1"})
    status = await manager.get_job("etl", job["id"])
    result = await manager.get_result(job["id"])
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import Any, Optional

import redis.asyncio as redis
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from apps.dispatcher.backends import DurableBackend, InlineBackend, QueueBackend
from apps.dispatcher.events import EventBus, RedisEventSink, log_event
from apps.dispatcher.queues import DEFAULT_QUEUES
from apps.dispatcher.store import CLEANABLE_STATUSES, MemoryJobStore, RedisJobStore
from apps.dispatcher.worker import Processor
from utils.cache import MemoryResultCache, RedisResultCache, ResultCache
from utils.config import Settings, get_settings
from utils.errors import ConfigurationError, InvalidJobPayloadError, TransportUnavailableError
from utils.mq import RedisPublisher, create_client
from utils.schemas import JobDescriptor, JobOptions, JobResult, QueueDefinition, utcnow

logger = logging.getLogger(__name__)

BACKEND_CHOICES = ("auto", "redis", "memory", "inline")


class QueueManager:
    """
    Registry of named queues and entry point for job submission.

    Handles:
    - Queue registration and processor attachment
    - Backend selection with in-process fallback
    - Job status, results, pause/resume/clean
    - Queue statistics and health
    """

    def __init__(
        self,
        definitions: Optional[Iterable[QueueDefinition | Mapping[str, Any]]] = None,
        *,
        settings: Optional[Settings] = None,
        backend: Optional[QueueBackend] = None,
        cache: Optional[ResultCache] = None,
        redis_client: Optional[redis.Redis] = None,
    ) -> None:
        """
        Initialize queue manager.

        Args:
            definitions: Queue policies, defaults to DEFAULT_QUEUES
            settings: Settings instance, defaults to get_settings()
            backend: Preselected backend; skips QUEUE_BACKEND selection
            cache: Result cache; chosen to match the backend when omitted
            redis_client: Shared redis.asyncio client (not closed by the manager)
        """
        self.settings = settings or get_settings()
        self.events = EventBus()
        self.events.subscribe(log_event)

        self._definitions: dict[str, QueueDefinition] = {}
        self._processors: dict[str, Processor] = {}
        self._backend = backend
        self._fallback: Optional[InlineBackend] = None
        self._cache = cache
        self._client = redis_client
        self._owns_client = False
        self._publisher: Optional[RedisPublisher] = None
        self._degraded = False
        self._started = False

        for definition in DEFAULT_QUEUES if definitions is None else definitions:
            try:
                self.register_queue(definition)
            except ConfigurationError as e:
                logger.error("Skipping queue with invalid definition", extra={"error": str(e)})

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register_queue(self, definition: QueueDefinition | Mapping[str, Any]) -> QueueDefinition:
        """Register a queue policy.

        Raises:
            ConfigurationError: If the definition is malformed or the name is taken
        """
        if not isinstance(definition, QueueDefinition):
            try:
                definition = QueueDefinition.model_validate(dict(definition))
            except (ValidationError, TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid queue definition: {e}") from e

        if definition.name in self._definitions:
            raise ConfigurationError(f"Queue '{definition.name}' is already registered")

        self._definitions[definition.name] = definition
        for backend in self._backends():
            backend.attach(definition)

        logger.debug("Queue registered: %s (concurrency=%d)", definition.name, definition.concurrency)
        return definition

    def register_processor(self, queue: str, processor: Processor) -> None:
        """Attach the async callable executing the jobs of a queue."""
        self.get_definition(queue)
        self._processors[queue] = processor
        for backend in self._backends():
            backend.set_processor(queue, processor)

        logger.info("Processor registered", extra={"queue": queue, "processor": type(processor).__name__})

    def get_definition(self, queue: str) -> QueueDefinition:
        try:
            return self._definitions[queue]
        except KeyError:
            raise ConfigurationError(f"Queue '{queue}' is not registered") from None

    @property
    def queues(self) -> list[str]:
        return list(self._definitions)

    @property
    def mode(self) -> str:
        return self._backend.mode if self._backend else "stopped"

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def started(self) -> bool:
        return self._started

    @property
    def cache(self) -> ResultCache:
        if self._cache is None:
            raise RuntimeError("Result cache is available after start()")
        return self._cache

    def _backends(self) -> list[QueueBackend]:
        backends = [self._backend, self._fallback]
        unique = []
        for backend in backends:
            if backend is not None and backend not in unique:
                unique.append(backend)
        return unique

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Select the backend, start worker pools and prepare the result cache."""
        if self._started:
            return

        if self._backend is None:
            self._backend = await self._select_backend()

        if isinstance(self._backend, InlineBackend):
            self._fallback = self._backend
        else:
            self._fallback = InlineBackend(self.events)

        for backend in self._backends():
            for definition in self._definitions.values():
                backend.attach(definition)
            for queue, processor in self._processors.items():
                backend.set_processor(queue, processor)

        if self._cache is None:
            if self._client is not None and self._backend.mode == "durable":
                self._cache = RedisResultCache(self._client, self.settings.CACHE_PREFIX, self.settings.ETL_RESULT_TTL)
            else:
                self._cache = MemoryResultCache(default_ttl=self.settings.ETL_RESULT_TTL)

        await self._backend.start()
        self._started = True

        logger.info(
            "Queue manager started",
            extra={"mode": self.mode, "degraded": self._degraded, "queues": self.queues},
        )

    async def _select_backend(self) -> QueueBackend:
        choice = self.settings.QUEUE_BACKEND.lower()
        if choice not in BACKEND_CHOICES:
            raise ConfigurationError(f"Unknown QUEUE_BACKEND '{choice}', expected one of {BACKEND_CHOICES}")

        if choice == "inline":
            return InlineBackend(self.events)
        if choice == "memory":
            return self._durable(MemoryJobStore())

        client = self._client
        if client is None:
            client = create_client(self.settings.REDIS_URL)
            self._owns_client = True

        try:
            await self._probe(client)
        except TransportUnavailableError as e:
            if self._owns_client:
                await client.aclose()
                self._owns_client = False
            if choice == "redis":
                raise

            self._degraded = True
            logger.warning(
                "Redis unreachable, running jobs in-process (degraded: no retries, backoff or concurrency bounds)",
                extra={"redis_url": self.settings.REDIS_URL, "error": str(e)},
            )
            return InlineBackend(self.events)

        self._client = client
        self._publisher = RedisPublisher(client=client)
        self.events.subscribe(RedisEventSink(self._publisher, self.settings.REDIS_CHANNEL_EVENTS))
        return self._durable(RedisJobStore(client, self.settings.QUEUE_PREFIX))

    def _durable(self, store) -> DurableBackend:
        return DurableBackend(
            store,
            self.events,
            poll_interval=self.settings.QUEUE_POLL_INTERVAL,
            shutdown_timeout=self.settings.WORKER_SHUTDOWN_TIMEOUT,
        )

    async def _probe(self, client: redis.Redis) -> None:
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type((redis.ConnectionError, redis.TimeoutError, OSError)),
                stop=stop_after_attempt(max(self.settings.REDIS_CONNECT_RETRIES, 1)),
                wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
                reraise=True,
            ):
                with attempt:
                    await client.ping()
        except (redis.RedisError, OSError) as e:
            raise TransportUnavailableError(f"Redis ping failed: {e}") from e

    async def close(self) -> None:
        """Stop worker pools (waiting for in-flight jobs) and release connections."""
        for backend in self._backends():
            await backend.close()

        if self._publisher is not None:
            await self._publisher.close()
            self._publisher = None

        if self._client is not None and self._owns_client:
            await self._client.aclose()

        self._started = False
        logger.info("Queue manager closed")

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def submit(
        self,
        queue: str,
        job_type: str,
        payload: Optional[Mapping[str, Any]] = None,
        options: JobOptions | Mapping[str, Any] | None = None,
    ) -> dict[str, str]:
        """Submit a job to a registered queue.

        Args:
            queue: Registered queue name
            job_type: Job name, e.g. process-excel
            payload: JSON-serializable job input
            options: priority, delay_ms, attempts, timeout_ms, backoff

        Returns:
            {"id": job_id}

        Raises:
            ConfigurationError: If the queue is not registered
            InvalidJobPayloadError: If the options are invalid
        """
        definition = self.get_definition(queue)
        if not self._started:
            await self.start()

        try:
            resolved = definition.resolve_options(options)
        except (ValidationError, TypeError, ValueError) as e:
            raise InvalidJobPayloadError(f"Invalid job options: {e}") from e

        job = JobDescriptor(queue=queue, job_type=job_type, payload=dict(payload or {}), options=resolved)
        if resolved.delay_ms:
            job.available_at = utcnow() + timedelta(milliseconds=resolved.delay_ms)

        try:
            await self._backend.enqueue(job)
        except TransportUnavailableError as e:
            logger.warning(
                "Transport unavailable, running job in-process (degraded)",
                extra={"queue": queue, "job_id": job.id, "error": str(e)},
            )
            await self._fallback.enqueue(job)

        return {"id": job.id}

    async def get_job(self, queue: str, job_id: str) -> Optional[JobDescriptor]:
        """Return the job's current state, or None if unknown or trimmed."""
        self.get_definition(queue)
        if not self._started:
            return None

        try:
            job = await self._backend.get_job(queue, job_id)
        except TransportUnavailableError as e:
            logger.warning("Job lookup failed", extra={"queue": queue, "job_id": job_id, "error": str(e)})
            job = None

        if job is None and self._fallback is not self._backend:
            job = await self._fallback.get_job(queue, job_id)
        return job

    async def get_result(self, job_id: str) -> Optional[JobResult]:
        """Return the cached JobResult; None means not yet available or expired."""
        if self._cache is None:
            return None
        return await self._cache.get(job_id)

    async def pause(self, queue: str) -> None:
        """Stop dequeuing new jobs; in-flight jobs finish."""
        self.get_definition(queue)
        await self.start()
        for backend in self._backends():
            await backend.pause(queue)
        logger.info("Queue paused: %s", queue)

    async def resume(self, queue: str) -> None:
        self.get_definition(queue)
        await self.start()
        for backend in self._backends():
            await backend.resume(queue)
        logger.info("Queue resumed: %s", queue)

    async def clean(
        self,
        queue: str,
        older_than_ms: int = 3_600_000,
        limit: int = 100,
        status: str = "completed",
    ) -> int:
        """Remove jobs in `status` older than `older_than_ms`.

        Returns:
            Number of jobs removed
        """
        self.get_definition(queue)
        if status not in CLEANABLE_STATUSES:
            raise ValueError(f"Cannot clean status '{status}', expected one of {CLEANABLE_STATUSES}")
        await self.start()

        removed = 0
        for backend in self._backends():
            removed += await backend.clean(queue, older_than_ms, limit, status)

        logger.info("Queue cleaned: queue=%s, status=%s, removed=%d", queue, status, removed)
        return removed

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    async def get_queue_stats(self) -> dict[str, dict[str, Any]]:
        stats: dict[str, dict[str, Any]] = {}

        for name, definition in self._definitions.items():
            entry: dict[str, Any] = {
                "concurrency": definition.concurrency,
                "priority_class": definition.priority_class.value,
                "mode": self.mode,
                "paused": False,
                "counts": {},
            }
            if self._started:
                try:
                    entry["paused"] = await self._backend.is_paused(name)
                    entry["counts"] = await self._backend.counts(name)
                except TransportUnavailableError as e:
                    entry["error"] = str(e)
            stats[name] = entry

        return stats

    async def health_check(self) -> dict[str, Any]:
        healthy = self._started and await self._backend.store.ping()
        return {
            "status": "healthy" if healthy and not self._degraded else "degraded",
            "started": self._started,
            "mode": self.mode,
            "degraded": self._degraded,
            "queues": self.queues,
            "processors": sorted(self._processors),
        }
