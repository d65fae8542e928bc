"""
Queue Backends - Durable and In-Process Execution

Both backends share one contract (QueueBackend) so the manager can swap them
at startup or fall back per job:

- DurableBackend: jobs go to a JobStore (Redis in production) and are run by
  one WorkerPool per queue. submit() returns right after the enqueue.
- InlineBackend: jobs run to completion inside submit(), one attempt each,
  on a process-local ledger. Used when Redis is unreachable.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from apps.dispatcher.events import EventBus
from apps.dispatcher.store import JobStore, MemoryJobStore
from apps.dispatcher.worker import JobContext, JobRunner, Processor, WorkerPool
from utils.errors import UnrecoverableJobError
from utils.schemas import JobDescriptor, JobEvent, QueueDefinition

logger = logging.getLogger(__name__)


class QueueBackend(ABC):
    """Contract shared by the durable and in-process backends."""

    mode = "abstract"

    def __init__(self, store: JobStore, events: EventBus) -> None:
        self.store = store
        self.events = events
        self.runner = JobRunner(store, events)
        self.definitions: dict[str, QueueDefinition] = {}
        self.processors: dict[str, Processor] = {}

    def attach(self, definition: QueueDefinition) -> None:
        self.definitions[definition.name] = definition

    def set_processor(self, queue: str, processor: Processor) -> None:
        self.processors[queue] = processor

    async def start(self) -> None:
        pass

    @abstractmethod
    async def enqueue(self, job: JobDescriptor) -> None:
        """Accept a new job for its queue."""

    async def get_job(self, queue: str, job_id: str) -> Optional[JobDescriptor]:
        return await self.store.get(queue, job_id)

    async def pause(self, queue: str) -> None:
        await self.store.pause(queue)

    async def resume(self, queue: str) -> None:
        await self.store.resume(queue)

    async def is_paused(self, queue: str) -> bool:
        return await self.store.is_paused(queue)

    async def clean(self, queue: str, grace_ms: int, limit: int, status: str) -> int:
        return await self.store.clean(queue, grace_ms, limit, status)

    async def counts(self, queue: str) -> dict[str, int]:
        return await self.store.counts(queue)

    async def close(self) -> None:
        await self.store.close()


class DurableBackend(QueueBackend):
    """Store-backed queues with one worker pool per queue with a processor."""

    mode = "durable"

    def __init__(
        self,
        store: JobStore,
        events: EventBus,
        poll_interval: float = 0.5,
        shutdown_timeout: float = 30.0,
    ) -> None:
        super().__init__(store, events)
        self.poll_interval = poll_interval
        self.shutdown_timeout = shutdown_timeout
        self.pools: dict[str, WorkerPool] = {}
        self._started = False

    def set_processor(self, queue: str, processor: Processor) -> None:
        super().set_processor(queue, processor)
        if queue in self.pools:
            self.pools[queue].processor = processor
        elif self._started:
            self._start_pool(queue)

    async def start(self) -> None:
        self._started = True
        for queue in self.processors:
            if queue not in self.pools:
                self._start_pool(queue)

    def _start_pool(self, queue: str) -> None:
        pool = WorkerPool(
            self.definitions[queue],
            self.store,
            self.runner,
            self.processors[queue],
            poll_interval=self.poll_interval,
        )
        self.pools[queue] = pool
        pool.start()

    def _notify(self, queue: str) -> None:
        pool = self.pools.get(queue)
        if pool is not None:
            pool.notify()

    async def enqueue(self, job: JobDescriptor) -> None:
        await self.store.add(job)
        await self.events.emit(JobEvent.for_job("waiting", job))
        self._notify(job.queue)

    async def resume(self, queue: str) -> None:
        await super().resume(queue)
        self._notify(queue)

    async def close(self) -> None:
        for pool in self.pools.values():
            await pool.close(timeout=self.shutdown_timeout)
        self.pools.clear()
        self._started = False
        await super().close()


async def _no_processor(ctx: JobContext) -> None:
    raise UnrecoverableJobError(f"No processor registered for queue '{ctx.queue}'")


class InlineBackend(QueueBackend):
    """Runs each job synchronously inside enqueue(): one attempt, no backoff.

    A paused queue keeps its jobs WAITING; resume() runs them.
    """

    mode = "inline"

    def __init__(self, events: EventBus, store: Optional[JobStore] = None) -> None:
        super().__init__(store or MemoryJobStore(), events)

    async def enqueue(self, job: JobDescriptor) -> None:
        # Submission delays are not honoured in-process
        job.available_at = None
        await self.store.add(job)
        await self.events.emit(JobEvent.for_job("waiting", job))

        if await self.store.is_paused(job.queue):
            logger.info("Queue paused, job held", extra={"queue": job.queue, "job_id": job.id})
            return

        await self._drain(job.queue)

    async def resume(self, queue: str) -> None:
        await super().resume(queue)
        await self._drain(queue)

    async def _drain(self, queue: str) -> None:
        while True:
            job = await self.store.claim_next(queue)
            if job is None:
                return
            processor = self.processors.get(queue, _no_processor)
            await self.runner.run(job, self.definitions[queue], processor, allow_retry=False)
