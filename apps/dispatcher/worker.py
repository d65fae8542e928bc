"""
Worker Pool - Bounded Per-Queue Job Execution

One WorkerPool per queue pulls waiting jobs from the job store and hands them
to the queue's processor, never running more than `concurrency` of them at
once. JobRunner executes a single attempt and records its outcome:

- success                 -> COMPLETED, return value stored
- UnrecoverableJobError   -> FAILED immediately
- any other error/timeout -> ProcessorRuntimeError, retried after backoff
                             until the attempts budget is spent, then FAILED

Processors are async callables taking a JobContext. They never touch the
ledger directly; progress goes through JobContext.update_progress().
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from apps.dispatcher.events import EventBus
from apps.dispatcher.store import JobStore
from utils.errors import ProcessorRuntimeError, TransportUnavailableError, UnrecoverableJobError
from utils.schemas import JobDescriptor, JobEvent, JobStatus, QueueDefinition, utcnow

logger = logging.getLogger(__name__)


class JobContext:
    """Read-only view of a running job plus progress reporting."""

    def __init__(self, job: JobDescriptor, store: JobStore, events: EventBus) -> None:
        self._job = job
        self._store = store
        self._events = events

    @property
    def job_id(self) -> str:
        return self._job.id

    @property
    def queue(self) -> str:
        return self._job.queue

    @property
    def job_type(self) -> str:
        return self._job.job_type

    @property
    def payload(self) -> dict[str, Any]:
        return self._job.payload

    @property
    def attempts_made(self) -> int:
        return self._job.attempts_made

    @property
    def progress(self) -> int:
        return self._job.progress

    async def update_progress(self, progress: int) -> None:
        """Record job progress (clamped to 0..100) and emit a progress event."""
        self._job.progress = min(100, max(0, int(progress)))
        await self._store.save(self._job)
        await self._events.emit(JobEvent.for_job("progress", self._job))


Processor = Callable[[JobContext], Awaitable[Any]]


class JobRunner:
    """Executes one attempt of a job and records the outcome in the store."""

    def __init__(self, store: JobStore, events: EventBus) -> None:
        self.store = store
        self.events = events

    async def run(
        self,
        job: JobDescriptor,
        definition: QueueDefinition,
        processor: Processor,
        allow_retry: bool = True,
    ) -> JobDescriptor:
        """Run a claimed job once.

        Args:
            job: Job claimed from the store
            definition: Policy of the job's queue (retention counts)
            processor: Async callable executing the job
            allow_retry: False in the in-process backend, where a failure is terminal

        Returns:
            The job after its outcome was recorded
        """
        job.status = JobStatus.ACTIVE
        job.processed_at = utcnow()
        job.available_at = None
        await self.store.save(job)
        await self.events.emit(JobEvent.for_job("active", job))

        timeout_ms = job.options.timeout_ms or definition.timeout_ms
        logger.info(
            "Job started: queue=%s, id=%s, type=%s, attempt=%d",
            job.queue, job.id, job.job_type, job.attempts_made + 1,
        )

        try:
            result = await asyncio.wait_for(processor(JobContext(job, self.store, self.events)), timeout_ms / 1000)
        except asyncio.TimeoutError:
            error: Exception = ProcessorRuntimeError(f"Job exceeded timeout of {timeout_ms}ms", job.id)
        except UnrecoverableJobError as e:
            error = e
        except Exception as e:
            error = ProcessorRuntimeError(str(e) or type(e).__name__, job.id)
            error.__cause__ = e
        else:
            return await self._complete(job, definition, result)

        retryable = allow_retry and not isinstance(error, UnrecoverableJobError)
        return await self._fail(job, definition, error, retryable)

    async def _complete(self, job: JobDescriptor, definition: QueueDefinition, result: Any) -> JobDescriptor:
        if isinstance(result, BaseModel):
            result = result.model_dump(mode="json")

        job.attempts_made += 1
        job.status = JobStatus.COMPLETED
        job.return_value = result
        job.failure_reason = None
        job.finished_at = utcnow()

        await self.store.finish(job, keep=definition.remove_on_complete)
        await self.events.emit(JobEvent.for_job("completed", job))

        elapsed = (job.finished_at - job.processed_at).total_seconds()
        logger.info("Job completed: queue=%s, id=%s, elapsed=%.3fs", job.queue, job.id, elapsed)
        return job

    async def _fail(
        self,
        job: JobDescriptor,
        definition: QueueDefinition,
        error: Exception,
        retryable: bool,
    ) -> JobDescriptor:
        job.attempts_made += 1
        job.failure_reason = str(error)
        attempts = job.options.attempts or definition.attempts

        if retryable and job.attempts_made < attempts:
            backoff = job.options.backoff or definition.backoff
            delay_ms = backoff.delay_for(job.attempts_made) if backoff else 0

            job.status = JobStatus.WAITING
            job.available_at = utcnow() + timedelta(milliseconds=delay_ms) if delay_ms else None
            await self.store.release(job)
            await self.events.emit(JobEvent.for_job("waiting", job))

            logger.warning(
                "Job attempt failed, retrying",
                extra={
                    "queue": job.queue,
                    "job_id": job.id,
                    "attempts_made": job.attempts_made,
                    "attempts": attempts,
                    "delay_ms": delay_ms,
                    "error": job.failure_reason,
                },
            )
            return job

        job.status = JobStatus.FAILED
        job.finished_at = utcnow()
        await self.store.finish(job, keep=definition.remove_on_fail)
        await self.events.emit(JobEvent.for_job("failed", job))

        logger.error(
            "Job failed",
            extra={
                "queue": job.queue,
                "job_id": job.id,
                "attempts_made": job.attempts_made,
                "error": job.failure_reason,
                "error_type": type(error).__name__,
            },
        )
        return job


class WorkerPool:
    """
    Pulls jobs of one queue and runs them under a concurrency bound.

    Handles:
    - Semaphore-bounded dispatch (concurrency slots)
    - Wake-ups on enqueue/resume plus periodic polling for delayed jobs
    - Pause (no new claims; in-flight jobs finish)
    - Graceful close with a timeout for in-flight jobs
    """

    def __init__(
        self,
        definition: QueueDefinition,
        store: JobStore,
        runner: JobRunner,
        processor: Processor,
        poll_interval: float = 0.5,
    ) -> None:
        self.definition = definition
        self.store = store
        self.runner = runner
        self.processor = processor
        self.poll_interval = poll_interval

        self._slots = asyncio.Semaphore(definition.concurrency)
        self._wakeup = asyncio.Event()
        self._in_flight: set[asyncio.Task] = set()
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def active_count(self) -> int:
        return len(self._in_flight)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"worker-pool:{self.name}")
            logger.info(
                "Worker pool started",
                extra={"queue": self.name, "concurrency": self.definition.concurrency},
            )

    def notify(self) -> None:
        """Wake the pool: a job was enqueued or the queue resumed."""
        self._wakeup.set()

    async def _run(self) -> None:
        while not self._closing:
            await self._slots.acquire()

            try:
                job = await self._claim()
            except BaseException:
                self._slots.release()
                raise

            if job is None:
                self._slots.release()
                await self._idle()
                continue

            task = asyncio.create_task(self._execute(job), name=f"job:{self.name}:{job.id}")
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def _claim(self) -> Optional[JobDescriptor]:
        try:
            if await self.store.is_paused(self.name):
                return None
            return await self.store.claim_next(self.name)
        except TransportUnavailableError as e:
            logger.warning("Cannot claim jobs, transport unavailable", extra={"queue": self.name, "error": str(e)})
            return None
        except Exception as e:
            logger.error("Failed to claim job", extra={"queue": self.name, "error": str(e)}, exc_info=True)
            return None

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass
        self._wakeup.clear()

    async def _execute(self, job: JobDescriptor) -> None:
        try:
            await self.runner.run(job, self.definition, self.processor)
        except Exception as e:
            # The attempt ran but its outcome could not be recorded
            logger.error(
                "Failed to record job outcome",
                extra={"queue": self.name, "job_id": job.id, "error": str(e)},
                exc_info=True,
            )
        finally:
            self._slots.release()

    async def close(self, timeout: float = 30.0) -> None:
        """Stop claiming jobs and wait up to `timeout` seconds for in-flight ones."""
        self._closing = True
        self.notify()

        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

        if self._in_flight:
            logger.info("Waiting for in-flight jobs", extra={"queue": self.name, "count": len(self._in_flight)})
            _, pending = await asyncio.wait(set(self._in_flight), timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(
                    "In-flight jobs cancelled at shutdown",
                    extra={"queue": self.name, "count": len(pending)},
                )
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info("Worker pool stopped", extra={"queue": self.name})
