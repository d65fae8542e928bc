"""
Event Stream - Job Lifecycle Listeners

In-process listener registry for JobEvents (waiting, active, progress,
completed, failed). Listeners may be plain or async callables; a failing
listener is logged and never fails the job that emitted the event.

In durable mode the manager also subscribes a RedisEventSink, mirroring every
event to the REDIS_CHANNEL_EVENTS Pub/Sub channel for out-of-process
monitoring (see apps.monitor).
"""

import inspect
import logging
from typing import Awaitable, Callable, Iterable, Optional, Union

import redis.asyncio as redis

from utils.mq import RedisPublisher
from utils.schemas import JobEvent

logger = logging.getLogger(__name__)

Listener = Callable[[JobEvent], Union[Awaitable[None], None]]


class EventBus:
    """Fan-out of job lifecycle events to registered listeners."""

    def __init__(self) -> None:
        self._listeners: list[tuple[Listener, Optional[frozenset[str]]]] = []

    def subscribe(self, listener: Listener, types: Optional[Iterable[str]] = None) -> Callable[[], None]:
        """Register a listener, optionally filtered by event type.

        Returns:
            Callable that removes the listener
        """
        entry = (listener, frozenset(types) if types else None)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    async def emit(self, event: JobEvent) -> None:
        for listener, types in list(self._listeners):
            if types is not None and event.type not in types:
                continue
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "Event listener failed",
                    extra={"event_type": event.type, "job_id": event.job_id, "error": str(e)},
                    exc_info=True,
                )


def log_event(event: JobEvent) -> None:
    """Default listener: terminal transitions at INFO, the rest at DEBUG."""
    level = logging.INFO if event.type in ("completed", "failed") else logging.DEBUG
    logger.log(
        level,
        "Job %s: queue=%s, id=%s, progress=%s",
        event.type, event.queue, event.job_id, event.progress,
    )


class RedisEventSink:
    """Listener publishing events to a Redis Pub/Sub channel."""

    def __init__(self, publisher: RedisPublisher, channel: str) -> None:
        self.publisher = publisher
        self.channel = channel

    async def __call__(self, event: JobEvent) -> None:
        try:
            await self.publisher.publish(self.channel, event.model_dump(mode="json"))
        except redis.RedisError as e:
            logger.warning(
                "Failed to publish job event",
                extra={"channel": self.channel, "event_type": event.type, "error": str(e)},
            )
