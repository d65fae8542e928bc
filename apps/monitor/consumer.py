"""
Monitor Consumer - Redis Pub/Sub Job Event Observer

Consumes job lifecycle events published by the worker service and logs them.
Terminal transitions (completed/failed) are logged at INFO/WARNING, the rest
at DEBUG.

Usage:
    # Consumer mode (default)
    python -m apps.monitor

    # Exit after the first terminal event
    RUN_ONCE=true python -m apps.monitor
"""

import asyncio
import logging
import os
import signal
import sys
from collections import Counter
from typing import Any, Dict

from pydantic import ValidationError

from utils.config import settings
from utils.logging import setup_logging
from utils.mq import RedisSubscriber
from utils.schemas import JobEvent

logger = logging.getLogger(__name__)

TERMINAL_EVENTS = ("completed", "failed")


class JobEventMonitor:
    """
    Consumer for job lifecycle events from Redis Pub/Sub.

    Handles:
    - Redis subscription management
    - Event validation
    - Signal handling for graceful shutdown
    """

    def __init__(self, run_once: bool = False) -> None:
        """
        Initialize job event monitor.

        Args:
            run_once: If True, exit after the first completed/failed event
        """
        self.run_once = run_once
        self.subscriber: RedisSubscriber | None = None
        self.shutdown_event = asyncio.Event()
        self.counts: Counter[str] = Counter()

        logger.info(
            "JobEventMonitor initialized",
            extra={"run_once": run_once, "channel": settings.REDIS_CHANNEL_EVENTS},
        )

    async def handle_message(self, channel: str, message: Dict[str, Any]) -> None:
        """
        Handle incoming Redis Pub/Sub message.

        Args:
            channel: Redis channel name
            message: Decoded message payload
        """
        try:
            event = JobEvent.model_validate(message)
        except ValidationError as e:
            logger.warning(
                "Invalid event payload",
                extra={"channel": channel, "payload": message, "error": str(e)},
            )
            return

        self.counts[event.type] += 1

        if event.type == "completed":
            logger.info("Job completed: queue=%s, id=%s, type=%s", event.queue, event.job_id, event.job_type)
        elif event.type == "failed":
            logger.warning(
                "Job failed: queue=%s, id=%s, attempts=%d, reason=%s",
                event.queue, event.job_id, event.attempts_made, event.failure_reason,
            )
        else:
            logger.debug("Job %s: queue=%s, id=%s, progress=%s", event.type, event.queue, event.job_id, event.progress)

        if self.run_once and event.type in TERMINAL_EVENTS:
            logger.info("RUN_ONCE mode: signaling shutdown after terminal event")
            self.shutdown_event.set()

    def setup_signal_handlers(self) -> None:
        """Setup handlers for graceful shutdown on SIGINT/SIGTERM."""

        def signal_handler(signum: int, frame: object) -> None:
            logger.info(f"Received signal {signum}, initiating graceful shutdown")
            self.shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def start(self) -> None:
        """
        Subscribe to the events channel and log events until shutdown.
        """
        self.setup_signal_handlers()
        logger.info("Starting job event monitor")

        try:
            self.subscriber = RedisSubscriber(channels=[settings.REDIS_CHANNEL_EVENTS])
            await self.subscriber.connect()

            logger.info("Subscribed to channel", extra={"channel": settings.REDIS_CHANNEL_EVENTS})

            subscription_task = asyncio.create_task(self.subscriber.subscribe(self.handle_message))

            done, pending = await asyncio.wait(
                [asyncio.create_task(self.shutdown_event.wait()), subscription_task],
                return_when=asyncio.FIRST_COMPLETED,
            )

            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

            logger.info("Monitor shutdown complete", extra={"events": dict(self.counts)})

        finally:
            if self.subscriber:
                self.subscriber.stop()
                await self.subscriber.close()
                logger.info("Redis subscriber connection closed")


async def main() -> None:
    """Main entry point for the job event monitor."""
    setup_logging(level=settings.LOG_LEVEL, format_type=settings.LOG_FORMAT)
    run_once = os.getenv("RUN_ONCE", "false").lower() in ("true", "1", "yes")

    monitor = JobEventMonitor(run_once=run_once)

    try:
        await monitor.start()
    except Exception as e:
        logger.error("Monitor failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
