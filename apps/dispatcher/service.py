"""
Worker Service - Long-Running Job Processing Process

Starts the queue manager, attaches the built-in processors (etl,
maintenance), starts the maintenance scheduler and runs until SIGINT/SIGTERM.
On shutdown in-flight jobs get WORKER_SHUTDOWN_TIMEOUT seconds to finish.

Processors for the ia and notifications queues belong to their integrations;
without one, jobs on those queues stay waiting in Redis.

Usage:
    python -m apps.dispatcher

    # Force in-process execution (no Redis)
    QUEUE_BACKEND=inline python -m apps.dispatcher
"""

import asyncio
import logging
import signal
import sys

from apps.dispatcher.manager import QueueManager
from apps.dispatcher.queues import ETL_QUEUE, MAINTENANCE_QUEUE
from apps.dispatcher.scheduler import MaintenanceScheduler
from apps.etl.processor import ExcelProcessingJob
from apps.etl.validation import ValidationRules
from apps.maintenance.processor import MaintenanceProcessor
from utils.config import settings
from utils.logging import setup_logging

logger = logging.getLogger(__name__)


class WorkerService:
    """
    Process wrapper around the queue manager.

    Handles:
    - Processor registration
    - Maintenance scheduling
    - Signal handling for graceful shutdown
    """

    def __init__(self, manager: QueueManager | None = None) -> None:
        self.manager = manager or QueueManager(settings=settings)
        self.scheduler = MaintenanceScheduler(self.manager, settings)
        self.shutdown_event = asyncio.Event()

    def register_processors(self) -> None:
        self.manager.register_processor(
            ETL_QUEUE,
            ExcelProcessingJob(
                self.manager.cache,
                rules=ValidationRules.from_settings(settings),
                completeness_weight=settings.COMPLETENESS_WEIGHT,
                result_ttl=settings.ETL_RESULT_TTL,
            ),
        )
        self.manager.register_processor(MAINTENANCE_QUEUE, MaintenanceProcessor(self.manager))

    def setup_signal_handlers(self) -> None:
        """Setup handlers for graceful shutdown on SIGINT/SIGTERM."""

        def signal_handler(signum: int, frame: object) -> None:
            logger.info(f"Received signal {signum}, initiating graceful shutdown")
            self.shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def start(self) -> None:
        """Run the worker service until a shutdown signal arrives."""
        self.setup_signal_handlers()
        logger.info(
            "Starting worker service",
            extra={"app": settings.APP_NAME, "version": settings.APP_VERSION, "environment": settings.ENVIRONMENT},
        )

        try:
            await self.manager.start()
            self.register_processors()
            self.scheduler.start()

            logger.info("Worker service started", extra=await self.manager.health_check())
            await self.shutdown_event.wait()

        finally:
            logger.info("Shutting down worker service")
            self.scheduler.shutdown()
            await self.manager.close()
            logger.info("Worker service shutdown complete")


async def main() -> None:
    """Main entry point for the worker service."""
    setup_logging(level=settings.LOG_LEVEL, format_type=settings.LOG_FORMAT)
    service = WorkerService()

    try:
        await service.start()
    except Exception as e:
        logger.error("Worker service failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
