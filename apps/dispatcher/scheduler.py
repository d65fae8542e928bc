"""
Maintenance Scheduler - Cron Submission of Housekeeping Jobs

Submits maintenance jobs on cron schedules using APScheduler:
- clean-queues        CLEAN_SCHEDULE_CRON (default "0 2 * * *")
- queue-stats-report  STATS_REPORT_CRON   (default "0 9 * * 1")

Only active when the manager runs in durable mode; in-process execution has
no persistent ledger worth cleaning.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from apps.dispatcher.manager import QueueManager
from apps.dispatcher.queues import MAINTENANCE_QUEUE
from apps.maintenance.processor import CLEAN_QUEUES, QUEUE_STATS_REPORT
from utils.config import Settings, get_settings

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Periodic submission of maintenance jobs."""

    def __init__(self, manager: QueueManager, settings: Optional[Settings] = None) -> None:
        self.manager = manager
        self.settings = settings or get_settings()
        self.scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    async def submit_clean(self) -> str:
        job = await self.manager.submit(
            MAINTENANCE_QUEUE,
            CLEAN_QUEUES,
            {
                "grace_ms": self.settings.CLEAN_GRACE_MS,
                "limit": self.settings.CLEAN_LIMIT,
                "statuses": ["completed", "failed"],
            },
        )
        logger.info("Scheduled queue cleanup submitted", extra={"job_id": job["id"]})
        return job["id"]

    async def submit_stats_report(self) -> str:
        job = await self.manager.submit(MAINTENANCE_QUEUE, QUEUE_STATS_REPORT, {})
        logger.info("Scheduled stats report submitted", extra={"job_id": job["id"]})
        return job["id"]

    def start(self) -> bool:
        """Start the cron jobs. Returns False when skipped (not durable)."""
        if self.manager.mode != "durable":
            logger.warning("Maintenance scheduler disabled", extra={"mode": self.manager.mode})
            return False

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.submit_clean,
            trigger=CronTrigger.from_crontab(self.settings.CLEAN_SCHEDULE_CRON),
            id="clean_queues",
            name="Daily Queue Cleanup",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.submit_stats_report,
            trigger=CronTrigger.from_crontab(self.settings.STATS_REPORT_CRON),
            id="queue_stats_report",
            name="Weekly Queue Stats Report",
            replace_existing=True,
        )
        self.scheduler.start()

        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            logger.info(
                "Scheduled maintenance job",
                extra={"job": job.id, "next_run": str(next_run) if next_run is not None else None},
            )
        return True

    def shutdown(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Maintenance scheduler stopped")
        self.scheduler = None
