"""
Maintenance Processor - Queue Housekeeping Jobs

Job types on the maintenance queue:
- clean-queues: remove old completed/failed jobs from every registered queue
- queue-stats-report: snapshot of job counts per queue

Any other job type is an unrecoverable failure.
"""

import logging
from typing import TYPE_CHECKING, Any

from apps.dispatcher.worker import JobContext
from utils.errors import InvalidJobPayloadError, UnrecoverableJobError
from utils.schemas import utcnow

if TYPE_CHECKING:
    from apps.dispatcher.manager import QueueManager

logger = logging.getLogger(__name__)

CLEAN_QUEUES = "clean-queues"
QUEUE_STATS_REPORT = "queue-stats-report"


class MaintenanceProcessor:
    """Processor for the maintenance queue; operates on the manager's queues."""

    def __init__(self, manager: "QueueManager") -> None:
        self.manager = manager

    async def __call__(self, ctx: JobContext) -> dict[str, Any]:
        if ctx.job_type == CLEAN_QUEUES:
            return await self.clean_queues(ctx)
        if ctx.job_type == QUEUE_STATS_REPORT:
            return await self.stats_report(ctx)
        raise UnrecoverableJobError(f"Unknown maintenance job type: {ctx.job_type}")

    async def clean_queues(self, ctx: JobContext) -> dict[str, Any]:
        payload = ctx.payload
        try:
            grace_ms = int(payload.get("grace_ms", self.manager.settings.CLEAN_GRACE_MS))
            limit = int(payload.get("limit", self.manager.settings.CLEAN_LIMIT))
        except (TypeError, ValueError) as e:
            raise InvalidJobPayloadError(f"Invalid clean-queues payload: {e}") from e

        statuses = payload.get("statuses", ["completed", "failed"])
        if isinstance(statuses, str) or not all(s in ("completed", "failed", "waiting") for s in statuses):
            raise InvalidJobPayloadError(f"Invalid statuses: {statuses}")

        removed: dict[str, dict[str, int]] = {}
        queues = self.manager.queues
        for i, queue in enumerate(queues):
            removed[queue] = {
                status: await self.manager.clean(queue, older_than_ms=grace_ms, limit=limit, status=status)
                for status in statuses
            }
            await ctx.update_progress((i + 1) * 100 // len(queues))

        total = sum(sum(counts.values()) for counts in removed.values())
        logger.info("Queues cleaned", extra={"removed_total": total, "grace_ms": grace_ms})
        return {"removed": removed, "total": total, "grace_ms": grace_ms}

    async def stats_report(self, ctx: JobContext) -> dict[str, Any]:
        stats = await self.manager.get_queue_stats()
        await ctx.update_progress(100)

        logger.info(
            "Queue stats report",
            extra={"counts": {name: entry.get("counts", {}) for name, entry in stats.items()}},
        )
        return {"generated_at": utcnow().isoformat(), "mode": self.manager.mode, "queues": stats}
