"""
Default queue policies: one queue per job domain.
"""

from utils.schemas import BackoffPolicy, PriorityClass, QueueDefinition

ETL_QUEUE = "etl"
IA_QUEUE = "ia"
NOTIFICATIONS_QUEUE = "notifications"
MAINTENANCE_QUEUE = "maintenance"

DEFAULT_QUEUES = (
    # Spreadsheet ingestion; large files take minutes
    QueueDefinition(
        name=ETL_QUEUE,
        concurrency=3,
        priority_class=PriorityClass.HIGH,
        attempts=3,
        backoff=BackoffPolicy(type="exponential", delay_ms=2000),
        timeout_ms=600_000,
        remove_on_complete=10,
        remove_on_fail=50,
    ),
    # Remote AI analysis is rate limited
    QueueDefinition(
        name=IA_QUEUE,
        concurrency=2,
        priority_class=PriorityClass.HIGH,
        attempts=2,
        backoff=BackoffPolicy(type="fixed", delay_ms=5000),
        timeout_ms=900_000,
        remove_on_complete=20,
        remove_on_fail=30,
    ),
    QueueDefinition(
        name=NOTIFICATIONS_QUEUE,
        concurrency=10,
        priority_class=PriorityClass.MEDIUM,
        attempts=5,
        backoff=BackoffPolicy(type="exponential", delay_ms=1000),
        timeout_ms=30_000,
        remove_on_complete=5,
        remove_on_fail=20,
    ),
    QueueDefinition(
        name=MAINTENANCE_QUEUE,
        concurrency=1,
        priority_class=PriorityClass.LOW,
        attempts=1,
        timeout_ms=3_600_000,
        remove_on_complete=3,
        remove_on_fail=10,
    ),
)
