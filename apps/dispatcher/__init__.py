"""
Dispatcher App - Multi-Queue Job Processing

Responsibilities:
- Register named queues (etl, ia, notifications, maintenance) with their policy
- Accept job submissions and track job state in a Redis ledger
- Run one bounded worker pool per queue with retries and backoff
- Fall back to in-process execution when Redis is unreachable
- Schedule periodic maintenance jobs (queue cleanup, statistics report)

Outputs:
- Redis keys: <QUEUE_PREFIX>:<queue>:{job:<id>,wait,delayed,active,completed,failed,paused,seq}
- Redis events:
  - channel=REDIS_CHANNEL_EVENTS, payload={type, queue, job_id, progress, ts, ...}
"""
