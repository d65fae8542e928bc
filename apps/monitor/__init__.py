"""
Monitor App - Job Lifecycle Observer

Responsibilities:
- Subscribe to Redis Pub/Sub channel: REDIS_CHANNEL_EVENTS
- Validate job events against the JobEvent schema
- Log job transitions and keep per-type counters

Runs as a separate process next to the worker service; it never touches the
queue ledger.
"""
