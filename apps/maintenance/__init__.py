"""
Maintenance App - Queue Housekeeping

Responsibilities:
- clean-queues: trim old completed/failed jobs on every queue (daily, 02:00)
- queue-stats-report: log job counts per queue (weekly, Monday 09:00)

Jobs are submitted by apps.dispatcher.scheduler and run on the maintenance queue.
"""
