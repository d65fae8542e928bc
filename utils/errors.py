"""
Error Types - Job Core Exceptions

Exception hierarchy shared by the dispatcher, the worker pools and the job
processors.

Propagation rules:
- ConfigurationError is raised at queue registration or when submitting to an
  unknown queue. It never affects other queues.
- TransportUnavailableError is raised by Redis-backed components when the
  broker cannot be reached. The dispatcher reacts by running the job in-process.
- UnrecoverableJobError (and subclasses) fail a job on the first attempt.
- ProcessorRuntimeError wraps anything else a processor raises; the worker pool
  retries it with backoff until the attempts budget is spent.
"""


class JobsError(Exception):
    """Base class for all job core errors."""


class ConfigurationError(JobsError):
    """Unknown or malformed queue definition."""


class TransportUnavailableError(JobsError):
    """The durable transport (Redis) could not be reached."""


class UnrecoverableJobError(JobsError):
    """A job failure that no retry can fix."""


class ParsingError(UnrecoverableJobError):
    """Spreadsheet missing, unreadable or without a header row."""


class InvalidJobPayloadError(UnrecoverableJobError):
    """Job payload is missing required keys or carries invalid options."""


class ProcessorRuntimeError(JobsError):
    """Unexpected exception (or timeout) raised while a processor was running."""

    def __init__(self, message: str, job_id: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id
