"""
Pydantic Schemas - Data Validation Models

Defines all Pydantic schemas used throughout the job core:
- Queue policy (QueueDefinition, BackoffPolicy, JobOptions)
- Job ledger entries (JobDescriptor) and lifecycle events (JobEvent)
- ETL records (NormalizedRecord, ValidationResult, ScoredRecord)
- ETL job output (BatchStatistics, JobResult)

Usage:
    from utils.schemas import QueueDefinition

    etl = QueueDefinition(name="etl", concurrency=3, attempts=3)
    options = etl.resolve_options({"priority": 2})
"""

import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Job lifecycle states."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class PriorityClass(str, Enum):
    """Queue priority class; maps to the default numeric job priority."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


DEFAULT_PRIORITY = {
    PriorityClass.HIGH: 1,
    PriorityClass.MEDIUM: 5,
    PriorityClass.LOW: 10,
}


class BackoffPolicy(BaseModel):
    """Delay strategy between retry attempts."""

    model_config = ConfigDict(frozen=True)

    type: Literal["fixed", "exponential"] = Field(default="fixed")
    delay_ms: int = Field(default=0, ge=0)

    def delay_for(self, attempts_made: int) -> int:
        """Return the delay in ms before the next attempt.

        Exponential backoff doubles the base delay for every attempt already
        made: delay, 2*delay, 4*delay, ...
        """
        if self.type == "exponential":
            return self.delay_ms * 2 ** max(attempts_made - 1, 0)
        return self.delay_ms


class JobOptions(BaseModel):
    """Per-job options. Unset values inherit the queue defaults."""

    priority: Optional[int] = Field(default=None, ge=0, description="Lower runs sooner")
    delay_ms: Optional[int] = Field(default=None, ge=0)
    attempts: Optional[int] = Field(default=None, ge=1)
    timeout_ms: Optional[int] = Field(default=None, gt=0)
    backoff: Optional[BackoffPolicy] = Field(default=None)


class QueueDefinition(BaseModel):
    """Policy of one named queue. Immutable once registered."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., pattern=r"^[a-z][a-z0-9_-]*$")
    concurrency: int = Field(..., ge=1)
    priority_class: PriorityClass = Field(default=PriorityClass.MEDIUM)
    attempts: int = Field(default=1, ge=1)
    backoff: Optional[BackoffPolicy] = Field(default=None)
    timeout_ms: int = Field(default=30_000, gt=0)
    remove_on_complete: int = Field(default=10, ge=0, description="Completed jobs kept")
    remove_on_fail: int = Field(default=50, ge=0, description="Failed jobs kept")

    @property
    def default_priority(self) -> int:
        return DEFAULT_PRIORITY[self.priority_class]

    def resolve_options(self, options: JobOptions | Mapping[str, Any] | None = None) -> JobOptions:
        """Merge caller options over the queue defaults.

        Raises:
            pydantic.ValidationError: If a mapping carries invalid option values
        """
        if options is None:
            options = JobOptions()
        elif not isinstance(options, JobOptions):
            options = JobOptions.model_validate(dict(options))

        return JobOptions(
            priority=self.default_priority if options.priority is None else options.priority,
            delay_ms=options.delay_ms or 0,
            attempts=options.attempts or self.attempts,
            timeout_ms=options.timeout_ms or self.timeout_ms,
            backoff=options.backoff or self.backoff,
        )


class JobDescriptor(BaseModel):
    """Ledger entry of one submitted job."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    queue: str = Field(..., description="Registered queue name")
    job_type: str = Field(..., description="Job name, e.g. process-excel")
    payload: dict[str, Any] = Field(default_factory=dict)
    options: JobOptions = Field(default_factory=JobOptions)
    status: JobStatus = Field(default=JobStatus.WAITING)
    progress: int = Field(default=0, ge=0, le=100)
    attempts_made: int = Field(default=0, ge=0)
    return_value: Any = Field(default=None)
    failure_reason: Optional[str] = Field(default=None)
    seq: int = Field(default=0, description="Arrival order within the queue")
    created_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = Field(default=None)
    finished_at: Optional[datetime] = Field(default=None)
    available_at: Optional[datetime] = Field(default=None, description="Not runnable before")


class JobEvent(BaseModel):
    """Lifecycle event published on the event stream.

    Standard format:
    {
        "type": "waiting" | "active" | "progress" | "completed" | "failed",
        "queue": "etl",
        "job_id": "3f2a...",
        "ts": "2025-01-15T03:15:02Z"
    }
    """

    type: Literal["waiting", "active", "progress", "completed", "failed"]
    queue: str
    job_id: str
    job_type: Optional[str] = None
    progress: Optional[int] = None
    attempts_made: int = 0
    failure_reason: Optional[str] = None
    ts: datetime = Field(default_factory=utcnow)

    @classmethod
    def for_job(cls, event_type: str, job: JobDescriptor) -> "JobEvent":
        return cls(
            type=event_type,
            queue=job.queue,
            job_id=job.id,
            job_type=job.job_type,
            progress=job.progress,
            attempts_made=job.attempts_made,
            failure_reason=job.failure_reason,
        )


# ---------------------------------------------------------------------------
# ETL records
# ---------------------------------------------------------------------------


class NormalizedRecord(BaseModel):
    """One inventory row mapped onto the canonical schema.

    Every field is optional: a missing column or an unparseable value is None,
    later reported by validation and scoring.
    """

    audit_id: Optional[str] = None
    usuario_id: Optional[str] = None
    proveedor: Optional[str] = None
    sitio: Optional[str] = None
    atencion: Optional[str] = Field(default=None, description="OS (on site) or HO (home office)")
    cpu_brand: Optional[str] = None
    cpu_model: Optional[str] = None
    cpu_speed_ghz: Optional[float] = None
    ram_gb: Optional[int] = None
    disk_type: Optional[str] = Field(default=None, description="HDD, SSD or NVME")
    disk_capacity_gb: Optional[int] = None
    os_name: Optional[str] = None
    os_version: Optional[str] = None
    browser_name: Optional[str] = None
    browser_version: Optional[str] = None
    antivirus_brand: Optional[str] = None
    antivirus_model: Optional[str] = None
    headset_brand: Optional[str] = None
    headset_model: Optional[str] = None
    isp_name: Optional[str] = None
    connection_type: Optional[str] = Field(default=None, description="Fibra, Cable or DSL")
    speed_download_mbps: Optional[int] = None
    speed_upload_mbps: Optional[int] = None


class RuleViolation(BaseModel):
    """A failed compliance check with actual vs required values."""

    field: str
    message: str
    actual: str
    required: str


class ValidationResult(BaseModel):
    usuario_id: Optional[str] = None
    errors: list[RuleViolation] = Field(default_factory=list)
    validation_score: int = Field(default=100, ge=0, le=100)

    @property
    def is_valid(self) -> bool:
        return not self.errors


class ScoredRecord(NormalizedRecord):
    quality_score: int = Field(..., ge=0, le=100)
    validation: ValidationResult


class BatchStatistics(BaseModel):
    total: int = 0
    valid: int = 0
    invalid: int = 0
    avg_score: float = 0.0
    success_rate: float = 0.0


class JobResult(BaseModel):
    """Full output of an ETL job, stored in the result cache."""

    job_id: str
    status: str = Field(default="COMPLETED")
    timestamp: datetime = Field(default_factory=utcnow)
    source_file: Optional[str] = None
    records: list[ScoredRecord] = Field(default_factory=list)
    statistics: BatchStatistics = Field(default_factory=BatchStatistics)
    validations: list[ValidationResult] = Field(default_factory=list)
