"""
Queue Pydantic schemas: job records, payloads and statistics.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from seneca.v1.core.exceptions import ValidationError
from seneca.v1.queue.models import TERMINAL_STATUSES, JobStatus

PROCESS_MEMORY = "process_memory"


class Priority(str, Enum):
    """Priority hints accepted by enqueue."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


PRIORITY_MAP = {Priority.LOW: 1, Priority.NORMAL: 2, Priority.HIGH: 3}


def as_utc(value: datetime | None) -> datetime | None:
    """Read naive datetimes as UTC so they compare with the store's clock."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def priority_to_number(priority: Priority | str | int | None = None) -> int:
    """Map a priority hint to the numeric column value; ints pass through."""
    if priority is None:
        return PRIORITY_MAP[Priority.NORMAL]
    if isinstance(priority, bool):
        raise ValidationError(f"Invalid priority: {priority!r}")
    if isinstance(priority, int):
        return priority
    try:
        return PRIORITY_MAP[Priority(priority)]
    except ValueError as e:
        raise ValidationError(f"Invalid priority: {priority!r}") from e


class ProcessingOptions(BaseModel):
    """Which enrichment sub-steps to run. Everything is on unless overridden."""

    generate_embedding: bool = True
    detect_milestones: bool = True
    analyze_sentiment: bool = True
    generate_insights: bool = True


class JobPayload(BaseModel):
    """Payload of a process_memory job."""

    model_config = ConfigDict(extra="allow")

    memory_id: str
    family_id: str
    priority: int = PRIORITY_MAP[Priority.NORMAL]
    processing_options: ProcessingOptions = Field(default_factory=ProcessingOptions)


class EnqueueOptions(BaseModel):
    """Options accepted by MemoryQueue.enqueue."""

    priority: Priority | int = Priority.NORMAL
    processing_options: dict[str, bool] | None = None
    scheduled_for: datetime | None = None
    max_attempts: int | None = Field(default=None, ge=1)

    @field_validator("scheduled_for")
    @classmethod
    def schedule_as_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class JobRecord(BaseModel):
    """In-memory view of a queue_jobs row."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    type: str = PROCESS_MEMORY
    payload: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.QUEUED
    priority: int = PRIORITY_MAP[Priority.NORMAL]
    attempts: int = 0
    max_attempts: int = 3
    scheduled_for: datetime | None = None
    locked_by: str | None = None
    locked_at: datetime | None = None
    error_message: str | None = None
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator(
        "scheduled_for", "locked_at", "completed_at", "created_at", "updated_at"
    )
    @classmethod
    def timestamps_as_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def memory_id(self) -> str | None:
        return self.payload.get("memory_id")

    @property
    def family_id(self) -> str | None:
        return self.payload.get("family_id")

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_eligible(self, now: datetime | None = None) -> bool:
        """Check whether the job may be claimed right now."""
        now = now or datetime.now(UTC)
        return (
            self.status == JobStatus.QUEUED
            and self.locked_by is None
            and (self.scheduled_for is None or self.scheduled_for <= now)
        )


class QueueHealth(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


class QueueStats(BaseModel):
    """Counts per status plus the derived health classification."""

    total_jobs: int = 0
    pending_jobs: int = 0
    processing_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    delayed_jobs: int = 0
    queue_health: QueueHealth = QueueHealth.HEALTHY

    @property
    def failure_rate(self) -> float:
        return self.failed_jobs / self.total_jobs if self.total_jobs else 0.0

    @classmethod
    def from_counts(cls, counts: dict[JobStatus, int]) -> "QueueStats":
        return cls(
            total_jobs=sum(counts.values()),
            pending_jobs=counts.get(JobStatus.QUEUED, 0),
            processing_jobs=counts.get(JobStatus.PROCESSING, 0),
            completed_jobs=counts.get(JobStatus.COMPLETED, 0),
            failed_jobs=counts.get(JobStatus.FAILED, 0),
            delayed_jobs=counts.get(JobStatus.DELAYED, 0),
        )


class JobActionResponse(BaseModel):
    """Schema for bulk job action responses."""

    success_ids: list[UUID]
    failed_ids: list[UUID]
    errors: dict[str, str] = Field(default_factory=dict)


class MaintenanceResponse(BaseModel):
    """Result of a stuck-job sweep plus retention prune."""

    stuck_reclaimed: int
    pruned: int
    retention_days: int
