"""
Queue job and processing analytics models.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import TIMESTAMP, CheckConstraint, Integer, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from seneca.infra.database import Base


class JobStatus(str, Enum):
    """Job status enumeration."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    # Reserved for scheduled retries; nothing produces it yet
    DELAYED = "delayed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class QueueJob(Base):
    """
    Durable job row claimed and executed by background workers.

    State coherence is enforced by the table itself:
    - lock owner and lock time are set or cleared together
    - a processing job always holds a lock
    - a completed job always carries completed_at
    """

    __tablename__ = "queue_jobs"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
        comment="Job-specific parameters",
    )

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.QUEUED.value,
        comment="Job status: queued|processing|completed|failed|delayed",
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=2,
        comment="Higher priority is claimed first",
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Number of claims made"
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3, comment="Claims allowed before terminal failure"
    )
    scheduled_for: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Earliest time to run job"
    )

    # Worker coordination
    locked_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="When job was locked by worker"
    )
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker ID that locked the job"
    )

    error_message: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )

    # Timestamps
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'processing', 'completed', 'failed', 'delayed')",
            name="queue_jobs_status_check",
        ),
        CheckConstraint("attempts >= 0", name="queue_jobs_attempts_check"),
        CheckConstraint("max_attempts > 0", name="queue_jobs_max_attempts_check"),
        CheckConstraint(
            "(locked_at IS NULL) = (locked_by IS NULL)",
            name="queue_jobs_lock_pair_chk",
        ),
        CheckConstraint(
            "status <> 'processing' OR locked_at IS NOT NULL",
            name="queue_jobs_processing_requires_lock_chk",
        ),
        CheckConstraint(
            "status <> 'completed' OR completed_at IS NOT NULL",
            name="queue_jobs_completed_requires_ts_chk",
        ),
    )


class ProcessingAnalytics(Base):
    """One row per worker outcome, written best-effort."""

    __tablename__ = "processing_analytics"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    memory_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage: Mapped[str] = mapped_column(
        Text, nullable=False, comment="worker_completion|worker_failure"
    )
    status: Mapped[str] = mapped_column(Text, nullable=False)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict, server_default="{}"
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )
