"""add queue_jobs table, queue functions and processing analytics

Revision ID: 3b7c1e9a4d20
Revises:
Create Date: 2026-10-18 09:12:41.530114

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "3b7c1e9a4d20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


UPDATED_AT_FUNCTION = """
CREATE OR REPLACE FUNCTION queue_jobs_set_updated_at() RETURNS trigger AS $$
BEGIN
    NEW.updated_at = now();
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

UPDATED_AT_TRIGGER = """
CREATE TRIGGER queue_jobs_updated_at
    BEFORE UPDATE ON queue_jobs
    FOR EACH ROW EXECUTE FUNCTION queue_jobs_set_updated_at();
"""

# Claim: one conditional UPDATE; SKIP LOCKED keeps concurrent claimers apart
GET_NEXT_JOB_AND_LOCK = """
CREATE OR REPLACE FUNCTION get_next_job_and_lock(p_worker_id text)
RETURNS SETOF queue_jobs AS $$
    UPDATE queue_jobs
    SET status = 'processing',
        locked_by = p_worker_id,
        locked_at = now(),
        attempts = attempts + 1
    WHERE id = (
        SELECT id FROM queue_jobs
        WHERE status = 'queued'
          AND locked_by IS NULL
          AND (scheduled_for IS NULL OR scheduled_for <= now())
        ORDER BY priority DESC, created_at ASC
        LIMIT 1
        FOR UPDATE SKIP LOCKED
    )
      AND status = 'queued'
      AND locked_by IS NULL
    RETURNING *;
$$ LANGUAGE sql;
"""

# Returns the resulting status, or NULL when the job was not processing
HANDLE_JOB_FAILURE = """
CREATE OR REPLACE FUNCTION handle_job_failure(p_job_id uuid, p_error text)
RETURNS text AS $$
DECLARE
    v_status text;
BEGIN
    UPDATE queue_jobs
    SET status = CASE WHEN attempts >= max_attempts THEN 'failed' ELSE 'queued' END,
        error_message = p_error,
        locked_by = NULL,
        locked_at = NULL
    WHERE id = p_job_id
      AND status = 'processing'
    RETURNING status INTO v_status;

    RETURN v_status;
END;
$$ LANGUAGE plpgsql;
"""

CLEANUP_STUCK_JOBS = """
CREATE OR REPLACE FUNCTION cleanup_stuck_jobs(p_locked_before timestamptz, p_reason text)
RETURNS integer AS $$
DECLARE
    v_count integer;
BEGIN
    UPDATE queue_jobs
    SET status = 'failed',
        error_message = p_reason,
        locked_by = NULL,
        locked_at = NULL
    WHERE status = 'processing'
      AND locked_at IS NOT NULL
      AND locked_at < p_locked_before;

    GET DIAGNOSTICS v_count = ROW_COUNT;
    RETURN v_count;
END;
$$ LANGUAGE plpgsql;
"""

GET_JOB_STATISTICS = """
CREATE OR REPLACE FUNCTION get_job_statistics()
RETURNS TABLE (
    queued bigint,
    processing bigint,
    completed bigint,
    failed bigint,
    delayed bigint
) AS $$
    SELECT
        count(*) FILTER (WHERE status = 'queued'),
        count(*) FILTER (WHERE status = 'processing'),
        count(*) FILTER (WHERE status = 'completed'),
        count(*) FILTER (WHERE status = 'failed'),
        count(*) FILTER (WHERE status = 'delayed')
    FROM queue_jobs;
$$ LANGUAGE sql STABLE;
"""

FUNCTIONS = (
    "get_next_job_and_lock(text)",
    "handle_job_failure(uuid, text)",
    "cleanup_stuck_jobs(timestamptz, text)",
    "get_job_statistics()",
)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "queue_jobs",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("type", sa.Text, nullable=False, comment="Job type identifier"),
        sa.Column(
            "payload",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
            comment="Job-specific parameters",
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="queued",
            comment="Job status: queued|processing|completed|failed|delayed",
        ),
        sa.Column(
            "priority",
            sa.Integer,
            nullable=False,
            server_default="2",
            comment="Higher priority is claimed first",
        ),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column(
            "scheduled_for",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Earliest time to run job",
        ),
        # Worker coordination fields
        sa.Column(
            "locked_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="When job was locked by worker",
        ),
        sa.Column(
            "locked_by", sa.Text, nullable=True, comment="Worker ID that locked the job"
        ),
        sa.Column("error_message", sa.Text, nullable=True, comment="Last error message"),
        # Timestamps
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        # Constraints
        sa.CheckConstraint(
            "status IN ('queued', 'processing', 'completed', 'failed', 'delayed')",
            name="queue_jobs_status_check",
        ),
        sa.CheckConstraint("attempts >= 0", name="queue_jobs_attempts_check"),
        sa.CheckConstraint("max_attempts > 0", name="queue_jobs_max_attempts_check"),
        sa.CheckConstraint(
            "(locked_at IS NULL) = (locked_by IS NULL)",
            name="queue_jobs_lock_pair_chk",
        ),
        sa.CheckConstraint(
            "status <> 'processing' OR locked_at IS NOT NULL",
            name="queue_jobs_processing_requires_lock_chk",
        ),
        sa.CheckConstraint(
            "status <> 'completed' OR completed_at IS NOT NULL",
            name="queue_jobs_completed_requires_ts_chk",
        ),
    )

    # Claim order among eligible jobs
    op.create_index(
        "ix_queue_jobs_claim",
        "queue_jobs",
        [sa.text("priority DESC"), "created_at"],
        postgresql_where=sa.text("status = 'queued' AND locked_by IS NULL"),
    )
    op.create_index(
        "ix_queue_jobs_locked_at",
        "queue_jobs",
        ["locked_at"],
        postgresql_where=sa.text("status = 'processing'"),
    )
    op.create_index("ix_queue_jobs_status_updated_at", "queue_jobs", ["status", "updated_at"])
    op.create_index("ix_queue_jobs_created_at", "queue_jobs", ["created_at"])

    op.create_table(
        "processing_analytics",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column("memory_id", sa.Text, nullable=True),
        sa.Column(
            "stage", sa.Text, nullable=False, comment="worker_completion|worker_failure"
        ),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("duration_ms", sa.Integer, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_processing_analytics_memory_id", "processing_analytics", ["memory_id"]
    )

    op.execute(UPDATED_AT_FUNCTION)
    op.execute(UPDATED_AT_TRIGGER)
    op.execute(GET_NEXT_JOB_AND_LOCK)
    op.execute(HANDLE_JOB_FAILURE)
    op.execute(CLEANUP_STUCK_JOBS)
    op.execute(GET_JOB_STATISTICS)


def downgrade() -> None:
    """Downgrade schema."""
    for signature in FUNCTIONS:
        op.execute(f"DROP FUNCTION IF EXISTS {signature}")
    op.execute("DROP TRIGGER IF EXISTS queue_jobs_updated_at ON queue_jobs")
    op.execute("DROP FUNCTION IF EXISTS queue_jobs_set_updated_at()")
    op.drop_table("processing_analytics")
    op.drop_table("queue_jobs")
