"""
Job store models.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Index, SmallInteger, Integer, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from planner.infra.database import Base, UTCDateTime


class JobStatus(str, Enum):
    """Job status enumeration."""

    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


PENDING_STATUSES = (JobStatus.WAITING, JobStatus.DELAYED, JobStatus.ACTIVE)
COUNTED_STATUSES = (
    JobStatus.WAITING,
    JobStatus.DELAYED,
    JobStatus.ACTIVE,
    JobStatus.COMPLETED,
    JobStatus.FAILED,
)

_PENDING_SQL = "idempotency_key IS NOT NULL AND status IN ('waiting', 'delayed', 'active')"


class Job(Base):
    """
    One scheduled unit of work.

    Provides:
    - Exclusive leases for workers (locked_by + heartbeats)
    - Delayed and cron-recurring execution via run_at / repeat
    - At most one pending job per idempotency key (partial unique index)
    - Attempt and backoff bookkeeping, progress and structured errors
    """

    __tablename__ = "jobs"

    # Core fields
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    queue_name: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Logical channel, one per job type"
    )
    job_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Payload variant discriminator"
    )
    idempotency_key: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Logical unit of work this job represents"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Job-specific parameters"
    )

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.WAITING.value,
        comment="waiting|delayed|active|completed|failed|cancelled",
    )
    run_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(UTC),
        comment="Earliest time to run job",
    )
    repeat: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Cron pattern for recurring jobs"
    )

    # Retry policy
    attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Number of attempts made"
    )
    max_attempts: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=1)
    backoff_type: Mapped[str] = mapped_column(Text, nullable=False, default="exponential")
    backoff_delay_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)

    # Worker coordination
    locked_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="When job was locked by worker"
    )
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker ID that holds the lease"
    )
    heartbeat_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Last worker heartbeat"
    )

    # Results and progress
    progress: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="0-100"
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Job result data"
    )
    error_code: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Structured error identifier"
    )
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Tracing
    requested_by_user_id: Mapped[UUID | None] = mapped_column(
        Uuid, nullable=True, comment="User whose action produced the job"
    )
    request_id: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Original request ID for tracing"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('waiting', 'delayed', 'active', 'completed', 'failed', 'cancelled')",
            name="jobs_status_check",
        ),
        CheckConstraint("progress BETWEEN 0 AND 100", name="jobs_progress_check"),
        Index("ix_jobs_queue_status_run_at", "queue_name", "status", "run_at"),
        Index("ix_jobs_status_run_at", "status", "run_at"),
        Index("ix_jobs_heartbeat_at", "heartbeat_at"),
        Index(
            "ix_jobs_idempotency_key_pending",
            "idempotency_key",
            unique=True,
            postgresql_where=text(_PENDING_SQL),
            sqlite_where=text(_PENDING_SQL),
        ),
    )

    def is_pending(self) -> bool:
        """Check if job is waiting, delayed or being executed."""
        return self.status in {s.value for s in PENDING_STATUSES}

    def can_retry(self) -> bool:
        """Check if another attempt is allowed after the current one."""
        return self.attempts < self.max_attempts

    def is_stuck(self, visibility_timeout_s: int, now: datetime) -> bool:
        """Check if an active job's lease has gone stale."""
        if self.status != JobStatus.ACTIVE.value or not self.heartbeat_at:
            return False
        return (now - self.heartbeat_at).total_seconds() > visibility_timeout_s
