"""
Job system Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from planner.v1.jobs.models import JobStatus
from planner.v1.jobs.types import QueueName


class JobEnqueueResponse(BaseModel):
    """Result of an enqueue call."""

    job_id: UUID
    status: str
    deduplicated: bool = Field(
        default=False, description="An existing pending job holds the idempotency key"
    )
    rescheduled: bool = Field(
        default=False, description="The existing job was moved to the new run time"
    )


class QueueCounts(BaseModel):
    """Per-status counts for one queue."""

    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0


class QueueStatsResponse(BaseModel):
    """Counts for every queue, keyed by queue name."""

    queues: dict[str, QueueCounts]


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    queue_name: str
    job_type: str
    idempotency_key: str | None = None
    payload: dict[str, Any]
    status: str
    run_at: datetime
    repeat: str | None = None
    attempts: int
    max_attempts: int
    backoff_type: str
    backoff_delay_ms: int

    # Worker coordination
    locked_at: datetime | None = None
    locked_by: str | None = None
    heartbeat_at: datetime | None = None

    # Results
    progress: int = 0
    result: dict[str, Any] | None = None
    error_code: str | None = None
    last_error: str | None = None
    finished_at: datetime | None = None

    # Metadata
    requested_by_user_id: UUID | None = None
    request_id: str | None = None
    created_at: datetime
    updated_at: datetime


class JobListFilters(BaseModel):
    """Schema for job listing filters."""

    queue: QueueName | None = Field(default=None, description="Filter by queue")
    status: list[JobStatus] | None = Field(
        default=None, description="Filter by job status"
    )
    limit: int = Field(
        default=50, ge=1, le=1000, description="Maximum results to return"
    )
    offset: int = Field(default=0, ge=0, description="Results offset for pagination")


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class BatchGenerationRequest(BaseModel):
    """Request body for queueing a batch idea generation."""

    count: int = Field(..., ge=1, description="Number of ideas to generate")
    niche: str = Field(..., min_length=1)
    platform: str = Field(..., min_length=1)
    tone: str | None = Field(default=None, description="Defaults to PROFESSIONAL")
    language: str | None = Field(default=None, description="Defaults to en")


class JobActionResponse(BaseModel):
    """Schema for single-job operator actions."""

    success: bool
    job_id: UUID | None = None
    idempotency_key: str | None = None
