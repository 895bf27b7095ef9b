"""
Job types, queues and payload variants.

Every job type has exactly one payload model and one JobSpec. Payloads carry
entity ids only; processors re-read current state at execution time.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JobType(str, Enum):
    POSTING_REMINDER = "posting-reminder"
    QUOTA_RESET = "quota-reset"
    BATCH_GENERATION = "batch-generation"
    ANALYTICS_AGGREGATION = "analytics-aggregation"
    EMAIL = "email"
    TRIAL_EXPIRATION = "trial-expiration"
    AUTO_POST = "auto-post"


class QueueName(str, Enum):
    POSTING_REMINDERS = "posting-reminders"
    QUOTA_RESET = "quota-reset"
    BATCH_GENERATIONS = "batch-generations"
    ANALYTICS_AGGREGATION = "analytics-aggregation"
    EMAIL = "email"
    TRIAL_EXPIRATION = "trial-expiration"
    AUTO_POSTS = "auto-posts"


class BackoffType(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class ConflictPolicy(str, Enum):
    """What enqueue does when a pending job already holds the idempotency key."""

    KEEP = "keep"  # no-op, return the existing job
    RESCHEDULE = "reschedule"  # move the existing job to the new run time


@dataclass(frozen=True)
class BackoffPolicy:
    type: BackoffType = BackoffType.EXPONENTIAL
    delay_ms: int = 1000


@dataclass(frozen=True)
class JobSpec:
    queue: QueueName
    max_attempts: int
    backoff: BackoffPolicy
    on_conflict: ConflictPolicy = ConflictPolicy.KEEP
    # A completed run with an identical payload also holds the key
    dedupe_completed: bool = False


class JobPayloadModel(BaseModel):
    """Base for payload variants; JSON keys are camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    job_type: ClassVar[JobType]

    def idempotency_key(self) -> str | None:
        """Key of the logical unit of work, or None for non-deduplicated jobs."""
        return None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class PostingReminderPayload(JobPayloadModel):
    job_type: ClassVar[JobType] = JobType.POSTING_REMINDER

    user_id: UUID
    content_id: UUID
    scheduled_at: datetime
    platform: str

    def idempotency_key(self) -> str:
        return reminder_key(self.user_id, self.content_id)


class QuotaResetPayload(JobPayloadModel):
    job_type: ClassVar[JobType] = JobType.QUOTA_RESET

    user_id: UUID

    def idempotency_key(self) -> str:
        return quota_reset_key(self.user_id)


class BatchGenerationPayload(JobPayloadModel):
    job_type: ClassVar[JobType] = JobType.BATCH_GENERATION

    user_id: UUID
    count: int = Field(ge=1)
    niche: str = Field(min_length=1)
    platform: str = Field(min_length=1)
    tone: str = "PROFESSIONAL"
    language: str = "en"


class AnalyticsAggregationPayload(JobPayloadModel):
    job_type: ClassVar[JobType] = JobType.ANALYTICS_AGGREGATION

    target_date: date = Field(alias="date")

    def idempotency_key(self) -> str:
        return analytics_key(self.target_date)


class EmailPayload(JobPayloadModel):
    job_type: ClassVar[JobType] = JobType.EMAIL

    recipient: str = ""
    subject: str
    template: str
    data: dict[str, Any] = Field(default_factory=dict)


class TrialExpirationPayload(JobPayloadModel):
    job_type: ClassVar[JobType] = JobType.TRIAL_EXPIRATION

    user_id: UUID

    def idempotency_key(self) -> str:
        return trial_expiration_key(self.user_id)


class AutoPostPayload(JobPayloadModel):
    job_type: ClassVar[JobType] = JobType.AUTO_POST

    user_id: UUID
    content_id: UUID
    connection_id: UUID
    scheduled_at: datetime

    def idempotency_key(self) -> str:
        return auto_post_key(self.user_id, self.content_id, self.connection_id)


JobPayload = Union[
    PostingReminderPayload,
    QuotaResetPayload,
    BatchGenerationPayload,
    AnalyticsAggregationPayload,
    EmailPayload,
    TrialExpirationPayload,
    AutoPostPayload,
]

PAYLOAD_MODELS: dict[JobType, type[JobPayloadModel]] = {
    JobType.POSTING_REMINDER: PostingReminderPayload,
    JobType.QUOTA_RESET: QuotaResetPayload,
    JobType.BATCH_GENERATION: BatchGenerationPayload,
    JobType.ANALYTICS_AGGREGATION: AnalyticsAggregationPayload,
    JobType.EMAIL: EmailPayload,
    JobType.TRIAL_EXPIRATION: TrialExpirationPayload,
    JobType.AUTO_POST: AutoPostPayload,
}

JOB_SPECS: dict[JobType, JobSpec] = {
    JobType.POSTING_REMINDER: JobSpec(
        queue=QueueName.POSTING_REMINDERS,
        max_attempts=3,
        backoff=BackoffPolicy(BackoffType.EXPONENTIAL, 1000),
        on_conflict=ConflictPolicy.RESCHEDULE,
        dedupe_completed=True,
    ),
    JobType.QUOTA_RESET: JobSpec(
        queue=QueueName.QUOTA_RESET,
        max_attempts=3,
        backoff=BackoffPolicy(BackoffType.EXPONENTIAL, 1000),
        on_conflict=ConflictPolicy.KEEP,
    ),
    JobType.BATCH_GENERATION: JobSpec(
        queue=QueueName.BATCH_GENERATIONS,
        max_attempts=3,
        backoff=BackoffPolicy(BackoffType.EXPONENTIAL, 2000),
    ),
    JobType.ANALYTICS_AGGREGATION: JobSpec(
        queue=QueueName.ANALYTICS_AGGREGATION,
        max_attempts=2,
        backoff=BackoffPolicy(BackoffType.EXPONENTIAL, 1000),
        on_conflict=ConflictPolicy.KEEP,
    ),
    JobType.EMAIL: JobSpec(
        queue=QueueName.EMAIL,
        max_attempts=3,
        backoff=BackoffPolicy(BackoffType.EXPONENTIAL, 1000),
    ),
    JobType.TRIAL_EXPIRATION: JobSpec(
        queue=QueueName.TRIAL_EXPIRATION,
        max_attempts=3,
        backoff=BackoffPolicy(BackoffType.EXPONENTIAL, 5000),
        on_conflict=ConflictPolicy.RESCHEDULE,
    ),
    JobType.AUTO_POST: JobSpec(
        queue=QueueName.AUTO_POSTS,
        max_attempts=3,
        backoff=BackoffPolicy(BackoffType.EXPONENTIAL, 5000),
        on_conflict=ConflictPolicy.RESCHEDULE,
    ),
}


def parse_payload(job_type: JobType | str, data: dict[str, Any]) -> JobPayload:
    """Validate stored payload JSON into its variant; raises pydantic.ValidationError."""
    return PAYLOAD_MODELS[JobType(job_type)].model_validate(data)


# Idempotency keys are derived from entity identity only, never from time.


def reminder_key(user_id: UUID | str, content_id: UUID | str) -> str:
    return f"reminder:{user_id}:{content_id}"


def quota_reset_key(user_id: UUID | str) -> str:
    return f"quota-reset:{user_id}"


def analytics_key(target_date: date) -> str:
    return f"analytics:{target_date.isoformat()}"


def trial_expiration_key(user_id: UUID | str) -> str:
    return f"trial-expiration:{user_id}"


def auto_post_key(
    user_id: UUID | str, content_id: UUID | str, connection_id: UUID | str
) -> str:
    return f"auto-post:{user_id}:{content_id}:{connection_id}"
