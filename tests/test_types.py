from datetime import UTC, date, datetime
from uuid import uuid4

import pytest
from pydantic import ValidationError

from planner.v1.jobs.clock import is_valid_cron, next_cron_time
from planner.v1.jobs.outcomes import JobOutcome, OutcomeKind
from planner.v1.jobs.types import (
    JOB_SPECS,
    PAYLOAD_MODELS,
    AnalyticsAggregationPayload,
    AutoPostPayload,
    BatchGenerationPayload,
    ConflictPolicy,
    EmailPayload,
    JobType,
    PostingReminderPayload,
    QueueName,
    QuotaResetPayload,
    parse_payload,
)


def test_every_job_type_has_spec_and_payload_model():
    assert set(JOB_SPECS) == set(JobType)
    assert set(PAYLOAD_MODELS) == set(JobType)
    for job_type, model in PAYLOAD_MODELS.items():
        assert model.job_type is job_type


def test_each_queue_serves_one_job_type():
    queues = [spec.queue for spec in JOB_SPECS.values()]
    assert sorted(queues) == sorted(QueueName)


def test_rescheduling_job_types():
    rescheduling = {
        job_type
        for job_type, spec in JOB_SPECS.items()
        if spec.on_conflict is ConflictPolicy.RESCHEDULE
    }
    assert rescheduling == {
        JobType.POSTING_REMINDER,
        JobType.TRIAL_EXPIRATION,
        JobType.AUTO_POST,
    }


def test_idempotency_keys_come_from_entity_identity():
    user_id, content_id, connection_id = uuid4(), uuid4(), uuid4()
    earlier = datetime(2026, 3, 2, 10, tzinfo=UTC)
    later = datetime(2026, 3, 2, 18, tzinfo=UTC)

    first = PostingReminderPayload(
        user_id=user_id, content_id=content_id, scheduled_at=earlier, platform="tiktok"
    )
    moved = PostingReminderPayload(
        user_id=user_id, content_id=content_id, scheduled_at=later, platform="tiktok"
    )
    assert first.idempotency_key() == moved.idempotency_key()
    assert first.idempotency_key() == f"reminder:{user_id}:{content_id}"

    assert QuotaResetPayload(user_id=user_id).idempotency_key() == f"quota-reset:{user_id}"
    assert (
        AutoPostPayload(
            user_id=user_id,
            content_id=content_id,
            connection_id=connection_id,
            scheduled_at=earlier,
        ).idempotency_key()
        == f"auto-post:{user_id}:{content_id}:{connection_id}"
    )
    assert (
        AnalyticsAggregationPayload(target_date=date(2026, 3, 1)).idempotency_key()
        == "analytics:2026-03-01"
    )


def test_batch_and_email_jobs_are_not_deduplicated():
    batch = BatchGenerationPayload(
        user_id=uuid4(), count=3, niche="fitness", platform="instagram"
    )
    email = EmailPayload(recipient="a@example.com", subject="Hi", template="welcome")

    assert batch.idempotency_key() is None
    assert email.idempotency_key() is None


def test_payload_json_uses_camel_case():
    user_id = uuid4()
    payload = BatchGenerationPayload(
        user_id=user_id, count=3, niche="fitness", platform="instagram"
    )

    assert payload.to_json() == {
        "userId": str(user_id),
        "count": 3,
        "niche": "fitness",
        "platform": "instagram",
        "tone": "PROFESSIONAL",
        "language": "en",
    }
    assert AnalyticsAggregationPayload(target_date=date(2026, 3, 1)).to_json() == {
        "date": "2026-03-01"
    }


def test_parse_payload_validates_stored_json():
    user_id = uuid4()
    parsed = parse_payload("quota-reset", {"userId": str(user_id)})
    assert parsed == QuotaResetPayload(user_id=user_id)

    with pytest.raises(ValidationError):
        parse_payload(JobType.EMAIL, {"recipient": "a@example.com"})


def test_batch_count_must_be_positive():
    with pytest.raises(ValidationError):
        BatchGenerationPayload(user_id=uuid4(), count=0, niche="fitness", platform="x")


def test_next_cron_time_is_strictly_after():
    midnight = datetime(2026, 3, 2, 0, 0, tzinfo=UTC)

    assert next_cron_time("0 0 * * *", midnight) == datetime(2026, 3, 3, tzinfo=UTC)
    assert next_cron_time("*/15 * * * *", midnight) == datetime(
        2026, 3, 2, 0, 15, tzinfo=UTC
    )


def test_next_cron_time_evaluates_in_timezone():
    # New York is UTC-5 until the DST switch on 2026-03-08
    after = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)

    result = next_cron_time("0 9 * * *", after, "America/New_York")

    assert result == datetime(2026, 3, 2, 14, 0, tzinfo=UTC)
    assert result.utcoffset().total_seconds() == 0


def test_is_valid_cron():
    assert is_valid_cron("0 0 * * *")
    assert not is_valid_cron("every day")


def test_outcome_result_document():
    outcome = JobOutcome.skipped("idea_not_scheduled")
    assert outcome.is_terminal_success
    assert outcome.as_result() == {"outcome": "skipped", "reason": "idea_not_scheduled"}

    completed = JobOutcome.completed({"sent": True})
    assert completed.as_result() == {"outcome": "completed", "sent": True}

    retry = JobOutcome.retry("timeout")
    assert retry.kind is OutcomeKind.RETRY
    assert not retry.is_terminal_success
    assert not JobOutcome.rescheduled(datetime.now(UTC), "later").is_terminal_success
