import asyncio
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import update

from planner.v1.core.registries import JobRegistry
from planner.v1.jobs.errors import (
    ExhaustedRetriesError,
    PermanentValidationError,
    StaleEntityError,
    TransientExternalError,
)
from planner.v1.jobs.models import Job, JobStatus
from planner.v1.jobs.outcomes import FollowUp, JobOutcome
from planner.v1.jobs.types import EmailPayload, JobType, QueueName, QuotaResetPayload
from planner.v1.jobs.worker import JobWorker


class ScriptedProcessor:
    """Plays back outcomes (or raises exceptions) in order; the last step repeats."""

    def __init__(self, *steps):
        self.steps = list(steps) or [None]
        self.attempts: list[int] = []
        self.exhausted: list[ExhaustedRetriesError] = []

    async def handle(self, session, ctx, payload):
        self.attempts.append(ctx.attempt)
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if callable(step):
            step = await step(session, ctx, payload)
        if isinstance(step, Exception):
            raise step
        return step

    async def on_exhausted(self, ctx, payload, error):
        self.exhausted.append(error)


@pytest.fixture
def scripted_worker(settings, database, clock):
    """Build a worker whose email and quota-reset jobs run the given processor."""

    def _build(processor, **kwargs) -> JobWorker:
        registry = JobRegistry()
        registry.register(JobType.EMAIL.value, processor)
        registry.register(JobType.QUOTA_RESET.value, processor)
        return JobWorker(settings, database, registry=registry, clock=clock, **kwargs)

    return _build


def email_payload() -> EmailPayload:
    return EmailPayload(recipient="a@example.com", subject="Hi", template="welcome")


async def enqueue(database, service, payload, **options):
    async with database.session() as session:
        return await service.enqueue(session, payload, **options)


class TestSettling:
    async def test_completed_outcome(self, database, service, scripted_worker, clock, fetch):
        processor = ScriptedProcessor(JobOutcome.completed({"sent": True}))
        worker = scripted_worker(processor)
        response = await enqueue(database, service, email_payload())

        assert await worker.run_once() == 1

        job = await fetch(Job, response.job_id)
        assert job.status == JobStatus.COMPLETED.value
        assert job.result == {"outcome": "completed", "sent": True}
        assert job.attempts == 1
        assert job.finished_at == clock()
        assert job.locked_by is None
        assert job.heartbeat_at is None
        assert processor.attempts == [1]
        assert not worker.active_jobs

    async def test_returning_nothing_completes(self, database, service, scripted_worker, fetch):
        worker = scripted_worker(ScriptedProcessor(None))
        response = await enqueue(database, service, email_payload())

        await worker.run_once()

        job = await fetch(Job, response.job_id)
        assert job.status == JobStatus.COMPLETED.value
        assert job.result == {"outcome": "completed"}

    async def test_nothing_to_claim(self, scripted_worker):
        worker = scripted_worker(ScriptedProcessor())
        assert await worker.run_once() == 0

    async def test_delayed_job_waits_for_run_at(
        self, database, service, scripted_worker, clock, fetch
    ):
        processor = ScriptedProcessor()
        worker = scripted_worker(processor)
        response = await enqueue(
            database, service, email_payload(), delay=timedelta(minutes=5)
        )

        assert await worker.run_once() == 0
        clock.advance(minutes=4, seconds=59)
        assert await worker.run_once() == 0
        clock.advance(seconds=1)
        assert await worker.run_once() == 1

        job = await fetch(Job, response.job_id)
        assert job.status == JobStatus.COMPLETED.value

    async def test_permanent_error_discards(self, database, service, scripted_worker, fetch):
        processor = ScriptedProcessor(PermanentValidationError("Idea gone"))
        worker = scripted_worker(processor)
        response = await enqueue(database, service, email_payload())

        await worker.run_once()

        job = await fetch(Job, response.job_id)
        assert job.status == JobStatus.COMPLETED.value
        assert job.error_code == "DISCARDED"
        assert job.last_error == "Idea gone"
        assert job.result == {"outcome": "discarded", "reason": "Idea gone"}
        assert processor.attempts == [1]
        assert processor.exhausted == []

    async def test_stale_entity_skips(self, database, service, scripted_worker, fetch):
        worker = scripted_worker(ScriptedProcessor(StaleEntityError("moved")))
        response = await enqueue(database, service, email_payload())

        await worker.run_once()

        job = await fetch(Job, response.job_id)
        assert job.status == JobStatus.COMPLETED.value
        assert job.result == {"outcome": "skipped", "reason": "moved"}
        assert job.error_code is None

    async def test_unexpected_exception_is_retried(
        self, database, service, scripted_worker, fetch
    ):
        worker = scripted_worker(ScriptedProcessor(RuntimeError("socket closed")))
        response = await enqueue(database, service, email_payload())

        await worker.run_once()

        job = await fetch(Job, response.job_id)
        assert job.status == JobStatus.DELAYED.value
        assert job.attempts == 1
        assert job.error_code == "RETRY_SCHEDULED"
        assert job.last_error == "RuntimeError: socket closed"

    async def test_invalid_payload_is_discarded_without_running(
        self, scripted_worker, make_job, fetch
    ):
        processor = ScriptedProcessor()
        worker = scripted_worker(processor)
        job = await make_job(payload={"recipient": "a@example.com"})

        await worker.run_once()

        settled = await fetch(Job, job.id)
        assert settled.status == JobStatus.COMPLETED.value
        assert settled.error_code == "DISCARDED"
        assert settled.last_error.startswith("Invalid payload")
        assert processor.attempts == []

    async def test_unregistered_job_type_is_retried(self, settings, database, clock, make_job, fetch):
        worker = JobWorker(settings, database, registry=JobRegistry(), clock=clock)
        job = await make_job()

        await worker.run_once()

        settled = await fetch(Job, job.id)
        assert settled.status == JobStatus.DELAYED.value
        assert settled.last_error.startswith("KeyError")

    async def test_rescheduled_outcome_does_not_consume_attempt(
        self, database, service, scripted_worker, clock, fetch
    ):
        later = clock() + timedelta(hours=1)
        worker = scripted_worker(ScriptedProcessor(JobOutcome.rescheduled(later, "too_early")))
        response = await enqueue(database, service, email_payload())

        await worker.run_once()

        job = await fetch(Job, response.job_id)
        assert job.status == JobStatus.DELAYED.value
        assert job.run_at == later
        assert job.attempts == 0
        assert job.locked_by is None

    async def test_rescheduled_outcome_replaces_payload(
        self, database, service, scripted_worker, clock, fetch
    ):
        replacement = EmailPayload(recipient="b@example.com", subject="Hi", template="welcome")
        worker = scripted_worker(
            ScriptedProcessor(
                JobOutcome.rescheduled(clock() + timedelta(minutes=1), "retarget", replacement)
            )
        )
        response = await enqueue(database, service, email_payload())

        await worker.run_once()

        job = await fetch(Job, response.job_id)
        assert job.payload["recipient"] == "b@example.com"


class TestRetries:
    async def test_transient_failures_stop_at_max_attempts(
        self, database, service, scripted_worker, clock, fetch
    ):
        processor = ScriptedProcessor(TransientExternalError("upstream 503"))
        worker = scripted_worker(processor)
        response = await enqueue(database, service, email_payload())

        for _ in range(5):
            await worker.run_once()
            clock.advance(hours=2)

        job = await fetch(Job, response.job_id)
        assert processor.attempts == [1, 2, 3]
        assert job.status == JobStatus.FAILED.value
        assert job.attempts == 3
        assert job.error_code == "EXHAUSTED_RETRIES"
        assert "upstream 503" in job.last_error
        assert job.finished_at is not None

        assert len(processor.exhausted) == 1
        assert processor.exhausted[0].attempts == 3
        assert processor.exhausted[0].last_error == "upstream 503"

    async def test_retry_delay_grows_exponentially_with_jitter(
        self, database, service, scripted_worker, clock, fetch
    ):
        worker = scripted_worker(ScriptedProcessor(TransientExternalError("timeout")))
        response = await enqueue(database, service, email_payload(), attempts=5)

        await worker.run_once()
        job = await fetch(Job, response.job_id)
        assert job.status == JobStatus.DELAYED.value
        assert timedelta(seconds=1) <= job.run_at - clock() <= timedelta(seconds=1.25)

        clock.advance(seconds=10)
        await worker.run_once()
        job = await fetch(Job, response.job_id)
        assert job.attempts == 2
        assert timedelta(seconds=2) <= job.run_at - clock() <= timedelta(seconds=2.5)

    async def test_backoff_is_capped(self, settings, scripted_worker, clock):
        worker = scripted_worker(ScriptedProcessor())
        job = Job(backoff_type="exponential", backoff_delay_ms=1000, attempts=30)

        delay = worker._calculate_retry_time(job, clock()) - clock()

        cap = settings.job_max_backoff_s
        jitter = settings.job_backoff_jitter
        assert timedelta(seconds=cap) <= delay <= timedelta(seconds=cap * (1 + jitter))

    async def test_fixed_backoff(self, scripted_worker, clock):
        worker = scripted_worker(ScriptedProcessor())
        job = Job(backoff_type="fixed", backoff_delay_ms=2000, attempts=4)

        delay = worker._calculate_retry_time(job, clock()) - clock()

        assert timedelta(seconds=2) <= delay <= timedelta(seconds=2.5)

    async def test_on_exhausted_failure_does_not_break_settling(
        self, database, service, scripted_worker, fetch
    ):
        class FailingHook(ScriptedProcessor):
            async def on_exhausted(self, ctx, payload, error):
                raise RuntimeError("hook exploded")

        worker = scripted_worker(FailingHook(TransientExternalError("down")))
        response = await enqueue(database, service, email_payload(), attempts=1)

        await worker.run_once()

        job = await fetch(Job, response.job_id)
        assert job.status == JobStatus.FAILED.value


class TestRecurring:
    async def test_completed_recurring_job_is_rearmed(
        self, database, service, scripted_worker, clock, fetch_jobs
    ):
        worker = scripted_worker(ScriptedProcessor(JobOutcome.completed()))
        payload = QuotaResetPayload(user_id=uuid4())
        await enqueue(database, service, payload, repeat="0 0 * * *")

        clock.set(datetime(2026, 3, 3, 0, 0, 30, tzinfo=UTC))
        assert await worker.run_once() == 1

        first, second = await fetch_jobs("quota-reset")
        assert first.status == JobStatus.COMPLETED.value
        assert second.status == JobStatus.DELAYED.value
        assert second.run_at == datetime(2026, 3, 4, 0, 0, tzinfo=UTC)
        assert second.idempotency_key == payload.idempotency_key()
        assert second.repeat == "0 0 * * *"
        assert second.attempts == 0
        assert second.payload == first.payload

    async def test_stop_repeat_ends_the_series(
        self, database, service, scripted_worker, clock, fetch_jobs
    ):
        worker = scripted_worker(ScriptedProcessor(JobOutcome.skipped("user_upgraded", stop_repeat=True)))
        await enqueue(
            database, service, QuotaResetPayload(user_id=uuid4()), repeat="0 0 * * *"
        )

        clock.advance(days=1)
        await worker.run_once()

        jobs = await fetch_jobs("quota-reset")
        assert [job.status for job in jobs] == [JobStatus.COMPLETED.value]

    async def test_exhausted_recurring_job_is_rearmed(
        self, database, service, scripted_worker, clock, fetch_jobs
    ):
        worker = scripted_worker(ScriptedProcessor(TransientExternalError("db busy")))
        await enqueue(
            database,
            service,
            QuotaResetPayload(user_id=uuid4()),
            repeat="0 0 * * *",
            attempts=1,
        )

        clock.advance(days=1)
        await worker.run_once()

        statuses = sorted(job.status for job in await fetch_jobs("quota-reset"))
        assert statuses == [JobStatus.DELAYED.value, JobStatus.FAILED.value]

    async def test_follow_up_may_reuse_the_settled_key(
        self, database, service, scripted_worker, clock, fetch_jobs
    ):
        payload = QuotaResetPayload(user_id=uuid4())
        follow_up_at = clock() + timedelta(hours=6)
        worker = scripted_worker(
            ScriptedProcessor(
                JobOutcome.skipped("moved", follow_ups=(FollowUp(payload, follow_up_at),))
            )
        )
        await enqueue(database, service, payload)

        await worker.run_once()

        first, second = await fetch_jobs("quota-reset")
        assert first.status == JobStatus.COMPLETED.value
        assert second.status == JobStatus.DELAYED.value
        assert second.run_at == follow_up_at
        assert second.idempotency_key == first.idempotency_key


class TestLeases:
    async def test_settle_requires_the_lease(self, database, service, scripted_worker, fetch):
        async def steal_lease(session, ctx, payload):
            await session.execute(
                update(Job).where(Job.id == ctx.job_id).values(locked_by="other-worker")
            )
            return JobOutcome.completed()

        worker = scripted_worker(ScriptedProcessor(steal_lease))
        response = await enqueue(database, service, email_payload())

        await worker.run_once()

        job = await fetch(Job, response.job_id)
        assert job.status == JobStatus.ACTIVE.value
        assert job.locked_by == "other-worker"

    async def test_claim_respects_concurrency(self, settings, database, service, scripted_worker, fetch_jobs):
        settings.job_concurrency = 2
        worker = scripted_worker(ScriptedProcessor())
        for _ in range(3):
            await enqueue(database, service, email_payload())

        assert await worker.run_once() == 2
        assert await worker.run_once() == 1

        assert {job.status for job in await fetch_jobs("email")} == {"completed"}

    async def test_queue_filter(self, database, service, scripted_worker, fetch_jobs):
        worker = scripted_worker(ScriptedProcessor(), queues=[QueueName.EMAIL])
        await enqueue(database, service, email_payload())
        await enqueue(database, service, QuotaResetPayload(user_id=uuid4()))

        assert await worker.run_once() == 1

        assert (await fetch_jobs("quota-reset"))[0].status == JobStatus.WAITING.value
        assert (await fetch_jobs("email"))[0].status == JobStatus.COMPLETED.value

    async def test_progress_and_enqueue_from_context(
        self, database, service, scripted_worker, fetch_jobs, fetch
    ):
        async def report(session, ctx, payload):
            await ctx.report_progress(40)
            await ctx.enqueue(QuotaResetPayload(user_id=uuid4()))
            await ctx.report_progress(250)
            return JobOutcome.completed()

        worker = scripted_worker(ScriptedProcessor(report), queues=["email"])
        response = await enqueue(database, service, email_payload())

        await worker.run_once()

        job = await fetch(Job, response.job_id)
        assert job.progress == 100
        assert len(await fetch_jobs("quota-reset")) == 1

    async def test_recover_stuck_jobs(self, database, scripted_worker, clock, make_job, fetch):
        worker = scripted_worker(ScriptedProcessor())
        stale = clock() - timedelta(minutes=10)
        retryable = await make_job(
            status=JobStatus.ACTIVE.value,
            attempts=1,
            locked_by="dead-worker",
            locked_at=stale,
            heartbeat_at=stale,
        )
        exhausted = await make_job(
            status=JobStatus.ACTIVE.value,
            attempts=3,
            locked_by="dead-worker",
            heartbeat_at=stale,
        )
        healthy = await make_job(
            status=JobStatus.ACTIVE.value,
            attempts=1,
            locked_by="live-worker",
            heartbeat_at=clock() - timedelta(seconds=10),
        )

        async with database.session() as session:
            assert await worker.recover_stuck_jobs(session) == 2

        recovered = await fetch(Job, retryable.id)
        assert recovered.status == JobStatus.WAITING.value
        assert recovered.error_code == "WORKER_TIMEOUT"
        assert recovered.locked_by is None
        assert recovered.attempts == 1

        failed = await fetch(Job, exhausted.id)
        assert failed.status == JobStatus.FAILED.value
        assert failed.error_code == "EXHAUSTED_RETRIES"

        assert (await fetch(Job, healthy.id)).status == JobStatus.ACTIVE.value

    async def test_recovered_recurring_job_is_rearmed(
        self, database, scripted_worker, clock, make_job, fetch_jobs
    ):
        worker = scripted_worker(ScriptedProcessor())
        user_id = uuid4()
        await make_job(
            queue_name="quota-reset",
            job_type="quota-reset",
            payload={"userId": str(user_id)},
            idempotency_key=f"quota-reset:{user_id}",
            repeat="0 0 * * *",
            status=JobStatus.ACTIVE.value,
            attempts=3,
            locked_by="dead-worker",
            heartbeat_at=clock() - timedelta(hours=1),
        )

        async with database.session() as session:
            await worker.recover_stuck_jobs(session)

        statuses = sorted(job.status for job in await fetch_jobs("quota-reset"))
        assert statuses == [JobStatus.DELAYED.value, JobStatus.FAILED.value]

    async def test_stop_without_active_jobs(self, scripted_worker):
        worker = scripted_worker(ScriptedProcessor())
        await worker.stop(timeout_seconds=0)
        assert not worker.running

    async def test_loop_crash_stops_the_worker(self, scripted_worker, monkeypatch):
        worker = scripted_worker(ScriptedProcessor())
        finished = []

        async def idle_loop():
            try:
                while worker.running:
                    await asyncio.sleep(0.01)
            finally:
                finished.append(True)

        async def broken_heartbeat():
            raise RuntimeError("heartbeat store unavailable")

        monkeypatch.setattr(worker, "_worker_loop", idle_loop)
        monkeypatch.setattr(worker, "_stuck_job_recovery_loop", idle_loop)
        monkeypatch.setattr(worker, "_heartbeat_loop", broken_heartbeat)

        with pytest.raises(RuntimeError, match="heartbeat store unavailable"):
            await worker.start()

        assert not worker.running
        assert finished == [True, True]
