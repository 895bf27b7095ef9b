"""
Database-backed job worker with leases, heartbeats and explicit outcomes.
"""

import asyncio
import os
import random
import socket
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from planner.config.logging import get_logger
from planner.config.settings import Settings
from planner.infra.database import Database
from planner.v1.core.registries import JobRegistry, job_registry
from planner.v1.jobs.clock import Clock, next_cron_time, utcnow
from planner.v1.jobs.errors import (
    ExhaustedRetriesError,
    PermanentValidationError,
    StaleEntityError,
    TransientExternalError,
)
from planner.v1.jobs.models import Job, JobStatus
from planner.v1.jobs.outcomes import JobOutcome, OutcomeKind
from planner.v1.jobs.schemas import JobEnqueueResponse
from planner.v1.jobs.service import JobService
from planner.v1.jobs.types import BackoffType, JobPayload, JobType, QueueName, parse_payload

logger = get_logger(__name__)


class JobContext:
    """What a processor may know about, and do to, the job it is running."""

    def __init__(
        self,
        job: Job,
        worker: "JobWorker",
    ):
        self.job_id: UUID = job.id
        self.job_type = JobType(job.job_type)
        self.attempt: int = job.attempts
        self.max_attempts: int = job.max_attempts
        self.idempotency_key: str | None = job.idempotency_key
        self.repeat: str | None = job.repeat
        self._worker = worker

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    def now(self) -> datetime:
        return self._worker.clock()

    async def report_progress(self, percent: float) -> None:
        """Record 0-100 progress on the active job."""
        progress = max(0, min(100, int(percent)))
        async with self._worker.database.session() as session:
            await session.execute(
                update(Job)
                .where(
                    and_(
                        Job.id == self.job_id,
                        Job.locked_by == self._worker.worker_id,
                        Job.status == JobStatus.ACTIVE.value,
                    )
                )
                .values(progress=progress, updated_at=self.now())
            )
            await session.commit()

    async def enqueue(self, payload: JobPayload, **options: Any) -> JobEnqueueResponse:
        """Enqueue another job in its own transaction."""
        async with self._worker.database.session() as session:
            return await self._worker.jobs.enqueue(session, payload, **options)


class JobWorker:
    """
    Job worker draining the jobs table.

    Features:
    - SELECT FOR UPDATE SKIP LOCKED for claiming jobs
    - Promotion of due delayed jobs
    - Heartbeats and visibility timeout for stuck job recovery
    - Fixed or exponential backoff with positive jitter, capped
    - Re-arming of cron-recurring jobs in the settling transaction
    - Optional restriction to a subset of queues
    """

    def __init__(
        self,
        settings: Settings,
        database: Database,
        *,
        registry: JobRegistry = job_registry,
        clock: Clock = utcnow,
        queues: Iterable[QueueName | str] | None = None,
    ):
        self.settings = settings
        self.database = database
        self.registry = registry
        self.clock = clock
        self.queues = [QueueName(q).value for q in queues] if queues else None
        self.jobs = JobService(settings, clock=clock)
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{id(self)}"
        self.running = False
        self.active_jobs: set[UUID] = set()
        self._tasks: set[asyncio.Task] = set()

    async def start(self) -> None:
        """Start the job worker main loop."""
        if self.running:
            raise RuntimeError("Worker is already running")

        self.running = True
        logger.info(
            "Starting job worker",
            worker_id=self.worker_id,
            concurrency=self.settings.job_concurrency,
            poll_interval_ms=self.settings.job_poll_interval_ms,
            queues=self.queues or "all",
        )

        loops = [
            asyncio.create_task(self._worker_loop()),
            asyncio.create_task(self._heartbeat_loop()),
            asyncio.create_task(self._stuck_job_recovery_loop()),
        ]
        try:
            await asyncio.gather(*loops)
        except Exception:
            logger.exception("Worker crashed", worker_id=self.worker_id)
            raise
        finally:
            self.running = False
            # One loop failing takes the others down with it
            for task in loops:
                task.cancel()
            await asyncio.gather(*loops, return_exceptions=True)

    async def stop(self, timeout_seconds: int = 30) -> None:
        """Stop the worker gracefully."""
        logger.info("Stopping job worker", worker_id=self.worker_id)
        self.running = False

        waited = 0
        while self.active_jobs and waited < timeout_seconds:
            await asyncio.sleep(1)
            waited += 1

        if self.active_jobs:
            logger.warning(
                "Worker stopped with active jobs",
                worker_id=self.worker_id,
                active_jobs=len(self.active_jobs),
            )

    async def run_once(self) -> int:
        """Promote, claim and fully process one round of jobs; returns jobs processed."""
        async with self.database.session() as session:
            await self._promote_due_jobs(session)
            jobs = await self._claim_jobs(session)
        if jobs:
            await asyncio.gather(*(self._process_job(job) for job in jobs))
        return len(jobs)

    async def _worker_loop(self) -> None:
        """Main worker loop that claims and processes jobs."""
        poll_interval = self.settings.job_poll_interval_ms / 1000
        while self.running:
            try:
                if len(self.active_jobs) >= self.settings.job_concurrency:
                    await asyncio.sleep(poll_interval)
                    continue

                async with self.database.session() as session:
                    await self._promote_due_jobs(session)
                    jobs_to_process = await self._claim_jobs(session)

                for job in jobs_to_process:
                    task = asyncio.create_task(self._process_job(job))
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)

                await asyncio.sleep(poll_interval)

            except Exception:
                logger.exception("Error in worker loop", worker_id=self.worker_id)
                await asyncio.sleep(5)

    def _queue_filter(self) -> Any:
        return Job.queue_name.in_(self.queues) if self.queues else True

    async def _promote_due_jobs(self, session: AsyncSession) -> int:
        """Move delayed jobs whose run_at has passed to waiting."""
        now = self.clock()
        result = await session.execute(
            update(Job)
            .where(
                and_(
                    Job.status == JobStatus.DELAYED.value,
                    Job.run_at <= now,
                    self._queue_filter(),
                )
            )
            .values(status=JobStatus.WAITING.value, updated_at=now)
        )
        await session.commit()
        return result.rowcount

    async def _claim_jobs(self, session: AsyncSession) -> list[Job]:
        """
        Claim available jobs using SELECT FOR UPDATE SKIP LOCKED.

        Returns list of claimed jobs ready for processing.
        """
        available_slots = max(0, self.settings.job_concurrency - len(self.active_jobs))
        if available_slots == 0:
            return []

        now = self.clock()

        claim_query = (
            select(Job.id)
            .where(
                and_(
                    Job.status == JobStatus.WAITING.value,
                    Job.run_at <= now,
                    self._queue_filter(),
                )
            )
            .order_by(Job.run_at)
            .limit(available_slots)
            .with_for_update(skip_locked=True)
        )
        result = await session.execute(claim_query)
        job_ids = list(result.scalars().all())
        if not job_ids:
            return []

        await session.execute(
            update(Job)
            .where(and_(Job.id.in_(job_ids), Job.status == JobStatus.WAITING.value))
            .values(
                status=JobStatus.ACTIVE.value,
                locked_at=now,
                locked_by=self.worker_id,
                heartbeat_at=now,
                attempts=Job.attempts + 1,
                updated_at=now,
            )
        )
        await session.commit()

        claimed = await session.execute(
            select(Job)
            .where(
                and_(
                    Job.id.in_(job_ids),
                    Job.locked_by == self.worker_id,
                    Job.status == JobStatus.ACTIVE.value,
                )
            )
            .order_by(Job.run_at)
            .execution_options(populate_existing=True)
        )
        jobs = list(claimed.scalars().all())

        self.active_jobs.update(job.id for job in jobs)
        logger.info(
            "Claimed jobs",
            worker_id=self.worker_id,
            job_count=len(jobs),
            job_ids=[str(job.id) for job in jobs],
        )
        return jobs

    async def _process_job(self, job: Job) -> None:
        """Run a claimed job and settle it according to its outcome."""
        with structlog.contextvars.bound_contextvars(
            job_id=str(job.id),
            job_type=job.job_type,
            queue=job.queue_name,
            attempt=job.attempts,
            worker_id=self.worker_id,
        ):
            try:
                logger.info("Processing job started")
                payload, outcome = await self._execute(job)
                await self._settle(job, payload, outcome)
            except Exception:
                logger.exception("Failed to settle job")
            finally:
                self.active_jobs.discard(job.id)

    async def _execute(self, job: Job) -> tuple[JobPayload | None, JobOutcome]:
        """Invoke the processor and map its exceptions to outcomes."""
        try:
            # pydantic.ValidationError is a ValueError
            payload = parse_payload(job.job_type, job.payload)
        except ValueError as e:
            logger.warning("Invalid job payload", error=str(e))
            return None, JobOutcome.discarded(f"Invalid payload: {e}")

        ctx = JobContext(job, self)
        try:
            processor = self.registry.get(job.job_type)
            async with self.database.session() as session:
                outcome = await processor.handle(session, ctx, payload)
                await session.commit()
        except TransientExternalError as e:
            logger.warning("Transient failure", error=e.message, details=e.details)
            return payload, JobOutcome.retry(e.message)
        except PermanentValidationError as e:
            logger.warning("Permanent failure, discarding", error=e.message)
            return payload, JobOutcome.discarded(e.message)
        except StaleEntityError as e:
            logger.info("Stale entity, skipping", reason=e.message)
            return payload, JobOutcome.skipped(e.message)
        except Exception as e:
            logger.exception("Job processing failed")
            return payload, JobOutcome.retry(f"{type(e).__name__}: {e}")

        return payload, outcome or JobOutcome.completed()

    async def _settle(
        self, job: Job, payload: JobPayload | None, outcome: JobOutcome
    ) -> None:
        now = self.clock()
        values: dict[str, Any] = {
            "locked_at": None,
            "locked_by": None,
            "heartbeat_at": None,
            "updated_at": now,
        }
        re_arm = False
        exhausted: ExhaustedRetriesError | None = None

        if outcome.is_terminal_success:
            values.update(
                status=JobStatus.COMPLETED.value,
                result=outcome.as_result(),
                finished_at=now,
            )
            if outcome.kind is OutcomeKind.DISCARDED:
                values.update(error_code="DISCARDED", last_error=outcome.reason)
            re_arm = bool(job.repeat) and not outcome.stop_repeat

        elif outcome.kind is OutcomeKind.RESCHEDULED:
            run_at = max(outcome.run_at or now, now)
            values.update(
                status=(
                    JobStatus.DELAYED.value if run_at > now else JobStatus.WAITING.value
                ),
                run_at=run_at,
                # A reschedule is not a failed attempt
                attempts=max(0, job.attempts - 1),
            )
            if outcome.payload is not None:
                values["payload"] = outcome.payload.to_json()

        elif job.attempts < job.max_attempts:
            run_at = self._calculate_retry_time(job, now)
            values.update(
                status=(
                    JobStatus.DELAYED.value if run_at > now else JobStatus.WAITING.value
                ),
                run_at=run_at,
                error_code="RETRY_SCHEDULED",
                last_error=outcome.reason,
            )

        else:
            exhausted = ExhaustedRetriesError(job.attempts, outcome.reason)
            values.update(
                status=JobStatus.FAILED.value,
                error_code=exhausted.code,
                last_error=exhausted.message,
                result=outcome.as_result(),
                finished_at=now,
            )
            re_arm = bool(job.repeat) and not outcome.stop_repeat

        async with self.database.session() as session:
            result = await session.execute(
                update(Job)
                .where(
                    and_(
                        Job.id == job.id,
                        Job.locked_by == self.worker_id,
                        Job.status == JobStatus.ACTIVE.value,
                    )
                )
                .values(**values)
            )
            if result.rowcount == 0:
                await session.rollback()
                logger.warning("Lease lost before settling, outcome dropped")
                return

            if re_arm:
                session.add(self._next_firing(job, now))
            await session.commit()

        logger.info(
            "Job settled",
            outcome=outcome.kind.value,
            status=values["status"],
            reason=outcome.reason,
            run_at=values["run_at"].isoformat() if "run_at" in values else None,
            re_armed=re_arm,
        )

        for follow_up in outcome.follow_ups:
            try:
                async with self.database.session() as session:
                    await self.jobs.enqueue(session, follow_up.payload, run_at=follow_up.run_at)
            except Exception:
                logger.exception("Failed to enqueue follow-up job")

        if exhausted is not None:
            logger.error("Job moved to dead letter", error=exhausted.message)
            await self._run_exhausted_hook(job, payload, exhausted)

    async def _run_exhausted_hook(
        self, job: Job, payload: JobPayload | None, error: ExhaustedRetriesError
    ) -> None:
        if payload is None:
            return
        try:
            processor = self.registry.get(job.job_type)
        except KeyError:
            return
        hook = getattr(processor, "on_exhausted", None)
        if hook is None:
            return
        try:
            await hook(JobContext(job, self), payload, error)
        except Exception:
            logger.exception("on_exhausted hook failed")

    def _next_firing(self, job: Job, now: datetime) -> Job:
        """Fresh delayed row for the next cron tick of a recurring job."""
        assert job.repeat is not None
        return Job(
            queue_name=job.queue_name,
            job_type=job.job_type,
            idempotency_key=job.idempotency_key,
            payload=job.payload,
            status=JobStatus.DELAYED.value,
            run_at=next_cron_time(job.repeat, now, self.settings.scheduler_timezone),
            repeat=job.repeat,
            attempts=0,
            max_attempts=job.max_attempts,
            backoff_type=job.backoff_type,
            backoff_delay_ms=job.backoff_delay_ms,
            requested_by_user_id=job.requested_by_user_id,
            request_id=job.request_id,
            created_at=now,
            updated_at=now,
        )

    def _calculate_retry_time(self, job: Job, now: datetime) -> datetime:
        """Next run time after a failed attempt: base backoff capped, plus positive jitter."""
        base_delay = job.backoff_delay_ms / 1000
        if job.backoff_type == BackoffType.EXPONENTIAL.value:
            delay = base_delay * (2 ** max(0, job.attempts - 1))
        else:
            delay = base_delay
        delay = min(delay, self.settings.job_max_backoff_s)

        jitter = delay * self.settings.job_backoff_jitter * random.random()
        return now + timedelta(seconds=delay + jitter)

    async def _heartbeat_loop(self) -> None:
        """Update heartbeats for active jobs."""
        interval = self.settings.job_heartbeat_interval_s
        while self.running:
            try:
                if self.active_jobs:
                    async with self.database.session() as session:
                        await session.execute(
                            update(Job)
                            .where(
                                and_(
                                    Job.id.in_(list(self.active_jobs)),
                                    Job.locked_by == self.worker_id,
                                )
                            )
                            .values(heartbeat_at=self.clock())
                        )
                        await session.commit()

                await asyncio.sleep(interval)

            except Exception:
                logger.exception("Error updating heartbeats", worker_id=self.worker_id)
                await asyncio.sleep(interval * 2)

    async def recover_stuck_jobs(self, session: AsyncSession) -> int:
        """Return active jobs with stale heartbeats to waiting, or fail them when exhausted."""
        now = self.clock()
        timeout_seconds = self.settings.job_visibility_timeout_s
        cutoff = now - timedelta(seconds=timeout_seconds)

        result = await session.execute(
            select(Job).where(
                and_(
                    Job.status == JobStatus.ACTIVE.value,
                    Job.heartbeat_at < cutoff,
                )
            )
        )
        stuck_jobs = list(result.scalars().all())
        if not stuck_jobs:
            return 0

        lease_cleared = {
            "locked_at": None,
            "locked_by": None,
            "heartbeat_at": None,
            "updated_at": now,
        }
        message = f"Job timeout after {timeout_seconds}s"
        recovered = 0
        for job in stuck_jobs:
            guard = and_(
                Job.id == job.id,
                Job.status == JobStatus.ACTIVE.value,
                Job.heartbeat_at < cutoff,
            )
            if job.can_retry():
                values = dict(
                    lease_cleared,
                    status=JobStatus.WAITING.value,
                    error_code="WORKER_TIMEOUT",
                    last_error=message,
                )
            else:
                exhausted = ExhaustedRetriesError(job.attempts, message)
                values = dict(
                    lease_cleared,
                    status=JobStatus.FAILED.value,
                    error_code=exhausted.code,
                    last_error=exhausted.message,
                    finished_at=now,
                )
            updated = await session.execute(update(Job).where(guard).values(**values))
            if updated.rowcount and job.repeat and values["status"] == JobStatus.FAILED.value:
                session.add(self._next_firing(job, now))
            recovered += updated.rowcount

        await session.commit()
        if recovered:
            logger.warning(
                "Recovered stuck jobs",
                stuck_job_count=recovered,
                timeout_seconds=timeout_seconds,
            )
        return recovered

    async def _stuck_job_recovery_loop(self) -> None:
        """Recover jobs that are stuck due to worker crashes."""
        interval = self.settings.job_recovery_interval_s
        while self.running:
            try:
                async with self.database.session() as session:
                    await self.recover_stuck_jobs(session)
                await asyncio.sleep(interval)

            except Exception:
                logger.exception("Error in stuck job recovery")
                await asyncio.sleep(interval)
