"""
Job service for enqueueing and managing deferred jobs.
"""

from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from planner.config.logging import get_logger
from planner.config.settings import Settings
from planner.v1.jobs.clock import Clock, next_cron_time, utcnow
from planner.v1.jobs.models import (
    COUNTED_STATUSES,
    PENDING_STATUSES,
    Job,
    JobStatus,
)
from planner.v1.jobs.outcomes import OutcomeKind
from planner.v1.jobs.schemas import JobEnqueueResponse, QueueCounts
from planner.v1.jobs.types import (
    JOB_SPECS,
    AnalyticsAggregationPayload,
    AutoPostPayload,
    BackoffPolicy,
    BatchGenerationPayload,
    ConflictPolicy,
    EmailPayload,
    JobPayload,
    PostingReminderPayload,
    QueueName,
    QuotaResetPayload,
    TrialExpirationPayload,
    auto_post_key,
)

logger = get_logger(__name__)

_RESCHEDULABLE = (JobStatus.WAITING.value, JobStatus.DELAYED.value)
_TERMINAL = (
    JobStatus.COMPLETED.value,
    JobStatus.FAILED.value,
    JobStatus.CANCELLED.value,
)


class JobService:
    """Producer-facing API of the job store."""

    def __init__(self, settings: Settings, clock: Clock = utcnow):
        self.settings = settings
        self.clock = clock

    async def enqueue(
        self,
        session: AsyncSession,
        payload: JobPayload,
        idempotency_key: str | None = None,
        *,
        delay: timedelta | None = None,
        run_at: datetime | None = None,
        attempts: int | None = None,
        backoff: BackoffPolicy | None = None,
        repeat: str | None = None,
        on_conflict: ConflictPolicy | None = None,
        requested_by_user_id: UUID | None = None,
        request_id: str | None = None,
    ) -> JobEnqueueResponse:
        """
        Enqueue a job, honouring the idempotency key.

        Args:
            session: Database session (committed by this call)
            payload: Payload variant; its class decides the job type and queue
            idempotency_key: Overrides the key derived from the payload
            delay: Relative delay from now; ignored when ``run_at`` is given
            run_at: Absolute earliest execution time
            attempts: Overrides the job type's max attempts
            backoff: Overrides the job type's backoff policy
            repeat: Cron pattern for a recurring job
            on_conflict: Overrides the job type's conflict policy
            requested_by_user_id: User whose action produced the job
            request_id: Request ID for tracing

        Returns:
            Enqueue result with the job id and deduplication info
        """
        spec = JOB_SPECS[payload.job_type]
        key = idempotency_key or payload.idempotency_key()
        policy = on_conflict or spec.on_conflict
        now = self.clock()
        target_run_at = self._resolve_run_at(now, delay, run_at, repeat)

        if key:
            existing = await self._find_pending(session, key)
            if existing:
                return await self._resolve_conflict(
                    session, existing, payload, target_run_at, policy, now
                )
            if spec.dedupe_completed:
                done = await self._find_completed(session, key, payload.to_json())
                if done:
                    logger.info(
                        "Job already completed",
                        job_id=str(done.id),
                        job_type=done.job_type,
                        idempotency_key=key,
                    )
                    return JobEnqueueResponse(
                        job_id=done.id, status=done.status, deduplicated=True
                    )

        backoff = backoff or spec.backoff
        job = Job(
            queue_name=spec.queue.value,
            job_type=payload.job_type.value,
            idempotency_key=key,
            payload=payload.to_json(),
            status=self._initial_status(target_run_at, now).value,
            run_at=target_run_at,
            repeat=repeat,
            attempts=0,
            max_attempts=attempts or spec.max_attempts,
            backoff_type=backoff.type.value,
            backoff_delay_ms=backoff.delay_ms,
            requested_by_user_id=requested_by_user_id,
            request_id=request_id,
            created_at=now,
            updated_at=now,
        )

        try:
            session.add(job)
            await session.commit()
        except IntegrityError:
            await session.rollback()
            if not key:
                raise
            # Another producer inserted the same key between our read and write
            existing = await self._find_pending(session, key)
            if existing is None:
                raise
            return await self._resolve_conflict(
                session, existing, payload, target_run_at, policy, now
            )

        logger.info(
            "Job enqueued",
            job_id=str(job.id),
            job_type=job.job_type,
            queue=job.queue_name,
            idempotency_key=key,
            status=job.status,
            run_at=target_run_at.isoformat(),
            repeat=repeat,
        )
        return JobEnqueueResponse(job_id=job.id, status=job.status)

    def _resolve_run_at(
        self,
        now: datetime,
        delay: timedelta | None,
        run_at: datetime | None,
        repeat: str | None,
    ) -> datetime:
        if run_at is not None:
            return max(run_at, now)
        if delay is not None:
            return now + max(delay, timedelta(0))
        if repeat:
            return next_cron_time(repeat, now, self.settings.scheduler_timezone)
        return now

    @staticmethod
    def _initial_status(run_at: datetime, now: datetime) -> JobStatus:
        return JobStatus.DELAYED if run_at > now else JobStatus.WAITING

    async def _find_pending(self, session: AsyncSession, key: str) -> Job | None:
        """Find the pending job holding an idempotency key."""
        result = await session.execute(
            select(Job)
            .where(
                and_(
                    Job.idempotency_key == key,
                    Job.status.in_([s.value for s in PENDING_STATUSES]),
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _find_completed(
        self, session: AsyncSession, key: str, payload: dict[str, Any]
    ) -> Job | None:
        """Latest run of a key that did its work, if it ran with this payload."""
        result = await session.execute(
            select(Job)
            .where(
                and_(
                    Job.idempotency_key == key,
                    Job.status == JobStatus.COMPLETED.value,
                )
            )
            .order_by(Job.finished_at.desc())
            .limit(1)
        )
        job = result.scalar_one_or_none()
        if job is None or job.payload != payload:
            return None
        if (job.result or {}).get("outcome") != OutcomeKind.COMPLETED.value:
            return None
        return job

    async def _resolve_conflict(
        self,
        session: AsyncSession,
        existing: Job,
        payload: JobPayload,
        run_at: datetime,
        policy: ConflictPolicy,
        now: datetime,
    ) -> JobEnqueueResponse:
        new_payload = payload.to_json()
        changed = existing.run_at != run_at or existing.payload != new_payload
        if (
            policy is ConflictPolicy.RESCHEDULE
            and existing.status in _RESCHEDULABLE
            and changed
        ):
            new_status = self._initial_status(run_at, now).value
            result = await session.execute(
                update(Job)
                .where(and_(Job.id == existing.id, Job.status.in_(_RESCHEDULABLE)))
                .values(
                    run_at=run_at,
                    payload=new_payload,
                    status=new_status,
                    updated_at=now,
                )
            )
            await session.commit()
            if result.rowcount > 0:
                logger.info(
                    "Job rescheduled",
                    job_id=str(existing.id),
                    job_type=existing.job_type,
                    idempotency_key=existing.idempotency_key,
                    previous_run_at=existing.run_at.isoformat(),
                    run_at=run_at.isoformat(),
                )
                return JobEnqueueResponse(
                    job_id=existing.id,
                    status=new_status,
                    deduplicated=True,
                    rescheduled=True,
                )

        logger.info(
            "Job deduplicated",
            job_id=str(existing.id),
            job_type=existing.job_type,
            idempotency_key=existing.idempotency_key,
            status=existing.status,
        )
        return JobEnqueueResponse(
            job_id=existing.id, status=existing.status, deduplicated=True
        )

    async def cancel(self, session: AsyncSession, idempotency_key: str) -> bool:
        """Withdraw a waiting or delayed job; executing and finished jobs are left alone."""
        now = self.clock()
        result = await session.execute(
            update(Job)
            .where(
                and_(
                    Job.idempotency_key == idempotency_key,
                    Job.status.in_(_RESCHEDULABLE),
                )
            )
            .values(
                status=JobStatus.CANCELLED.value,
                finished_at=now,
                updated_at=now,
            )
        )
        await session.commit()

        success = result.rowcount > 0
        if success:
            logger.info("Job cancelled", idempotency_key=idempotency_key)
        return success

    async def get_counts(
        self, session: AsyncSession, queue: QueueName | str
    ) -> QueueCounts:
        """Per-status counts for one queue."""
        queue_name = QueueName(queue).value
        result = await session.execute(
            select(Job.status, func.count(Job.id))
            .where(
                and_(
                    Job.queue_name == queue_name,
                    Job.status.in_([s.value for s in COUNTED_STATUSES]),
                )
            )
            .group_by(Job.status)
        )
        return QueueCounts(**dict(result.all()))

    async def get_all_counts(self, session: AsyncSession) -> dict[str, QueueCounts]:
        """Per-status counts for every queue, including empty ones."""
        result = await session.execute(
            select(Job.queue_name, Job.status, func.count(Job.id))
            .where(Job.status.in_([s.value for s in COUNTED_STATUSES]))
            .group_by(Job.queue_name, Job.status)
        )
        by_queue: dict[str, dict[str, int]] = {q.value: {} for q in QueueName}
        for queue_name, status, count in result.all():
            by_queue.setdefault(queue_name, {})[status] = count
        return {name: QueueCounts(**counts) for name, counts in by_queue.items()}

    async def get_job(self, session: AsyncSession, job_id: UUID) -> Job | None:
        result = await session.execute(select(Job).where(Job.id == job_id))
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        session: AsyncSession,
        *,
        queue: QueueName | None = None,
        statuses: list[JobStatus] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        """List jobs newest first, with the total matching count."""
        conditions = []
        if queue:
            conditions.append(Job.queue_name == queue.value)
        if statuses:
            conditions.append(Job.status.in_([s.value for s in statuses]))

        where_clause = and_(*conditions) if conditions else True

        total_result = await session.execute(
            select(func.count(Job.id)).where(where_clause)
        )
        total = total_result.scalar() or 0

        result = await session.execute(
            select(Job)
            .where(where_clause)
            .order_by(Job.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total

    async def retry_job(self, session: AsyncSession, job_id: UUID) -> bool:
        """
        Move a dead-lettered job back to waiting with its attempts reset.

        Returns False when the job is not failed or when another pending job
        already holds its idempotency key.
        """
        now = self.clock()
        try:
            result = await session.execute(
                update(Job)
                .where(and_(Job.id == job_id, Job.status == JobStatus.FAILED.value))
                .values(
                    status=JobStatus.WAITING.value,
                    attempts=0,
                    run_at=now,
                    locked_at=None,
                    locked_by=None,
                    heartbeat_at=None,
                    progress=0,
                    error_code=None,
                    last_error=None,
                    finished_at=None,
                    updated_at=now,
                )
            )
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.warning("Job retry refused, key already pending", job_id=str(job_id))
            return False

        success = result.rowcount > 0
        if success:
            logger.info("Job retried", job_id=str(job_id))
        return success

    async def cleanup_old_jobs(self, session: AsyncSession) -> int:
        """Delete terminal jobs older than the retention window."""
        retention_days = self.settings.job_cleanup_after_days
        cutoff = self.clock() - timedelta(days=retention_days)

        delete_query = Job.__table__.delete().where(
            and_(Job.status.in_(_TERMINAL), Job.updated_at < cutoff)
        )
        result = await session.execute(delete_query)
        deleted_count = result.rowcount
        await session.commit()

        if deleted_count > 0:
            logger.info(
                "Cleaned up old jobs",
                deleted_count=deleted_count,
                retention_days=retention_days,
            )
        return deleted_count

    # Convenience producers, one per job type

    async def schedule_posting_reminder(
        self,
        session: AsyncSession,
        *,
        user_id: UUID,
        content_id: UUID,
        scheduled_at: datetime,
        platform: str,
        reminder_at: datetime | None = None,
    ) -> JobEnqueueResponse:
        """Remind the user ``reminder_lead_minutes`` before the post (or at ``reminder_at``)."""
        payload = PostingReminderPayload(
            user_id=user_id,
            content_id=content_id,
            scheduled_at=scheduled_at,
            platform=platform,
        )
        if reminder_at is None:
            reminder_at = scheduled_at - timedelta(
                minutes=self.settings.reminder_lead_minutes
            )
        return await self.enqueue(session, payload, run_at=reminder_at)

    async def schedule_quota_reset(
        self, session: AsyncSession, user_id: UUID
    ) -> JobEnqueueResponse:
        """Register the recurring daily quota reset for a user."""
        return await self.enqueue(
            session,
            QuotaResetPayload(user_id=user_id),
            repeat=self.settings.quota_reset_cron,
        )

    async def queue_batch_generation(
        self,
        session: AsyncSession,
        *,
        user_id: UUID,
        count: int,
        niche: str,
        platform: str,
        tone: str | None = None,
        language: str | None = None,
        request_id: str | None = None,
    ) -> JobEnqueueResponse:
        if count > self.settings.batch_max_count:
            raise ValueError(
                f"count must be at most {self.settings.batch_max_count}, got {count}"
            )
        payload = BatchGenerationPayload(
            user_id=user_id,
            count=count,
            niche=niche,
            platform=platform,
            tone=tone or "PROFESSIONAL",
            language=language or "en",
        )
        return await self.enqueue(
            session,
            payload,
            requested_by_user_id=user_id,
            request_id=request_id,
        )

    async def queue_analytics_aggregation(
        self, session: AsyncSession, target_date: date | None = None
    ) -> JobEnqueueResponse:
        """Aggregate one UTC day; defaults to today."""
        target_date = target_date or self.clock().date()
        return await self.enqueue(
            session, AnalyticsAggregationPayload(target_date=target_date)
        )

    async def queue_email(
        self,
        session: AsyncSession,
        *,
        recipient: str,
        subject: str,
        template: str,
        data: dict[str, Any] | None = None,
        delay: timedelta | None = None,
    ) -> JobEnqueueResponse:
        payload = EmailPayload(
            recipient=recipient,
            subject=subject,
            template=template,
            data=data or {},
        )
        return await self.enqueue(session, payload, delay=delay)

    async def schedule_trial_expiration_check(
        self, session: AsyncSession, *, user_id: UUID, expires_at: datetime
    ) -> JobEnqueueResponse:
        return await self.enqueue(
            session, TrialExpirationPayload(user_id=user_id), run_at=expires_at
        )

    async def schedule_auto_post(
        self,
        session: AsyncSession,
        *,
        user_id: UUID,
        content_id: UUID,
        connection_id: UUID,
        scheduled_at: datetime,
    ) -> JobEnqueueResponse:
        payload = AutoPostPayload(
            user_id=user_id,
            content_id=content_id,
            connection_id=connection_id,
            scheduled_at=scheduled_at,
        )
        return await self.enqueue(session, payload, run_at=scheduled_at)

    async def cancel_auto_post(
        self,
        session: AsyncSession,
        *,
        user_id: UUID,
        content_id: UUID,
        connection_id: UUID,
    ) -> bool:
        return await self.cancel(
            session, auto_post_key(user_id, content_id, connection_id)
        )
