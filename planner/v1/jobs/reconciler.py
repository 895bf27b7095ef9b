"""
Reconciliation scans.

Each scan reads durable entities, derives the idempotency key from entity
identity and enqueues the job that should exist. Running a scan twice over
unchanged entities leaves one pending job per key. Stale schedules are left
for processors to correct at execution time.
"""

from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from datetime import timedelta
from enum import Enum
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from planner.config.logging import get_logger
from planner.config.settings import Settings
from planner.infra.database import Database
from planner.v1.content.models import Idea, IdeaStatus, Plan, SocialConnection, User
from planner.v1.jobs.clock import Clock, utcnow
from planner.v1.jobs.schemas import JobEnqueueResponse
from planner.v1.jobs.service import JobService

logger = get_logger(__name__)

Producer = Callable[[AsyncSession], Awaitable[JobEnqueueResponse]]


class ScanName(str, Enum):
    POSTING_REMINDERS = "posting-reminders"
    QUOTA_RESETS = "quota-resets"
    TRIAL_EXPIRATIONS = "trial-expirations"
    ANALYTICS = "analytics"
    AUTO_POSTS = "auto-posts"


@dataclass
class ScanReport:
    scan: str
    scanned: int = 0
    enqueued: int = 0
    deduplicated: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class QueueReconciler:
    """Scans entities and enqueues the jobs they imply."""

    def __init__(self, settings: Settings, database: Database, clock: Clock = utcnow):
        self.settings = settings
        self.database = database
        self.clock = clock
        self.jobs = JobService(settings, clock=clock)

    async def run_scan(self, scan: ScanName | str) -> ScanReport:
        scan = ScanName(scan)
        if scan is ScanName.POSTING_REMINDERS:
            return await self.scan_posting_reminders()
        if scan is ScanName.QUOTA_RESETS:
            return await self.scan_quota_resets()
        if scan is ScanName.TRIAL_EXPIRATIONS:
            return await self.scan_trial_expirations()
        if scan is ScanName.ANALYTICS:
            return await self.scan_analytics()
        return await self.scan_auto_posts()

    async def _produce_each(
        self, report: ScanReport, producers: list[tuple[str, Producer]]
    ) -> ScanReport:
        """Enqueue per entity, each in its own transaction; one failure never stops the scan."""
        for entity_id, produce in producers:
            report.scanned += 1
            try:
                async with self.database.session() as session:
                    response = await produce(session)
            except Exception:
                report.failed += 1
                logger.exception(
                    "Failed to reconcile entity", scan=report.scan, entity_id=entity_id
                )
                continue

            if response.deduplicated:
                report.deduplicated += 1
            else:
                report.enqueued += 1

        logger.info("Scan finished", **report.as_dict())
        return report

    async def scan_posting_reminders(self) -> ScanReport:
        now = self.clock()
        window_end = now + timedelta(minutes=self.settings.reminder_scan_window_minutes)
        async with self.database.session() as session:
            result = await session.execute(
                select(Idea).where(
                    and_(
                        Idea.status == IdeaStatus.SCHEDULED.value,
                        Idea.scheduled_at >= now,
                        Idea.scheduled_at <= window_end,
                    )
                )
            )
            ideas = list(result.scalars().all())

        def producer(idea: Idea) -> Producer:
            return lambda session: self.jobs.schedule_posting_reminder(
                session,
                user_id=idea.user_id,
                content_id=idea.id,
                scheduled_at=idea.scheduled_at,
                platform=idea.platform,
            )

        return await self._produce_each(
            ScanReport(ScanName.POSTING_REMINDERS.value),
            [(str(idea.id), producer(idea)) for idea in ideas],
        )

    async def scan_quota_resets(self) -> ScanReport:
        async with self.database.session() as session:
            result = await session.execute(
                select(User.id).where(User.plan == Plan.FREE.value)
            )
            user_ids = list(result.scalars().all())

        def producer(user_id) -> Producer:
            return lambda session: self.jobs.schedule_quota_reset(session, user_id)

        return await self._produce_each(
            ScanReport(ScanName.QUOTA_RESETS.value),
            [(str(user_id), producer(user_id)) for user_id in user_ids],
        )

    async def scan_trial_expirations(self) -> ScanReport:
        now = self.clock()
        horizon = now + timedelta(days=self.settings.trial_warning_days)
        async with self.database.session() as session:
            result = await session.execute(
                select(User.id, User.free_trial_ends_at).where(
                    and_(
                        User.free_trial_ends_at >= now,
                        User.free_trial_ends_at <= horizon,
                        User.subscription_ref.is_(None),
                    )
                )
            )
            trials = list(result.all())

        def producer(user_id, ends_at) -> Producer:
            return lambda session: self.jobs.schedule_trial_expiration_check(
                session, user_id=user_id, expires_at=ends_at
            )

        return await self._produce_each(
            ScanReport(ScanName.TRIAL_EXPIRATIONS.value),
            [(str(user_id), producer(user_id, ends_at)) for user_id, ends_at in trials],
        )

    async def scan_analytics(self) -> ScanReport:
        yesterday = (self.clock() - timedelta(days=1)).date()
        return await self._produce_each(
            ScanReport(ScanName.ANALYTICS.value),
            [
                (
                    yesterday.isoformat(),
                    lambda session: self.jobs.queue_analytics_aggregation(
                        session, yesterday
                    ),
                )
            ],
        )

    async def scan_auto_posts(self) -> ScanReport:
        now = self.clock()
        window_end = now + timedelta(seconds=self.settings.auto_post_scan_window_s)
        async with self.database.session() as session:
            result = await session.execute(
                select(Idea).where(
                    and_(
                        Idea.status == IdeaStatus.SCHEDULED.value,
                        Idea.scheduled_at >= now,
                        Idea.scheduled_at <= window_end,
                    )
                )
            )
            ideas = list(result.scalars().all())

            targets: list[tuple[Idea, SocialConnection]] = []
            for idea in ideas:
                connections_result = await session.execute(
                    select(SocialConnection)
                    .where(
                        and_(
                            SocialConnection.user_id == idea.user_id,
                            SocialConnection.platform == idea.platform,
                            SocialConnection.is_active.is_(True),
                        )
                    )
                    .order_by(SocialConnection.created_at, SocialConnection.id)
                )
                connections = list(connections_result.scalars().all())
                if not connections:
                    logger.warning(
                        "No active connections for scheduled idea",
                        content_id=str(idea.id),
                        platform=idea.platform,
                    )
                    continue

                defaults = [c for c in connections if c.is_default]
                for connection in defaults or connections[:1]:
                    targets.append((idea, connection))

        def producer(idea: Idea, connection: SocialConnection) -> Producer:
            return lambda session: self.jobs.schedule_auto_post(
                session,
                user_id=idea.user_id,
                content_id=idea.id,
                connection_id=connection.id,
                scheduled_at=idea.scheduled_at,
            )

        return await self._produce_each(
            ScanReport(ScanName.AUTO_POSTS.value),
            [
                (f"{idea.id}:{connection.id}", producer(idea, connection))
                for idea, connection in targets
            ],
        )
