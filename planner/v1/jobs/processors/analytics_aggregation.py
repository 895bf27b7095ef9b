"""Daily analytics aggregation; upserts one daily_analytics row per UTC day."""

from datetime import UTC, datetime, time, timedelta

from sqlalchemy import and_, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from planner.config.logging import get_logger
from planner.v1.content.models import DailyAnalytics, Idea, User
from planner.v1.jobs.outcomes import JobOutcome
from planner.v1.jobs.types import AnalyticsAggregationPayload

logger = get_logger(__name__)


class AnalyticsAggregationProcessor:
    async def handle(
        self, session: AsyncSession, ctx, payload: AnalyticsAggregationPayload
    ) -> JobOutcome:
        day = payload.target_date
        start = datetime.combine(day, time.min, tzinfo=UTC)
        end = start + timedelta(days=1)
        in_day = and_(Idea.created_at >= start, Idea.created_at < end)

        total_ideas = (
            await session.execute(select(func.count(Idea.id)).where(in_day))
        ).scalar() or 0
        total_users = (await session.execute(select(func.count(User.id)))).scalar() or 0
        active_users = (
            await session.execute(select(func.count(distinct(Idea.user_id))).where(in_day))
        ).scalar() or 0

        by_platform = await session.execute(
            select(Idea.platform, func.count(Idea.id)).where(in_day).group_by(Idea.platform)
        )
        ideas_by_platform = {platform: count for platform, count in by_platform.all()}

        by_niche = await session.execute(
            select(Idea.niche, func.count(Idea.id))
            .where(and_(in_day, Idea.niche.is_not(None)))
            .group_by(Idea.niche)
        )
        ideas_by_niche = {niche: count for niche, count in by_niche.all()}

        row = await session.get(DailyAnalytics, day)
        if row is None:
            row = DailyAnalytics(day=day)
            session.add(row)
        row.total_ideas = total_ideas
        row.total_users = total_users
        row.active_users = active_users
        row.ideas_by_platform = ideas_by_platform
        row.ideas_by_niche = ideas_by_niche
        row.computed_at = ctx.now()

        logger.info(
            "Analytics aggregated",
            date=day.isoformat(),
            total_ideas=total_ideas,
            total_users=total_users,
            active_users=active_users,
        )
        return JobOutcome.completed(
            {
                "date": day.isoformat(),
                "totalIdeas": total_ideas,
                "totalUsers": total_users,
                "activeUsers": active_users,
                "ideasByPlatform": ideas_by_platform,
                "ideasByNiche": ideas_by_niche,
            }
        )
