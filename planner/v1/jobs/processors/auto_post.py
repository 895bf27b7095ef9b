"""
Auto-post processor.

Publishes a scheduled idea through the social publisher. The job's
idempotency key is handed to the publisher so a retried attempt cannot post
twice, and the idea is only marked POSTED if it is not already.
"""

from datetime import timedelta

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from planner.config.logging import get_logger
from planner.config.settings import Settings
from planner.v1.content.models import Idea, IdeaStatus, SocialConnection
from planner.v1.jobs.collaborators import (
    NotificationRenderer,
    PublishRequest,
    SocialPublisher,
)
from planner.v1.jobs.errors import ExhaustedRetriesError, PermanentValidationError
from planner.v1.jobs.outcomes import JobOutcome
from planner.v1.jobs.types import AutoPostPayload

logger = get_logger(__name__)


class AutoPostProcessor:
    def __init__(
        self,
        settings: Settings,
        publisher: SocialPublisher,
        notifications: NotificationRenderer,
    ):
        self.settings = settings
        self.publisher = publisher
        self.notifications = notifications

    async def handle(
        self, session: AsyncSession, ctx, payload: AutoPostPayload
    ) -> JobOutcome:
        result = await session.execute(
            select(Idea).where(
                and_(Idea.id == payload.content_id, Idea.user_id == payload.user_id)
            )
        )
        idea = result.scalar_one_or_none()
        if idea is None:
            raise PermanentValidationError(f"Idea {payload.content_id} not found")

        if idea.status == IdeaStatus.POSTED.value:
            return JobOutcome.skipped("already_posted")
        if idea.status != IdeaStatus.SCHEDULED.value:
            return JobOutcome.skipped("not_scheduled")

        connection = await session.get(SocialConnection, payload.connection_id)
        if (
            connection is None
            or connection.user_id != payload.user_id
            or not connection.is_active
        ):
            return JobOutcome.skipped("connection_unavailable")

        now = ctx.now()
        scheduled_at = idea.scheduled_at or payload.scheduled_at
        tolerance = timedelta(seconds=self.settings.auto_post_early_tolerance_s)
        if scheduled_at - now > tolerance:
            logger.info(
                "Idea scheduled for future, rescheduling",
                content_id=str(idea.id),
                scheduled_at=scheduled_at.isoformat(),
            )
            return JobOutcome.rescheduled(
                scheduled_at,
                "scheduled_for_future",
                payload=payload.model_copy(update={"scheduled_at": scheduled_at}),
            )

        post_id = await self.publisher.publish(
            payload.user_id,
            idea.id,
            connection.id,
            PublishRequest(caption=idea.caption or idea.title, hashtags=list(idea.hashtags or [])),
            idempotency_key=ctx.idempotency_key or payload.idempotency_key(),
        )

        if idea.status != IdeaStatus.POSTED.value:
            idea.status = IdeaStatus.POSTED.value
            idea.posted_at = now

        logger.info(
            "Auto-posted idea",
            content_id=str(idea.id),
            platform=connection.platform,
            post_id=post_id,
        )
        return JobOutcome.completed({"postId": post_id, "platform": connection.platform})

    async def on_exhausted(
        self, ctx, payload: AutoPostPayload, error: ExhaustedRetriesError
    ) -> None:
        await self.notifications.notify_in_app(
            payload.user_id,
            "Auto-Post Failed",
            f"Failed to automatically post your content. Error: {error.last_error}",
            {"ideaId": str(payload.content_id), "error": error.last_error},
        )
