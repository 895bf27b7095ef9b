"""
Posting reminder processor.

Fires an in-app reminder (and an email when the user wants one) shortly
before a scheduled idea goes out. The idea is re-read at execution time: if
it was unscheduled or moved, the reminder completes without notifying.
"""

from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from planner.config.logging import get_logger
from planner.config.settings import Settings
from planner.v1.content.models import Idea, IdeaStatus, User
from planner.v1.jobs.collaborators import NotificationRenderer
from planner.v1.jobs.outcomes import FollowUp, JobOutcome
from planner.v1.jobs.types import EmailPayload, PostingReminderPayload

logger = get_logger(__name__)


class PostingReminderProcessor:
    def __init__(self, settings: Settings, notifications: NotificationRenderer):
        self.settings = settings
        self.notifications = notifications

    async def handle(
        self, session: AsyncSession, ctx, payload: PostingReminderPayload
    ) -> JobOutcome:
        idea = await session.get(Idea, payload.content_id)
        if (
            idea is None
            or idea.user_id != payload.user_id
            or idea.status != IdeaStatus.SCHEDULED.value
            or idea.scheduled_at is None
        ):
            logger.info("Idea not scheduled, skipping reminder", content_id=str(payload.content_id))
            return JobOutcome.skipped("idea_not_scheduled")

        lead = timedelta(minutes=self.settings.reminder_lead_minutes)
        time_until_post = idea.scheduled_at - ctx.now()

        if time_until_post <= timedelta(0):
            return JobOutcome.skipped("scheduled_time_passed")

        if time_until_post > lead:
            # Post was moved later; remind relative to the new time instead
            follow_up = FollowUp(
                payload=PostingReminderPayload(
                    user_id=payload.user_id,
                    content_id=payload.content_id,
                    scheduled_at=idea.scheduled_at,
                    platform=payload.platform,
                ),
                run_at=idea.scheduled_at - lead,
            )
            return JobOutcome.skipped("scheduled_time_moved", follow_ups=(follow_up,))

        await self.notifications.notify_in_app(
            payload.user_id,
            "Posting Reminder",
            f'Your content "{idea.title}" is scheduled to be posted on '
            f"{payload.platform} in less than {self.settings.reminder_lead_minutes} minutes.",
            {
                "ideaId": str(idea.id),
                "platform": payload.platform,
                "scheduledAt": idea.scheduled_at.isoformat(),
            },
        )

        email_queued = False
        user = await session.get(User, payload.user_id)
        if user is not None and user.email_notifications_enabled:
            await ctx.enqueue(
                EmailPayload(
                    recipient=user.email,
                    subject=f"Posting Reminder: {idea.title}",
                    template="posting-reminder",
                    data={
                        "userName": user.name or "User",
                        "ideaTitle": idea.title,
                        "platform": payload.platform,
                        "scheduledDate": idea.scheduled_at.isoformat(),
                    },
                )
            )
            email_queued = True

        logger.info(
            "Posting reminder sent",
            user_id=str(payload.user_id),
            content_id=str(idea.id),
            email_queued=email_queued,
        )
        return JobOutcome.completed({"notified": True, "emailQueued": email_queued})
