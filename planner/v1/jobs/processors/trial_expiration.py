"""
Trial expiration processor.

Warns users whose trial is about to end and downgrades them to FREE once it
has ended, unless the billing gateway reports an active subscription.
"""

import math
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from planner.config.logging import get_logger
from planner.config.settings import Settings
from planner.v1.content.models import Plan, User
from planner.v1.jobs.collaborators import BillingGateway
from planner.v1.jobs.outcomes import JobOutcome
from planner.v1.jobs.types import EmailPayload, TrialExpirationPayload

logger = get_logger(__name__)


class TrialExpirationProcessor:
    def __init__(self, settings: Settings, billing: BillingGateway):
        self.settings = settings
        self.billing = billing

    async def handle(
        self, session: AsyncSession, ctx, payload: TrialExpirationPayload
    ) -> JobOutcome:
        user = await session.get(User, payload.user_id)
        if user is None:
            return JobOutcome.discarded("user_not_found")

        if await self.billing.has_active_subscription(user.id, user.subscription_ref):
            return JobOutcome.skipped("active_subscription")

        ends_at = user.free_trial_ends_at
        if ends_at is None:
            return JobOutcome.skipped("no_trial")

        now = ctx.now()
        if ends_at <= now:
            if user.plan == Plan.FREE.value:
                return JobOutcome.skipped("already_free")

            # Enqueue precedes the plan write
            await ctx.enqueue(
                EmailPayload(
                    recipient=user.email,
                    subject="Trial Expired",
                    template="trial-expired",
                    data={"userId": str(user.id), "userName": user.name or "User"},
                )
            )
            user.plan = Plan.FREE.value
            logger.info("Trial expired, downgraded to FREE", user_id=str(user.id))
            return JobOutcome.completed({"downgraded": True})

        warning_window = timedelta(days=self.settings.trial_warning_days)
        if ends_at - now > warning_window:
            return JobOutcome.rescheduled(ends_at - warning_window, "before_warning_window")

        days_remaining = math.ceil((ends_at - now) / timedelta(days=1))
        await ctx.enqueue(
            EmailPayload(
                recipient=user.email,
                subject="Trial Expiring Soon",
                template="trial-expiring",
                data={
                    "userId": str(user.id),
                    "userName": user.name or "User",
                    "daysRemaining": days_remaining,
                },
            )
        )
        logger.info(
            "Sent trial expiration warning",
            user_id=str(user.id),
            days_remaining=days_remaining,
        )
        return JobOutcome.rescheduled(ends_at, "trial_warning_sent")
