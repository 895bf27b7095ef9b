"""Daily AI generation quota reset for FREE users (recurring)."""

from sqlalchemy.ext.asyncio import AsyncSession

from planner.config.logging import get_logger
from planner.v1.content.models import Plan, User
from planner.v1.jobs.collaborators import BillingGateway
from planner.v1.jobs.outcomes import JobOutcome
from planner.v1.jobs.types import QuotaResetPayload

logger = get_logger(__name__)


class QuotaResetProcessor:
    def __init__(self, billing: BillingGateway):
        self.billing = billing

    async def handle(
        self, session: AsyncSession, ctx, payload: QuotaResetPayload
    ) -> JobOutcome:
        user = await session.get(User, payload.user_id)
        if user is None:
            return JobOutcome.discarded("user_not_found", stop_repeat=True)

        if user.plan != Plan.FREE.value and await self.billing.has_active_subscription(
            user.id, user.subscription_ref
        ):
            # Re-registered by the daily scan if the user returns to FREE
            logger.info("User upgraded, stopping quota resets", user_id=str(user.id))
            return JobOutcome.skipped("user_upgraded", stop_repeat=True)

        previous = user.daily_ai_generations
        user.daily_ai_generations = 0
        user.last_generation_reset = ctx.now()

        logger.info("Reset quota", user_id=str(user.id), previous_count=previous)
        return JobOutcome.completed({"previousCount": previous})
