"""Outbound email delivery."""

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from planner.config.logging import get_logger
from planner.v1.content.models import User
from planner.v1.jobs.collaborators import NotificationRenderer
from planner.v1.jobs.errors import PermanentValidationError
from planner.v1.jobs.outcomes import JobOutcome
from planner.v1.jobs.types import EmailPayload

logger = get_logger(__name__)


class EmailProcessor:
    def __init__(self, notifications: NotificationRenderer):
        self.notifications = notifications

    async def handle(
        self, session: AsyncSession, ctx, payload: EmailPayload
    ) -> JobOutcome:
        recipient = payload.recipient
        user_ref = payload.data.get("userId")
        if not recipient and user_ref:
            try:
                user_id = UUID(str(user_ref))
            except ValueError:
                raise PermanentValidationError(f"Invalid userId: {user_ref}")
            user = await session.get(User, user_id)
            if user is not None:
                recipient = user.email

        if not recipient:
            raise PermanentValidationError(
                "No email address provided", details={"template": payload.template}
            )

        await self.notifications.send_email(
            recipient, payload.subject, payload.template, payload.data
        )
        logger.info("Email sent", template=payload.template)
        return JobOutcome.completed({"sent": True, "recipient": recipient})
