"""
External collaborators consumed by job processors.

Each collaborator is a Protocol; the concrete implementation is selected by
settings. Only stub backends ship here: they log what they would do and
return deterministic values, which is enough for local runs and tests.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID, uuid4

from planner.config.logging import get_logger
from planner.config.settings import CollaboratorBackend, Settings

logger = get_logger(__name__)


@dataclass(frozen=True)
class GenerationRequest:
    niche: str
    platform: str
    tone: str = "PROFESSIONAL"
    language: str = "en"
    count: int = 1


@dataclass(frozen=True)
class PublishRequest:
    caption: str
    hashtags: list[str] = field(default_factory=list)


class ContentGenerationService(Protocol):
    async def generate_ideas(
        self, user_id: UUID, plan: str, request: GenerationRequest
    ) -> list[str]:
        """Generate and persist ideas; returns the ids of the created ideas."""
        ...


class BillingGateway(Protocol):
    async def has_active_subscription(
        self, user_id: UUID, subscription_ref: str | None
    ) -> bool:
        ...


class NotificationRenderer(Protocol):
    async def send_email(
        self, recipient: str, subject: str, template: str, data: dict[str, Any]
    ) -> None:
        ...

    async def notify_in_app(
        self,
        user_id: UUID,
        title: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        ...


class SocialPublisher(Protocol):
    async def publish(
        self,
        user_id: UUID,
        content_id: UUID,
        connection_id: UUID,
        content: PublishRequest,
        idempotency_key: str,
    ) -> str:
        """Publish content; returns the platform's post id.

        Publishing twice with the same idempotency key must not create two posts.
        """
        ...


class StubContentGenerator:
    async def generate_ideas(
        self, user_id: UUID, plan: str, request: GenerationRequest
    ) -> list[str]:
        idea_ids = [str(uuid4()) for _ in range(request.count)]
        logger.info(
            "Stub generated ideas",
            user_id=str(user_id),
            plan=plan,
            niche=request.niche,
            platform=request.platform,
            count=request.count,
        )
        return idea_ids


class StubBillingGateway:
    async def has_active_subscription(
        self, user_id: UUID, subscription_ref: str | None
    ) -> bool:
        return bool(subscription_ref)


class StubNotificationRenderer:
    async def send_email(
        self, recipient: str, subject: str, template: str, data: dict[str, Any]
    ) -> None:
        logger.info(
            "Stub email sent", recipient=recipient, subject=subject, template=template
        )

    async def notify_in_app(
        self,
        user_id: UUID,
        title: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        logger.info("Stub in-app notification", user_id=str(user_id), title=title)


class StubSocialPublisher:
    async def publish(
        self,
        user_id: UUID,
        content_id: UUID,
        connection_id: UUID,
        content: PublishRequest,
        idempotency_key: str,
    ) -> str:
        logger.info(
            "Stub post published",
            user_id=str(user_id),
            content_id=str(content_id),
            connection_id=str(connection_id),
            idempotency_key=idempotency_key,
        )
        return f"stub-post:{content_id}"


@dataclass
class Collaborators:
    content_generator: ContentGenerationService
    billing: BillingGateway
    notifications: NotificationRenderer
    publisher: SocialPublisher


def build_collaborators(settings: Settings) -> Collaborators:
    """Instantiate the collaborator backends named in settings."""
    backends = {
        "content_generator": settings.content_generator,
        "billing_gateway": settings.billing_gateway,
        "notification_renderer": settings.notification_renderer,
        "social_publisher": settings.social_publisher,
    }
    for name, backend in backends.items():
        if backend != CollaboratorBackend.STUB:
            raise ValueError(f"Unsupported {name} backend: {backend}")

    return Collaborators(
        content_generator=StubContentGenerator(),
        billing=StubBillingGateway(),
        notifications=StubNotificationRenderer(),
        publisher=StubSocialPublisher(),
    )
