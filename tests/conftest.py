from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from planner.config.settings import Settings
from planner.infra.database import Database, get_database
from planner.main import create_app
from planner.v1.content.models import Idea, IdeaStatus, Plan, SocialConnection, User
from planner.v1.core.registries import JobRegistry
from planner.v1.jobs.collaborators import Collaborators, GenerationRequest, PublishRequest
from planner.v1.jobs.errors import TransientExternalError
from planner.v1.jobs.models import Job, JobStatus
from planner.v1.jobs.registry_init import register_job_processors
from planner.v1.jobs.service import JobService
from planner.v1.jobs.worker import JobWorker

START = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return now


class RecordingNotifications:
    def __init__(self):
        self.emails: list[dict[str, Any]] = []
        self.in_app: list[dict[str, Any]] = []

    async def send_email(
        self, recipient: str, subject: str, template: str, data: dict[str, Any]
    ) -> None:
        self.emails.append(
            {"recipient": recipient, "subject": subject, "template": template, "data": data}
        )

    async def notify_in_app(
        self,
        user_id: UUID,
        title: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.in_app.append(
            {"user_id": user_id, "title": title, "message": message, "metadata": metadata}
        )


class FakeBilling:
    def __init__(self):
        self.active: set[UUID] = set()

    async def has_active_subscription(
        self, user_id: UUID, subscription_ref: str | None
    ) -> bool:
        return user_id in self.active


class FakeGenerator:
    """Generates one idea id per call; calls listed in ``fail_calls`` raise."""

    def __init__(self):
        self.calls = 0
        self.fail_calls: set[int] = set()
        self.fail_all = False

    async def generate_ideas(
        self, user_id: UUID, plan: str, request: GenerationRequest
    ) -> list[str]:
        self.calls += 1
        if self.fail_all or self.calls in self.fail_calls:
            raise TransientExternalError(f"generation call {self.calls} failed")
        return [str(uuid4()) for _ in range(request.count)]


class RecordingPublisher:
    def __init__(self):
        self.calls: list[dict[str, Any]] = []
        self.error: Exception | None = None

    async def publish(
        self,
        user_id: UUID,
        content_id: UUID,
        connection_id: UUID,
        content: PublishRequest,
        idempotency_key: str,
    ) -> str:
        self.calls.append(
            {
                "user_id": user_id,
                "content_id": content_id,
                "connection_id": connection_id,
                "content": content,
                "idempotency_key": idempotency_key,
            }
        )
        if self.error is not None:
            raise self.error
        return f"post-{len(self.calls)}"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'planner.db'}",
        job_concurrency=4,
    )


@pytest.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    database = Database(settings)
    await database.create_all()
    yield database
    await database.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture
def billing() -> FakeBilling:
    return FakeBilling()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def collaborators(notifications, billing, generator, publisher) -> Collaborators:
    return Collaborators(
        content_generator=generator,
        billing=billing,
        notifications=notifications,
        publisher=publisher,
    )


@pytest.fixture
def registry(settings, collaborators) -> JobRegistry:
    return register_job_processors(settings, collaborators, registry=JobRegistry())


@pytest.fixture
def service(settings, clock) -> JobService:
    return JobService(settings, clock=clock)


@pytest.fixture
def worker(settings, database, registry, clock) -> JobWorker:
    return JobWorker(settings, database, registry=registry, clock=clock)


@pytest.fixture
def add(database):
    """Persist entities and return the first one."""

    async def _add(*entities):
        async with database.session() as session:
            session.add_all(entities)
            await session.commit()
        return entities[0]

    return _add


@pytest.fixture
def make_user(add, clock):
    async def _make_user(**overrides) -> User:
        values = {
            "id": uuid4(),
            "email": f"{uuid4().hex[:8]}@example.com",
            "name": "Casey",
            "plan": Plan.FREE.value,
            "created_at": clock(),
        }
        values.update(overrides)
        return await add(User(**values))

    return _make_user


@pytest.fixture
def make_idea(add, clock):
    async def _make_idea(user: User, **overrides) -> Idea:
        values = {
            "id": uuid4(),
            "user_id": user.id,
            "title": "Morning routine",
            "caption": "Five habits that stuck",
            "hashtags": ["habits"],
            "platform": "instagram",
            "niche": "fitness",
            "status": IdeaStatus.SCHEDULED.value,
            "scheduled_at": clock() + timedelta(minutes=30),
            "created_at": clock(),
        }
        values.update(overrides)
        return await add(Idea(**values))

    return _make_idea


@pytest.fixture
def make_connection(add, clock):
    async def _make_connection(user: User, **overrides) -> SocialConnection:
        values = {
            "id": uuid4(),
            "user_id": user.id,
            "platform": "instagram",
            "is_active": True,
            "is_default": False,
            "created_at": clock(),
        }
        values.update(overrides)
        return await add(SocialConnection(**values))

    return _make_connection


@pytest.fixture
def make_job(add, clock):
    """Insert a job row directly, bypassing enqueue."""

    async def _make_job(**overrides) -> Job:
        values = {
            "id": uuid4(),
            "queue_name": "email",
            "job_type": "email",
            "payload": {"recipient": "a@example.com", "subject": "Hi", "template": "welcome"},
            "status": JobStatus.WAITING.value,
            "run_at": clock(),
            "attempts": 0,
            "max_attempts": 3,
            "created_at": clock(),
            "updated_at": clock(),
        }
        values.update(overrides)
        return await add(Job(**values))

    return _make_job


@pytest.fixture
def fetch(database):
    """Reload one entity by primary key in a fresh session."""

    async def _fetch(model, key):
        async with database.session() as session:
            return await session.get(model, key)

    return _fetch


@pytest.fixture
def fetch_jobs(database):
    """All jobs, optionally filtered by job type, oldest first."""

    async def _fetch_jobs(job_type: str | None = None) -> list[Job]:
        query = select(Job).order_by(Job.created_at, Job.run_at)
        if job_type:
            query = query.where(Job.job_type == job_type)
        async with database.session() as session:
            return list((await session.execute(query)).scalars().all())

    return _fetch_jobs


@pytest.fixture
def app(database):
    """FastAPI application bound to the test database."""
    app = create_app()
    app.dependency_overrides[get_database] = lambda: database
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
