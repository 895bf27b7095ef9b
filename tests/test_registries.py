from uuid import uuid4

import pytest

from planner.v1.core.registries import JobRegistry, Registry, job_registry
from planner.v1.jobs.collaborators import (
    GenerationRequest,
    StubBillingGateway,
    StubContentGenerator,
    StubNotificationRenderer,
    StubSocialPublisher,
    build_collaborators,
)
from planner.v1.jobs.processors import (
    AnalyticsAggregationProcessor,
    AutoPostProcessor,
    BatchGenerationProcessor,
    EmailProcessor,
    PostingReminderProcessor,
    QuotaResetProcessor,
    TrialExpirationProcessor,
)
from planner.v1.jobs.registry_init import build_processor, register_job_processors
from planner.v1.jobs.types import JobType


def test_registry_basic_operations():
    """Test basic registry register, get, list operations."""
    registry = Registry[str]("Test")

    assert registry.list() == []

    registry.register("test_impl", "test_value")
    assert registry.get("test_impl") == "test_value"
    assert registry.list() == ["test_impl"]

    with pytest.raises(KeyError, match="No test implementation registered"):
        registry.get("nonexistent")


def test_registry_freeze():
    registry = Registry[str]("Test")
    registry.register("impl1", "value1")
    registry.freeze()

    assert registry.is_frozen()
    with pytest.raises(RuntimeError, match="registry is frozen"):
        registry.register("impl2", "value2")
    with pytest.raises(RuntimeError, match="Cannot clear frozen"):
        registry.clear()
    assert registry.get("impl1") == "value1"


def test_global_job_registry_is_job_registry():
    assert isinstance(job_registry, JobRegistry)
    assert job_registry.name == "Job"


def test_register_job_processors_covers_every_job_type(settings, collaborators):
    registry = register_job_processors(settings, collaborators, registry=JobRegistry())

    assert set(registry.list()) == {job_type.value for job_type in JobType}

    expected = {
        JobType.POSTING_REMINDER: PostingReminderProcessor,
        JobType.QUOTA_RESET: QuotaResetProcessor,
        JobType.BATCH_GENERATION: BatchGenerationProcessor,
        JobType.ANALYTICS_AGGREGATION: AnalyticsAggregationProcessor,
        JobType.EMAIL: EmailProcessor,
        JobType.TRIAL_EXPIRATION: TrialExpirationProcessor,
        JobType.AUTO_POST: AutoPostProcessor,
    }
    for job_type, processor_class in expected.items():
        assert isinstance(registry.get(job_type.value), processor_class)


def test_register_job_processors_replaces_previous_wiring(settings, collaborators):
    registry = JobRegistry()
    registry.register("obsolete", object())

    register_job_processors(settings, collaborators, registry=registry)

    assert "obsolete" not in registry.list()


def test_register_job_processors_refuses_frozen_registry(settings, collaborators):
    registry = JobRegistry()
    registry.freeze()

    with pytest.raises(RuntimeError):
        register_job_processors(settings, collaborators, registry=registry)


def test_build_processor_wires_collaborators(settings, collaborators):
    processor = build_processor(JobType.AUTO_POST, settings, collaborators)

    assert processor.publisher is collaborators.publisher
    assert processor.notifications is collaborators.notifications


def test_build_collaborators_defaults_to_stubs(settings):
    collaborators = build_collaborators(settings)

    assert isinstance(collaborators.content_generator, StubContentGenerator)
    assert isinstance(collaborators.billing, StubBillingGateway)
    assert isinstance(collaborators.notifications, StubNotificationRenderer)
    assert isinstance(collaborators.publisher, StubSocialPublisher)


def test_build_collaborators_rejects_unknown_backend(settings):
    with pytest.raises(ValueError, match="Unsupported billing_gateway backend"):
        build_collaborators(settings.model_copy(update={"billing_gateway": "smtp"}))


@pytest.mark.asyncio
async def test_stub_collaborators_are_deterministic():
    user_id = uuid4()

    ideas = await StubContentGenerator().generate_ideas(
        user_id, "FREE", GenerationRequest(niche="fitness", platform="instagram", count=3)
    )
    assert len(ideas) == 3

    billing = StubBillingGateway()
    assert await billing.has_active_subscription(user_id, "sub_123") is True
    assert await billing.has_active_subscription(user_id, None) is False
