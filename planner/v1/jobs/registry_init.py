"""
Job processor registration.

Registers one processor per JobType with the global job registry.
"""

from typing import assert_never

from planner.config.logging import get_logger
from planner.config.settings import Settings
from planner.v1.core.registries import JobProcessor, JobRegistry, job_registry
from planner.v1.jobs.collaborators import Collaborators, build_collaborators
from planner.v1.jobs.processors import (
    AnalyticsAggregationProcessor,
    AutoPostProcessor,
    BatchGenerationProcessor,
    EmailProcessor,
    PostingReminderProcessor,
    QuotaResetProcessor,
    TrialExpirationProcessor,
)
from planner.v1.jobs.types import JobType

logger = get_logger(__name__)


def build_processor(
    job_type: JobType, settings: Settings, collaborators: Collaborators
) -> JobProcessor:
    """Processor for one job type; type checkers flag any JobType left unhandled."""
    if job_type is JobType.POSTING_REMINDER:
        return PostingReminderProcessor(settings, collaborators.notifications)
    elif job_type is JobType.QUOTA_RESET:
        return QuotaResetProcessor(collaborators.billing)
    elif job_type is JobType.BATCH_GENERATION:
        return BatchGenerationProcessor(settings, collaborators.content_generator)
    elif job_type is JobType.ANALYTICS_AGGREGATION:
        return AnalyticsAggregationProcessor()
    elif job_type is JobType.EMAIL:
        return EmailProcessor(collaborators.notifications)
    elif job_type is JobType.TRIAL_EXPIRATION:
        return TrialExpirationProcessor(settings, collaborators.billing)
    elif job_type is JobType.AUTO_POST:
        return AutoPostProcessor(
            settings, collaborators.publisher, collaborators.notifications
        )
    else:
        assert_never(job_type)


def register_job_processors(
    settings: Settings,
    collaborators: Collaborators | None = None,
    registry: JobRegistry = job_registry,
) -> JobRegistry:
    """Register a processor for every job type with the job registry."""
    collaborators = collaborators or build_collaborators(settings)

    logger.info("Registering job processors")
    registry.clear()
    for job_type in JobType:
        registry.register(job_type.value, build_processor(job_type, settings, collaborators))

    missing = {t.value for t in JobType} - set(registry.list())
    if missing:
        raise RuntimeError(f"No processor registered for job types: {sorted(missing)}")

    logger.info("Job processors registered", registered_processors=registry.list())
    return registry
