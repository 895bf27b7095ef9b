"""One processor per job type."""

from planner.v1.jobs.processors.analytics_aggregation import AnalyticsAggregationProcessor
from planner.v1.jobs.processors.auto_post import AutoPostProcessor
from planner.v1.jobs.processors.batch_generation import BatchGenerationProcessor
from planner.v1.jobs.processors.email import EmailProcessor
from planner.v1.jobs.processors.posting_reminder import PostingReminderProcessor
from planner.v1.jobs.processors.quota_reset import QuotaResetProcessor
from planner.v1.jobs.processors.trial_expiration import TrialExpirationProcessor

__all__ = [
    "AnalyticsAggregationProcessor",
    "AutoPostProcessor",
    "BatchGenerationProcessor",
    "EmailProcessor",
    "PostingReminderProcessor",
    "QuotaResetProcessor",
    "TrialExpirationProcessor",
]
