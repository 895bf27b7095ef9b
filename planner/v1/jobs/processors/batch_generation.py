"""
Batch idea generation.

Requests are split into sub-batches; each sub-unit is one generation call run
under a semaphore, and each sub-batch is gathered with all-settle semantics so
a failing call is counted rather than aborting the batch. The job always
completes: succeeded + failed == requested.
"""

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession

from planner.config.logging import get_logger
from planner.config.settings import Settings
from planner.v1.content.models import User
from planner.v1.jobs.collaborators import ContentGenerationService, GenerationRequest
from planner.v1.jobs.outcomes import JobOutcome, OutcomeKind
from planner.v1.jobs.types import BatchGenerationPayload, EmailPayload

logger = get_logger(__name__)


class BatchGenerationProcessor:
    def __init__(self, settings: Settings, generator: ContentGenerationService):
        self.settings = settings
        self.generator = generator

    async def handle(
        self, session: AsyncSession, ctx, payload: BatchGenerationPayload
    ) -> JobOutcome:
        requested = payload.count
        user = await session.get(User, payload.user_id)
        if user is None:
            return JobOutcome(
                OutcomeKind.SKIPPED,
                reason="user_not_found",
                result={"requested": requested, "succeeded": 0, "failed": requested},
            )

        await ctx.report_progress(0)

        request = GenerationRequest(
            niche=payload.niche,
            platform=payload.platform,
            tone=payload.tone,
            language=payload.language,
            count=1,
        )
        semaphore = asyncio.Semaphore(self.settings.batch_generation_concurrency)

        async def generate_one() -> list[str]:
            async with semaphore:
                return await self.generator.generate_ideas(user.id, user.plan, request)

        succeeded = 0
        failed = 0
        idea_ids: list[str] = []
        batch_size = self.settings.batch_sub_batch_size

        for start in range(0, requested, batch_size):
            current = min(batch_size, requested - start)
            results = await asyncio.gather(
                *(generate_one() for _ in range(current)), return_exceptions=True
            )
            for result in results:
                if isinstance(result, BaseException):
                    failed += 1
                    logger.warning("Failed to generate idea", error=str(result))
                else:
                    succeeded += 1
                    idea_ids.extend(result)

            await ctx.report_progress((start + current) / requested * 100)

        summary_queued = True
        try:
            await ctx.enqueue(
                EmailPayload(
                    subject="Batch Generation Complete",
                    template="batch-generation-complete",
                    data={
                        "userId": str(payload.user_id),
                        "count": succeeded,
                        "totalRequested": requested,
                    },
                )
            )
        except Exception:
            summary_queued = False
            logger.exception("Failed to queue batch summary email")

        logger.info(
            "Completed batch generation",
            requested=requested,
            succeeded=succeeded,
            failed=failed,
        )
        return JobOutcome.completed(
            {
                "requested": requested,
                "succeeded": succeeded,
                "failed": failed,
                "ideaIds": idea_ids,
                "summaryQueued": summary_queued,
            }
        )
