"""
Job API endpoints.

Producer endpoint for batch generation plus operator endpoints for queue
introspection, dead-letter retry and cancellation.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from planner.config.logging import get_logger
from planner.config.settings import Settings, SettingsDep
from planner.infra.database import get_session
from planner.v1.core.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
    create_success_response,
    current_request_id,
)
from planner.v1.core.security import OperatorDep, Principal, PrincipalDep
from planner.v1.jobs.models import JobStatus
from planner.v1.jobs.schemas import (
    BatchGenerationRequest,
    JobActionResponse,
    JobListResponse,
    JobResponse,
    QueueStatsResponse,
)
from planner.v1.jobs.service import JobService
from planner.v1.jobs.types import QueueName

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_service(settings: Settings = SettingsDep) -> JobService:
    return JobService(settings)


JobServiceDep = Depends(get_job_service)


@router.post("/batch-generation", response_model=dict)
async def queue_batch_generation(
    request: BatchGenerationRequest,
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = JobServiceDep,
) -> dict[str, Any]:
    """Queue a batch idea generation for the calling user."""
    try:
        result = await job_service.queue_batch_generation(
            session,
            user_id=principal.user_uuid,
            count=request.count,
            niche=request.niche,
            platform=request.platform,
            tone=request.tone,
            language=request.language,
            request_id=current_request_id(),
        )
    except ValueError as e:
        raise ValidationError(str(e), details={"count": request.count})

    logger.info(
        "Batch generation queued via API",
        job_id=str(result.job_id),
        user_id=principal.user_id,
        count=request.count,
    )
    return create_success_response(data=result.model_dump(mode="json"))


@router.get("/stats", response_model=dict)
async def get_queue_stats(
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = JobServiceDep,
) -> dict[str, Any]:
    """Per-queue, per-status job counts."""
    counts = await job_service.get_all_counts(session)
    stats = QueueStatsResponse(queues=counts)
    return create_success_response(data=stats.model_dump(mode="json")["queues"])


@router.get("", response_model=dict)
async def list_jobs(
    queue: QueueName | None = Query(default=None, description="Filter by queue"),
    status: list[JobStatus] | None = Query(
        default=None, description="Filter by status"
    ),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = JobServiceDep,
) -> dict[str, Any]:
    """List jobs with filtering and pagination."""
    jobs, total = await job_service.list_jobs(
        session, queue=queue, statuses=status, limit=limit, offset=offset
    )
    response_data = JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )
    return create_success_response(data=response_data.model_dump(mode="json"))


@router.delete("/pending/{idempotency_key}", response_model=dict)
async def cancel_pending_job(
    idempotency_key: str,
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = JobServiceDep,
) -> dict[str, Any]:
    """Cancel the waiting or delayed job holding an idempotency key."""
    success = await job_service.cancel(session, idempotency_key)
    if not success:
        raise NotFoundError(
            "No waiting or delayed job holds this key",
            details={"idempotency_key": idempotency_key},
        )

    logger.info(
        "Job cancelled via API",
        idempotency_key=idempotency_key,
        user_id=principal.user_id,
    )
    response = JobActionResponse(success=True, idempotency_key=idempotency_key)
    return create_success_response(data=response.model_dump(mode="json"))


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = JobServiceDep,
) -> dict[str, Any]:
    """Get a job by ID; visible to its requester and to operators."""
    job = await job_service.get_job(session, job_id)
    if not job or (
        not principal.is_operator and job.requested_by_user_id != principal.user_uuid
    ):
        raise NotFoundError("Job not found", details={"job_id": str(job_id)})

    job_data = JobResponse.model_validate(job)
    return create_success_response(data=job_data.model_dump(mode="json"))


@router.post("/{job_id}/retry", response_model=dict)
async def retry_job(
    job_id: UUID,
    principal: Principal = OperatorDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = JobServiceDep,
) -> dict[str, Any]:
    """Move a dead-lettered job back to waiting."""
    job = await job_service.get_job(session, job_id)
    if not job:
        raise NotFoundError("Job not found", details={"job_id": str(job_id)})
    if job.status != JobStatus.FAILED.value:
        raise ConflictError(
            "Only failed jobs can be retried",
            details={"job_id": str(job_id), "status": job.status},
        )

    # A refused retry rolls the session back and expires the loaded row
    idempotency_key = job.idempotency_key
    success = await job_service.retry_job(session, job_id)
    if not success:
        raise ConflictError(
            "Another pending job holds this job's idempotency key",
            details={"job_id": str(job_id), "idempotency_key": idempotency_key},
        )

    logger.info("Job retried via API", job_id=str(job_id), user_id=principal.user_id)
    response = JobActionResponse(success=True, job_id=job_id)
    return create_success_response(data=response.model_dump(mode="json"))
