"""
Background job endpoints: batch scans and evidence expiry sweeps.

A trigger creates the job in the job store and returns 202 straight away.
The work goes to the Celery ``compliance`` queue when a broker answers;
otherwise (local development, eager Celery in tests) it runs in-process
through FastAPI ``BackgroundTasks`` with the same runner. Either way the
runner reports progress to the job store, so ``GET /jobs/{id}`` shows live
state.
"""

from collections.abc import Awaitable, Callable
from typing import Any
from uuid import UUID

from celery import Task
from celery.exceptions import CeleryError
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from kombu.exceptions import KombuError

from pfas_compliance.api.deps import get_request_context
from pfas_compliance.core.config import settings
from pfas_compliance.core.context import RequestContext
from pfas_compliance.core.logging import get_logger
from pfas_compliance.db.base import utcnow
from pfas_compliance.schemas import (
    BatchScanJobRequest,
    JobCreateResponse,
    JobResponse,
    JobStatus,
    JobSummary,
    JobType,
    PaginatedResponse,
)
from pfas_compliance.workers.celery_app import celery_app
from pfas_compliance.workers.job_store import create_job, get_job, list_jobs, update_job
from pfas_compliance.workers.tasks import (
    batch_scan_task,
    expire_evidence_task,
    run_batch_scan,
    run_evidence_expiry,
)

logger = get_logger(__name__)

router = APIRouter()

# Broker connection and publish failures
DISPATCH_ERRORS = (CeleryError, KombuError, OSError)


def _celery_available() -> bool:
    if settings.celery_task_always_eager:
        return False
    try:
        with celery_app.connection() as conn:
            conn.ensure_connection(max_retries=1, timeout=2)
    except DISPATCH_ERRORS as e:
        logger.debug("Celery broker unreachable", error=str(e))
        return False
    return True


async def _fallback_batch_scan(
    job_id: UUID,
    ctx: RequestContext,
    entity_type: str,
    entity_ids: list[str],
    db_url: str,
) -> None:
    """In-process batch scan. The runner records failures on the job."""
    try:
        await run_batch_scan(job_id, ctx, entity_type, entity_ids, db_url=db_url)
    except Exception as e:
        logger.error("Fallback batch scan failed", job_id=str(job_id), error=str(e))


async def _fallback_evidence_expiry(job_id: UUID, tenant_id: str, db_url: str) -> None:
    """In-process evidence expiry. The runner records failures on the job."""
    try:
        await run_evidence_expiry(job_id, tenant_id, db_url=db_url)
    except Exception as e:
        logger.error("Fallback evidence expiry failed", job_id=str(job_id), error=str(e))


def _start(
    job: dict,
    task: Task,
    task_kwargs: dict[str, Any],
    background_tasks: BackgroundTasks,
    fallback: Callable[..., Awaitable[None]],
    *fallback_args: Any,
) -> JobCreateResponse:
    """Queue `task` on Celery, or schedule `fallback` in-process when no broker answers."""
    job_id = job["id"]
    where = "started (in-process fallback)"

    queued = False
    if _celery_available():
        try:
            task.apply_async(kwargs={"job_id_str": str(job_id), **task_kwargs}, task_id=str(job_id))
            queued = True
        except DISPATCH_ERRORS as e:
            logger.warning("Failed to dispatch to Celery", task=task.name, job_id=str(job_id), error=str(e))

    if queued:
        where = "queued for Celery worker"
    else:
        background_tasks.add_task(fallback, job_id, *fallback_args, settings.db_url)

    logger.info("Job started", job_id=str(job_id), job_type=job["job_type"].value, queued=queued)
    return JobCreateResponse(
        id=job_id,
        job_type=job["job_type"],
        status=JobStatus.PENDING,
        message=f"{job['job_type'].value} job {where}. Use GET /jobs/{{id}} to check status.",
    )


def _tenant_job(job_id: UUID, ctx: RequestContext) -> dict:
    job = get_job(job_id, tenant_id=ctx.tenant_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job {job_id} not found")
    return job


@router.post(
    "/batch-scan",
    response_model=JobCreateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Trigger a batch scan job",
    description="Run the assessment pipeline for every listed entity of one object type.",
)
async def trigger_batch_scan(
    request: BatchScanJobRequest,
    background_tasks: BackgroundTasks,
    ctx: RequestContext = Depends(get_request_context),
) -> JobCreateResponse:
    job = create_job(JobType.BATCH_SCAN, ctx.tenant_id)
    return _start(
        job,
        batch_scan_task,
        {"context": ctx.to_dict(), "entity_type": request.entity_type, "entity_ids": request.entity_ids},
        background_tasks,
        _fallback_batch_scan,
        ctx,
        request.entity_type,
        request.entity_ids,
    )


@router.post(
    "/evidence-expiry",
    response_model=JobCreateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Trigger an evidence expiry sweep",
    description="Expire lapsed evidence for the caller's tenant and reassess the affected objects.",
)
async def trigger_evidence_expiry(
    background_tasks: BackgroundTasks,
    ctx: RequestContext = Depends(get_request_context),
) -> JobCreateResponse:
    job = create_job(JobType.EVIDENCE_EXPIRY, ctx.tenant_id)
    return _start(
        job,
        expire_evidence_task,
        {"tenant_id": ctx.tenant_id},
        background_tasks,
        _fallback_evidence_expiry,
        ctx.tenant_id,
    )


@router.get("", response_model=PaginatedResponse[JobSummary], summary="List the tenant's jobs")
async def list_jobs_endpoint(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    status_filter: JobStatus | None = Query(default=None, description="Filter by status"),
    ctx: RequestContext = Depends(get_request_context),
) -> PaginatedResponse[JobSummary]:
    jobs_page, total = list_jobs(
        ctx.tenant_id,
        status_filter=status_filter,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    return PaginatedResponse.create(
        items=[JobSummary.model_validate(job) for job in jobs_page],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{job_id}", response_model=JobResponse, summary="Get job status and progress")
async def get_job_status(job_id: UUID, ctx: RequestContext = Depends(get_request_context)) -> JobResponse:
    return JobResponse.model_validate(_tenant_job(job_id, ctx))


@router.post(
    "/{job_id}/cancel",
    response_model=JobResponse,
    summary="Cancel a job",
    description="Cancel a pending or running job. A running scan stops after the current entity.",
)
async def cancel_job(job_id: UUID, ctx: RequestContext = Depends(get_request_context)) -> JobResponse:
    job = _tenant_job(job_id, ctx)
    if job["status"].is_terminal:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Job {job_id} is already {job['status'].value}",
        )

    if _celery_available():
        try:
            celery_app.control.revoke(str(job_id))
        except DISPATCH_ERRORS as e:
            logger.warning("Failed to revoke Celery task", job_id=str(job_id), error=str(e))

    logger.info("Job cancelled", job_id=str(job_id))
    return JobResponse.model_validate(update_job(job_id, status=JobStatus.CANCELLED, completed_at=utcnow()))
