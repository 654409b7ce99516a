"""
Celery tasks for the compliance pipeline.

Each task bridges Celery's synchronous execution model with the async
services using asyncio.run(). The async runners are shared with the API's
BackgroundTasks fallback so both paths behave the same.

Usage:
    # From API (dispatch to queue):
    from pfas_compliance.workers.tasks import batch_scan_task
    batch_scan_task.delay(str(job_id), ctx.to_dict(), "Product", ["p-1", "p-2"])

    # Start worker:
    celery -A pfas_compliance.workers.celery_app worker -l info -P solo
"""

import asyncio
from uuid import UUID

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from pfas_compliance.core.config import settings
from pfas_compliance.core.context import RequestContext
from pfas_compliance.core.logging import bind_request_context, get_logger
from pfas_compliance.db.base import utcnow
from pfas_compliance.db.enums import JobStatus
from pfas_compliance.services import ComplianceOrchestrator, EvidencePipeline
from pfas_compliance.workers.celery_app import celery_app
from pfas_compliance.workers.job_store import get_job, update_job

logger = get_logger(__name__)


class JobCancelledError(Exception):
    """The job was cancelled through the API while running."""


def _session_factory(db_url: str | None, session_factory: async_sessionmaker | None):
    """Use the given factory, or a private engine for this run."""
    if session_factory is not None:
        return None, session_factory
    engine = create_async_engine(db_url or settings.db_url, echo=False)
    return engine, async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


def _track(job_id: UUID | None, **updates) -> None:
    if job_id is not None:
        update_job(job_id, **updates)


async def run_batch_scan(
    job_id: UUID,
    ctx: RequestContext,
    entity_type: str,
    entity_ids: list[str],
    db_url: str | None = None,
    session_factory: async_sessionmaker | None = None,
) -> dict:
    """
    Async implementation of a batch scan.

    Runs the assessment pipeline for each entity, updating job progress
    along the way. Stops between entities when the job is cancelled.
    """
    engine, factory = _session_factory(db_url, session_factory)
    bind_request_context(ctx)

    async def on_progress(processed: int, total: int) -> None:
        job = get_job(job_id)
        if job and job["status"] == JobStatus.CANCELLED:
            raise JobCancelledError(f"Job {job_id} cancelled after {processed}/{total} entities")
        progress = (processed / total) * 100 if total > 0 else 0
        update_job(job_id, processed_items=processed, progress=progress)

    try:
        update_job(job_id, status=JobStatus.RUNNING, started_at=utcnow(), total_items=len(entity_ids))

        async with factory() as db:
            orchestrator = ComplianceOrchestrator(db)
            summary = await orchestrator.batch_scan(ctx, entity_ids, entity_type, on_progress=on_progress)

        result = summary.to_dict()
        update_job(
            job_id,
            status=JobStatus.COMPLETED,
            completed_at=utcnow(),
            progress=100.0,
            error_count=len(summary.errors),
            result=result,
        )
        return result

    except JobCancelledError as e:
        logger.info("Batch scan stopped", job_id=str(job_id), reason=str(e))
        return {"cancelled": True, "message": str(e)}
    except Exception as e:
        logger.error("Batch scan failed", job_id=str(job_id), error=str(e))
        update_job(
            job_id,
            status=JobStatus.FAILED,
            completed_at=utcnow(),
            error_message=str(e),
        )
        raise
    finally:
        if engine is not None:
            await engine.dispose()


async def run_evidence_expiry(
    job_id: UUID | None,
    tenant_id: str,
    db_url: str | None = None,
    session_factory: async_sessionmaker | None = None,
) -> dict:
    """
    Async implementation of the evidence expiry sweep.

    Scheduled runs pass no job id and are not tracked in the job store.
    """
    engine, factory = _session_factory(db_url, session_factory)
    ctx = RequestContext(tenant_id=tenant_id).as_system()
    bind_request_context(ctx)

    try:
        _track(job_id, status=JobStatus.RUNNING, started_at=utcnow())

        async with factory() as db:
            expiry = await EvidencePipeline(db).expire_lapsed(ctx)

        result = {
            "expired_package_ids": [str(package_id) for package_id in expiry.expired_package_ids],
            "reassessed": list(expiry.reassessed),
            "errors": list(expiry.errors),
        }
        _track(
            job_id,
            status=JobStatus.COMPLETED,
            completed_at=utcnow(),
            progress=100.0,
            total_items=len(expiry.expired_package_ids),
            processed_items=len(expiry.expired_package_ids),
            error_count=len(expiry.errors),
            result=result,
        )
        return result

    except Exception as e:
        logger.error("Evidence expiry failed", tenant_id=tenant_id, job_id=str(job_id), error=str(e))
        _track(
            job_id,
            status=JobStatus.FAILED,
            completed_at=utcnow(),
            error_message=str(e),
        )
        raise
    finally:
        if engine is not None:
            await engine.dispose()


@celery_app.task(
    name="pfas_compliance.workers.tasks.batch_scan_task",
    bind=True,
    max_retries=1,
    acks_late=True,
)
def batch_scan_task(
    self,
    job_id_str: str,
    context: dict,
    entity_type: str,
    entity_ids: list[str],
) -> dict:
    """
    Celery task: assess many entities of one type.

    Args:
        job_id_str: Job UUID as string (Celery requires JSON-serializable args)
        context: Serialized RequestContext of the caller
        entity_type: Object type of every entity
        entity_ids: Entities to assess

    Returns:
        dict with the batch scan summary
    """
    ctx = RequestContext(**context)

    logger.info(
        "Celery worker: starting batch scan",
        job_id=job_id_str,
        entity_type=entity_type,
        entities=len(entity_ids),
    )

    # Bridge async code into Celery's sync execution
    result = asyncio.run(
        run_batch_scan(
            job_id=UUID(job_id_str),
            ctx=ctx,
            entity_type=entity_type,
            entity_ids=entity_ids,
            db_url=settings.db_url,
        )
    )

    logger.info("Celery worker: batch scan complete", job_id=job_id_str, result=result)
    return result


@celery_app.task(
    name="pfas_compliance.workers.tasks.expire_evidence_task",
    bind=True,
    max_retries=1,
    acks_late=True,
)
def expire_evidence_task(self, tenant_id: str, job_id_str: str | None = None) -> dict:
    """Celery task: expire lapsed evidence for one tenant and reassess."""
    job_id = UUID(job_id_str) if job_id_str else None

    logger.info("Celery worker: starting evidence expiry", tenant_id=tenant_id, job_id=job_id_str)

    result = asyncio.run(
        run_evidence_expiry(
            job_id=job_id,
            tenant_id=tenant_id,
            db_url=settings.db_url,
        )
    )

    logger.info(
        "Celery worker: evidence expiry complete",
        tenant_id=tenant_id,
        expired=len(result["expired_package_ids"]),
    )
    return result


async def run_expiry_sweep(
    db_url: str | None = None,
    session_factory: async_sessionmaker | None = None,
) -> dict:
    """
    Scheduled sweep: expire lapsed evidence for every tenant that has some.

    One tenant failing is logged and recorded; the others still run.
    """
    engine, factory = _session_factory(db_url, session_factory)
    results: dict[str, dict] = {}
    try:
        async with factory() as db:
            tenants = await EvidencePipeline(db).tenants_with_lapsed_evidence()

        for tenant_id in tenants:
            try:
                results[tenant_id] = await run_evidence_expiry(None, tenant_id, session_factory=factory)
            except Exception as e:
                results[tenant_id] = {"error": str(e)}
    finally:
        if engine is not None:
            await engine.dispose()

    logger.info("Evidence expiry sweep finished", tenants=len(results))
    return results


@celery_app.task(name="pfas_compliance.workers.tasks.expire_all_evidence_task")
def expire_all_evidence_task() -> dict:
    """Celery beat task: expiry sweep across tenants."""
    return asyncio.run(run_expiry_sweep(db_url=settings.db_url))
