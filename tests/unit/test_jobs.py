"""Unit tests for the job store and the async job runners."""

import uuid
from datetime import date

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from pfas_compliance.core.context import RequestContext
from pfas_compliance.db.enums import EvidenceSourceType, JobStatus
from pfas_compliance.schemas.jobs import JobType
from pfas_compliance.services import DeclarationSubmission, DeclaredSubstance, EvidencePipeline
from pfas_compliance.workers.celery_app import celery_app
from pfas_compliance.workers.job_store import create_job, get_job, list_jobs, update_job
from pfas_compliance.workers.tasks import run_batch_scan, run_evidence_expiry, run_expiry_sweep


class TestJobStore:
    def test_create_and_get(self) -> None:
        job = create_job(JobType.BATCH_SCAN, "tenant-a")

        stored = get_job(job["id"])
        assert stored["status"] == JobStatus.PENDING
        assert stored["job_type"] == JobType.BATCH_SCAN
        assert stored["progress"] == 0.0

    def test_jobs_are_tenant_scoped(self) -> None:
        job = create_job(JobType.BATCH_SCAN, "tenant-a")

        assert get_job(job["id"], tenant_id="tenant-a") is not None
        assert get_job(job["id"], tenant_id="tenant-b") is None
        assert list_jobs("tenant-b") == ([], 0)

    def test_terminal_status_is_kept(self) -> None:
        job = create_job(JobType.BATCH_SCAN, "tenant-a")
        update_job(job["id"], status=JobStatus.CANCELLED)

        updated = update_job(job["id"], status=JobStatus.RUNNING, processed_items=3)

        assert updated["status"] == JobStatus.CANCELLED
        assert updated["processed_items"] == 3

    def test_update_unknown_job(self) -> None:
        assert update_job(uuid.uuid4(), progress=50.0) is None

    def test_list_newest_first_with_filter(self) -> None:
        first = create_job(JobType.BATCH_SCAN, "tenant-a")
        second = create_job(JobType.EVIDENCE_EXPIRY, "tenant-a")
        update_job(first["id"], status=JobStatus.COMPLETED)

        jobs, total = list_jobs("tenant-a")
        assert total == 2
        assert [job["id"] for job in jobs] == [second["id"], first["id"]]

        jobs, total = list_jobs("tenant-a", status_filter=JobStatus.COMPLETED)
        assert total == 1
        assert jobs[0]["id"] == first["id"]

        jobs, total = list_jobs("tenant-a", offset=1, limit=1)
        assert total == 2
        assert [job["id"] for job in jobs] == [first["id"]]


class TestRunBatchScan:
    """Tests for the batch scan runner shared by Celery and the API fallback."""

    async def test_completes_with_summary(
        self,
        session_factory: async_sessionmaker,
        ctx: RequestContext,
        make_ruleset,
    ) -> None:
        await make_ruleset(ctx)
        job = create_job(JobType.BATCH_SCAN, ctx.tenant_id)

        result = await run_batch_scan(
            job["id"], ctx, "Material", ["m-1", "m-2"], session_factory=session_factory
        )

        assert result["total"] == 2
        assert result["processed"] == 2
        assert result["compliant"] == 2
        assert result["errors"] == []

        stored = get_job(job["id"])
        assert stored["status"] == JobStatus.COMPLETED
        assert stored["total_items"] == 2
        assert stored["processed_items"] == 2
        assert stored["progress"] == 100.0
        assert stored["result"] == result

    async def test_cancelled_job_stops_between_entities(
        self, session_factory: async_sessionmaker, ctx: RequestContext
    ) -> None:
        job = create_job(JobType.BATCH_SCAN, ctx.tenant_id)
        update_job(job["id"], status=JobStatus.CANCELLED)

        result = await run_batch_scan(
            job["id"], ctx, "Material", ["m-1", "m-2", "m-3"], session_factory=session_factory
        )

        assert result["cancelled"] is True
        assert "after 1/3" in result["message"]
        stored = get_job(job["id"])
        assert stored["status"] == JobStatus.CANCELLED
        assert stored["processed_items"] == 0

    async def test_failure_marks_job_failed(
        self, session_factory: async_sessionmaker, ctx: RequestContext, monkeypatch
    ) -> None:
        async def broken(*args, **kwargs):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr("pfas_compliance.workers.tasks.ComplianceOrchestrator.batch_scan", broken)
        job = create_job(JobType.BATCH_SCAN, ctx.tenant_id)

        with pytest.raises(RuntimeError):
            await run_batch_scan(job["id"], ctx, "Material", ["m-1"], session_factory=session_factory)

        stored = get_job(job["id"])
        assert stored["status"] == JobStatus.FAILED
        assert stored["error_message"] == "database unavailable"


class TestRunEvidenceExpiry:
    async def test_expires_and_tracks_job(
        self,
        pipeline: EvidencePipeline,
        session_factory: async_sessionmaker,
        ctx: RequestContext,
    ) -> None:
        lapsed = await pipeline.submit_declaration(
            ctx,
            DeclarationSubmission(
                object_type="Material",
                object_id="mat-100",
                source_type=EvidenceSourceType.LAB_TEST,
                confidence_score=95,
                valid_to=date(2025, 1, 31),
                substances=[DeclaredSubstance("Perfluorooctanoic acid", "335-67-1", 50)],
            ),
        )
        job = create_job(JobType.EVIDENCE_EXPIRY, ctx.tenant_id)

        result = await run_evidence_expiry(job["id"], ctx.tenant_id, session_factory=session_factory)

        assert result["expired_package_ids"] == [str(lapsed.id)]
        assert result["reassessed"] == ["Material:mat-100"]
        stored = get_job(job["id"])
        assert stored["status"] == JobStatus.COMPLETED
        assert stored["processed_items"] == 1

    async def test_scheduled_run_is_untracked(
        self, session_factory: async_sessionmaker, ctx: RequestContext
    ) -> None:
        result = await run_evidence_expiry(None, ctx.tenant_id, session_factory=session_factory)

        assert result == {"expired_package_ids": [], "reassessed": [], "errors": []}
        assert list_jobs(ctx.tenant_id) == ([], 0)


class TestRunExpirySweep:
    async def test_only_tenants_with_lapsed_evidence(
        self,
        pipeline: EvidencePipeline,
        session_factory: async_sessionmaker,
        ctx: RequestContext,
        other_tenant_ctx: RequestContext,
    ) -> None:
        for context, valid_to in ((ctx, date(2025, 1, 31)), (other_tenant_ctx, date(2099, 1, 1))):
            await pipeline.submit_declaration(
                context,
                DeclarationSubmission(
                    object_type="Material",
                    object_id="mat-100",
                    source_type=EvidenceSourceType.LAB_TEST,
                    confidence_score=95,
                    valid_to=valid_to,
                    substances=[DeclaredSubstance("Perfluorooctanoic acid", "335-67-1", 50)],
                ),
            )

        results = await run_expiry_sweep(session_factory=session_factory)

        assert list(results) == [ctx.tenant_id]
        assert len(results[ctx.tenant_id]["expired_package_ids"]) == 1
        assert list_jobs(ctx.tenant_id) == ([], 0)


class TestCeleryConfig:
    def test_expiry_is_scheduled(self) -> None:
        schedule = celery_app.conf.beat_schedule["expire-lapsed-evidence"]
        assert schedule["task"] == "pfas_compliance.workers.tasks.expire_all_evidence_task"
        assert "kwargs" not in schedule

    def test_tasks_registered(self) -> None:
        import pfas_compliance.workers.tasks  # noqa: F401

        assert "pfas_compliance.workers.tasks.batch_scan_task" in celery_app.tasks
        assert celery_app.conf.task_default_queue == "compliance"
