"""Assessment API endpoints: run the pipeline, inspect verdicts, overrides."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pfas_compliance.api.deps import get_request_context
from pfas_compliance.core.context import RequestContext
from pfas_compliance.core.logging import get_logger
from pfas_compliance.db import get_db
from pfas_compliance.db.enums import ActionStatus, AlertStatus, AssessmentStatus, ReviewStatus
from pfas_compliance.db.models import (
    Action,
    ComplianceAssessment,
    EvidencePackage,
    RiskAlert,
    RuleEvaluation,
)
from pfas_compliance.schemas import (
    ActionResponse,
    AssessmentCreate,
    AssessmentResponse,
    BatchScanRequest,
    BatchScanResponse,
    ComplianceStats,
    CountByType,
    OrchestrationResponse,
    OverrideCreate,
    PaginatedResponse,
    PipelineReportResponse,
    RuleEvaluationResponse,
)
from pfas_compliance.services import ComplianceOrchestrator

logger = get_logger(__name__)

router = APIRouter()


def get_orchestrator(db: AsyncSession = Depends(get_db)) -> ComplianceOrchestrator:
    """Orchestrator dependency (overridden in tests)."""
    return ComplianceOrchestrator(db)


# =============================================================================
# Pipeline
# =============================================================================


@router.post(
    "",
    response_model=OrchestrationResponse,
    summary="Assess an object",
    description=(
        "Run the assessment pipeline for one object: evaluate its current compositions "
        "against the active jurisdictions, commit the verdict, then run the downstream "
        "effects. The report lists every step and any failure."
    ),
)
async def create_assessment(
    request: AssessmentCreate,
    ctx: RequestContext = Depends(get_request_context),
    orchestrator: ComplianceOrchestrator = Depends(get_orchestrator),
) -> OrchestrationResponse:
    result = await orchestrator.create_or_update_assessment(ctx, request.to_request())
    return OrchestrationResponse(
        assessment=AssessmentResponse.model_validate(result.assessment),
        report=PipelineReportResponse.model_validate(result.report.to_dict()),
    )


@router.post(
    "/batch-scan",
    response_model=BatchScanResponse,
    summary="Assess several objects",
    description=(
        "Run the pipeline for each entity in turn, in-request. Failing entities are "
        "reported and do not stop the scan. Use /jobs/batch-scan for large scans."
    ),
)
async def batch_scan(
    request: BatchScanRequest,
    ctx: RequestContext = Depends(get_request_context),
    orchestrator: ComplianceOrchestrator = Depends(get_orchestrator),
) -> BatchScanResponse:
    summary = await orchestrator.batch_scan(ctx, request.entity_ids, request.entity_type)
    return BatchScanResponse(**summary.to_dict())


# =============================================================================
# Queries
# =============================================================================


@router.get(
    "",
    response_model=PaginatedResponse[AssessmentResponse],
    summary="List assessments",
)
async def list_assessments(
    status_filter: AssessmentStatus | None = Query(default=None, alias="status", description="Filter by status"),
    object_type: str | None = Query(default=None, description="Filter by object type"),
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> PaginatedResponse[AssessmentResponse]:
    offset = (page - 1) * page_size

    query = select(ComplianceAssessment).where(ComplianceAssessment.tenant_id == ctx.tenant_id)
    count_query = select(func.count(ComplianceAssessment.id)).where(
        ComplianceAssessment.tenant_id == ctx.tenant_id
    )
    if status_filter:
        query = query.where(ComplianceAssessment.status == status_filter)
        count_query = count_query.where(ComplianceAssessment.status == status_filter)
    if object_type:
        query = query.where(ComplianceAssessment.object_type == object_type)
        count_query = count_query.where(ComplianceAssessment.object_type == object_type)

    total = (await db.execute(count_query)).scalar() or 0
    query = query.order_by(ComplianceAssessment.assessed_at.desc()).offset(offset).limit(page_size)
    assessments = (await db.execute(query)).scalars().all()

    return PaginatedResponse.create(
        items=[AssessmentResponse.model_validate(a) for a in assessments],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/stats",
    response_model=ComplianceStats,
    summary="Compliance statistics",
)
async def get_stats(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> ComplianceStats:
    tenant = ctx.tenant_id

    assessments = (
        await db.execute(select(func.count(ComplianceAssessment.id)).where(ComplianceAssessment.tenant_id == tenant))
    ).scalar() or 0
    packages = (
        await db.execute(select(func.count(EvidencePackage.id)).where(EvidencePackage.tenant_id == tenant))
    ).scalar() or 0
    pending = (
        await db.execute(
            select(func.count(EvidencePackage.id)).where(
                EvidencePackage.tenant_id == tenant,
                EvidencePackage.review_status.in_([ReviewStatus.SUBMITTED, ReviewStatus.UNDER_REVIEW]),
            )
        )
    ).scalar() or 0
    open_actions = (
        await db.execute(
            select(func.count(Action.id)).where(
                Action.tenant_id == tenant,
                Action.status.in_([ActionStatus.OPEN, ActionStatus.IN_PROGRESS]),
            )
        )
    ).scalar() or 0
    open_alerts = (
        await db.execute(
            select(func.count(RiskAlert.id)).where(
                RiskAlert.tenant_id == tenant,
                RiskAlert.status == AlertStatus.OPEN,
            )
        )
    ).scalar() or 0

    by_status = await db.execute(
        select(ComplianceAssessment.status, func.count(ComplianceAssessment.id))
        .where(ComplianceAssessment.tenant_id == tenant)
        .group_by(ComplianceAssessment.status)
    )

    return ComplianceStats(
        assessments=assessments,
        evidence_packages=packages,
        pending_review=pending,
        open_actions=open_actions,
        open_alerts=open_alerts,
        assessments_by_status=[
            CountByType(type=row_status.value, count=count) for row_status, count in by_status.all()
        ],
    )


@router.get(
    "/by-object/{object_type}/{object_id}",
    response_model=AssessmentResponse,
    summary="Get the assessment of an object",
)
async def get_assessment_for_object(
    object_type: str,
    object_id: str,
    ctx: RequestContext = Depends(get_request_context),
    orchestrator: ComplianceOrchestrator = Depends(get_orchestrator),
) -> AssessmentResponse:
    assessment = await orchestrator.find_assessment(ctx, object_type, object_id)
    if assessment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No assessment for {object_type} {object_id}",
        )
    return AssessmentResponse.model_validate(assessment)


@router.get(
    "/{assessment_id}",
    response_model=AssessmentResponse,
    summary="Get an assessment",
)
async def get_assessment(
    assessment_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    orchestrator: ComplianceOrchestrator = Depends(get_orchestrator),
) -> AssessmentResponse:
    assessment = await orchestrator.get_assessment(ctx, assessment_id)
    return AssessmentResponse.model_validate(assessment)


@router.get(
    "/{assessment_id}/evaluations",
    response_model=list[RuleEvaluationResponse],
    summary="Evaluation history",
    description="Append-only per-jurisdiction evaluations, newest first, with their decision snapshots.",
)
async def list_evaluations(
    assessment_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    orchestrator: ComplianceOrchestrator = Depends(get_orchestrator),
) -> list[RuleEvaluationResponse]:
    await orchestrator.get_assessment(ctx, assessment_id)
    result = await db.execute(
        select(RuleEvaluation)
        .where(RuleEvaluation.tenant_id == ctx.tenant_id, RuleEvaluation.assessment_id == assessment_id)
        .order_by(RuleEvaluation.created_at.desc(), RuleEvaluation.id.desc())
    )
    return [RuleEvaluationResponse.model_validate(e) for e in result.scalars().all()]


@router.get(
    "/{assessment_id}/actions",
    response_model=list[ActionResponse],
    summary="Remediation actions",
)
async def list_actions(
    assessment_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    orchestrator: ComplianceOrchestrator = Depends(get_orchestrator),
) -> list[ActionResponse]:
    assessment = await orchestrator.get_assessment(ctx, assessment_id)
    result = await db.execute(
        select(Action)
        .where(
            Action.tenant_id == ctx.tenant_id,
            Action.object_type == assessment.object_type,
            Action.object_id == assessment.object_id,
        )
        .order_by(Action.created_at)
    )
    return [ActionResponse.model_validate(a) for a in result.scalars().all()]


# =============================================================================
# Overrides
# =============================================================================


@router.post(
    "/{assessment_id}/override",
    response_model=AssessmentResponse,
    summary="Override a verdict",
    description=(
        "Stricter overrides apply immediately. Any other override, and always an "
        "override to compliant, waits for approval by a second person."
    ),
)
async def request_override(
    assessment_id: UUID,
    request: OverrideCreate,
    ctx: RequestContext = Depends(get_request_context),
    orchestrator: ComplianceOrchestrator = Depends(get_orchestrator),
) -> AssessmentResponse:
    assessment = await orchestrator.request_override(
        ctx,
        assessment_id,
        status=request.status,
        justification=request.justification,
        expires=request.expires,
    )
    return AssessmentResponse.model_validate(assessment)


@router.post(
    "/{assessment_id}/override/approve",
    response_model=AssessmentResponse,
    summary="Approve a pending override",
)
async def approve_override(
    assessment_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    orchestrator: ComplianceOrchestrator = Depends(get_orchestrator),
) -> AssessmentResponse:
    assessment = await orchestrator.approve_override(ctx, assessment_id)
    return AssessmentResponse.model_validate(assessment)
