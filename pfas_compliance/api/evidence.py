"""Evidence API endpoints: intake, the review queue and review decisions."""

from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from pfas_compliance.api.deps import get_request_context
from pfas_compliance.core.context import RequestContext
from pfas_compliance.core.logging import get_logger
from pfas_compliance.db import get_db
from pfas_compliance.schemas import (
    ApproveRequest,
    AssessmentResponse,
    CompositionResponse,
    DeclarationCreate,
    DraftCompletion,
    EvidenceDocumentResponse,
    EvidencePackageDetail,
    EvidencePackageResponse,
    ExpiryResponse,
    IngestResponse,
    PipelineReportResponse,
    RejectRequest,
    ReviewDecisionResponse,
)
from pfas_compliance.services import EvidencePipeline
from pfas_compliance.services.evidence_pipeline import ReviewDecision

logger = get_logger(__name__)

router = APIRouter()


def get_pipeline(db: AsyncSession = Depends(get_db)) -> EvidencePipeline:
    """Evidence pipeline dependency (overridden in tests)."""
    return EvidencePipeline(db)


def decision_to_response(decision: ReviewDecision) -> ReviewDecisionResponse:
    """Convert a review decision (and its reassessment, if any) to a response."""
    response = ReviewDecisionResponse(package=EvidencePackageResponse.model_validate(decision.package))
    if decision.orchestration is not None:
        response.assessment = AssessmentResponse.model_validate(decision.orchestration.assessment)
        response.report = PipelineReportResponse.model_validate(decision.orchestration.report.to_dict())
    return response


# =============================================================================
# Intake
# =============================================================================


@router.post(
    "/declarations",
    response_model=EvidencePackageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a declaration",
    description=(
        "Manual or lab intake. The quality grade is derived from the source type. "
        "High-confidence lab results are approved immediately; everything else "
        "enters the review queue."
    ),
)
async def submit_declaration(
    request: DeclarationCreate,
    ctx: RequestContext = Depends(get_request_context),
    pipeline: EvidencePipeline = Depends(get_pipeline),
) -> EvidencePackageResponse:
    package = await pipeline.submit_declaration(ctx, request.to_submission())
    return EvidencePackageResponse.model_validate(package)


@router.post(
    "/documents",
    response_model=IngestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a declaration document",
    description=(
        "AI-assisted intake. The document is read by the extraction model; confident, "
        "fully cited extractions are submitted for review, others are kept as drafts."
    ),
)
async def ingest_document(
    object_type: str = Form(min_length=1, max_length=50, description="Object type"),
    object_id: str = Form(min_length=1, max_length=100, description="Object identifier"),
    file_url: str | None = Form(default=None, description="Where the file is stored"),
    file: UploadFile = File(description="Declaration document"),
    ctx: RequestContext = Depends(get_request_context),
    pipeline: EvidencePipeline = Depends(get_pipeline),
) -> IngestResponse:
    content = await file.read()
    result = await pipeline.ingest_document(
        ctx,
        object_type=object_type,
        object_id=object_id,
        content=content,
        file_name=file.filename or "upload",
        mime_type=file.content_type or "application/octet-stream",
        file_url=file_url,
    )
    return IngestResponse(
        package=EvidencePackageResponse.model_validate(result.package),
        document=EvidenceDocumentResponse.model_validate(result.document),
        auto_submitted=result.auto_submitted,
        uncited_facts=result.declaration.uncited_facts,
    )


@router.post(
    "/{package_id}/complete",
    response_model=EvidencePackageResponse,
    summary="Complete a draft",
    description="Confirm (and optionally correct) an extracted draft, submitting it for review.",
)
async def complete_draft(
    package_id: UUID,
    request: DraftCompletion,
    ctx: RequestContext = Depends(get_request_context),
    pipeline: EvidencePipeline = Depends(get_pipeline),
) -> EvidencePackageResponse:
    package = await pipeline.complete_draft(
        ctx,
        package_id,
        updates=request.package_updates(),
        substances=request.declared_substances(),
    )
    return EvidencePackageResponse.model_validate(package)


# =============================================================================
# Queue and lookups
# =============================================================================


@router.get(
    "/queue",
    response_model=list[EvidencePackageResponse],
    summary="Review queue",
    description="Packages awaiting a decision, oldest first.",
)
async def review_queue(
    object_type: str | None = Query(default=None, description="Filter by object type"),
    object_id: str | None = Query(default=None, description="Filter by object id"),
    ctx: RequestContext = Depends(get_request_context),
    pipeline: EvidencePipeline = Depends(get_pipeline),
) -> list[EvidencePackageResponse]:
    packages = await pipeline.review_queue(ctx, object_type=object_type, object_id=object_id)
    return [EvidencePackageResponse.model_validate(package) for package in packages]


@router.get(
    "/{package_id}",
    response_model=EvidencePackageDetail,
    summary="Get an evidence package",
    description="Package with its documents and non-expired composition rows.",
)
async def get_package(
    package_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    pipeline: EvidencePipeline = Depends(get_pipeline),
) -> EvidencePackageDetail:
    package = await pipeline.get_package(ctx, package_id)
    documents = await pipeline.package_documents(ctx, package_id)
    compositions = await pipeline.package_compositions(ctx, package_id)

    detail = EvidencePackageDetail.model_validate(package)
    detail.documents = [EvidenceDocumentResponse.model_validate(d) for d in documents]
    detail.compositions = [CompositionResponse.model_validate(c) for c in compositions]
    return detail


# =============================================================================
# Review decisions
# =============================================================================


@router.post(
    "/{package_id}/start-review",
    response_model=EvidencePackageResponse,
    summary="Start reviewing a package",
)
async def start_review(
    package_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    pipeline: EvidencePipeline = Depends(get_pipeline),
) -> EvidencePackageResponse:
    package = await pipeline.start_review(ctx, package_id)
    return EvidencePackageResponse.model_validate(package)


@router.post(
    "/{package_id}/approve",
    response_model=ReviewDecisionResponse,
    summary="Approve a package",
    description=(
        "Approve the package, supersede earlier evidence for the same object and "
        "reassess the object. Grade B-D evidence must be approved by someone other "
        "than the submitter."
    ),
)
async def approve_package(
    package_id: UUID,
    request: ApproveRequest | None = None,
    ctx: RequestContext = Depends(get_request_context),
    pipeline: EvidencePipeline = Depends(get_pipeline),
) -> ReviewDecisionResponse:
    notes = request.notes if request else None
    decision = await pipeline.approve(ctx, package_id, notes=notes)
    return decision_to_response(decision)


@router.post(
    "/{package_id}/reject",
    response_model=ReviewDecisionResponse,
    summary="Reject a package",
)
async def reject_package(
    package_id: UUID,
    request: RejectRequest,
    ctx: RequestContext = Depends(get_request_context),
    pipeline: EvidencePipeline = Depends(get_pipeline),
) -> ReviewDecisionResponse:
    decision = await pipeline.reject(ctx, package_id, request.reason)
    return decision_to_response(decision)


@router.post(
    "/expire",
    response_model=ExpiryResponse,
    summary="Expire lapsed evidence",
    description="Expire approved packages past their validity and reassess the affected objects.",
)
async def expire_lapsed(
    ctx: RequestContext = Depends(get_request_context),
    pipeline: EvidencePipeline = Depends(get_pipeline),
) -> ExpiryResponse:
    result = await pipeline.expire_lapsed(ctx)
    return ExpiryResponse(
        expired_package_ids=result.expired_package_ids,
        reassessed=result.reassessed,
        errors=result.errors,
    )
