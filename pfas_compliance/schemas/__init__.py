"""Pydantic schemas for API request/response models."""

from pfas_compliance.schemas.assessments import (
    ActionResponse,
    AssessmentCreate,
    AssessmentResponse,
    BatchScanRequest,
    BatchScanResponse,
    OrchestrationResponse,
    OverrideCreate,
    PipelineReportResponse,
    RuleEvaluationResponse,
)
from pfas_compliance.schemas.common import (
    ComplianceStats,
    CountByType,
    ErrorDetail,
    ErrorResponse,
    PaginatedResponse,
)
from pfas_compliance.schemas.evidence import (
    ApproveRequest,
    CompositionResponse,
    DeclarationCreate,
    DraftCompletion,
    EvidenceDocumentResponse,
    EvidencePackageDetail,
    EvidencePackageResponse,
    ExpiryResponse,
    IngestResponse,
    RejectRequest,
    ReviewDecisionResponse,
)
from pfas_compliance.schemas.jobs import (
    BatchScanJobRequest,
    JobCreateResponse,
    JobResponse,
    JobStatus,
    JobSummary,
    JobType,
)
from pfas_compliance.schemas.rules import (
    JurisdictionCreate,
    JurisdictionResponse,
    RuleCreate,
    RuleResponse,
    RulesetCreate,
    RulesetResponse,
    RulesetStatusUpdate,
    RuleUpdate,
)
from pfas_compliance.schemas.substances import (
    SubstanceBatchVerifyRequest,
    SubstanceBatchVerifyResponse,
    SubstanceResponse,
    SubstanceVerifyError,
    SubstanceVerifyRequest,
)

__all__ = [
    # Common
    "ComplianceStats",
    "CountByType",
    "ErrorDetail",
    "ErrorResponse",
    "PaginatedResponse",
    # Substances
    "SubstanceBatchVerifyRequest",
    "SubstanceBatchVerifyResponse",
    "SubstanceResponse",
    "SubstanceVerifyError",
    "SubstanceVerifyRequest",
    # Evidence
    "ApproveRequest",
    "CompositionResponse",
    "DeclarationCreate",
    "DraftCompletion",
    "EvidenceDocumentResponse",
    "EvidencePackageDetail",
    "EvidencePackageResponse",
    "ExpiryResponse",
    "IngestResponse",
    "RejectRequest",
    "ReviewDecisionResponse",
    # Assessments
    "ActionResponse",
    "AssessmentCreate",
    "AssessmentResponse",
    "BatchScanRequest",
    "BatchScanResponse",
    "OrchestrationResponse",
    "OverrideCreate",
    "PipelineReportResponse",
    "RuleEvaluationResponse",
    # Rules
    "JurisdictionCreate",
    "JurisdictionResponse",
    "RuleCreate",
    "RuleResponse",
    "RulesetCreate",
    "RulesetResponse",
    "RulesetStatusUpdate",
    "RuleUpdate",
    # Jobs
    "BatchScanJobRequest",
    "JobCreateResponse",
    "JobResponse",
    "JobStatus",
    "JobSummary",
    "JobType",
]
