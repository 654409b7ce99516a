"""Pydantic schemas for Evidence API endpoints."""

import base64
import binascii
from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pfas_compliance.db.enums import (
    ClaimStatus,
    CompositionSourceType,
    CompositionStatus,
    EvidenceSourceType,
    IntentionallyAdded,
    QualityGrade,
    ReviewStatus,
)
from pfas_compliance.schemas.assessments import AssessmentResponse, PipelineReportResponse
from pfas_compliance.schemas.common import BaseResponse
from pfas_compliance.services.errors import InvalidCASNumberError
from pfas_compliance.services.evidence_pipeline import (
    DeclarationSubmission,
    DeclaredSubstance,
    DocumentUpload,
)
from pfas_compliance.services.substance_verification import normalize_cas_number

# =============================================================================
# Request Schemas
# =============================================================================


class Signatory(BaseModel):
    """Person who signed a declaration."""

    name: str | None = Field(default=None, description="Full name")
    role: str | None = Field(default=None, description="Job title")
    organization: str | None = Field(default=None, description="Company")


class SubstanceLine(BaseModel):
    """One declared substance."""

    name: str | None = Field(default=None, description="Substance name as declared")
    cas_number: str | None = Field(default=None, description="CAS registry number", examples=["335-67-1"])
    concentration_ppm: float | None = Field(default=None, ge=0.0, description="Concentration in ppm")

    @field_validator("cas_number")
    @classmethod
    def normalize_cas(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        try:
            return normalize_cas_number(value)
        except InvalidCASNumberError as e:
            raise ValueError(str(e)) from e

    @model_validator(mode="after")
    def require_identity(self) -> "SubstanceLine":
        if not self.name and not self.cas_number:
            raise ValueError("A substance needs a name or a CAS number")
        return self

    def to_declared(self) -> DeclaredSubstance:
        return DeclaredSubstance(
            name=self.name,
            cas_number=self.cas_number,
            concentration_ppm=self.concentration_ppm,
        )


class DocumentIn(BaseModel):
    """A document attached to a declaration. Content is base64 when supplied."""

    file_name: str = Field(min_length=1, max_length=500, description="Original file name")
    file_url: str | None = Field(default=None, description="Where the file is stored")
    content_base64: str | None = Field(default=None, description="File content, base64 encoded")
    doc_type: str = Field(default="declaration", description="Document type")
    page_map: dict[str, int] = Field(default_factory=dict, description="Field -> page citations")

    @field_validator("content_base64")
    @classmethod
    def check_base64(cls, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("content_base64 is not valid base64") from e
        return value

    def to_upload(self) -> DocumentUpload:
        content = base64.b64decode(self.content_base64) if self.content_base64 is not None else None
        return DocumentUpload(
            file_name=self.file_name,
            content=content,
            file_url=self.file_url,
            doc_type=self.doc_type,
            page_map=dict(self.page_map),
        )


class DeclarationCreate(BaseModel):
    """Schema for submitting a declaration (manual or lab intake)."""

    object_type: str = Field(min_length=1, max_length=50, description="Object type", examples=["Product"])
    object_id: str = Field(min_length=1, max_length=100, description="Object identifier")
    source_type: EvidenceSourceType = Field(description="Evidence source (drives the quality grade)")
    claim_status: ClaimStatus = Field(default=ClaimStatus.UNKNOWN, description="Declared PFAS presence")
    intentionally_added: IntentionallyAdded = Field(
        default=IntentionallyAdded.UNKNOWN, description="Whether PFAS was intentionally added"
    )
    threshold_definition: str | None = Field(default=None, description="Threshold wording")
    threshold_numeric_ppm: float | None = Field(default=None, ge=0.0, description="Threshold in ppm")
    valid_from: date | None = Field(default=None, description="Validity start")
    valid_to: date | None = Field(default=None, description="Validity end")
    signatory: Signatory | None = Field(default=None, description="Signatory")
    confidence_score: int = Field(default=0, ge=0, le=100, description="Confidence 0-100")
    substances: list[SubstanceLine] = Field(default_factory=list, description="Declared substances")
    documents: list[DocumentIn] = Field(default_factory=list, description="Attached documents")

    @model_validator(mode="after")
    def check_validity_window(self) -> "DeclarationCreate":
        if self.valid_from and self.valid_to and self.valid_to < self.valid_from:
            raise ValueError("valid_to must not be before valid_from")
        return self

    def to_submission(self) -> DeclarationSubmission:
        return DeclarationSubmission(
            object_type=self.object_type,
            object_id=self.object_id,
            source_type=self.source_type,
            claim_status=self.claim_status,
            intentionally_added=self.intentionally_added,
            threshold_definition=self.threshold_definition,
            threshold_numeric_ppm=self.threshold_numeric_ppm,
            valid_from=self.valid_from,
            valid_to=self.valid_to,
            signatory=self.signatory.model_dump(exclude_none=True) if self.signatory else {},
            confidence_score=self.confidence_score,
            substances=[line.to_declared() for line in self.substances],
            documents=[document.to_upload() for document in self.documents],
        )


class DraftCompletion(BaseModel):
    """Corrections a human makes while confirming a draft."""

    claim_status: ClaimStatus | None = None
    intentionally_added: IntentionallyAdded | None = None
    threshold_definition: str | None = None
    threshold_numeric_ppm: float | None = Field(default=None, ge=0.0)
    valid_from: date | None = None
    valid_to: date | None = None
    signatory: Signatory | None = None
    substances: list[SubstanceLine] | None = Field(
        default=None, description="Replaces the extracted substances when given"
    )

    def package_updates(self) -> dict:
        updates = self.model_dump(exclude_unset=True, exclude={"substances"})
        if "signatory" in updates and updates["signatory"] is not None:
            updates["signatory"] = {k: v for k, v in updates["signatory"].items() if v is not None}
        return updates

    def declared_substances(self) -> list[DeclaredSubstance] | None:
        if self.substances is None:
            return None
        return [line.to_declared() for line in self.substances]


class ApproveRequest(BaseModel):
    notes: str | None = Field(default=None, description="Reviewer notes")


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1, description="Why the evidence is rejected")


# =============================================================================
# Response Schemas
# =============================================================================


class EvidencePackageResponse(BaseResponse):
    """Schema for an evidence package."""

    object_type: str = Field(description="Object type")
    object_id: str = Field(description="Object identifier")
    claim_status: ClaimStatus = Field(description="Declared PFAS presence")
    intentionally_added: IntentionallyAdded = Field(description="Intentionally added")
    threshold_definition: str | None = Field(description="Threshold wording")
    threshold_numeric_ppm: float | None = Field(description="Threshold in ppm")
    valid_from: date | None = Field(description="Validity start")
    valid_to: date | None = Field(description="Validity end")
    signatory: dict = Field(default_factory=dict, description="Signatory")
    source_type: EvidenceSourceType = Field(description="Evidence source")
    quality_grade: QualityGrade = Field(description="Quality grade A-D")
    confidence_score: int = Field(description="Confidence 0-100")
    review_status: ReviewStatus = Field(description="Review state")
    submitted_by: str = Field(description="Submitter")
    reviewed_by: str | None = Field(description="Reviewer")
    reviewed_at: datetime | None = Field(description="Decision time")
    review_notes: str | None = Field(description="Reviewer notes")
    rejection_reason: str | None = Field(description="Rejection reason")
    superseded_by_id: UUID | None = Field(description="Replacing package")

    model_config = ConfigDict(from_attributes=True)


class EvidenceDocumentResponse(BaseResponse):
    """Schema for an evidence document."""

    package_id: UUID = Field(description="Owning package")
    file_name: str = Field(description="File name")
    file_url: str | None = Field(description="Storage location")
    file_hash_sha256: str | None = Field(description="SHA-256 of the content")
    doc_type: str = Field(description="Document type")
    page_map: dict = Field(default_factory=dict, description="Field -> page citations")
    extraction_metadata: dict = Field(default_factory=dict, description="Prompt/model version, confidence")
    uploaded_by: str = Field(description="Uploader")

    model_config = ConfigDict(from_attributes=True)


class CompositionResponse(BaseResponse):
    """Schema for a material composition row."""

    material_id: str = Field(description="Object identifier")
    material_type: str = Field(description="Object type")
    substance_cas: str | None = Field(description="CAS number")
    substance_name: str | None = Field(description="Substance name")
    typical_concentration: float | None = Field(description="Concentration")
    unit_basis: str = Field(description="Concentration unit")
    source_type: CompositionSourceType = Field(description="Provenance")
    confidence_score: float = Field(description="Confidence 0.0-1.0")
    source_document_id: UUID | None = Field(description="Evidence package")
    status: CompositionStatus = Field(description="Lifecycle status")
    valid_until: date | None = Field(description="Validity end")

    model_config = ConfigDict(from_attributes=True)


class EvidencePackageDetail(EvidencePackageResponse):
    """Package with its documents and composition rows."""

    documents: list[EvidenceDocumentResponse] = Field(default_factory=list)
    compositions: list[CompositionResponse] = Field(default_factory=list)


class IngestResponse(BaseModel):
    """Result of AI-assisted intake."""

    package: EvidencePackageResponse = Field(description="Created package")
    document: EvidenceDocumentResponse = Field(description="Uploaded document")
    auto_submitted: bool = Field(description="Entered the review queue without human completion")
    uncited_facts: list[str] = Field(default_factory=list, description="Extracted facts without page citation")


class ReviewDecisionResponse(BaseModel):
    """A review decision and the reassessment it caused."""

    package: EvidencePackageResponse = Field(description="Decided package")
    assessment: AssessmentResponse | None = Field(default=None, description="Updated assessment")
    report: PipelineReportResponse | None = Field(default=None, description="Pipeline report")


class ExpiryResponse(BaseModel):
    expired_package_ids: list[UUID] = Field(description="Packages expired")
    reassessed: list[str] = Field(description="Objects reassessed (type:id)")
    errors: list[dict[str, str]] = Field(default_factory=list, description="Failed reassessments")
