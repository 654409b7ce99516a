"""Pydantic schemas for Assessment API endpoints."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from pfas_compliance.db.enums import ActionStatus, AssessmentStatus, OverrideStatus
from pfas_compliance.schemas.common import BaseResponse
from pfas_compliance.services.orchestrator import AssessmentRequest

# =============================================================================
# Request Schemas
# =============================================================================


class AssessmentCreate(BaseModel):
    """Schema for running the assessment pipeline on one object."""

    object_type: str = Field(min_length=1, max_length=50, description="Object type", examples=["Product"])
    object_id: str = Field(min_length=1, max_length=100, description="Object identifier")
    evidence_package_ids: list[UUID] = Field(default_factory=list, description="Packages to link")
    jurisdiction_id: UUID | None = Field(default=None, description="Evaluate only this jurisdiction")
    ruleset_id: UUID | None = Field(default=None, description="Ruleset reference")
    initial_status: AssessmentStatus = Field(
        default=AssessmentStatus.UNDER_REVIEW,
        description="Status kept when no jurisdiction produces a result",
    )
    source: str | None = Field(default=None, description="Caller (scanner, portal, ...)")
    verification_method: str | None = Field(default=None, description="How the evidence was verified")
    use_categories: list[str] | None = Field(
        default=None, description="Declared uses (defaults to the linked entity's)"
    )
    resolve_substances: bool | None = Field(default=None, description="Verify substances during the run")

    def to_request(self) -> AssessmentRequest:
        return AssessmentRequest(**self.model_dump())


class OverrideCreate(BaseModel):
    """Request a manual override of a verdict."""

    status: AssessmentStatus = Field(description="Status to force")
    justification: str = Field(min_length=1, description="Why the verdict is overridden")
    expires: datetime | None = Field(default=None, description="When the override lapses")


class BatchScanRequest(BaseModel):
    """Synchronous batch scan of several entities of one type."""

    entity_type: str = Field(min_length=1, max_length=50, description="Object type", examples=["Product"])
    entity_ids: list[str] = Field(min_length=1, max_length=500, description="Object identifiers")


# =============================================================================
# Response Schemas
# =============================================================================


class AssessmentResponse(BaseResponse):
    """Schema for a compliance assessment."""

    object_type: str = Field(description="Object type")
    object_id: str = Field(description="Object identifier")
    jurisdiction_id: UUID | None = Field(description="Jurisdiction scope")
    ruleset_id: UUID | None = Field(description="Ruleset reference")
    status: AssessmentStatus = Field(description="Effective status")
    computed_status: AssessmentStatus = Field(description="Rule engine verdict")
    reasoning: str = Field(description="Rule explanations")
    evidence_package_ids: list[str] = Field(default_factory=list, description="Linked packages")
    decision_snapshot: dict = Field(default_factory=dict, description="Latest run snapshot")
    assessed_by: str = Field(description="Who ran the latest assessment")
    assessed_at: datetime = Field(description="Latest assessment time")
    source: str | None = Field(description="Caller")
    verification_method: str | None = Field(description="Verification method")
    override_applied: bool = Field(description="Override in force")
    override_status: AssessmentStatus | None = Field(description="Override status")
    override_state: OverrideStatus | None = Field(description="Override approval state")
    override_justification: str | None = Field(description="Override justification")
    override_requested_by: str | None = Field(description="Override requester")
    override_by: str | None = Field(description="Override approver")
    override_expires: datetime | None = Field(description="Override expiry")
    updated_at: datetime = Field(description="Last update")

    model_config = ConfigDict(from_attributes=True)


class StepResultResponse(BaseModel):
    step: str
    ok: bool
    skipped: bool = False
    value: Any = None
    error: dict[str, str] | None = None


class PipelineReportResponse(BaseModel):
    """Execution report of one pipeline run."""

    ok: bool = Field(description="No step or jurisdiction failed")
    steps: list[StepResultResponse] = Field(description="Per-step results in pipeline order")
    evaluated_jurisdictions: list[str] = Field(description="Jurisdictions that produced a verdict")
    jurisdiction_errors: list[dict[str, str]] = Field(description="Jurisdictions skipped after a failure")
    verification_errors: dict[str, str] = Field(description="Substances that could not be resolved")


class OrchestrationResponse(BaseModel):
    assessment: AssessmentResponse
    report: PipelineReportResponse


class RuleEvaluationResponse(BaseResponse):
    """Append-only record of one jurisdiction evaluation."""

    assessment_id: UUID = Field(description="Assessment")
    jurisdiction_id: UUID = Field(description="Jurisdiction")
    status: AssessmentStatus = Field(description="Jurisdiction verdict")
    triggered_rule_ids: list[str] = Field(default_factory=list, description="Triggered rules")
    reasoning: str = Field(description="Rule explanations")
    decision_snapshot: dict = Field(default_factory=dict, description="Frozen rules and evidence")

    model_config = ConfigDict(from_attributes=True)


class ActionResponse(BaseResponse):
    """Remediation action."""

    object_type: str
    object_id: str
    assessment_id: UUID | None
    rule_id: UUID
    rule_code: str
    action_type: str
    severity: str
    description: str | None
    status: ActionStatus
    assigned_to: str | None

    model_config = ConfigDict(from_attributes=True)


class BatchScanResponse(BaseModel):
    total: int = Field(description="Entities requested")
    processed: int = Field(description="Entities assessed")
    compliant: int = Field(description="Compliant entities")
    non_compliant: int = Field(description="Non-compliant entities")
    errors: list[dict[str, str]] = Field(default_factory=list, description="Per-entity failures")
