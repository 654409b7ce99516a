"""
Compliance verdict models.

ComplianceAssessment is the current verdict for one (tenant, object_type,
object_id); it is upserted in place by the orchestrator. Every jurisdiction
evaluation additionally appends a RuleEvaluation row carrying a frozen
decision snapshot (rules considered, compositions used), which is the
append-only history auditors replay.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pfas_compliance.db.base import (
    Base,
    CreatedAtMixin,
    JSONType,
    TenantMixin,
    TimestampMixin,
    UUIDMixin,
    as_utc,
    enum_column,
    utcnow,
)
from pfas_compliance.db.enums import AssessmentStatus, OverrideStatus


class ComplianceAssessment(UUIDMixin, TenantMixin, TimestampMixin, Base):
    """
    The current compliance verdict for one object.

    Attributes:
        object_type / object_id: Natural key together with tenant_id
        jurisdiction_id / ruleset_id: Optional scope supplied by the caller
        status: Effective status (override status while an override is active)
        computed_status: Verdict produced by the rule engine
        reasoning: Concatenated rule explanations of the latest run
        evidence_package_ids: Linked packages (order-preserving union)
        decision_snapshot: Snapshot of the latest run
        assessed_by / assessed_at / source / verification_method: Provenance
        override_*: Manual override, requiring a second approver to mark compliant
    """

    object_type: Mapped[str] = mapped_column(String(50), nullable=False)
    object_id: Mapped[str] = mapped_column(String(100), nullable=False)

    jurisdiction_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    ruleset_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    status: Mapped[AssessmentStatus] = mapped_column(
        enum_column(AssessmentStatus),
        nullable=False,
        default=AssessmentStatus.UNDER_REVIEW,
    )
    computed_status: Mapped[AssessmentStatus] = mapped_column(
        enum_column(AssessmentStatus),
        nullable=False,
        default=AssessmentStatus.UNDER_REVIEW,
    )
    reasoning: Mapped[str] = mapped_column(Text, nullable=False, default="")

    evidence_package_ids: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    decision_snapshot: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    assessed_by: Mapped[str] = mapped_column(String(255), nullable=False, default="system")
    assessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    source: Mapped[str | None] = mapped_column(String(100), nullable=True)
    verification_method: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # === Override (four-eyes) ===
    override_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    override_status: Mapped[AssessmentStatus | None] = mapped_column(
        enum_column(AssessmentStatus),
        nullable=True,
    )
    override_state: Mapped[OverrideStatus | None] = mapped_column(
        enum_column(OverrideStatus),
        nullable=True,
    )
    override_justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    override_requested_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    override_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    override_expires: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "object_type",
            "object_id",
            name="uq_compliance_assessments_object",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ComplianceAssessment(object={self.object_type}:{self.object_id}, "
            f"status={self.status.value})>"
        )

    def override_in_effect(self, now: datetime | None = None) -> bool:
        """An approved override applies until it expires."""
        if not self.override_applied or self.override_status is None:
            return False
        if self.override_expires is None:
            return True
        return as_utc(self.override_expires) > (now or utcnow())

    def effective_status(self, now: datetime | None = None) -> AssessmentStatus:
        """Status callers should act on: override when active, else computed."""
        if self.override_in_effect(now):
            return self.override_status
        return self.computed_status


class RuleEvaluation(UUIDMixin, TenantMixin, CreatedAtMixin, Base):
    """
    One jurisdiction's evaluation of one assessment. Append-only.

    `decision_snapshot` freezes every rule considered (full column copy,
    including version) and every composition used, so the verdict can be
    replayed after the rules change.
    """

    assessment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("compliance_assessments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    jurisdiction_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    status: Mapped[AssessmentStatus] = mapped_column(enum_column(AssessmentStatus), nullable=False)
    triggered_rule_ids: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False, default="")
    decision_snapshot: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<RuleEvaluation(assessment={self.assessment_id}, status={self.status.value})>"


Index("ix_compliance_assessments_status", ComplianceAssessment.tenant_id, ComplianceAssessment.status)
Index("ix_rule_evaluations_created_at", RuleEvaluation.created_at.desc())
