"""
Evidence models: declaration packages and their source documents.

An EvidencePackage is one claim about PFAS in an object (article, material,
supplier). It is created on submission (manual form, AI extraction, or lab
import), mutated only by the review workflow, and never deleted: approved
packages leave the active set by being superseded or expiring.

An EvidenceDocument is a file attached to exactly one package. It carries
the SHA-256 of the file content for tamper evidence, and a page map that
ties every AI-extracted field to the page it came from.
"""

import hashlib
import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pfas_compliance.db.base import (
    Base,
    JSONType,
    TenantMixin,
    TimestampMixin,
    UUIDMixin,
    enum_column,
)
from pfas_compliance.db.enums import (
    ClaimStatus,
    EvidenceSourceType,
    IntentionallyAdded,
    QualityGrade,
    ReviewStatus,
)


class EvidencePackage(UUIDMixin, TenantMixin, TimestampMixin, Base):
    """
    A PFAS declaration for one object, with grading and review state.

    Attributes:
        object_type / object_id: The article, material or supplier assessed
        claim_status: present / not_present / unknown / inconclusive
        intentionally_added: yes / no / unknown
        threshold_definition: Free-text threshold the declaration refers to
        threshold_numeric_ppm: Numeric threshold in ppm, when stated
        valid_from / valid_to: Validity window of the declaration
        signatory: {name, role, organization}
        source_type: Where the evidence came from (drives quality_grade)
        quality_grade: A-D, assigned at creation and never re-inferred
        confidence_score: 0-100
        review_status: See ReviewStatus for the state machine
        submitted_by / reviewed_by / reviewed_at: Four-eyes audit fields
        superseded_by_id: The package that replaced this one

    Example:
        package = EvidencePackage(
            tenant_id="acme",
            object_type="Material",
            object_id="mat-001",
            claim_status=ClaimStatus.PRESENT,
            source_type=EvidenceSourceType.SUPPLIER_DECLARATION,
            quality_grade=QualityGrade.B,
            confidence_score=75,
            review_status=ReviewStatus.SUBMITTED,
            submitted_by="supplier@example.com",
        )
    """

    object_type: Mapped[str] = mapped_column(String(50), nullable=False)
    object_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # === Claim ===
    claim_status: Mapped[ClaimStatus] = mapped_column(
        enum_column(ClaimStatus),
        nullable=False,
        default=ClaimStatus.UNKNOWN,
    )
    intentionally_added: Mapped[IntentionallyAdded] = mapped_column(
        enum_column(IntentionallyAdded),
        nullable=False,
        default=IntentionallyAdded.UNKNOWN,
    )
    threshold_definition: Mapped[str | None] = mapped_column(Text, nullable=True)
    threshold_numeric_ppm: Mapped[float | None] = mapped_column(Float, nullable=True)
    valid_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    valid_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    signatory: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    # === Grading ===
    source_type: Mapped[EvidenceSourceType] = mapped_column(
        enum_column(EvidenceSourceType),
        nullable=False,
    )
    quality_grade: Mapped[QualityGrade] = mapped_column(
        enum_column(QualityGrade, length=1),
        nullable=False,
    )
    confidence_score: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="0-100",
    )

    # === Review ===
    review_status: Mapped[ReviewStatus] = mapped_column(
        enum_column(ReviewStatus),
        nullable=False,
        default=ReviewStatus.DRAFT,
    )
    submitted_by: Mapped[str] = mapped_column(String(255), nullable=False)
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    superseded_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("evidence_packages.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<EvidencePackage(object={self.object_type}:{self.object_id}, "
            f"grade={self.quality_grade.value}, status={self.review_status.value})>"
        )

    @property
    def is_active(self) -> bool:
        """Approved packages are the only ones that count as evidence."""
        return self.review_status == ReviewStatus.APPROVED


class EvidenceDocument(UUIDMixin, TenantMixin, TimestampMixin, Base):
    """
    A source file attached to an evidence package.

    `page_map` maps each extracted field (or "substance:<CAS>") to the page
    it was cited from; `extraction_metadata` records the prompt version, model
    version and confidence of the AI extraction that populated the package.
    """

    package_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("evidence_packages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    file_hash_sha256: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="SHA-256 of the file content (tamper evidence)",
    )
    doc_type: Mapped[str] = mapped_column(String(50), nullable=False, default="declaration")
    page_map: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    extraction_metadata: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    uploaded_by: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<EvidenceDocument(file={self.file_name!r}, package={self.package_id})>"

    @staticmethod
    def compute_hash(content: bytes) -> str:
        """
        Compute the SHA-256 of file content.

        Args:
            content: Raw file bytes

        Returns:
            64-character hex string
        """
        return hashlib.sha256(content).hexdigest()


# === Indexes ===
# Current assessment inputs and supersession lookups
Index(
    "ix_evidence_packages_object",
    EvidencePackage.tenant_id,
    EvidencePackage.object_type,
    EvidencePackage.object_id,
)

# Review queue
Index("ix_evidence_packages_review_status", EvidencePackage.tenant_id, EvidencePackage.review_status)
