"""
Evidence pipeline and review state machine.

Intake creates an EvidencePackage, its EvidenceDocuments and one
UNDER_REVIEW MaterialComposition row per declared substance. The quality
grade is fixed at creation from the source type and never re-inferred:

    lab_test             -> A  approved at creation when confidence is high enough
    supplier_declaration -> B  submitted, needs a second-person decision
    ai_extraction        -> C  submitted only when confident and fully cited
    other                -> D  submitted, needs a second-person decision

Approval is one unit of work: the package becomes APPROVED, earlier approved
packages for the same object are SUPERSEDED and their rows EXPIRED, older
CURRENT rows for the same (material, substance) are EXPIRED, and this
package's rows become CURRENT. Only then is the orchestrator called, inline,
so the rule engine never sees stale evidence.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pfas_compliance.core.config import settings
from pfas_compliance.core.context import RequestContext
from pfas_compliance.core.logging import get_logger
from pfas_compliance.db.base import utcnow
from pfas_compliance.db.enums import (
    ClaimStatus,
    CompositionStatus,
    EvidenceSourceType,
    IntentionallyAdded,
    QualityGrade,
    ReviewStatus,
)
from pfas_compliance.db.models import (
    AuditAction,
    AuditLog,
    EvidenceDocument,
    EvidencePackage,
    MaterialComposition,
)
from pfas_compliance.db.session import transaction
from pfas_compliance.services.declaration_extraction import DeclarationExtractor, ExtractedDeclaration
from pfas_compliance.services.errors import EntityNotFoundError, InvalidTransitionError, ReviewPolicyError
from pfas_compliance.services.llm_client import get_llm_client
from pfas_compliance.services.orchestrator import (
    AssessmentRequest,
    ComplianceOrchestrator,
    OrchestrationResult,
)
from pfas_compliance.services.substance_verification import normalize_cas_number

logger = get_logger(__name__)

# Package columns a human may fill in while completing a draft
DRAFT_FIELDS = (
    "claim_status",
    "intentionally_added",
    "threshold_definition",
    "threshold_numeric_ppm",
    "valid_from",
    "valid_to",
    "signatory",
)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class DeclaredSubstance:
    """One substance line of a declaration."""

    name: str | None = None
    cas_number: str | None = None
    concentration_ppm: float | None = None


@dataclass
class DocumentUpload:
    """A file attached at intake. `content` is hashed when supplied."""

    file_name: str
    content: bytes | None = None
    file_url: str | None = None
    doc_type: str = "declaration"
    page_map: dict[str, int] = field(default_factory=dict)


@dataclass
class DeclarationSubmission:
    """Validated manual or lab intake."""

    object_type: str
    object_id: str
    source_type: EvidenceSourceType
    claim_status: ClaimStatus = ClaimStatus.UNKNOWN
    intentionally_added: IntentionallyAdded = IntentionallyAdded.UNKNOWN
    threshold_definition: str | None = None
    threshold_numeric_ppm: float | None = None
    valid_from: date | None = None
    valid_to: date | None = None
    signatory: dict[str, Any] = field(default_factory=dict)
    confidence_score: int = 0
    substances: list[DeclaredSubstance] = field(default_factory=list)
    documents: list[DocumentUpload] = field(default_factory=list)


@dataclass
class IngestResult:
    """Outcome of AI-assisted intake."""

    package: EvidencePackage
    document: EvidenceDocument
    declaration: ExtractedDeclaration

    @property
    def auto_submitted(self) -> bool:
        return self.package.review_status == ReviewStatus.SUBMITTED


@dataclass
class ReviewDecision:
    """A review decision and, for approvals, the reassessment it caused."""

    package: EvidencePackage
    orchestration: OrchestrationResult | None = None


@dataclass
class ExpiryResult:
    """What `expire_lapsed` changed."""

    expired_package_ids: list[uuid.UUID] = field(default_factory=list)
    reassessed: list[str] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)


def _parse_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning("Ignoring unparseable date", value=value)
        return None


def _dedupe_substances(substances: list[DeclaredSubstance]) -> list[DeclaredSubstance]:
    """One line per CAS (highest concentration kept); lines without CAS are kept as is."""
    by_cas: dict[str, DeclaredSubstance] = {}
    result: list[DeclaredSubstance] = []
    for substance in substances:
        if substance.cas_number is None:
            result.append(substance)
            continue
        cas_number = normalize_cas_number(substance.cas_number)
        line = DeclaredSubstance(substance.name, cas_number, substance.concentration_ppm)
        current = by_cas.get(cas_number)
        if current is None:
            by_cas[cas_number] = line
            result.append(line)
        elif (line.concentration_ppm or 0.0) > (current.concentration_ppm or 0.0):
            current.concentration_ppm = line.concentration_ppm
    return result


# =============================================================================
# Pipeline
# =============================================================================


class EvidencePipeline:
    """
    Intake and review of evidence packages.

    Every operation is its own unit of work and commits on success.

    Usage:
        pipeline = EvidencePipeline(db)
        package = await pipeline.submit_declaration(ctx, submission)
        decision = await pipeline.approve(reviewer_ctx, package.id, notes="Checked")
    """

    def __init__(
        self,
        session: AsyncSession,
        orchestrator: ComplianceOrchestrator | None = None,
        extractor: DeclarationExtractor | None = None,
    ):
        self.session = session
        self.orchestrator = orchestrator or ComplianceOrchestrator(session)
        self.extractor = extractor

    # =========================================================================
    # Intake
    # =========================================================================

    async def submit_declaration(self, ctx: RequestContext, submission: DeclarationSubmission) -> EvidencePackage:
        """
        Manual or lab intake.

        Grade A evidence at or above `lab_auto_approve_confidence` is approved
        immediately (with the full approval side effects); everything else
        enters the review queue as SUBMITTED.
        """
        grade = submission.source_type.quality_grade
        substances = _dedupe_substances(submission.substances)

        async with transaction(self.session):
            package = EvidencePackage(
                tenant_id=ctx.tenant_id,
                object_type=submission.object_type,
                object_id=submission.object_id,
                claim_status=submission.claim_status,
                intentionally_added=submission.intentionally_added,
                threshold_definition=submission.threshold_definition,
                threshold_numeric_ppm=submission.threshold_numeric_ppm,
                valid_from=submission.valid_from,
                valid_to=submission.valid_to,
                signatory=dict(submission.signatory or {}),
                source_type=submission.source_type,
                quality_grade=grade,
                confidence_score=submission.confidence_score,
                review_status=ReviewStatus.SUBMITTED,
                submitted_by=ctx.actor,
            )
            self.session.add(package)
            await self.session.flush()

            for upload in submission.documents:
                self.session.add(self._document(ctx, package, upload))
            self._add_compositions(ctx, package, substances)
            await self.session.flush()

        logger.info(
            "Declaration submitted",
            package_id=str(package.id),
            object_type=package.object_type,
            object_id=package.object_id,
            grade=grade.value,
            substances=len(substances),
        )

        if grade == QualityGrade.A and submission.confidence_score >= settings.lab_auto_approve_confidence:
            decision = await self.approve(
                ctx.as_system(),
                package.id,
                notes=f"Auto-approved lab result (confidence {submission.confidence_score})",
            )
            return decision.package
        return package

    async def ingest_document(
        self,
        ctx: RequestContext,
        object_type: str,
        object_id: str,
        content: bytes,
        file_name: str,
        mime_type: str,
        file_url: str | None = None,
    ) -> IngestResult:
        """
        AI-assisted intake through the extraction collaborator.

        The package is graded C. It is SUBMITTED only when the extraction is
        confident (above `extraction_auto_submit_confidence`) and every fact
        carries a page citation; otherwise it stays a DRAFT for a human to
        complete.
        """
        if self.extractor is not None:
            declaration = await self.extractor.extract(content, file_name, mime_type)
        else:
            async with get_llm_client() as llm:
                declaration = await DeclarationExtractor(llm).extract(content, file_name, mime_type)

        confident = declaration.confidence_score > settings.extraction_auto_submit_confidence
        status = ReviewStatus.SUBMITTED if confident and declaration.fully_cited else ReviewStatus.DRAFT
        fields = declaration.fields

        async with transaction(self.session):
            package = EvidencePackage(
                tenant_id=ctx.tenant_id,
                object_type=object_type,
                object_id=object_id,
                claim_status=ClaimStatus.from_string(fields.get("claim_status")),
                intentionally_added=IntentionallyAdded.from_string(fields.get("intentionally_added")),
                threshold_definition=fields.get("threshold_definition"),
                threshold_numeric_ppm=fields.get("threshold_numeric_ppm"),
                valid_from=_parse_date(fields.get("valid_from")),
                valid_to=_parse_date(fields.get("valid_to")),
                signatory=dict(fields.get("signatory") or {}),
                source_type=EvidenceSourceType.AI_EXTRACTION,
                quality_grade=EvidenceSourceType.AI_EXTRACTION.quality_grade,
                confidence_score=round(declaration.confidence_score * 100),
                review_status=status,
                submitted_by=ctx.actor,
            )
            self.session.add(package)
            await self.session.flush()

            document = EvidenceDocument(
                tenant_id=ctx.tenant_id,
                package_id=package.id,
                file_name=file_name,
                file_url=file_url,
                file_hash_sha256=EvidenceDocument.compute_hash(content),
                doc_type="declaration",
                page_map=declaration.page_map(),
                extraction_metadata={
                    "prompt_version": declaration.prompt_version,
                    "model_version": declaration.model_version,
                    "confidence_score": declaration.confidence_score,
                    "uncited_facts": declaration.uncited_facts,
                },
                uploaded_by=ctx.actor,
            )
            self.session.add(document)
            self._add_compositions(
                ctx,
                package,
                _dedupe_substances(
                    [
                        DeclaredSubstance(s.name, s.cas_number, s.concentration_ppm)
                        for s in declaration.substances
                    ]
                ),
            )
            await self.session.flush()

        logger.info(
            "Document ingested",
            package_id=str(package.id),
            file_name=file_name,
            status=status.value,
            confidence=declaration.confidence_score,
            uncited=len(declaration.uncited_facts),
        )
        return IngestResult(package=package, document=document, declaration=declaration)

    async def complete_draft(
        self,
        ctx: RequestContext,
        package_id: uuid.UUID,
        updates: dict[str, Any] | None = None,
        substances: list[DeclaredSubstance] | None = None,
    ) -> EvidencePackage:
        """
        A human confirms (and optionally corrects) a draft, submitting it.

        The confirming user becomes the submitter, so a different person must
        decide the package. Replacing `substances` expires the draft's rows.
        """
        updates = dict(updates or {})
        unknown = set(updates) - set(DRAFT_FIELDS)
        if unknown:
            raise ValueError(f"Cannot change package fields: {', '.join(sorted(unknown))}")

        package = await self.get_package(ctx, package_id)
        self._transition(package, ReviewStatus.SUBMITTED)

        async with transaction(self.session):
            for name, value in updates.items():
                if name == "claim_status" and not isinstance(value, ClaimStatus):
                    value = ClaimStatus.from_string(value)
                elif name == "intentionally_added" and not isinstance(value, IntentionallyAdded):
                    value = IntentionallyAdded.from_string(value)
                elif name in ("valid_from", "valid_to"):
                    value = _parse_date(value)
                elif name == "signatory":
                    value = dict(value or {})
                setattr(package, name, value)

            if substances is not None:
                for row in await self.package_compositions(ctx, package.id):
                    row.status = CompositionStatus.EXPIRED
                await self.session.flush()
                self._add_compositions(ctx, package, _dedupe_substances(substances))

            package.submitted_by = ctx.actor
            await self.session.flush()

        logger.info("Draft completed", package_id=str(package.id), actor=ctx.actor)
        return package

    # =========================================================================
    # Review
    # =========================================================================

    async def start_review(self, ctx: RequestContext, package_id: uuid.UUID) -> EvidencePackage:
        package = await self.get_package(ctx, package_id)
        if package.review_status == ReviewStatus.DRAFT:
            raise ReviewPolicyError("Draft packages must be completed and submitted before review")
        self._transition(package, ReviewStatus.UNDER_REVIEW)

        async with transaction(self.session):
            package.reviewed_by = ctx.actor
            await self.session.flush()

        logger.info("Review started", package_id=str(package.id), reviewer=ctx.actor)
        return package

    async def approve(
        self,
        ctx: RequestContext,
        package_id: uuid.UUID,
        notes: str | None = None,
    ) -> ReviewDecision:
        """
        Approve a package and reassess its object.

        Raises:
            EntityNotFoundError: Unknown package
            ReviewPolicyError: Draft package, or submitter deciding own B/C/D evidence
            InvalidTransitionError: Package is not awaiting a decision
        """
        package = await self.get_package(ctx, package_id)
        self._check_decision_policy(ctx, package)
        old_data = package.to_dict()
        self._transition(package, ReviewStatus.APPROVED)

        async with transaction(self.session):
            package.reviewed_by = ctx.actor
            package.reviewed_at = utcnow()
            package.review_notes = notes

            superseded = await self._supersede_previous(ctx, package)
            rows = await self.package_compositions(ctx, package.id)
            await self._expire_overlapping_rows(ctx, package, rows)
            # Older rows must be expired before these become current
            await self.session.flush()
            for row in rows:
                row.status = CompositionStatus.CURRENT

            self.session.add(
                AuditLog.record(
                    ctx,
                    AuditAction.APPROVE,
                    table_name="evidence_packages",
                    record_id=package.id,
                    old_data=old_data,
                    new_data=package.to_dict(),
                    reason=notes,
                )
            )
            await self.session.flush()

        logger.info(
            "Evidence approved",
            package_id=str(package.id),
            reviewer=ctx.actor,
            grade=package.quality_grade.value,
            compositions=len(rows),
            superseded=len(superseded),
        )

        orchestration = await self.orchestrator.create_or_update_assessment(
            ctx,
            AssessmentRequest(
                object_type=package.object_type,
                object_id=package.object_id,
                evidence_package_ids=[package.id],
                source="evidence_review",
                verification_method=f"grade_{package.quality_grade.value}",
            ),
        )
        return ReviewDecision(package=package, orchestration=orchestration)

    async def reject(self, ctx: RequestContext, package_id: uuid.UUID, reason: str) -> ReviewDecision:
        """Reject a package; its rows are expired and never count as evidence."""
        if not reason or not reason.strip():
            raise ReviewPolicyError("A rejection reason is required")

        package = await self.get_package(ctx, package_id)
        self._check_decision_policy(ctx, package)
        old_data = package.to_dict()
        self._transition(package, ReviewStatus.REJECTED)

        async with transaction(self.session):
            package.reviewed_by = ctx.actor
            package.reviewed_at = utcnow()
            package.rejection_reason = reason
            for row in await self.package_compositions(ctx, package.id):
                row.status = CompositionStatus.EXPIRED

            self.session.add(
                AuditLog.record(
                    ctx,
                    AuditAction.REJECT,
                    table_name="evidence_packages",
                    record_id=package.id,
                    old_data=old_data,
                    new_data=package.to_dict(),
                    reason=reason,
                )
            )
            await self.session.flush()

        logger.info("Evidence rejected", package_id=str(package.id), reviewer=ctx.actor)
        return ReviewDecision(package=package)

    async def tenants_with_lapsed_evidence(self, today: date | None = None) -> list[str]:
        """Tenants holding approved packages past their validity. Used by the scheduled sweep."""
        today = today or utcnow().date()
        rows = await self.session.execute(
            select(EvidencePackage.tenant_id)
            .where(
                EvidencePackage.review_status == ReviewStatus.APPROVED,
                EvidencePackage.valid_to.is_not(None),
                EvidencePackage.valid_to < today,
            )
            .distinct()
            .order_by(EvidencePackage.tenant_id)
        )
        return list(rows.scalars().all())

    async def expire_lapsed(self, ctx: RequestContext, today: date | None = None) -> ExpiryResult:
        """
        Expire approved packages whose validity ended, then reassess their objects.

        A failed reassessment is recorded and does not stop the others.
        """
        today = today or utcnow().date()
        result = ExpiryResult()

        lapsed = (
            await self.session.execute(
                select(EvidencePackage).where(
                    EvidencePackage.tenant_id == ctx.tenant_id,
                    EvidencePackage.review_status == ReviewStatus.APPROVED,
                    EvidencePackage.valid_to.is_not(None),
                    EvidencePackage.valid_to < today,
                )
            )
        ).scalars().all()
        if not lapsed:
            return result

        objects: list[tuple[str, str]] = []
        async with transaction(self.session):
            for package in lapsed:
                self._transition(package, ReviewStatus.EXPIRED)
                for row in await self.package_compositions(ctx, package.id):
                    row.status = CompositionStatus.EXPIRED
                self.session.add(
                    AuditLog.record(
                        ctx,
                        AuditAction.EXPIRE,
                        table_name="evidence_packages",
                        record_id=package.id,
                        new_data={"valid_to": package.valid_to.isoformat()},
                        reason=f"Validity ended {package.valid_to.isoformat()}",
                    )
                )
                result.expired_package_ids.append(package.id)
                key = (package.object_type, package.object_id)
                if key not in objects:
                    objects.append(key)
            await self.session.flush()

        logger.info("Lapsed evidence expired", tenant_id=ctx.tenant_id, packages=len(lapsed), objects=len(objects))

        for object_type, object_id in objects:
            try:
                await self.orchestrator.create_or_update_assessment(
                    ctx,
                    AssessmentRequest(object_type=object_type, object_id=object_id, source="evidence_expiry"),
                )
            except Exception as e:
                await self.session.rollback()
                logger.error(
                    "Reassessment after expiry failed",
                    object_type=object_type,
                    object_id=object_id,
                    error=str(e),
                )
                result.errors.append({"object_type": object_type, "object_id": object_id, "error": str(e)})
                continue
            result.reassessed.append(f"{object_type}:{object_id}")
        return result

    # =========================================================================
    # Queries
    # =========================================================================

    async def review_queue(
        self,
        ctx: RequestContext,
        object_type: str | None = None,
        object_id: str | None = None,
    ) -> list[EvidencePackage]:
        """Packages awaiting a decision, oldest first."""
        query = select(EvidencePackage).where(
            EvidencePackage.tenant_id == ctx.tenant_id,
            EvidencePackage.review_status.in_([s for s in ReviewStatus if s.is_pending_review]),
        )
        if object_type:
            query = query.where(EvidencePackage.object_type == object_type)
        if object_id:
            query = query.where(EvidencePackage.object_id == object_id)
        query = query.order_by(EvidencePackage.created_at, EvidencePackage.id)
        return list((await self.session.execute(query)).scalars().all())

    async def get_package(self, ctx: RequestContext, package_id: uuid.UUID) -> EvidencePackage:
        package = (
            await self.session.execute(
                select(EvidencePackage).where(
                    EvidencePackage.tenant_id == ctx.tenant_id,
                    EvidencePackage.id == package_id,
                )
            )
        ).scalar_one_or_none()
        if package is None:
            raise EntityNotFoundError("EvidencePackage", package_id)
        return package

    async def package_documents(self, ctx: RequestContext, package_id: uuid.UUID) -> list[EvidenceDocument]:
        result = await self.session.execute(
            select(EvidenceDocument)
            .where(EvidenceDocument.tenant_id == ctx.tenant_id, EvidenceDocument.package_id == package_id)
            .order_by(EvidenceDocument.created_at)
        )
        return list(result.scalars().all())

    async def package_compositions(
        self, ctx: RequestContext, package_id: uuid.UUID
    ) -> list[MaterialComposition]:
        """Non-expired rows sourced from a package."""
        result = await self.session.execute(
            select(MaterialComposition).where(
                MaterialComposition.tenant_id == ctx.tenant_id,
                MaterialComposition.source_document_id == package_id,
                MaterialComposition.status != CompositionStatus.EXPIRED,
            )
        )
        return list(result.scalars().all())

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _transition(package: EvidencePackage, target: ReviewStatus) -> None:
        if not package.review_status.can_transition_to(target):
            raise InvalidTransitionError("EvidencePackage", package.review_status.value, target.value)
        package.review_status = target

    @staticmethod
    def _check_decision_policy(ctx: RequestContext, package: EvidencePackage) -> None:
        if package.review_status == ReviewStatus.DRAFT:
            raise ReviewPolicyError("Draft packages must be completed and submitted before review")
        if package.quality_grade.requires_second_person and ctx.actor == package.submitted_by:
            raise ReviewPolicyError(
                f"Grade {package.quality_grade.value} evidence must be decided by someone other than the submitter"
            )

    def _document(self, ctx: RequestContext, package: EvidencePackage, upload: DocumentUpload) -> EvidenceDocument:
        return EvidenceDocument(
            tenant_id=ctx.tenant_id,
            package_id=package.id,
            file_name=upload.file_name,
            file_url=upload.file_url,
            file_hash_sha256=EvidenceDocument.compute_hash(upload.content) if upload.content is not None else None,
            doc_type=upload.doc_type,
            page_map=dict(upload.page_map),
            extraction_metadata={},
            uploaded_by=ctx.actor,
        )

    def _add_compositions(
        self,
        ctx: RequestContext,
        package: EvidencePackage,
        substances: list[DeclaredSubstance],
    ) -> None:
        for substance in substances:
            self.session.add(
                MaterialComposition(
                    tenant_id=ctx.tenant_id,
                    material_id=package.object_id,
                    material_type=package.object_type,
                    substance_cas=substance.cas_number,
                    substance_name=substance.name,
                    typical_concentration=substance.concentration_ppm,
                    unit_basis="ppm",
                    source_type=package.source_type.composition_source,
                    confidence_score=package.confidence_score / 100.0,
                    source_document_id=package.id,
                    status=CompositionStatus.UNDER_REVIEW,
                    valid_until=package.valid_to,
                )
            )

    async def _supersede_previous(self, ctx: RequestContext, package: EvidencePackage) -> list[EvidencePackage]:
        """Earlier approved packages for the same object leave the active set."""
        previous = (
            await self.session.execute(
                select(EvidencePackage).where(
                    EvidencePackage.tenant_id == ctx.tenant_id,
                    EvidencePackage.object_type == package.object_type,
                    EvidencePackage.object_id == package.object_id,
                    EvidencePackage.review_status == ReviewStatus.APPROVED,
                    EvidencePackage.id != package.id,
                )
            )
        ).scalars().all()

        for old in previous:
            self._transition(old, ReviewStatus.SUPERSEDED)
            old.superseded_by_id = package.id
            for row in await self.package_compositions(ctx, old.id):
                row.status = CompositionStatus.EXPIRED
            self.session.add(
                AuditLog.record(
                    ctx,
                    AuditAction.SUPERSEDE,
                    table_name="evidence_packages",
                    record_id=old.id,
                    new_data={"superseded_by_id": str(package.id)},
                    reason=f"Superseded by package {package.id}",
                )
            )
        return list(previous)

    async def _expire_overlapping_rows(
        self,
        ctx: RequestContext,
        package: EvidencePackage,
        rows: list[MaterialComposition],
    ) -> None:
        """Keep one current row per (object type, object id, substance)."""
        cas_numbers = sorted({row.substance_cas for row in rows if row.substance_cas})
        if not cas_numbers:
            return
        overlapping = (
            await self.session.execute(
                select(MaterialComposition).where(
                    MaterialComposition.tenant_id == ctx.tenant_id,
                    MaterialComposition.material_type == package.object_type,
                    MaterialComposition.material_id == package.object_id,
                    MaterialComposition.substance_cas.in_(cas_numbers),
                    MaterialComposition.status == CompositionStatus.CURRENT,
                )
            )
        ).scalars().all()
        for row in overlapping:
            if row.source_document_id != package.id:
                row.status = CompositionStatus.EXPIRED
