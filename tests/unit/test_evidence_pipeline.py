"""Unit tests for evidence intake and the review state machine."""

import json
from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pfas_compliance.core.context import SYSTEM_ACTOR, RequestContext
from pfas_compliance.db.enums import (
    AssessmentStatus,
    ClaimStatus,
    CompositionSourceType,
    CompositionStatus,
    EvidenceSourceType,
    QualityGrade,
    ReviewStatus,
)
from pfas_compliance.db.models import AuditAction, AuditLog, MaterialComposition
from pfas_compliance.services import (
    DeclarationSubmission,
    DeclaredSubstance,
    DocumentUpload,
    EntityNotFoundError,
    EvidencePipeline,
    InvalidCASNumberError,
    InvalidTransitionError,
    ReviewPolicyError,
)
from pfas_compliance.services.declaration_extraction import DeclarationExtractor
from pfas_compliance.services.llm_client import MockLLMClient

PFOA = "335-67-1"
PFOS = "1763-23-1"


def declaration(
    source_type: EvidenceSourceType = EvidenceSourceType.SUPPLIER_DECLARATION,
    confidence: int = 80,
    ppm: float = 50,
    object_id: str = "mat-100",
    **kwargs,
) -> DeclarationSubmission:
    return DeclarationSubmission(
        object_type="Material",
        object_id=object_id,
        source_type=source_type,
        claim_status=ClaimStatus.PRESENT,
        confidence_score=confidence,
        valid_to=kwargs.pop("valid_to", date(2030, 12, 31)),
        substances=kwargs.pop("substances", [DeclaredSubstance("Perfluorooctanoic acid", PFOA, ppm)]),
        **kwargs,
    )


async def compositions_of(session: AsyncSession, package_id) -> list[MaterialComposition]:
    result = await session.execute(
        select(MaterialComposition).where(MaterialComposition.source_document_id == package_id)
    )
    return list(result.scalars().all())


class TestSubmission:
    """Tests for manual and lab intake."""

    async def test_supplier_declaration_is_submitted(
        self, pipeline: EvidencePipeline, db_session: AsyncSession, ctx: RequestContext
    ) -> None:
        package = await pipeline.submit_declaration(ctx, declaration())

        assert package.quality_grade == QualityGrade.B
        assert package.review_status == ReviewStatus.SUBMITTED
        assert package.submitted_by == ctx.actor

        rows = await compositions_of(db_session, package.id)
        assert len(rows) == 1
        assert rows[0].status == CompositionStatus.UNDER_REVIEW
        assert rows[0].source_type == CompositionSourceType.SUPPLIER_DECLARATION
        assert rows[0].confidence_score == pytest.approx(0.8)
        assert rows[0].valid_until == date(2030, 12, 31)

        assert [p.id for p in await pipeline.review_queue(ctx)] == [package.id]

    async def test_documents_are_hashed(
        self, pipeline: EvidencePipeline, ctx: RequestContext
    ) -> None:
        package = await pipeline.submit_declaration(
            ctx, declaration(documents=[DocumentUpload(file_name="decl.pdf", content=b"%PDF")])
        )

        (document,) = await pipeline.package_documents(ctx, package.id)
        assert document.file_name == "decl.pdf"
        assert len(document.file_hash_sha256) == 64
        assert document.uploaded_by == ctx.actor

    async def test_duplicate_cas_lines_collapse(
        self, pipeline: EvidencePipeline, db_session: AsyncSession, ctx: RequestContext
    ) -> None:
        package = await pipeline.submit_declaration(
            ctx,
            declaration(
                substances=[
                    DeclaredSubstance("PFOA", PFOA, 10),
                    DeclaredSubstance("PFOA", "335671", 40),
                    DeclaredSubstance("Fluoropolymer", None, 5),
                ]
            ),
        )

        rows = await compositions_of(db_session, package.id)
        by_cas = {row.substance_cas: row.typical_concentration for row in rows}
        assert by_cas == {PFOA: 40, None: 5}

    async def test_invalid_cas_rejects_whole_submission(
        self, pipeline: EvidencePipeline, ctx: RequestContext
    ) -> None:
        with pytest.raises(InvalidCASNumberError):
            await pipeline.submit_declaration(
                ctx, declaration(substances=[DeclaredSubstance("PFOA", "335-67-2", 10)])
            )
        assert await pipeline.review_queue(ctx) == []

    async def test_confident_lab_result_is_auto_approved(
        self, pipeline: EvidencePipeline, db_session: AsyncSession, ctx: RequestContext
    ) -> None:
        package = await pipeline.submit_declaration(
            ctx, declaration(source_type=EvidenceSourceType.LAB_TEST, confidence=95)
        )

        assert package.quality_grade == QualityGrade.A
        assert package.review_status == ReviewStatus.APPROVED
        assert package.reviewed_by == SYSTEM_ACTOR

        rows = await compositions_of(db_session, package.id)
        assert [row.status for row in rows] == [CompositionStatus.CURRENT]
        assert rows[0].source_type == CompositionSourceType.LAB_TEST

        assessment = await pipeline.orchestrator.find_assessment(ctx, "Material", "mat-100")
        assert assessment is not None
        assert str(package.id) in assessment.evidence_package_ids

    async def test_lab_result_below_confidence_waits_for_review(
        self, pipeline: EvidencePipeline, ctx: RequestContext
    ) -> None:
        package = await pipeline.submit_declaration(
            ctx, declaration(source_type=EvidenceSourceType.LAB_TEST, confidence=89)
        )
        assert package.review_status == ReviewStatus.SUBMITTED

        # Grade A needs no second person
        decision = await pipeline.approve(ctx, package.id)
        assert decision.package.review_status == ReviewStatus.APPROVED


class TestReview:
    """Tests for review decisions."""

    async def test_submitter_cannot_approve_own_declaration(
        self, pipeline: EvidencePipeline, ctx: RequestContext
    ) -> None:
        package = await pipeline.submit_declaration(ctx, declaration())

        with pytest.raises(ReviewPolicyError):
            await pipeline.approve(ctx, package.id)
        assert package.review_status == ReviewStatus.SUBMITTED

    async def test_approval_makes_evidence_current_and_reassesses(
        self,
        pipeline: EvidencePipeline,
        db_session: AsyncSession,
        ctx: RequestContext,
        reviewer_ctx: RequestContext,
        make_ruleset,
        critical_pfoa_rule,
    ) -> None:
        await make_ruleset(ctx, rules=[critical_pfoa_rule])
        package = await pipeline.submit_declaration(ctx, declaration(ppm=50))

        decision = await pipeline.approve(reviewer_ctx, package.id, notes="Checked against the lab report")

        assert decision.package.review_status == ReviewStatus.APPROVED
        assert decision.package.reviewed_by == reviewer_ctx.actor
        assert decision.package.review_notes == "Checked against the lab report"
        rows = await compositions_of(db_session, package.id)
        assert [row.status for row in rows] == [CompositionStatus.CURRENT]

        assert decision.orchestration.status == AssessmentStatus.NON_COMPLIANT
        assert decision.orchestration.assessment.verification_method == "grade_B"

        audit = (await db_session.execute(select(AuditLog).where(AuditLog.record_id == package.id))).scalars().all()
        assert [entry.action for entry in audit] == [AuditAction.APPROVE]
        assert audit[0].actor == reviewer_ctx.actor

    async def test_new_approval_supersedes_previous_package(
        self,
        pipeline: EvidencePipeline,
        db_session: AsyncSession,
        ctx: RequestContext,
        reviewer_ctx: RequestContext,
    ) -> None:
        first = await pipeline.submit_declaration(ctx, declaration(ppm=50))
        await pipeline.approve(reviewer_ctx, first.id)
        second = await pipeline.submit_declaration(ctx, declaration(ppm=10))
        await pipeline.approve(reviewer_ctx, second.id)

        assert first.review_status == ReviewStatus.SUPERSEDED
        assert second.is_active and not first.is_active
        assert first.superseded_by_id == second.id
        assert [row.status for row in await compositions_of(db_session, first.id)] == [CompositionStatus.EXPIRED]

        current = await pipeline.orchestrator.load_current_compositions(ctx, "Material", "mat-100")
        assert [(row.substance_cas, row.typical_concentration) for row in current] == [(PFOA, 10)]

    async def test_start_review_then_decide(
        self, pipeline: EvidencePipeline, ctx: RequestContext, reviewer_ctx: RequestContext
    ) -> None:
        package = await pipeline.submit_declaration(ctx, declaration())

        package = await pipeline.start_review(reviewer_ctx, package.id)
        assert package.review_status == ReviewStatus.UNDER_REVIEW
        assert package.reviewed_by == reviewer_ctx.actor

        decision = await pipeline.reject(reviewer_ctx, package.id, reason="Unsigned declaration")
        assert decision.package.review_status == ReviewStatus.REJECTED

    async def test_rejection_expires_rows(
        self,
        pipeline: EvidencePipeline,
        db_session: AsyncSession,
        ctx: RequestContext,
        reviewer_ctx: RequestContext,
    ) -> None:
        package = await pipeline.submit_declaration(ctx, declaration())

        decision = await pipeline.reject(reviewer_ctx, package.id, reason="Concentrations are not plausible")

        assert decision.package.rejection_reason == "Concentrations are not plausible"
        assert decision.orchestration is None
        assert [row.status for row in await compositions_of(db_session, package.id)] == [CompositionStatus.EXPIRED]
        assert await pipeline.review_queue(ctx) == []

    async def test_rejection_requires_reason(
        self, pipeline: EvidencePipeline, ctx: RequestContext, reviewer_ctx: RequestContext
    ) -> None:
        package = await pipeline.submit_declaration(ctx, declaration())
        with pytest.raises(ReviewPolicyError):
            await pipeline.reject(reviewer_ctx, package.id, reason="  ")

    async def test_decided_package_cannot_be_decided_again(
        self, pipeline: EvidencePipeline, ctx: RequestContext, reviewer_ctx: RequestContext
    ) -> None:
        package = await pipeline.submit_declaration(ctx, declaration())
        await pipeline.approve(reviewer_ctx, package.id)

        with pytest.raises(InvalidTransitionError):
            await pipeline.reject(reviewer_ctx, package.id, reason="Changed my mind")
        with pytest.raises(InvalidTransitionError):
            await pipeline.start_review(reviewer_ctx, package.id)

    async def test_other_tenant_cannot_see_package(
        self, pipeline: EvidencePipeline, ctx: RequestContext, other_tenant_ctx: RequestContext
    ) -> None:
        package = await pipeline.submit_declaration(ctx, declaration())
        with pytest.raises(EntityNotFoundError):
            await pipeline.approve(other_tenant_ctx, package.id)

    async def test_approval_leaves_other_object_type_rows_current(
        self,
        pipeline: EvidencePipeline,
        db_session: AsyncSession,
        ctx: RequestContext,
        reviewer_ctx: RequestContext,
    ) -> None:
        product_row = MaterialComposition(
            tenant_id=ctx.tenant_id,
            material_id="mat-100",
            material_type="Product",
            substance_cas=PFOA,
            substance_name="Perfluorooctanoic acid",
            typical_concentration=10,
            source_type=CompositionSourceType.LAB_TEST,
            status=CompositionStatus.CURRENT,
        )
        db_session.add(product_row)
        await db_session.commit()
        package = await pipeline.submit_declaration(ctx, declaration(object_id="mat-100"))

        await pipeline.approve(reviewer_ctx, package.id)

        await db_session.refresh(product_row)
        assert product_row.status == CompositionStatus.CURRENT
        assert [row.status for row in await compositions_of(db_session, package.id)] == [CompositionStatus.CURRENT]


class TestDocumentIngestion:
    """Tests for AI-assisted intake."""

    @pytest.fixture
    def ingesting_pipeline(self, db_session: AsyncSession, orchestrator, mock_llm: MockLLMClient) -> EvidencePipeline:
        return EvidencePipeline(db_session, orchestrator=orchestrator, extractor=DeclarationExtractor(mock_llm))

    async def test_partially_cited_extraction_stays_draft(
        self, ingesting_pipeline: EvidencePipeline, db_session: AsyncSession, ctx: RequestContext
    ) -> None:
        result = await ingesting_pipeline.ingest_document(
            ctx, "Material", "mat-200", b"%PDF-1.7", "decl.pdf", "application/pdf"
        )

        package = result.package
        assert package.review_status == ReviewStatus.DRAFT
        assert not result.auto_submitted
        assert package.quality_grade == QualityGrade.C
        assert package.confidence_score == 92
        assert package.valid_to == date(2026, 12, 31)

        assert result.document.page_map["substance:335-67-1"] == 2
        assert "valid_to" in result.document.extraction_metadata["uncited_facts"]

        rows = await compositions_of(db_session, package.id)
        assert rows[0].source_type == CompositionSourceType.AI_INFERRED

    async def test_confident_cited_extraction_is_submitted(
        self, ingesting_pipeline: EvidencePipeline, mock_llm: MockLLMClient, ctx: RequestContext
    ) -> None:
        mock_llm.set_responses(
            [
                json.dumps(
                    {
                        "claim_status": "not_present",
                        "substances": [],
                        "page_citations": {"claim_status": 1},
                        "confidence_score": 0.95,
                    }
                )
            ]
        )

        result = await ingesting_pipeline.ingest_document(
            ctx, "Material", "mat-200", b"PFAS free", "decl.txt", "text/plain"
        )

        assert result.auto_submitted
        assert result.package.claim_status == ClaimStatus.NOT_PRESENT

    async def test_draft_cannot_be_decided(
        self, ingesting_pipeline: EvidencePipeline, ctx: RequestContext, reviewer_ctx: RequestContext
    ) -> None:
        result = await ingesting_pipeline.ingest_document(
            ctx, "Material", "mat-200", b"%PDF", "decl.pdf", "application/pdf"
        )

        with pytest.raises(ReviewPolicyError):
            await ingesting_pipeline.approve(reviewer_ctx, result.package.id)
        with pytest.raises(ReviewPolicyError):
            await ingesting_pipeline.start_review(reviewer_ctx, result.package.id)

    async def test_completed_draft_needs_another_reviewer(
        self,
        ingesting_pipeline: EvidencePipeline,
        db_session: AsyncSession,
        ctx: RequestContext,
        reviewer_ctx: RequestContext,
    ) -> None:
        result = await ingesting_pipeline.ingest_document(
            ctx, "Material", "mat-200", b"%PDF", "decl.pdf", "application/pdf"
        )
        draft_id = result.package.id

        package = await ingesting_pipeline.complete_draft(
            reviewer_ctx,
            draft_id,
            updates={"valid_to": "2027-06-30"},
            substances=[DeclaredSubstance("PFOA", PFOA, 12), DeclaredSubstance("PFOS", PFOS, 3)],
        )

        assert package.review_status == ReviewStatus.SUBMITTED
        assert package.submitted_by == reviewer_ctx.actor
        assert package.valid_to == date(2027, 6, 30)

        rows = await compositions_of(db_session, draft_id)
        live = sorted(
            (row.substance_cas, row.typical_concentration)
            for row in rows
            if row.status != CompositionStatus.EXPIRED
        )
        assert live == [(PFOS, 3), (PFOA, 12)]

        with pytest.raises(ReviewPolicyError):
            await ingesting_pipeline.approve(reviewer_ctx, draft_id)
        decision = await ingesting_pipeline.approve(ctx, draft_id)
        assert decision.package.review_status == ReviewStatus.APPROVED

    async def test_complete_draft_rejects_unknown_fields(
        self, ingesting_pipeline: EvidencePipeline, ctx: RequestContext, reviewer_ctx: RequestContext
    ) -> None:
        result = await ingesting_pipeline.ingest_document(
            ctx, "Material", "mat-200", b"%PDF", "decl.pdf", "application/pdf"
        )
        with pytest.raises(ValueError, match="quality_grade"):
            await ingesting_pipeline.complete_draft(reviewer_ctx, result.package.id, updates={"quality_grade": "A"})

    async def test_only_drafts_can_be_completed(
        self, pipeline: EvidencePipeline, ctx: RequestContext, reviewer_ctx: RequestContext
    ) -> None:
        package = await pipeline.submit_declaration(ctx, declaration())
        with pytest.raises(InvalidTransitionError):
            await pipeline.complete_draft(reviewer_ctx, package.id)


class TestExpiry:
    async def test_lapsed_packages_expire_and_reassess(
        self,
        pipeline: EvidencePipeline,
        db_session: AsyncSession,
        ctx: RequestContext,
        reviewer_ctx: RequestContext,
        make_ruleset,
        critical_pfoa_rule,
    ) -> None:
        await make_ruleset(ctx, rules=[critical_pfoa_rule])
        lapsed = await pipeline.submit_declaration(ctx, declaration(valid_to=date(2025, 1, 31)))
        await pipeline.approve(reviewer_ctx, lapsed.id)
        valid = await pipeline.submit_declaration(ctx, declaration(object_id="mat-300", valid_to=date(2030, 1, 1)))
        await pipeline.approve(reviewer_ctx, valid.id)

        result = await pipeline.expire_lapsed(ctx.as_system(), today=date(2025, 6, 1))

        assert result.expired_package_ids == [lapsed.id]
        assert result.reassessed == ["Material:mat-100"]
        assert result.errors == []
        assert lapsed.review_status == ReviewStatus.EXPIRED
        assert valid.review_status == ReviewStatus.APPROVED
        assert [row.status for row in await compositions_of(db_session, lapsed.id)] == [CompositionStatus.EXPIRED]

        assessment = await pipeline.orchestrator.find_assessment(ctx, "Material", "mat-100")
        assert assessment.status == AssessmentStatus.COMPLIANT
        assert assessment.source == "evidence_expiry"

    async def test_nothing_to_expire(self, pipeline: EvidencePipeline, ctx: RequestContext) -> None:
        result = await pipeline.expire_lapsed(ctx, today=date(2025, 6, 1))
        assert result.expired_package_ids == []
        assert result.reassessed == []
