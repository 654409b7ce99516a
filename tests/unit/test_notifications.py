"""Unit tests for downstream artifacts: SCIP drafts, alerts, substitution and linked entities."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pfas_compliance.core.context import RequestContext
from pfas_compliance.db.enums import AlertStatus, AssessmentStatus
from pfas_compliance.db.models import (
    ComplianceAssessment,
    Material,
    Packaging,
    RiskAlert,
    SCIPNotification,
    Substance,
    Supplier,
)
from pfas_compliance.services.linked_entities import LinkedEntityRegistry
from pfas_compliance.services.llm_client import LLMParseError, MockLLMClient
from pfas_compliance.services.notifications import (
    HTTPEmailSender,
    LoggingEmailSender,
    NotificationService,
)
from pfas_compliance.services.rule_engine import CompositionView
from pfas_compliance.services.substitution import (
    SubstitutionAdvisor,
    SubstitutionPlanner,
    select_dominant_composition,
)

PFOA = "335-67-1"
PFOS = "1763-23-1"


def view(cas: str | None, ppm: float | None, name: str | None = None) -> CompositionView:
    return CompositionView(
        id=f"c-{cas}-{ppm}",
        material_id="m-1",
        substance_cas=cas,
        substance_name=name,
        typical_concentration=ppm,
    )


@pytest.fixture
async def assessment(db_session: AsyncSession, ctx: RequestContext) -> ComplianceAssessment:
    row = ComplianceAssessment(
        tenant_id=ctx.tenant_id,
        object_type="Material",
        object_id="m-1",
        status=AssessmentStatus.NON_COMPLIANT,
        computed_status=AssessmentStatus.NON_COMPLIANT,
        assessed_by=ctx.actor,
        reasoning="EU: [EU-PFOA] PFOA 50 ppm exceeds 25 ppm",
    )
    db_session.add(row)
    await db_session.commit()
    return row


class TestSCIPNotifications:
    async def test_one_draft_per_svhc_substance(
        self, db_session: AsyncSession, ctx: RequestContext, assessment: ComplianceAssessment, email_sender
    ) -> None:
        db_session.add_all(
            [
                Substance(tenant_id=ctx.tenant_id, cas_number=PFOA, name="PFOA", svhc_status=True),
                Substance(tenant_id=ctx.tenant_id, cas_number=PFOS, name="PFOS", svhc_status=False),
            ]
        )
        await db_session.flush()
        service = NotificationService(db_session, email_sender)
        compositions = [view(PFOA, 10), view(PFOA, 40), view(PFOS, 5), view(None, 3)]

        assert await service.ensure_scip_notifications(ctx, assessment, compositions) == 1
        assert await service.ensure_scip_notifications(ctx, assessment, compositions) == 0

        draft = (await db_session.execute(select(SCIPNotification))).scalar_one()
        assert draft.primary_article_id == "m-1"
        assert draft.substance_cas == PFOA
        assert draft.concentration_ppm == 40
        assert draft.notification_status == "draft"

    async def test_no_svhc_substances(
        self, db_session: AsyncSession, ctx: RequestContext, assessment: ComplianceAssessment, email_sender
    ) -> None:
        service = NotificationService(db_session, email_sender)
        assert await service.ensure_scip_notifications(ctx, assessment, [view(PFOA, 10)]) == 0


class TestRiskAlert:
    async def test_single_open_alert(
        self, db_session: AsyncSession, ctx: RequestContext, assessment: ComplianceAssessment, email_sender
    ) -> None:
        service = NotificationService(db_session, email_sender)

        alert, created = await service.ensure_risk_alert(ctx, assessment)
        again, created_again = await service.ensure_risk_alert(ctx, assessment)

        assert created and not created_again
        assert again.id == alert.id
        assert alert.alert_type == "pfas_non_compliance"
        assert alert.severity == "critical"
        assert "PFOA 50 ppm" in alert.description

    async def test_resolved_alert_allows_new_one(
        self, db_session: AsyncSession, ctx: RequestContext, assessment: ComplianceAssessment, email_sender
    ) -> None:
        service = NotificationService(db_session, email_sender)
        alert, _ = await service.ensure_risk_alert(ctx, assessment)
        alert.status = AlertStatus.RESOLVED
        await db_session.flush()

        _, created = await service.ensure_risk_alert(ctx, assessment)

        assert created
        assert (await db_session.execute(select(func.count()).select_from(RiskAlert))).scalar_one() == 2


class TestUserNotifications:
    async def test_notification_and_email(
        self, db_session: AsyncSession, ctx: RequestContext, assessment: ComplianceAssessment
    ) -> None:
        sender = LoggingEmailSender()
        service = NotificationService(db_session, sender)

        notification = await service.notify_non_compliance(ctx, assessment, "owner@acme.test")
        await service.email_non_compliance(assessment, "owner@acme.test")

        assert notification.title == "PFAS Non-Compliance Detected"
        assert notification.target_user == "owner@acme.test"
        assert notification.read is False
        assert sender.sent[0]["subject"] == "PFAS Non-Compliance Alert"
        assert str(assessment.id) in sender.sent[0]["body"]

    def test_http_sender_needs_gateway_url(self) -> None:
        with pytest.raises(ValueError, match="EMAIL_API_URL"):
            HTTPEmailSender(api_url="")


class TestSubstitution:
    def test_dominant_composition(self) -> None:
        assert select_dominant_composition([]) is None
        dominant = select_dominant_composition([view(PFOS, None), view(PFOA, 40), view(PFOS, 12)])
        assert dominant.substance_cas == PFOA

    async def test_one_scenario_per_assessment(
        self,
        db_session: AsyncSession,
        ctx: RequestContext,
        assessment: ComplianceAssessment,
        mock_llm: MockLLMClient,
    ) -> None:
        planner = SubstitutionPlanner(db_session, SubstitutionAdvisor(mock_llm))
        compositions = [view(PFOA, 40, name="Perfluorooctanoic acid"), view(PFOS, 5)]

        scenario, created = await planner.ensure_scenario(ctx, assessment, compositions)
        again, created_again = await planner.ensure_scenario(ctx, assessment, compositions)

        assert created and not created_again
        assert again.id == scenario.id
        assert scenario.name == "Auto-suggested: Replace Perfluorooctanoic acid"
        assert scenario.current_concentration_ppm == 40
        assert scenario.substitute_material == "Silicone-based water repellent"
        assert scenario.cost_ratio == pytest.approx(1.2)
        assert len(mock_llm.calls) == 1

    async def test_nothing_to_substitute(
        self, db_session: AsyncSession, ctx: RequestContext, assessment: ComplianceAssessment, mock_llm
    ) -> None:
        planner = SubstitutionPlanner(db_session, SubstitutionAdvisor(mock_llm))
        assert await planner.ensure_scenario(ctx, assessment, []) == (None, False)
        assert mock_llm.calls == []

    async def test_suggestion_without_name_rejected(self, mock_llm: MockLLMClient) -> None:
        mock_llm.set_responses(['{"cost_ratio": 1.1}'])
        with pytest.raises(LLMParseError):
            await SubstitutionAdvisor(mock_llm).suggest(view(PFOA, 40), "Material")


class TestLinkedEntityRegistry:
    """Status propagation onto business entities."""

    async def test_material_and_packaging(self, db_session: AsyncSession, ctx: RequestContext) -> None:
        material = Material(tenant_id=ctx.tenant_id, name="Membrane")
        packaging = Packaging(tenant_id=ctx.tenant_id, name="Food wrap")
        db_session.add_all([material, packaging])
        await db_session.flush()
        registry = LinkedEntityRegistry(db_session)
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)

        assert await registry.apply_status(ctx, "Material", str(material.id), AssessmentStatus.REQUIRES_ACTION, now)
        assert await registry.apply_status(ctx, "PPWRPackaging", str(packaging.id), AssessmentStatus.NON_COMPLIANT, now)

        assert material.pfas_status == AssessmentStatus.REQUIRES_ACTION
        assert material.contains_pfas is True
        assert packaging.contains_pfas is True
        assert packaging.pfas_checked_date == now

    async def test_supplier_risk_level(self, db_session: AsyncSession, ctx: RequestContext) -> None:
        supplier = Supplier(tenant_id=ctx.tenant_id, name="Acme Coatings")
        db_session.add(supplier)
        await db_session.flush()

        await LinkedEntityRegistry(db_session).apply_status(
            ctx, "Supplier", str(supplier.id), AssessmentStatus.COMPLIANT, datetime.now(timezone.utc)
        )

        assert supplier.pfas_relevant is True
        assert supplier.pfas_risk_level == "low"

    @pytest.mark.parametrize("object_type, object_id", [("Widget", "m-1"), ("Material", "not-a-uuid")])
    async def test_unresolvable_entities(
        self, db_session: AsyncSession, ctx: RequestContext, object_type: str, object_id: str
    ) -> None:
        registry = LinkedEntityRegistry(db_session)
        assert await registry.get(ctx, object_type, object_id) is None
        assert await registry.use_categories(ctx, object_type, object_id) == []
        assert not await registry.apply_status(
            ctx, object_type, object_id, AssessmentStatus.COMPLIANT, datetime.now(timezone.utc)
        )

    async def test_other_tenant_cannot_see_entity(
        self, db_session: AsyncSession, ctx: RequestContext, other_tenant_ctx: RequestContext
    ) -> None:
        material = Material(tenant_id=ctx.tenant_id, name="Membrane", use_categories=["outdoor"])
        db_session.add(material)
        await db_session.flush()
        registry = LinkedEntityRegistry(db_session)

        assert await registry.use_categories(ctx, "Material", str(material.id)) == ["outdoor"]
        assert await registry.get(other_tenant_ctx, "Material", str(material.id)) is None

    async def test_registered_alias(self, db_session: AsyncSession, ctx: RequestContext) -> None:
        material = Material(tenant_id=ctx.tenant_id, name="Membrane", use_categories=["medical"])
        db_session.add(material)
        await db_session.flush()
        registry = LinkedEntityRegistry(db_session)
        assert registry.model_for("RawMaterial") is None

        registry.register("RawMaterial", Material)

        assert "RawMaterial" in registry.object_types
        assert await registry.use_categories(ctx, "RawMaterial", str(material.id)) == ["medical"]
