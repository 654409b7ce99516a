"""Unit tests for rule evaluation and its persistence."""

import itertools
import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pfas_compliance.core.context import RequestContext
from pfas_compliance.db.enums import AssessmentStatus, RuleSeverity, RulesetStatus
from pfas_compliance.db.models import Action, ComplianceAssessment, Rule, RuleEvaluation
from pfas_compliance.services import EntityNotFoundError, RuleEngine, evaluate_rules
from pfas_compliance.services.rule_engine import (
    EXEMPTION_MARKER,
    CompositionView,
    RuleView,
    evaluate_rule,
)


def composition(cas: str | None = "335-67-1", ppm: float | None = 50, name: str = "PFOA") -> CompositionView:
    return CompositionView(
        id=str(uuid.uuid4()),
        material_id="mat-1",
        substance_cas=cas,
        substance_name=name,
        typical_concentration=ppm,
    )


def rule(code: str = "R1", severity: RuleSeverity = RuleSeverity.CRITICAL, **kwargs) -> RuleView:
    return RuleView(id=str(uuid.uuid4()), code=code, name=code, severity=severity, **kwargs)


class TestEvaluateRule:
    """Tests for single-rule evaluation."""

    def test_concentration_above_threshold_triggers(self) -> None:
        outcome = evaluate_rule(
            rule(thresholds={"max_concentration_ppm": 25}), [composition(ppm=50)], "Material"
        )
        assert outcome.triggered
        assert "PFOA (335-67-1) at 50 ppm exceeds 25 ppm" in outcome.reasoning()

    def test_concentration_at_threshold_does_not_trigger(self) -> None:
        outcome = evaluate_rule(
            rule(thresholds={"max_concentration_ppm": 25}), [composition(ppm=25)], "Material"
        )
        assert not outcome.triggered

    def test_rows_without_cas_or_concentration_are_skipped(self) -> None:
        outcome = evaluate_rule(
            rule(thresholds={"max_concentration_ppm": 1}),
            [composition(cas=None, ppm=500), composition(ppm=None)],
            "Material",
        )
        assert not outcome.condition_met

    def test_aggregate_threshold(self) -> None:
        compositions = [composition(ppm=30), composition(cas="1763-23-1", ppm=30, name="PFOS")]
        outcome = evaluate_rule(rule(thresholds={"aggregate_pfas_ppm": 50}), compositions, "Material")
        assert outcome.triggered
        assert "Aggregate PFAS 60 ppm exceeds 50 ppm" in outcome.reasons

    def test_out_of_scope_object_type(self) -> None:
        outcome = evaluate_rule(
            rule(thresholds={"max_concentration_ppm": 1}, condition={"object_types": ["Packaging"]}),
            [composition()],
            "Material",
        )
        assert not outcome.applicable
        assert not outcome.triggered

    def test_use_category_scope(self) -> None:
        scoped = rule(thresholds={"max_concentration_ppm": 1}, condition={"use_categories": ["food_contact"]})

        assert not evaluate_rule(scoped, [composition()], "Packaging", ["textile"]).triggered
        assert evaluate_rule(scoped, [composition()], "Packaging", ["Food_Contact"]).triggered

    def test_exemption_is_annotated_not_dropped(self) -> None:
        outcome = evaluate_rule(
            rule(thresholds={"max_concentration_ppm": 25}, exemptions={"exempted_uses": ["medical_device"]}),
            [composition(ppm=50)],
            "Material",
            ["medical_device"],
        )
        assert outcome.condition_met
        assert outcome.exempted
        assert not outcome.triggered
        assert EXEMPTION_MARKER in outcome.reasoning()


class TestEvaluateRules:
    """Tests for the verdict fold over several rules."""

    def test_no_rules_is_compliant(self) -> None:
        result = evaluate_rules([], [composition()], "Material")
        assert result.status == AssessmentStatus.COMPLIANT
        assert result.reasoning == "No rule triggered"

    def test_warning_gives_requires_action(self) -> None:
        result = evaluate_rules(
            [rule(severity=RuleSeverity.WARNING, thresholds={"max_concentration_ppm": 10})],
            [composition(ppm=50)],
            "Material",
        )
        assert result.status == AssessmentStatus.REQUIRES_ACTION

    def test_critical_wins_regardless_of_order(self) -> None:
        rules = [
            rule("WARN", RuleSeverity.WARNING, thresholds={"max_concentration_ppm": 10}),
            rule("CRIT", RuleSeverity.CRITICAL, thresholds={"max_concentration_ppm": 25}),
            rule("QUIET", RuleSeverity.CRITICAL, thresholds={"max_concentration_ppm": 1000}),
        ]
        statuses = {
            evaluate_rules(list(order), [composition(ppm=50)], "Material").status
            for order in itertools.permutations(rules)
        }
        assert statuses == {AssessmentStatus.NON_COMPLIANT}

    def test_exempted_critical_does_not_count(self) -> None:
        result = evaluate_rules(
            [
                rule(
                    severity=RuleSeverity.CRITICAL,
                    thresholds={"max_concentration_ppm": 25},
                    exemptions={"exempted_uses": ["medical_device"]},
                )
            ],
            [composition(ppm=50)],
            "Material",
            ["medical_device"],
        )
        assert result.status == AssessmentStatus.COMPLIANT
        assert result.triggered_rules == []
        assert EXEMPTION_MARKER in result.reasoning


class TestRuleEngine:
    """Tests for loading, persisting and locking."""

    @pytest.fixture
    async def assessment(self, db_session: AsyncSession, ctx: RequestContext) -> ComplianceAssessment:
        assessment = ComplianceAssessment(tenant_id=ctx.tenant_id, object_type="Material", object_id="mat-1")
        db_session.add(assessment)
        await db_session.flush()
        return assessment

    async def test_persists_evaluation_and_locks_rules(
        self, db_session: AsyncSession, ctx: RequestContext, make_ruleset, critical_pfoa_rule, assessment
    ) -> None:
        jurisdiction, (pfoa_rule,) = await make_ruleset(ctx, rules=[critical_pfoa_rule])

        result = await RuleEngine(db_session).evaluate(
            ctx, "Material", "mat-1", jurisdiction.id, [composition(ppm=50)], assessment=assessment
        )

        assert result.status == AssessmentStatus.NON_COMPLIANT
        assert result.jurisdiction_code == "EU"
        assert result.actions_created == 1

        evaluation = await db_session.get(RuleEvaluation, result.evaluation_id)
        assert evaluation.triggered_rule_ids == [str(pfoa_rule.id)]
        assert evaluation.decision_snapshot["rules"][0]["code"] == "EU-PFOA"
        assert evaluation.decision_snapshot["compositions"][0]["typical_concentration"] == 50

        locked = (await db_session.execute(select(Rule).where(Rule.id == pfoa_rule.id))).scalar_one()
        assert locked.locked is True

    async def test_actions_are_not_duplicated(
        self, db_session: AsyncSession, ctx: RequestContext, make_ruleset, critical_pfoa_rule, assessment
    ) -> None:
        jurisdiction, _ = await make_ruleset(ctx, rules=[critical_pfoa_rule])
        engine = RuleEngine(db_session)

        await engine.evaluate(ctx, "Material", "mat-1", jurisdiction.id, [composition()], assessment=assessment)
        second = await engine.evaluate(
            ctx, "Material", "mat-1", jurisdiction.id, [composition()], assessment=assessment
        )

        actions = (await db_session.execute(select(Action))).scalars().all()
        assert second.actions_created == 0
        assert len(actions) == 1
        assert actions[0].action_type == "substitute_material"

    async def test_no_active_ruleset_is_insufficient_data(
        self, db_session: AsyncSession, ctx: RequestContext, make_ruleset, critical_pfoa_rule
    ) -> None:
        jurisdiction, _ = await make_ruleset(ctx, code="US", rules=[critical_pfoa_rule], status=RulesetStatus.DRAFT)

        result = await RuleEngine(db_session).evaluate(ctx, "Material", "mat-1", jurisdiction.id, [composition()])

        assert result.status == AssessmentStatus.INSUFFICIENT_DATA
        assert result.reasoning == "No active ruleset for jurisdiction US"
        assert result.evaluation_id is None

    async def test_other_tenant_jurisdiction_not_found(
        self,
        db_session: AsyncSession,
        ctx: RequestContext,
        other_tenant_ctx: RequestContext,
        make_ruleset,
    ) -> None:
        jurisdiction, _ = await make_ruleset(ctx)

        with pytest.raises(EntityNotFoundError):
            await RuleEngine(db_session).evaluate(other_tenant_ctx, "Material", "mat-1", jurisdiction.id, [])
