"""
Regulatory rule engine.

Evaluates a jurisdiction's active rules against the current material
composition evidence of one object and aggregates the per-rule outcomes into
a single verdict.

Per rule (each rule is evaluated independently):
- Scope: `condition_json.object_types` / `use_categories` restrict which
  objects the rule applies to; an empty list matches everything.
- Per-substance check: any composition with a CAS number whose
  concentration exceeds `thresholds_json.max_concentration_ppm` triggers.
- Aggregate check: the summed concentration of all tracked compositions
  above `thresholds_json.aggregate_pfas_ppm` triggers, independently.
- Exemption: a triggered rule whose `exemptions_json.exempted_uses`
  intersects the object's use categories is suppressed, and its reasoning is
  annotated "[Exemption applied]" rather than dropped.

Aggregation is monotonic worsening (compliant < requires_action <
non_compliant); a triggered critical rule forces non_compliant and nothing
downgrades it, so the result is independent of rule order. Jurisdictions
without any active ruleset yield insufficient_data, never compliant.

`evaluate_rules()` is the pure evaluation; `RuleEngine` loads the rules,
persists an append-only RuleEvaluation with a frozen decision snapshot, locks
the rules it used, and creates remediation Actions idempotently.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pfas_compliance.core.context import RequestContext
from pfas_compliance.core.logging import get_logger
from pfas_compliance.db.base import utcnow
from pfas_compliance.db.enums import ActionStatus, AssessmentStatus, RuleSeverity, RulesetStatus
from pfas_compliance.db.models import (
    Action,
    ComplianceAssessment,
    Jurisdiction,
    MaterialComposition,
    Rule,
    RuleEvaluation,
    Ruleset,
)
from pfas_compliance.services.errors import EntityNotFoundError

logger = get_logger(__name__)

EXEMPTION_MARKER = "[Exemption applied]"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class CompositionView:
    """Immutable snapshot of a MaterialComposition row used for evaluation."""

    id: str
    material_id: str
    substance_cas: str | None
    substance_name: str | None
    typical_concentration: float | None
    unit_basis: str = "ppm"
    source_type: str | None = None
    source_document_id: str | None = None

    @classmethod
    def from_model(cls, row: MaterialComposition) -> "CompositionView":
        return cls(
            id=str(row.id),
            material_id=row.material_id,
            substance_cas=row.substance_cas,
            substance_name=row.substance_name,
            typical_concentration=row.typical_concentration,
            unit_basis=row.unit_basis,
            source_type=row.source_type.value if row.source_type else None,
            source_document_id=str(row.source_document_id) if row.source_document_id else None,
        )

    @property
    def label(self) -> str:
        if self.substance_name and self.substance_cas:
            return f"{self.substance_name} ({self.substance_cas})"
        return self.substance_name or self.substance_cas or "unnamed substance"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "material_id": self.material_id,
            "substance_cas": self.substance_cas,
            "substance_name": self.substance_name,
            "typical_concentration": self.typical_concentration,
            "unit_basis": self.unit_basis,
            "source_type": self.source_type,
            "source_document_id": self.source_document_id,
        }


@dataclass(frozen=True)
class RuleView:
    """Immutable snapshot of a Rule row."""

    id: str
    code: str
    name: str
    severity: RuleSeverity
    version: int = 1
    condition: dict[str, Any] = field(default_factory=dict)
    thresholds: dict[str, Any] = field(default_factory=dict)
    exemptions: dict[str, Any] = field(default_factory=dict)
    action_types: tuple[str, ...] = ()

    @classmethod
    def from_model(cls, rule: Rule) -> "RuleView":
        return cls(
            id=str(rule.id),
            code=rule.code,
            name=rule.name,
            severity=rule.severity,
            version=rule.version,
            condition=dict(rule.condition_json or {}),
            thresholds=dict(rule.thresholds_json or {}),
            exemptions=dict(rule.exemptions_json or {}),
            action_types=tuple(rule.action_types),
        )


@dataclass
class RuleOutcome:
    """Result of evaluating one rule."""

    rule_id: str
    rule_code: str
    severity: RuleSeverity
    applicable: bool = True
    condition_met: bool = False
    exempted: bool = False
    reasons: list[str] = field(default_factory=list)
    action_types: tuple[str, ...] = ()

    @property
    def triggered(self) -> bool:
        """Counts toward the verdict: condition met and not exempted."""
        return self.applicable and self.condition_met and not self.exempted

    def reasoning(self) -> str:
        return f"[{self.rule_code}] " + "; ".join(self.reasons)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_code": self.rule_code,
            "severity": self.severity.value,
            "applicable": self.applicable,
            "condition_met": self.condition_met,
            "exempted": self.exempted,
            "triggered": self.triggered,
            "reasons": list(self.reasons),
        }


@dataclass
class EvaluationOutcome:
    """Aggregated result of evaluating a set of rules."""

    status: AssessmentStatus
    outcomes: list[RuleOutcome] = field(default_factory=list)

    @property
    def triggered_rules(self) -> list[RuleOutcome]:
        """Rules that count toward the status (exempted ones excluded)."""
        return [outcome for outcome in self.outcomes if outcome.triggered]

    @property
    def reasoning(self) -> str:
        lines = [
            outcome.reasoning()
            for outcome in self.outcomes
            if outcome.condition_met or outcome.exempted
        ]
        if not lines:
            return "No rule triggered"
        return "\n".join(lines)


@dataclass
class RuleEvaluationResult:
    """What `RuleEngine.evaluate` returns for one jurisdiction."""

    status: AssessmentStatus
    triggered_rules: list[RuleOutcome]
    reasoning: str
    jurisdiction_id: uuid.UUID
    jurisdiction_code: str
    evaluation_id: uuid.UUID | None = None
    actions_created: int = 0


# =============================================================================
# Pure evaluation
# =============================================================================


def _as_set(values: Any) -> set[str]:
    return {str(value).strip().lower() for value in (values or []) if str(value).strip()}


def evaluate_rule(
    rule: RuleView,
    compositions: list[CompositionView],
    object_type: str,
    use_categories: list[str] | None = None,
) -> RuleOutcome:
    """
    Evaluate one rule against the compositions of one object.

    Args:
        rule: Rule snapshot
        compositions: Current compositions of the object
        object_type: Product, Material, ...
        use_categories: Declared uses of the object

    Returns:
        RuleOutcome; `triggered` is what counts toward the verdict
    """
    uses = _as_set(use_categories)
    outcome = RuleOutcome(
        rule_id=rule.id,
        rule_code=rule.code,
        severity=rule.severity,
        action_types=rule.action_types,
    )

    scope_types = _as_set(rule.condition.get("object_types"))
    if scope_types and object_type.strip().lower() not in scope_types:
        outcome.applicable = False
        outcome.reasons.append(f"Not applicable to {object_type}")
        return outcome

    scope_uses = _as_set(rule.condition.get("use_categories"))
    if scope_uses and not scope_uses & uses:
        outcome.applicable = False
        outcome.reasons.append("Not applicable to declared use categories")
        return outcome

    max_ppm = rule.thresholds.get("max_concentration_ppm")
    if max_ppm is not None:
        for composition in compositions:
            if composition.substance_cas is None or composition.typical_concentration is None:
                continue
            if composition.typical_concentration > float(max_ppm):
                outcome.condition_met = True
                outcome.reasons.append(
                    f"{composition.label} at {composition.typical_concentration:g} ppm "
                    f"exceeds {float(max_ppm):g} ppm"
                )

    aggregate_ppm = rule.thresholds.get("aggregate_pfas_ppm")
    if aggregate_ppm is not None:
        total = sum(
            composition.typical_concentration
            for composition in compositions
            if composition.typical_concentration is not None
        )
        if total > float(aggregate_ppm):
            outcome.condition_met = True
            outcome.reasons.append(
                f"Aggregate PFAS {total:g} ppm exceeds {float(aggregate_ppm):g} ppm"
            )

    if outcome.condition_met:
        exempted_uses = _as_set(rule.exemptions.get("exempted_uses")) & uses
        if exempted_uses:
            outcome.exempted = True
            outcome.reasons.append(f"{EXEMPTION_MARKER} exempted uses: {', '.join(sorted(exempted_uses))}")

    return outcome


def evaluate_rules(
    rules: list[RuleView],
    compositions: list[CompositionView],
    object_type: str,
    use_categories: list[str] | None = None,
) -> EvaluationOutcome:
    """
    Evaluate every rule and fold the triggered ones into one status.

    Start at compliant; a triggered warning rule worsens to requires_action,
    a triggered critical rule to non_compliant. The fold only ever worsens,
    so any permutation of `rules` yields the same status.
    """
    outcomes = [evaluate_rule(rule, compositions, object_type, use_categories) for rule in rules]
    status = AssessmentStatus.COMPLIANT
    for outcome in outcomes:
        if outcome.triggered:
            status = status.worsen(outcome.severity.verdict)
    return EvaluationOutcome(status=status, outcomes=outcomes)


# =============================================================================
# Engine
# =============================================================================


class RuleEngine:
    """
    Loads a jurisdiction's active rules, evaluates, and persists the result.

    Usage:
        engine = RuleEngine(db)
        result = await engine.evaluate(
            ctx, "Product", product_id, jurisdiction.id, compositions,
            use_categories=["textile"], assessment=assessment,
        )
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def load_active_rules(
        self, ctx: RequestContext, jurisdiction_id: uuid.UUID
    ) -> tuple[list[Ruleset], list[Rule]]:
        """Active rulesets of the jurisdiction and their current rule versions."""
        rulesets = (
            await self.session.execute(
                select(Ruleset)
                .where(
                    Ruleset.tenant_id == ctx.tenant_id,
                    Ruleset.jurisdiction_id == jurisdiction_id,
                    Ruleset.status == RulesetStatus.ACTIVE,
                )
                .order_by(Ruleset.id)
            )
        ).scalars().all()

        if not rulesets:
            return [], []

        rules = (
            await self.session.execute(
                select(Rule)
                .where(
                    Rule.tenant_id == ctx.tenant_id,
                    Rule.ruleset_id.in_([ruleset.id for ruleset in rulesets]),
                    Rule.superseded_by_id.is_(None),
                )
                .order_by(Rule.code, Rule.version)
            )
        ).scalars().all()
        return list(rulesets), list(rules)

    async def evaluate(
        self,
        ctx: RequestContext,
        object_type: str,
        object_id: str,
        jurisdiction_id: uuid.UUID,
        compositions: list[CompositionView],
        use_categories: list[str] | None = None,
        assessment: ComplianceAssessment | None = None,
    ) -> RuleEvaluationResult:
        """
        Evaluate one jurisdiction for one object.

        Args:
            ctx: Tenant and acting user
            object_type / object_id: The object being assessed
            jurisdiction_id: Jurisdiction to evaluate
            compositions: Current compositions (snapshots)
            use_categories: Declared uses of the object (for exemptions)
            assessment: Assessment to attach the evaluation and actions to;
                when None the result is computed but nothing is persisted

        Returns:
            RuleEvaluationResult

        Raises:
            EntityNotFoundError: Unknown jurisdiction for this tenant
        """
        jurisdiction = (
            await self.session.execute(
                select(Jurisdiction).where(
                    Jurisdiction.tenant_id == ctx.tenant_id,
                    Jurisdiction.id == jurisdiction_id,
                )
            )
        ).scalar_one_or_none()
        if jurisdiction is None:
            raise EntityNotFoundError("Jurisdiction", jurisdiction_id)

        rulesets, rules = await self.load_active_rules(ctx, jurisdiction_id)

        if not rulesets:
            outcome = EvaluationOutcome(status=AssessmentStatus.INSUFFICIENT_DATA)
            reasoning = f"No active ruleset for jurisdiction {jurisdiction.code}"
        else:
            views = [RuleView.from_model(rule) for rule in rules]
            outcome = evaluate_rules(views, compositions, object_type, use_categories)
            reasoning = outcome.reasoning

        result = RuleEvaluationResult(
            status=outcome.status,
            triggered_rules=outcome.triggered_rules,
            reasoning=reasoning,
            jurisdiction_id=jurisdiction.id,
            jurisdiction_code=jurisdiction.code,
        )

        if assessment is not None:
            evaluation = RuleEvaluation(
                tenant_id=ctx.tenant_id,
                assessment_id=assessment.id,
                jurisdiction_id=jurisdiction.id,
                status=outcome.status,
                triggered_rule_ids=[rule.rule_id for rule in outcome.triggered_rules],
                reasoning=reasoning,
                decision_snapshot=self._snapshot(
                    jurisdiction, rulesets, rules, compositions, use_categories, outcome
                ),
            )
            self.session.add(evaluation)

            for rule in rules:
                if not rule.locked:
                    rule.locked = True

            result.actions_created = await self._create_actions(
                ctx, object_type, object_id, assessment, outcome.triggered_rules
            )
            await self.session.flush()
            result.evaluation_id = evaluation.id

        logger.info(
            "Jurisdiction evaluated",
            jurisdiction=jurisdiction.code,
            object_type=object_type,
            object_id=object_id,
            status=outcome.status.value,
            rules=len(rules),
            triggered=len(outcome.triggered_rules),
        )
        return result

    def _snapshot(
        self,
        jurisdiction: Jurisdiction,
        rulesets: list[Ruleset],
        rules: list[Rule],
        compositions: list[CompositionView],
        use_categories: list[str] | None,
        outcome: EvaluationOutcome,
    ) -> dict[str, Any]:
        """Frozen copy of everything the verdict depended on."""
        return {
            "evaluated_at": utcnow().isoformat(),
            "jurisdiction": {"id": str(jurisdiction.id), "code": jurisdiction.code, "name": jurisdiction.name},
            "rulesets": [
                {"id": str(ruleset.id), "name": ruleset.name, "version": ruleset.version}
                for ruleset in rulesets
            ],
            "rules": [rule.to_dict() for rule in rules],
            "compositions": [composition.to_dict() for composition in compositions],
            "use_categories": list(use_categories or []),
            "outcomes": [rule_outcome.to_dict() for rule_outcome in outcome.outcomes],
            "status": outcome.status.value,
        }

    async def _create_actions(
        self,
        ctx: RequestContext,
        object_type: str,
        object_id: str,
        assessment: ComplianceAssessment,
        triggered: list[RuleOutcome],
    ) -> int:
        """One open Action per (rule, action type); existing open ones are reused."""
        created = 0
        for outcome in triggered:
            rule_id = uuid.UUID(outcome.rule_id)
            for action_type in outcome.action_types:
                existing = (
                    await self.session.execute(
                        select(Action.id).where(
                            Action.tenant_id == ctx.tenant_id,
                            Action.object_type == object_type,
                            Action.object_id == object_id,
                            Action.rule_id == rule_id,
                            Action.action_type == action_type,
                            Action.status.in_([s for s in ActionStatus if s.is_open]),
                        )
                    )
                ).first()
                if existing is not None:
                    continue
                self.session.add(
                    Action(
                        tenant_id=ctx.tenant_id,
                        object_type=object_type,
                        object_id=object_id,
                        assessment_id=assessment.id,
                        rule_id=rule_id,
                        rule_code=outcome.rule_code,
                        action_type=action_type,
                        severity=outcome.severity.value,
                        description=outcome.reasoning(),
                    )
                )
                created += 1
        return created
