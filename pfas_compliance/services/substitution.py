"""
Substitution scenarios for non-compliant objects.

For a non-compliant assessment with evidence, the pipeline proposes one
PFAS-free substitute for the highest-concentration substance, asking the LLM
for the candidate and its trade-offs. One scenario per assessment: an
existing scenario is never regenerated.
"""

import json
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pfas_compliance.core.context import RequestContext
from pfas_compliance.core.logging import get_logger
from pfas_compliance.db.models import ComplianceAssessment, SubstitutionScenario
from pfas_compliance.services.declaration_extraction import extract_json, repair_json
from pfas_compliance.services.llm_client import BaseLLMClient, LLMMessage, LLMParseError
from pfas_compliance.services.rule_engine import CompositionView

logger = get_logger(__name__)

REGULATORY_DRIVER = "REACH Annex XVII PFAS Restriction"

SUBSTITUTION_SYSTEM_PROMPT = """You are a materials engineer specialised in PFAS-free alternatives.

Suggest one commercially available PFAS-free substitute for the substance described by the user.

Respond with ONLY a valid JSON object in this exact format:
{
  "substitute_name": "string",
  "cost_ratio": 1.0,
  "performance_impact": "Improved" | "Equivalent" | "Degraded",
  "supply_chain_risk": "Low" | "Medium" | "High",
  "risk_reasoning": "string"
}"""


@dataclass
class SubstitutionSuggestion:
    """LLM proposal for a substitute."""

    substitute_name: str
    cost_ratio: float | None = None
    performance_impact: str | None = None
    supply_chain_risk: str | None = None
    risk_reasoning: str | None = None


def select_dominant_composition(compositions: list[CompositionView]) -> CompositionView | None:
    """Highest-concentration composition; missing concentrations rank lowest."""
    if not compositions:
        return None
    return max(compositions, key=lambda c: c.typical_concentration or 0.0)


class SubstitutionAdvisor:
    """Ask the LLM for a substitute."""

    def __init__(self, llm_client: BaseLLMClient):
        self.llm = llm_client

    async def suggest(self, composition: CompositionView, object_type: str) -> SubstitutionSuggestion:
        """
        Raises:
            LLMParseError: Response unusable
        """
        messages = [
            LLMMessage(role="system", content=SUBSTITUTION_SYSTEM_PROMPT),
            LLMMessage(
                role="user",
                content=(
                    f"Suggest a PFAS-free substitute for: {composition.substance_name} "
                    f"(CAS: {composition.substance_cas}).\n"
                    f"Application: {object_type}\n"
                    f"Current concentration: {composition.typical_concentration} ppm"
                ),
            ),
        ]
        response = await self.llm.complete(messages, temperature=0.2)
        try:
            data = json.loads(repair_json(extract_json(response.content)))
        except json.JSONDecodeError as e:
            raise LLMParseError(f"Failed to parse substitution response: {e}") from e

        name = data.get("substitute_name") if isinstance(data, dict) else None
        if not name:
            raise LLMParseError("Substitution response has no substitute_name")

        cost_ratio = data.get("cost_ratio")
        return SubstitutionSuggestion(
            substitute_name=name,
            cost_ratio=float(cost_ratio) if isinstance(cost_ratio, (int, float)) else None,
            performance_impact=data.get("performance_impact"),
            supply_chain_risk=data.get("supply_chain_risk"),
            risk_reasoning=data.get("risk_reasoning"),
        )


class SubstitutionPlanner:
    """Create the (single) substitution scenario of an assessment."""

    def __init__(self, session: AsyncSession, advisor: SubstitutionAdvisor):
        self.session = session
        self.advisor = advisor

    async def get_for_assessment(self, ctx: RequestContext, assessment_id) -> SubstitutionScenario | None:
        result = await self.session.execute(
            select(SubstitutionScenario).where(
                SubstitutionScenario.tenant_id == ctx.tenant_id,
                SubstitutionScenario.assessment_id == assessment_id,
            )
        )
        return result.scalar_one_or_none()

    async def ensure_scenario(
        self,
        ctx: RequestContext,
        assessment: ComplianceAssessment,
        compositions: list[CompositionView],
    ) -> tuple[SubstitutionScenario | None, bool]:
        """
        Returns:
            (scenario, created); (None, False) when there is nothing to substitute
        """
        existing = await self.get_for_assessment(ctx, assessment.id)
        if existing is not None:
            return existing, False

        dominant = select_dominant_composition(compositions)
        if dominant is None:
            return None, False

        suggestion = await self.advisor.suggest(dominant, assessment.object_type)
        current = dominant.substance_name or dominant.substance_cas or "unnamed substance"
        scenario = SubstitutionScenario(
            tenant_id=ctx.tenant_id,
            assessment_id=assessment.id,
            name=f"Auto-suggested: Replace {current}",
            current_material=current,
            current_substance_cas=dominant.substance_cas,
            current_concentration_ppm=dominant.typical_concentration,
            substitute_material=suggestion.substitute_name,
            cost_ratio=suggestion.cost_ratio,
            performance_impact=suggestion.performance_impact,
            supply_chain_risk_level=suggestion.supply_chain_risk,
            supply_chain_risk_details=suggestion.risk_reasoning,
            regulatory_driver=REGULATORY_DRIVER,
            created_by=ctx.actor,
        )
        self.session.add(scenario)
        await self.session.flush()
        logger.info(
            "Substitution scenario generated",
            assessment_id=str(assessment.id),
            current=current,
            substitute=suggestion.substitute_name,
        )
        return scenario, True
