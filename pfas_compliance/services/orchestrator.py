"""
Compliance orchestrator: the single entry point for assessments.

Every producer (scanner, supplier portal, evidence review, batch jobs) calls
`create_or_update_assessment`, which runs a fixed pipeline:

    1. Upsert the assessment for (tenant, object_type, object_id)     load-bearing
    2. Link evidence package ids (order-preserving union)
    3. Load CURRENT compositions; resolve their substances on demand
    4. Evaluate up to N active jurisdictions and fold the verdicts     load-bearing
       -- the verdict is committed here --
    5. Propagate the status onto the linked business entity
    6. SVHC (SCIP) notifications; one open risk alert when non-compliant
    7. One substitution scenario per non-compliant assessment
    8. User notification and email when non-compliant

Steps 5-8 each commit on their own and return a StepResult; a failure is
rolled back, logged and recorded as a DownstreamEffectError in the report,
and never touches the committed verdict. Every record they create is
check-then-create by natural key, so repeated runs do not duplicate them.
"""

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pfas_compliance.core.config import settings
from pfas_compliance.core.context import RequestContext
from pfas_compliance.core.logging import get_logger
from pfas_compliance.db.base import utcnow
from pfas_compliance.db.enums import AssessmentStatus, CompositionStatus, OverrideStatus
from pfas_compliance.db.models import (
    AuditAction,
    AuditLog,
    ComplianceAssessment,
    Jurisdiction,
    MaterialComposition,
)
from pfas_compliance.services.errors import (
    ComplianceError,
    EntityNotFoundError,
    InvalidTransitionError,
    JurisdictionEvaluationError,
    ReviewPolicyError,
)
from pfas_compliance.services.linked_entities import LinkedEntityRegistry
from pfas_compliance.services.llm_client import get_llm_client
from pfas_compliance.services.notifications import NotificationService
from pfas_compliance.services.reporting import PipelineReport, StepResult
from pfas_compliance.services.rule_engine import CompositionView, RuleEngine, RuleEvaluationResult
from pfas_compliance.services.substance_verification import SubstanceVerificationService
from pfas_compliance.services.substitution import SubstitutionAdvisor, SubstitutionPlanner

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], Awaitable[None]]


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class AssessmentRequest:
    """
    Input of one pipeline run.

    Attributes:
        object_type / object_id: What to assess
        evidence_package_ids: Packages to link onto the assessment
        jurisdiction_id: Evaluate only this jurisdiction (else the first N active)
        ruleset_id: Recorded on the assessment
        initial_status: Kept when no jurisdiction produces a result
        use_categories: Overrides the linked entity's declared uses
        resolve_substances: Verify composition substances (default from settings)
    """

    object_type: str
    object_id: str
    evidence_package_ids: list[Any] = field(default_factory=list)
    jurisdiction_id: uuid.UUID | None = None
    ruleset_id: uuid.UUID | None = None
    initial_status: AssessmentStatus = AssessmentStatus.UNDER_REVIEW
    source: str | None = None
    verification_method: str | None = None
    use_categories: list[str] | None = None
    resolve_substances: bool | None = None


@dataclass
class OrchestrationResult:
    assessment: ComplianceAssessment
    report: PipelineReport

    @property
    def status(self) -> AssessmentStatus:
        return self.assessment.status


@dataclass
class BatchScanSummary:
    """Outcome of a batch scan. Failed entities are listed in `errors`."""

    total: int = 0
    processed: int = 0
    compliant: int = 0
    non_compliant: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "compliant": self.compliant,
            "non_compliant": self.non_compliant,
            "errors": list(self.errors),
        }


def _union(existing: list[Any] | None, new: list[Any]) -> list[str]:
    """Order-preserving union of id lists, as strings."""
    result = [str(value) for value in existing or []]
    for value in new:
        if str(value) not in result:
            result.append(str(value))
    return result


# =============================================================================
# Orchestrator
# =============================================================================


class ComplianceOrchestrator:
    """
    Sequences verification, rule evaluation and downstream effects.

    Collaborators are injectable; by default they are built on the same
    session. The substitution planner opens its own LLM client when none is
    injected.

    Usage:
        orchestrator = ComplianceOrchestrator(db)
        result = await orchestrator.create_or_update_assessment(
            ctx, AssessmentRequest(object_type="Product", object_id=str(product.id))
        )
        if not result.report.ok:
            ...
    """

    def __init__(
        self,
        session: AsyncSession,
        rule_engine: RuleEngine | None = None,
        verifier: SubstanceVerificationService | None = None,
        registry: LinkedEntityRegistry | None = None,
        notifications: NotificationService | None = None,
        substitution: SubstitutionPlanner | None = None,
        max_jurisdictions: int | None = None,
    ):
        self.session = session
        self.rule_engine = rule_engine or RuleEngine(session)
        self._verifier = verifier
        self.registry = registry or LinkedEntityRegistry(session)
        self.notifications = notifications or NotificationService(session)
        self.substitution = substitution
        self.max_jurisdictions = max_jurisdictions or settings.max_jurisdictions_per_assessment

    @property
    def verifier(self) -> SubstanceVerificationService:
        if self._verifier is None:
            self._verifier = SubstanceVerificationService(self.session)
        return self._verifier

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def create_or_update_assessment(
        self, ctx: RequestContext, request: AssessmentRequest
    ) -> OrchestrationResult:
        """
        Run the assessment pipeline for one object.

        Returns:
            OrchestrationResult with the committed assessment and the report

        Raises:
            EntityNotFoundError: `request.jurisdiction_id` is unknown
            SQLAlchemyError: The verdict could not be persisted
        """
        report = PipelineReport()
        now = utcnow()

        # 1. Upsert
        assessment = await self._upsert_assessment(ctx, request)
        report.add(StepResult.success("upsert_assessment", str(assessment.id)))

        # 2. Link evidence
        if request.evidence_package_ids:
            assessment.evidence_package_ids = _union(assessment.evidence_package_ids, request.evidence_package_ids)
            report.add(StepResult.success("link_evidence", len(assessment.evidence_package_ids)))
        else:
            report.add(StepResult.skip("link_evidence", "no evidence package ids supplied"))

        # 3. Compositions
        rows = await self.load_current_compositions(ctx, request.object_type, request.object_id)
        compositions = [CompositionView.from_model(row) for row in rows]
        report.add(StepResult.success("load_compositions", len(compositions)))

        resolve = (
            request.resolve_substances
            if request.resolve_substances is not None
            else settings.resolve_substances_on_assessment
        )
        if resolve and compositions:
            await self._resolve_substances(ctx, compositions, report)

        # 4. Rule evaluation
        use_categories = request.use_categories
        if use_categories is None:
            use_categories = await self.registry.use_categories(ctx, request.object_type, request.object_id)

        results = await self._evaluate_jurisdictions(ctx, request, assessment, compositions, use_categories, report)
        computed = AssessmentStatus.fold([result.status for result in results], request.initial_status)

        assessment.computed_status = computed
        assessment.status = assessment.effective_status(now)
        assessment.reasoning = self._reasoning(results, report)
        assessment.decision_snapshot = self._snapshot(results, compositions, use_categories, report, now)
        assessment.assessed_by = ctx.actor
        assessment.assessed_at = now
        if request.source:
            assessment.source = request.source
        if request.verification_method:
            assessment.verification_method = request.verification_method

        await self.session.commit()
        report.add(StepResult.success("evaluate_rules", computed.value))

        logger.info(
            "Assessment updated",
            object_type=request.object_type,
            object_id=request.object_id,
            status=assessment.status.value,
            computed_status=computed.value,
            jurisdictions=report.evaluated_jurisdictions,
            compositions=len(compositions),
        )

        # 5-8. Downstream effects
        await self._run_downstream(ctx, assessment, compositions, report, now)

        if not report.ok:
            logger.warning(
                "Assessment pipeline completed with failures",
                assessment_id=str(assessment.id),
                failed_steps=[error.step for error in report.failures],
                jurisdiction_errors=[error.jurisdiction_code for error in report.jurisdiction_errors],
            )
        return OrchestrationResult(assessment=assessment, report=report)

    async def batch_scan(
        self,
        ctx: RequestContext,
        entity_ids: list[Any],
        entity_type: str,
        on_progress: ProgressCallback | None = None,
    ) -> BatchScanSummary:
        """
        Run the pipeline for each entity in turn.

        A failing entity is rolled back and recorded in `errors`; the scan
        continues with the next one.
        """
        summary = BatchScanSummary(total=len(entity_ids))
        for index, entity_id in enumerate(entity_ids, start=1):
            try:
                result = await self.create_or_update_assessment(
                    ctx,
                    AssessmentRequest(object_type=entity_type, object_id=str(entity_id), source="batch_scan"),
                )
            except Exception as e:
                await self.session.rollback()
                logger.error(
                    "Batch scan entity failed",
                    entity_type=entity_type,
                    entity_id=str(entity_id),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                summary.errors.append({"entity_id": str(entity_id), "error": str(e)})
            else:
                summary.processed += 1
                if result.status == AssessmentStatus.COMPLIANT:
                    summary.compliant += 1
                elif result.status == AssessmentStatus.NON_COMPLIANT:
                    summary.non_compliant += 1

            if on_progress is not None:
                await on_progress(index, summary.total)

        logger.info("Batch scan finished", entity_type=entity_type, **summary.to_dict())
        return summary

    # =========================================================================
    # Overrides
    # =========================================================================

    async def request_override(
        self,
        ctx: RequestContext,
        assessment_id: uuid.UUID,
        status: AssessmentStatus,
        justification: str,
        expires: datetime | None = None,
    ) -> ComplianceAssessment:
        """
        Request a manual override of the verdict.

        Overrides stricter than the computed verdict apply immediately. Any
        other override (and always one to compliant) stays pending until a
        second, different actor approves it.
        """
        if not justification or not justification.strip():
            raise ReviewPolicyError("An override requires a justification")

        assessment = await self.get_assessment(ctx, assessment_id)
        old_data = assessment.to_dict()
        stricter = (
            status != AssessmentStatus.COMPLIANT
            and status.severity_rank > assessment.computed_status.severity_rank
        )

        assessment.override_status = status
        assessment.override_justification = justification
        assessment.override_requested_by = ctx.actor
        assessment.override_expires = expires
        if stricter:
            assessment.override_state = OverrideStatus.APPROVED
            assessment.override_applied = True
            assessment.override_by = ctx.actor
        else:
            assessment.override_state = OverrideStatus.PENDING
            assessment.override_applied = False
            assessment.override_by = None

        await self._apply_effective_status(ctx, assessment)
        self.session.add(
            AuditLog.record(
                ctx,
                AuditAction.OVERRIDE_REQUEST,
                table_name="compliance_assessments",
                record_id=assessment.id,
                old_data=old_data,
                new_data=assessment.to_dict(),
                reason=justification,
            )
        )
        await self.session.commit()

        logger.info(
            "Override requested",
            assessment_id=str(assessment.id),
            override_status=status.value,
            applied=assessment.override_applied,
            actor=ctx.actor,
        )
        return assessment

    async def approve_override(self, ctx: RequestContext, assessment_id: uuid.UUID) -> ComplianceAssessment:
        """
        Second-person approval of a pending override.

        Raises:
            InvalidTransitionError: No pending override
            ReviewPolicyError: The requester tried to approve their own override
        """
        assessment = await self.get_assessment(ctx, assessment_id)
        if assessment.override_state != OverrideStatus.PENDING:
            current = assessment.override_state.value if assessment.override_state else "none"
            raise InvalidTransitionError("Override", current, OverrideStatus.APPROVED.value)
        if ctx.actor == assessment.override_requested_by:
            raise ReviewPolicyError("An override must be approved by someone other than the requester")

        old_data = assessment.to_dict()
        assessment.override_state = OverrideStatus.APPROVED
        assessment.override_applied = True
        assessment.override_by = ctx.actor
        await self._apply_effective_status(ctx, assessment)

        self.session.add(
            AuditLog.record(
                ctx,
                AuditAction.OVERRIDE_APPROVE,
                table_name="compliance_assessments",
                record_id=assessment.id,
                old_data=old_data,
                new_data=assessment.to_dict(),
                reason=assessment.override_justification,
            )
        )
        await self.session.commit()

        logger.info("Override approved", assessment_id=str(assessment.id), approver=ctx.actor)
        return assessment

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_assessment(self, ctx: RequestContext, assessment_id: uuid.UUID) -> ComplianceAssessment:
        assessment = (
            await self.session.execute(
                select(ComplianceAssessment).where(
                    ComplianceAssessment.tenant_id == ctx.tenant_id,
                    ComplianceAssessment.id == assessment_id,
                )
            )
        ).scalar_one_or_none()
        if assessment is None:
            raise EntityNotFoundError("ComplianceAssessment", assessment_id)
        return assessment

    async def find_assessment(
        self, ctx: RequestContext, object_type: str, object_id: str
    ) -> ComplianceAssessment | None:
        result = await self.session.execute(
            select(ComplianceAssessment).where(
                ComplianceAssessment.tenant_id == ctx.tenant_id,
                ComplianceAssessment.object_type == object_type,
                ComplianceAssessment.object_id == object_id,
            )
        )
        return result.scalar_one_or_none()

    async def load_current_compositions(
        self, ctx: RequestContext, object_type: str, object_id: str
    ) -> list[MaterialComposition]:
        result = await self.session.execute(
            select(MaterialComposition)
            .where(
                MaterialComposition.tenant_id == ctx.tenant_id,
                MaterialComposition.material_type == object_type,
                MaterialComposition.material_id == object_id,
                MaterialComposition.status == CompositionStatus.CURRENT,
            )
            .order_by(MaterialComposition.substance_cas, MaterialComposition.id)
        )
        return list(result.scalars().all())

    # =========================================================================
    # Steps
    # =========================================================================

    async def _upsert_assessment(self, ctx: RequestContext, request: AssessmentRequest) -> ComplianceAssessment:
        assessment = await self.find_assessment(ctx, request.object_type, request.object_id)
        if assessment is None:
            assessment = ComplianceAssessment(
                tenant_id=ctx.tenant_id,
                object_type=request.object_type,
                object_id=request.object_id,
                status=request.initial_status,
                computed_status=request.initial_status,
                assessed_by=ctx.actor,
            )
            self.session.add(assessment)

        if request.jurisdiction_id is not None:
            assessment.jurisdiction_id = request.jurisdiction_id
        if request.ruleset_id is not None:
            assessment.ruleset_id = request.ruleset_id

        await self.session.flush()
        return assessment

    async def _resolve_substances(
        self,
        ctx: RequestContext,
        compositions: list[CompositionView],
        report: PipelineReport,
    ) -> None:
        """Verify each distinct CAS; failures are recorded, not fatal."""
        cas_numbers = sorted({c.substance_cas for c in compositions if c.substance_cas})
        for cas_number in cas_numbers:
            try:
                await self.verifier.verify(ctx, cas_number)
            except ComplianceError as e:
                logger.warning("Substance could not be resolved", cas_number=cas_number, error=str(e))
                report.verification_errors[cas_number] = str(e)
        report.add(
            StepResult.success(
                "resolve_substances",
                {"checked": len(cas_numbers), "failed": len(report.verification_errors)},
            )
        )

    async def _jurisdictions(self, ctx: RequestContext, request: AssessmentRequest) -> list[Jurisdiction]:
        if request.jurisdiction_id is not None:
            jurisdiction = (
                await self.session.execute(
                    select(Jurisdiction).where(
                        Jurisdiction.tenant_id == ctx.tenant_id,
                        Jurisdiction.id == request.jurisdiction_id,
                    )
                )
            ).scalar_one_or_none()
            if jurisdiction is None:
                raise EntityNotFoundError("Jurisdiction", request.jurisdiction_id)
            return [jurisdiction]

        result = await self.session.execute(
            select(Jurisdiction)
            .where(Jurisdiction.tenant_id == ctx.tenant_id, Jurisdiction.active.is_(True))
            .order_by(Jurisdiction.priority, Jurisdiction.code)
            .limit(self.max_jurisdictions)
        )
        return list(result.scalars().all())

    async def _evaluate_jurisdictions(
        self,
        ctx: RequestContext,
        request: AssessmentRequest,
        assessment: ComplianceAssessment,
        compositions: list[CompositionView],
        use_categories: list[str],
        report: PipelineReport,
    ) -> list[RuleEvaluationResult]:
        results = []
        for jurisdiction in await self._jurisdictions(ctx, request):
            code = jurisdiction.code
            try:
                # Savepoint: a failed flush discards only this jurisdiction's evaluation, actions and locks
                async with self.session.begin_nested():
                    result = await self.rule_engine.evaluate(
                        ctx,
                        request.object_type,
                        request.object_id,
                        jurisdiction.id,
                        compositions,
                        use_categories=use_categories,
                        assessment=assessment,
                    )
            except Exception as e:
                error = JurisdictionEvaluationError(code, e)
                logger.error("Jurisdiction evaluation failed", jurisdiction=code, error=str(e))
                report.jurisdiction_errors.append(error)
                continue
            results.append(result)
            report.evaluated_jurisdictions.append(code)
        return results

    @staticmethod
    def _reasoning(results: list[RuleEvaluationResult], report: PipelineReport) -> str:
        if not results:
            if report.jurisdiction_errors:
                return "No jurisdiction could be evaluated"
            return "No active jurisdiction configured"
        return "\n\n".join(f"{result.jurisdiction_code}: {result.reasoning}" for result in results)

    @staticmethod
    def _snapshot(
        results: list[RuleEvaluationResult],
        compositions: list[CompositionView],
        use_categories: list[str],
        report: PipelineReport,
        now: datetime,
    ) -> dict[str, Any]:
        """Summary of the latest run; full rule copies live on each RuleEvaluation."""
        return {
            "evaluated_at": now.isoformat(),
            "jurisdictions": [
                {
                    "id": str(result.jurisdiction_id),
                    "code": result.jurisdiction_code,
                    "status": result.status.value,
                    "evaluation_id": str(result.evaluation_id) if result.evaluation_id else None,
                    "triggered_rule_ids": [rule.rule_id for rule in result.triggered_rules],
                }
                for result in results
            ],
            "compositions": [composition.to_dict() for composition in compositions],
            "use_categories": list(use_categories),
            "jurisdiction_errors": [
                {"jurisdiction": error.jurisdiction_code, "message": str(error.cause)}
                for error in report.jurisdiction_errors
            ],
            "verification_errors": dict(report.verification_errors),
        }

    async def _apply_effective_status(self, ctx: RequestContext, assessment: ComplianceAssessment) -> None:
        assessment.status = assessment.effective_status()
        await self.registry.apply_status(ctx, assessment.object_type, assessment.object_id, assessment.status, utcnow())
        await self.session.flush()

    # =========================================================================
    # Downstream effects
    # =========================================================================

    async def _run_effect(
        self,
        report: PipelineReport,
        assessment: ComplianceAssessment,
        step: str,
        effect: Callable[[], Awaitable[Any]],
    ) -> StepResult:
        """Run one best-effort step in its own commit."""
        try:
            value = await effect()
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            # Rollback expires loaded state; reload the committed verdict
            await self.session.refresh(assessment)
            logger.error(
                "Downstream step failed",
                step=step,
                assessment_id=str(assessment.id),
                error=str(e),
                error_type=type(e).__name__,
            )
            return report.add(StepResult.failure(step, e))
        return report.add(StepResult.success(step, value))

    async def _run_downstream(
        self,
        ctx: RequestContext,
        assessment: ComplianceAssessment,
        compositions: list[CompositionView],
        report: PipelineReport,
        now: datetime,
    ) -> None:
        object_type = assessment.object_type
        object_id = assessment.object_id
        status = assessment.status
        non_compliant = status == AssessmentStatus.NON_COMPLIANT

        # 5. Linked entity
        async def propagate() -> bool:
            return await self.registry.apply_status(ctx, object_type, object_id, status, now)

        await self._run_effect(report, assessment, "propagate_status", propagate)

        # 6. SCIP notifications and risk alert
        async def scip() -> int:
            return await self.notifications.ensure_scip_notifications(ctx, assessment, compositions)

        await self._run_effect(report, assessment, "scip_notifications", scip)

        if non_compliant:
            async def risk_alert() -> dict[str, Any]:
                alert, created = await self.notifications.ensure_risk_alert(ctx, assessment)
                return {"alert_id": str(alert.id), "created": created}

            await self._run_effect(report, assessment, "risk_alert", risk_alert)
        else:
            report.add(StepResult.skip("risk_alert", f"status is {status.value}"))

        # 7. Substitution scenario
        if non_compliant and compositions:
            async def substitution() -> dict[str, Any]:
                if self.substitution is not None:
                    scenario, created = await self.substitution.ensure_scenario(ctx, assessment, compositions)
                else:
                    async with get_llm_client() as llm:
                        planner = SubstitutionPlanner(self.session, SubstitutionAdvisor(llm))
                        scenario, created = await planner.ensure_scenario(ctx, assessment, compositions)
                return {"scenario_id": str(scenario.id) if scenario else None, "created": created}

            await self._run_effect(report, assessment, "substitution_scenario", substitution)
        else:
            report.add(StepResult.skip("substitution_scenario", "not non-compliant or no compositions"))

        # 8. User alert and email
        if not non_compliant:
            report.add(StepResult.skip("user_notification", f"status is {status.value}"))
            report.add(StepResult.skip("email", f"status is {status.value}"))
            return

        async def recipient() -> str:
            entity = await self.registry.get(ctx, object_type, object_id)
            if entity is not None and entity.responsible_email:
                return entity.responsible_email
            return settings.compliance_contact_email

        async def notify() -> str:
            notification = await self.notifications.notify_non_compliance(ctx, assessment, await recipient())
            return str(notification.id)

        await self._run_effect(report, assessment, "user_notification", notify)

        async def email() -> str:
            to = await recipient()
            await self.notifications.email_non_compliance(assessment, to)
            return to

        await self._run_effect(report, assessment, "email", email)
