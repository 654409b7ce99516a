"""
Rule maintenance: jurisdictions, rulesets and versioned rules.

Rules referenced by an evaluation are locked. `update_rule` refuses to touch
a locked rule; `revise_rule` creates the next version instead, points the old
version at it, and audits the change, so earlier decision snapshots still
describe exactly the rule they were evaluated against.
"""

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pfas_compliance.core.context import RequestContext
from pfas_compliance.core.logging import get_logger
from pfas_compliance.db.enums import RuleSeverity, RulesetStatus
from pfas_compliance.db.models import AuditAction, AuditLog, Jurisdiction, Rule, Ruleset
from pfas_compliance.services.errors import EntityNotFoundError, RuleImmutableError

logger = get_logger(__name__)

# Columns a revision may change
REVISABLE_FIELDS = (
    "name",
    "description",
    "condition_json",
    "thresholds_json",
    "severity",
    "exemptions_json",
    "actions_json",
)


class RuleCatalog:
    """CRUD over the regulatory catalog with rule immutability enforced."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # Jurisdictions and rulesets
    # =========================================================================

    async def create_jurisdiction(
        self,
        ctx: RequestContext,
        code: str,
        name: str,
        priority: int = 100,
        active: bool = True,
    ) -> Jurisdiction:
        jurisdiction = Jurisdiction(
            tenant_id=ctx.tenant_id,
            code=code.strip().upper(),
            name=name,
            priority=priority,
            active=active,
        )
        self.session.add(jurisdiction)
        await self.session.flush()
        return jurisdiction

    async def get_jurisdiction_by_code(self, ctx: RequestContext, code: str) -> Jurisdiction | None:
        result = await self.session.execute(
            select(Jurisdiction).where(
                Jurisdiction.tenant_id == ctx.tenant_id,
                Jurisdiction.code == code.strip().upper(),
            )
        )
        return result.scalar_one_or_none()

    async def list_jurisdictions(self, ctx: RequestContext, active_only: bool = False) -> list[Jurisdiction]:
        """Jurisdictions in evaluation order (priority, then code)."""
        query = select(Jurisdiction).where(Jurisdiction.tenant_id == ctx.tenant_id)
        if active_only:
            query = query.where(Jurisdiction.active.is_(True))
        query = query.order_by(Jurisdiction.priority, Jurisdiction.code)
        return list((await self.session.execute(query)).scalars().all())

    async def create_ruleset(
        self,
        ctx: RequestContext,
        jurisdiction_id: uuid.UUID,
        name: str,
        version: str = "1",
        status: RulesetStatus = RulesetStatus.DRAFT,
        regulation_reference: str | None = None,
    ) -> Ruleset:
        await self._get(ctx, Jurisdiction, jurisdiction_id)
        ruleset = Ruleset(
            tenant_id=ctx.tenant_id,
            jurisdiction_id=jurisdiction_id,
            name=name,
            version=version,
            status=status,
            regulation_reference=regulation_reference,
        )
        self.session.add(ruleset)
        await self.session.flush()
        return ruleset

    async def set_ruleset_status(
        self, ctx: RequestContext, ruleset_id: uuid.UUID, status: RulesetStatus
    ) -> Ruleset:
        ruleset = await self._get(ctx, Ruleset, ruleset_id)
        ruleset.status = status
        await self.session.flush()
        logger.info("Ruleset status changed", ruleset=ruleset.name, status=status.value)
        return ruleset

    # =========================================================================
    # Rules
    # =========================================================================

    async def add_rule(
        self,
        ctx: RequestContext,
        ruleset_id: uuid.UUID,
        code: str,
        name: str,
        severity: RuleSeverity = RuleSeverity.WARNING,
        thresholds: dict[str, Any] | None = None,
        condition: dict[str, Any] | None = None,
        exemptions: dict[str, Any] | None = None,
        action_types: list[str] | None = None,
        description: str | None = None,
    ) -> Rule:
        await self._get(ctx, Ruleset, ruleset_id)
        rule = Rule(
            tenant_id=ctx.tenant_id,
            ruleset_id=ruleset_id,
            code=code,
            version=1,
            name=name,
            description=description,
            severity=severity,
            thresholds_json=dict(thresholds or {}),
            condition_json=dict(condition or {}),
            exemptions_json=dict(exemptions or {}),
            actions_json={"action_types": list(action_types or [])},
        )
        self.session.add(rule)
        await self.session.flush()
        return rule

    async def list_rules(
        self, ctx: RequestContext, ruleset_id: uuid.UUID, include_superseded: bool = False
    ) -> list[Rule]:
        query = select(Rule).where(Rule.tenant_id == ctx.tenant_id, Rule.ruleset_id == ruleset_id)
        if not include_superseded:
            query = query.where(Rule.superseded_by_id.is_(None))
        query = query.order_by(Rule.code, Rule.version)
        return list((await self.session.execute(query)).scalars().all())

    async def get_rule(self, ctx: RequestContext, rule_id: uuid.UUID) -> Rule:
        return await self._get(ctx, Rule, rule_id)

    async def update_rule(self, ctx: RequestContext, rule_id: uuid.UUID, changes: dict[str, Any]) -> Rule:
        """
        Edit a rule in place.

        Raises:
            RuleImmutableError: The rule is locked (use revise_rule)
        """
        rule = await self._get(ctx, Rule, rule_id)
        if rule.locked:
            raise RuleImmutableError(rule.id, rule.code)
        self._apply_changes(rule, changes)
        await self.session.flush()
        return rule

    async def revise_rule(self, ctx: RequestContext, rule_id: uuid.UUID, changes: dict[str, Any]) -> Rule:
        """
        Apply changes to a rule, versioning it when it is locked.

        Returns:
            The rule now in force: the same row when unlocked, else the new version
        """
        rule = await self._get(ctx, Rule, rule_id)
        if not rule.locked:
            return await self.update_rule(ctx, rule_id, changes)
        if not rule.is_current:
            raise RuleImmutableError(rule.id, rule.code)

        successor = Rule(
            tenant_id=rule.tenant_id,
            ruleset_id=rule.ruleset_id,
            code=rule.code,
            version=rule.version + 1,
            name=rule.name,
            description=rule.description,
            severity=rule.severity,
            condition_json=dict(rule.condition_json or {}),
            thresholds_json=dict(rule.thresholds_json or {}),
            exemptions_json=dict(rule.exemptions_json or {}),
            actions_json=dict(rule.actions_json or {}),
        )
        self._apply_changes(successor, changes)
        self.session.add(successor)
        await self.session.flush()

        old_data = rule.to_dict()
        rule.superseded_by_id = successor.id
        self.session.add(
            AuditLog.record(
                ctx,
                AuditAction.RULE_VERSION,
                table_name="rules",
                record_id=rule.id,
                old_data=old_data,
                new_data=successor.to_dict(),
                reason=f"Rule {rule.code} revised to version {successor.version}",
            )
        )
        await self.session.flush()

        logger.info("Rule versioned", code=rule.code, version=successor.version)
        return successor

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _apply_changes(rule: Rule, changes: dict[str, Any]) -> None:
        unknown = set(changes) - set(REVISABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot change rule fields: {', '.join(sorted(unknown))}")
        for name, value in changes.items():
            if name == "severity" and not isinstance(value, RuleSeverity):
                value = RuleSeverity(value)
            elif isinstance(value, dict):
                value = dict(value)
            setattr(rule, name, value)

    async def _get(self, ctx: RequestContext, model: Any, record_id: uuid.UUID) -> Any:
        record = (
            await self.session.execute(
                select(model).where(model.tenant_id == ctx.tenant_id, model.id == record_id)
            )
        ).scalar_one_or_none()
        if record is None:
            raise EntityNotFoundError(model.__name__, record_id)
        return record
