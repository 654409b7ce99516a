"""
Regulatory models: jurisdictions, rulesets and versioned rules.

A Jurisdiction (EU, US-ME, ...) owns Rulesets; only ACTIVE rulesets are
evaluated. Rules are immutable once an evaluation has referenced them
(`locked`): editing a locked rule creates a new version and points the old
one at it through `superseded_by_id`, so decision snapshots stay replayable.
"""

import uuid
from datetime import date

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pfas_compliance.db.base import Base, JSONType, TenantMixin, TimestampMixin, UUIDMixin, enum_column
from pfas_compliance.db.enums import RuleSeverity, RulesetStatus


class Jurisdiction(UUIDMixin, TenantMixin, TimestampMixin, Base):
    """A regulatory jurisdiction. Lower `priority` is evaluated first."""

    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_jurisdictions_tenant_code"),
    )

    def __repr__(self) -> str:
        return f"<Jurisdiction(code={self.code}, active={self.active})>"


class Ruleset(UUIDMixin, TenantMixin, TimestampMixin, Base):
    """A versioned set of rules for one jurisdiction."""

    jurisdiction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("jurisdictions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[str] = mapped_column(String(50), nullable=False, default="1")
    status: Mapped[RulesetStatus] = mapped_column(
        enum_column(RulesetStatus),
        nullable=False,
        default=RulesetStatus.DRAFT,
    )
    effective_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    regulation_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Ruleset(name={self.name!r}, version={self.version}, status={self.status.value})>"


class Rule(UUIDMixin, TenantMixin, TimestampMixin, Base):
    """
    One threshold rule inside a ruleset.

    Attributes:
        code: Stable identifier shared by every version of the rule
        version: Incremented each time a locked rule is revised
        condition_json: Scope predicate {object_types[], use_categories[]};
            an empty or missing list matches everything
        thresholds_json: {max_concentration_ppm, aggregate_pfas_ppm}
        severity: critical (forces non_compliant) or warning
        exemptions_json: {exempted_uses[]}
        actions_json: {action_types[]} created when the rule triggers
        locked: Set once an evaluation referenced the rule
        superseded_by_id: Newer version of this rule, if any

    Example:
        rule = Rule(
            tenant_id="acme",
            ruleset_id=ruleset.id,
            code="EU-PFOA-25",
            name="PFOA and salts above 25 ppb",
            thresholds_json={"max_concentration_ppm": 25},
            severity=RuleSeverity.CRITICAL,
            actions_json={"action_types": ["substitute_material"]},
        )
    """

    ruleset_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("rulesets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    condition_json: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    thresholds_json: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    severity: Mapped[RuleSeverity] = mapped_column(
        enum_column(RuleSeverity),
        nullable=False,
        default=RuleSeverity.WARNING,
    )
    exemptions_json: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    actions_json: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    locked: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Immutable once referenced by an evaluation",
    )
    superseded_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("rules.id"),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("ruleset_id", "code", "version", name="uq_rules_ruleset_code_version"),
    )

    def __repr__(self) -> str:
        return f"<Rule(code={self.code}, v{self.version}, severity={self.severity.value})>"

    @property
    def is_current(self) -> bool:
        """Superseded versions are kept for replay but no longer evaluated."""
        return self.superseded_by_id is None

    @property
    def action_types(self) -> list[str]:
        return list((self.actions_json or {}).get("action_types") or [])


Index("ix_rulesets_jurisdiction_status", Ruleset.jurisdiction_id, Ruleset.status)
