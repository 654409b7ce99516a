"""
Remediation and reporting artifacts produced by the orchestrator.

Each artifact has a natural key and is created check-then-create, so running
the same assessment twice never duplicates it:

- Action: (tenant, object_type, object_id, rule_id, action_type) while open
- SubstitutionScenario: assessment_id
- SCIPNotification: (tenant, primary_article_id, substance_cas)
- RiskAlert: (tenant, alert_type, entity_type, entity_id) while open

Notification rows are user-facing alerts and carry no uniqueness guarantee.
"""

import uuid

from sqlalchemy import Boolean, Float, ForeignKey, Index, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pfas_compliance.db.base import Base, TenantMixin, TimestampMixin, UUIDMixin, enum_column
from pfas_compliance.db.enums import ActionStatus, AlertStatus


class Action(UUIDMixin, TenantMixin, TimestampMixin, Base):
    """A remediation task created for one action type of a triggered rule."""

    object_type: Mapped[str] = mapped_column(String(50), nullable=False)
    object_id: Mapped[str] = mapped_column(String(100), nullable=False)
    assessment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("compliance_assessments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rule_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    rule_code: Mapped[str] = mapped_column(String(100), nullable=False)
    action_type: Mapped[str] = mapped_column(String(100), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[ActionStatus] = mapped_column(
        enum_column(ActionStatus),
        nullable=False,
        default=ActionStatus.OPEN,
    )
    assigned_to: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Action(type={self.action_type}, rule={self.rule_code}, status={self.status.value})>"


class SubstitutionScenario(UUIDMixin, TenantMixin, TimestampMixin, Base):
    """A suggested PFAS-free substitute for the dominant substance of an object."""

    assessment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("compliance_assessments.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    current_material: Mapped[str] = mapped_column(String(500), nullable=False)
    current_substance_cas: Mapped[str | None] = mapped_column(String(20), nullable=True)
    current_concentration_ppm: Mapped[float | None] = mapped_column(Float, nullable=True)
    substitute_material: Mapped[str | None] = mapped_column(String(500), nullable=True)
    cost_ratio: Mapped[float | None] = mapped_column(Float, nullable=True)
    performance_impact: Mapped[str | None] = mapped_column(String(50), nullable=True)
    supply_chain_risk_level: Mapped[str | None] = mapped_column(String(20), nullable=True)
    supply_chain_risk_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    regulatory_driver: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="under_review")
    created_by: Mapped[str] = mapped_column(String(255), nullable=False, default="system")

    def __repr__(self) -> str:
        return f"<SubstitutionScenario(current={self.current_material!r}, substitute={self.substitute_material!r})>"


class SCIPNotification(UUIDMixin, TenantMixin, TimestampMixin, Base):
    """Draft SCIP database notification for an SVHC found in an article."""

    __tablename__ = "scip_notifications"

    primary_article_id: Mapped[str] = mapped_column(String(100), nullable=False)
    article_name: Mapped[str] = mapped_column(String(500), nullable=False)
    substance_cas: Mapped[str] = mapped_column(String(20), nullable=False)
    substance_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    concentration_ppm: Mapped[float | None] = mapped_column(Float, nullable=True)
    safe_use_info: Mapped[str | None] = mapped_column(Text, nullable=True)
    notification_status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    created_by: Mapped[str] = mapped_column(String(255), nullable=False, default="system")

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "primary_article_id",
            "substance_cas",
            name="uq_scip_notifications_article_substance",
        ),
    )

    def __repr__(self) -> str:
        return f"<SCIPNotification(article={self.primary_article_id}, cas={self.substance_cas})>"


class RiskAlert(UUIDMixin, TenantMixin, TimestampMixin, Base):
    """An open risk item for an entity, shown on the risk dashboard."""

    alert_type: Mapped[str] = mapped_column(String(100), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[AlertStatus] = mapped_column(
        enum_column(AlertStatus),
        nullable=False,
        default=AlertStatus.OPEN,
    )
    created_by: Mapped[str] = mapped_column(String(255), nullable=False, default="system")

    def __repr__(self) -> str:
        return f"<RiskAlert(type={self.alert_type}, entity={self.entity_type}:{self.entity_id})>"


class Notification(UUIDMixin, TenantMixin, TimestampMixin, Base):
    """User-facing alert shown in the notification center."""

    notification_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="info")
    target_user: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Notification(type={self.notification_type}, target={self.target_user})>"


# === Indexes ===
# Natural-key lookups for check-then-create
Index(
    "ix_actions_natural_key",
    Action.tenant_id,
    Action.object_type,
    Action.object_id,
    Action.rule_id,
    Action.action_type,
)
Index(
    "ix_risk_alerts_natural_key",
    RiskAlert.tenant_id,
    RiskAlert.alert_type,
    RiskAlert.entity_type,
    RiskAlert.entity_id,
)
Index("ix_notifications_target", Notification.tenant_id, Notification.target_user, Notification.read)
