"""
Append-only audit trail.

Evidence packages and locked rules are never edited in place once a verdict
depends on them. Review decisions, supersession, expiry, verdict overrides
and new rule versions each leave one row here with before/after snapshots
(`Base.to_dict`) and the acting user.
"""

import uuid
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pfas_compliance.db.base import Base, CreatedAtMixin, JSONType, TenantMixin, UUIDMixin, enum_column

if TYPE_CHECKING:
    from pfas_compliance.core.context import RequestContext


class AuditAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    SUPERSEDE = "SUPERSEDE"
    EXPIRE = "EXPIRE"
    OVERRIDE_REQUEST = "OVERRIDE_REQUEST"
    OVERRIDE_APPROVE = "OVERRIDE_APPROVE"
    RULE_VERSION = "RULE_VERSION"


class AuditLog(UUIDMixin, TenantMixin, CreatedAtMixin, Base):
    """One decision on an evidence package, assessment or rule.

    ``actor`` is ``"system"`` for the scheduled expiry sweep.
    """

    table_name: Mapped[str] = mapped_column(String(100), nullable=False, comment="Name of the affected table")
    record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, comment="UUID of the affected record"
    )
    action: Mapped[AuditAction] = mapped_column(enum_column(AuditAction, length=30), nullable=False)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)

    old_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    new_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog({self.action.value} {self.table_name}/{self.record_id} by {self.actor})>"

    @classmethod
    def record(
        cls,
        ctx: "RequestContext",
        action: AuditAction,
        table_name: str,
        record_id: uuid.UUID,
        old_data: dict | None = None,
        new_data: dict | None = None,
        reason: str | None = None,
    ) -> "AuditLog":
        """Entry attributed to the tenant and actor of `ctx`.

        Usage:
            async with transaction(session):
                package.review_status = ReviewStatus.REJECTED
                session.add(AuditLog.record(ctx, AuditAction.REJECT, "evidence_packages", package.id))
        """
        return cls(
            tenant_id=ctx.tenant_id,
            table_name=table_name,
            record_id=record_id,
            action=action,
            actor=ctx.actor,
            old_data=old_data,
            new_data=new_data,
            reason=reason,
        )


# History of one record, newest first
Index("ix_audit_logs_table_record", AuditLog.table_name, AuditLog.record_id)
Index("ix_audit_logs_created_at", AuditLog.created_at.desc())
