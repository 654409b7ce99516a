"""
Linked business entities carrying denormalized PFAS status.

Products, suppliers, packaging and materials are owned by other parts of the
application; the compliance pipeline only writes their PFAS fields so list
views can render status without joining assessments. Each entity implements
`apply_pfas_status(status, checked_at)` and declares the use categories its
rules' exemptions are matched against.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from pfas_compliance.db.base import Base, JSONType, TenantMixin, TimestampMixin, UUIDMixin, enum_column
from pfas_compliance.db.enums import AssessmentStatus


class _LinkedEntity(UUIDMixin, TenantMixin, TimestampMixin):
    """Columns shared by every linked entity."""

    name: Mapped[str] = mapped_column(String(500), nullable=False)
    use_categories: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Declared uses, matched against rule exemptions",
    )
    responsible_email: Mapped[str | None] = mapped_column(String(255), nullable=True)


class Product(_LinkedEntity, Base):
    pfas_status: Mapped[AssessmentStatus | None] = mapped_column(enum_column(AssessmentStatus), nullable=True)
    pfas_last_checked: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def apply_pfas_status(self, status: AssessmentStatus, checked_at: datetime) -> None:
        self.pfas_status = status
        self.pfas_last_checked = checked_at


class Supplier(_LinkedEntity, Base):
    pfas_relevant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pfas_risk_level: Mapped[str | None] = mapped_column(String(20), nullable=True)
    pfas_last_checked: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def apply_pfas_status(self, status: AssessmentStatus, checked_at: datetime) -> None:
        """Suppliers carry a risk level rather than a verdict."""
        self.pfas_relevant = True
        self.pfas_risk_level = status.risk_level
        self.pfas_last_checked = checked_at


class Packaging(_LinkedEntity, Base):
    contains_pfas: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pfas_checked_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def apply_pfas_status(self, status: AssessmentStatus, checked_at: datetime) -> None:
        self.contains_pfas = status == AssessmentStatus.NON_COMPLIANT
        self.pfas_checked_date = checked_at


class Material(_LinkedEntity, Base):
    pfas_status: Mapped[AssessmentStatus | None] = mapped_column(enum_column(AssessmentStatus), nullable=True)
    contains_pfas: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pfas_last_checked: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def apply_pfas_status(self, status: AssessmentStatus, checked_at: datetime) -> None:
        self.pfas_status = status
        self.contains_pfas = status in {AssessmentStatus.NON_COMPLIANT, AssessmentStatus.REQUIRES_ACTION}
        self.pfas_last_checked = checked_at
