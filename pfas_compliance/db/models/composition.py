"""
MaterialComposition model: one row per (material, substance) occurrence.

Rows are created UNDER_REVIEW alongside their evidence package. Approval
promotes them to CURRENT and expires any older CURRENT row for the same
(material, substance); rejection expires them directly. The rule engine only
ever reads CURRENT rows.
"""

import uuid
from datetime import date

from sqlalchemy import Date, Float, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pfas_compliance.db.base import Base, TenantMixin, TimestampMixin, UUIDMixin, enum_column
from pfas_compliance.db.enums import CompositionSourceType, CompositionStatus


class MaterialComposition(UUIDMixin, TenantMixin, TimestampMixin, Base):
    """
    A substance occurrence in a material, as declared or measured.

    Attributes:
        material_id: The object the evidence package was about
        material_type: Its object type (Material, Product, ...)
        substance_cas: CAS number; null when the declaration named no CAS
        substance_name: Name as declared
        typical_concentration: Concentration in `unit_basis`
        unit_basis: Always "ppm" for rule evaluation
        source_type: supplier_declaration / lab_test / ai_inferred
        confidence_score: 0.0-1.0
        source_document_id: The evidence package this row came from
        status: under_review / current / expired
    """

    material_id: Mapped[str] = mapped_column(String(100), nullable=False)
    material_type: Mapped[str] = mapped_column(String(50), nullable=False)

    substance_cas: Mapped[str | None] = mapped_column(String(20), nullable=True)
    substance_name: Mapped[str | None] = mapped_column(String(500), nullable=True)

    typical_concentration: Mapped[float | None] = mapped_column(Float, nullable=True)
    unit_basis: Mapped[str] = mapped_column(String(20), nullable=False, default="ppm")

    source_type: Mapped[CompositionSourceType] = mapped_column(
        enum_column(CompositionSourceType),
        nullable=False,
    )
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    source_document_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        index=True,
        comment="Evidence package that produced this row",
    )

    status: Mapped[CompositionStatus] = mapped_column(
        enum_column(CompositionStatus),
        nullable=False,
        default=CompositionStatus.UNDER_REVIEW,
    )
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<MaterialComposition(material={self.material_id}, cas={self.substance_cas}, "
            f"ppm={self.typical_concentration}, status={self.status.value})>"
        )


Index(
    "ix_material_compositions_material_status",
    MaterialComposition.tenant_id,
    MaterialComposition.material_id,
    MaterialComposition.status,
)

Index(
    "ix_material_compositions_material_substance",
    MaterialComposition.tenant_id,
    MaterialComposition.material_id,
    MaterialComposition.substance_cas,
)
