"""
Substance model: one verified chemical identity per (tenant, CAS number).

Substance records double as a TTL cache in front of the external chemical
data providers: a record is servable without re-fetching only while
`now - last_updated < substance_cache_ttl_days`.
"""

from datetime import date, datetime, timedelta

from sqlalchemy import Boolean, Date, DateTime, Float, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pfas_compliance.db.base import (
    Base,
    JSONType,
    TenantMixin,
    TimestampMixin,
    UUIDMixin,
    as_utc,
    utcnow,
)


class Substance(UUIDMixin, TenantMixin, TimestampMixin, Base):
    """
    A chemical substance reconciled from multiple independent sources.

    Attributes:
        cas_number: Normalized CAS registry number (unique per tenant)
        name: Consensus name (first non-null provider in priority order)
        synonyms: Lower-cased, de-duplicated synonyms, capped in size
        pfas_flag: Regulatory provider reports a PFAS restriction
        svhc_status: Substance of Very High Concern
        restricted_status: Restricted under any tracked regulation
        restriction_threshold_ppm: Regulatory threshold, when known
        molecular_formula / molecular_weight: Consensus identity values
        external_ids: One identifier per source, e.g. {"pubchem": "9554"}
        verification_metadata: {sources_checked, verification_score, consistency_checks}
        last_updated: When the record was last verified against providers

    Example:
        substance = Substance(
            tenant_id="acme",
            cas_number="335-67-1",
            name="Perfluorooctanoic acid",
            pfas_flag=True,
            last_updated=utcnow(),
        )
    """

    cas_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Normalized CAS registry number",
    )

    name: Mapped[str | None] = mapped_column(String(500), nullable=True)

    synonyms: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    # === Regulatory status (regulatory provider only) ===
    pfas_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    svhc_status: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    restricted_status: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    restriction_threshold_ppm: Mapped[float | None] = mapped_column(Float, nullable=True)
    restriction_effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    regulatory_data_available: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="False when the regulatory provider returned nothing",
    )

    # === Identity ===
    molecular_formula: Mapped[str | None] = mapped_column(String(200), nullable=True)
    molecular_weight: Mapped[float | None] = mapped_column(Float, nullable=True)

    external_ids: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    verification_metadata: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="{sources_checked[], verification_score, consistency_checks[]}",
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="Last successful verification against providers",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "cas_number", name="uq_substances_tenant_cas"),
    )

    def __repr__(self) -> str:
        return f"<Substance(cas={self.cas_number}, name={self.name!r})>"

    def is_fresh(self, ttl_days: int, now: datetime | None = None) -> bool:
        """True while the record is younger than the cache TTL."""
        now = now or utcnow()
        return now - as_utc(self.last_updated) < timedelta(days=ttl_days)

    @property
    def verification_score(self) -> int | None:
        return (self.verification_metadata or {}).get("verification_score")


Index("ix_substances_svhc", Substance.tenant_id, Substance.svhc_status)
