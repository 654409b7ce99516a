"""Persistence layer: declarative base, engine, session helpers and models."""

from pfas_compliance.db.base import (
    AsyncSessionLocal,
    Base,
    CreatedAtMixin,
    TenantMixin,
    TimestampMixin,
    UUIDMixin,
    dispose_engine,
    engine,
    metadata,
)
from pfas_compliance.db.models import (
    Action,
    AuditAction,
    AuditLog,
    ComplianceAssessment,
    EvidenceDocument,
    EvidencePackage,
    Jurisdiction,
    Material,
    MaterialComposition,
    Notification,
    Packaging,
    Product,
    RiskAlert,
    Rule,
    RuleEvaluation,
    Ruleset,
    SCIPNotification,
    Substance,
    SubstitutionScenario,
    Supplier,
)
from pfas_compliance.db.session import get_db, get_db_context, transaction

__all__ = [
    # Base classes
    "Base",
    # Mixins
    "UUIDMixin",
    "TenantMixin",
    "TimestampMixin",
    "CreatedAtMixin",
    # Models
    "Substance",
    "EvidencePackage",
    "EvidenceDocument",
    "MaterialComposition",
    "Jurisdiction",
    "Ruleset",
    "Rule",
    "ComplianceAssessment",
    "RuleEvaluation",
    "Action",
    "SubstitutionScenario",
    "SCIPNotification",
    "RiskAlert",
    "Notification",
    "Product",
    "Supplier",
    "Packaging",
    "Material",
    "AuditLog",
    "AuditAction",
    # Engine and factory
    "engine",
    "AsyncSessionLocal",
    "metadata",
    # Session utilities
    "get_db",
    "get_db_context",
    "transaction",
    # Shutdown
    "dispose_engine",
]
