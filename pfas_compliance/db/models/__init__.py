"""
Database models for the PFAS compliance pipeline.

This package contains SQLAlchemy models for:
- Substance: Verified chemical identities (30-day cache over providers)
- EvidencePackage / EvidenceDocument: Graded declarations and source files
- MaterialComposition: Substance occurrences read by the rule engine
- Jurisdiction / Ruleset / Rule: Versioned regulatory rules
- ComplianceAssessment / RuleEvaluation: Verdicts and their audit history
- Action / SubstitutionScenario / SCIPNotification / RiskAlert / Notification:
  Idempotent downstream artifacts
- Product / Supplier / Packaging / Material: Linked business entities
- AuditLog: Review, supersession, override and rule-version decisions

Usage:
    from pfas_compliance.db.models import Substance, EvidencePackage

All models inherit from the base classes in pfas_compliance.db.base and use:
- UUID7 primary keys (time-sortable, globally unique)
- A tenant_id partition key
- Timestamp mixins (created_at, updated_at)
- JSONB for flexible metadata
"""

from pfas_compliance.db.models.assessment import ComplianceAssessment, RuleEvaluation
from pfas_compliance.db.models.audit_log import AuditAction, AuditLog
from pfas_compliance.db.models.business import Material, Packaging, Product, Supplier
from pfas_compliance.db.models.composition import MaterialComposition
from pfas_compliance.db.models.evidence import EvidenceDocument, EvidencePackage
from pfas_compliance.db.models.regulation import Jurisdiction, Rule, Ruleset
from pfas_compliance.db.models.remediation import (
    Action,
    Notification,
    RiskAlert,
    SCIPNotification,
    SubstitutionScenario,
)
from pfas_compliance.db.models.substance import Substance

__all__ = [
    # Chemistry
    "Substance",
    # Evidence
    "EvidencePackage",
    "EvidenceDocument",
    "MaterialComposition",
    # Regulation
    "Jurisdiction",
    "Ruleset",
    "Rule",
    # Verdicts
    "ComplianceAssessment",
    "RuleEvaluation",
    # Downstream artifacts
    "Action",
    "SubstitutionScenario",
    "SCIPNotification",
    "RiskAlert",
    "Notification",
    # Linked entities
    "Product",
    "Supplier",
    "Packaging",
    "Material",
    # Audit
    "AuditLog",
    "AuditAction",
]
