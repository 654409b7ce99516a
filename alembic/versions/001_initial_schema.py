"""Initial schema - create all compliance tables.

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-03-03

This migration creates the complete compliance schema:
- substances: Verified chemical identities (TTL cache over providers)
- evidence_packages / evidence_documents: Graded declarations and source files
- material_compositions: Substance occurrences read by the rule engine
- jurisdictions / rulesets / rules: Versioned regulatory rules
- compliance_assessments / rule_evaluations: Verdicts and their history
- actions / substitution_scenarios / scip_notifications / risk_alerts /
  notifications: Downstream artifacts
- products / suppliers / packagings / materials: Linked business entities
- audit_logs: Review, override and rule-version decisions

Enum columns are stored as strings (values), not native ENUM types, so
adding a member never needs a migration.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _jsonb(name: str, comment: str | None = None, nullable: bool = False) -> sa.Column:
    return sa.Column(name, postgresql.JSONB(astext_type=sa.Text()), nullable=nullable, comment=comment)


def _common(table: str) -> list:
    """id, tenant_id and timestamps shared by every mutable table."""
    return [
        sa.Column("id", sa.UUID(), nullable=False, comment="UUID7 primary key"),
        sa.Column("tenant_id", sa.String(length=64), nullable=False, comment="Tenant partition key"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id", name=f"pk_{table}"),
    ]


def _append_only(table: str) -> list:
    return [
        sa.Column("id", sa.UUID(), nullable=False, comment="UUID7 primary key"),
        sa.Column("tenant_id", sa.String(length=64), nullable=False, comment="Tenant partition key"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id", name=f"pk_{table}"),
    ]


def _tenant_index(table: str) -> None:
    op.create_index(f"ix_{table}_tenant_id", table, ["tenant_id"], unique=False)


def upgrade() -> None:
    """Create all tables, indexes, and constraints."""

    # --------------------------------------------------------------------------
    # substances table
    # --------------------------------------------------------------------------
    op.create_table(
        "substances",
        *_common("substances"),
        sa.Column("cas_number", sa.String(length=20), nullable=False, comment="Normalized CAS registry number"),
        sa.Column("name", sa.String(length=500), nullable=True),
        _jsonb("synonyms"),
        sa.Column("pfas_flag", sa.Boolean(), nullable=False),
        sa.Column("svhc_status", sa.Boolean(), nullable=False),
        sa.Column("restricted_status", sa.Boolean(), nullable=False),
        sa.Column("restriction_threshold_ppm", sa.Float(), nullable=True),
        sa.Column("restriction_effective_date", sa.Date(), nullable=True),
        sa.Column(
            "regulatory_data_available",
            sa.Boolean(),
            nullable=False,
            comment="False when the regulatory provider returned nothing",
        ),
        sa.Column("molecular_formula", sa.String(length=200), nullable=True),
        sa.Column("molecular_weight", sa.Float(), nullable=True),
        _jsonb("external_ids"),
        _jsonb("verification_metadata", "{sources_checked[], verification_score, consistency_checks[]}"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "last_updated",
            sa.DateTime(timezone=True),
            nullable=False,
            comment="Last successful verification against providers",
        ),
        sa.UniqueConstraint("tenant_id", "cas_number", name="uq_substances_tenant_cas"),
    )
    _tenant_index("substances")
    op.create_index("ix_substances_svhc", "substances", ["tenant_id", "svhc_status"], unique=False)

    # --------------------------------------------------------------------------
    # evidence_packages table
    # --------------------------------------------------------------------------
    op.create_table(
        "evidence_packages",
        *_common("evidence_packages"),
        sa.Column("object_type", sa.String(length=50), nullable=False),
        sa.Column("object_id", sa.String(length=100), nullable=False),
        sa.Column("claim_status", sa.String(length=32), nullable=False),
        sa.Column("intentionally_added", sa.String(length=32), nullable=False),
        sa.Column("threshold_definition", sa.Text(), nullable=True),
        sa.Column("threshold_numeric_ppm", sa.Float(), nullable=True),
        sa.Column("valid_from", sa.Date(), nullable=True),
        sa.Column("valid_to", sa.Date(), nullable=True),
        _jsonb("signatory", "{name, role, organization}"),
        sa.Column("source_type", sa.String(length=32), nullable=False),
        sa.Column("quality_grade", sa.String(length=1), nullable=False),
        sa.Column("confidence_score", sa.Integer(), nullable=False, comment="0-100"),
        sa.Column("review_status", sa.String(length=32), nullable=False),
        sa.Column("submitted_by", sa.String(length=255), nullable=False),
        sa.Column("reviewed_by", sa.String(length=255), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("superseded_by_id", sa.UUID(), nullable=True),
        sa.ForeignKeyConstraint(
            ["superseded_by_id"],
            ["evidence_packages.id"],
            name="fk_evidence_packages_superseded_by_id_evidence_packages",
        ),
    )
    _tenant_index("evidence_packages")
    op.create_index(
        "ix_evidence_packages_object",
        "evidence_packages",
        ["tenant_id", "object_type", "object_id"],
        unique=False,
    )
    op.create_index(
        "ix_evidence_packages_review_status",
        "evidence_packages",
        ["tenant_id", "review_status"],
        unique=False,
    )

    # --------------------------------------------------------------------------
    # evidence_documents table
    # --------------------------------------------------------------------------
    op.create_table(
        "evidence_documents",
        *_common("evidence_documents"),
        sa.Column("package_id", sa.UUID(), nullable=False),
        sa.Column("file_name", sa.String(length=500), nullable=False),
        sa.Column("file_url", sa.String(length=1000), nullable=True),
        sa.Column(
            "file_hash_sha256",
            sa.String(length=64),
            nullable=True,
            comment="SHA-256 of the file content (tamper evidence)",
        ),
        sa.Column("doc_type", sa.String(length=50), nullable=False),
        _jsonb("page_map", "Field -> page citation"),
        _jsonb("extraction_metadata", "{prompt_version, model_version, confidence_score}"),
        sa.Column("uploaded_by", sa.String(length=255), nullable=False),
        sa.ForeignKeyConstraint(
            ["package_id"],
            ["evidence_packages.id"],
            name="fk_evidence_documents_package_id_evidence_packages",
            ondelete="CASCADE",
        ),
    )
    _tenant_index("evidence_documents")
    op.create_index("ix_evidence_documents_package_id", "evidence_documents", ["package_id"], unique=False)
    op.create_index(
        "ix_evidence_documents_file_hash_sha256", "evidence_documents", ["file_hash_sha256"], unique=False
    )

    # --------------------------------------------------------------------------
    # material_compositions table
    # --------------------------------------------------------------------------
    op.create_table(
        "material_compositions",
        *_common("material_compositions"),
        sa.Column("material_id", sa.String(length=100), nullable=False),
        sa.Column("material_type", sa.String(length=50), nullable=False),
        sa.Column("substance_cas", sa.String(length=20), nullable=True),
        sa.Column("substance_name", sa.String(length=500), nullable=True),
        sa.Column("typical_concentration", sa.Float(), nullable=True),
        sa.Column("unit_basis", sa.String(length=20), nullable=False),
        sa.Column("source_type", sa.String(length=32), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column(
            "source_document_id",
            sa.UUID(),
            nullable=True,
            comment="Evidence package that produced this row",
        ),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("valid_until", sa.Date(), nullable=True),
    )
    _tenant_index("material_compositions")
    op.create_index(
        "ix_material_compositions_source_document_id",
        "material_compositions",
        ["source_document_id"],
        unique=False,
    )
    op.create_index(
        "ix_material_compositions_material_status",
        "material_compositions",
        ["tenant_id", "material_id", "status"],
        unique=False,
    )
    op.create_index(
        "ix_material_compositions_material_substance",
        "material_compositions",
        ["tenant_id", "material_id", "substance_cas"],
        unique=False,
    )

    # --------------------------------------------------------------------------
    # jurisdictions / rulesets / rules tables
    # --------------------------------------------------------------------------
    op.create_table(
        "jurisdictions",
        *_common("jurisdictions"),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.UniqueConstraint("tenant_id", "code", name="uq_jurisdictions_tenant_code"),
    )
    _tenant_index("jurisdictions")

    op.create_table(
        "rulesets",
        *_common("rulesets"),
        sa.Column("jurisdiction_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("version", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=True),
        sa.Column("regulation_reference", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(
            ["jurisdiction_id"],
            ["jurisdictions.id"],
            name="fk_rulesets_jurisdiction_id_jurisdictions",
            ondelete="CASCADE",
        ),
    )
    _tenant_index("rulesets")
    op.create_index("ix_rulesets_jurisdiction_id", "rulesets", ["jurisdiction_id"], unique=False)
    op.create_index("ix_rulesets_jurisdiction_status", "rulesets", ["jurisdiction_id", "status"], unique=False)

    op.create_table(
        "rules",
        *_common("rules"),
        sa.Column("ruleset_id", sa.UUID(), nullable=False),
        sa.Column("code", sa.String(length=100), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _jsonb("condition_json", "{object_types[], use_categories[]}"),
        _jsonb("thresholds_json", "{max_concentration_ppm, aggregate_pfas_ppm}"),
        sa.Column("severity", sa.String(length=32), nullable=False),
        _jsonb("exemptions_json", "{exempted_uses[]}"),
        _jsonb("actions_json", "{action_types[]}"),
        sa.Column("locked", sa.Boolean(), nullable=False, comment="Immutable once referenced by an evaluation"),
        sa.Column("superseded_by_id", sa.UUID(), nullable=True),
        sa.ForeignKeyConstraint(
            ["ruleset_id"],
            ["rulesets.id"],
            name="fk_rules_ruleset_id_rulesets",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(["superseded_by_id"], ["rules.id"], name="fk_rules_superseded_by_id_rules"),
        sa.UniqueConstraint("ruleset_id", "code", "version", name="uq_rules_ruleset_code_version"),
    )
    _tenant_index("rules")
    op.create_index("ix_rules_ruleset_id", "rules", ["ruleset_id"], unique=False)

    # --------------------------------------------------------------------------
    # compliance_assessments / rule_evaluations tables
    # --------------------------------------------------------------------------
    op.create_table(
        "compliance_assessments",
        *_common("compliance_assessments"),
        sa.Column("object_type", sa.String(length=50), nullable=False),
        sa.Column("object_id", sa.String(length=100), nullable=False),
        sa.Column("jurisdiction_id", sa.UUID(), nullable=True),
        sa.Column("ruleset_id", sa.UUID(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("computed_status", sa.String(length=32), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=False),
        _jsonb("evidence_package_ids"),
        _jsonb("decision_snapshot"),
        sa.Column("assessed_by", sa.String(length=255), nullable=False),
        sa.Column("assessed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(length=100), nullable=True),
        sa.Column("verification_method", sa.String(length=100), nullable=True),
        sa.Column("override_applied", sa.Boolean(), nullable=False),
        sa.Column("override_status", sa.String(length=32), nullable=True),
        sa.Column("override_state", sa.String(length=32), nullable=True),
        sa.Column("override_justification", sa.Text(), nullable=True),
        sa.Column("override_requested_by", sa.String(length=255), nullable=True),
        sa.Column("override_by", sa.String(length=255), nullable=True),
        sa.Column("override_expires", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "tenant_id", "object_type", "object_id", name="uq_compliance_assessments_object"
        ),
    )
    _tenant_index("compliance_assessments")
    op.create_index(
        "ix_compliance_assessments_status", "compliance_assessments", ["tenant_id", "status"], unique=False
    )

    op.create_table(
        "rule_evaluations",
        *_append_only("rule_evaluations"),
        sa.Column("assessment_id", sa.UUID(), nullable=False),
        sa.Column("jurisdiction_id", sa.UUID(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        _jsonb("triggered_rule_ids"),
        sa.Column("reasoning", sa.Text(), nullable=False),
        _jsonb("decision_snapshot", "Frozen rules and compositions"),
        sa.ForeignKeyConstraint(
            ["assessment_id"],
            ["compliance_assessments.id"],
            name="fk_rule_evaluations_assessment_id_compliance_assessments",
            ondelete="CASCADE",
        ),
    )
    _tenant_index("rule_evaluations")
    op.create_index("ix_rule_evaluations_assessment_id", "rule_evaluations", ["assessment_id"], unique=False)
    op.create_index(
        "ix_rule_evaluations_created_at", "rule_evaluations", [sa.text("created_at DESC")], unique=False
    )

    # --------------------------------------------------------------------------
    # Downstream artifacts
    # --------------------------------------------------------------------------
    op.create_table(
        "actions",
        *_common("actions"),
        sa.Column("object_type", sa.String(length=50), nullable=False),
        sa.Column("object_id", sa.String(length=100), nullable=False),
        sa.Column("assessment_id", sa.UUID(), nullable=False),
        sa.Column("rule_id", sa.UUID(), nullable=False),
        sa.Column("rule_code", sa.String(length=100), nullable=False),
        sa.Column("action_type", sa.String(length=100), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("assigned_to", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(
            ["assessment_id"],
            ["compliance_assessments.id"],
            name="fk_actions_assessment_id_compliance_assessments",
            ondelete="CASCADE",
        ),
    )
    _tenant_index("actions")
    op.create_index("ix_actions_assessment_id", "actions", ["assessment_id"], unique=False)
    op.create_index(
        "ix_actions_natural_key",
        "actions",
        ["tenant_id", "object_type", "object_id", "rule_id", "action_type"],
        unique=False,
    )

    op.create_table(
        "substitution_scenarios",
        *_common("substitution_scenarios"),
        sa.Column("assessment_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(length=500), nullable=False),
        sa.Column("current_material", sa.String(length=500), nullable=False),
        sa.Column("current_substance_cas", sa.String(length=20), nullable=True),
        sa.Column("current_concentration_ppm", sa.Float(), nullable=True),
        sa.Column("substitute_material", sa.String(length=500), nullable=True),
        sa.Column("cost_ratio", sa.Float(), nullable=True),
        sa.Column("performance_impact", sa.String(length=50), nullable=True),
        sa.Column("supply_chain_risk_level", sa.String(length=20), nullable=True),
        sa.Column("supply_chain_risk_details", sa.Text(), nullable=True),
        sa.Column("regulatory_driver", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.ForeignKeyConstraint(
            ["assessment_id"],
            ["compliance_assessments.id"],
            name="fk_substitution_scenarios_assessment_id_compliance_assessments",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("assessment_id", name="uq_substitution_scenarios_assessment_id"),
    )
    _tenant_index("substitution_scenarios")

    op.create_table(
        "scip_notifications",
        *_common("scip_notifications"),
        sa.Column("primary_article_id", sa.String(length=100), nullable=False),
        sa.Column("article_name", sa.String(length=500), nullable=False),
        sa.Column("substance_cas", sa.String(length=20), nullable=False),
        sa.Column("substance_name", sa.String(length=500), nullable=True),
        sa.Column("concentration_ppm", sa.Float(), nullable=True),
        sa.Column("safe_use_info", sa.Text(), nullable=True),
        sa.Column("notification_status", sa.String(length=20), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.UniqueConstraint(
            "tenant_id",
            "primary_article_id",
            "substance_cas",
            name="uq_scip_notifications_article_substance",
        ),
    )
    _tenant_index("scip_notifications")

    op.create_table(
        "risk_alerts",
        *_common("risk_alerts"),
        sa.Column("alert_type", sa.String(length=100), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=100), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=False),
    )
    _tenant_index("risk_alerts")
    op.create_index(
        "ix_risk_alerts_natural_key",
        "risk_alerts",
        ["tenant_id", "alert_type", "entity_type", "entity_id"],
        unique=False,
    )

    op.create_table(
        "notifications",
        *_common("notifications"),
        sa.Column("notification_type", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("target_user", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False),
    )
    _tenant_index("notifications")
    op.create_index(
        "ix_notifications_target", "notifications", ["tenant_id", "target_user", "read"], unique=False
    )

    # --------------------------------------------------------------------------
    # Linked business entities
    # --------------------------------------------------------------------------
    def entity_columns(table: str) -> list:
        return [
            *_common(table),
            sa.Column("name", sa.String(length=500), nullable=False),
            _jsonb("use_categories", "Declared uses, matched against rule exemptions"),
            sa.Column("responsible_email", sa.String(length=255), nullable=True),
        ]

    op.create_table(
        "products",
        *entity_columns("products"),
        sa.Column("pfas_status", sa.String(length=32), nullable=True),
        sa.Column("pfas_last_checked", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "suppliers",
        *entity_columns("suppliers"),
        sa.Column("pfas_relevant", sa.Boolean(), nullable=False),
        sa.Column("pfas_risk_level", sa.String(length=20), nullable=True),
        sa.Column("pfas_last_checked", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "packagings",
        *entity_columns("packagings"),
        sa.Column("contains_pfas", sa.Boolean(), nullable=False),
        sa.Column("pfas_checked_date", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "materials",
        *entity_columns("materials"),
        sa.Column("pfas_status", sa.String(length=32), nullable=True),
        sa.Column("contains_pfas", sa.Boolean(), nullable=False),
        sa.Column("pfas_last_checked", sa.DateTime(timezone=True), nullable=True),
    )
    for table in ("products", "suppliers", "packagings", "materials"):
        _tenant_index(table)

    # --------------------------------------------------------------------------
    # audit_logs table
    # --------------------------------------------------------------------------
    op.create_table(
        "audit_logs",
        *_append_only("audit_logs"),
        sa.Column("table_name", sa.String(length=100), nullable=False, comment="Name of the affected table"),
        sa.Column("record_id", sa.UUID(), nullable=False, comment="UUID of the affected record"),
        sa.Column("action", sa.String(length=30), nullable=False, comment="Type of action"),
        sa.Column("actor", sa.String(length=255), nullable=False, comment="Acting user"),
        _jsonb("old_data", "Record state before the action", nullable=True),
        _jsonb("new_data", "Record state after the action", nullable=True),
        sa.Column("reason", sa.Text(), nullable=True, comment="Optional context for why this action occurred"),
    )
    _tenant_index("audit_logs")
    op.create_index("ix_audit_logs_table_record", "audit_logs", ["table_name", "record_id"], unique=False)
    op.create_index("ix_audit_logs_created_at", "audit_logs", [sa.text("created_at DESC")], unique=False)


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_table("audit_logs")
    op.drop_table("materials")
    op.drop_table("packagings")
    op.drop_table("suppliers")
    op.drop_table("products")
    op.drop_table("notifications")
    op.drop_table("risk_alerts")
    op.drop_table("scip_notifications")
    op.drop_table("substitution_scenarios")
    op.drop_table("actions")
    op.drop_table("rule_evaluations")
    op.drop_table("compliance_assessments")
    op.drop_table("rules")
    op.drop_table("rulesets")
    op.drop_table("jurisdictions")
    op.drop_table("material_compositions")
    op.drop_table("evidence_documents")
    op.drop_table("evidence_packages")
    op.drop_table("substances")
