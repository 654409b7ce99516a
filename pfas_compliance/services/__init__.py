"""
Compliance services.

- substance_verification: Cross-source CAS verification with a TTL cache
- evidence_pipeline: Evidence intake and the review state machine
- rule_engine / rule_catalog: Rule evaluation and versioned rule maintenance
- orchestrator: The assessment pipeline and its downstream effects
"""

from pfas_compliance.services.errors import (
    ComplianceError,
    DownstreamEffectError,
    EntityNotFoundError,
    InvalidCASNumberError,
    InvalidTransitionError,
    JurisdictionEvaluationError,
    ReviewPolicyError,
    RuleImmutableError,
    VerificationInsufficientError,
)
from pfas_compliance.services.evidence_pipeline import (
    DeclarationSubmission,
    DeclaredSubstance,
    DocumentUpload,
    EvidencePipeline,
)
from pfas_compliance.services.orchestrator import (
    AssessmentRequest,
    BatchScanSummary,
    ComplianceOrchestrator,
    OrchestrationResult,
)
from pfas_compliance.services.reporting import PipelineReport, StepResult
from pfas_compliance.services.rule_catalog import RuleCatalog
from pfas_compliance.services.rule_engine import RuleEngine, evaluate_rules
from pfas_compliance.services.substance_verification import SubstanceVerificationService

__all__ = [
    # Services
    "SubstanceVerificationService",
    "EvidencePipeline",
    "RuleEngine",
    "RuleCatalog",
    "ComplianceOrchestrator",
    # Inputs and results
    "AssessmentRequest",
    "OrchestrationResult",
    "BatchScanSummary",
    "DeclarationSubmission",
    "DeclaredSubstance",
    "DocumentUpload",
    "PipelineReport",
    "StepResult",
    "evaluate_rules",
    # Errors
    "ComplianceError",
    "VerificationInsufficientError",
    "InvalidCASNumberError",
    "JurisdictionEvaluationError",
    "DownstreamEffectError",
    "InvalidTransitionError",
    "ReviewPolicyError",
    "RuleImmutableError",
    "EntityNotFoundError",
]
