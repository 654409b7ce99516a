"""
Domain exceptions for the compliance pipeline.

Hierarchy::

    ComplianceError
    ├── VerificationInsufficientError   substance not found / score below gate
    ├── InvalidCASNumberError           malformed CAS or bad check digit
    ├── JurisdictionEvaluationError     one jurisdiction failed (caught, skipped)
    ├── DownstreamEffectError           notification/alert/scenario/email failed
    ├── InvalidTransitionError          illegal review state transition
    ├── ReviewPolicyError               four-eyes / draft policy violated
    ├── RuleImmutableError              edit of a locked rule
    └── EntityNotFoundError             unknown id for this tenant

Client errors of the external collaborators (ProviderError, LLMError,
EmailDeliveryError) live in their client modules and are translated or
absorbed by the services that call them.
"""

import uuid
from typing import Any


class ComplianceError(Exception):
    """Base exception for compliance pipeline errors."""

    pass


class VerificationInsufficientError(ComplianceError):
    """
    Cross-source verification did not reach the trust threshold.

    Raised when no identity provider knows the CAS number, or when the
    consistency score is below the gate. No Substance is written.
    """

    def __init__(
        self,
        cas_number: str,
        score: int,
        reason: str,
        sources_checked: list[str] | None = None,
    ):
        self.cas_number = cas_number
        self.score = score
        self.reason = reason
        self.sources_checked = sources_checked or []
        super().__init__(f"Verification insufficient for {cas_number}: {reason} (score={score})")


class InvalidCASNumberError(ComplianceError):
    """The identifier is not a well-formed CAS registry number."""

    def __init__(self, value: str, reason: str = "invalid format"):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid CAS number {value!r}: {reason}")


class JurisdictionEvaluationError(ComplianceError):
    """Rule evaluation for one jurisdiction failed."""

    def __init__(self, jurisdiction_code: str, cause: Exception):
        self.jurisdiction_code = jurisdiction_code
        self.cause = cause
        super().__init__(f"Evaluation failed for jurisdiction {jurisdiction_code}: {cause}")


class DownstreamEffectError(ComplianceError):
    """A best-effort pipeline step failed after the verdict was committed."""

    def __init__(self, step: str, cause: Exception):
        self.step = step
        self.cause = cause
        super().__init__(f"Downstream step '{step}' failed: {cause}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "error_type": type(self.cause).__name__,
            "message": str(self.cause),
        }


class InvalidTransitionError(ComplianceError):
    """Requested review state transition is not allowed from the current state."""

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"{entity} cannot move from '{current}' to '{target}'")


class ReviewPolicyError(ComplianceError):
    """A review or override policy precondition was violated."""

    pass


class RuleImmutableError(ComplianceError):
    """Locked rules cannot be edited in place; create a new version instead."""

    def __init__(self, rule_id: uuid.UUID, code: str):
        self.rule_id = rule_id
        self.code = code
        super().__init__(f"Rule {code} ({rule_id}) is locked; create a new version")


class EntityNotFoundError(ComplianceError):
    """No record with this id exists in the caller's tenant."""

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")
