"""
Controlled vocabulary enums for the PFAS compliance pipeline.

This module defines the allowed values for:
- Evidence claims and provenance (claim status, quality grade, source type)
- The evidence review state machine
- Material composition lifecycle
- Compliance verdicts and rule severities
- Remediation artifacts and async job states

String values match the payloads accepted by the API and produced by the
extraction collaborator, so they map directly without translation.
"""

from enum import Enum


class ClaimStatus(str, Enum):
    """What a declaration states about PFAS presence in the object."""

    PRESENT = "present"
    NOT_PRESENT = "not_present"
    UNKNOWN = "unknown"
    INCONCLUSIVE = "inconclusive"

    @classmethod
    def from_string(cls, value: str | None) -> "ClaimStatus":
        """
        Normalize free-form claim text from extractions.

        Unrecognized or empty input maps to UNKNOWN rather than failing:
        the package still goes through review.

        Examples:
            ClaimStatus.from_string("Not Present")  -> ClaimStatus.NOT_PRESENT
            ClaimStatus.from_string("pfas-free")    -> ClaimStatus.NOT_PRESENT
            ClaimStatus.from_string("maybe")        -> ClaimStatus.UNKNOWN
        """
        if not value:
            return cls.UNKNOWN
        normalized = value.strip().lower().replace(" ", "_").replace("-", "_")
        for member in cls:
            if member.value == normalized:
                return member
        if normalized in {"pfas_free", "absent", "none", "free"}:
            return cls.NOT_PRESENT
        if normalized in {"contains", "yes", "detected"}:
            return cls.PRESENT
        return cls.UNKNOWN

    @classmethod
    def values(cls) -> list[str]:
        """Return list of all valid claim status values."""
        return [member.value for member in cls]


class IntentionallyAdded(str, Enum):
    """Whether the declared PFAS was intentionally added."""

    YES = "yes"
    NO = "no"
    UNKNOWN = "unknown"

    @classmethod
    def from_string(cls, value: str | bool | None) -> "IntentionallyAdded":
        """Accept yes/no strings as well as booleans from JSON payloads."""
        if isinstance(value, bool):
            return cls.YES if value else cls.NO
        if not value:
            return cls.UNKNOWN
        normalized = value.strip().lower()
        if normalized in {"yes", "true", "y"}:
            return cls.YES
        if normalized in {"no", "false", "n"}:
            return cls.NO
        return cls.UNKNOWN


class EvidenceSourceType(str, Enum):
    """Where an evidence package came from. Determines its quality grade."""

    LAB_TEST = "lab_test"
    SUPPLIER_DECLARATION = "supplier_declaration"
    AI_EXTRACTION = "ai_extraction"
    OTHER = "other"

    @property
    def quality_grade(self) -> "QualityGrade":
        """
        Provenance tier assigned at creation time.

        - lab_test             -> A (laboratory result, ground truth)
        - supplier_declaration -> B (requires a human decision)
        - ai_extraction        -> C (AI-inferred, requires a human decision)
        - other                -> D (unverified)
        """
        return {
            EvidenceSourceType.LAB_TEST: QualityGrade.A,
            EvidenceSourceType.SUPPLIER_DECLARATION: QualityGrade.B,
            EvidenceSourceType.AI_EXTRACTION: QualityGrade.C,
        }.get(self, QualityGrade.D)

    @property
    def composition_source(self) -> "CompositionSourceType":
        """Source type stamped on the MaterialComposition rows of a package."""
        if self == EvidenceSourceType.LAB_TEST:
            return CompositionSourceType.LAB_TEST
        if self == EvidenceSourceType.AI_EXTRACTION:
            return CompositionSourceType.AI_INFERRED
        return CompositionSourceType.SUPPLIER_DECLARATION


class QualityGrade(str, Enum):
    """Evidence provenance tier, from lab-tested (A) to unverified (D)."""

    A = "A"
    B = "B"
    C = "C"
    D = "D"

    @property
    def requires_second_person(self) -> bool:
        """Grades B, C and D need a reviewer other than the submitter."""
        return self != QualityGrade.A


class ReviewStatus(str, Enum):
    """
    Review state machine for evidence packages.

    Lifecycle::

        DRAFT -> SUBMITTED -> UNDER_REVIEW -> APPROVED -> SUPERSEDED
                          |               |-> REJECTED  |-> EXPIRED
                          |-> APPROVED / REJECTED (decided from the queue)

    Packages are never deleted; APPROVED packages leave the active set only
    by being superseded or expiring.
    """

    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"
    EXPIRED = "expired"

    def can_transition_to(self, target: "ReviewStatus") -> bool:
        """Check whether moving from this state to `target` is legal."""
        return target in _REVIEW_TRANSITIONS.get(self, frozenset())

    @property
    def is_terminal(self) -> bool:
        """Rejected, superseded and expired packages never change again."""
        return self in {ReviewStatus.REJECTED, ReviewStatus.SUPERSEDED, ReviewStatus.EXPIRED}

    @property
    def is_pending_review(self) -> bool:
        """Packages that belong in the reviewer queue."""
        return self in {ReviewStatus.SUBMITTED, ReviewStatus.UNDER_REVIEW}

    @classmethod
    def values(cls) -> list[str]:
        """Return list of all valid review status values."""
        return [member.value for member in cls]


_REVIEW_TRANSITIONS: dict[ReviewStatus, frozenset[ReviewStatus]] = {
    ReviewStatus.DRAFT: frozenset({ReviewStatus.SUBMITTED}),
    ReviewStatus.SUBMITTED: frozenset(
        {ReviewStatus.UNDER_REVIEW, ReviewStatus.APPROVED, ReviewStatus.REJECTED}
    ),
    ReviewStatus.UNDER_REVIEW: frozenset({ReviewStatus.APPROVED, ReviewStatus.REJECTED}),
    ReviewStatus.APPROVED: frozenset({ReviewStatus.SUPERSEDED, ReviewStatus.EXPIRED}),
}


class CompositionSourceType(str, Enum):
    """Provenance of a MaterialComposition row."""

    SUPPLIER_DECLARATION = "supplier_declaration"
    LAB_TEST = "lab_test"
    AI_INFERRED = "ai_inferred"


class CompositionStatus(str, Enum):
    """
    MaterialComposition lifecycle.

    Rows are created UNDER_REVIEW with their package, become CURRENT when the
    package is approved, and EXPIRED when rejected or replaced. At most one
    CURRENT row exists per (material, substance).
    """

    UNDER_REVIEW = "under_review"
    CURRENT = "current"
    EXPIRED = "expired"


class AssessmentStatus(str, Enum):
    """
    Compliance verdict for an object.

    Rule engine results only ever use COMPLIANT, REQUIRES_ACTION,
    NON_COMPLIANT and INSUFFICIENT_DATA. UNDER_REVIEW is the initial status of
    an assessment before any jurisdiction has produced a result.
    """

    COMPLIANT = "compliant"
    REQUIRES_ACTION = "requires_action"
    NON_COMPLIANT = "non_compliant"
    UNDER_REVIEW = "under_review"
    INSUFFICIENT_DATA = "insufficient_data"

    @property
    def severity_rank(self) -> int:
        """
        Position on the worsening scale used to fold verdicts.

        compliant < insufficient_data < requires_action < non_compliant.
        UNDER_REVIEW ranks lowest: any real verdict replaces it.
        """
        return _STATUS_RANK[self]

    def worsen(self, other: "AssessmentStatus") -> "AssessmentStatus":
        """Return whichever of the two statuses is worse. Never improves."""
        return other if other.severity_rank > self.severity_rank else self

    @classmethod
    def fold(cls, statuses: "list[AssessmentStatus]", initial: "AssessmentStatus") -> "AssessmentStatus":
        """
        Fold per-jurisdiction verdicts into one status.

        With no verdicts, `initial` is kept. Otherwise the worst verdict wins;
        the result does not depend on the order of `statuses`.
        """
        if not statuses:
            return initial
        result = statuses[0]
        for status in statuses[1:]:
            result = result.worsen(status)
        return result

    @property
    def risk_level(self) -> str:
        """Supplier risk level derived from the verdict."""
        if self == AssessmentStatus.NON_COMPLIANT:
            return "high"
        if self == AssessmentStatus.REQUIRES_ACTION:
            return "medium"
        return "low"

    @classmethod
    def values(cls) -> list[str]:
        """Return list of all valid assessment status values."""
        return [member.value for member in cls]


_STATUS_RANK: dict[AssessmentStatus, int] = {
    AssessmentStatus.UNDER_REVIEW: 0,
    AssessmentStatus.COMPLIANT: 1,
    AssessmentStatus.INSUFFICIENT_DATA: 2,
    AssessmentStatus.REQUIRES_ACTION: 3,
    AssessmentStatus.NON_COMPLIANT: 4,
}


class RuleSeverity(str, Enum):
    """Severity of a regulatory rule when it triggers."""

    CRITICAL = "critical"
    WARNING = "warning"

    @property
    def verdict(self) -> AssessmentStatus:
        """Status a triggered rule of this severity forces."""
        if self == RuleSeverity.CRITICAL:
            return AssessmentStatus.NON_COMPLIANT
        return AssessmentStatus.REQUIRES_ACTION


class RulesetStatus(str, Enum):
    """Only ACTIVE rulesets are evaluated."""

    DRAFT = "draft"
    ACTIVE = "active"
    RETIRED = "retired"


class OverrideStatus(str, Enum):
    """Manual verdict override lifecycle."""

    PENDING = "pending"
    APPROVED = "approved"


class ActionStatus(str, Enum):
    """Remediation action lifecycle."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    CANCELLED = "cancelled"

    @property
    def is_open(self) -> bool:
        return self in {ActionStatus.OPEN, ActionStatus.IN_PROGRESS}


class AlertStatus(str, Enum):
    """Risk alert lifecycle. At most one OPEN alert per entity and type."""

    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class JobStatus(str, Enum):
    """
    Status values for async batch jobs.

    Job lifecycle::

        PENDING -> RUNNING -> COMPLETED
                          |-> FAILED
                          |-> CANCELLED
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Terminal states never change status again."""
        return self in {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}

    @classmethod
    def values(cls) -> list[str]:
        """Return list of all valid job status values."""
        return [member.value for member in cls]
