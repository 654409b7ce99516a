"""Unit tests for the controlled vocabularies and their state machines."""

import itertools

import pytest

from pfas_compliance.db.enums import (
    ActionStatus,
    AssessmentStatus,
    ClaimStatus,
    CompositionSourceType,
    EvidenceSourceType,
    IntentionallyAdded,
    JobStatus,
    QualityGrade,
    ReviewStatus,
    RuleSeverity,
)


class TestQualityGrade:
    @pytest.mark.parametrize(
        "source_type, grade",
        [
            (EvidenceSourceType.LAB_TEST, QualityGrade.A),
            (EvidenceSourceType.SUPPLIER_DECLARATION, QualityGrade.B),
            (EvidenceSourceType.AI_EXTRACTION, QualityGrade.C),
            (EvidenceSourceType.OTHER, QualityGrade.D),
        ],
    )
    def test_grade_follows_source(self, source_type: EvidenceSourceType, grade: QualityGrade) -> None:
        assert source_type.quality_grade == grade

    def test_only_lab_results_skip_second_person(self) -> None:
        assert not QualityGrade.A.requires_second_person
        assert all(grade.requires_second_person for grade in (QualityGrade.B, QualityGrade.C, QualityGrade.D))

    def test_ai_extraction_rows_are_ai_inferred(self) -> None:
        assert EvidenceSourceType.AI_EXTRACTION.composition_source == CompositionSourceType.AI_INFERRED
        assert EvidenceSourceType.OTHER.composition_source == CompositionSourceType.SUPPLIER_DECLARATION


class TestClaimParsing:
    def test_free_text_claims(self) -> None:
        assert ClaimStatus.from_string("Not Present") == ClaimStatus.NOT_PRESENT
        assert ClaimStatus.from_string("pfas-free") == ClaimStatus.NOT_PRESENT
        assert ClaimStatus.from_string("detected") == ClaimStatus.PRESENT
        assert ClaimStatus.from_string("maybe") == ClaimStatus.UNKNOWN
        assert ClaimStatus.from_string(None) == ClaimStatus.UNKNOWN

    def test_intentionally_added_accepts_booleans(self) -> None:
        assert IntentionallyAdded.from_string(True) == IntentionallyAdded.YES
        assert IntentionallyAdded.from_string(False) == IntentionallyAdded.NO
        assert IntentionallyAdded.from_string("N") == IntentionallyAdded.NO
        assert IntentionallyAdded.from_string("") == IntentionallyAdded.UNKNOWN


class TestReviewTransitions:
    def test_happy_path(self) -> None:
        assert ReviewStatus.DRAFT.can_transition_to(ReviewStatus.SUBMITTED)
        assert ReviewStatus.SUBMITTED.can_transition_to(ReviewStatus.UNDER_REVIEW)
        assert ReviewStatus.UNDER_REVIEW.can_transition_to(ReviewStatus.APPROVED)
        assert ReviewStatus.APPROVED.can_transition_to(ReviewStatus.SUPERSEDED)
        assert ReviewStatus.APPROVED.can_transition_to(ReviewStatus.EXPIRED)

    def test_drafts_cannot_be_decided(self) -> None:
        assert not ReviewStatus.DRAFT.can_transition_to(ReviewStatus.APPROVED)
        assert not ReviewStatus.DRAFT.can_transition_to(ReviewStatus.REJECTED)

    def test_terminal_states_never_move(self) -> None:
        for state in (ReviewStatus.REJECTED, ReviewStatus.SUPERSEDED, ReviewStatus.EXPIRED):
            assert state.is_terminal
            assert not any(state.can_transition_to(target) for target in ReviewStatus)

    def test_review_queue_states(self) -> None:
        assert {s for s in ReviewStatus if s.is_pending_review} == {
            ReviewStatus.SUBMITTED,
            ReviewStatus.UNDER_REVIEW,
        }

    def test_approved_cannot_be_reopened(self) -> None:
        assert not ReviewStatus.APPROVED.can_transition_to(ReviewStatus.UNDER_REVIEW)
        assert not ReviewStatus.APPROVED.can_transition_to(ReviewStatus.REJECTED)


class TestAssessmentStatusFold:
    def test_worst_status_wins(self) -> None:
        statuses = [AssessmentStatus.COMPLIANT, AssessmentStatus.NON_COMPLIANT, AssessmentStatus.REQUIRES_ACTION]
        assert AssessmentStatus.fold(statuses, AssessmentStatus.UNDER_REVIEW) == AssessmentStatus.NON_COMPLIANT

    def test_empty_keeps_initial(self) -> None:
        assert AssessmentStatus.fold([], AssessmentStatus.UNDER_REVIEW) == AssessmentStatus.UNDER_REVIEW
        assert AssessmentStatus.fold([], AssessmentStatus.COMPLIANT) == AssessmentStatus.COMPLIANT

    def test_insufficient_data_outranks_compliant(self) -> None:
        statuses = [AssessmentStatus.COMPLIANT, AssessmentStatus.INSUFFICIENT_DATA]
        assert AssessmentStatus.fold(statuses, AssessmentStatus.UNDER_REVIEW) == AssessmentStatus.INSUFFICIENT_DATA

    def test_fold_is_order_independent(self) -> None:
        statuses = [
            AssessmentStatus.COMPLIANT,
            AssessmentStatus.INSUFFICIENT_DATA,
            AssessmentStatus.REQUIRES_ACTION,
        ]
        results = {
            AssessmentStatus.fold(list(order), AssessmentStatus.UNDER_REVIEW)
            for order in itertools.permutations(statuses)
        }
        assert results == {AssessmentStatus.REQUIRES_ACTION}

    def test_severity_verdicts(self) -> None:
        assert RuleSeverity.CRITICAL.verdict == AssessmentStatus.NON_COMPLIANT
        assert RuleSeverity.WARNING.verdict == AssessmentStatus.REQUIRES_ACTION

    def test_supplier_risk_levels(self) -> None:
        assert AssessmentStatus.NON_COMPLIANT.risk_level == "high"
        assert AssessmentStatus.REQUIRES_ACTION.risk_level == "medium"
        assert AssessmentStatus.COMPLIANT.risk_level == "low"


def test_job_terminal_states() -> None:
    assert {status for status in JobStatus if status.is_terminal} == {
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }


def test_open_actions() -> None:
    assert ActionStatus.OPEN.is_open
    assert ActionStatus.IN_PROGRESS.is_open
    assert not ActionStatus.DONE.is_open
    assert not ActionStatus.CANCELLED.is_open
