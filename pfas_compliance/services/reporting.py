"""
Per-step results and the pipeline execution report.

Best-effort steps of the orchestrator never raise into the caller; each one
returns a StepResult, and the PipelineReport collects them so callers (and
tests) can see exactly which effects ran, which were skipped and which
failed, without scraping logs.
"""

from dataclasses import dataclass, field
from typing import Any

from pfas_compliance.services.errors import DownstreamEffectError, JurisdictionEvaluationError


@dataclass
class StepResult:
    """Outcome of one pipeline step."""

    step: str
    ok: bool = True
    value: Any = None
    skipped: bool = False
    error: DownstreamEffectError | None = None

    @classmethod
    def success(cls, step: str, value: Any = None) -> "StepResult":
        return cls(step=step, ok=True, value=value)

    @classmethod
    def skip(cls, step: str, reason: str) -> "StepResult":
        return cls(step=step, ok=True, skipped=True, value=reason)

    @classmethod
    def failure(cls, step: str, cause: Exception) -> "StepResult":
        return cls(step=step, ok=False, error=DownstreamEffectError(step, cause))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"step": self.step, "ok": self.ok, "skipped": self.skipped}
        if self.error is not None:
            result["error"] = self.error.to_dict()
        elif self.value is not None:
            result["value"] = self.value
        return result


@dataclass
class PipelineReport:
    """
    Execution report of one orchestrator run.

    Attributes:
        steps: StepResult per executed step, in pipeline order
        jurisdiction_errors: Jurisdictions whose evaluation failed and were skipped
        verification_errors: Substances that could not be resolved, by CAS
        evaluated_jurisdictions: Codes of the jurisdictions that produced a verdict
    """

    steps: list[StepResult] = field(default_factory=list)
    jurisdiction_errors: list[JurisdictionEvaluationError] = field(default_factory=list)
    verification_errors: dict[str, str] = field(default_factory=dict)
    evaluated_jurisdictions: list[str] = field(default_factory=list)

    def add(self, result: StepResult) -> StepResult:
        self.steps.append(result)
        return result

    def step(self, name: str) -> StepResult | None:
        """Latest result recorded for `name`."""
        for result in reversed(self.steps):
            if result.step == name:
                return result
        return None

    @property
    def failures(self) -> list[DownstreamEffectError]:
        return [result.error for result in self.steps if result.error is not None]

    @property
    def ok(self) -> bool:
        return not self.failures and not self.jurisdiction_errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "steps": [result.to_dict() for result in self.steps],
            "evaluated_jurisdictions": list(self.evaluated_jurisdictions),
            "jurisdiction_errors": [
                {"jurisdiction": error.jurisdiction_code, "message": str(error.cause)}
                for error in self.jurisdiction_errors
            ],
            "verification_errors": dict(self.verification_errors),
        }
