"""Pydantic schemas for the regulatory catalog endpoints."""

from datetime import date
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pfas_compliance.db.enums import RuleSeverity, RulesetStatus
from pfas_compliance.schemas.common import BaseResponse

# =============================================================================
# Request Schemas
# =============================================================================


class JurisdictionCreate(BaseModel):
    code: str = Field(min_length=1, max_length=20, description="Jurisdiction code", examples=["EU"])
    name: str = Field(min_length=1, max_length=255, description="Display name")
    priority: int = Field(default=100, ge=0, description="Lower is evaluated first")
    active: bool = Field(default=True, description="Evaluated by the pipeline")


class RulesetCreate(BaseModel):
    jurisdiction_id: UUID = Field(description="Owning jurisdiction")
    name: str = Field(min_length=1, max_length=255, description="Ruleset name")
    version: str = Field(default="1", max_length=50, description="Ruleset version label")
    status: RulesetStatus = Field(default=RulesetStatus.DRAFT, description="Only active rulesets are evaluated")
    regulation_reference: str | None = Field(default=None, description="Legal reference")


class RulesetStatusUpdate(BaseModel):
    status: RulesetStatus = Field(description="New ruleset status")


class Thresholds(BaseModel):
    """Numeric limits of a rule, in ppm."""

    max_concentration_ppm: float | None = Field(default=None, ge=0.0)
    aggregate_pfas_ppm: float | None = Field(default=None, ge=0.0)


class RuleCreate(BaseModel):
    """Schema for adding a rule to a ruleset."""

    ruleset_id: UUID = Field(description="Owning ruleset")
    code: str = Field(min_length=1, max_length=100, description="Stable rule code", examples=["EU-PFOA-25"])
    name: str = Field(min_length=1, max_length=500, description="Rule name")
    description: str | None = Field(default=None, description="Explanation")
    severity: RuleSeverity = Field(default=RuleSeverity.WARNING, description="critical or warning")
    thresholds: Thresholds = Field(default_factory=Thresholds, description="Limits")
    object_types: list[str] = Field(default_factory=list, description="Empty matches every object type")
    use_categories: list[str] = Field(default_factory=list, description="Empty matches every use")
    exempted_uses: list[str] = Field(default_factory=list, description="Uses exempt from the rule")
    action_types: list[str] = Field(default_factory=list, description="Actions created when triggered")

    @field_validator("object_types", "use_categories", "exempted_uses", "action_types")
    @classmethod
    def strip_blank(cls, values: list[str]) -> list[str]:
        return [value.strip() for value in values if value and value.strip()]

    def condition(self) -> dict[str, Any]:
        condition: dict[str, Any] = {}
        if self.object_types:
            condition["object_types"] = self.object_types
        if self.use_categories:
            condition["use_categories"] = self.use_categories
        return condition

    def exemptions(self) -> dict[str, Any]:
        return {"exempted_uses": self.exempted_uses} if self.exempted_uses else {}


class RuleUpdate(BaseModel):
    """Changes to a rule. Locked rules are versioned rather than edited."""

    name: str | None = Field(default=None, max_length=500)
    description: str | None = None
    severity: RuleSeverity | None = None
    thresholds_json: dict[str, Any] | None = None
    condition_json: dict[str, Any] | None = None
    exemptions_json: dict[str, Any] | None = None
    actions_json: dict[str, Any] | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# =============================================================================
# Response Schemas
# =============================================================================


class JurisdictionResponse(BaseResponse):
    code: str
    name: str
    active: bool
    priority: int

    model_config = ConfigDict(from_attributes=True)


class RulesetResponse(BaseResponse):
    jurisdiction_id: UUID
    name: str
    version: str
    status: RulesetStatus
    effective_from: date | None
    regulation_reference: str | None

    model_config = ConfigDict(from_attributes=True)


class RuleResponse(BaseResponse):
    """Schema for a rule version."""

    ruleset_id: UUID = Field(description="Owning ruleset")
    code: str = Field(description="Stable rule code")
    version: int = Field(description="Rule version")
    name: str = Field(description="Rule name")
    description: str | None = Field(description="Explanation")
    condition_json: dict = Field(default_factory=dict, description="Scope predicate")
    thresholds_json: dict = Field(default_factory=dict, description="Limits")
    severity: RuleSeverity = Field(description="critical or warning")
    exemptions_json: dict = Field(default_factory=dict, description="Exempted uses")
    actions_json: dict = Field(default_factory=dict, description="Actions created when triggered")
    locked: bool = Field(description="Referenced by an evaluation")
    superseded_by_id: UUID | None = Field(description="Newer version")

    model_config = ConfigDict(from_attributes=True)
