"""Pydantic schemas for Substance API endpoints."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pfas_compliance.schemas.common import BaseResponse
from pfas_compliance.services.errors import InvalidCASNumberError
from pfas_compliance.services.substance_verification import normalize_cas_number

# =============================================================================
# Request Schemas
# =============================================================================


class SubstanceVerifyRequest(BaseModel):
    """Schema for verifying a CAS number."""

    cas_number: str = Field(description="CAS registry number", examples=["335-67-1"])
    force_refresh: bool = Field(default=False, description="Ignore the 30-day cache")

    @field_validator("cas_number")
    @classmethod
    def normalize_cas(cls, value: str) -> str:
        try:
            return normalize_cas_number(value)
        except InvalidCASNumberError as e:
            raise ValueError(str(e)) from e


class SubstanceBatchVerifyRequest(BaseModel):
    """Schema for verifying several CAS numbers."""

    cas_numbers: list[str] = Field(min_length=1, max_length=50, description="CAS registry numbers")
    force_refresh: bool = Field(default=False, description="Ignore the 30-day cache")


# =============================================================================
# Response Schemas
# =============================================================================


class SubstanceResponse(BaseResponse):
    """Schema for a verified substance."""

    cas_number: str = Field(description="CAS registry number")
    name: str | None = Field(description="Consensus name")
    synonyms: list[str] = Field(default_factory=list, description="Merged synonyms")
    pfas_flag: bool = Field(description="Subject to PFAS restrictions")
    svhc_status: bool = Field(description="Substance of Very High Concern")
    restricted_status: bool = Field(description="Restricted substance")
    restriction_threshold_ppm: float | None = Field(description="Restriction threshold in ppm")
    restriction_effective_date: date | None = Field(description="Restriction effective date")
    regulatory_data_available: bool = Field(description="Regulatory provider answered")
    molecular_formula: str | None = Field(description="Consensus molecular formula")
    molecular_weight: float | None = Field(description="Consensus molecular weight")
    external_ids: dict[str, str] = Field(default_factory=dict, description="Identifier per source")
    verification_metadata: dict = Field(default_factory=dict, description="Sources, score and checks")
    last_updated: datetime | None = Field(description="Last successful verification")

    model_config = ConfigDict(from_attributes=True)


class SubstanceVerifyError(BaseModel):
    """Per-CAS failure in a batch verification."""

    cas_number: str = Field(description="CAS number as supplied")
    error: str = Field(description="Error type")
    message: str = Field(description="Why verification failed")


class SubstanceBatchVerifyResponse(BaseModel):
    """Result of a batch verification."""

    verified: list[SubstanceResponse] = Field(description="Verified substances")
    failed: list[SubstanceVerifyError] = Field(description="CAS numbers that could not be verified")
