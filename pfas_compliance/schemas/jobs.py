"""Schemas for the background job endpoints (batch scans and evidence expiry)."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from pfas_compliance.db.enums import JobStatus


class JobType(str, Enum):
    BATCH_SCAN = "batch_scan"
    EVIDENCE_EXPIRY = "evidence_expiry"


class BatchScanJobRequest(BaseModel):
    """Assess many entities of one object type in a worker."""

    entity_type: str = Field(min_length=1, max_length=50, examples=["Product"])
    entity_ids: list[str] = Field(min_length=1, max_length=10000)


class JobSummary(BaseModel):
    id: UUID
    job_type: JobType
    status: JobStatus
    progress: float = Field(description="Percent of entities processed")
    created_at: datetime
    completed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class JobResponse(JobSummary):
    """Full job record as kept in the job store."""

    tenant_id: str | None = None
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    total_items: int = 0
    processed_items: int = 0
    error_count: int = Field(default=0, description="Entities whose assessment failed")
    error_message: str | None = None
    result: dict | None = Field(default=None, description="Scan summary or expiry result")
    started_at: datetime | None = None


class JobCreateResponse(BaseModel):
    id: UUID
    job_type: JobType
    status: JobStatus
    message: str
