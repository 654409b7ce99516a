"""Shared response shapes: tenant-scoped rows, pages, errors and statistics."""

from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class BaseResponse(BaseModel):
    """Fields every persisted compliance record exposes."""

    id: UUID = Field(description="Record identifier (UUID7, time ordered)")
    tenant_id: str = Field(description="Tenant partition")
    created_at: datetime = Field(description="Creation timestamp")

    model_config = ConfigDict(from_attributes=True)


class PaginatedResponse(BaseModel, Generic[T]):
    """One page of a tenant-scoped listing."""

    items: list[T]
    total: int = Field(description="Rows matching the filters")
    page: int = Field(description="1-indexed page number")
    page_size: int
    pages: int

    @classmethod
    def create(cls, items: list[T], total: int, page: int, page_size: int) -> "PaginatedResponse[T]":
        return cls(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            pages=-(-total // page_size) if page_size else 0,
        )


class ErrorDetail(BaseModel):
    field: str | None = Field(default=None, description="Offending input, e.g. cas_number")
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """Body returned for every domain error (404, 409, 403, 422)."""

    error: str = Field(description="Exception class name, e.g. RuleImmutableError")
    message: str
    details: list[ErrorDetail] | None = None
    tenant_id: str | None = Field(default=None, description="Tenant the request ran under")


class CountByType(BaseModel):
    type: str
    count: int


class ComplianceStats(BaseModel):
    """Tenant dashboard counters."""

    assessments: int
    evidence_packages: int
    pending_review: int = Field(description="Packages submitted or under review")
    open_actions: int
    open_alerts: int
    assessments_by_status: list[CountByType]
