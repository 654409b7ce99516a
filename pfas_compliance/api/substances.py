"""Substance API endpoints: cross-source CAS verification."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from pfas_compliance.api.deps import get_request_context
from pfas_compliance.core.context import RequestContext
from pfas_compliance.core.logging import get_logger
from pfas_compliance.db import get_db
from pfas_compliance.schemas import (
    SubstanceBatchVerifyRequest,
    SubstanceBatchVerifyResponse,
    SubstanceResponse,
    SubstanceVerifyError,
    SubstanceVerifyRequest,
)
from pfas_compliance.services import (
    InvalidCASNumberError,
    SubstanceVerificationService,
    VerificationInsufficientError,
)
from pfas_compliance.services.substance_verification import normalize_cas_number

logger = get_logger(__name__)

router = APIRouter()


def get_verifier(db: AsyncSession = Depends(get_db)) -> SubstanceVerificationService:
    """Verification service dependency (overridden in tests)."""
    return SubstanceVerificationService(db)


@router.post(
    "/verify",
    response_model=SubstanceResponse,
    summary="Verify a substance",
    description=(
        "Resolve a CAS number against the chemical data providers and return the "
        "verified record. Records younger than the cache TTL are served without "
        "contacting the providers."
    ),
)
async def verify_substance(
    request: SubstanceVerifyRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    verifier: SubstanceVerificationService = Depends(get_verifier),
) -> SubstanceResponse:
    substance = await verifier.verify(ctx, request.cas_number, force_refresh=request.force_refresh)
    await db.commit()
    return SubstanceResponse.model_validate(substance)


@router.post(
    "/verify/batch",
    response_model=SubstanceBatchVerifyResponse,
    summary="Verify several substances",
    description="Verify each CAS number independently; failures are reported per CAS number.",
)
async def verify_substances(
    request: SubstanceBatchVerifyRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    verifier: SubstanceVerificationService = Depends(get_verifier),
) -> SubstanceBatchVerifyResponse:
    verified: list[SubstanceResponse] = []
    failed: list[SubstanceVerifyError] = []

    for cas_number in request.cas_numbers:
        try:
            substance = await verifier.verify(ctx, cas_number, force_refresh=request.force_refresh)
        except (InvalidCASNumberError, VerificationInsufficientError) as e:
            failed.append(
                SubstanceVerifyError(cas_number=cas_number, error=type(e).__name__, message=str(e))
            )
            continue
        verified.append(SubstanceResponse.model_validate(substance))

    await db.commit()
    logger.info("Batch verification finished", verified=len(verified), failed=len(failed))
    return SubstanceBatchVerifyResponse(verified=verified, failed=failed)


@router.get(
    "/{cas_number}",
    response_model=SubstanceResponse,
    summary="Get a cached substance",
    description="Return the stored record for a CAS number without contacting any provider.",
)
async def get_substance(
    cas_number: str,
    ctx: RequestContext = Depends(get_request_context),
    verifier: SubstanceVerificationService = Depends(get_verifier),
) -> SubstanceResponse:
    substance = await verifier.get_cached(ctx, normalize_cas_number(cas_number))
    if substance is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Substance {cas_number} not found",
        )
    return SubstanceResponse.model_validate(substance)
