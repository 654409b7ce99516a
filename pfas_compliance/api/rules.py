"""Regulatory catalog endpoints: jurisdictions, rulesets and rule versions."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from pfas_compliance.api.deps import get_request_context
from pfas_compliance.core.context import RequestContext
from pfas_compliance.core.logging import get_logger
from pfas_compliance.db import get_db
from pfas_compliance.schemas import (
    JurisdictionCreate,
    JurisdictionResponse,
    RuleCreate,
    RuleResponse,
    RulesetCreate,
    RulesetResponse,
    RulesetStatusUpdate,
    RuleUpdate,
)
from pfas_compliance.services import RuleCatalog

logger = get_logger(__name__)

router = APIRouter()


def get_catalog(db: AsyncSession = Depends(get_db)) -> RuleCatalog:
    return RuleCatalog(db)


# =============================================================================
# Jurisdictions
# =============================================================================


@router.post(
    "/jurisdictions",
    response_model=JurisdictionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a jurisdiction",
)
async def create_jurisdiction(
    request: JurisdictionCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    catalog: RuleCatalog = Depends(get_catalog),
) -> JurisdictionResponse:
    if await catalog.get_jurisdiction_by_code(ctx, request.code) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Jurisdiction {request.code} already exists",
        )
    jurisdiction = await catalog.create_jurisdiction(
        ctx, request.code, request.name, priority=request.priority, active=request.active
    )
    await db.commit()
    return JurisdictionResponse.model_validate(jurisdiction)


@router.get(
    "/jurisdictions",
    response_model=list[JurisdictionResponse],
    summary="List jurisdictions",
    description="Jurisdictions in evaluation order (priority, then code).",
)
async def list_jurisdictions(
    active_only: bool = Query(default=False, description="Only active jurisdictions"),
    ctx: RequestContext = Depends(get_request_context),
    catalog: RuleCatalog = Depends(get_catalog),
) -> list[JurisdictionResponse]:
    jurisdictions = await catalog.list_jurisdictions(ctx, active_only=active_only)
    return [JurisdictionResponse.model_validate(j) for j in jurisdictions]


# =============================================================================
# Rulesets
# =============================================================================


@router.post(
    "/rulesets",
    response_model=RulesetResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a ruleset",
)
async def create_ruleset(
    request: RulesetCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    catalog: RuleCatalog = Depends(get_catalog),
) -> RulesetResponse:
    ruleset = await catalog.create_ruleset(
        ctx,
        request.jurisdiction_id,
        request.name,
        version=request.version,
        status=request.status,
        regulation_reference=request.regulation_reference,
    )
    await db.commit()
    return RulesetResponse.model_validate(ruleset)


@router.put(
    "/rulesets/{ruleset_id}/status",
    response_model=RulesetResponse,
    summary="Activate or retire a ruleset",
)
async def set_ruleset_status(
    ruleset_id: UUID,
    request: RulesetStatusUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    catalog: RuleCatalog = Depends(get_catalog),
) -> RulesetResponse:
    ruleset = await catalog.set_ruleset_status(ctx, ruleset_id, request.status)
    await db.commit()
    return RulesetResponse.model_validate(ruleset)


@router.get(
    "/rulesets/{ruleset_id}/rules",
    response_model=list[RuleResponse],
    summary="List the rules of a ruleset",
)
async def list_rules(
    ruleset_id: UUID,
    include_superseded: bool = Query(default=False, description="Include older rule versions"),
    ctx: RequestContext = Depends(get_request_context),
    catalog: RuleCatalog = Depends(get_catalog),
) -> list[RuleResponse]:
    rules = await catalog.list_rules(ctx, ruleset_id, include_superseded=include_superseded)
    return [RuleResponse.model_validate(rule) for rule in rules]


# =============================================================================
# Rules
# =============================================================================


@router.post(
    "/rules",
    response_model=RuleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a rule",
)
async def add_rule(
    request: RuleCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    catalog: RuleCatalog = Depends(get_catalog),
) -> RuleResponse:
    rule = await catalog.add_rule(
        ctx,
        request.ruleset_id,
        request.code,
        request.name,
        severity=request.severity,
        thresholds=request.thresholds.model_dump(exclude_none=True),
        condition=request.condition(),
        exemptions=request.exemptions(),
        action_types=request.action_types,
        description=request.description,
    )
    await db.commit()
    return RuleResponse.model_validate(rule)


@router.get(
    "/rules/{rule_id}",
    response_model=RuleResponse,
    summary="Get a rule version",
)
async def get_rule(
    rule_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    catalog: RuleCatalog = Depends(get_catalog),
) -> RuleResponse:
    return RuleResponse.model_validate(await catalog.get_rule(ctx, rule_id))


@router.patch(
    "/rules/{rule_id}",
    response_model=RuleResponse,
    summary="Edit an unlocked rule",
    description="Fails with 409 when the rule has been used by an evaluation; revise it instead.",
)
async def update_rule(
    rule_id: UUID,
    request: RuleUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    catalog: RuleCatalog = Depends(get_catalog),
) -> RuleResponse:
    rule = await catalog.update_rule(ctx, rule_id, request.changes())
    await db.commit()
    return RuleResponse.model_validate(rule)


@router.post(
    "/rules/{rule_id}/revise",
    response_model=RuleResponse,
    summary="Revise a rule",
    description="Edit the rule in place when unlocked; otherwise create and return its next version.",
)
async def revise_rule(
    rule_id: UUID,
    request: RuleUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    catalog: RuleCatalog = Depends(get_catalog),
) -> RuleResponse:
    rule = await catalog.revise_rule(ctx, rule_id, request.changes())
    await db.commit()
    return RuleResponse.model_validate(rule)
