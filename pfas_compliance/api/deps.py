"""Shared FastAPI dependencies."""

from fastapi import Header, HTTPException, status

from pfas_compliance.core.config import settings
from pfas_compliance.core.context import SYSTEM_ACTOR, RequestContext
from pfas_compliance.core.logging import bind_request_context


async def get_request_context(
    x_tenant_id: str | None = Header(default=None, description="Tenant partition"),
    x_actor: str | None = Header(default=None, description="Acting user (email or id)"),
) -> RequestContext:
    """
    Build the RequestContext of one API call from its headers.

    Authentication happens upstream; this service trusts the gateway to set
    X-Tenant-ID and X-Actor.
    """
    try:
        ctx = RequestContext(
            tenant_id=(x_tenant_id or settings.default_tenant_id).strip(),
            actor=(x_actor or SYSTEM_ACTOR).strip(),
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    bind_request_context(ctx)
    return ctx
