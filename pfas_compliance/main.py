"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pfas_compliance.api import (
    assessments_router,
    evidence_router,
    jobs_router,
    rules_router,
    substances_router,
)
from pfas_compliance.core.config import settings
from pfas_compliance.core.logging import clear_context, get_logger, setup_logging
from pfas_compliance.db.base import dispose_engine
from pfas_compliance.schemas import ErrorDetail, ErrorResponse
from pfas_compliance.services import (
    ComplianceError,
    EntityNotFoundError,
    InvalidCASNumberError,
    InvalidTransitionError,
    ReviewPolicyError,
    RuleImmutableError,
    VerificationInsufficientError,
)

logger = get_logger(__name__)

VERSION = "0.1.0"

# Domain error -> HTTP status
ERROR_STATUS: dict[type[ComplianceError], int] = {
    EntityNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    RuleImmutableError: status.HTTP_409_CONFLICT,
    ReviewPolicyError: status.HTTP_403_FORBIDDEN,
    InvalidCASNumberError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    VerificationInsufficientError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown events."""
    setup_logging()
    logger.info("PFAS compliance API starting", environment=settings.environment)
    yield
    await dispose_engine()


def _tenant_of(request: Request) -> str | None:
    return request.headers.get("x-tenant-id") or settings.default_tenant_id


async def compliance_error_handler(request: Request, exc: ComplianceError) -> JSONResponse:
    """Render domain errors as ErrorResponse with a status per error type."""
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type in type(exc).__mro__:
        if error_type in ERROR_STATUS:
            status_code = ERROR_STATUS[error_type]
            break

    details = None
    if isinstance(exc, VerificationInsufficientError):
        details = [
            ErrorDetail(field="cas_number", message=exc.reason, code=str(exc.score)),
        ]

    logger.info("Request rejected", error=type(exc).__name__, message=str(exc), status_code=status_code)
    body = ErrorResponse(
        error=type(exc).__name__,
        message=str(exc),
        details=details,
        tenant_id=_tenant_of(request),
    )
    clear_context()
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Service-level input validation (unknown fields, bad values)."""
    body = ErrorResponse(error="ValidationError", message=str(exc), tenant_id=_tenant_of(request))
    clear_context()
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=body.model_dump(mode="json"))


def create_app() -> FastAPI:
    """Application factory for creating the FastAPI instance."""
    app = FastAPI(
        title="PFAS Compliance API",
        description=(
            "Backend service that verifies chemical substances, grades and reviews "
            "PFAS declarations, and evaluates objects against jurisdictional rules.\n\n"
            "## Features\n"
            "- **Substances**: Cross-source CAS verification with a 30-day cache\n"
            "- **Evidence**: Declaration intake, AI extraction and four-eyes review\n"
            "- **Assessments**: Rule evaluation, verdicts, overrides and downstream effects\n"
            "- **Rules**: Versioned jurisdictions, rulesets and rules\n"
            "- **Jobs**: Batch scans and evidence expiry sweeps\n"
        ),
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        debug=settings.api_debug,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ComplianceError, compliance_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)

    # Register routers
    app.include_router(
        substances_router,
        prefix="/api/v1/substances",
        tags=["Substances"],
    )
    app.include_router(
        evidence_router,
        prefix="/api/v1/evidence",
        tags=["Evidence"],
    )
    app.include_router(
        assessments_router,
        prefix="/api/v1/assessments",
        tags=["Assessments"],
    )
    app.include_router(
        rules_router,
        prefix="/api/v1/catalog",
        tags=["Rules"],
    )
    app.include_router(
        jobs_router,
        prefix="/api/v1/jobs",
        tags=["Jobs"],
    )

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint for container orchestration."""
        return {"status": "healthy", "version": VERSION}

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "service": "PFAS Compliance API",
            "version": VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    return app


# Create the app instance
app = create_app()


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    uvicorn.run(
        "pfas_compliance.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_config=None,
    )


if __name__ == "__main__":
    run()
