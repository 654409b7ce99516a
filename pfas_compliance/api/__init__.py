"""API routers for the PFAS compliance service."""

from pfas_compliance.api.assessments import router as assessments_router
from pfas_compliance.api.evidence import router as evidence_router
from pfas_compliance.api.jobs import router as jobs_router
from pfas_compliance.api.rules import router as rules_router
from pfas_compliance.api.substances import router as substances_router

__all__ = [
    "assessments_router",
    "evidence_router",
    "jobs_router",
    "rules_router",
    "substances_router",
]
