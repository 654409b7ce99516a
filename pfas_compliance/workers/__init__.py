"""
Workers module: Celery tasks for batch scans and evidence expiry.

Architecture:
    FastAPI API  ──dispatch──>  Redis Queue  ──consume──>  Celery Worker
                                                              │
    Redis Job Store  <──progress updates──────────────────────┘

    Celery beat  ──schedule──>  expire_evidence_task (every N hours)

Start worker:
    celery -A pfas_compliance.workers.celery_app worker -l info -P solo -Q compliance

The -P solo pool is required because tasks use asyncio.run() internally.
"""

from pfas_compliance.workers.celery_app import celery_app
from pfas_compliance.workers.job_store import create_job, get_job, list_jobs, update_job

__all__ = [
    "celery_app",
    "create_job",
    "get_job",
    "list_jobs",
    "update_job",
]
