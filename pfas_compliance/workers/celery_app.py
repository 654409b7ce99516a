"""
Celery application for the compliance worker.

Two kinds of work run here: batch scans dispatched from the jobs API, and
the periodic evidence expiry sweep scheduled by Celery beat.

Usage:
    celery -A pfas_compliance.workers.celery_app worker -l info -P solo -Q compliance
    celery -A pfas_compliance.workers.celery_app beat -l info

Tasks drive asyncio themselves, hence the solo pool.
"""

from datetime import timedelta

from celery import Celery, signals

from pfas_compliance.core.config import settings
from pfas_compliance.core.logging import clear_context, setup_logging

COMPLIANCE_QUEUE = "compliance"

celery_app = Celery(
    "pfas_compliance",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # A scan interrupted by a worker crash is redelivered; reassessment is idempotent
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_always_eager=settings.celery_task_always_eager,
    result_expires=86400,
    task_default_queue=COMPLIANCE_QUEUE,
    task_routes={"pfas_compliance.workers.tasks.*": {"queue": COMPLIANCE_QUEUE}},
    beat_schedule={
        "expire-lapsed-evidence": {
            "task": "pfas_compliance.workers.tasks.expire_all_evidence_task",
            "schedule": timedelta(hours=settings.evidence_expiry_check_hours),
        },
    },
)

celery_app.autodiscover_tasks(["pfas_compliance.workers"])


@signals.setup_logging.connect
def configure_worker_logging(**_kwargs) -> None:
    """Worker and beat log through structlog instead of Celery's own handlers."""
    setup_logging()


@signals.task_postrun.connect
def reset_log_context(**_kwargs) -> None:
    clear_context()
