"""
Job store shared by the API process and the Celery workers.

Each job is one JSON document in Redis (``pfas:job:<id>``) plus an entry in
the owning tenant's index list (``pfas:<tenant>:jobs``, newest first), so the
API can report live progress while a worker scans. Without Redis the store
keeps the same records in process memory, which is what the test suite and
eager Celery use.

A job that reached a terminal status (completed, failed, cancelled) keeps it:
a worker finishing after a cancel cannot flip the job back to completed.
"""

from uuid import UUID

import redis
from uuid6 import uuid7

from pfas_compliance.core.config import settings
from pfas_compliance.core.logging import get_logger
from pfas_compliance.db.base import utcnow
from pfas_compliance.db.enums import JobStatus
from pfas_compliance.schemas.jobs import JobResponse, JobType

logger = get_logger(__name__)

JOB_KEY = "pfas:job:{job_id}"
TENANT_INDEX_KEY = "pfas:{tenant_id}:jobs"
JOB_TTL_SECONDS = 86400
TENANT_INDEX_LIMIT = 1000

_memory_jobs: dict[str, dict] = {}

_redis_client: redis.Redis | None = None
_redis_available: bool | None = None


def _get_redis() -> redis.Redis | None:
    """Connect lazily; after one failed ping stay on the memory store."""
    global _redis_client, _redis_available

    if _redis_available is False:
        return None
    if _redis_client is not None:
        return _redis_client

    try:
        client = redis.Redis.from_url(settings.redis_dsn, decode_responses=True, socket_connect_timeout=2)
        client.ping()
    except redis.RedisError as e:
        _redis_available = False
        logger.warning("Redis unavailable, job store kept in memory", error=str(e))
        return None

    _redis_client = client
    _redis_available = True
    return client


def use_memory_store() -> None:
    """Force the in-memory store and clear it (tests, eager Celery)."""
    global _redis_client, _redis_available
    _redis_client = None
    _redis_available = False
    _memory_jobs.clear()


def _dump(job: dict) -> str:
    return JobResponse.model_validate(job).model_dump_json()


def _load(data: str) -> dict:
    return JobResponse.model_validate_json(data).model_dump()


def _save(job: dict) -> None:
    r = _get_redis()
    if r is None:
        _memory_jobs[str(job["id"])] = dict(job)
        return
    r.set(JOB_KEY.format(job_id=job["id"]), _dump(job), ex=JOB_TTL_SECONDS)


def create_job(job_type: JobType, tenant_id: str) -> dict:
    """Register a pending job for the tenant and return its record."""
    job = {
        "id": uuid7(),
        "job_type": job_type,
        "tenant_id": tenant_id,
        "status": JobStatus.PENDING,
        "progress": 0.0,
        "total_items": 0,
        "processed_items": 0,
        "error_count": 0,
        "error_message": None,
        "result": None,
        "created_at": utcnow(),
        "started_at": None,
        "completed_at": None,
    }
    _save(job)

    r = _get_redis()
    if r is not None:
        index = TENANT_INDEX_KEY.format(tenant_id=tenant_id)
        pipe = r.pipeline()
        pipe.lpush(index, str(job["id"]))
        pipe.ltrim(index, 0, TENANT_INDEX_LIMIT - 1)
        pipe.execute()

    logger.debug("Job created", job_id=str(job["id"]), job_type=job_type.value, tenant_id=tenant_id)
    return job


def get_job(job_id: UUID, tenant_id: str | None = None) -> dict | None:
    """Fetch a job; with `tenant_id`, another tenant's job reads as missing."""
    r = _get_redis()
    if r is None:
        stored = _memory_jobs.get(str(job_id))
        job = dict(stored) if stored else None
    else:
        data = r.get(JOB_KEY.format(job_id=job_id))
        job = _load(data) if data else None

    if job is None or (tenant_id is not None and job["tenant_id"] != tenant_id):
        return None
    return job


def update_job(job_id: UUID, **updates) -> dict | None:
    """Merge `updates` into the job. Unknown jobs return None."""
    job = get_job(job_id)
    if job is None:
        return None

    if job["status"].is_terminal and "status" in updates:
        logger.debug("Job already finished, status update ignored", job_id=str(job_id))
        updates = {k: v for k, v in updates.items() if k not in ("status", "completed_at")}

    job.update(updates)
    _save(job)
    return job


def list_jobs(
    tenant_id: str,
    status_filter: JobStatus | None = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[dict], int]:
    """A page of the tenant's jobs, newest first, and the filtered total."""
    r = _get_redis()
    if r is None:
        jobs = [dict(job) for job in _memory_jobs.values() if job["tenant_id"] == tenant_id]
    else:
        ids = r.lrange(TENANT_INDEX_KEY.format(tenant_id=tenant_id), 0, -1)
        raw = r.mget([JOB_KEY.format(job_id=job_id) for job_id in ids]) if ids else []
        # Index entries outlive expired job documents
        jobs = [_load(data) for data in raw if data]

    if status_filter is not None:
        jobs = [job for job in jobs if job["status"] == status_filter]
    jobs.sort(key=lambda job: (job["created_at"], job["id"]), reverse=True)

    return jobs[offset : offset + limit], len(jobs)
