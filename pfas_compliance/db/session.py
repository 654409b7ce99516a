"""
Session helpers.

Sessions are never auto-committed. Services commit at their own durability
points: the orchestrator commits the verdict before running downstream
effects, the evidence pipeline commits each review transition through
`transaction()`.

    @router.get("/substances/{cas_number}")
    async def get_substance(cas_number: str, db: AsyncSession = Depends(get_db)): ...

    async with get_db_context() as db:
        await ComplianceOrchestrator(db).batch_scan(ctx, product_ids, "Product")
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession

from pfas_compliance.db.base import AsyncSessionLocal


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Session for scripts, Celery tasks and the BackgroundTasks fallback."""
    async with AsyncSessionLocal() as session:
        yield session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request."""
    async with get_db_context() as session:
        yield session


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Commit on success, roll back and re-raise on any exception."""
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
