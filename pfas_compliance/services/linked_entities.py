"""
Registry of business entities that carry denormalized PFAS status.

The orchestrator does not branch on object types: it asks the registry for
the model registered under `object_type` and calls the model's
`apply_pfas_status(status, checked_at)`. Object types without a registered
model (free-text custom items, CAS lookups) are simply not propagated.
"""

import uuid
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pfas_compliance.core.context import RequestContext
from pfas_compliance.db.enums import AssessmentStatus
from pfas_compliance.db.models import Material, Packaging, Product, Supplier


class LinkedEntity(Protocol):
    """What the pipeline needs from a linked business entity."""

    name: str
    use_categories: list
    responsible_email: str | None

    def apply_pfas_status(self, status: AssessmentStatus, checked_at: datetime) -> None: ...


DEFAULT_ENTITY_MODELS: dict[str, Any] = {
    "Product": Product,
    "Supplier": Supplier,
    "Packaging": Packaging,
    "PPWRPackaging": Packaging,
    "Material": Material,
}


class LinkedEntityRegistry:
    """Resolve (object_type, object_id) to a linked entity row."""

    def __init__(self, session: AsyncSession, models: dict[str, Any] | None = None):
        self.session = session
        self._models = dict(models if models is not None else DEFAULT_ENTITY_MODELS)

    def register(self, object_type: str, model: Any) -> None:
        self._models[object_type] = model

    def model_for(self, object_type: str) -> Any | None:
        return self._models.get(object_type)

    @property
    def object_types(self) -> list[str]:
        return sorted(self._models)

    async def get(self, ctx: RequestContext, object_type: str, object_id: str) -> LinkedEntity | None:
        """The entity, or None when the type is unregistered or the id unknown."""
        model = self.model_for(object_type)
        if model is None:
            return None
        try:
            entity_id = uuid.UUID(str(object_id))
        except ValueError:
            return None
        result = await self.session.execute(
            select(model).where(model.tenant_id == ctx.tenant_id, model.id == entity_id)
        )
        return result.scalar_one_or_none()

    async def apply_status(
        self,
        ctx: RequestContext,
        object_type: str,
        object_id: str,
        status: AssessmentStatus,
        checked_at: datetime,
    ) -> bool:
        """Write the verdict onto the entity. Returns False when there is none."""
        entity = await self.get(ctx, object_type, object_id)
        if entity is None:
            return False
        entity.apply_pfas_status(status, checked_at)
        await self.session.flush()
        return True

    async def use_categories(self, ctx: RequestContext, object_type: str, object_id: str) -> list[str]:
        entity = await self.get(ctx, object_type, object_id)
        if entity is None:
            return []
        return list(entity.use_categories or [])
