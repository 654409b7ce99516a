"""
Explicit request context for pipeline calls.

Every service entry point takes a RequestContext instead of looking up the
current user or tenant from ambient state. The API builds one per request from
headers; Celery tasks rebuild one from their serialized arguments.
"""

from dataclasses import dataclass

SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class RequestContext:
    """Tenant partition and acting user for one pipeline call."""

    tenant_id: str
    actor: str = SYSTEM_ACTOR

    def __post_init__(self) -> None:
        if not self.tenant_id or not self.tenant_id.strip():
            raise ValueError("tenant_id is required")
        if not self.actor or not self.actor.strip():
            raise ValueError("actor is required")

    @property
    def is_system(self) -> bool:
        """True when the call was initiated by a scheduled or batch job."""
        return self.actor == SYSTEM_ACTOR

    def as_system(self) -> "RequestContext":
        """Same tenant, acting as the system user."""
        return RequestContext(tenant_id=self.tenant_id, actor=SYSTEM_ACTOR)

    def to_dict(self) -> dict[str, str]:
        """Serialize for task arguments."""
        return {"tenant_id": self.tenant_id, "actor": self.actor}
