"""
Declarative base, shared column types and the async engine.

Every compliance table carries a UUID7 key and a tenant partition column;
most also carry created/updated timestamps. Rule evaluations and audit
entries are append-only and only get ``created_at``.

Column types stay portable between PostgreSQL (production, Alembic) and
SQLite (the test suite): JSON payloads become JSONB on PostgreSQL and enums
are stored as their string values rather than native enum types.
"""

import re
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, MetaData, String, Uuid, func
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncAttrs, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
from uuid6 import uuid7

from pfas_compliance.core.config import settings

# Constraint names must match alembic/versions/001_initial_schema.py
metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)

JSONType = JSON().with_variant(JSONB(), "postgresql")

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def enum_column(enum_cls: type[Enum], length: int = 32) -> SAEnum:
    """VARCHAR column holding ``member.value``, e.g. ``"non_compliant"``."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=length,
        values_callable=lambda members: [member.value for member in members],
    )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Aware UTC datetime; naive values (SQLite round trips) are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _snapshot_value(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _engine_options(url: str) -> dict[str, Any]:
    options: dict[str, Any] = {
        "echo": settings.is_development and settings.log_level == "DEBUG",
        "pool_pre_ping": True,
    }
    # SQLite uses a static/null pool, sizing arguments are rejected
    if not url.startswith("sqlite"):
        options["pool_size"] = 5
        options["max_overflow"] = 10
    return options


engine = create_async_engine(settings.db_url, **_engine_options(settings.db_url))

# Objects stay readable after commit; services flush explicitly before reads
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
)


class Base(AsyncAttrs, DeclarativeBase):
    """Declarative base for the compliance schema.

    Table names derive from the class name: ``EvidencePackage`` maps to
    ``evidence_packages`` and ``Supplier`` to ``suppliers``. Models whose
    acronym would come out mangled (``SCIPNotification``) set
    ``__tablename__`` explicitly.
    """

    metadata = metadata

    __name__: str

    @declared_attr.directive
    def __tablename__(cls) -> str:
        singular = _CAMEL_BOUNDARY.sub("_", cls.__name__).lower()
        if singular.endswith("y"):
            return f"{singular[:-1]}ies"
        if singular.endswith("s"):
            return f"{singular}es"
        return f"{singular}s"

    def to_dict(self) -> dict[str, Any]:
        """Column values as a JSON-safe dict.

        Feeds audit ``old_data``/``new_data`` and the decision snapshot stored
        with each rule evaluation.
        """
        return {
            column.key: _snapshot_value(getattr(self, column.key))
            for column in self.__table__.columns
        }


class UUIDMixin:
    """Time-ordered UUID7 primary key; ordering by id follows insertion."""

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid7,
        sort_order=-100,
    )


class TenantMixin:
    """Tenant partition key, filtered on by every service query."""

    tenant_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        sort_order=-90,
        comment="Tenant partition key",
    )


class CreatedAtMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        sort_order=100,
    )


class TimestampMixin(CreatedAtMixin):
    # Client-side defaults so values are set right after flush
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
        sort_order=101,
    )


async def dispose_engine() -> None:
    """Close pooled connections on application shutdown."""
    await engine.dispose()
