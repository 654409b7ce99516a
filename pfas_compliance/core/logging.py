"""
Structured logging with structlog.

API requests and Celery tasks share one configuration: structlog events and
foreign stdlib records (uvicorn, Celery, SQLAlchemy) go through the same
processor chain and renderer, JSON in production or when ``LOG_FORMAT=json``.
Tenant and actor are bound per call with `bind_request_context`, so every
event emitted while a pipeline runs can be attributed.
"""

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

from pfas_compliance.core.config import settings

if TYPE_CHECKING:
    from pfas_compliance.core.context import RequestContext

SERVICE_NAME = "pfas-compliance"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


def _add_service(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("environment", settings.environment)
    return event_dict


def _renderer() -> Any:
    if settings.log_format == "json" or settings.is_production:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def setup_logging() -> None:
    """Configure structlog on top of the standard library root logger."""
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_service,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.filter_by_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, _renderer()],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(settings.log_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def bind_request_context(ctx: "RequestContext") -> None:
    """Attach tenant and actor to every event logged for this call.

    Usage:
        bind_request_context(ctx)
        logger.info("Assessment updated")  # carries tenant_id and actor
    """
    bind_context(tenant_id=ctx.tenant_id, actor=ctx.actor)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
