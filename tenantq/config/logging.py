import logging
import sys
from typing import Any

import structlog

from .settings import settings


def _renderer() -> structlog.typing.Processor:
    return (
        structlog.dev.ConsoleRenderer()
        if settings.debug
        else structlog.processors.JSONRenderer()
    )


def build_stdlib_formatter() -> structlog.stdlib.ProcessorFormatter:
    """Render stdlib records, their ``extra`` and bound context vars like structlog lines."""
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.ExtraAdder(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(),
        ],
    )


def setup_logging() -> None:
    """Configure structured logging with structlog."""

    # Engine modules log through stdlib logging with extra={...}
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_stdlib_formatter())
    logging.basicConfig(
        handlers=[handler],
        level=getattr(logging, settings.log_level),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            (
                structlog.processors.CallsiteParameterAdder(
                    parameters=[structlog.processors.CallsiteParameter.FUNC_NAME]
                )
                if settings.debug
                else structlog.processors.CallsiteParameterAdder(parameters=[])
            ),
            _renderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def add_request_context(request_id: str, **context: Any) -> None:
    """Add request-specific context to all log messages."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **context)


def bind_job_context(job_id: str, tenant_id: str, job_type: str) -> None:
    """Tag every log line emitted while the worker runs a job."""
    structlog.contextvars.bind_contextvars(
        job_id=job_id, tenant_id=tenant_id, job_type=job_type
    )


def clear_job_context() -> None:
    structlog.contextvars.unbind_contextvars("job_id", "tenant_id", "job_type")
