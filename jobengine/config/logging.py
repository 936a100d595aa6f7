import logging
import sys
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

from .settings import Settings


def add_service_info(settings: Settings) -> Processor:
    """Stamp every event with the service name and environment."""

    def processor(
        logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict.setdefault("service", settings.app_name)
        event_dict.setdefault("environment", settings.environment)
        return event_dict

    return processor


def stringify_values(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Render job/schedule ids and timestamps the way the API does."""
    for key, value in event_dict.items():
        if isinstance(value, UUID):
            event_dict[key] = str(value)
        elif isinstance(value, datetime):
            event_dict[key] = value.isoformat()
    return event_dict


def build_processors(settings: Settings) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        add_service_info(settings),
        stringify_values,
    ]
    if settings.debug:
        processors.append(
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.FUNC_NAME]
            )
        )
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    return processors


def setup_logging(settings: Settings) -> None:
    """Configure structured logging with structlog."""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )

    structlog.configure(
        processors=build_processors(settings),
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


def bind_job_context(
    job_id: UUID, job_type: str, attempt: int, **context: Any
) -> None:
    """
    Attach the job being executed to every log line of the current task.

    Each job runs in its own task, so the binding never leaks into the poll
    loop or into other jobs. ``attempt`` counts from 1.
    """
    structlog.contextvars.bind_contextvars(
        job_id=str(job_id), job_type=job_type, attempt=attempt, **context
    )
