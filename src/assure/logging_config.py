"""Structured logging configuration using structlog."""

import logging
import sys

import structlog

SERVICE_NAME = "assure-spec-patcher"


def _add_service(_, __, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(log_level: str = "info", json_output: bool = False) -> None:
    """Configure structlog for structured logging.

    Args:
        log_level: Logging level string (debug/info/warning/error).
        json_output: If True, output JSON (production). If False, colored console (dev).
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _add_service,
    ]

    if json_output:
        # Tracebacks become a string field instead of multi-line output
        render_chain = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        render_chain = [structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *render_chain,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def bind_job_context(
    job_id: str,
    regulation_ref: str | None = None,
    spec_version_id: str | None = None,
) -> None:
    """Bind job-scoped variables so every log line of a job carries them."""
    ctx = {"job_id": job_id}
    if regulation_ref:
        ctx["regulation_ref"] = regulation_ref
    if spec_version_id:
        ctx["spec_version_id"] = spec_version_id
    structlog.contextvars.bind_contextvars(**ctx)


def bind_event_context(topic: str, message_id: str) -> None:
    """Bind bus message variables for the duration of one handler call."""
    structlog.contextvars.bind_contextvars(topic=topic, message_id=message_id)


def clear_context() -> None:
    """Clear bound context variables after a job or message."""
    structlog.contextvars.clear_contextvars()
