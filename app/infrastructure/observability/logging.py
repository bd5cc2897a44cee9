"""
Structured logging for the attendance reporter.

JSON lines in deployed environments, console rendering in development.
Context bound with ``bind_meeting`` (meeting id, pipeline run) is merged
into every entry emitted while it is active.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.contextvars import bound_contextvars, merge_contextvars
from structlog.stdlib import LoggerFactory

SERVICE_NAME = "zoom-attendance-reporter"

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def setup_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: JSON renderer when True, console renderer otherwise
    """
    renderer = (
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_service_name,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _add_service_name(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """Structured logger, usually named after the calling module."""
    return structlog.get_logger(name)


@contextmanager
def bind_meeting(meeting_id: str, **extra: Any):
    """Attach meeting context to every log entry inside the block."""
    with bound_contextvars(meeting_id=meeting_id, **extra):
        yield


def log_request(method: str, path: str, status_code: int, duration_ms: float):
    """One access-log entry per HTTP request; 4xx/5xx at warning level."""
    level = "warning" if status_code >= 400 else "info"
    getattr(get_logger("http"), level)(
        "HTTP request",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
    )


def log_pipeline_stage(meeting_id: str, stage: str, ok: bool, **extra: Any):
    """Outcome of one attendance pipeline stage (token, fetch, classify, notify)."""
    logger = get_logger("attendance.pipeline")
    if ok:
        logger.info("Pipeline stage completed", meeting_id=meeting_id, stage=stage, **extra)
    else:
        logger.error("Pipeline stage failed", meeting_id=meeting_id, stage=stage, **extra)
