"""Structured logging with correlation IDs.

Every HTTP request and every dispatched job runs under its own correlation
ID so that all log lines belonging to one unit of work can be joined. Job
correlation IDs have the form ``<kind>:<run_id>:<media_id>``; the JSON
formatter splits them back into a ``job`` object so log queries can filter
on the media id directly.
"""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

from media_worker.core.tracing import get_span_id, get_trace_id

# Correlation ID of the request or job currently executing
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Lines logged outside any request or job
NO_CORRELATION = "-"

JOB_KINDS = ("extract", "transcode")


def get_correlation_id() -> str:
    """Current correlation ID, the active trace id, or ``-``."""
    cid = correlation_id_var.get()
    if cid:
        return cid
    return get_trace_id() or NO_CORRELATION


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    correlation_id_var.set(None)


def parse_job_correlation(correlation_id: Optional[str]) -> Optional[dict]:
    """Split a job correlation ID into its parts.

    Returns:
        ``{"kind", "run_id", "media_id"}`` or None for request IDs
    """
    if not correlation_id:
        return None
    parts = correlation_id.split(":", 2)
    if len(parts) != 3 or parts[0] not in JOB_KINDS:
        return None
    kind, run_id, media_id = parts
    return {"kind": kind, "run_id": run_id, "media_id": media_id}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, with correlation, trace and job context."""

    RESERVED_ATTRS = frozenset((
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "message", "taskName", "correlation_id",
    ))

    def __init__(self, include_stack_trace: bool = True):
        super().__init__()
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        correlation_id = getattr(record, "correlation_id", None) or get_correlation_id()
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": correlation_id,
        }

        job = parse_job_correlation(correlation_id)
        if job:
            entry["job"] = job

        trace_id = get_trace_id()
        if trace_id:
            entry["trace_id"] = trace_id
            entry["span_id"] = get_span_id()

        if record.exc_info and self.include_stack_trace:
            exc_type, exc_value, exc_tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "stack_trace": traceback.format_exception(exc_type, exc_value, exc_tb) if exc_tb else None,
            }

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self.RESERVED_ATTRS
        }
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str)


class CorrelationIdFilter(logging.Filter):
    """Stamps the current correlation ID on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
) -> None:
    """Configure the root logger for the worker.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines instead of plain text
        include_stack_trace: Include stack traces in error logs
    """
    numeric_level = getattr(logging, level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(CorrelationIdFilter())
    if json_format:
        handler.setFormatter(StructuredFormatter(include_stack_trace=include_stack_trace))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"
        ))
    root_logger.addHandler(handler)

    # Per-request access lines and SQL echo drown out job logs
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "botocore", "boto3", "s3transfer"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _log(logger: logging.Logger, level: int, message: str, exc_info=None, **extra: Any) -> None:
    extra["correlation_id"] = get_correlation_id()
    logger.log(level, message, exc_info=exc_info, extra=extra)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    **extra: Any,
) -> None:
    """Log an error, with the exception's traceback when one is given.

    Args:
        logger: Logger instance
        message: Error message
        exception: Optional exception to log
        **extra: Additional context fields
    """
    _log(logger, logging.ERROR, message, exc_info=exception, **extra)


def log_warning(logger: logging.Logger, message: str, **extra: Any) -> None:
    _log(logger, logging.WARNING, message, **extra)


def log_info(logger: logging.Logger, message: str, **extra: Any) -> None:
    _log(logger, logging.INFO, message, **extra)
