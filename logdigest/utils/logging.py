"""
LogDigest - Structured Logging
==============================

JSON logging for the service and its pipeline. Two pieces of context
follow an analysis through every log line it produces without being passed
around:

- the request's correlation ID, set by the HTTP middleware
- the analysis context (container, stage, chunk), bound by the pipeline
  with :func:`log_context`

Usage:
    from logdigest.utils.logging import get_logger, log_context, setup_logging

    setup_logging(service_name="logdigest", log_level="INFO")
    logger = get_logger(__name__)

    with log_context(container="web", stage="summarize_chunk", chunk="2/5"):
        logger.info("Chunk summarized", extra={"chunk_tokens": 812})
"""

import logging
import json
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Optional
from contextvars import ContextVar

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
analysis_context_var: ContextVar[Optional[dict[str, Any]]] = ContextVar("analysis_context", default=None)

# Printed in this order by the console formatter
CONTEXT_FIELDS = ("container", "stage", "chunk")

# Attributes every LogRecord carries; anything else came in through extra=
_STANDARD_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
})


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """
    Bind analysis fields to every log line emitted inside the block.

    Nested blocks add to (and may override) the outer fields; ``None``
    values are ignored. The outer context is restored on exit.
    """
    merged = dict(analysis_context_var.get() or {})
    merged.update({k: v for k, v in fields.items() if v is not None})
    token = analysis_context_var.set(merged)
    try:
        yield
    finally:
        analysis_context_var.reset(token)


def get_log_context() -> dict[str, Any]:
    """The analysis fields bound in the current context."""
    return dict(analysis_context_var.get() or {})


class StructuredFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Each entry includes timestamp (ISO 8601, UTC), level, service, logger
    and message, then the correlation ID and exception when present, then
    every field passed through ``extra`` (which includes the analysis
    context when the record came through a ContextualLogger).
    """

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_entry["correlation_id"] = correlation_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable lines for local runs, prefixed with the analysis context:

        2024-05-01 10:00:00,123 | logdigest | INFO | logdigest.core.pipeline | [web summarize_chunk 2/5] ...
    """

    def __init__(self, service_name: str):
        super().__init__(
            f"%(asctime)s | {service_name} | %(levelname)s | %(name)s | %(_context_tag)s%(message)s"
        )

    def format(self, record: logging.LogRecord) -> str:
        tags = [str(getattr(record, field)) for field in CONTEXT_FIELDS if getattr(record, field, None)]
        record._context_tag = f"[{' '.join(tags)}] " if tags else ""
        return super().format(record)


class ContextualLogger(logging.LoggerAdapter):
    """
    Logger adapter that adds the analysis context and correlation ID.

    Fields passed explicitly through ``extra`` win over bound ones. The
    caller's dict is copied, never modified.
    """

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = {**get_log_context(), **(kwargs.get("extra") or {})}

        if "correlation_id" not in extra:
            correlation_id = correlation_id_var.get()
            if correlation_id:
                extra["correlation_id"] = correlation_id

        kwargs["extra"] = extra
        return msg, kwargs


_loggers: dict[str, ContextualLogger] = {}


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_output: bool = True
) -> None:
    """
    Configure the root logger for the service.

    Call once at startup, before the application object is created.

    Args:
        service_name: Name stamped on every entry
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: JSON lines when True, ConsoleFormatter lines otherwise
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = StructuredFormatter(service_name) if json_output else ConsoleFormatter(service_name)
    handler.setFormatter(formatter)

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper()))

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> ContextualLogger:
    """Get the cached contextual logger for a module (``__name__``)."""
    if name not in _loggers:
        _loggers[name] = ContextualLogger(logging.getLogger(name), {})
    return _loggers[name]


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current async context / thread."""
    correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Return the current correlation ID, or None if none is set."""
    return correlation_id_var.get()
