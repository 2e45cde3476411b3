"""
Logging configuration for the advent calendar.

Supports both human-readable (development) and JSON (production) formats.
Fields bound with LogContext (the request's method and path, the signed-in
user) are attached to every record logged while the request is handled.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else was passed via extra=
# or attached by LogContextFilter
_RECORD_ATTRS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "asctime", "taskName",
))

_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar("log_context", default=None)


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    One object per line, suitable for log aggregators.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data.update(_extra_fields(record))
        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development. Extra fields trail as key=value."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        output = super().format(record)
        fields = _extra_fields(record)
        if not fields:
            return output
        first_line, newline, rest = output.partition("\n")
        suffix = " ".join(f"{k}={v}" for k, v in fields.items())
        return f"{first_line} | {suffix}{newline}{rest}"


class LogContextFilter(logging.Filter):
    """Copies the fields bound with LogContext onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in (_context.get() or {}).items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class LogContext:
    """
    Context manager for adding fields to log records.

    Usage:
        with LogContext(method="GET", path="/"):
            logger.info("Processing request")  # Will include method and path

    Contexts nest; leaving one restores the fields of the enclosing one.
    Fields live in a ContextVar, so concurrent requests don't see each
    other's fields.
    """

    def __init__(self, **fields):
        self._fields = fields
        self._token = None

    def __enter__(self):
        self._token = _context.set({**(_context.get() or {}), **self._fields})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _context.reset(self._token)


def bind_log_context(**fields) -> None:
    """
    Add fields to the innermost LogContext.

    They stay until that context exits, so records logged by outer code
    after an inner filter returns or raises still carry them. Outside any
    LogContext this does nothing.
    """
    current = _context.get()
    if current is not None:
        current.update(fields)


def log_context_fields() -> Dict[str, Any]:
    """The fields currently bound."""
    return dict(_context.get() or {})


def configure_logging(level: str = "INFO", format_type: str = "text") -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: "json" for structured, "text" for human-readable
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(LogContextFilter())
    if format_type.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())
    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
