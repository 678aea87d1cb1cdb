"""Structured logging configuration.

JSON-formatted logs with correlation IDs. HTTP requests get their
correlation ID from the middleware; scheduler sweeps bind their own so
every dispatch in one sweep can be traced together.
"""

import json
import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

DEFAULT_SERVICE_NAME = "shiftguard-api"

# Correlation ID for the current request or sweep
correlation_id_ctx: ContextVar[str | None] = ContextVar("correlation_id", default=None)


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON documents.

    Fields: timestamp, level, service, message, logger, correlation_id
    (when bound) plus any structured extra fields passed to the logger.
    """

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "message": record.getMessage(),
            "logger": record.name,
        }

        correlation_id = correlation_id_ctx.get()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if record.levelno >= logging.ERROR:
            log_data["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development.

    Format: timestamp - service - level - [correlation_id] - message key=value
    """

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
        correlation_id = correlation_id_ctx.get() or "-"

        base_msg = (
            f"{timestamp} - {self.service_name} - {record.levelname} - "
            f"[{correlation_id}] - {record.getMessage()}"
        )

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            pairs = " ".join(f"{key}={value}" for key, value in extra_fields.items())
            base_msg += f" {pairs}"

        if record.exc_info:
            base_msg += f"\n{self.formatException(record.exc_info)}"

        return base_msg


def setup_logging(
    log_format: str = "json",
    log_level: str = "INFO",
    service_name: str = DEFAULT_SERVICE_NAME,
) -> None:
    """Configure the root logger.

    Args:
        log_format: 'json' for structured logging, 'text' for human-readable
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name to include in logs
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if log_format.lower() == "json":
        formatter: logging.Formatter = JsonFormatter(service_name=service_name)
    else:
        formatter = TextFormatter(service_name=service_name)

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


@contextmanager
def bind_correlation_id(correlation_id: str | None = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of a block.

    Generates a fresh one when none is given. Used by background jobs,
    which never pass through the HTTP middleware.
    """
    value = correlation_id or str(uuid.uuid4())
    token = correlation_id_ctx.set(value)
    try:
        yield value
    finally:
        correlation_id_ctx.reset(token)


class StructuredLogger:
    """Logger wrapper that supports structured extra fields.

    ``exc_info`` is forwarded to the underlying logger instead of being
    stored as a field.
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, extra_fields: dict[str, Any]) -> None:
        exc_info = extra_fields.pop("exc_info", None)
        record_extra = {"extra_fields": extra_fields} if extra_fields else {}
        self._logger.log(level, msg, extra=record_extra, exc_info=exc_info)

    def debug(self, msg: str, **extra_fields: Any) -> None:
        self._log(logging.DEBUG, msg, extra_fields)

    def info(self, msg: str, **extra_fields: Any) -> None:
        self._log(logging.INFO, msg, extra_fields)

    def warning(self, msg: str, **extra_fields: Any) -> None:
        self._log(logging.WARNING, msg, extra_fields)

    def error(self, msg: str, **extra_fields: Any) -> None:
        self._log(logging.ERROR, msg, extra_fields)

    def exception(self, msg: str, **extra_fields: Any) -> None:
        """Log at ERROR with the active exception's traceback."""
        extra_fields.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, extra_fields)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        StructuredLogger instance
    """
    return StructuredLogger(name)
