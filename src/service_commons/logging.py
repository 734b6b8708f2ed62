"""
Shared structured JSON logging utilities.

Records carry the active request trace id, set per request by the
service middleware through set_trace_id().
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from logging.handlers import TimedRotatingFileHandler
from typing import Any

VALID_LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

_STANDARD_RECORD_ATTRS: frozenset[str] = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)

_trace_id: ContextVar[str | None] = ContextVar("trace_id", default=None)


def set_trace_id(trace_id: str | None) -> Token[str | None]:
    """Bind a trace id to the current context; returns the reset token."""
    return _trace_id.set(trace_id)


def reset_trace_id(token: Token[str | None]) -> None:
    """Restore the trace id that was active before set_trace_id()."""
    _trace_id.reset(token)


def get_trace_id() -> str | None:
    """Return the trace id bound to the current context, if any."""
    return _trace_id.get()


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        timestamp = datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="seconds")

        log_data: dict[str, Any] = {
            "timestamp": timestamp.replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        trace_id = get_trace_id()
        if trace_id is not None:
            log_data["trace_id"] = trace_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_ATTRS
        }
        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data, default=str)


class DailyRotatingFileHandler(TimedRotatingFileHandler):
    """Rotating file handler that names files as YYYY-MM-DD.log."""

    def __init__(self, directory: str) -> None:
        self._log_directory = directory
        super().__init__(self._make_filename(), when="midnight", utc=True)

    def _make_filename(self) -> str:
        today = datetime.now(tz=UTC).strftime("%Y-%m-%d")
        return os.path.join(self._log_directory, f"{today}.log")

    def doRollover(self) -> None:  # noqa: N802
        if self.stream:
            self.stream.close()
            self.stream = None  # type: ignore[assignment]
        self.baseFilename = os.path.abspath(self._make_filename())
        if not self.delay:
            self.stream = self._open()
        self.rolloverAt = self.computeRollover(int(time.time()))


def setup_logging(level: str, logger_name: str, log_directory: str) -> logging.Logger:
    """
    Configure structured JSON logging under a logger namespace.

    Logs go to stdout and to a daily rotating file in log_directory.

    Raises:
        ValueError: If level is not a valid log level
    """
    level_upper = level.upper()
    if level_upper not in VALID_LOG_LEVELS:
        msg = f"Invalid log level: {level}. Must be one of {sorted(VALID_LOG_LEVELS)}"
        raise ValueError(msg)

    numeric_level = getattr(logging, level_upper)

    logger = logging.getLogger(logger_name)
    logger.setLevel(numeric_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = JSONFormatter()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(numeric_level)
    stdout_handler.setFormatter(formatter)
    logger.addHandler(stdout_handler)

    os.makedirs(log_directory, exist_ok=True)
    file_handler = DailyRotatingFileHandler(directory=log_directory)
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def get_named_logger(namespace: str, logger_name: str) -> logging.Logger:
    """Get a logger nested under a namespace."""
    return logging.getLogger(f"{namespace}.{logger_name}")
