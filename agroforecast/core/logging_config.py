"""
Structured logging for request handlers, predictors and scheduler jobs.

Every record passes through ``ContextFilter``, which copies the active
log context onto it: the request ID for HTTP traffic, the task ID and job
type for scheduler ticks. Formatters read only the record:

    production  → JSONFormatter    one JSON object per line
    otherwise   → PrettyFormatter  coloured, tagged with request/job and location

Usage:
    from agroforecast.core.logging_config import get_logger, log_context, setup_logging

    setup_logging()
    logger = get_logger(__name__)
    with log_context(task_id="a1b2c3d4", job_type="weather_retraining"):
        logger.info("Forecast generated", extra={"location": "Pune", "confidence": 0.82})
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from agroforecast.core.config import settings

_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})

# `extra=` keys promoted to top-level JSON fields
_EXTRA_FIELDS = (
    "location", "model", "prediction_type", "confidence", "duration_ms",
    "status_code", "endpoint", "job_type", "task_id",
)

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine")


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

def set_request_context(**kwargs: Any) -> Token:
    """Replace the log context. Pass the returned token to ``reset_request_context``."""
    return _log_context.set(dict(kwargs))


def reset_request_context(token: Token) -> None:
    _log_context.reset(token)


def get_request_context() -> Dict[str, Any]:
    return dict(_log_context.get())


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Merge fields into the log context for the duration of a block."""
    token = _log_context.set({**_log_context.get(), **kwargs})
    try:
        yield
    finally:
        _log_context.reset(token)


class ContextFilter(logging.Filter):
    """Attach the active log context to each record as ``record.context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = get_request_context()
        return True


def _context_of(record: logging.LogRecord) -> Dict[str, Any]:
    ctx = getattr(record, "context", None)
    return ctx if ctx is not None else get_request_context()


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------

class JSONFormatter(logging.Formatter):
    """One JSON object per line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        ctx = _context_of(record)
        if ctx:
            entry["context"] = ctx

        for key in _EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            entry["exception"] = {
                "type": type(exc).__name__,
                "message": str(exc),
                "traceback": self.formatException(record.exc_info).splitlines(),
            }

        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """
    Coloured single-line output for local development.

        12:00:01 INFO     [req:0123abcd] agroforecast.services.advisory: Stored 30 observations (Pune)
        12:00:05 WARNING  [job:a1b2c3d4] agroforecast.scheduling.retraining: ...
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _tag(ctx: Dict[str, Any]) -> str:
        if ctx.get("request_id"):
            return f" [req:{str(ctx['request_id'])[:8]}]"
        if ctx.get("task_id"):
            return f" [job:{ctx['task_id']}]"
        return ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        ts = self.formatTime(record, "%H:%M:%S")
        line = (
            f"{color}{ts} {record.levelname:8s}{self.RESET}"
            f"{self._tag(_context_of(record))} {record.name}: {record.getMessage()}"
        )

        location = getattr(record, "location", None)
        if location and str(location) not in line:
            line += f" ({location})"

        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

def setup_logging(level: Optional[str] = None, *, json_output: Optional[bool] = None) -> None:
    """
    Configure the root logger. Safe to call more than once.

    ``level`` defaults to LOG_LEVEL; JSON output defaults to on in production.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    root.handlers.clear()

    use_json = settings.is_production if json_output is None else json_output
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if use_json else PrettyFormatter())
    handler.addFilter(ContextFilter())
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if settings.DATABASE_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Named logger; call once per module."""
    return logging.getLogger(name)
