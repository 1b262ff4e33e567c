"""
Structured logging configuration.

- Development: human-readable colored format with a compact context tag
- Production: JSON format (log aggregator compatible)
- Log level: LOG_LEVEL (app config, then env); LOG_FORMAT forces json/readable

Every record emitted while a request is active is stamped with the request
id and the worksite entity ids found in the URL, so a transition or compile
log line can be traced back to its HTTP call without each service passing
them along in `extra=`.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# URL parameter → record attribute
VIEW_ARG_FIELDS = {
    "project_id": "project_id",
    "wp_id": "work_package_id",
    "step_id": "step_id",
    "task_id": "task_id",
    "slot_id": "slot_id",
}

# Record attribute → short label used by ReadableFormatter
_CONTEXT_LABELS = {
    "request_id": "req",
    "project_id": "project",
    "work_package_id": "wp",
    "step_id": "step",
    "task_id": "task",
    "slot_id": "slot",
    "category": "cat",
}

_HTTP_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr")
_EXTRA_FIELDS = _HTTP_FIELDS + tuple(_CONTEXT_LABELS) + ("event_type",)

_NOISY_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "flask_limiter")


def record_context(record: logging.LogRecord) -> dict:
    """Extra fields present on a record, in a stable order."""
    return {
        key: getattr(record, key)
        for key in _EXTRA_FIELDS
        if getattr(record, key, None) is not None
    }


class RequestContextFilter(logging.Filter):
    """Copy request id and URL entity ids onto records logged inside a request.

    Values passed explicitly through `extra=` win over the URL.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        if getattr(record, "request_id", None) is None:
            record.request_id = g.get("request_id")
        for arg, field in VIEW_ARG_FIELDS.items():
            value = (request.view_args or {}).get(arg)
            if value is not None and getattr(record, field, None) is None:
                setattr(record, field, value)
        return True


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        log_entry.update(record_context(record))
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Human-readable colored formatter for development.

    Example:
        14:02:11 INFO     worksite.services.resource_compiler: Compiled ... [wp=4 req=9f1c2a]
    """

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def _context_tag(self, record: logging.LogRecord) -> str:
        parts = [
            f"{label}={getattr(record, key)}"
            for key, label in _CONTEXT_LABELS.items()
            if getattr(record, key, None) is not None
        ]
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"{duration:.0f}ms")
        return f" [{' '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now().strftime("%H:%M:%S")
        msg = record.getMessage()
        base = (
            f"{color}{ts} {record.levelname:<8}{self.RESET} "
            f"{record.name}: {msg}{self._context_tag(record)}"
        )
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def _use_json(app) -> bool:
    forced = (app.config.get("LOG_FORMAT") or "").lower()
    if forced in ("json", "readable"):
        return forced == "json"
    return not app.config.get("DEBUG", False) and not app.config.get("TESTING", False)


def configure_logging(app):
    """
    Set up structured logging for the Flask app.

    Level: LOG_LEVEL from app config or env (default: DEBUG in dev, INFO in prod).
    Development  → ReadableFormatter on stderr
    Production   → JSONFormatter on stderr
    """
    use_json = _use_json(app)
    level_name = app.config.get("LOG_LEVEL") or os.getenv("LOG_LEVEL") or ("INFO" if use_json else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    root = logging.getLogger()
    # Remove existing handlers to prevent duplicates in tests
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if use_json else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if use_json else "readable")
