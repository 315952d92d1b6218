"""
Structured logging configuration.

- Development / testing: readable colored lines on stderr
- Production: one JSON object per line on stderr
- ``sitebooks.audit`` (written by ``record_audit``) can additionally be
  shipped to its own JSON file via ``AUDIT_LOG_FILE``
- Level from the LOG_LEVEL env variable
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from flask import g, has_request_context, request

AUDIT_LOGGER = "sitebooks.audit"

# ``extra={...}`` keys promoted to top-level JSON fields
_EXTRA_KEYS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "request_id",
    "acting_user",
    "project_id",
    "entity_type",
    "entity_id",
    "action",
    "severity",
    "user_id",
    "expense_id",
    "certificate_id",
    "subcontract_id",
    "caller",
)


class RequestContextFilter(logging.Filter):
    """Stamp records emitted inside a request with its id and acting user."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "acting_user", None) is None:
                record.acting_user = request.headers.get("X-User") or None
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for key in _EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line output for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"]

        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"[{duration:.0f}ms]")
        if record.name == AUDIT_LOGGER and getattr(record, "severity", None) not in (None, "info"):
            parts.append(f"<{record.severity}>")
        request_id = getattr(record, "request_id", None)
        if request_id:
            parts.append(f"({request_id})")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _audit_file_handler(path: str, level: int) -> logging.Handler:
    handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
    handler.setFormatter(JSONFormatter())
    handler.setLevel(level)
    return handler


def configure_logging(app):
    """
    Install the root handler for the app.

    Production (not DEBUG, not TESTING) logs JSON; everything else logs
    readable lines.  LOG_LEVEL defaults to INFO in production and DEBUG
    otherwise.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())

    # Replace, not append: the test suite builds more than one app
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    audit_logger = logging.getLogger(AUDIT_LOGGER)
    for old in [h for h in audit_logger.handlers if isinstance(h, RotatingFileHandler)]:
        audit_logger.removeHandler(old)
        old.close()
    audit_path = app.config.get("AUDIT_LOG_FILE")
    if audit_path:
        file_handler = _audit_file_handler(audit_path, logging.INFO)
        file_handler.addFilter(RequestContextFilter())
        audit_logger.addHandler(file_handler)

    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine", "alembic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s audit_file=%s",
                        level_name, "JSON" if is_prod else "readable", audit_path or "-")
