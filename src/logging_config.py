"""
Structured logging configuration.

- Development: human-readable colored lines, context appended as key=value
- Production: one JSON object per line
- Log level and format come from Settings (LOG_LEVEL, LOG_FORMAT)

Use cases attach context through `extra=log_context(...)`; the fields listed
in CONTEXT_FIELDS are picked up by both formatters.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Dict

CONTEXT_FIELDS = ("project_id", "stage_name", "action", "actor_id", "method", "path")

_HANDLER_FLAG = "_stage_tracker"


def log_context(**values) -> Dict[str, str]:
    """Build an `extra=` mapping, stringifying ids and dropping empty values."""
    return {
        key: str(value)
        for key, value in values.items()
        if key in CONTEXT_FIELDS and value is not None
    }


def _context(record: logging.LogRecord) -> Dict[str, str]:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON document per record, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line output for a terminal."""

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
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"
        context = _context(record)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(settings) -> None:
    """
    Attach a single stderr handler to the root logger.

    Calling it again replaces that handler instead of duplicating output.
    """
    handler = logging.StreamHandler(sys.stderr)
    if settings.LOG_FORMAT == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ReadableFormatter())
    setattr(handler, _HANDLER_FLAG, True)

    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, _HANDLER_FLAG, False):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO))
