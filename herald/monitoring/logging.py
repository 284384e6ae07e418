"""
Structured logging for the pipeline.

`configure_logging` installs either a JSON formatter (default) or a plain
text one on the root logger. Components never own a process-wide logger;
they accept one in their constructor and otherwise use the module logger.

Environment Variables:
    LOG_LEVEL: debug, info, warn, error (default: info)
    LOG_FORMAT: json or text (default: json)
"""

import json
import logging
import os
import sys
from datetime import UTC, datetime
from typing import Any

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class PipelineJsonFormatter(logging.Formatter):
    """
    JSON formatter with the pipeline's structured fields.

    Fields passed through `extra={...}` are copied into the entry when
    present.
    """

    # Fields to extract from log record if present
    _EXTRA_FIELDS = (
        "message_id",
        "kind",
        "topic",
        "partition",
        "offset",
        "attempt",
        "consumer_group",
        "outcome",
        "operation",
        "error_type",
    )

    def __init__(self, service: str | None = None):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON"""
        log_entry = self._build_base_entry(record)
        self._add_record_extras(log_entry, record)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)

    def _build_base_entry(self, record: logging.LogRecord) -> dict[str, Any]:
        """Build base log entry with standard fields."""
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if self.service:
            entry["service"] = self.service
        return entry

    def _add_record_extras(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        """Add extra fields from log record."""
        for field in self._EXTRA_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)


def parse_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    return _LEVELS.get((level or "info").lower(), logging.INFO)


def configure_logging(
    level: str | int | None = None,
    fmt: str | None = None,
    service: str = "email-service",
    stream=None,
) -> logging.Handler:
    """
    Configure the root logger.

    Args:
        level: Log level name or number (default: LOG_LEVEL or info)
        fmt: "json" or "text" (default: LOG_FORMAT or json)
        service: Service name added to JSON entries
        stream: Output stream (default: stderr)

    Returns:
        The installed handler
    """
    level = parse_level(level if level is not None else os.getenv("LOG_LEVEL"))
    fmt = (fmt or os.getenv("LOG_FORMAT") or "json").lower()

    handler = logging.StreamHandler(stream or sys.stderr)
    if fmt == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(PipelineJsonFormatter(service=service))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    return handler
