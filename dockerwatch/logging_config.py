"""Logging configuration.

Log records from the monitor and exec session carry ``container_id``,
``exec_id`` and ``event_type`` through ``extra=``. Both formatters surface
them: as top-level keys in JSON output, and as a short bracketed suffix in
text output so a container can be followed through the log by eye.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from dockerwatch.config import settings

# Context passed via extra= that gets first-class treatment
CONTEXT_FIELDS = ("container_id", "exec_id", "event_type")

# Docker IDs are shown in their 12-character short form in text output
_SHORT_ID_FIELDS = {"container_id": "container", "exec_id": "exec"}

_RECORD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "taskName"}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed via ``extra=`` on the logging call."""
    return {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}


def _json_safe(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


class JSONFormatter(logging.Formatter):
    """One JSON object per line.

    Fields: timestamp, level, logger, message, service, any of
    ``CONTEXT_FIELDS`` present on the record, exception, and the remaining
    ``extra=`` values under "extra".
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": "dockerwatch",
        }

        extra = {k: _json_safe(v) for k, v in _extra_fields(record).items()}
        for field in CONTEXT_FIELDS:
            if field in extra:
                log_entry[field] = extra.pop(field)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        if extra:
            log_entry["extra"] = extra

        return json.dumps(log_entry)


class TextFormatter(logging.Formatter):
    """``[timestamp] LEVEL    logger: message [container=... exec=...]``"""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        message = f"[{timestamp}] {record.levelname:8} {record.name}: {record.getMessage()}"

        context = []
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is None:
                continue
            if field in _SHORT_ID_FIELDS:
                context.append(f"{_SHORT_ID_FIELDS[field]}={str(value)[:12]}")
            else:
                context.append(f"{field}={value}")
        if context:
            message += f" [{' '.join(context)}]"

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


def setup_logging() -> None:
    """Install the configured formatter on the root logger."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)
    root_logger.addHandler(handler)

    # The SDK and HTTP stacks log every request at DEBUG/INFO
    for name in ("docker", "urllib3", "httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)
