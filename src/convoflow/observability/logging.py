"""JSON log lines for Cloud Run / Cloud Logging.

Every line carries the correlation id of the event or request being handled,
so one inbound message can be followed from webhook to delivery.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id

SERVICE_NAME = "convoflow"


class JsonFormatter(logging.Formatter):
    def __init__(self, role: str | None = None) -> None:
        super().__init__()
        self._role = role or os.environ.get("APP_ROLE", "public")

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "severity": record.levelname,  # read by Cloud Logging
            "level": record.levelname,
            "service": SERVICE_NAME,
            "role": self._role,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            entry["correlationId"] = correlation_id

        if record.levelno >= logging.ERROR:
            entry["source"] = f"{record.module}:{record.lineno}"
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # Reserved keys are not overwritten by call-site context
        for key, value in getattr(record, "extra_fields", {}).items():
            entry.setdefault(key, value)

        return json.dumps(entry, default=str)


def _resolve_level() -> int:
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Logger writing JSON lines to stdout, configured on first use."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(_resolve_level())
        logger.propagate = False
    return logger
