from __future__ import annotations

import json
import logging
import os
import sys
from datetime import UTC, datetime

# Structured fields lifted from `extra=` into the JSON line.
CONTEXT_KEYS = (
    "role",
    "service",
    "run_id",
    "job_id",
    "row_index",
    "error_code",
    "message_type",
    "delivery_id",
    "attempts",
    "period",
    "member_id",
    "total_rows",
    "ok_rows",
    "failed_rows",
    "status_code",
    "template_key",
    "font_key",
    "detail",
)

# Client libraries that log every request at INFO.
NOISY_LOGGERS = ("httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key)) for key in CONTEXT_KEYS if getattr(record, key, None) is not None
        )
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str | None = None) -> None:
    """Route every logger through one JSON stdout handler.

    The level comes from the argument, then LOG_LEVEL, then INFO.
    """
    resolved = (level or os.getenv("LOG_LEVEL") or "INFO").upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.getLevelName(resolved) if resolved in logging.getLevelNamesMapping() else logging.INFO)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
