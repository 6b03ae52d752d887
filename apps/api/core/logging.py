"""
Logging setup.

One JSON object per line in production (LOG_FORMAT=json), plain text
locally. Session flows name every step through log_event(), e.g.

    log_event(logger, "calendar_update_failed", logging.ERROR, session_id=..., error=...)

which lands as {"event": "calendar_update_failed", "session_id": ..., ...}
so degraded best-effort steps can be counted and alerted on.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from core.config import settings

SERVICE_NAME = "session-engine"

NOISY_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "urllib3": logging.WARNING,
    "celery": logging.INFO,
    "multipart": logging.WARNING,
}


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        fields = getattr(record, "extra_fields", None)
        if fields:
            entry.update(fields)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **fields: Any) -> None:
    """Log a named event; None-valued fields are dropped."""
    fields = {k: v for k, v in fields.items() if v is not None}
    text = " ".join([event] + [f"{k}={v}" for k, v in fields.items()])
    logger.log(level, text, extra={"extra_fields": {"event": event, **fields}})


def setup_logging() -> logging.Logger:
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)
    return root
