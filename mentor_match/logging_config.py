"""Logging setup driven by LoggingSettings (LOG_LEVEL, LOG_FORMAT, LOG_FILE)."""
from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone

from .config import settings


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging() -> None:
    """Configure the root logger from settings."""
    level = settings.logging.level.upper()
    formatter = "json" if settings.logging.format == "json" else "text"

    handlers: dict[str, dict] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": formatter,
        },
    }
    if settings.logging.file:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": formatter,
            "filename": settings.logging.file,
            "encoding": "utf-8",
        }

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JsonFormatter},
            "text": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
        },
        "handlers": handlers,
        "root": {"level": level, "handlers": list(handlers)},
    })
