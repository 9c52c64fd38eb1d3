"""Structured logging configuration for marketchat."""

import json
import logging
import logging.config
from datetime import datetime, timezone

from marketchat.core.config import get_settings


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # extra={"context": {...}} on the logging call
        if hasattr(record, "context"):
            log_data["context"] = record.context

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str | None = None, json_output: bool | None = None) -> None:
    """
    Setup logging for the API process.

    Args:
        log_level: Log level name. Defaults to the LOG_LEVEL setting.
        json_output: Emit JSON lines instead of plain text. Defaults to LOG_JSON.
    """
    settings = get_settings()
    if log_level is None:
        log_level = settings.LOG_LEVEL
    if json_output is None:
        json_output = settings.LOG_JSON

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "marketchat.core.logging_config.JSONFormatter",
            },
            "plain": {
                "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json" if json_output else "plain",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {
            "level": log_level.upper(),
            "handlers": ["console"],
        },
    }

    logging.config.dictConfig(logging_config)
