"""
Logging setup.

Modules log through ``logging.getLogger(__name__)``; ``configure_logging``
attaches the single handler for the ``geovault`` logger tree.
Plaintext coordinates and distances must never reach a log record.
"""
import json
import logging
import sys
from datetime import datetime
from typing import Optional

from geovault.shared.config import GeoVaultSettings, get_settings


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_entry.update(record.extra_data)

        return json.dumps(log_entry)


def configure_logging(settings: Optional[GeoVaultSettings] = None) -> logging.Logger:
    """
    Configure the ``geovault`` root logger.

    Args:
        settings: Settings to read environment and level from (default: process settings)

    Returns:
        The configured package logger
    """
    settings = settings or get_settings()
    logger = logging.getLogger("geovault")

    # Avoid duplicate handlers
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        if settings.ENVIRONMENT == "production":
            handler.setFormatter(StructuredFormatter())
        else:
            handler.setFormatter(logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            ))
        logger.addHandler(handler)

    logger.setLevel(settings.LOG_LEVEL.upper())
    return logger
