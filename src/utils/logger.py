"""Console logging for the bounce handler.

The API process and the retention worker both call ``configure_logging``
at startup; modules log through the shared ``bounce-handler`` logger.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig

from src.core.config import settings


LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        }
    },
    "root": {
        "handlers": ["console"],
        "level": "DEBUG" if settings.environment == "development" else "INFO",
    },
}


def configure_logging() -> None:
    """Install the console handler; DEBUG in development, INFO otherwise."""
    dictConfig(LOGGING_CONFIG)


logger = logging.getLogger("bounce-handler")
