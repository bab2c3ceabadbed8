"""Logging setup driven by :class:`LoggingSettings`.

Library modules only ever call ``logging.getLogger(__name__)``; an
application that wants their records calls :func:`configure_logging` once
at startup.
"""
from __future__ import annotations

import logging
import logging.config
from typing import TYPE_CHECKING, Any

from keyset_odata.core.settings import get_logging_settings

if TYPE_CHECKING:
    from keyset_odata.core.settings import LoggingSettings

TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def build_logging_config(settings: LoggingSettings) -> dict[str, Any]:
    """Build the ``dictConfig`` dict for a console handler on the root logger."""
    if settings.json_logs:
        formatter: dict[str, Any] = {
            "()": "keyset_odata.infra.logging.formatters.JSONFormatter",
            "static": {"service": settings.service_name},
        }
    else:
        formatter = {"format": TEXT_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
            },
        },
        "root": {
            "level": settings.level,
            "handlers": ["console"],
        },
    }


def configure_logging(settings: LoggingSettings | None = None) -> None:
    """Configure the root logger.

    Example:
        configure_logging()  # LOG_LEVEL / LOG_JSON_LOGS from the environment
        configure_logging(LoggingSettings(level="DEBUG", json_logs=False))
    """
    settings = settings or get_logging_settings()
    logging.config.dictConfig(build_logging_config(settings))
    logging.getLogger(__name__).debug(
        "Logging configured",
        extra={"log_level": settings.level, "json_logs": settings.json_logs},
    )


__all__ = ["TEXT_FORMAT", "build_logging_config", "configure_logging"]
