"""Logging infrastructure: JSONL formatter and root logger setup."""

from keyset_odata.infra.logging.config import build_logging_config, configure_logging
from keyset_odata.infra.logging.formatters import JSONFormatter

__all__ = ["JSONFormatter", "build_logging_config", "configure_logging"]
