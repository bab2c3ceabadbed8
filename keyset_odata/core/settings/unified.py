"""Unified settings composition for convenient access.

Usage:
    from keyset_odata.core.settings import get_settings

    settings = get_settings()
    print(settings.pagination.max_limit)
    print(settings.logging.level)

Each nested settings class still loads from its own environment prefix.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .loader import get_logging_settings, get_pagination_settings
from .logs import LoggingSettings
from .pagination import PaginationSettings


class Settings(BaseSettings):
    """Unified settings composing all domain settings."""

    model_config = SettingsConfigDict(
        frozen=True,
        extra="ignore",
    )

    pagination: PaginationSettings = Field(default_factory=get_pagination_settings)
    logging: LoggingSettings = Field(default_factory=get_logging_settings)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get unified settings instance (cached)."""
    return Settings()


def clear_settings_cache() -> None:
    """Drop every cached settings instance."""
    get_pagination_settings.cache_clear()
    get_logging_settings.cache_clear()
    get_settings.cache_clear()
