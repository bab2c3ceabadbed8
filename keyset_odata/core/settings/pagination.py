"""Pagination and query-budget settings.

Centralizes the page-size limits and the parser budgets applied to
``$filter`` and ``$orderby`` so every listing endpoint enforces the same
ceilings.

Environment variables use PAGINATION_ prefix.
Example: PAGINATION_DEFAULT_LIMIT=25, PAGINATION_MAX_FILTER_NODES=500
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PaginationSettings(BaseSettings):
    """Pagination configuration settings.

    Attributes:
        default_limit: Page size used when the request carries no limit.
        max_limit: Largest page size a request may ask for.
        max_filter_length: Byte ceiling for the raw ``$filter`` text.
        max_filter_nodes: Ceiling for the number of nodes in a parsed filter.
        max_filter_depth: Ceiling for nested parentheses, ``not`` and argument
            lists in a filter. Runs of ``and`` / ``or`` do not add depth.
        max_orderby_length: Character ceiling for the raw ``$orderby`` text.
        max_order_fields: Maximum number of keys in an ``$orderby`` clause.
    """

    default_limit: int = Field(
        default=50,
        ge=1,
        le=10000,
        description="Default page size when limit not specified",
    )
    max_limit: int = Field(
        default=1000,
        ge=1,
        le=10000,
        description="Maximum allowed page size (hard limit)",
    )
    max_filter_length: int = Field(
        default=8 * 1024,
        ge=1,
        description="Maximum $filter length in bytes",
    )
    max_filter_nodes: int = Field(
        default=2000,
        ge=1,
        description="Maximum number of AST nodes in a parsed $filter",
    )
    max_filter_depth: int = Field(
        default=100,
        ge=1,
        le=200,
        description="Maximum nesting of parentheses, not and argument lists in a $filter",
    )
    max_orderby_length: int = Field(
        default=1024,
        ge=1,
        description="Maximum $orderby length in characters",
    )
    max_order_fields: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum number of $orderby keys",
    )

    model_config = SettingsConfigDict(
        env_prefix="PAGINATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )

    @model_validator(mode="after")
    def check_limits(self) -> PaginationSettings:
        """Ensure the default page size fits under the hard limit."""
        if self.default_limit > self.max_limit:
            msg = "default_limit must not exceed max_limit"
            raise ValueError(msg)
        return self
