"""Query assembly and the cross-request consistency policy.

A listing request carries up to four parameters: ``$filter``, ``$orderby``,
``cursor`` and ``limit``. This module turns them into one immutable
:class:`ODataQuery` and rejects combinations that would let a client change
the traversal criteria in the middle of a pagination run.

Policy, evaluated in order (the first violation wins):

1. ``$orderby`` and ``cursor`` together -> OrderWithCursorError. A
   continuation request relies solely on the order embedded in the cursor.
2. With a cursor, the cursor's order becomes the effective order.
3. With a cursor and a filter, the filter hash must match the hash bound
   into the cursor (FilterMismatchError); when the caller asserts an
   expected order, the cursor's order must match it (OrderMismatchError).
4. ``limit`` must be within ``1..max_limit`` (InvalidLimitError).

Usage:
    query = parse_odata_query(
        {"$filter": "status eq 'active'", "$orderby": "created_at desc", "limit": "25"}
    )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from keyset_odata.core.exceptions import (
    FilterMismatchError,
    InvalidCursorError,
    InvalidFilterError,
    InvalidLimitError,
    InvalidOrderByFieldError,
    ODataError,
    OrderMismatchError,
    OrderWithCursorError,
)
from keyset_odata.core.pagination.cursor import CursorCodec, CursorV1
from keyset_odata.core.pagination.filter_parser import parse_filter
from keyset_odata.core.pagination.hashing import short_filter_hash
from keyset_odata.core.pagination.order import ODataOrderBy, parse_orderby
from keyset_odata.core.settings import get_pagination_settings

if TYPE_CHECKING:
    from collections.abc import Mapping

    from keyset_odata.core.pagination.ast import Expr
    from keyset_odata.core.settings import PaginationSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ODataQuery:
    """Validated listing query.

    Attributes:
        filter: Parsed filter, ``None`` when absent
        order: Effective ordering; for a continuation request this is the
            order decoded from the cursor
        cursor: Decoded cursor, ``None`` on the first page
        limit: Requested page size, ``None`` to use the configured default
        filter_hash: Short hash of ``filter``, bound into issued cursors
    """

    filter: Expr | None = None
    order: ODataOrderBy = field(default_factory=ODataOrderBy.empty)
    cursor: CursorV1 | None = None
    limit: int | None = None
    filter_hash: str | None = None

    @property
    def has_filter(self) -> bool:
        return self.filter is not None

    @property
    def has_cursor(self) -> bool:
        return self.cursor is not None

    def with_filter(self, expr: Expr | None) -> ODataQuery:
        return replace(self, filter=expr)

    def with_order(self, order: ODataOrderBy) -> ODataQuery:
        return replace(self, order=order)

    def with_cursor(self, cursor: CursorV1 | None) -> ODataQuery:
        return replace(self, cursor=cursor)

    def with_limit(self, limit: int | None) -> ODataQuery:
        return replace(self, limit=limit)

    def with_filter_hash(self, filter_hash: str | None) -> ODataQuery:
        return replace(self, filter_hash=filter_hash)

    def resolve_limit(self, settings: PaginationSettings | None = None) -> int:
        """Page size to use: the requested limit or the configured default."""
        if self.limit is not None:
            return self.limit
        return (settings or get_pagination_settings()).default_limit


class ODataParams(BaseModel):
    """Raw query-string parameters of a listing request."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    filter: str | None = Field(default=None, alias="$filter")
    orderby: str | None = Field(default=None, alias="$orderby")
    cursor: str | None = None
    limit: int | None = None


def _validate_limit(limit: int | None, settings: PaginationSettings) -> None:
    if limit is None:
        return
    if limit < 1 or limit > settings.max_limit:
        raise InvalidLimitError(limit, settings.max_limit)


def _params_error(exc: ValidationError, params: Mapping[str, Any], settings: PaginationSettings) -> ODataError:
    """Map the first parameter that failed validation to its OData error."""
    error = exc.errors()[0]
    param = error["loc"][0] if error["loc"] else None
    reason = error["msg"]
    logger.debug("Rejected listing parameter", extra={"param": param, "reason": reason})

    if param in ("$filter", "filter"):
        return InvalidFilterError(reason)
    if param in ("$orderby", "orderby"):
        return InvalidOrderByFieldError(reason)
    if param == "cursor":
        return InvalidCursorError()
    return InvalidLimitError(params.get("limit"), settings.max_limit)


def assemble_query(
    *,
    filter_expr: Expr | None = None,
    order: ODataOrderBy | None = None,
    cursor: CursorV1 | None = None,
    limit: int | None = None,
    expected_order: ODataOrderBy | None = None,
    settings: PaginationSettings | None = None,
) -> ODataQuery:
    """Combine parsed parameters into an :class:`ODataQuery`.

    Args:
        filter_expr: Parsed filter or ``None``.
        order: Explicitly requested ordering or ``None``.
        cursor: Decoded cursor or ``None``.
        limit: Requested page size or ``None``.
        expected_order: Ordering the caller requires a cursor to carry.
        settings: Limit overrides; defaults to the cached pagination settings.

    Raises:
        OrderWithCursorError: Both a non-empty order and a cursor were given.
        InvalidOrderByFieldError: The cursor's embedded order does not parse.
        FilterMismatchError: The filter differs from the one the cursor is bound to.
        OrderMismatchError: The cursor's order differs from ``expected_order``.
        InvalidLimitError: ``limit`` outside ``1..max_limit``.
    """
    settings = settings or get_pagination_settings()
    order = order or ODataOrderBy.empty()

    if cursor is not None and not order.is_empty:
        raise OrderWithCursorError

    filter_hash = short_filter_hash(filter_expr)

    if cursor is not None:
        order = ODataOrderBy.from_signed_tokens(cursor.s)

        if filter_expr is not None and cursor.f != filter_hash:
            logger.debug(
                "Cursor filter hash mismatch",
                extra={"cursor_filter_hash": cursor.f, "filter_hash": filter_hash},
            )
            raise FilterMismatchError(detail="$filter differs from the one the cursor was issued for")

        if expected_order is not None and not expected_order.equals_signed_tokens(cursor.s):
            logger.debug(
                "Cursor order mismatch",
                extra={"cursor_order": cursor.s, "expected_order": expected_order.to_signed_tokens()},
            )
            raise OrderMismatchError(detail="cursor order differs from the expected order")

    _validate_limit(limit, settings)

    return ODataQuery(
        filter=filter_expr,
        order=order,
        cursor=cursor,
        limit=limit,
        filter_hash=filter_hash,
    )


def parse_odata_query(
    params: Mapping[str, Any],
    *,
    expected_order: ODataOrderBy | None = None,
    settings: PaginationSettings | None = None,
) -> ODataQuery:
    """Parse raw query parameters (``$filter``, ``$orderby``, ``cursor``, ``limit``).

    The filter is parsed first so its budget errors win; the order/cursor
    conflict is detected before either of them is parsed. A parameter of the
    wrong shape, such as a repeated ``$filter`` arriving as a list, fails with
    the error of that parameter.
    """
    settings = settings or get_pagination_settings()

    try:
        raw = ODataParams.model_validate(dict(params))
    except ValidationError as exc:
        raise _params_error(exc, params, settings) from exc

    filter_expr = parse_filter(raw.filter, settings=settings)

    has_orderby = bool(raw.orderby and raw.orderby.strip())
    has_cursor = bool(raw.cursor and raw.cursor.strip())
    if has_orderby and has_cursor:
        raise OrderWithCursorError

    cursor = CursorCodec.decode(raw.cursor) if has_cursor else None
    order = None if has_cursor else parse_orderby(raw.orderby, settings=settings)

    query = assemble_query(
        filter_expr=filter_expr,
        order=order,
        cursor=cursor,
        limit=raw.limit,
        expected_order=expected_order,
        settings=settings,
    )
    logger.debug(
        "Parsed listing query",
        extra={
            "has_filter": query.has_filter,
            "has_cursor": query.has_cursor,
            "order": query.order.to_signed_tokens(),
            "limit": query.limit,
        },
    )
    return query


__all__ = ["ODataParams", "ODataQuery", "assemble_query", "parse_odata_query"]
