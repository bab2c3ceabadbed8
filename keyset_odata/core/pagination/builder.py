"""Turn a fetched row-set into a :class:`Page` with next/prev cursors.

The caller fetches ``limit + 1`` rows in the effective order (reversed when
paging backwards). The extra row only signals that more rows exist and is
never returned.

Usage:
    stmt = ODataQueryFilter(query, USER_FIELDS, limit=limit, tiebreaker=("id", SortDir.DESC))
    stmt = stmt.apply(select(User))
    rows = (await session.execute(stmt)).scalars().all()
    page = build_page(rows, query, USER_FIELDS, limit=limit, tiebreaker=("id", SortDir.DESC))
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from keyset_odata.core.exceptions import InvalidOrderByFieldError, ODataBuildError
from keyset_odata.core.pagination.cursor import CursorV1, TravelDirection
from keyset_odata.core.pagination.order import SortDir
from keyset_odata.core.pagination.schemas import Page, PageInfo

if TYPE_CHECKING:
    from keyset_odata.core.database.fields import FieldMap
    from keyset_odata.core.pagination.order import ODataOrderBy
    from keyset_odata.core.pagination.query import ODataQuery

logger = logging.getLogger(__name__)

Tiebreaker = tuple[str, SortDir]


def effective_order(query: ODataQuery, tiebreaker: Tiebreaker | None = None) -> ODataOrderBy:
    """Ordering a request is served in.

    A continuation request always uses the cursor's order as-is. Otherwise
    the requested order gets the tiebreaker appended, which keeps the order
    total so keyset seeks never skip or repeat rows.
    """
    if query.cursor is not None:
        return query.cursor.order
    order = query.order
    if tiebreaker is not None:
        order = order.ensure_tiebreaker(*tiebreaker)
    return order


def build_cursor_for_row(
    row: Any,
    order: ODataOrderBy,
    field_map: FieldMap,
    filter_hash: str | None = None,
    direction: TravelDirection = "fwd",
) -> CursorV1:
    """Cursor positioned at ``row``, keyed by every field of ``order``.

    Raises:
        ODataBuildError: ``order`` is empty or a key value cannot be encoded.
        InvalidOrderByFieldError: An order field is not in ``field_map``.
    """
    if order.is_empty:
        raise ODataBuildError(detail="cannot build a cursor without an order")

    keys = []
    for key in order:
        if key.field not in field_map:
            raise InvalidOrderByFieldError(key.field)
        keys.append(field_map.encode_row_key(row, key.field))

    return CursorV1(
        k=tuple(keys),
        o=order.primary_dir,
        s=order.to_signed_tokens(),
        f=filter_hash,
        d=direction,
    )


def build_page(
    rows: Iterable[Any],
    query: ODataQuery,
    field_map: FieldMap,
    *,
    limit: int,
    tiebreaker: Tiebreaker | None = None,
    to_item: Callable[[Any], Any] | None = None,
) -> Page[Any]:
    """Assemble the page for ``rows`` fetched with ``limit + 1``.

    Forward (first page or ``fwd`` cursor):
        ``next_cursor`` from the last item when an extra row was fetched;
        ``prev_cursor`` from the first item when the request was itself a
        continuation.

    Backward (``bwd`` cursor, rows arrive in reversed order):
        rows are put back into the effective order; ``prev_cursor`` from the
        first item when an extra row was fetched; ``next_cursor`` from the
        last item.

    An empty row-set yields no cursors. Every issued cursor carries the
    query's filter hash.
    """
    fetched = list(rows)
    order = effective_order(query, tiebreaker)
    backward = query.cursor is not None and query.cursor.is_backward

    has_more = len(fetched) > limit
    page_rows = fetched[:limit]
    if backward:
        page_rows.reverse()

    if not page_rows:
        return Page.empty(limit)

    def cursor_at(row: Any, direction: TravelDirection) -> str:
        return build_cursor_for_row(row, order, field_map, query.filter_hash, direction).encode()

    if backward:
        prev_cursor = cursor_at(page_rows[0], "bwd") if has_more else None
        next_cursor = cursor_at(page_rows[-1], "fwd")
    else:
        next_cursor = cursor_at(page_rows[-1], "fwd") if has_more else None
        prev_cursor = cursor_at(page_rows[0], "bwd") if query.cursor is not None else None

    items = [to_item(row) for row in page_rows] if to_item is not None else page_rows

    logger.debug(
        "Built page",
        extra={
            "items": len(items),
            "limit": limit,
            "has_next": next_cursor is not None,
            "has_prev": prev_cursor is not None,
            "backward": backward,
        },
    )
    return Page(
        items=items,
        page_info=PageInfo(next_cursor=next_cursor, prev_cursor=prev_cursor, limit=limit),
    )


__all__ = ["Tiebreaker", "build_cursor_for_row", "build_page", "effective_order"]
