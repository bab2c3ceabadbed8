"""Statement filters applying a parsed listing query to a SQLAlchemy ``Select``.

These filters work directly with SQLAlchemy statements without hiding the
query. They are utility helpers, not an abstraction layer: nothing here
executes anything.

Usage:
    from sqlalchemy import select

    stmt = select(User)
    stmt = ODataFilter(query.filter, USER_FIELDS).apply(stmt)
    stmt = ODataOrder(order, USER_FIELDS).apply(stmt)

    # or everything at once: filter -> seek -> order -> LIMIT limit + 1
    stmt = ODataQueryFilter(query, USER_FIELDS, limit=25, tiebreaker=("id", SortDir.ASC)).apply(select(User))
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from sqlalchemy import Select

from keyset_odata.core.database.compiler import build_cursor_predicate, compile_filter
from keyset_odata.core.exceptions import InvalidOrderByFieldError
from keyset_odata.core.pagination.builder import effective_order
from keyset_odata.core.pagination.order import SortDir

if TYPE_CHECKING:
    from keyset_odata.core.database.fields import FieldMap
    from keyset_odata.core.pagination.ast import Expr
    from keyset_odata.core.pagination.builder import Tiebreaker
    from keyset_odata.core.pagination.cursor import CursorV1
    from keyset_odata.core.pagination.order import ODataOrderBy
    from keyset_odata.core.pagination.query import ODataQuery


class StatementFilter(ABC):
    """Base class for statement filters.

    All filters implement `apply()` which modifies a SQLAlchemy statement.
    """

    @abstractmethod
    def apply(self, statement: Select[Any]) -> Select[Any]:
        """Apply filter to statement.

        Args:
            statement: SQLAlchemy select statement

        Returns:
            Modified select statement
        """
        ...


class ODataFilter(StatementFilter):
    """WHERE clause compiled from a ``$filter`` tree.

    Example:
        stmt = ODataFilter(parse_filter("age ge 18"), USER_FIELDS).apply(stmt)
        # WHERE users.age >= 18
    """

    def __init__(self, expr: Expr | None, field_map: FieldMap) -> None:
        self.expr = expr
        self.field_map = field_map

    def apply(self, statement: Select[Any]) -> Select[Any]:
        if self.expr is None:
            return statement
        return statement.where(compile_filter(self.expr, self.field_map))


class ODataOrder(StatementFilter):
    """ORDER BY clause for an :class:`ODataOrderBy`.

    Example:
        stmt = ODataOrder(ODataOrderBy.from_signed_tokens("-created_at,+id"), USER_FIELDS).apply(stmt)
        # ORDER BY users.created_at DESC, users.id ASC
    """

    def __init__(self, order: ODataOrderBy, field_map: FieldMap, *, reverse: bool = False) -> None:
        """Initialize ordering filter.

        Args:
            order: Sort keys, primary first
            field_map: Whitelist the sort fields must belong to
            reverse: Flip every direction, used to fetch a page backwards
        """
        self.order = order.reversed() if reverse else order
        self.field_map = field_map

    def apply(self, statement: Select[Any]) -> Select[Any]:
        for key in self.order:
            field = self.field_map.get(key.field)
            if field is None:
                raise InvalidOrderByFieldError(key.field)
            if key.dir is SortDir.DESC:
                statement = statement.order_by(field.column.desc())
            else:
                statement = statement.order_by(field.column.asc())
        return statement


class CursorSeekFilter(StatementFilter):
    """Seek past a cursor instead of using OFFSET.

    For ORDER BY created_at DESC, id ASC with a cursor at (t1, id1):
        WHERE (created_at < t1) OR (created_at = t1 AND id > id1)

    A backward cursor flips the comparisons to seek to the rows before it.
    """

    def __init__(self, cursor: CursorV1 | None, order: ODataOrderBy, field_map: FieldMap) -> None:
        self.cursor = cursor
        self.order = order
        self.field_map = field_map

    def apply(self, statement: Select[Any]) -> Select[Any]:
        if self.cursor is None:
            return statement
        return statement.where(build_cursor_predicate(self.cursor, self.order, self.field_map))


class ODataQueryFilter(StatementFilter):
    """Apply a whole :class:`ODataQuery`: filter, seek, order and ``LIMIT limit + 1``.

    The extra row lets :func:`~keyset_odata.core.pagination.builder.build_page`
    tell whether another page exists. For a backward cursor the statement is
    ordered in reverse; ``build_page`` restores the order.

    Attributes:
        query: Validated listing query
        field_map: Field whitelist
        limit: Page size
        tiebreaker: Unique ``(field, dir)`` appended to a client order
    """

    def __init__(
        self,
        query: ODataQuery,
        field_map: FieldMap,
        *,
        limit: int,
        tiebreaker: Tiebreaker | None = None,
    ) -> None:
        self.query = query
        self.field_map = field_map
        self.limit = limit
        self.tiebreaker = tiebreaker
        self.order = effective_order(query, tiebreaker)

    @property
    def backward(self) -> bool:
        return self.query.cursor is not None and self.query.cursor.is_backward

    def apply(self, statement: Select[Any]) -> Select[Any]:
        statement = ODataFilter(self.query.filter, self.field_map).apply(statement)
        statement = CursorSeekFilter(self.query.cursor, self.order, self.field_map).apply(statement)
        statement = ODataOrder(self.order, self.field_map, reverse=self.backward).apply(statement)
        return statement.limit(self.limit + 1)


__all__ = [
    "CursorSeekFilter",
    "ODataFilter",
    "ODataOrder",
    "ODataQueryFilter",
    "StatementFilter",
]
