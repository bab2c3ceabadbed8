"""Compile ``$filter`` trees and cursors into storage conditions.

Parsing happens elsewhere; this module only consumes
:mod:`~keyset_odata.core.pagination.ast` nodes and a :class:`FieldMap`.
Every identifier must resolve through the map and every literal must fit
the field's kind, otherwise compilation fails as a whole.

The output is produced through a :class:`ConditionBuilder`, so another
backend only needs its own builder. :class:`SQLAlchemyConditionBuilder` is
the default.

Usage:
    from sqlalchemy import select

    expr = parse_filter("email eq 'a@b.c' or contains(name, 'al')")
    stmt = select(User).where(compile_filter(expr, USER_FIELDS))
"""

from __future__ import annotations

import logging
import operator
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, false, not_, or_

from keyset_odata.core.exceptions import (
    BareIdentifierError,
    BareLiteralError,
    InvalidCursorError,
    InvalidOrderByFieldError,
    NonLiteralInListError,
    ODataBuildError,
    TypeMismatchError,
    UnsupportedFunctionError,
    UnsupportedOperatorError,
)
from keyset_odata.core.database.fields import FieldKind, coerce, parse_cursor_value
from keyset_odata.core.pagination.ast import (
    And,
    Compare,
    CompareOperator,
    Function,
    Identifier,
    In,
    Literal,
    Not,
    Or,
    ValueType,
    chain_operands,
)
from keyset_odata.core.pagination.order import SortDir

if TYPE_CHECKING:
    from sqlalchemy.sql.elements import ColumnElement

    from keyset_odata.core.database.fields import Field, FieldMap
    from keyset_odata.core.pagination.ast import Expr
    from keyset_odata.core.pagination.cursor import CursorV1
    from keyset_odata.core.pagination.order import ODataOrderBy

logger = logging.getLogger(__name__)

LIKE_ESCAPE = "\\"


def like_escape(text: str) -> str:
    """Escape ``%``, ``_`` and the escape character itself for ``LIKE``."""
    return "".join(f"{LIKE_ESCAPE}{ch}" if ch in "%_\\" else ch for ch in text)


def like_contains(text: str) -> str:
    return f"%{like_escape(text)}%"


def like_starts(text: str) -> str:
    return f"{like_escape(text)}%"


def like_ends(text: str) -> str:
    return f"%{like_escape(text)}"


_LIKE_FUNCTIONS: dict[str, Callable[[str], str]] = {
    "contains": like_contains,
    "startswith": like_starts,
    "endswith": like_ends,
}


class ConditionBuilder(ABC):
    """Backend-specific constructor of boolean conditions.

    The compiler never touches backend types directly; it only calls these
    methods with columns taken from the :class:`FieldMap` and already
    coerced Python values.
    """

    @abstractmethod
    def and_(self, *conditions: Any) -> Any: ...

    @abstractmethod
    def or_(self, *conditions: Any) -> Any: ...

    @abstractmethod
    def not_(self, condition: Any) -> Any: ...

    @abstractmethod
    def compare(self, column: Any, op: CompareOperator, value: Any) -> Any: ...

    @abstractmethod
    def is_null(self, column: Any) -> Any: ...

    @abstractmethod
    def is_not_null(self, column: Any) -> Any: ...

    @abstractmethod
    def in_(self, column: Any, values: Sequence[Any]) -> Any: ...

    @abstractmethod
    def always_false(self) -> Any: ...

    @abstractmethod
    def like(self, column: Any, pattern: str) -> Any:
        """``column LIKE pattern`` with ``\\`` as the escape character."""


class SQLAlchemyConditionBuilder(ConditionBuilder):
    """Builds SQLAlchemy ``ColumnElement[bool]`` expressions."""

    _OPERATORS: dict[CompareOperator, Callable[[Any, Any], Any]] = {
        CompareOperator.EQ: operator.eq,
        CompareOperator.NE: operator.ne,
        CompareOperator.GT: operator.gt,
        CompareOperator.GE: operator.ge,
        CompareOperator.LT: operator.lt,
        CompareOperator.LE: operator.le,
    }

    def and_(self, *conditions: ColumnElement[bool]) -> ColumnElement[bool]:
        return and_(*conditions)

    def or_(self, *conditions: ColumnElement[bool]) -> ColumnElement[bool]:
        return or_(*conditions)

    def not_(self, condition: ColumnElement[bool]) -> ColumnElement[bool]:
        return not_(condition)

    def compare(self, column: ColumnElement[Any], op: CompareOperator, value: Any) -> ColumnElement[bool]:
        return self._OPERATORS[op](column, value)

    def is_null(self, column: ColumnElement[Any]) -> ColumnElement[bool]:
        return column.is_(None)

    def is_not_null(self, column: ColumnElement[Any]) -> ColumnElement[bool]:
        return column.is_not(None)

    def in_(self, column: ColumnElement[Any], values: Sequence[Any]) -> ColumnElement[bool]:
        return column.in_(list(values))

    def always_false(self) -> ColumnElement[bool]:
        return false()

    def like(self, column: ColumnElement[Any], pattern: str) -> ColumnElement[bool]:
        return column.like(pattern, escape=LIKE_ESCAPE)


class FilterCompiler:
    """Walks an expression tree and emits one condition.

    Args:
        field_map: Whitelist every identifier is resolved against.
        builder: Condition constructor; defaults to SQLAlchemy.
    """

    def __init__(self, field_map: FieldMap, builder: ConditionBuilder | None = None) -> None:
        self.field_map = field_map
        self.builder = builder or SQLAlchemyConditionBuilder()

    def compile(self, expr: Expr) -> Any:
        if isinstance(expr, And):
            return self.builder.and_(*(self.compile(operand) for operand in chain_operands(expr)))
        if isinstance(expr, Or):
            return self.builder.or_(*(self.compile(operand) for operand in chain_operands(expr)))
        if isinstance(expr, Not):
            return self.builder.not_(self.compile(expr.expr))
        if isinstance(expr, Compare):
            return self._compile_compare(expr)
        if isinstance(expr, In):
            return self._compile_in(expr)
        if isinstance(expr, Function):
            return self._compile_function(expr)
        if isinstance(expr, Identifier):
            raise BareIdentifierError(expr.name)
        if isinstance(expr, Literal):
            raise BareLiteralError
        msg = f"not an expression node: {expr!r}"
        raise TypeError(msg)

    def _compile_compare(self, expr: Compare) -> Any:
        left, right = expr.left, expr.right
        if isinstance(left, Identifier) and isinstance(right, Identifier):
            raise ODataBuildError(detail="field-to-field comparison is not supported")
        if not (isinstance(left, Identifier) and isinstance(right, Literal)):
            raise ODataBuildError(detail="unsupported comparison form")

        field = self.field_map.require(left.name)
        value = right.value

        if value.is_null:
            if expr.op is CompareOperator.EQ:
                return self.builder.is_null(field.column)
            if expr.op is CompareOperator.NE:
                return self.builder.is_not_null(field.column)
            raise UnsupportedOperatorError(expr.op.value)

        return self.builder.compare(field.column, expr.op, coerce(field.kind, value))

    def _compile_in(self, expr: In) -> Any:
        if not isinstance(expr.expr, Identifier):
            raise ODataBuildError(detail="left side of IN must be a field")
        field = self.field_map.require(expr.expr.name)

        values = []
        for item in expr.items:
            if not isinstance(item, Literal):
                raise NonLiteralInListError
            values.append(coerce(field.kind, item.value))

        if not values:
            return self.builder.always_false()
        return self.builder.in_(field.column, values)

    def _compile_function(self, expr: Function) -> Any:
        pattern_for = _LIKE_FUNCTIONS.get(expr.name.lower())
        args = expr.args
        if (
            pattern_for is None
            or len(args) != 2
            or not isinstance(args[0], Identifier)
            or not isinstance(args[1], Literal)
            or args[1].value.type is not ValueType.STRING
        ):
            raise UnsupportedFunctionError(expr.name)

        field = self.field_map.require(args[0].name)
        if field.kind is not FieldKind.STRING:
            raise TypeMismatchError(FieldKind.STRING.value, "non-string field")
        return self.builder.like(field.column, pattern_for(args[1].value.value))


def compile_filter(
    expr: Expr,
    field_map: FieldMap,
    builder: ConditionBuilder | None = None,
) -> Any:
    """Compile a filter tree into a storage condition.

    Raises:
        UnknownFieldError: An identifier is not in ``field_map``.
        TypeMismatchError: A literal does not fit its field's kind.
        UnsupportedOperatorError: An ordering comparison against ``null``.
        UnsupportedFunctionError: Unknown function or wrong argument shape.
        NonLiteralInListError: A non-literal inside ``in (...)``.
        BareIdentifierError: An identifier in boolean position.
        BareLiteralError: A literal in boolean position.
        ODataBuildError: Any other unsupported shape.
    """
    try:
        return FilterCompiler(field_map, builder).compile(expr)
    except ODataBuildError as exc:
        logger.debug(
            "Filter compilation failed",
            extra={"code": exc.code, "detail": exc.detail, "entity": repr(field_map.entity)},
        )
        raise


def _resolve_order_field(field_map: FieldMap, name: str) -> Field:
    field = field_map.get(name)
    if field is None:
        raise InvalidOrderByFieldError(name)
    return field


def build_cursor_predicate(
    cursor: CursorV1,
    order: ODataOrderBy,
    field_map: FieldMap,
    builder: ConditionBuilder | None = None,
) -> Any:
    """Seek condition selecting the rows strictly after (or before) the cursor.

    For keys ``k0..kn`` with cursor values ``v0..vn``:

        (k0 > v0) OR (k0 = v0 AND k1 > v1) OR ... (k0 = v0 AND ... AND kn > vn)

    ``<`` replaces ``>`` on descending keys; a backward cursor flips every
    comparison.

    Raises:
        InvalidCursorError: Key count differs from ``order`` or a key does not
            parse as its field's kind.
        InvalidOrderByFieldError: An order field is not in ``field_map``.
    """
    if len(cursor.k) != len(order):
        raise InvalidCursorError("invalid cursor: keys count mismatch with order fields")

    builder = builder or SQLAlchemyConditionBuilder()

    resolved = []
    for key, raw in zip(order, cursor.k):
        field = _resolve_order_field(field_map, key.field)
        direction = key.dir.reversed() if cursor.is_backward else key.dir
        resolved.append((field, parse_cursor_value(field.kind, raw), direction))

    branches = []
    for i, (field, value, direction) in enumerate(resolved):
        terms = [
            builder.compare(prev.column, CompareOperator.EQ, prev_value)
            for prev, prev_value, _ in resolved[:i]
        ]
        op = CompareOperator.GT if direction is SortDir.ASC else CompareOperator.LT
        terms.append(builder.compare(field.column, op, value))
        branches.append(builder.and_(*terms) if len(terms) > 1 else terms[0])

    return builder.or_(*branches) if len(branches) > 1 else branches[0]


__all__ = [
    "LIKE_ESCAPE",
    "ConditionBuilder",
    "FilterCompiler",
    "SQLAlchemyConditionBuilder",
    "build_cursor_predicate",
    "compile_filter",
    "like_contains",
    "like_ends",
    "like_escape",
    "like_starts",
]
