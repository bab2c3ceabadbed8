"""Transport-agnostic expression tree for ``$filter``.

The tree is made of frozen dataclasses so that a parsed filter can be shared
freely between threads and used as a dict key. Leaves are always
:class:`Identifier` or :class:`Literal`; everything else is a branch.

Example:
    # name eq 'alice' and age gt 30
    And(
        Compare(Identifier("name"), CompareOperator.EQ, Literal(Value.string("alice"))),
        Compare(Identifier("age"), CompareOperator.GT, Literal(Value.number(30))),
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from functools import total_ordering
from typing import Any, Union
from uuid import UUID


class CompareOperator(str, Enum):
    """Binary comparison operators supported in filters."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"


class ValueType(str, Enum):
    """Variant tag of a :class:`Value`."""

    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    UUID = "uuid"
    DATETIME = "datetime"
    DATE = "date"
    TIME = "time"
    STRING = "string"


@total_ordering
@dataclass(frozen=True)
class Value:
    """Typed literal value.

    Numbers are stored as :class:`~decimal.Decimal` so comparisons never go
    through float rounding. Date-times are always timezone-aware UTC.

    Use the named constructors rather than building instances directly:
        Value.null()
        Value.number("12.50")
        Value.datetime(datetime(2024, 1, 1, tzinfo=timezone.utc))
    """

    type: ValueType
    value: Any = None

    @classmethod
    def null(cls) -> Value:
        return cls(ValueType.NULL, None)

    @classmethod
    def bool(cls, value: bool) -> Value:
        return cls(ValueType.BOOL, bool(value))

    @classmethod
    def number(cls, value: int | float | str | Decimal) -> Value:
        if isinstance(value, float):
            # repr() keeps the shortest round-tripping form
            value = repr(value)
        return cls(ValueType.NUMBER, Decimal(value))

    @classmethod
    def uuid(cls, value: UUID | str) -> Value:
        return cls(ValueType.UUID, value if isinstance(value, UUID) else UUID(value))

    @classmethod
    def datetime(cls, value: datetime) -> Value:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return cls(ValueType.DATETIME, value.astimezone(timezone.utc))

    @classmethod
    def date(cls, value: date) -> Value:
        return cls(ValueType.DATE, value)

    @classmethod
    def time(cls, value: time) -> Value:
        return cls(ValueType.TIME, value)

    @classmethod
    def string(cls, value: str) -> Value:
        return cls(ValueType.STRING, value)

    @property
    def is_null(self) -> bool:
        return self.type is ValueType.NULL

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        if self.type is not other.type:
            msg = f"cannot order {self.type.value} against {other.type.value}"
            raise TypeError(msg)
        if self.type is ValueType.NULL:
            return False
        return self.value < other.value


@dataclass(frozen=True)
class Identifier:
    """Reference to a logical field name."""

    name: str


@dataclass(frozen=True)
class Literal:
    """Leaf node wrapping a typed :class:`Value`."""

    value: Value


@dataclass(frozen=True)
class And:
    left: Expr
    right: Expr


@dataclass(frozen=True)
class Or:
    left: Expr
    right: Expr


@dataclass(frozen=True)
class Not:
    expr: Expr


@dataclass(frozen=True)
class Compare:
    left: Expr
    op: CompareOperator
    right: Expr


@dataclass(frozen=True)
class In:
    """``expr in (item, item, ...)``."""

    expr: Expr
    items: tuple[Expr, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))


@dataclass(frozen=True)
class Function:
    """Named function call such as ``contains(name, 'al')``."""

    name: str
    args: tuple[Expr, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", tuple(self.args))


Expr = Union[And, Or, Not, Compare, In, Function, Identifier, Literal]


def children(expr: Expr) -> tuple[Expr, ...]:
    """Return the direct child nodes of an expression."""
    if isinstance(expr, Not):
        return (expr.expr,)
    if isinstance(expr, (And, Or, Compare)):
        return (expr.left, expr.right)
    if isinstance(expr, In):
        return (expr.expr, *expr.items)
    if isinstance(expr, Function):
        return expr.args
    return ()


def chain_operands(expr: And | Or) -> list[Expr]:
    """Operands of a left-nested run of one connective, in source order.

    ``a or b or c`` parses as ``Or(Or(a, b), c)``; this returns
    ``[a, b, c]`` without recursing along the chain.
    """
    kind = type(expr)
    operands: list[Expr] = []
    node: Expr = expr
    while type(node) is kind:
        operands.append(node.right)
        node = node.left
    operands.append(node)
    operands.reverse()
    return operands


def count_nodes(expr: Expr) -> int:
    """Count every node of the tree, list items and function arguments included.

    This is the complexity metric the filter budget is enforced against.
    """
    total = 0
    stack = [expr]
    while stack:
        node = stack.pop()
        if not isinstance(node, (Identifier, Literal, And, Or, Not, Compare, In, Function)):
            msg = f"not an expression node: {node!r}"
            raise TypeError(msg)
        total += 1
        stack.extend(children(node))
    return total


__all__ = [
    "And",
    "Compare",
    "CompareOperator",
    "Expr",
    "Function",
    "Identifier",
    "In",
    "Literal",
    "Not",
    "Or",
    "Value",
    "ValueType",
    "chain_operands",
    "children",
    "count_nodes",
]
