"""Filter normalization and short hashing for cursor consistency checks.

A cursor remembers a short hash of the filter it was issued under. On the
next request the current filter is hashed again and compared; a different
hash means the client changed the filter mid-pagination.

Only the first 8 bytes of the SHA-256 digest are kept. The hash is a
consistency hint, not a security boundary, and a collision merely lets a
changed filter go unnoticed.
"""

from __future__ import annotations

import hashlib
from decimal import Decimal

from keyset_odata.core.pagination.ast import (
    And,
    Compare,
    Expr,
    Function,
    Identifier,
    In,
    Literal,
    Not,
    Or,
    Value,
    ValueType,
    chain_operands,
)

FILTER_HASH_BYTES = 8


def normalize_number(number: Decimal) -> str:
    """Plain decimal text without exponent or trailing zeros (``1.50`` -> ``1.5``)."""
    if number == 0:
        return "0"
    return format(number.normalize(), "f")


def _normalize_value(value: Value) -> str:
    kind = value.type
    if kind is ValueType.NULL:
        return "NULL"
    if kind is ValueType.BOOL:
        return f"BOOL({'true' if value.value else 'false'})"
    if kind is ValueType.NUMBER:
        return f"NUM({normalize_number(value.value)})"
    if kind is ValueType.UUID:
        return f"UUID({str(value.value).lower()})"
    if kind is ValueType.DATETIME:
        return f"DATETIME({value.value.isoformat()})"
    if kind is ValueType.DATE:
        return f"DATE({value.value.strftime('%Y-%m-%d')})"
    if kind is ValueType.TIME:
        return f"TIME({value.value.isoformat()})"
    return f"STR({value.value})"


def normalize_filter_for_hash(expr: Expr) -> str:
    """Produce a stable text form of a filter tree.

    Connectives and operators become uppercase tags, identifiers and
    function names are lower-cased, string literals are embedded verbatim.
    Filters that differ only in identifier case normalize identically.

    Example:
        normalize_filter_for_hash(parse_filter("Name eq 'x'"))
        # "CMP(ID(name),EQ,STR(x))"
    """
    if isinstance(expr, (And, Or)):
        return _normalize_chain(expr)
    if isinstance(expr, Not):
        return f"NOT({normalize_filter_for_hash(expr.expr)})"
    if isinstance(expr, Compare):
        return (
            f"CMP({normalize_filter_for_hash(expr.left)},"
            f"{expr.op.value.upper()},"
            f"{normalize_filter_for_hash(expr.right)})"
        )
    if isinstance(expr, In):
        items = ",".join(normalize_filter_for_hash(item) for item in expr.items)
        return f"IN({normalize_filter_for_hash(expr.expr)},{items})"
    if isinstance(expr, Function):
        args = ",".join(normalize_filter_for_hash(arg) for arg in expr.args)
        return f"FN({expr.name.lower()},{args})"
    if isinstance(expr, Identifier):
        return f"ID({expr.name.lower()})"
    if isinstance(expr, Literal):
        return _normalize_value(expr.value)
    msg = f"not an expression node: {expr!r}"
    raise TypeError(msg)


def _normalize_chain(expr: And | Or) -> str:
    # Renders Or(Or(a, b), c) as "OR(OR(a,b),c)" without recursing down the chain.
    tag = "AND" if isinstance(expr, And) else "OR"
    first, *rest = chain_operands(expr)
    parts = [f"{tag}(" * len(rest), normalize_filter_for_hash(first)]
    parts.extend(f",{normalize_filter_for_hash(operand)})" for operand in rest)
    return "".join(parts)


def short_filter_hash(expr: Expr | None) -> str | None:
    """Return a 16-character hex hash of the filter, or ``None`` without one."""
    if expr is None:
        return None
    digest = hashlib.sha256(normalize_filter_for_hash(expr).encode("utf-8")).digest()
    return digest[:FILTER_HASH_BYTES].hex()


__all__ = [
    "FILTER_HASH_BYTES",
    "normalize_filter_for_hash",
    "normalize_number",
    "short_filter_hash",
]
