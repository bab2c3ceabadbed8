"""Parser for the ``$filter`` expression language.

Supports a pragmatic OData subset:

- comparisons: ``eq ne gt ge lt le``
- boolean connectives: ``and or not`` (``and`` binds tighter than ``or``)
- membership: ``field in ('a', 'b')``
- function calls: ``contains(name, 'al')``
- typed literals: ``null``, ``true``/``false``, numbers, ``'strings'`` (a
  doubled quote escapes a quote), UUIDs, dates (``2024-01-31``), times
  (``13:45:00``) and RFC 3339 date-times (``2024-01-31T13:45:00Z``)

Usage:
    from keyset_odata.core.pagination.filter_parser import parse_filter

    expr = parse_filter("status eq 'active' and created_at gt 2024-01-01T00:00:00Z")

Length and node-count budgets are enforced here. Nesting of parentheses,
``not`` and argument lists is bounded while parsing so that neither the
parser nor any downstream recursion can be pushed past sane bounds.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from keyset_odata.core.exceptions import (
    FilterTooComplexError,
    FilterTooLongError,
    InvalidFilterError,
)
from keyset_odata.core.pagination.ast import (
    And,
    Compare,
    CompareOperator,
    Expr,
    Function,
    Identifier,
    In,
    Literal,
    Not,
    Or,
    Value,
    count_nodes,
)
from keyset_odata.core.settings import get_pagination_settings

if TYPE_CHECKING:
    from keyset_odata.core.settings import PaginationSettings

logger = logging.getLogger(__name__)

# Order matters: the more specific literal shapes must be tried before
# numbers and identifiers.
_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<lparen>\()
    |(?P<rparen>\))
    |(?P<comma>,)
    |(?P<string>'(?:[^']|'')*')
    |(?P<datetime>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:[Zz]|[+-]\d{2}:\d{2}))
    |(?P<uuid>[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12})(?![\w-])
    |(?P<date>\d{4}-\d{2}-\d{2})(?![\w:-])
    |(?P<time>\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)(?![\w:])
    |(?P<number>[+-]?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)(?![\w.])
    |(?P<ident>[A-Za-z_][A-Za-z0-9_]*(?:[./][A-Za-z_][A-Za-z0-9_]*)*)
    """,
    re.VERBOSE,
)

_COMPARE_OPS = {op.value: op for op in CompareOperator}
_KEYWORDS = {"and", "or", "not", "in", "null", "true", "false", *_COMPARE_OPS}


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int

    @property
    def keyword(self) -> str | None:
        if self.kind == "ident" and self.text.lower() in _KEYWORDS:
            return self.text.lower()
        return None


def tokenize(text: str) -> list[Token]:
    """Split filter text into tokens, dropping whitespace."""
    tokens: list[Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            msg = f"unexpected character {text[pos]!r} at position {pos}"
            raise InvalidFilterError(msg)
        kind = match.lastgroup
        if kind != "ws":
            tokens.append(Token(kind, match.group(), pos))
        pos = match.end()
    return tokens


class FilterParser:
    """Recursive-descent parser producing :mod:`~keyset_odata.core.pagination.ast` nodes.

    Binary connectives are left-associative, so ``a and b and c`` parses as
    ``And(And(a, b), c)``. A comparison is not chainable.
    """

    def __init__(self, text: str, *, max_depth: int) -> None:
        self.text = text
        self.tokens = tokenize(text)
        self.index = 0
        self.max_depth = max_depth
        self._depth = 0

    # -- token helpers -----------------------------------------------------

    def _peek(self) -> Token | None:
        if self.index < len(self.tokens):
            return self.tokens[self.index]
        return None

    def _advance(self) -> Token:
        token = self._peek()
        if token is None:
            raise InvalidFilterError("unexpected end of input")
        self.index += 1
        return token

    def _at_keyword(self, *keywords: str) -> bool:
        token = self._peek()
        return token is not None and token.keyword in keywords

    def _at(self, kind: str) -> bool:
        token = self._peek()
        return token is not None and token.kind == kind

    def _expect(self, kind: str, what: str) -> Token:
        token = self._peek()
        if token is None:
            msg = f"expected {what}, got end of input"
            raise InvalidFilterError(msg)
        if token.kind != kind:
            msg = f"expected {what}, got {token.text!r} at position {token.pos}"
            raise InvalidFilterError(msg)
        self.index += 1
        return token

    def _enter(self) -> None:
        self._depth += 1
        if self._depth > self.max_depth:
            raise FilterTooComplexError("depth", self._depth, self.max_depth)

    def _leave(self) -> None:
        self._depth -= 1

    # -- grammar -----------------------------------------------------------

    def parse(self) -> Expr:
        if not self.tokens:
            raise InvalidFilterError("empty expression")
        expr = self._parse_or()
        token = self._peek()
        if token is not None:
            msg = f"unexpected token {token.text!r} at position {token.pos}"
            raise InvalidFilterError(msg)
        return expr

    def _parse_or(self) -> Expr:
        left = self._parse_and()
        while self._at_keyword("or"):
            self._advance()
            left = Or(left, self._parse_and())
        return left

    def _parse_and(self) -> Expr:
        left = self._parse_unary()
        while self._at_keyword("and"):
            self._advance()
            left = And(left, self._parse_unary())
        return left

    def _parse_unary(self) -> Expr:
        if self._at_keyword("not"):
            self._advance()
            self._enter()
            try:
                return Not(self._parse_unary())
            finally:
                self._leave()
        return self._parse_compare()

    def _parse_compare(self) -> Expr:
        left = self._parse_primary()
        token = self._peek()
        if token is None:
            return left
        keyword = token.keyword
        if keyword in _COMPARE_OPS:
            self._advance()
            return Compare(left, _COMPARE_OPS[keyword], self._parse_primary())
        if keyword == "in":
            self._advance()
            return In(left, tuple(self._parse_arguments("'(' after 'in'")))
        return left

    def _parse_arguments(self, what: str) -> list[Expr]:
        self._expect("lparen", what)
        self._enter()
        try:
            items: list[Expr] = []
            if self._at("rparen"):
                self._advance()
                return items
            while True:
                items.append(self._parse_or())
                if self._at("comma"):
                    self._advance()
                    continue
                self._expect("rparen", "',' or ')'")
                return items
        finally:
            self._leave()

    def _parse_primary(self) -> Expr:
        token = self._advance()

        if token.kind == "lparen":
            self._enter()
            try:
                expr = self._parse_or()
            finally:
                self._leave()
            self._expect("rparen", "')'")
            return expr

        if token.kind == "ident":
            keyword = token.keyword
            if keyword == "null":
                return Literal(Value.null())
            if keyword in ("true", "false"):
                return Literal(Value.bool(keyword == "true"))
            if keyword is not None:
                msg = f"unexpected keyword {token.text!r} at position {token.pos}"
                raise InvalidFilterError(msg)
            if self._at("lparen"):
                args = self._parse_arguments("'('")
                return Function(token.text, tuple(args))
            return Identifier(token.text)

        literal = _parse_literal(token)
        if literal is None:
            msg = f"unexpected token {token.text!r} at position {token.pos}"
            raise InvalidFilterError(msg)
        return Literal(literal)


def _parse_literal(token: Token) -> Value | None:
    text = token.text
    try:
        if token.kind == "string":
            return Value.string(text[1:-1].replace("''", "'"))
        if token.kind == "number":
            return Value.number(Decimal(text))
        if token.kind == "uuid":
            return Value.uuid(text)
        if token.kind == "datetime":
            return Value.datetime(_parse_datetime(text))
        if token.kind == "date":
            return Value.date(date.fromisoformat(text))
        if token.kind == "time":
            return Value.time(time.fromisoformat(_trim_fraction(text)))
    except (ValueError, InvalidOperation) as exc:
        msg = f"invalid {token.kind} literal {text!r} at position {token.pos}"
        raise InvalidFilterError(msg) from exc
    return None


def _trim_fraction(text: str) -> str:
    """Pad or cut fractional seconds to the six digits ``fromisoformat`` accepts."""
    head, dot, rest = text.partition(".")
    if not dot:
        return text
    digits = re.match(r"\d+", rest)
    fraction = digits.group() if digits else ""
    tail = rest[len(fraction):]
    return f"{head}.{fraction[:6].ljust(6, '0')}{tail}"


def _parse_datetime(text: str) -> datetime:
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(_trim_fraction(text))


def parse_filter(
    raw: str | None,
    *,
    settings: PaginationSettings | None = None,
) -> Expr | None:
    """Parse raw filter text into an expression tree.

    Args:
        raw: Filter text as received. ``None`` or blank means "no filter".
        settings: Budget overrides; defaults to the cached pagination settings.

    Returns:
        The parsed expression, or ``None`` when there is no filter.

    Raises:
        FilterTooLongError: Text longer than ``max_filter_length`` bytes.
        FilterTooComplexError: Node count above the configured ceiling, or
            parentheses, ``not`` or argument lists nested past ``max_filter_depth``.
        InvalidFilterError: Syntactically malformed input.
    """
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None

    settings = settings or get_pagination_settings()

    length = len(text.encode("utf-8"))
    if length > settings.max_filter_length:
        logger.debug(
            "Rejected $filter over length budget",
            extra={"filter_length": length, "max_length": settings.max_filter_length},
        )
        raise FilterTooLongError(length, settings.max_filter_length)

    expr = FilterParser(text, max_depth=settings.max_filter_depth).parse()

    nodes = count_nodes(expr)
    if nodes > settings.max_filter_nodes:
        logger.debug(
            "Rejected $filter over complexity budget",
            extra={"filter_nodes": nodes, "max_nodes": settings.max_filter_nodes},
        )
        raise FilterTooComplexError("node count", nodes, settings.max_filter_nodes)

    logger.debug("Parsed $filter", extra={"filter_length": length, "filter_nodes": nodes})
    return expr


__all__ = ["FilterParser", "Token", "parse_filter", "tokenize"]
