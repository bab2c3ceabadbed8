"""Ordering model and its two text codecs.

Two textual forms exist for the same :class:`ODataOrderBy`:

1. ``$orderby`` query syntax, as typed by clients:
       created_at desc, id asc

2. Canonical signed tokens, embedded into cursors:
       -created_at,+id

``to_signed_tokens()`` always emits an explicit sign, so parsing its output
gives back an equal ordering. The empty ordering serializes to ``""`` which
deliberately does not parse back: a cursor must always carry an order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from keyset_odata.core.exceptions import InvalidOrderByFieldError
from keyset_odata.core.settings import get_pagination_settings

if TYPE_CHECKING:
    from collections.abc import Iterator

    from keyset_odata.core.settings import PaginationSettings

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*$")


class SortDir(str, Enum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"

    @property
    def sign(self) -> str:
        return "+" if self is SortDir.ASC else "-"

    def reversed(self) -> SortDir:
        return SortDir.DESC if self is SortDir.ASC else SortDir.ASC


@dataclass(frozen=True)
class OrderKey:
    """One sort key: a field name and its direction."""

    field: str
    dir: SortDir = SortDir.ASC

    def to_signed_token(self) -> str:
        return f"{self.dir.sign}{self.field}"


@dataclass(frozen=True)
class ODataOrderBy:
    """Ordered sequence of sort keys; the first key is the primary sort.

    Example:
        order = ODataOrderBy.from_signed_tokens("-created_at,+id")
        order.to_signed_tokens()  # "-created_at,+id"
        str(order)                # "created_at desc, id asc"
    """

    keys: tuple[OrderKey, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "keys", tuple(self.keys))

    @classmethod
    def empty(cls) -> ODataOrderBy:
        return cls(())

    @classmethod
    def of(cls, *pairs: tuple[str, SortDir]) -> ODataOrderBy:
        """Build an ordering from ``(field, dir)`` pairs."""
        return cls(tuple(OrderKey(name, direction) for name, direction in pairs))

    def __len__(self) -> int:
        return len(self.keys)

    def __iter__(self) -> Iterator[OrderKey]:
        return iter(self.keys)

    def __bool__(self) -> bool:
        return bool(self.keys)

    def __str__(self) -> str:
        if not self.keys:
            return "(none)"
        return ", ".join(f"{key.field} {key.dir.value}" for key in self.keys)

    @property
    def is_empty(self) -> bool:
        return not self.keys

    @property
    def fields(self) -> list[str]:
        return [key.field for key in self.keys]

    @property
    def primary_dir(self) -> SortDir | None:
        """Direction of the primary sort key, ``None`` when empty."""
        return self.keys[0].dir if self.keys else None

    def to_signed_tokens(self) -> str:
        """Serialize to the canonical ``-field,+field`` form."""
        return ",".join(key.to_signed_token() for key in self.keys)

    @classmethod
    def from_signed_tokens(cls, text: str) -> ODataOrderBy:
        """Parse the canonical signed-token form.

        Tokens are trimmed and empty segments skipped. A missing sign means
        ascending. Field names are case-sensitive.

        Raises:
            InvalidOrderByFieldError: A token has an unknown sign or an empty
                or malformed field name, or there are no tokens at all.
        """
        keys: list[OrderKey] = []
        for segment in text.split(","):
            token = segment.strip()
            if not token:
                continue
            if token[0] == "-":
                direction, name = SortDir.DESC, token[1:]
            elif token[0] == "+":
                direction, name = SortDir.ASC, token[1:]
            else:
                direction, name = SortDir.ASC, token
            if not _FIELD_RE.match(name):
                raise InvalidOrderByFieldError(token)
            keys.append(OrderKey(name, direction))

        if not keys:
            raise InvalidOrderByFieldError("empty order")
        return cls(tuple(keys))

    def equals_signed_tokens(self, text: str) -> bool:
        """Compare with a signed-token string through canonical forms.

        Whitespace around tokens and an implicit ``+`` are tolerated because
        the parser normalizes them; field-name case is significant.
        """
        try:
            other = ODataOrderBy.from_signed_tokens(text)
        except InvalidOrderByFieldError:
            return False
        return other.to_signed_tokens() == self.to_signed_tokens()

    def has_field(self, name: str) -> bool:
        return any(key.field == name for key in self.keys)

    def ensure_tiebreaker(self, name: str, direction: SortDir) -> ODataOrderBy:
        """Append a unique tiebreaker key unless the order already contains it.

        An existing key for the field keeps its original direction.
        """
        if self.has_field(name):
            return self
        return ODataOrderBy((*self.keys, OrderKey(name, direction)))

    def reversed(self) -> ODataOrderBy:
        """Flip every direction; used to fetch a page backwards."""
        return ODataOrderBy(tuple(OrderKey(key.field, key.dir.reversed()) for key in self.keys))


def parse_orderby(
    raw: str | None,
    *,
    settings: PaginationSettings | None = None,
) -> ODataOrderBy:
    """Parse ``$orderby`` query syntax: ``field [asc|desc], ...``.

    A blank value yields the empty ordering. The direction defaults to
    ascending.

    Raises:
        InvalidOrderByFieldError: Text too long, too many keys, or a malformed clause.
    """
    if raw is None:
        return ODataOrderBy.empty()
    text = raw.strip()
    if not text:
        return ODataOrderBy.empty()

    settings = settings or get_pagination_settings()
    if len(text) > settings.max_orderby_length:
        raise InvalidOrderByFieldError("orderby too long")

    keys: list[OrderKey] = []
    for part in text.split(","):
        clause = part.strip()
        if not clause:
            continue
        words = clause.split()
        if len(words) == 1:
            name, direction = words[0], SortDir.ASC
        elif len(words) == 2 and words[1].lower() in ("asc", "desc"):
            name, direction = words[0], SortDir(words[1].lower())
        else:
            msg = f"invalid orderby clause: {clause}"
            raise InvalidOrderByFieldError(msg)
        if not _FIELD_RE.match(name):
            raise InvalidOrderByFieldError(name)
        keys.append(OrderKey(name, direction))

    if len(keys) > settings.max_order_fields:
        raise InvalidOrderByFieldError("too many order fields")
    return ODataOrderBy(tuple(keys))


__all__ = [
    "ODataOrderBy",
    "OrderKey",
    "SortDir",
    "parse_orderby",
]
