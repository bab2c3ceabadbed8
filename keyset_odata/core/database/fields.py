"""Field schema: the whitelist of filterable and sortable fields.

A :class:`FieldMap` maps logical API field names to SQLAlchemy columns and
a :class:`FieldKind`. The kind decides how filter literals are coerced into
column values and how sort-key values are written into, and read back from,
cursors.

Names are matched case-insensitively. The map is immutable; ``insert``
returns a new map, so one instance can be built at import time and shared.

Usage:
    USER_FIELDS = (
        FieldMap(User)
        .insert("id", User.id, FieldKind.I64)
        .insert("email", User.email, FieldKind.STRING)
        .insert("created_at", User.created_at, FieldKind.DATETIME_UTC)
    )
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any
from uuid import UUID

from keyset_odata.core.exceptions import (
    InvalidCursorError,
    ODataBuildError,
    TypeMismatchError,
    UnknownFieldError,
)
from keyset_odata.core.pagination.ast import Value, ValueType

if TYPE_CHECKING:
    from sqlalchemy.sql.elements import ColumnElement

_I64_MIN = -(2**63)
_I64_MAX = 2**63 - 1
_INT_RE = re.compile(r"^-?\d+$")

CursorExtractor = Callable[[Any], Any]


class FieldKind(str, Enum):
    """Storage kind of a whitelisted field."""

    STRING = "string"
    I64 = "i64"
    F64 = "f64"
    BOOL = "bool"
    UUID = "uuid"
    DATETIME_UTC = "datetime_utc"
    DATE = "date"
    TIME = "time"
    DECIMAL = "decimal"


@dataclass(frozen=True, eq=False)
class Field:
    """One whitelisted field.

    Attributes:
        name: Logical (API) name, lower-cased
        column: SQLAlchemy column or mapped attribute
        kind: Storage kind
        extractor: Reads the sort-key value from a result row; when ``None``
            the column's attribute key is read from the row
    """

    name: str
    column: ColumnElement[Any]
    kind: FieldKind
    extractor: CursorExtractor | None = None

    @property
    def attribute(self) -> str:
        return getattr(self.column, "key", None) or self.name

    def extract(self, row: Any) -> Any:
        """Read this field's value from an ORM instance, a ``Row`` or a mapping."""
        if self.extractor is not None:
            return self.extractor(row)
        if isinstance(row, Mapping):
            return row[self.attribute]
        mapping = getattr(row, "_mapping", None)
        if mapping is not None and self.attribute in mapping:
            return mapping[self.attribute]
        return getattr(row, self.attribute)


class FieldMap:
    """Immutable, case-insensitive map of logical field names to :class:`Field`.

    Args:
        entity: Opaque identifier of the entity the fields belong to, usually
            the ORM class; only used for diagnostics.
    """

    def __init__(self, entity: Any = None, fields: Mapping[str, Field] | None = None) -> None:
        self.entity = entity
        self._fields: Mapping[str, Field] = MappingProxyType(dict(fields or {}))

    def insert(
        self,
        name: str,
        column: ColumnElement[Any],
        kind: FieldKind,
        *,
        extractor: CursorExtractor | None = None,
    ) -> FieldMap:
        """Return a new map with ``name`` added (or replaced)."""
        key = name.lower()
        fields = dict(self._fields)
        fields[key] = Field(key, column, kind, extractor)
        return FieldMap(self.entity, fields)

    def get(self, name: str) -> Field | None:
        return self._fields.get(name.lower())

    def require(self, name: str) -> Field:
        """Look up a field, raising :class:`UnknownFieldError` when absent."""
        field = self.get(name)
        if field is None:
            raise UnknownFieldError(name)
        return field

    @property
    def fields(self) -> Mapping[str, Field]:
        return self._fields

    def encode_row_key(self, row: Any, name: str) -> str:
        """Stringify ``row``'s value of field ``name`` for a cursor."""
        field = self.require(name)
        return encode_cursor_value(field.kind, field.extract(row))

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._fields

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        entity = getattr(self.entity, "__name__", self.entity)
        return f"FieldMap(entity={entity!r}, fields={sorted(self._fields)!r})"


# ---------------------------------------------------------------------------
# Literal coercion
# ---------------------------------------------------------------------------


def coerce(kind: FieldKind, value: Value) -> Any:
    """Convert a filter literal into the Python value bound for the column.

    Raises:
        TypeMismatchError: The literal's type does not fit the field kind.
    """
    vtype = value.type
    raw = value.value

    if kind is FieldKind.STRING and vtype is ValueType.STRING:
        return raw
    if vtype is ValueType.NUMBER:
        if kind is FieldKind.I64:
            if raw != raw.to_integral_value() or not _I64_MIN <= raw <= _I64_MAX:
                raise TypeMismatchError(kind.value, "number")
            return int(raw)
        if kind is FieldKind.F64:
            return float(raw)
        if kind is FieldKind.DECIMAL:
            return raw
    if kind is FieldKind.BOOL and vtype is ValueType.BOOL:
        return raw
    if kind is FieldKind.UUID and vtype is ValueType.UUID:
        return raw
    if kind is FieldKind.DATETIME_UTC and vtype is ValueType.DATETIME:
        return raw
    if kind is FieldKind.DATE and vtype is ValueType.DATE:
        return raw
    if kind is FieldKind.TIME and vtype is ValueType.TIME:
        return raw

    raise TypeMismatchError(kind.value, vtype.value)


# ---------------------------------------------------------------------------
# Cursor key values
# ---------------------------------------------------------------------------


def encode_cursor_value(kind: FieldKind, value: Any) -> str:
    """Stringify a sort-key value so :func:`parse_cursor_value` reads it back.

    Raises:
        ODataBuildError: ``None`` or a value whose type does not fit ``kind``.
    """
    if value is None:
        raise ODataBuildError(detail=f"cursor key of kind {kind.value} is null")

    if kind is FieldKind.STRING and isinstance(value, str):
        return value
    if kind is FieldKind.I64 and isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if kind is FieldKind.F64 and isinstance(value, (int, float)) and not isinstance(value, bool):
        return repr(float(value))
    if kind is FieldKind.BOOL and isinstance(value, bool):
        return "true" if value else "false"
    if kind is FieldKind.UUID and isinstance(value, (UUID, str)):
        return str(value if isinstance(value, UUID) else UUID(value))
    if kind is FieldKind.DATETIME_UTC and isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if kind is FieldKind.DATE and isinstance(value, date) and not isinstance(value, datetime):
        return value.isoformat()
    if kind is FieldKind.TIME and isinstance(value, time):
        return value.isoformat()
    if kind is FieldKind.DECIMAL and isinstance(value, (Decimal, int)) and not isinstance(value, bool):
        return str(value)

    raise ODataBuildError(
        detail=f"unsupported cursor value type {type(value).__name__} for {kind.value}",
    )


def parse_cursor_value(kind: FieldKind, text: str) -> Any:
    """Parse a cursor key string back into a column value.

    Raises:
        InvalidCursorError: The text is not a valid value of ``kind``.
    """
    try:
        return _PARSERS[kind](text)
    except (ValueError, InvalidOperation) as exc:
        msg = f"invalid cursor: invalid {kind.value} key value"
        raise InvalidCursorError(msg) from exc


def _parse_i64(text: str) -> int:
    if not _INT_RE.match(text):
        raise ValueError(text)
    number = int(text)
    if not _I64_MIN <= number <= _I64_MAX:
        raise ValueError(text)
    return number


def _parse_bool(text: str) -> bool:
    if text == "true":
        return True
    if text == "false":
        return False
    raise ValueError(text)


def _parse_datetime(text: str) -> datetime:
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_decimal(text: str) -> Decimal:
    number = Decimal(text)
    if not number.is_finite():
        raise ValueError(text)
    return number


_PARSERS: dict[FieldKind, Callable[[str], Any]] = {
    FieldKind.STRING: str,
    FieldKind.I64: _parse_i64,
    FieldKind.F64: float,
    FieldKind.BOOL: _parse_bool,
    FieldKind.UUID: UUID,
    FieldKind.DATETIME_UTC: _parse_datetime,
    FieldKind.DATE: date.fromisoformat,
    FieldKind.TIME: time.fromisoformat,
    FieldKind.DECIMAL: _parse_decimal,
}


__all__ = [
    "CursorExtractor",
    "Field",
    "FieldKind",
    "FieldMap",
    "coerce",
    "encode_cursor_value",
    "parse_cursor_value",
]
