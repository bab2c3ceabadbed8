"""Exception classes for query parsing, cursor handling and compilation.

Every error raised by this package derives from :class:`AppException`, which
is shaped after RFC 7807 Problem Details. The transport layer decides how to
render them; the classes only carry a stable ``code`` plus a suggested
``status_code``.
"""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base application exception.

    Attributes:
        status_code: Suggested HTTP status code for the error.
        detail: Error message.
        type: Error type identifier (used in RFC 7807 problem details).
        title: Short summary of the problem type.
        instance: URI reference that identifies the specific occurrence of the problem.
        extra: Additional context-specific information about the error.

    Example:
        raise AppException(
            status_code=400,
            detail="invalid $filter: unexpected token ')'",
            type="odata-filter-invalid",
            extra={"position": 12},
        )
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)

    @staticmethod
    def _default_title(status_code: int) -> str:
        titles = {
            400: "Bad Request",
            422: "Unprocessable Entity",
            500: "Internal Server Error",
        }
        return titles.get(status_code, "Error")


class ODataError(AppException):
    """Base class for every filter, order, cursor and pagination error.

    Subclasses pin ``code``, ``title`` and ``status_code``; callers match on
    the class (or on ``code``) rather than on the message.
    """

    code: str = "ODATA_ERROR"
    title: str = "OData Error"
    status_code: int = 400

    def __init__(
        self,
        detail: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        cls = type(self)
        super().__init__(
            status_code=cls.status_code,
            detail=detail or cls.title,
            type=cls.code.lower().replace("_", "-"),
            title=cls.title,
            instance=instance,
            extra=extra,
        )


# ---------------------------------------------------------------------------
# $filter
# ---------------------------------------------------------------------------


class InvalidFilterError(ODataError):
    """Raised when the filter text is syntactically malformed."""

    code = "ODATA_FILTER_INVALID"
    title = "Filter error"

    def __init__(self, reason: str, instance: str | None = None) -> None:
        self.reason = reason
        super().__init__(
            detail=f"invalid $filter: {reason}",
            instance=instance,
            extra={"reason": reason},
        )


class FilterTooLongError(ODataError):
    """Raised when the filter text exceeds the configured byte ceiling."""

    code = "FILTER_TOO_LONG"
    title = "Filter too long"

    def __init__(self, length: int, max_length: int) -> None:
        super().__init__(
            detail=f"$filter is {length} bytes, the limit is {max_length}",
            extra={"length": length, "max_length": max_length},
        )


class FilterTooComplexError(ODataError):
    """Raised when the parsed filter has more nodes than allowed."""

    code = "FILTER_TOO_COMPLEX"
    title = "Filter too complex"

    def __init__(self, metric: str, value: int, limit: int) -> None:
        self.metric = metric
        super().__init__(
            detail=f"$filter {metric} is {value}, the limit is {limit}",
            extra={"metric": metric, "value": value, "limit": limit},
        )


# ---------------------------------------------------------------------------
# $orderby
# ---------------------------------------------------------------------------


class InvalidOrderByFieldError(ODataError):
    """Raised for a malformed or unsupported order-by token."""

    code = "UNSUPPORTED_ORDERBY_FIELD"
    title = "Unsupported OrderBy Field"

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(
            detail=f"unsupported $orderby field: {field}",
            extra={"field": field},
        )


# ---------------------------------------------------------------------------
# Cursor decoding
# ---------------------------------------------------------------------------


class InvalidCursorError(ODataError):
    """Generic cursor failure; the specific decode errors subclass it."""

    code = "INVALID_CURSOR"
    title = "Invalid Cursor"
    message = "invalid cursor"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail=detail or type(self).message)


class CursorInvalidBase64Error(InvalidCursorError):
    code = "CURSOR_INVALID_BASE64"
    message = "invalid cursor: invalid base64url encoding"


class CursorInvalidJsonError(InvalidCursorError):
    code = "CURSOR_INVALID_JSON"
    message = "invalid cursor: malformed JSON"


class CursorInvalidVersionError(InvalidCursorError):
    code = "CURSOR_INVALID_VERSION"
    message = "invalid cursor: unsupported version"


class CursorInvalidKeysError(InvalidCursorError):
    code = "CURSOR_INVALID_KEYS"
    message = "invalid cursor: empty or invalid keys"


class CursorInvalidFieldsError(InvalidCursorError):
    code = "CURSOR_INVALID_FIELDS"
    message = "invalid cursor: empty or invalid fields"


class CursorInvalidDirectionError(InvalidCursorError):
    code = "CURSOR_INVALID_DIRECTION"
    message = "invalid cursor: invalid sort direction"


# ---------------------------------------------------------------------------
# Cross-request consistency
# ---------------------------------------------------------------------------


class OrderMismatchError(ODataError):
    """Raised when a cursor's order differs from the order the caller expects."""

    code = "ORDER_MISMATCH"
    title = "Order Mismatch"


class FilterMismatchError(ODataError):
    """Raised when the filter changed since the cursor was issued."""

    code = "FILTER_MISMATCH"
    title = "Filter Mismatch"


class OrderWithCursorError(ODataError):
    """Raised when both $orderby and a cursor are supplied."""

    code = "ORDER_WITH_CURSOR"
    title = "Order With Cursor"

    def __init__(self) -> None:
        super().__init__(detail="Cannot specify both $orderby and cursor parameters")


class InvalidLimitError(ODataError):
    """Raised when the requested page size is outside the allowed range."""

    code = "INVALID_LIMIT"
    title = "Invalid Limit"
    status_code = 422

    def __init__(self, limit: object, max_limit: int) -> None:
        super().__init__(
            detail=f"limit must be between 1 and {max_limit}, got {limit}",
            extra={"limit": limit, "max_limit": max_limit},
        )


# ---------------------------------------------------------------------------
# Condition compilation
# ---------------------------------------------------------------------------


class ODataBuildError(ODataError):
    """Raised when a filter cannot be compiled against a field schema."""

    code = "ODATA_BUILD_ERROR"
    title = "Filter Compilation Error"


class UnknownFieldError(ODataBuildError):
    code = "UNKNOWN_FIELD"
    title = "Unknown Field"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(detail=f"unknown field: {name}", extra={"field": name})


class TypeMismatchError(ODataBuildError):
    code = "TYPE_MISMATCH"
    title = "Type Mismatch"

    def __init__(self, expected: str, got: str) -> None:
        self.expected = expected
        self.got = got
        super().__init__(
            detail=f"type mismatch: expected {expected}, got {got}",
            extra={"expected": expected, "got": got},
        )


class UnsupportedOperatorError(ODataBuildError):
    code = "UNSUPPORTED_OPERATOR"
    title = "Unsupported Operator"

    def __init__(self, operator: str) -> None:
        self.operator = operator
        super().__init__(
            detail=f"unsupported operator: {operator}",
            extra={"operator": operator},
        )


class UnsupportedFunctionError(ODataBuildError):
    code = "UNSUPPORTED_FUNCTION"
    title = "Unsupported Function"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            detail=f"unsupported function or args: {name}()",
            extra={"function": name},
        )


class NonLiteralInListError(ODataBuildError):
    code = "NON_LITERAL_IN_LIST"
    title = "Non-literal IN list"

    def __init__(self) -> None:
        super().__init__(detail="IN() list supports only literals")


class BareIdentifierError(ODataBuildError):
    code = "BARE_IDENTIFIER"
    title = "Bare Identifier"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            detail=f"bare identifier not allowed: {name}",
            extra={"field": name},
        )


class BareLiteralError(ODataBuildError):
    code = "BARE_LITERAL"
    title = "Bare Literal"

    def __init__(self) -> None:
        super().__init__(detail="bare literal not allowed")


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class DatabaseError(ODataError):
    """Opaque wrapper for storage failures.

    The original exception is chained (``raise ... from exc``) for logs, but
    the detail never exposes backend specifics.
    """

    code = "INTERNAL_DB"
    title = "Internal Database Error"
    status_code = 500

    def __init__(self) -> None:
        super().__init__(detail="An internal database error occurred")


__all__ = [
    "AppException",
    "BareIdentifierError",
    "BareLiteralError",
    "CursorInvalidBase64Error",
    "CursorInvalidDirectionError",
    "CursorInvalidFieldsError",
    "CursorInvalidJsonError",
    "CursorInvalidKeysError",
    "CursorInvalidVersionError",
    "DatabaseError",
    "FilterMismatchError",
    "FilterTooComplexError",
    "FilterTooLongError",
    "InvalidCursorError",
    "InvalidFilterError",
    "InvalidLimitError",
    "InvalidOrderByFieldError",
    "NonLiteralInListError",
    "ODataBuildError",
    "ODataError",
    "OrderMismatchError",
    "OrderWithCursorError",
    "TypeMismatchError",
    "UnknownFieldError",
    "UnsupportedFunctionError",
    "UnsupportedOperatorError",
]
