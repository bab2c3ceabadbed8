"""Cursor encoding and decoding for keyset pagination.

Cursors are opaque strings that encode the position in a result set. They
carry the sort-key values of the boundary row, the ordering those values
belong to and, optionally, a short hash of the filter that was active, so a
follow-up request can be checked against the one that issued the cursor.

The cursor format is:
1. Compact JSON object
2. Base64 URL-safe encoded, padding stripped, for use in query strings

Example cursor payload:
    {"v":1,"k":["2025-01-15T10:30:00+00:00","42"],"o":"desc","s":"-created_at,-id","f":"9f86d081884c7d65"}

Payload keys:
    v: format version (always 1)
    k: key values of the boundary row, as strings, in order-by order
    o: direction of the primary sort key
    s: canonical signed order-by (``-created_at,-id``)
    f: filter hash the cursor is bound to (omitted when there was no filter)
    d: travel direction, ``bwd`` for a previous-page cursor (omitted when forward)

Clients must treat the string as opaque.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from keyset_odata.core.exceptions import (
    CursorInvalidBase64Error,
    CursorInvalidDirectionError,
    CursorInvalidFieldsError,
    CursorInvalidJsonError,
    CursorInvalidKeysError,
    CursorInvalidVersionError,
    InvalidCursorError,
    InvalidOrderByFieldError,
)
from keyset_odata.core.pagination.order import ODataOrderBy, SortDir

logger = logging.getLogger(__name__)

CURSOR_VERSION = 1

TravelDirection = Literal["fwd", "bwd"]


class CursorV1(BaseModel):
    """Version 1 pagination cursor.

    Attributes:
        k: Sort-key values of the boundary row, stringified, in order-by order
        o: Direction of the primary sort key
        s: Canonical signed order-by the keys belong to
        f: Short hash of the filter in effect when the cursor was issued
        d: ``fwd`` continues after the row, ``bwd`` pages back before it
    """

    k: tuple[str, ...] = Field(description="Key values of the boundary row")
    o: SortDir = Field(description="Primary sort direction")
    s: str = Field(description="Canonical signed order-by")
    f: str | None = Field(default=None, description="Bound filter hash")
    d: TravelDirection = Field(default="fwd", description="Travel direction")

    model_config = {"frozen": True}

    @field_validator("k", mode="before")
    @classmethod
    def _coerce_keys(cls, value: Any) -> Any:
        if isinstance(value, list):
            return tuple(value)
        return value

    @property
    def order(self) -> ODataOrderBy:
        """The ordering this cursor was produced under."""
        return ODataOrderBy.from_signed_tokens(self.s)

    @property
    def is_backward(self) -> bool:
        return self.d == "bwd"

    def encode(self) -> str:
        """Encode to an opaque, URL-safe string.

        Example:
            token = CursorV1(k=("42",), o=SortDir.DESC, s="-id").encode()
        """
        payload: dict[str, Any] = {
            "v": CURSOR_VERSION,
            "k": list(self.k),
            "o": self.o.value,
            "s": self.s,
        }
        if self.f is not None:
            payload["f"] = self.f
        if self.d != "fwd":
            payload["d"] = self.d
        json_str = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        return base64.urlsafe_b64encode(json_str.encode()).decode().rstrip("=")

    @classmethod
    def decode(cls, cursor: str) -> CursorV1:
        """Decode and validate a cursor string.

        Validation runs in a fixed order so the first problem found decides
        the error: encoding, JSON, version, keys, direction, fields.

        Raises:
            CursorInvalidBase64Error: Not valid URL-safe base64.
            CursorInvalidJsonError: Not a JSON object, or wrong value types.
            CursorInvalidVersionError: Missing or unsupported ``v``.
            CursorInvalidKeysError: ``k`` empty or not a list of strings.
            CursorInvalidDirectionError: ``o`` or ``d`` not a known value.
            CursorInvalidFieldsError: ``s`` empty, malformed or not matching ``k``.
            InvalidCursorError: Any other malformed content.
        """
        text = (cursor or "").strip()
        if not text:
            raise InvalidCursorError("invalid cursor: empty value")

        raw = _b64_decode(text)

        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise CursorInvalidJsonError from exc
        if not isinstance(payload, dict):
            raise CursorInvalidJsonError

        version = payload.get("v")
        if isinstance(version, bool) or version != CURSOR_VERSION:
            raise CursorInvalidVersionError

        keys = payload.get("k")
        if not isinstance(keys, list) or not keys:
            raise CursorInvalidKeysError
        if not all(isinstance(key, str) for key in keys):
            raise CursorInvalidKeysError

        direction = payload.get("o")
        if direction not in (SortDir.ASC.value, SortDir.DESC.value):
            raise CursorInvalidDirectionError
        travel = payload.get("d", "fwd")
        if travel not in ("fwd", "bwd"):
            raise CursorInvalidDirectionError

        signed = payload.get("s")
        if not isinstance(signed, str) or not signed.strip():
            raise CursorInvalidFieldsError
        try:
            order = ODataOrderBy.from_signed_tokens(signed)
        except InvalidOrderByFieldError as exc:
            raise CursorInvalidFieldsError from exc
        if len(order) != len(keys):
            raise CursorInvalidFieldsError

        filter_hash = payload.get("f")
        if filter_hash is not None and not isinstance(filter_hash, str):
            raise InvalidCursorError("invalid cursor: filter hash must be a string")

        return cls(
            k=tuple(keys),
            o=SortDir(direction),
            s=signed,
            f=filter_hash,
            d=travel,
        )


def _b64_decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CursorInvalidBase64Error from exc


class CursorCodec:
    """Encode and decode pagination cursors.

    Thin facade kept for call sites that prefer functions over model methods.

    Usage:
        token = CursorCodec.encode(cursor)
        cursor = CursorCodec.decode(token)
    """

    @staticmethod
    def encode(cursor: CursorV1) -> str:
        return cursor.encode()

    @staticmethod
    def decode(cursor: str) -> CursorV1:
        try:
            return CursorV1.decode(cursor)
        except InvalidCursorError as exc:
            logger.debug("Rejected cursor", extra={"code": exc.code})
            raise


__all__ = ["CURSOR_VERSION", "CursorCodec", "CursorV1", "TravelDirection"]
