"""Transport-agnostic keyset pagination with OData-style filtering.

A listing request goes through three steps:

1. ``parse_odata_query(params)`` turns ``$filter``, ``$orderby``, ``cursor``
   and ``limit`` into a validated :class:`ODataQuery`, rejecting attempts to
   change the filter or order in the middle of a pagination run.
2. The storage side compiles the filter and seeks past the cursor (see
   :mod:`keyset_odata.core.database`).
3. ``build_page(rows, query, field_map, limit=...)`` emits the items plus
   next/prev cursors bound to the filter hash.

Cursors are opaque base64 strings that clients pass back unchanged.
"""

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
    ValueType,
    chain_operands,
    count_nodes,
)
from keyset_odata.core.pagination.builder import (
    build_cursor_for_row,
    build_page,
    effective_order,
)
from keyset_odata.core.pagination.cursor import CURSOR_VERSION, CursorCodec, CursorV1
from keyset_odata.core.pagination.filter_parser import parse_filter
from keyset_odata.core.pagination.hashing import normalize_filter_for_hash, short_filter_hash
from keyset_odata.core.pagination.order import ODataOrderBy, OrderKey, SortDir, parse_orderby
from keyset_odata.core.pagination.query import (
    ODataParams,
    ODataQuery,
    assemble_query,
    parse_odata_query,
)
from keyset_odata.core.pagination.schemas import Page, PageInfo

__all__ = [
    "CURSOR_VERSION",
    "And",
    "Compare",
    "CompareOperator",
    "CursorCodec",
    "CursorV1",
    "Expr",
    "Function",
    "Identifier",
    "In",
    "Literal",
    "Not",
    "ODataOrderBy",
    "ODataParams",
    "ODataQuery",
    "Or",
    "OrderKey",
    "Page",
    "PageInfo",
    "SortDir",
    "Value",
    "ValueType",
    "assemble_query",
    "build_cursor_for_row",
    "build_page",
    "chain_operands",
    "count_nodes",
    "effective_order",
    "normalize_filter_for_hash",
    "parse_filter",
    "parse_odata_query",
    "parse_orderby",
    "short_filter_hash",
]
