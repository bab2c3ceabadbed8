"""SQLAlchemy side of keyset pagination.

- :mod:`fields`: the whitelist of filterable/sortable fields (``FieldMap``)
- :mod:`compiler`: ``$filter`` trees and cursors to SQL conditions
- :mod:`filters`: statement filters applying a query to a ``Select``
- :mod:`errors`: driver failures to ``DatabaseError``
"""

from keyset_odata.core.database.compiler import (
    ConditionBuilder,
    FilterCompiler,
    SQLAlchemyConditionBuilder,
    build_cursor_predicate,
    compile_filter,
)
from keyset_odata.core.database.errors import storage_errors
from keyset_odata.core.database.fields import (
    Field,
    FieldKind,
    FieldMap,
    coerce,
    encode_cursor_value,
    parse_cursor_value,
)
from keyset_odata.core.database.filters import (
    CursorSeekFilter,
    ODataFilter,
    ODataOrder,
    ODataQueryFilter,
    StatementFilter,
)

__all__ = [
    "ConditionBuilder",
    "CursorSeekFilter",
    "Field",
    "FieldKind",
    "FieldMap",
    "FilterCompiler",
    "ODataFilter",
    "ODataOrder",
    "ODataQueryFilter",
    "SQLAlchemyConditionBuilder",
    "StatementFilter",
    "build_cursor_predicate",
    "coerce",
    "compile_filter",
    "encode_cursor_value",
    "parse_cursor_value",
    "storage_errors",
]
