"""Translate driver failures into :class:`DatabaseError`.

Executing statements is the caller's job. Wrapping that call keeps backend
details (SQL text, driver messages) out of the error the client sees, while
the original exception stays chained and is logged with its traceback.

Usage:
    stmt = ODataQueryFilter(query, USER_FIELDS, limit=limit, tiebreaker=TIEBREAKER).apply(select(User))
    with storage_errors(entity="User"):
        result = await session.execute(stmt)
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from keyset_odata.core.exceptions import DatabaseError

logger = logging.getLogger(__name__)


@contextmanager
def storage_errors(**context: Any) -> Iterator[None]:
    """Re-raise any ``SQLAlchemyError`` in the block as ``DatabaseError``.

    Args:
        **context: Extra fields attached to the error log record.

    Raises:
        DatabaseError: The block raised a SQLAlchemy error; it is the ``__cause__``.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Storage operation failed", extra=context)
        raise DatabaseError from exc


__all__ = ["storage_errors"]
