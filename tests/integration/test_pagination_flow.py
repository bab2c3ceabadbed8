"""End-to-end keyset pagination against SQLite.

Each test parses raw query parameters, applies the statement filters to a
``select``, executes it and builds the page, following the returned cursors
the way a client would.
"""
from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keyset_odata.core.database import ODataQueryFilter, storage_errors
from keyset_odata.core.exceptions import (
    DatabaseError,
    FilterMismatchError,
    InvalidOrderByFieldError,
)
from keyset_odata.core.pagination import Page, SortDir, build_page, parse_odata_query
from tests.fixtures.models import WIDGET_FIELDS, Widget

pytestmark = pytest.mark.integration

ID_ASC = ("id", SortDir.ASC)


async def fetch(
    session: AsyncSession,
    params: dict[str, Any],
    to_item: Callable[[Any], Any] | None = None,
) -> Page[Any]:
    query = parse_odata_query(params)
    limit = query.resolve_limit()
    stmt = ODataQueryFilter(query, WIDGET_FIELDS, limit=limit, tiebreaker=ID_ASC).apply(select(Widget))
    with storage_errors(entity="Widget"):
        result = await session.execute(stmt)
    return build_page(result.scalars().all(), query, WIDGET_FIELDS, limit=limit, tiebreaker=ID_ASC, to_item=to_item)


async def collect(session: AsyncSession, params: dict[str, Any]) -> list[list[int]]:
    """Follow next cursors to the end; return the ids of every page."""
    pages = []
    page = await fetch(session, params)
    pages.append([w.id for w in page.items])
    continuation = {k: v for k, v in params.items() if k != "$orderby"}
    while page.page_info.next_cursor:
        page = await fetch(session, {**continuation, "cursor": page.page_info.next_cursor})
        pages.append([w.id for w in page.items])
    return pages


class TestForwardTraversal:
    """Following next cursors visits every row exactly once."""

    async def test_multi_key_order(self, db_session: AsyncSession, widgets: list[Widget]):
        """``score desc, name asc`` with repeated scores."""
        expected = [w.id for w in sorted(widgets, key=lambda w: (-w.score, w.name))]

        pages = await collect(db_session, {"$orderby": "score desc, name asc", "limit": "3"})

        assert [len(p) for p in pages] == [3, 3, 3, 1]
        assert [i for p in pages for i in p] == expected

    async def test_default_order_is_tiebreaker(self, db_session: AsyncSession, widgets: list[Widget]):
        """Without ``$orderby`` rows come in tiebreaker order."""
        pages = await collect(db_session, {"limit": "4"})

        assert pages == [[1, 2, 3, 4], [5, 6, 7, 8], [9, 10]]

    async def test_datetime_order(self, db_session: AsyncSession, widgets: list[Widget]):
        """Date-time keys survive the cursor round trip."""
        pages = await collect(db_session, {"$orderby": "created_at desc", "limit": "4"})

        assert pages == [[10, 9, 8, 7], [6, 5, 4, 3], [2, 1]]

    async def test_last_page_has_no_next_cursor(self, db_session: AsyncSession, widgets: list[Widget]):
        """A page that fits everything has no cursors."""
        page = await fetch(db_session, {"limit": "10"})

        assert len(page) == 10
        assert page.page_info.next_cursor is None
        assert page.page_info.prev_cursor is None

    async def test_default_limit(self, db_session: AsyncSession, widgets: list[Widget], monkeypatch: pytest.MonkeyPatch):
        """The configured default applies without ``limit``."""
        monkeypatch.setenv("PAGINATION_DEFAULT_LIMIT", "3")

        page = await fetch(db_session, {})

        assert [w.id for w in page.items] == [1, 2, 3]
        assert page.page_info.limit == 3

    async def test_to_item_mapper(self, db_session: AsyncSession, widgets: list[Widget]):
        """Items can be mapped while cursors still come from rows."""
        page = await fetch(db_session, {"limit": "2"}, to_item=lambda w: w.name)

        assert page.items == ["w01", "w02"]
        assert page.page_info.next_cursor is not None


class TestFilteredTraversal:
    """Filters are applied on every page and bound into cursors."""

    async def test_filter_with_continuation(self, db_session: AsyncSession, widgets: list[Widget]):
        """The same filter is re-sent with each cursor."""
        pages = await collect(db_session, {"$filter": "category eq 'tools'", "limit": "2"})

        assert pages == [[1, 3], [5, 7], [9]]

    async def test_changed_filter_is_rejected(self, db_session: AsyncSession, widgets: list[Widget]):
        """Switching filters mid-pagination fails."""
        first = await fetch(db_session, {"$filter": "category eq 'tools'", "limit": "2"})

        with pytest.raises(FilterMismatchError):
            await fetch(
                db_session,
                {"$filter": "category eq 'toys'", "cursor": first.page_info.next_cursor},
            )

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("endswith(name, '1')", [1]),
            ("startswith(name, 'w1')", [10]),
            ("contains(name, '_')", []),
            ("category eq null", [10]),
            ("category ne null and score eq 0", [3, 6, 9]),
            ("id in (2, 4, 6)", [2, 4, 6]),
            ("id in ()", []),
            ("not active eq true", [4, 8]),
            ("created_at ge 2024-01-01T08:00:00Z", [8, 9, 10]),
            ("score gt 1 or id le 1", [1, 2, 5, 8]),
        ],
    )
    async def test_compiled_filters(
        self, db_session: AsyncSession, widgets: list[Widget], raw: str, expected: list[int]
    ):
        """Compiled conditions select the expected rows."""
        page = await fetch(db_session, {"$filter": raw})

        assert [w.id for w in page.items] == expected


class TestBackwardTraversal:
    """prev cursors page back towards the start."""

    async def test_prev_cursor_returns_previous_page(self, db_session: AsyncSession, widgets: list[Widget]):
        """Going forward then back lands on the first page again."""
        first = await fetch(db_session, {"$orderby": "id desc", "limit": "3"})
        assert [w.id for w in first.items] == [10, 9, 8]
        assert first.page_info.prev_cursor is None

        second = await fetch(db_session, {"cursor": first.page_info.next_cursor, "limit": "3"})
        assert [w.id for w in second.items] == [7, 6, 5]
        assert second.page_info.prev_cursor is not None

        back = await fetch(db_session, {"cursor": second.page_info.prev_cursor, "limit": "3"})
        assert [w.id for w in back.items] == [10, 9, 8]
        assert back.page_info.prev_cursor is None
        assert back.page_info.next_cursor is not None

    async def test_prev_cursor_with_more_rows_before(self, db_session: AsyncSession, widgets: list[Widget]):
        """Paging back from the third page keeps a prev cursor."""
        page = await fetch(db_session, {"limit": "3"})
        for _ in range(2):
            page = await fetch(db_session, {"cursor": page.page_info.next_cursor, "limit": "3"})
        assert [w.id for w in page.items] == [7, 8, 9]

        back = await fetch(db_session, {"cursor": page.page_info.prev_cursor, "limit": "3"})

        assert [w.id for w in back.items] == [4, 5, 6]
        assert back.page_info.prev_cursor is not None

        forward = await fetch(db_session, {"cursor": back.page_info.next_cursor, "limit": "3"})
        assert [w.id for w in forward.items] == [7, 8, 9]


class TestFailures:
    """Errors surfacing from the database layer."""

    async def test_unknown_order_field(self, db_session: AsyncSession, widgets: list[Widget]):
        """Order fields outside the map are rejected before execution."""
        with pytest.raises(InvalidOrderByFieldError):
            await fetch(db_session, {"$orderby": "weight desc"})

    async def test_database_error_is_wrapped(self, db_engine):
        """Driver errors become DatabaseError with the cause chained."""
        session_factory = async_sessionmaker(db_engine, class_=AsyncSession)

        async with session_factory() as session:
            with pytest.raises(DatabaseError) as exc_info:
                await fetch(session, {})

        assert exc_info.value.status_code == 500
        assert exc_info.value.__cause__ is not None
