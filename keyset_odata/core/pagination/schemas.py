"""Page envelope returned by cursor-paginated listings.

Shape on the wire:
    {
        "items": [...],
        "page_info": {"next_cursor": "eyJ2Ijox...", "prev_cursor": null, "limit": 25}
    }

``next_cursor`` continues after the last item, ``prev_cursor`` pages back
before the first one. Either is ``None`` when there is nothing to fetch in
that direction.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")
U = TypeVar("U")


class PageInfo(BaseModel):
    """Navigation metadata of a page.

    Attributes:
        next_cursor: Cursor of the following page, ``None`` at the end
        prev_cursor: Cursor of the preceding page, ``None`` at the start
        limit: Page size the page was built with
    """

    next_cursor: str | None = Field(
        default=None,
        description="Cursor to fetch next page",
    )
    prev_cursor: str | None = Field(
        default=None,
        description="Cursor to fetch previous page",
    )
    limit: int = Field(ge=1, description="Page size")

    model_config = {"frozen": True}

    @property
    def has_next(self) -> bool:
        return self.next_cursor is not None

    @property
    def has_prev(self) -> bool:
        return self.prev_cursor is not None


class Page(BaseModel, Generic[T]):
    """One page of items plus its navigation metadata.

    Usage:
        page = build_page(rows, query, USER_FIELDS, limit=25, to_item=UserOut.model_validate)
        return page.model_dump(mode="json")
    """

    items: list[T] = Field(
        default_factory=list,
        description="List of items",
    )
    page_info: PageInfo = Field(description="Pagination metadata")

    model_config = {"arbitrary_types_allowed": True}

    @classmethod
    def empty(cls, limit: int) -> Page[T]:
        """A page with no items and no cursors."""
        return cls(items=[], page_info=PageInfo(limit=limit))

    def map_items(self, fn: Callable[[T], U]) -> Page[U]:
        """Convert every item, keeping the page info unchanged."""
        return Page[U](items=[fn(item) for item in self.items], page_info=self.page_info)

    def __len__(self) -> int:
        return len(self.items)


__all__ = ["Page", "PageInfo"]
