"""Pytest configuration and shared fixtures.

Organization:
    - Settings Fixtures: isolate the cached settings between tests
    - Database Fixtures: in-memory SQLite engine, session and seeded rows
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from keyset_odata.core.settings import PaginationSettings, clear_settings_cache

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Drop PAGINATION_/LOG_ overrides and the settings caches around each test."""
    for key in list(os.environ):
        if key.startswith(("PAGINATION_", "LOG_")):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def tight_settings() -> PaginationSettings:
    """Small budgets so limit checks are easy to hit."""
    return PaginationSettings(
        default_limit=2,
        max_limit=5,
        max_filter_length=64,
        max_filter_nodes=7,
        max_filter_depth=6,
        max_orderby_length=40,
        max_order_fields=3,
    )


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Create async SQLAlchemy engine with in-memory SQLite.

    Yields:
        Async SQLAlchemy engine connected to in-memory SQLite.
    """
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """Create async database session with the test tables created.

    Yields:
        Async database session for testing.
    """
    from tests.fixtures.models import Base

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def widgets(db_session: AsyncSession) -> list:
    """Seed ten widgets.

    ids 1..10, names ``w01``..``w10``, categories alternating ``tools`` and
    ``toys`` (``None`` for id 10), scores ``id % 3`` so scores repeat, and
    creation times one hour apart.
    """
    from tests.fixtures.models import Widget

    base = datetime(2024, 1, 1, tzinfo=UTC)
    rows = [
        Widget(
            id=i,
            name=f"w{i:02d}",
            category=None if i == 10 else ("tools" if i % 2 else "toys"),
            score=float(i % 3),
            active=i % 4 != 0,
            created_at=base + timedelta(hours=i),
        )
        for i in range(1, 11)
    ]
    db_session.add_all(rows)
    await db_session.commit()
    return rows
