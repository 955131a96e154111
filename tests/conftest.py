"""Pytest configuration and shared fixtures.

Organization:
    - Database Fixtures: in-memory SQLite engine and session
    - Engine Fixtures: NestedSetEngine instances for the test models
    - Tree Fixtures: small prebuilt trees

When adding new features:
    1. Add fixtures to the appropriate section below
    2. Keep fixtures function-scoped; every test gets a fresh database
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from nested_tree.core.database import Base
from nested_tree.core.nestedset import NestedSetEngine
from nested_tree.core.settings import TreeSettings, clear_settings_cache
from nested_tree.infra.database import enable_sqlite_savepoints, get_session_factory
from tests.fixtures.models import Category, MenuItem
from tests.utils import build_tree

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

# Keep tests independent from a developer's .env
os.environ.setdefault("LOG_JSON", "false")


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Drop cached settings so monkeypatched env vars take effect."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Async engine on a fresh in-memory SQLite database with savepoint support."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    enable_sqlite_savepoints(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """Session that keeps attributes after commit, like the package factory.

    Example:
        async def test_root(db_session, categories):
            root = await categories.create_root(db_session, Category(name="All"))
            assert (root.lft, root.rgt) == (1, 2)
    """
    async with get_session_factory(db_engine)() as session:
        try:
            yield session
        finally:
            await session.rollback()


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
def tree_settings() -> TreeSettings:
    return TreeSettings(retry_initial_delay=0.0, retry_max_delay=0.0)


@pytest.fixture
def categories(tree_settings: TreeSettings) -> NestedSetEngine[Category]:
    """Engine for the unscoped Category tree."""
    return NestedSetEngine(Category, settings=tree_settings)


@pytest.fixture
def menus(tree_settings: TreeSettings) -> NestedSetEngine[MenuItem]:
    """Engine for the tenant-scoped, soft-deletable MenuItem tree."""
    return NestedSetEngine(MenuItem, settings=tree_settings)


# ============================================================================
# Tree Fixtures
# ============================================================================


@pytest.fixture
async def abc_tree(db_session: AsyncSession, categories: NestedSetEngine[Category]) -> dict[str, Any]:
    """A=[1,6] with children B=[2,3] and C=[4,5]."""
    return await build_tree(categories, db_session, [("A", None), ("B", "A"), ("C", "A")])


@pytest.fixture
async def shop_tree(db_session: AsyncSession, categories: NestedSetEngine[Category]) -> dict[str, Any]:
    """Two-level catalogue plus a second root.

    \b
    Shop [1,14]
      Books [2,7]
        Fiction [3,4]
        Science [5,6]
      Music [8,11]
        Jazz [9,10]
      Games [12,13]
    Archive [15,16]
    """
    return await build_tree(
        categories,
        db_session,
        [
            ("Shop", None),
            ("Books", "Shop"),
            ("Fiction", "Books"),
            ("Science", "Books"),
            ("Music", "Shop"),
            ("Jazz", "Music"),
            ("Games", "Shop"),
            ("Archive", None),
        ],
    )


@pytest.fixture
async def acme_menu(db_session: AsyncSession, menus: NestedSetEngine[MenuItem]) -> dict[str, Any]:
    """Menu of tenant "acme": Main [1,8] > (Home [2,3], About [4,7] > Team [5,6])."""
    return await build_tree(
        menus,
        db_session,
        [("Main", None), ("Home", "Main"), ("About", "Main"), ("Team", "About")],
        scope={"tenant_id": "acme"},
    )
