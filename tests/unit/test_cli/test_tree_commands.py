"""Tests for the check/fix/dump CLI commands.

Testing approach:
- Uses Click's CliRunner for command invocation
- Seeds a SQLite file database per test (commands open their own engine)
- Tests exit codes, text and JSON output, scope parsing errors
"""

from __future__ import annotations

import asyncio
import json

import click
import pytest
from click.testing import CliRunner

from nested_tree.cli.commands.tree import load_model, parse_scope
from nested_tree.cli.main import cli
from nested_tree.core.database import Base
from nested_tree.core.nestedset import NestedSetEngine
from nested_tree.core.settings import DatabaseSettings
from nested_tree.infra.database import create_engine_from_settings, get_async_session, get_session_factory
from tests.fixtures.models import Category, MenuItem
from tests.utils import build_tree, corrupt

CATEGORY = "tests.fixtures.models:Category"
MENU = "tests.fixtures.models:MenuItem"


def _run_db(url: str, fn) -> None:
    """Run ``fn(session)`` in one committed session on ``url``."""

    async def _main():
        engine = create_engine_from_settings(DatabaseSettings(dsn=url))
        try:
            async with get_async_session(get_session_factory(engine)) as session:
                await fn(session)
        finally:
            await engine.dispose()

    asyncio.run(_main())


@pytest.fixture
def cli_runner():
    """Create Click CLI runner for testing commands."""
    return CliRunner()


@pytest.fixture
def db_url(tmp_path):
    """SQLite file database holding a category tree and two tenant menus.

    \b
    Category: A [1,6] > (B [2,3], C [4,5])
    MenuItem acme:   Main [1,4] > Home [2,3]
    MenuItem globex: Main [1,2]
    """
    url = f"sqlite+aiosqlite:///{tmp_path / 'tree.db'}"

    async def _create_schema():
        engine = create_engine_from_settings(DatabaseSettings(dsn=url))
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    async def _seed(session):
        await build_tree(NestedSetEngine(Category), session, [("A", None), ("B", "A"), ("C", "A")])
        menus = NestedSetEngine(MenuItem)
        await build_tree(menus, session, [("Main", None), ("Home", "Main")], scope={"tenant_id": "acme"})
        await build_tree(menus, session, [("Main", None)], scope={"tenant_id": "globex"})

    asyncio.run(_create_schema())
    _run_db(url, _seed)
    return url


def _invoke(runner: CliRunner, url: str, *args: str):
    return runner.invoke(cli, ["--database-url", url, *args], obj={})


@pytest.mark.unit
class TestCheckCommand:
    """Test suite for `nested-tree check`."""

    def test_healthy_tree(self, cli_runner, db_url):
        result = _invoke(cli_runner, db_url, "check", CATEGORY)

        assert result.exit_code == 0
        assert "Category integrity" in result.output
        assert "<global>: ok" in result.output

    def test_broken_tree_exits_one(self, cli_runner, db_url):
        _run_db(db_url, lambda session: corrupt(session, Category, 2, rgt=2))

        result = _invoke(cli_runner, db_url, "check", CATEGORY)

        assert result.exit_code == 1
        assert "oddness=1, gaps=1" in result.output
        assert "duplicates" not in result.output

    def test_every_scope_as_json(self, cli_runner, db_url):
        result = _invoke(cli_runner, db_url, "check", MENU, "--json")

        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert sorted(entry["scope"]["tenant_id"] for entry in payload) == ["acme", "globex"]
        assert all(entry["total"] == 0 for entry in payload)

    def test_single_scope(self, cli_runner, db_url):
        result = _invoke(cli_runner, db_url, "check", MENU, "--scope", "tenant_id=acme", "--json")

        assert result.exit_code == 0
        (entry,) = json.loads(result.stdout)
        assert entry["scope"] == {"tenant_id": "acme"}

    def test_unknown_scope_column(self, cli_runner, db_url):
        result = _invoke(cli_runner, db_url, "check", MENU, "--scope", "tenant=acme")

        assert result.exit_code == 2
        assert "no column 'tenant'" in result.output

    def test_bad_model_path(self, cli_runner, db_url):
        result = _invoke(cli_runner, db_url, "check", "tests.fixtures.models")

        assert result.exit_code == 2
        assert "module:Class" in result.output


@pytest.mark.unit
class TestFixCommand:
    """Test suite for `nested-tree fix`."""

    def test_fix_repairs_and_check_passes(self, cli_runner, db_url):
        _run_db(db_url, lambda session: corrupt(session, Category, 2, parent_id=3))

        fixed = _invoke(cli_runner, db_url, "fix", CATEGORY)
        checked = _invoke(cli_runner, db_url, "check", CATEGORY)

        assert fixed.exit_code == 0
        assert "Repaired 2 row(s)" in fixed.output
        assert checked.exit_code == 0

    def test_nothing_to_repair(self, cli_runner, db_url):
        result = _invoke(cli_runner, db_url, "fix", MENU, "--scope", "tenant_id=globex")

        assert result.exit_code == 0
        assert "Nothing to repair" in result.output

    def test_unknown_subtree(self, cli_runner, db_url):
        result = _invoke(cli_runner, db_url, "fix", CATEGORY, "--subtree", "999")

        assert result.exit_code == 1
        assert "Repair failed" in result.output


@pytest.mark.unit
class TestDumpCommand:
    """Test suite for `nested-tree dump`."""

    def test_flat_dump(self, cli_runner, db_url):
        result = _invoke(cli_runner, db_url, "dump", CATEGORY)

        assert result.exit_code == 0
        assert json.loads(result.stdout) == [
            {"id": 1, "parent_id": None},
            {"id": 2, "parent_id": 1},
            {"id": 3, "parent_id": 1},
        ]

    def test_nested_dump(self, cli_runner, db_url):
        result = _invoke(cli_runner, db_url, "dump", MENU, "--scope", "tenant_id=acme", "--nested")

        assert result.exit_code == 0
        (main,) = json.loads(result.stdout)
        assert (main["lft"], main["rgt"]) == (1, 4)
        assert [child["lft"] for child in main["children"]] == [2]


@pytest.mark.unit
class TestHelpers:
    """Model loading and scope parsing."""

    def test_load_model(self):
        assert load_model(CATEGORY) is Category
        with pytest.raises(click.BadParameter):
            load_model("tests.fixtures.models:Missing")
        with pytest.raises(click.BadParameter):
            load_model("no_such_module_xyz:Thing")

    def test_parse_scope(self):
        assert parse_scope(MenuItem, ()) is None
        assert parse_scope(MenuItem, ("tenant_id=acme",)) == {"tenant_id": "acme"}
        assert parse_scope(Category, ("parent_id=3",)) == {"parent_id": 3}
        with pytest.raises(click.BadParameter):
            parse_scope(MenuItem, ("tenant_id",))
