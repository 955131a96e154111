"""Tree inspection and repair commands.

Each command loads the model class from a ``module:Class`` path, opens a
session from DatabaseSettings (or ``--database-url``) and runs one engine
operation.

Example:bash
    # Report integrity errors for every tenant
    nested-tree check myapp.models:MenuItem

    # Same for one tenant, machine readable
    nested-tree check myapp.models:MenuItem --scope tenant_id=acme --json

    # Regenerate boundaries from parent links
    nested-tree fix myapp.models:MenuItem --scope tenant_id=acme

    # Export the tree as a flat id/parent_id list
    nested-tree dump myapp.models:Category
"""

from __future__ import annotations

import importlib
import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, NoReturn

import click
from sqlalchemy import inspect as sa_inspect

from nested_tree.cli.utils import coro
from nested_tree.core.nestedset import NestedSetEngine, TreeError, to_tree
from nested_tree.core.settings import DatabaseSettings, get_db_settings
from nested_tree.infra.database import create_engine_from_settings, get_session_factory
from nested_tree.infra.logging import set_log_context

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncSession

    from nested_tree.core.nestedset import TreeErrorReport, TreeScope

logger = logging.getLogger(__name__)


def load_model(path: str) -> type[Any]:
    """Import a mapped class from ``module:Class``."""
    module_name, sep, class_name = path.partition(":")
    if not sep or not module_name or not class_name:
        raise click.BadParameter(f"expected 'module:Class', got {path!r}", param_hint="MODEL")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise click.BadParameter(f"cannot import {module_name!r}: {exc}", param_hint="MODEL") from exc
    model = getattr(module, class_name, None)
    if model is None:
        raise click.BadParameter(f"{module_name!r} has no attribute {class_name!r}", param_hint="MODEL")
    if not hasattr(model, "lft") or not hasattr(model, "__table__"):
        raise click.BadParameter(f"{path!r} is not a mapped nested-set model", param_hint="MODEL")
    return model


def parse_scope(model: type[Any], pairs: tuple[str, ...]) -> dict[str, Any] | None:
    """Turn ``k=v`` options into scope values, coerced to the column type."""
    if not pairs:
        return None
    columns = sa_inspect(model).local_table.c
    scope: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--scope")
        if key not in columns:
            raise click.BadParameter(f"{model.__name__} has no column {key!r}", param_hint="--scope")
        try:
            python_type = columns[key].type.python_type
        except NotImplementedError:
            python_type = str
        try:
            scope[key] = python_type(raw) if python_type in (int, float) else raw
        except ValueError as exc:
            raise click.BadParameter(f"{key}={raw!r}: {exc}", param_hint="--scope") from exc
    return scope


@asynccontextmanager
async def open_session(dsn: str | None) -> AsyncIterator[AsyncSession]:
    """Session on a short-lived engine, disposed when the command ends."""
    settings = DatabaseSettings(dsn=dsn) if dsn else get_db_settings()
    engine = create_engine_from_settings(settings)
    try:
        async with get_session_factory(engine)() as session:
            yield session
    finally:
        await engine.dispose()


def echo_report(tree_scope: TreeScope, report: TreeErrorReport) -> None:
    """One line per scope: ``ok`` in green or the non-zero counts in yellow."""
    if not report.is_broken:
        click.secho(f"  {tree_scope}: ok", fg="green")
        return
    counts = ", ".join(f"{name}={value}" for name, value in report.as_dict().items() if value)
    click.secho(f"  {tree_scope}: {counts}", fg="yellow")


def fail(action: str, exc: TreeError, exit_code: int) -> NoReturn:
    """Print a tree error to stderr and leave with ``exit_code``."""
    click.secho(f"{action} failed: {exc}", fg="red", err=True)
    logger.error("%s failed", action, extra={"error": type(exc).__name__, "details": getattr(exc, "details", {})})
    sys.exit(exit_code)


scope_option = click.option(
    "--scope",
    "scope_pairs",
    multiple=True,
    metavar="KEY=VALUE",
    help="Scope column value; repeat for multi-column scopes",
)


@click.command()
@click.argument("model_path", metavar="MODEL")
@scope_option
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_context
@coro
async def check(ctx: click.Context, model_path: str, scope_pairs: tuple[str, ...], as_json: bool) -> None:
    """Count integrity errors; exits 1 when any scope is broken.

    Without --scope, every scope present in the table is checked.
    """
    model = load_model(model_path)
    scope = parse_scope(model, scope_pairs)
    engine = NestedSetEngine(model)
    set_log_context(command="check", model=model.__name__)

    try:
        async with open_session(ctx.obj.get("dsn")) as session:
            if scope is None and getattr(model, "__scope_columns__", ()):
                reports = await engine.count_errors_all(session)
            else:
                tree_scope = engine.scope(scope)
                reports = {tree_scope: await engine.count_errors(session, scope=tree_scope)}
    except TreeError as e:
        fail("Check", e, 2)

    broken = any(report.is_broken for report in reports.values())
    if as_json:
        payload = [{"scope": s.as_dict(), **r.as_dict(), "total": r.total} for s, r in reports.items()]
        click.echo(json.dumps(payload, indent=2, default=str))
    else:
        click.secho(f"{model.__name__} integrity", fg="cyan", bold=True)
        for tree_scope, report in reports.items():
            echo_report(tree_scope, report)

    if broken:
        sys.exit(1)


@click.command()
@click.argument("model_path", metavar="MODEL")
@scope_option
@click.option("--subtree", "subtree_id", type=int, default=None, help="Only repair below this node id")
@click.pass_context
@coro
async def fix(ctx: click.Context, model_path: str, scope_pairs: tuple[str, ...], subtree_id: int | None) -> None:
    """Regenerate boundaries from parent links."""
    model = load_model(model_path)
    engine = NestedSetEngine(model)
    scope = parse_scope(model, scope_pairs)
    set_log_context(command="fix", model=model.__name__)

    try:
        async with open_session(ctx.obj.get("dsn")) as session:
            if subtree_id is None:
                changed = await engine.fix_tree(session, scope=scope)
            else:
                changed = await engine.fix_subtree(session, subtree_id, scope=scope)
    except TreeError as e:
        fail("Repair", e, 1)

    if changed:
        click.secho(f"Repaired {changed} row(s)", fg="green")
    else:
        click.echo("Nothing to repair")


@click.command()
@click.argument("model_path", metavar="MODEL")
@scope_option
@click.option("--nested", is_flag=True, help="Print nested children instead of a flat list")
@click.pass_context
@coro
async def dump(ctx: click.Context, model_path: str, scope_pairs: tuple[str, ...], nested: bool) -> None:
    """Print the tree as JSON (flat id/parent_id list by default)."""
    model = load_model(model_path)
    engine = NestedSetEngine(model)
    scope = parse_scope(model, scope_pairs)

    try:
        async with open_session(ctx.obj.get("dsn")) as session:
            if nested:
                nodes = await engine.whole_tree(session, scope=scope, with_deleted=True)
                payload: Any = [item.as_dict(("id", "parent_id", "lft", "rgt")) for item in to_tree(nodes)]
            else:
                payload = await engine.flatten(session, scope=scope)
    except TreeError as e:
        fail("Dump", e, 1)

    click.echo(json.dumps(payload, indent=2, default=str))


__all__ = [
    "check",
    "dump",
    "fix",
]
