"""Main CLI entry point for nested-tree maintenance commands."""

import click

from nested_tree.cli.commands import tree
from nested_tree.infra.logging.config import setup_logging


@click.group()
@click.version_option(version="0.1.0", prog_name="nested-tree")
@click.option(
    "--database-url",
    "dsn",
    envvar="DATABASE_URL",
    default=None,
    help="SQLAlchemy async URL; defaults to DatabaseSettings",
)
@click.pass_context
def cli(ctx: click.Context, dsn: str | None) -> None:
    """nested-tree - Inspect and repair nested-set trees.

    \b
    Commands:
      check   Count integrity errors (exit 1 when broken)
      fix     Regenerate boundaries from parent links
      dump    Print a tree as JSON

    \b
    Quick Start:
      nested-tree check myapp.models:Category
      nested-tree fix myapp.models:MenuItem --scope tenant_id=acme
      nested-tree dump myapp.models:MenuItem --scope tenant_id=acme --nested
    """
    ctx.ensure_object(dict)
    ctx.obj["dsn"] = dsn


cli.add_command(tree.check)
cli.add_command(tree.fix)
cli.add_command(tree.dump)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
