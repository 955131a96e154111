"""CLI command modules."""

from nested_tree.cli.commands import tree

__all__ = [
    "tree",
]
