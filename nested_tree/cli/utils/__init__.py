"""CLI utilities for running async operations."""

from nested_tree.cli.utils.async_runner import coro

__all__ = [
    "coro",
]
