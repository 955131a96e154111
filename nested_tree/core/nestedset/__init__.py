"""Nested-set tree engine.

Hierarchies stored as ``[lft, rgt]`` intervals plus a ``parent_id`` link,
partitioned into independent trees by explicit scope columns.

Components:
    - NestedSetMixin: parent_id/lft/rgt columns and in-memory predicates
    - TreeScope: partition values for one tree space
    - NestedSetEngine: facade for mutations, queries, rebuild and repair
    - QueryTranslator: un-executed ``Select`` builders for navigation
    - TreeValidator / TreeErrorReport: integrity checks and repair

Usage:
    from nested_tree.core.nestedset import NestedSetEngine, Position

    engine = NestedSetEngine(Category)
    root = await engine.create_root(session, Category(name="All"))
    books = await engine.append_child(session, root.id, Category(name="Books"))
    await engine.move(session, books.id, None, Position.AFTER)
"""

from __future__ import annotations

from nested_tree.core.nestedset.boundaries import BoundaryShift, Interval, Position
from nested_tree.core.nestedset.builder import TreeBuilder, TreeItem, compute_boundaries, to_tree
from nested_tree.core.nestedset.engine import NestedSetEngine
from nested_tree.core.nestedset.exceptions import (
    ConcurrentModificationError,
    CorruptionDetected,
    CycleError,
    InvalidOperationError,
    NotFoundError,
    ScopeMismatchError,
    TreeError,
)
from nested_tree.core.nestedset.gateway import NodeLink, NodeStoreGateway
from nested_tree.core.nestedset.mixins import NestedSetMixin
from nested_tree.core.nestedset.mutator import DeleteMode, TreeMutator
from nested_tree.core.nestedset.queries import QueryTranslator
from nested_tree.core.nestedset.scope import TreeScope
from nested_tree.core.nestedset.validator import TreeErrorReport, TreeValidator, check_links

__all__ = [
    "BoundaryShift",
    "ConcurrentModificationError",
    "CorruptionDetected",
    "CycleError",
    "DeleteMode",
    "Interval",
    "InvalidOperationError",
    "NestedSetEngine",
    "NestedSetMixin",
    "NodeLink",
    "NodeStoreGateway",
    "NotFoundError",
    "Position",
    "QueryTranslator",
    "ScopeMismatchError",
    "TreeBuilder",
    "TreeError",
    "TreeErrorReport",
    "TreeItem",
    "TreeMutator",
    "TreeScope",
    "TreeValidator",
    "check_links",
    "compute_boundaries",
    "to_tree",
]
