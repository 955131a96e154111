"""Bulk construction of nested-set boundaries from parent links.

``compute_boundaries`` is the pure core: given ``(id, parent_id)`` pairs it
assigns fresh ``[lft, rgt]`` intervals with one pre-order walk. The walk
uses an explicit stack and a counter threaded through the loop, so deep
trees never hit the interpreter's recursion limit.

``TreeBuilder`` applies it to stored rows: full rebuilds from a caller's
flat list, subtree rebuilds, and the matching ``flatten`` export.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from nested_tree.core.nestedset.boundaries import BoundaryShift, Interval
from nested_tree.core.nestedset.exceptions import (
    CycleError,
    InvalidOperationError,
    NotFoundError,
    ScopeMismatchError,
)
from nested_tree.core.nestedset.gateway import NodeLink
from nested_tree.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from nested_tree.core.nestedset.gateway import NodeStoreGateway
    from nested_tree.core.nestedset.scope import TreeScope


@dataclass(slots=True)
class TreeItem:
    """One node of a nested dump with its ordered children."""

    node: Any
    children: list[TreeItem] = field(default_factory=list)

    def as_dict(self, fields: Sequence[str] = ("id",)) -> dict[str, Any]:
        """Plain-dict rendering, e.g. for JSON output."""
        data = {name: getattr(self.node, name) for name in fields}
        data["children"] = [child.as_dict(fields) for child in self.children]
        return data


def entry_link(entry: Any) -> tuple[Any, Any]:
    """``(id, parent_id)`` of a flat-list entry (mapping or object)."""
    if isinstance(entry, Mapping):
        try:
            return entry["id"], entry.get("parent_id")
        except KeyError as exc:
            msg = "Flat list entries need an 'id' key"
            raise InvalidOperationError(msg, details={"entry": dict(entry)}) from exc
    return entry.id, getattr(entry, "parent_id", None)


def compute_boundaries(
    links: Iterable[tuple[Any, Any] | NodeLink],
    *,
    start: int = 1,
    roots: Sequence[Any] | None = None,
) -> dict[Any, Interval]:
    """Assign pre-order ``[lft, rgt]`` intervals from parent links.

    Children are numbered in the order they appear in ``links``. A node
    whose parent is None or not among the links is a root; roots are
    numbered in input order unless ``roots`` fixes them explicitly.

    Args:
        links: ``(id, parent_id)`` pairs or NodeLink rows
        start: First boundary value
        roots: Explicit root ids, in order

    Returns:
        Mapping of id to its new Interval

    Raises:
        InvalidOperationError: If an id appears twice
        CycleError: If parent links form a cycle
    """
    order: list[Any] = []
    parent_of: dict[Any, Any] = {}
    for link in links:
        node_id, parent_id = (link.id, link.parent_id) if isinstance(link, NodeLink) else link
        if node_id in parent_of:
            msg = f"Node {node_id!r} is listed more than once"
            raise InvalidOperationError(msg, details={"id": node_id})
        parent_of[node_id] = parent_id
        order.append(node_id)

    children: dict[Any, list[Any]] = {}
    detected_roots: list[Any] = []
    for node_id in order:
        parent_id = parent_of[node_id]
        if parent_id is None or parent_id not in parent_of:
            detected_roots.append(node_id)
        else:
            children.setdefault(parent_id, []).append(node_id)

    root_ids = list(roots) if roots is not None else detected_roots

    result: dict[Any, Interval] = {}
    lefts: dict[Any, int] = {}
    counter = start
    stack: list[tuple[Any, bool]] = [(root_id, False) for root_id in reversed(root_ids)]

    while stack:
        node_id, closing = stack.pop()
        if closing:
            result[node_id] = Interval(lefts.pop(node_id), counter)
            counter += 1
            continue
        if node_id in lefts or node_id in result:
            raise CycleError(f"Node {node_id!r} is reachable twice", node_ids=[node_id])
        lefts[node_id] = counter
        counter += 1
        stack.append((node_id, True))
        stack.extend((child, False) for child in reversed(children.get(node_id, ())))

    unreached = [node_id for node_id in order if node_id not in result]
    if unreached:
        raise CycleError("Parent links contain a cycle", node_ids=unreached)

    return result


def to_tree(nodes: Iterable[Any]) -> list[TreeItem]:
    """Nest pre-ordered nodes (ascending ``lft``) into TreeItems.

    Nesting follows interval containment, so any contiguous pre-order slice
    works, e.g. the result of ``descendants(..., include_self=True)``.
    """
    roots: list[TreeItem] = []
    stack: list[TreeItem] = []
    for node in nodes:
        item = TreeItem(node)
        while stack and stack[-1].node.rgt < node.lft:
            stack.pop()
        if stack:
            stack[-1].children.append(item)
        else:
            roots.append(item)
        stack.append(item)
    return roots


def changed_rows(
    intervals: Mapping[Any, Interval],
    parents: Mapping[Any, Any],
    links: Mapping[Any, NodeLink],
) -> list[dict[str, Any]]:
    """Write set for rows whose boundaries or parent differ from storage."""
    rows: list[dict[str, Any]] = []
    for node_id, interval in intervals.items():
        current = links.get(node_id)
        parent_id = parents[node_id]
        if (
            current is None
            or current.lft != interval.lft
            or current.rgt != interval.rgt
            or current.parent_id != parent_id
        ):
            rows.append({"id": node_id, "lft": interval.lft, "rgt": interval.rgt, "parent_id": parent_id})
    return rows


T = TypeVar("T")


class TreeBuilder(Generic[T]):
    """Rebuilds stored boundaries from flat ``{id, parent_id}`` lists."""

    def __init__(self, gateway: NodeStoreGateway[T]) -> None:
        self.gateway = gateway
        self._logger = logging.getLogger(f"nested_tree.builder.{gateway.model_name}")
        self._lazy = get_lazy_logger(f"nested_tree.builder.{gateway.model_name}")

    async def flatten(self, session: AsyncSession, scope: TreeScope) -> list[dict[str, Any]]:
        """Every row of the scope as ``{"id", "parent_id"}`` in pre-order.

        The output is valid ``rebuild_tree`` input reproducing the same tree.
        """
        links = await self.gateway.read_links(session, scope)
        return [{"id": link.id, "parent_id": link.parent_id} for link in links]

    async def _check_ids(self, session: AsyncSession, scope: TreeScope, missing: Iterable[Any]) -> None:
        """Raise for ids that are not rows of ``scope``."""
        missing = list(missing)
        if not missing:
            return
        elsewhere = await self.gateway.read_ids(session, missing)
        for node_id in missing:
            other = elsewhere.get(node_id)
            if other is not None:
                raise ScopeMismatchError(self.gateway.model_name, node_id, scope.as_dict(), other.as_dict())
            raise NotFoundError(self.gateway.model_name, {"id": node_id})

    async def rebuild_tree(
        self,
        session: AsyncSession,
        flat_list: Iterable[Any],
        scope: TreeScope,
        *,
        delete_missing: bool = False,
    ) -> int:
        """Rewrite every boundary of the scope from a flat parent-link list.

        Entries are numbered in list order among their siblings. Rows the
        list does not mention keep their stored parent and follow the listed
        siblings, or are hard-deleted with ``delete_missing=True``.

        Args:
            session: Database session
            flat_list: Mappings or objects with ``id`` and ``parent_id``
            scope: Tree space to rebuild
            delete_missing: Hard-delete rows absent from ``flat_list``

        Returns:
            Number of rows whose boundaries or parent changed

        Raises:
            NotFoundError: Unknown id or parent reference
            ScopeMismatchError: Id belonging to another scope
            CycleError: Parent links contain a cycle
        """
        entries = [entry_link(entry) for entry in flat_list]

        async with self.gateway.mutation(session, scope, "tree.rebuild_tree"):
            links = {link.id: link for link in await self.gateway.read_links(session, scope)}
            listed = {node_id for node_id, _ in entries}

            await self._check_ids(session, scope, (node_id for node_id, _ in entries if node_id not in links))
            known = listed if delete_missing else listed | set(links)
            for node_id, parent_id in entries:
                if parent_id is None or parent_id in known:
                    continue
                if parent_id not in links:
                    await self._check_ids(session, scope, [parent_id])
                raise NotFoundError(self.gateway.model_name, {"id": parent_id, "child_id": node_id})

            remaining = {i: link for i, link in links.items() if i in listed} if delete_missing else links
            combined = entries + [(link.id, link.parent_id) for link in remaining.values() if link.id not in listed]
            intervals = compute_boundaries(combined)
            self._lazy.debug(
                lambda: f"tree.rebuild_tree: {len(entries)} listed, {len(links)} stored, scope={scope}"
            )

            deleted = 0
            if delete_missing:
                deleted = await self.gateway.delete_ids(session, (i for i in links if i not in listed))

            rows = changed_rows(intervals, dict(combined), links)
            await self.gateway.write_boundaries(session, rows)

        self._logger.info(
            "Tree rebuilt",
            extra={
                "entity": self.gateway.model_name,
                "scope": str(scope),
                "rows_changed": len(rows),
                "rows_deleted": deleted,
                "operation": "tree.rebuild_tree",
            },
        )
        return len(rows)

    async def rebuild_subtree(
        self,
        session: AsyncSession,
        root_id: Any,
        flat_list: Iterable[Any],
        scope: TreeScope,
        *,
        delete_missing: bool = False,
    ) -> int:
        """Rewrite the boundaries below one node from a flat parent-link list.

        Entries describe descendants of ``root_id``; a ``parent_id`` of None
        means "direct child of the root". Numbering starts at the root's
        current ``lft``; if the subtree width changes, the rest of the scope
        shifts to make room (or close the gap).

        Returns:
            Number of rows whose boundaries or parent changed

        Raises:
            NotFoundError: Root or referenced id does not exist
            InvalidOperationError: Entry refers to a node outside the subtree
            CycleError: Parent links contain a cycle
        """
        entries = [entry_link(entry) for entry in flat_list]

        async with self.gateway.mutation(session, scope, "tree.rebuild_subtree"):
            root = await self.gateway.read_node(session, root_id, scope, with_deleted=True)
            root_interval = Interval(root.lft, root.rgt)  # type: ignore[attr-defined]
            all_links = await self.gateway.read_links(session, scope)
            inside = {
                link.id: link
                for link in all_links
                if link.lft is not None
                and link.rgt is not None
                and root_interval.contains(Interval(link.lft, link.rgt))
            }
            scope_ids = {link.id for link in all_links}

            normalised: list[tuple[Any, Any]] = []
            for node_id, parent_id in entries:
                if node_id == root_id:
                    msg = "Subtree entries must not list the subtree root itself"
                    raise InvalidOperationError(msg, details={"id": node_id})
                for ref in (node_id, parent_id):
                    if ref is None or ref == root_id or ref in inside:
                        continue
                    if ref in scope_ids:
                        msg = f"Node {ref!r} is outside the subtree of {root_id!r}"
                        raise InvalidOperationError(msg, details={"id": ref, "root_id": root_id})
                    await self._check_ids(session, scope, [ref])
                normalised.append((node_id, root_id if parent_id is None else parent_id))

            listed = {node_id for node_id, _ in normalised}
            if delete_missing:
                for node_id, parent_id in normalised:
                    if parent_id != root_id and parent_id not in listed:
                        raise NotFoundError(self.gateway.model_name, {"id": parent_id, "child_id": node_id})
                kept: dict[Any, NodeLink] = {}
            else:
                kept = {i: link for i, link in inside.items() if i not in listed}

            # Unlisted rows whose parent is not part of the subtree hang off the root
            combined = [(root_id, root.parent_id)]  # type: ignore[attr-defined]
            combined += normalised
            combined += [
                (link.id, link.parent_id if link.parent_id in inside else root_id) for link in kept.values()
            ]
            intervals = compute_boundaries(combined, start=root_interval.lft, roots=[root_id])

            if delete_missing:
                await self.gateway.delete_ids(session, (i for i in inside if i not in listed))

            delta = 2 * len(intervals) - root_interval.width
            if delta:
                await self.gateway.shift_outside(
                    session,
                    scope,
                    BoundaryShift(threshold=root_interval.rgt + 1, delta=delta),
                    exclude_ids=intervals.keys(),
                )

            links = {link.id: link for link in all_links}
            rows = changed_rows(intervals, dict(combined), links)
            await self.gateway.write_boundaries(session, rows)

        self._logger.info(
            "Subtree rebuilt",
            extra={
                "entity": self.gateway.model_name,
                "scope": str(scope),
                "root_id": str(root_id),
                "rows_changed": len(rows),
                "width_delta": delta,
                "operation": "tree.rebuild_subtree",
            },
        )
        return len(rows)


__all__ = [
    "TreeBuilder",
    "TreeItem",
    "changed_rows",
    "compute_boundaries",
    "entry_link",
    "to_tree",
]
