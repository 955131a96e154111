"""Integrity checks and self-repair for stored nested-set trees.

The checks run in Python over the structural projection of a scope
(``NodeLink`` rows), so they behave the same on every dialect and report
counts rather than stopping at the first problem. Repair regenerates all
boundaries from ``parent_id``, which is treated as the source of truth.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from itertools import combinations
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from nested_tree.core.nestedset.boundaries import BoundaryShift, Interval
from nested_tree.core.nestedset.builder import changed_rows, compute_boundaries
from nested_tree.core.nestedset.exceptions import CorruptionDetected
from nested_tree.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from nested_tree.core.nestedset.gateway import NodeLink, NodeStoreGateway
    from nested_tree.core.nestedset.scope import TreeScope


@dataclass(slots=True, frozen=True)
class TreeErrorReport:
    """Error counts per integrity check for one scope.

    Attributes:
        oddness: Rows with a missing boundary, ``rgt <= lft`` or an even
            ``rgt - lft``
        duplicates: Pairs of distinct rows sharing a boundary value
        wrong_parent: Rows whose parent_id is not the nearest row strictly
            containing their interval
        missing_parent: Rows whose parent_id references no row of the scope
        gaps: Values in ``1..2N`` (N rows) that no boundary occupies
    """

    oddness: int = 0
    duplicates: int = 0
    wrong_parent: int = 0
    missing_parent: int = 0
    gaps: int = 0

    @property
    def total(self) -> int:
        return self.oddness + self.duplicates + self.wrong_parent + self.missing_parent + self.gaps

    @property
    def is_broken(self) -> bool:
        return self.total > 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _is_odd(link: NodeLink) -> bool:
    if link.lft is None or link.rgt is None:
        return True
    return link.rgt <= link.lft or (link.rgt - link.lft) % 2 == 0


def _within(slot: Interval, link: NodeLink) -> bool:
    """Both boundaries of ``link`` lie strictly inside ``slot``."""
    if link.lft is None or link.rgt is None:
        return False
    return slot.lft < link.lft < slot.rgt and slot.lft < link.rgt < slot.rgt


def check_links(links: Iterable[NodeLink]) -> TreeErrorReport:
    """Run the integrity checks over every row of one scope."""
    rows = list(links)
    ids = {link.id for link in rows}

    oddness = sum(1 for link in rows if _is_odd(link))

    holders: dict[int, set[Any]] = defaultdict(set)
    for link in rows:
        for value in (link.lft, link.rgt):
            if value is not None:
                holders[value].add(link.id)
    pairs: set[frozenset[Any]] = set()
    for owners in holders.values():
        if len(owners) > 1:
            pairs.update(frozenset(pair) for pair in combinations(owners, 2))

    missing_parent = sum(1 for link in rows if link.parent_id is not None and link.parent_id not in ids)

    gaps = sum(1 for value in range(1, 2 * len(rows) + 1) if value not in holders)

    # Nearest strictly containing interval, found with a stack over rows sorted by lft
    wrong_parent = 0
    stack: list[NodeLink] = []
    for link in sorted((r for r in rows if not _is_odd(r)), key=lambda r: (r.lft, r.id)):
        while stack and stack[-1].rgt < link.lft:  # type: ignore[operator]
            stack.pop()
        container = next(
            (
                candidate
                for candidate in reversed(stack)
                if candidate.lft < link.lft and link.rgt < candidate.rgt  # type: ignore[operator]
            ),
            None,
        )
        expected = container.id if container is not None else None
        if link.parent_id != expected and (link.parent_id is None or link.parent_id in ids):
            wrong_parent += 1
        stack.append(link)

    return TreeErrorReport(
        oddness=oddness,
        duplicates=len(pairs),
        wrong_parent=wrong_parent,
        missing_parent=missing_parent,
        gaps=gaps,
    )


T = TypeVar("T")


class TreeValidator(Generic[T]):
    """Counts invariant violations and regenerates boundaries from parent links."""

    def __init__(self, gateway: NodeStoreGateway[T]) -> None:
        self.gateway = gateway
        self._logger = logging.getLogger(f"nested_tree.validator.{gateway.model_name}")
        self._lazy = get_lazy_logger(f"nested_tree.validator.{gateway.model_name}")

    async def count_errors(self, session: AsyncSession, scope: TreeScope) -> TreeErrorReport:
        """Error counts for one scope (soft-deleted rows included)."""
        links = await self.gateway.read_links(session, scope)
        report = check_links(links)
        self._lazy.debug(lambda: f"tree.count_errors: {self.gateway.model_name} scope={scope} -> {report.as_dict()}")
        return report

    async def count_errors_all(self, session: AsyncSession) -> dict[TreeScope, TreeErrorReport]:
        """Error counts for every scope present in the table."""
        return {scope: await self.count_errors(session, scope) for scope in await self.gateway.read_scopes(session)}

    async def is_broken(self, session: AsyncSession, scope: TreeScope) -> bool:
        return (await self.count_errors(session, scope)).is_broken

    async def assert_valid(self, session: AsyncSession, scope: TreeScope) -> None:
        """Raise CorruptionDetected if any check fails for ``scope``."""
        report = await self.count_errors(session, scope)
        if report.is_broken:
            raise CorruptionDetected(report, scope=scope.as_dict())

    async def fix_tree(self, session: AsyncSession, scope: TreeScope) -> int:
        """Regenerate every boundary of the scope from parent links.

        Siblings keep their current order (by lft, then id). Rows whose
        parent does not exist become roots.

        Returns:
            Number of rows whose boundaries or parent changed

        Raises:
            CycleError: If parent links contain a cycle
        """
        async with self.gateway.mutation(session, scope, "tree.fix_tree"):
            links = await self.gateway.read_links(session, scope)
            ids = {link.id for link in links}
            pairs = [(link.id, link.parent_id if link.parent_id in ids else None) for link in links]
            intervals = compute_boundaries(pairs)
            rows = changed_rows(intervals, dict(pairs), {link.id: link for link in links})
            await self.gateway.write_boundaries(session, rows)

        if rows:
            self._logger.warning(
                "Tree repaired",
                extra={
                    "entity": self.gateway.model_name,
                    "scope": str(scope),
                    "rows_changed": len(rows),
                    "operation": "tree.fix_tree",
                },
            )
        return len(rows)

    async def fix_subtree(self, session: AsyncSession, root_id: Any, scope: TreeScope) -> int:
        """Regenerate boundaries below one node from parent links.

        The subtree is every row stored strictly inside the root's slot.
        Members whose parent is not the root or another member are
        reattached to the root. Rows outside the slot are never pulled in,
        even if their parent_id points into the subtree; ``fix_tree``
        repairs those. Numbering starts at the root's current lft; a change
        in width shifts the rest of the scope.

        Returns:
            Number of rows whose boundaries or parent changed

        Raises:
            NotFoundError: If the root is not in the scope
            CycleError: If parent links inside the slot form a cycle
        """
        async with self.gateway.mutation(session, scope, "tree.fix_subtree"):
            root = await self.gateway.read_node(session, root_id, scope, with_deleted=True)
            root_interval = Interval(root.lft, root.rgt)  # type: ignore[attr-defined]
            links = await self.gateway.read_links(session, scope)

            members = [link for link in links if link.id != root_id and _within(root_interval, link)]
            inside = {link.id for link in members}

            pairs = [(root_id, root.parent_id)]  # type: ignore[attr-defined]
            pairs += [(link.id, link.parent_id if link.parent_id in inside else root_id) for link in members]
            intervals = compute_boundaries(pairs, start=root_interval.lft, roots=[root_id])

            delta = 2 * len(intervals) - root_interval.width
            if delta:
                await self.gateway.shift_outside(
                    session,
                    scope,
                    BoundaryShift(threshold=root_interval.rgt + 1, delta=delta),
                    exclude_ids=intervals.keys(),
                )

            rows = changed_rows(intervals, dict(pairs), {link.id: link for link in links})
            await self.gateway.write_boundaries(session, rows)

        if rows:
            self._logger.warning(
                "Subtree repaired",
                extra={
                    "entity": self.gateway.model_name,
                    "scope": str(scope),
                    "root_id": str(root_id),
                    "rows_changed": len(rows),
                    "width_delta": delta,
                    "operation": "tree.fix_subtree",
                },
            )
        return len(rows)


__all__ = [
    "TreeErrorReport",
    "TreeValidator",
    "check_links",
]
