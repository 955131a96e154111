"""Structural mutations of a nested-set tree.

Every public operation runs as one unit of work (``gateway.mutation``): a
transaction or savepoint, the scope lock, a tracing span and translation of
lock failures. Inside it the mutator re-reads the reference rows, computes
shifts with the boundary arithmetic and hands them to the gateway as bulk
statements. Any exception rolls back the whole operation.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import inspect as sa_inspect

from nested_tree.core.nestedset.boundaries import (
    Interval,
    Position,
    insertion_pivot,
    insertion_shift,
    move_offset,
    removal_shift,
    root_pivot,
)
from nested_tree.core.nestedset.exceptions import (
    CycleError,
    InvalidOperationError,
    ScopeMismatchError,
)
from nested_tree.core.nestedset.queries import QueryTranslator
from nested_tree.core.nestedset.scope import TreeScope
from nested_tree.core.settings import get_tree_settings
from nested_tree.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from nested_tree.core.nestedset.gateway import NodeStoreGateway
    from nested_tree.core.settings import TreeSettings


class DeleteMode(StrEnum):
    """How ``delete`` removes a subtree."""

    SOFT = "soft"
    HARD = "hard"


T = TypeVar("T")


class TreeMutator(Generic[T]):
    """Insert, move, reorder, delete and restore nodes of one model.

    Example:
        >>> mutator = TreeMutator(NodeStoreGateway(Category))
        >>> root = await mutator.create_root(session, Category(name="All"), GLOBAL_SCOPE)
        >>> books = await mutator.append_child(session, root.id, Category(name="Books"), GLOBAL_SCOPE)
        >>> await mutator.move(session, books.id, None, Position.APPEND, GLOBAL_SCOPE)
        True
    """

    def __init__(self, gateway: NodeStoreGateway[T], settings: TreeSettings | None = None) -> None:
        self.gateway = gateway
        self.settings = settings or get_tree_settings()
        self.queries: QueryTranslator[T] = QueryTranslator(gateway.model)
        self._logger = logging.getLogger(f"nested_tree.mutator.{gateway.model_name}")
        self._lazy = get_lazy_logger(f"nested_tree.mutator.{gateway.model_name}")

    # ------------------------------------------------------------------
    # Insertion
    # ------------------------------------------------------------------

    def _prepare_new(self, node: T, scope: TreeScope) -> None:
        """Check a new node and stamp the scope onto it."""
        state = sa_inspect(node)
        if state.persistent or state.detached:
            msg = f"{self.gateway.model_name} is already stored; use move() to relocate it"
            raise InvalidOperationError(msg, details={"id": getattr(node, "id", None)})

        actual = TreeScope.from_instance(node)
        for column, expected, value in zip(scope.columns, scope.values, actual.values, strict=True):
            if value is not None and value != expected:
                raise ScopeMismatchError(
                    self.gateway.model_name,
                    getattr(node, "id", None),
                    scope.as_dict(),
                    {**actual.as_dict(), column: value},
                )
        scope.apply_to(node)

    async def create_root(self, session: AsyncSession, node: T, scope: TreeScope) -> T:
        """Insert ``node`` as the last root of the scope.

        Raises:
            InvalidOperationError: If the scope already has a root and
                ``single_root`` is enabled
        """
        self._prepare_new(node, scope)

        async with self.gateway.mutation(session, scope, "tree.create_root"):
            if self.settings.single_root and await self.gateway.count_roots(session, scope):
                msg = f"{self.gateway.model_name} scope {scope} already has a root"
                raise InvalidOperationError(msg, details={"scope": scope.as_dict()})

            pivot = root_pivot(await self.gateway.max_rgt(session, scope))
            node.lft, node.rgt, node.parent_id = pivot, pivot + 1, None  # type: ignore[attr-defined]
            await self.gateway.insert_node(session, node)

        self._logger.info(
            "Root created",
            extra={
                "entity": self.gateway.model_name,
                "id": str(node.id),  # type: ignore[attr-defined]
                "scope": str(scope),
                "operation": "tree.create_root",
            },
        )
        return node

    async def insert(
        self,
        session: AsyncSession,
        node: T,
        reference_id: Any,
        position: Position | str,
        scope: TreeScope,
    ) -> T:
        """Insert ``node`` relative to an existing node.

        Args:
            session: Database session
            node: New, unsaved model instance
            reference_id: Parent (APPEND/PREPEND) or sibling (BEFORE/AFTER) id
            position: Placement relative to the reference
            scope: Tree space of the reference

        Returns:
            The inserted node with its boundaries assigned

        Raises:
            NotFoundError: If the reference is not an active node of the scope
            ScopeMismatchError: If the reference or node belongs to another scope
            InvalidOperationError: If a new root would break ``single_root``
        """
        position = Position(position)
        operation = f"tree.{position.value}"
        self._prepare_new(node, scope)

        async with self.gateway.mutation(session, scope, operation):
            reference = await self.gateway.read_node(session, reference_id, scope)
            parent_id = reference_id if position.is_child else reference.parent_id  # type: ignore[attr-defined]
            if parent_id is None and self.settings.single_root:
                msg = f"{self.gateway.model_name} scope {scope} allows a single root"
                raise InvalidOperationError(msg, details={"sibling_id": reference_id})

            pivot = insertion_pivot(position, Interval(reference.lft, reference.rgt))  # type: ignore[attr-defined]
            await self.gateway.shift_boundaries(session, scope, insertion_shift(pivot))
            node.lft, node.rgt, node.parent_id = pivot, pivot + 1, parent_id  # type: ignore[attr-defined]
            await self.gateway.insert_node(session, node)

        self._logger.info(
            "Node inserted",
            extra={
                "entity": self.gateway.model_name,
                "id": str(node.id),  # type: ignore[attr-defined]
                "reference_id": str(reference_id),
                "position": position.value,
                "scope": str(scope),
                "operation": operation,
            },
        )
        return node

    async def append_child(self, session: AsyncSession, parent_id: Any, node: T, scope: TreeScope) -> T:
        return await self.insert(session, node, parent_id, Position.APPEND, scope)

    async def prepend_child(self, session: AsyncSession, parent_id: Any, node: T, scope: TreeScope) -> T:
        return await self.insert(session, node, parent_id, Position.PREPEND, scope)

    async def insert_before(self, session: AsyncSession, sibling_id: Any, node: T, scope: TreeScope) -> T:
        return await self.insert(session, node, sibling_id, Position.BEFORE, scope)

    async def insert_after(self, session: AsyncSession, sibling_id: Any, node: T, scope: TreeScope) -> T:
        return await self.insert(session, node, sibling_id, Position.AFTER, scope)

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    async def move(
        self,
        session: AsyncSession,
        node_id: Any,
        target_id: Any | None,
        position: Position | str,
        scope: TreeScope,
    ) -> bool:
        """Relocate a node and its whole subtree.

        Args:
            session: Database session
            node_id: Node to move
            target_id: Parent (APPEND/PREPEND) or sibling (BEFORE/AFTER);
                None makes the node the last root
            position: Placement relative to the target
            scope: Tree space of both nodes

        Returns:
            False if the node already sits at the requested position

        Raises:
            CycleError: If the target is the node itself or one of its descendants
            NotFoundError: If either node is not an active node of the scope
            InvalidOperationError: If a new root would break ``single_root``
        """
        position = Position(position)
        async with self.gateway.mutation(session, scope, "tree.move"):
            node = await self.gateway.read_node(session, node_id, scope)
            moved = await self._relocate(session, node, target_id, position, scope)

        if moved:
            self._logger.info(
                "Node moved",
                extra={
                    "entity": self.gateway.model_name,
                    "id": str(node_id),
                    "target_id": str(target_id),
                    "position": position.value,
                    "scope": str(scope),
                    "operation": "tree.move",
                },
            )
        return moved

    async def _relocate(
        self,
        session: AsyncSession,
        node: Any,
        target_id: Any | None,
        position: Position,
        scope: TreeScope,
    ) -> bool:
        """Move ``node`` inside an already open unit of work."""
        old = Interval(node.lft, node.rgt)

        if target_id is None:
            new_parent = None
            if node.parent_id is None and node.rgt == await self.gateway.max_rgt(session, scope):
                return False
        else:
            if target_id == node.id:
                if position.is_child:
                    raise CycleError(f"Cannot move node {node.id!r} into itself", node_ids=[node.id])
                return False
            target = await self.gateway.read_node(session, target_id, scope)
            if old.contains(Interval(target.lft, target.rgt)):  # type: ignore[attr-defined]
                raise CycleError(
                    f"Cannot move node {node.id!r} into its own descendant {target_id!r}",
                    node_ids=[node.id, target_id],
                )
            new_parent = target_id if position.is_child else target.parent_id  # type: ignore[attr-defined]
            if self._already_placed(node, target, position):
                return False

        if new_parent is None and node.parent_id is not None and self.settings.single_root:
            msg = f"{self.gateway.model_name} scope {scope} allows a single root"
            raise InvalidOperationError(msg, details={"id": node.id})

        # Park the subtree, close its gap, then open one at the recomputed pivot
        await self.gateway.park_subtree(session, scope, old)
        await self.gateway.shift_boundaries(session, scope, removal_shift(old.lft, old.width))

        if target_id is None:
            pivot = root_pivot(await self.gateway.max_rgt(session, scope))
        else:
            target = await self.gateway.read_node(session, target_id, scope)
            pivot = insertion_pivot(position, Interval(target.lft, target.rgt))  # type: ignore[attr-defined]

        await self.gateway.shift_boundaries(session, scope, insertion_shift(pivot, old.width))
        await self.gateway.unpark_subtree(session, scope, move_offset(old.lft, pivot))
        if new_parent != node.parent_id:
            await self.gateway.update_parent(session, node.id, new_parent)

        self._lazy.debug(
            lambda: f"tree.move: {self.gateway.model_name}({node.id}) [{old.lft}, {old.rgt}] -> lft={pivot}"
        )
        await self.gateway.read_node(session, node.id, scope)
        return True

    @staticmethod
    def _already_placed(node: Any, target: Any, position: Position) -> bool:
        if position is Position.APPEND:
            return node.parent_id == target.id and node.rgt + 1 == target.rgt
        if position is Position.PREPEND:
            return node.parent_id == target.id and node.lft == target.lft + 1
        if position is Position.BEFORE:
            return node.parent_id == target.parent_id and node.rgt + 1 == target.lft
        return node.parent_id == target.parent_id and target.rgt + 1 == node.lft

    async def move_up(self, session: AsyncSession, node_id: Any, scope: TreeScope, steps: int = 1) -> int:
        """Move a node ``steps`` places towards the first of its active siblings.

        Returns:
            Number of places actually moved (0 if already first)
        """
        return await self._shift_among_siblings(session, node_id, scope, -steps)

    async def move_down(self, session: AsyncSession, node_id: Any, scope: TreeScope, steps: int = 1) -> int:
        """Move a node ``steps`` places towards the last of its active siblings.

        Returns:
            Number of places actually moved (0 if already last)
        """
        return await self._shift_among_siblings(session, node_id, scope, steps)

    async def _shift_among_siblings(self, session: AsyncSession, node_id: Any, scope: TreeScope, offset: int) -> int:
        operation = "tree.move_up" if offset < 0 else "tree.move_down"
        async with self.gateway.mutation(session, scope, operation):
            node: Any = await self.gateway.read_node(session, node_id, scope)
            result = await session.execute(self.queries.siblings(node, scope))
            siblings = list(result.scalars().all())

            if offset < 0:
                candidates = [s for s in siblings if s.lft < node.lft]
                steps = min(-offset, len(candidates))
                if steps <= 0:
                    return 0
                await self._relocate(session, node, candidates[-steps].id, Position.BEFORE, scope)
            else:
                candidates = [s for s in siblings if s.lft > node.lft]
                steps = min(offset, len(candidates))
                if steps <= 0:
                    return 0
                await self._relocate(session, node, candidates[steps - 1].id, Position.AFTER, scope)

        self._logger.info(
            "Node reordered",
            extra={
                "entity": self.gateway.model_name,
                "id": str(node_id),
                "steps": steps,
                "scope": str(scope),
                "operation": operation,
            },
        )
        return steps

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete(
        self,
        session: AsyncSession,
        node_id: Any,
        scope: TreeScope,
        mode: DeleteMode | str | None = None,
        deleted_by: str | None = None,
    ) -> int:
        """Delete a node together with its descendants.

        ``SOFT`` stamps one shared ``deleted_at`` on every not yet deleted
        row of the subtree; boundaries stay allocated. ``HARD`` removes every
        row of the subtree and closes the gap.

        Returns:
            Number of rows marked or removed

        Raises:
            InvalidOperationError: Soft delete on a model without ``deleted_at``
            NotFoundError: If the node is not in the scope
        """
        mode = DeleteMode(mode or self.settings.default_delete_mode)
        if mode is DeleteMode.SOFT and not self.gateway.supports_soft_delete:
            msg = f"{self.gateway.model_name} has no deleted_at column; use hard delete"
            raise InvalidOperationError(msg, details={"id": node_id})

        operation = f"tree.delete.{mode.value}"
        async with self.gateway.mutation(session, scope, operation):
            if mode is DeleteMode.SOFT:
                node: Any = await self.gateway.read_node(session, node_id, scope)
                count = await self.gateway.mark_deleted(
                    session,
                    scope,
                    Interval(node.lft, node.rgt),
                    datetime.now(UTC),
                    deleted_by,
                )
                await self.gateway.read_node(session, node_id, scope, with_deleted=True)
            else:
                node = await self.gateway.read_node(session, node_id, scope, with_deleted=True)
                interval = Interval(node.lft, node.rgt)
                removed = await self.gateway.delete_range(session, scope, interval)
                await self.gateway.shift_boundaries(session, scope, removal_shift(interval.lft, interval.width))
                count = len(removed)

        self._logger.info(
            "Subtree deleted",
            extra={
                "entity": self.gateway.model_name,
                "id": str(node_id),
                "mode": mode.value,
                "rows": count,
                "scope": str(scope),
                "operation": operation,
            },
        )
        return count

    async def restore(self, session: AsyncSession, node_id: Any, scope: TreeScope) -> int:
        """Undo the soft delete that removed ``node_id``.

        Only rows stamped by the same delete call come back; descendants
        deleted earlier on their own stay deleted.

        Returns:
            Number of rows restored (0 if the node was not deleted)

        Raises:
            InvalidOperationError: Model without ``deleted_at``, or an
                ancestor that is still deleted
        """
        if not self.gateway.supports_soft_delete:
            msg = f"{self.gateway.model_name} has no deleted_at column"
            raise InvalidOperationError(msg, details={"id": node_id})

        async with self.gateway.mutation(session, scope, "tree.restore"):
            node: Any = await self.gateway.read_node(session, node_id, scope, with_deleted=True)
            batch = await self.gateway.read_deleted_at(session, node_id)
            if batch is None:
                return 0

            result = await session.execute(self.queries.ancestors(node, scope, with_deleted=True))
            if any(ancestor.deleted_at is not None for ancestor in result.scalars()):
                msg = "Restore the deleted ancestor first"
                raise InvalidOperationError(msg, details={"id": node_id})

            count = await self.gateway.clear_deleted(session, scope, Interval(node.lft, node.rgt), batch)
            await self.gateway.read_node(session, node_id, scope)

        self._logger.info(
            "Subtree restored",
            extra={
                "entity": self.gateway.model_name,
                "id": str(node_id),
                "rows": count,
                "scope": str(scope),
                "operation": "tree.restore",
            },
        )
        return count


__all__ = [
    "DeleteMode",
    "TreeMutator",
]
