"""Public facade over the nested-set components for one model.

``NestedSetEngine`` wires the gateway, query translator, mutator, builder
and validator together and normalises caller-supplied scopes. Every method
takes the caller's ``AsyncSession``; mutations commit on their own when no
transaction is open and use a savepoint otherwise.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar

from nested_tree.core.nestedset.boundaries import Position
from nested_tree.core.nestedset.builder import TreeBuilder, TreeItem, to_tree
from nested_tree.core.nestedset.gateway import NodeStoreGateway
from nested_tree.core.nestedset.mutator import DeleteMode, TreeMutator
from nested_tree.core.nestedset.queries import QueryTranslator
from nested_tree.core.nestedset.validator import TreeErrorReport, TreeValidator
from nested_tree.core.settings import get_tree_settings

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from nested_tree.core.nestedset.scope import TreeScope
    from nested_tree.core.settings import TreeSettings

    ScopeInput = Mapping[str, Any] | Sequence[Any] | TreeScope | None


T = TypeVar("T")


class NestedSetEngine(Generic[T]):
    """Tree operations for a model mixing in NestedSetMixin.

    Example:
        >>> engine = NestedSetEngine(MenuItem)
        >>> scope = {"tenant_id": "acme"}
        >>> root = await engine.create_root(session, MenuItem(label="Main"), scope=scope)
        >>> home = await engine.append_child(session, root.id, MenuItem(label="Home"), scope=scope)
        >>> [n.label for n in await engine.ancestors(session, home.id, scope=scope, include_self=True)]
        ['Main', 'Home']
    """

    def __init__(self, model: type[T], settings: TreeSettings | None = None) -> None:
        """Initialize the engine.

        Args:
            model: Mapped class with NestedSetMixin columns
            settings: Tree settings; loaded via get_tree_settings() if None
        """
        self.model = model
        self.settings = settings or get_tree_settings()
        self.gateway: NodeStoreGateway[T] = NodeStoreGateway(model, self.settings)
        self.queries: QueryTranslator[T] = QueryTranslator(model)
        self.mutator: TreeMutator[T] = TreeMutator(self.gateway, self.settings)
        self.builder: TreeBuilder[T] = TreeBuilder(self.gateway)
        self.validator: TreeValidator[T] = TreeValidator(self.gateway)

    def scope(self, values: ScopeInput = None) -> TreeScope:
        """Validate scope input against the model's scope columns."""
        return self.gateway.scope_for(values)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_root(self, session: AsyncSession, node: T, *, scope: ScopeInput = None) -> T:
        return await self.mutator.create_root(session, node, self.scope(scope))

    async def append_child(self, session: AsyncSession, parent_id: Any, node: T, *, scope: ScopeInput = None) -> T:
        return await self.mutator.append_child(session, parent_id, node, self.scope(scope))

    async def prepend_child(self, session: AsyncSession, parent_id: Any, node: T, *, scope: ScopeInput = None) -> T:
        return await self.mutator.prepend_child(session, parent_id, node, self.scope(scope))

    async def insert_before(self, session: AsyncSession, sibling_id: Any, node: T, *, scope: ScopeInput = None) -> T:
        return await self.mutator.insert_before(session, sibling_id, node, self.scope(scope))

    async def insert_after(self, session: AsyncSession, sibling_id: Any, node: T, *, scope: ScopeInput = None) -> T:
        return await self.mutator.insert_after(session, sibling_id, node, self.scope(scope))

    async def move(
        self,
        session: AsyncSession,
        node_id: Any,
        target_id: Any | None,
        position: Position | str = Position.APPEND,
        *,
        scope: ScopeInput = None,
    ) -> bool:
        """Move a subtree; ``target_id=None`` makes it the last root.

        Returns:
            False when the node already sits at the requested position
        """
        return await self.mutator.move(session, node_id, target_id, position, self.scope(scope))

    async def move_up(self, session: AsyncSession, node_id: Any, steps: int = 1, *, scope: ScopeInput = None) -> int:
        return await self.mutator.move_up(session, node_id, self.scope(scope), steps)

    async def move_down(self, session: AsyncSession, node_id: Any, steps: int = 1, *, scope: ScopeInput = None) -> int:
        return await self.mutator.move_down(session, node_id, self.scope(scope), steps)

    async def delete(
        self,
        session: AsyncSession,
        node_id: Any,
        *,
        mode: DeleteMode | str | None = None,
        deleted_by: str | None = None,
        scope: ScopeInput = None,
    ) -> int:
        """Delete a node and its descendants (mode defaults to settings)."""
        return await self.mutator.delete(session, node_id, self.scope(scope), mode, deleted_by)

    async def restore(self, session: AsyncSession, node_id: Any, *, scope: ScopeInput = None) -> int:
        return await self.mutator.restore(session, node_id, self.scope(scope))

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    async def rebuild_tree(
        self,
        session: AsyncSession,
        flat_list: Iterable[Any],
        *,
        scope: ScopeInput = None,
        delete_missing: bool = False,
    ) -> int:
        return await self.builder.rebuild_tree(session, flat_list, self.scope(scope), delete_missing=delete_missing)

    async def rebuild_subtree(
        self,
        session: AsyncSession,
        root_id: Any,
        flat_list: Iterable[Any],
        *,
        scope: ScopeInput = None,
        delete_missing: bool = False,
    ) -> int:
        return await self.builder.rebuild_subtree(
            session, root_id, flat_list, self.scope(scope), delete_missing=delete_missing
        )

    async def flatten(self, session: AsyncSession, *, scope: ScopeInput = None) -> list[dict[str, Any]]:
        return await self.builder.flatten(session, self.scope(scope))

    @staticmethod
    def to_tree(nodes: Iterable[Any]) -> list[TreeItem]:
        return to_tree(nodes)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def count_errors(self, session: AsyncSession, *, scope: ScopeInput = None) -> TreeErrorReport:
        return await self.validator.count_errors(session, self.scope(scope))

    async def count_errors_all(self, session: AsyncSession) -> dict[TreeScope, TreeErrorReport]:
        return await self.validator.count_errors_all(session)

    async def is_broken(self, session: AsyncSession, *, scope: ScopeInput = None) -> bool:
        return await self.validator.is_broken(session, self.scope(scope))

    async def assert_valid(self, session: AsyncSession, *, scope: ScopeInput = None) -> None:
        await self.validator.assert_valid(session, self.scope(scope))

    async def fix_tree(self, session: AsyncSession, *, scope: ScopeInput = None) -> int:
        return await self.validator.fix_tree(session, self.scope(scope))

    async def fix_subtree(self, session: AsyncSession, root_id: Any, *, scope: ScopeInput = None) -> int:
        return await self.validator.fix_subtree(session, root_id, self.scope(scope))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(
        self,
        session: AsyncSession,
        node_id: Any,
        *,
        scope: ScopeInput = None,
        with_deleted: bool = False,
    ) -> T:
        """Fresh copy of one node.

        Raises:
            NotFoundError: If the node is not in the scope
            ScopeMismatchError: If it belongs to another scope
        """
        return await self.gateway.read_node(session, node_id, self.scope(scope), with_deleted=with_deleted)

    async def _fetch(self, session: AsyncSession, stmt: Any) -> list[T]:
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def ancestors(
        self,
        session: AsyncSession,
        node_id: Any,
        *,
        scope: ScopeInput = None,
        include_self: bool = False,
        with_deleted: bool = False,
    ) -> list[T]:
        """Ancestors ordered from the root down."""
        tree_scope = self.scope(scope)
        node = await self.gateway.read_node(session, node_id, tree_scope, with_deleted=True)
        stmt = self.queries.ancestors(node, tree_scope, include_self=include_self, with_deleted=with_deleted)
        return await self._fetch(session, stmt)

    async def descendants(
        self,
        session: AsyncSession,
        node_id: Any,
        *,
        scope: ScopeInput = None,
        include_self: bool = False,
        max_depth: int | None = None,
        with_deleted: bool = False,
    ) -> list[T]:
        """Descendants in pre-order, optionally limited to ``max_depth`` levels."""
        tree_scope = self.scope(scope)
        node = await self.gateway.read_node(session, node_id, tree_scope, with_deleted=True)
        stmt = self.queries.descendants(
            node,
            tree_scope,
            include_self=include_self,
            max_depth=max_depth,
            with_deleted=with_deleted,
        )
        return await self._fetch(session, stmt)

    async def children(
        self,
        session: AsyncSession,
        node_id: Any,
        *,
        scope: ScopeInput = None,
        with_deleted: bool = False,
    ) -> list[T]:
        tree_scope = self.scope(scope)
        node = await self.gateway.read_node(session, node_id, tree_scope, with_deleted=True)
        return await self._fetch(session, self.queries.children(node, tree_scope, with_deleted=with_deleted))

    async def siblings(
        self,
        session: AsyncSession,
        node_id: Any,
        *,
        scope: ScopeInput = None,
        include_self: bool = False,
        with_deleted: bool = False,
    ) -> list[T]:
        tree_scope = self.scope(scope)
        node = await self.gateway.read_node(session, node_id, tree_scope, with_deleted=True)
        stmt = self.queries.siblings(node, tree_scope, include_self=include_self, with_deleted=with_deleted)
        return await self._fetch(session, stmt)

    async def prev_sibling(
        self,
        session: AsyncSession,
        node_id: Any,
        *,
        scope: ScopeInput = None,
        with_deleted: bool = False,
    ) -> T | None:
        tree_scope = self.scope(scope)
        node = await self.gateway.read_node(session, node_id, tree_scope, with_deleted=True)
        rows = await self._fetch(session, self.queries.prev_sibling(node, tree_scope, with_deleted=with_deleted))
        return rows[0] if rows else None

    async def next_sibling(
        self,
        session: AsyncSession,
        node_id: Any,
        *,
        scope: ScopeInput = None,
        with_deleted: bool = False,
    ) -> T | None:
        tree_scope = self.scope(scope)
        node = await self.gateway.read_node(session, node_id, tree_scope, with_deleted=True)
        rows = await self._fetch(session, self.queries.next_sibling(node, tree_scope, with_deleted=with_deleted))
        return rows[0] if rows else None

    async def roots(self, session: AsyncSession, *, scope: ScopeInput = None, with_deleted: bool = False) -> list[T]:
        return await self._fetch(session, self.queries.roots(self.scope(scope), with_deleted=with_deleted))

    async def leaves(self, session: AsyncSession, *, scope: ScopeInput = None, with_deleted: bool = False) -> list[T]:
        return await self._fetch(session, self.queries.leaves(self.scope(scope), with_deleted=with_deleted))

    async def whole_tree(
        self,
        session: AsyncSession,
        *,
        scope: ScopeInput = None,
        with_deleted: bool = False,
    ) -> list[T]:
        """Every node of the scope in pre-order."""
        return await self._fetch(session, self.queries.whole_tree(self.scope(scope), with_deleted=with_deleted))

    async def depth(self, session: AsyncSession, node_id: Any, *, scope: ScopeInput = None) -> int:
        """Number of ancestors (0 for a root)."""
        tree_scope = self.scope(scope)
        node = await self.gateway.read_node(session, node_id, tree_scope, with_deleted=True)
        result = await session.execute(self.queries.depth(node, tree_scope))
        return result.scalar_one()

    @staticmethod
    def is_root(node: Any) -> bool:
        """True when the node has no parent (no query)."""
        return node.parent_id is None

    @staticmethod
    def is_leaf(node: Any) -> bool:
        """True when the node's interval has no room for children (no query)."""
        return node.rgt == node.lft + 1


__all__ = [
    "NestedSetEngine",
]
