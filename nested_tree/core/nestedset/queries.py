"""Range-predicate query builders for nested-set navigation.

Each method returns an un-executed SQLAlchemy ``Select`` scoped to one tree
space, so callers can add columns, pagination or eager loading before
running it. Structural predicates (depth, "no intermediate row") look at
every row of the scope, soft-deleted ones included, because those rows
still occupy their boundaries. The selected rows exclude soft-deleted
nodes unless ``with_deleted=True``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import and_, exists, func, select
from sqlalchemy.orm import aliased

from nested_tree.core.nestedset.boundaries import Interval

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement, Select

    from nested_tree.core.nestedset.scope import TreeScope


T = TypeVar("T")


class QueryTranslator(Generic[T]):
    """Builds ``Select`` statements answering tree questions for one model.

    Example:
        >>> queries = QueryTranslator(Category)
        >>> stmt = queries.descendants(node, scope, max_depth=1)
        >>> rows = (await session.execute(stmt)).scalars().all()
    """

    def __init__(self, model: type[T]) -> None:
        self.model = model
        self.soft_delete = hasattr(model, "deleted_at")

    def _base(self, scope: TreeScope, with_deleted: bool) -> Select[tuple[T]]:
        # Bulk boundary shifts bypass the ORM, so loaded instances must be refreshed
        stmt = select(self.model).where(*scope.criteria(self.model)).execution_options(populate_existing=True)
        if self.soft_delete and not with_deleted:
            stmt = stmt.where(self.model.deleted_at.is_(None))  # type: ignore[attr-defined]
        return stmt

    def _no_row_between(self, outer: Interval, scope: TreeScope) -> ColumnElement[bool]:
        """No row of the scope sits strictly between ``outer`` and the selected row."""
        mid = aliased(self.model)
        model: Any = self.model
        return ~exists().where(
            *scope.criteria(mid),
            mid.lft > outer.lft,
            mid.rgt < outer.rgt,
            mid.lft < model.lft,
            mid.rgt > model.rgt,
        )

    def _rows_between(self, outer: Interval, scope: TreeScope) -> Any:
        """Correlated count of rows strictly between ``outer`` and the selected row."""
        mid = aliased(self.model)
        model: Any = self.model
        return (
            select(func.count())
            .select_from(mid)
            .where(
                *scope.criteria(mid),
                mid.lft > outer.lft,
                mid.rgt < outer.rgt,
                mid.lft < model.lft,
                mid.rgt > model.rgt,
            )
            .correlate(model)
            .scalar_subquery()
        )

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def ancestors(
        self,
        node: Any,
        scope: TreeScope,
        *,
        include_self: bool = False,
        with_deleted: bool = False,
    ) -> Select[tuple[T]]:
        """Rows whose interval contains the node's, root first."""
        model: Any = self.model
        if include_self:
            cond = and_(model.lft <= node.lft, model.rgt >= node.rgt)
        else:
            cond = and_(model.lft < node.lft, model.rgt > node.rgt)
        return self._base(scope, with_deleted).where(cond).order_by(model.lft)

    def descendants(
        self,
        node: Any,
        scope: TreeScope,
        *,
        include_self: bool = False,
        max_depth: int | None = None,
        with_deleted: bool = False,
    ) -> Select[tuple[T]]:
        """Rows inside the node's interval, in pre-order.

        Args:
            node: Reference node with current boundaries
            scope: Tree space of the node
            include_self: Start the result with the node itself
            max_depth: Limit to descendants at most this many levels below
                the node (``1`` = children only)
            with_deleted: Include soft-deleted rows
        """
        model: Any = self.model
        if include_self:
            cond = and_(model.lft >= node.lft, model.rgt <= node.rgt)
        else:
            cond = and_(model.lft > node.lft, model.rgt < node.rgt)
        stmt = self._base(scope, with_deleted).where(cond)

        if max_depth is not None:
            outer = Interval(node.lft, node.rgt)
            if max_depth <= 0:
                stmt = stmt.where(model.lft == node.lft)
            elif max_depth == 1:
                stmt = stmt.where(self._no_row_between(outer, scope))
            else:
                stmt = stmt.where(self._rows_between(outer, scope) < max_depth)
        return stmt.order_by(model.lft)

    def children(self, node: Any, scope: TreeScope, *, with_deleted: bool = False) -> Select[tuple[T]]:
        """Descendants with no intermediate containing row, ordered by lft."""
        model: Any = self.model
        outer = Interval(node.lft, node.rgt)
        return (
            self._base(scope, with_deleted)
            .where(model.lft > node.lft, model.rgt < node.rgt, self._no_row_between(outer, scope))
            .order_by(model.lft)
        )

    def siblings(
        self,
        node: Any,
        scope: TreeScope,
        *,
        include_self: bool = False,
        with_deleted: bool = False,
    ) -> Select[tuple[T]]:
        """Rows sharing the node's parent; roots are siblings of each other."""
        model: Any = self.model
        stmt = self._base(scope, with_deleted).where(self._same_parent(node))
        if not include_self:
            stmt = stmt.where(model.id != node.id)
        return stmt.order_by(model.lft)

    def prev_sibling(self, node: Any, scope: TreeScope, *, with_deleted: bool = False) -> Select[tuple[T]]:
        """Nearest sibling on the left, if any."""
        model: Any = self.model
        return (
            self._base(scope, with_deleted)
            .where(self._same_parent(node), model.rgt < node.lft)
            .order_by(model.lft.desc())
            .limit(1)
        )

    def next_sibling(self, node: Any, scope: TreeScope, *, with_deleted: bool = False) -> Select[tuple[T]]:
        """Nearest sibling on the right, if any."""
        model: Any = self.model
        return (
            self._base(scope, with_deleted)
            .where(self._same_parent(node), model.lft > node.rgt)
            .order_by(model.lft)
            .limit(1)
        )

    def _same_parent(self, node: Any) -> ColumnElement[bool]:
        model: Any = self.model
        if node.parent_id is None:
            return model.parent_id.is_(None)
        return model.parent_id == node.parent_id

    # ------------------------------------------------------------------
    # Whole-scope listings
    # ------------------------------------------------------------------

    def roots(self, scope: TreeScope, *, with_deleted: bool = False) -> Select[tuple[T]]:
        model: Any = self.model
        return self._base(scope, with_deleted).where(model.parent_id.is_(None)).order_by(model.lft)

    def leaves(self, scope: TreeScope, *, with_deleted: bool = False) -> Select[tuple[T]]:
        model: Any = self.model
        return self._base(scope, with_deleted).where(model.rgt == model.lft + 1).order_by(model.lft)

    def whole_tree(self, scope: TreeScope, *, with_deleted: bool = False) -> Select[tuple[T]]:
        """Every row of the scope in pre-order."""
        model: Any = self.model
        return self._base(scope, with_deleted).order_by(model.lft)

    def depth(self, node: Any, scope: TreeScope) -> Select[tuple[int]]:
        """Number of rows structurally containing the node (0 for a root)."""
        model: Any = self.model
        return (
            select(func.count())
            .select_from(model)
            .where(*scope.criteria(model), model.lft < node.lft, model.rgt > node.rgt)
        )


__all__ = [
    "QueryTranslator",
]
