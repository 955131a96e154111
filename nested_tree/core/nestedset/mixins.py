"""Mixin declaring the nested-set columns on a tree model.

The mixin adds ``parent_id``, ``lft`` and ``rgt`` plus the covering index on
``(scope..., lft, rgt)``. Navigation helpers defined here never query the
database; everything that needs rows goes through ``NestedSetEngine``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar

from sqlalchemy import Index, Integer
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from nested_tree.core.nestedset.boundaries import Interval

if TYPE_CHECKING:
    from nested_tree.core.nestedset.scope import TreeScope


class NestedSetMixin:
    """Mixin for models stored as nested-set intervals.

    Example:
        >>> class Category(Base, IntegerPKMixin, NestedSetMixin):
        ...     __tablename__ = "categories"
        ...     name: Mapped[str] = mapped_column(String(255))
        >>>
        >>> engine = NestedSetEngine(Category)
        >>> root = await engine.create_root(session, Category(name="All"))
        >>> child = await engine.append_child(session, root.id, Category(name="Books"))
        >>> child.interval
        Interval(lft=2, rgt=3)

    Note:
        - ``parent_id`` carries no foreign key; hard deletes remove whole
          subtrees in a single statement and the validator reports dangling
          references as ``missing_parent``.
        - Override ``__scope_columns__`` to partition the table into
          independent trees (e.g. ``("tenant_id",)``).
    """

    __allow_unmapped__ = True

    # Columns partitioning the table into independent tree spaces
    __scope_columns__: ClassVar[tuple[str, ...]] = ()

    parent_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        index=True,
        comment="Parent node id (NULL for roots)",
    )
    lft: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Left nested-set boundary",
    )
    rgt: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Right nested-set boundary",
    )

    @declared_attr.directive
    def __table_args__(cls) -> tuple[Any, ...]:
        """Add the (scope..., lft, rgt) index used by every range query."""
        existing_args = None
        for base in cls.__mro__[1:]:
            if "__table_args__" in base.__dict__ and base is not NestedSetMixin:
                existing_args = base.__dict__["__table_args__"]
                break

        tablename = getattr(cls, "__tablename__", None) or cls.__name__.lower()
        columns = (*cls.__scope_columns__, "lft", "rgt")
        new_index = Index(f"ix_{tablename}_nested_set", *columns)

        if existing_args:
            if isinstance(existing_args, dict):
                return (new_index, existing_args)
            if isinstance(existing_args, tuple):
                return (*existing_args, new_index)

        return (new_index,)

    @property
    def interval(self) -> Interval:
        """Current ``[lft, rgt]`` as an Interval (no query)."""
        return Interval(self.lft, self.rgt)

    @property
    def is_root(self) -> bool:
        """True when the node has no parent (no query)."""
        return self.parent_id is None

    @property
    def is_leaf(self) -> bool:
        """True when ``rgt = lft + 1`` (no query)."""
        return self.rgt == self.lft + 1

    @property
    def descendant_count(self) -> int:
        """Number of descendants implied by the interval width (no query)."""
        return (self.rgt - self.lft - 1) // 2

    @property
    def tree_scope(self) -> TreeScope:
        """Scope values of this instance."""
        from nested_tree.core.nestedset.scope import TreeScope

        return TreeScope.from_instance(self)

    def is_descendant_of(self, other: NestedSetMixin) -> bool:
        """Strict interval containment within the same scope (no query)."""
        return self.tree_scope == other.tree_scope and other.interval.contains(self.interval)

    def is_ancestor_of(self, other: NestedSetMixin) -> bool:
        """Inverse of ``is_descendant_of`` (no query)."""
        return other.is_descendant_of(self)


__all__ = [
    "NestedSetMixin",
]
