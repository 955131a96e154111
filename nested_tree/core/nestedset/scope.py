"""Explicit scope keys partitioning independent trees in one table.

A model names its partition columns once via ``__scope_columns__``; every
engine call then receives a ``TreeScope`` holding the values for exactly
those columns, in the same order. Boundaries are unique and contiguous only
within one scope.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from nested_tree.core.nestedset.exceptions import InvalidOperationError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy import ColumnElement


@dataclass(slots=True, frozen=True)
class TreeScope:
    """Tuple of typed partition values for one tree space.

    ``TreeScope()`` (no values) is the single global tree space used by
    models that declare no scope columns.

    Example:
        >>> scope = TreeScope.of(tenant_id="acme", menu="main")
        >>> scope.values
        ('acme', 'main')
    """

    values: tuple[Any, ...] = ()
    columns: tuple[str, ...] = ()

    @classmethod
    def of(cls, **values: Any) -> TreeScope:
        """Build a scope from keyword arguments, keeping argument order."""
        return cls(values=tuple(values.values()), columns=tuple(values.keys()))

    @classmethod
    def for_model(cls, model: type[Any], values: Mapping[str, Any] | Sequence[Any] | TreeScope | None) -> TreeScope:
        """Normalise caller input into a scope bound to ``model``'s scope columns.

        Args:
            model: Model class declaring ``__scope_columns__``
            values: Mapping by column name, positional sequence, existing
                scope, or None for unscoped models

        Raises:
            InvalidOperationError: If values don't match the declared columns
        """
        columns: tuple[str, ...] = tuple(getattr(model, "__scope_columns__", ()))

        if isinstance(values, TreeScope):
            if values.columns and values.columns != columns:
                if set(values.columns) != set(columns):
                    raise InvalidOperationError(
                        f"Scope columns {values.columns!r} do not match {model.__name__} scope",
                        details={"expected": columns},
                    )
                mapped = dict(zip(values.columns, values.values, strict=True))
                return cls(values=tuple(mapped[c] for c in columns), columns=columns)
            values = values.values

        if values is None:
            values = ()

        if isinstance(values, Mapping):
            mapping = dict(values)
            missing = [c for c in columns if c not in mapping]
            extra = [k for k in mapping if k not in columns]
            if missing or extra:
                raise InvalidOperationError(
                    f"Invalid scope for {model.__name__}",
                    details={"missing": missing, "unexpected": extra},
                )
            return cls(values=tuple(mapping[c] for c in columns), columns=columns)

        seq = tuple(values)  # type: ignore[arg-type]
        if len(seq) != len(columns):
            raise InvalidOperationError(
                f"{model.__name__} scope expects {len(columns)} value(s), got {len(seq)}",
                details={"columns": columns},
            )
        return cls(values=seq, columns=columns)

    @classmethod
    def from_instance(cls, instance: Any) -> TreeScope:
        """Read the scope values off a model instance."""
        columns: tuple[str, ...] = tuple(getattr(type(instance), "__scope_columns__", ()))
        return cls(values=tuple(getattr(instance, c) for c in columns), columns=columns)

    @property
    def is_global(self) -> bool:
        return not self.columns

    def as_dict(self) -> dict[str, Any]:
        """Column name -> value mapping."""
        return dict(zip(self.columns, self.values, strict=True))

    def criteria(self, source: Any) -> list[ColumnElement[bool]]:
        """WHERE clauses restricting a query to this scope.

        ``source`` is a mapped class or a table column collection (``table.c``).
        """
        clauses: list[ColumnElement[bool]] = []
        for column, value in zip(self.columns, self.values, strict=True):
            attr = getattr(source, column)
            clauses.append(attr.is_(None) if value is None else attr == value)
        return clauses

    def matches(self, instance: Any) -> bool:
        """True when ``instance`` carries exactly this scope's values."""
        return all(getattr(instance, c) == v for c, v in zip(self.columns, self.values, strict=True))

    def apply_to(self, instance: Any) -> None:
        """Stamp this scope's values onto a new instance."""
        for column, value in zip(self.columns, self.values, strict=True):
            setattr(instance, column, value)

    def __str__(self) -> str:
        if self.is_global:
            return "<global>"
        return ",".join(f"{c}={v}" for c, v in zip(self.columns, self.values, strict=True))


GLOBAL_SCOPE = TreeScope()


__all__ = [
    "GLOBAL_SCOPE",
    "TreeScope",
]
