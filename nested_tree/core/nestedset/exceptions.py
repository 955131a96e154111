"""Nested-set tree exceptions.

Custom exceptions for tree operations that carry enough context
(node ids, scope values, counts) to be logged or surfaced directly,
instead of leaking raw SQLAlchemy/driver errors to callers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from nested_tree.core.nestedset.validator import TreeErrorReport


class TreeError(Exception):
    """Base exception for nested-set tree operations.

    Attributes:
        message: Error description
        details: Additional context about the error
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize tree error.

        Args:
            message: Error description
            details: Additional context about the error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Format error message with details."""
        if self.details:
            details_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class NotFoundError(TreeError):
    """Referenced node or parent is absent from the scope.

    Surfaced to the caller, never retried.

    Attributes:
        model_name: Name of the model class that wasn't found
        identifier: The key/value that was searched for
    """

    def __init__(self, model_name: str, identifier: dict[str, Any]):
        """Initialize not found error.

        Args:
            model_name: Name of the model (e.g., "Category")
            identifier: Key-value pairs used in the search (e.g., {"id": 123})
        """
        self.model_name = model_name
        self.identifier = identifier

        id_str = ", ".join(f"{k}={v!r}" for k, v in identifier.items())
        message = f"{model_name} not found with {id_str}"

        super().__init__(message, details={"model": model_name, **identifier})

    def __repr__(self) -> str:
        """Repr for debugging."""
        return f"NotFoundError(model={self.model_name!r}, identifier={self.identifier!r})"


class ScopeMismatchError(TreeError):
    """A node, parent or sibling reference crosses tree scopes.

    Raised when the referenced row exists but belongs to a different
    scope than the one the operation runs in.
    """

    def __init__(self, model_name: str, node_id: Any, expected: Any, actual: Any):
        """Initialize scope mismatch error.

        Args:
            model_name: Name of the model
            node_id: Id of the offending node
            expected: Scope the operation runs in
            actual: Scope the node actually belongs to
        """
        self.model_name = model_name
        self.node_id = node_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{model_name} {node_id!r} belongs to another scope",
            details={"expected": expected, "actual": actual},
        )


class CycleError(TreeError):
    """Operation would make a node its own ancestor.

    Raised by move (target inside the moved subtree) and by rebuilds whose
    input parent links contain a cycle. Input is rejected before any write.
    """

    def __init__(self, message: str, node_ids: list[Any] | None = None):
        """Initialize cycle error.

        Args:
            message: Error description
            node_ids: Ids of the nodes involved in the cycle
        """
        self.node_ids = list(node_ids or [])
        details = {"node_ids": self.node_ids} if self.node_ids else {}
        super().__init__(message, details=details)


class ConcurrentModificationError(TreeError):
    """Lock wait timeout or serialization failure during a mutation.

    The transaction guarantees no partial effect, so the whole operation is
    safe to retry from scratch.
    """

    retryable = True


class CorruptionDetected(TreeError):
    """Validator found invariant violations in a scope.

    Only produced by the validator, never by mutation paths. Non-fatal:
    the tree stays as is until ``fix_tree``/``fix_subtree`` is called.

    Attributes:
        report: Error counts per check
    """

    def __init__(self, report: TreeErrorReport, scope: Any = None):
        """Initialize corruption error.

        Args:
            report: Error counts produced by the validator
            scope: Scope that was validated
        """
        self.report = report
        self.scope = scope
        details: dict[str, Any] = dict(report.as_dict())
        if scope is not None:
            details["scope"] = scope
        super().__init__("Nested set tree is broken", details=details)


class InvalidOperationError(TreeError):
    """Requested operation is not valid for the current tree shape or model.

    Examples: a second root in a single-root scope, soft delete on a model
    without a deletion marker, rebuild entries outside the rebuilt subtree.
    """


__all__ = [
    "ConcurrentModificationError",
    "CorruptionDetected",
    "CycleError",
    "InvalidOperationError",
    "NotFoundError",
    "ScopeMismatchError",
    "TreeError",
]
