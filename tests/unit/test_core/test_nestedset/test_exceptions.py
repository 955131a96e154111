"""Unit tests for tree exception types."""

from __future__ import annotations

import pytest

from nested_tree.core.nestedset import (
    ConcurrentModificationError,
    CorruptionDetected,
    CycleError,
    NotFoundError,
    ScopeMismatchError,
    TreeError,
    TreeErrorReport,
)
from nested_tree.utils.retry import is_retryable


@pytest.mark.unit
class TestTreeExceptions:
    """Test suite for exception messages and context."""

    def test_tree_error_formats_details(self):
        error = TreeError("Boom", details={"id": 3})

        assert str(error) == "Boom (id=3)"
        assert str(TreeError("Plain")) == "Plain"

    def test_not_found_message(self):
        error = NotFoundError("Category", {"id": 42})

        assert str(error).startswith("Category not found with id=42")
        assert error.details == {"model": "Category", "id": 42}
        assert repr(error) == "NotFoundError(model='Category', identifier={'id': 42})"

    def test_scope_mismatch_keeps_both_scopes(self):
        error = ScopeMismatchError("MenuItem", 7, {"tenant_id": "a"}, {"tenant_id": "b"})

        assert error.node_id == 7
        assert error.details == {"expected": {"tenant_id": "a"}, "actual": {"tenant_id": "b"}}

    def test_cycle_error_node_ids(self):
        assert CycleError("loop", node_ids=[1, 2]).details == {"node_ids": [1, 2]}
        assert CycleError("loop").details == {}

    def test_corruption_carries_report(self):
        error = CorruptionDetected(TreeErrorReport(duplicates=2), scope={"tenant_id": "acme"})

        assert error.report.duplicates == 2
        assert error.details["scope"] == {"tenant_id": "acme"}
        assert isinstance(error, TreeError)

    def test_only_concurrency_errors_are_retryable(self):
        assert is_retryable(ConcurrentModificationError("lock timeout"))
        assert not is_retryable(NotFoundError("Category", {"id": 1}))
        assert not is_retryable(CycleError("loop"))
