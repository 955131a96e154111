"""Unit tests for TreeScope and the NestedSetMixin predicates."""

from __future__ import annotations

import pytest

from nested_tree.core.nestedset import InvalidOperationError, TreeScope
from tests.fixtures.models import Category, MenuItem


@pytest.mark.unit
class TestTreeScope:
    """Test suite for TreeScope normalisation."""

    def test_unscoped_model_gets_global_scope(self):
        scope = TreeScope.for_model(Category, None)
        assert scope.is_global
        assert str(scope) == "<global>"
        assert scope.criteria(Category) == []

    def test_mapping_input(self):
        scope = TreeScope.for_model(MenuItem, {"tenant_id": "acme"})
        assert scope.values == ("acme",)
        assert scope.columns == ("tenant_id",)
        assert scope.as_dict() == {"tenant_id": "acme"}
        assert str(scope) == "tenant_id=acme"

    def test_positional_input(self):
        assert TreeScope.for_model(MenuItem, ["acme"]).values == ("acme",)

    def test_existing_scope_is_rebound(self):
        scope = TreeScope.of(tenant_id="acme")
        assert TreeScope.for_model(MenuItem, scope) == TreeScope(("acme",), ("tenant_id",))

    def test_missing_key_rejected(self):
        with pytest.raises(InvalidOperationError) as exc_info:
            TreeScope.for_model(MenuItem, {"tenant": "acme"})
        assert exc_info.value.details["missing"] == ["tenant_id"]
        assert exc_info.value.details["unexpected"] == ["tenant"]

    def test_scoped_model_requires_values(self):
        with pytest.raises(InvalidOperationError):
            TreeScope.for_model(MenuItem, None)

    def test_unscoped_model_rejects_values(self):
        with pytest.raises(InvalidOperationError):
            TreeScope.for_model(Category, {"tenant_id": "acme"})

    def test_scopes_are_hashable(self):
        first = TreeScope.for_model(MenuItem, {"tenant_id": "acme"})
        second = TreeScope.for_model(MenuItem, ["acme"])
        assert {first: 1}[second] == 1

    def test_apply_and_match(self):
        scope = TreeScope.for_model(MenuItem, {"tenant_id": "acme"})
        item = MenuItem(label="Home")
        scope.apply_to(item)
        assert item.tenant_id == "acme"
        assert scope.matches(item)
        assert TreeScope.from_instance(item) == scope

    def test_null_scope_value_uses_is_null(self):
        scope = TreeScope.for_model(MenuItem, {"tenant_id": None})
        (clause,) = scope.criteria(MenuItem)
        assert "IS NULL" in str(clause)


@pytest.mark.unit
class TestMixinPredicates:
    """In-memory predicates never touch the database."""

    def test_root_leaf_and_interval(self):
        node = Category(name="A", lft=1, rgt=6, parent_id=None)
        assert node.is_root
        assert not node.is_leaf
        assert node.descendant_count == 2
        assert node.interval.width == 6

    def test_descendant_and_ancestor(self):
        parent = Category(name="A", lft=1, rgt=6)
        child = Category(name="B", lft=2, rgt=3, parent_id=1)
        assert child.is_descendant_of(parent)
        assert parent.is_ancestor_of(child)
        assert not parent.is_descendant_of(parent)

    def test_different_scopes_are_unrelated(self):
        parent = MenuItem(label="Main", tenant_id="acme", lft=1, rgt=6)
        child = MenuItem(label="Home", tenant_id="globex", lft=2, rgt=3)
        assert not child.is_descendant_of(parent)

    def test_nested_set_index_covers_scope(self):
        index = next(ix for ix in MenuItem.__table__.indexes if ix.name == "ix_menu_items_nested_set")
        assert [c.name for c in index.columns] == ["tenant_id", "lft", "rgt"]
