"""Unit tests for boundary computation and bulk rebuilds."""

from __future__ import annotations

import pytest

from nested_tree.core.nestedset import (
    CycleError,
    Interval,
    InvalidOperationError,
    NotFoundError,
    ScopeMismatchError,
    compute_boundaries,
)
from nested_tree.core.nestedset.builder import changed_rows, entry_link
from nested_tree.core.nestedset.gateway import NodeLink
from tests.fixtures.models import MenuItem
from tests.utils import build_tree, tree_layout


@pytest.mark.unit
class TestComputeBoundaries:
    """Test suite for the pure pre-order numbering."""

    def test_numbers_in_input_order(self):
        intervals = compute_boundaries([(1, None), (2, 1), (3, 1), (4, 3)])

        assert intervals == {
            1: Interval(1, 8),
            2: Interval(2, 3),
            3: Interval(4, 7),
            4: Interval(5, 6),
        }

    def test_children_before_parent_in_input(self):
        intervals = compute_boundaries([(2, 1), (1, None)])
        assert intervals == {1: Interval(1, 4), 2: Interval(2, 3)}

    def test_multiple_roots_and_start(self):
        intervals = compute_boundaries([(1, None), (2, None)], start=5)
        assert intervals == {1: Interval(5, 6), 2: Interval(7, 8)}

    def test_unknown_parent_becomes_root(self):
        assert compute_boundaries([(1, 99)]) == {1: Interval(1, 2)}

    def test_cycle_detected(self):
        with pytest.raises(CycleError) as exc_info:
            compute_boundaries([(1, None), (2, 3), (3, 2)])
        assert set(exc_info.value.node_ids) == {2, 3}

    def test_duplicate_id_rejected(self):
        with pytest.raises(InvalidOperationError):
            compute_boundaries([(1, None), (1, None)])

    def test_accepts_node_links(self):
        links = [NodeLink(1, None, 10, 20), NodeLink(2, 1, None, None)]
        assert compute_boundaries(links) == {1: Interval(1, 4), 2: Interval(2, 3)}

    def test_deep_chain_does_not_recurse(self):
        depth = 5000
        links = [(0, None)] + [(i, i - 1) for i in range(1, depth)]

        intervals = compute_boundaries(links)

        assert intervals[0] == Interval(1, 2 * depth)
        assert intervals[depth - 1] == Interval(depth, depth + 1)

    def test_entry_link_accepts_objects_and_mappings(self):
        assert entry_link({"id": 3, "parent_id": 1}) == (3, 1)
        assert entry_link({"id": 3}) == (3, None)
        assert entry_link(MenuItem(id=5, parent_id=2)) == (5, 2)
        with pytest.raises(InvalidOperationError):
            entry_link({"parent_id": 1})

    def test_changed_rows_skips_unchanged(self):
        intervals = {1: Interval(1, 4), 2: Interval(2, 3)}
        links = {1: NodeLink(1, None, 1, 4), 2: NodeLink(2, 1, 5, 6)}

        rows = changed_rows(intervals, {1: None, 2: 1}, links)

        assert rows == [{"id": 2, "lft": 2, "rgt": 3, "parent_id": 1}]


@pytest.mark.unit
class TestRebuildTree:
    """Test suite for rebuild_tree and flatten."""

    @pytest.mark.asyncio
    async def test_flatten_round_trips(self, db_session, categories, shop_tree):
        flat = await categories.flatten(db_session)

        changed = await categories.rebuild_tree(db_session, flat)

        assert changed == 0
        assert flat[0] == {"id": shop_tree["Shop"].id, "parent_id": None}

    @pytest.mark.asyncio
    async def test_rebuild_reorders_and_reparents(self, db_session, categories, abc_tree):
        a, b, c = abc_tree["A"].id, abc_tree["B"].id, abc_tree["C"].id

        changed = await categories.rebuild_tree(
            db_session,
            [{"id": a, "parent_id": None}, {"id": c, "parent_id": a}, {"id": b, "parent_id": c}],
        )

        assert changed == 2
        assert await tree_layout(categories, db_session) == {
            "A": (1, 6, None),
            "C": (2, 5, "A"),
            "B": (3, 4, "C"),
        }

    @pytest.mark.asyncio
    async def test_unlisted_rows_follow_listed_siblings(self, db_session, categories, abc_tree):
        a, c = abc_tree["A"].id, abc_tree["C"].id

        await categories.rebuild_tree(db_session, [{"id": a, "parent_id": None}, {"id": c, "parent_id": a}])

        assert await tree_layout(categories, db_session) == {
            "A": (1, 6, None),
            "C": (2, 3, "A"),
            "B": (4, 5, "A"),
        }

    @pytest.mark.asyncio
    async def test_delete_missing(self, db_session, categories, abc_tree):
        a, c = abc_tree["A"].id, abc_tree["C"].id

        await categories.rebuild_tree(
            db_session,
            [{"id": a, "parent_id": None}, {"id": c, "parent_id": a}],
            delete_missing=True,
        )

        assert await tree_layout(categories, db_session) == {"A": (1, 4, None), "C": (2, 3, "A")}

    @pytest.mark.asyncio
    async def test_cycle_rejected_without_writes(self, db_session, categories, abc_tree):
        a, b, c = abc_tree["A"].id, abc_tree["B"].id, abc_tree["C"].id
        before = await tree_layout(categories, db_session)

        with pytest.raises(CycleError):
            await categories.rebuild_tree(
                db_session,
                [{"id": a, "parent_id": None}, {"id": b, "parent_id": c}, {"id": c, "parent_id": b}],
            )

        assert await tree_layout(categories, db_session) == before

    @pytest.mark.asyncio
    async def test_unknown_ids_rejected(self, db_session, categories, abc_tree):
        with pytest.raises(NotFoundError):
            await categories.rebuild_tree(db_session, [{"id": 777, "parent_id": None}])
        with pytest.raises(NotFoundError):
            await categories.rebuild_tree(db_session, [{"id": abc_tree["B"].id, "parent_id": 777}])

    @pytest.mark.asyncio
    async def test_ids_from_other_scope_rejected(self, db_session, menus, acme_menu):
        with pytest.raises(ScopeMismatchError):
            await menus.rebuild_tree(
                db_session,
                [{"id": acme_menu["Home"].id, "parent_id": None}],
                scope={"tenant_id": "globex"},
            )

    @pytest.mark.asyncio
    async def test_parent_from_other_scope_rejected(self, db_session, menus, acme_menu):
        globex = await build_tree(menus, db_session, [("Main", None)], scope={"tenant_id": "globex"})
        before = await tree_layout(menus, db_session, scope={"tenant_id": "acme"})

        with pytest.raises(ScopeMismatchError) as exc_info:
            await menus.rebuild_tree(
                db_session,
                [{"id": acme_menu["Home"].id, "parent_id": globex["Main"].id}],
                scope={"tenant_id": "acme"},
            )

        assert exc_info.value.details["actual"] == {"tenant_id": "globex"}
        assert await tree_layout(menus, db_session, scope={"tenant_id": "acme"}) == before

    @pytest.mark.asyncio
    async def test_unlisted_parent_with_delete_missing_is_not_found(self, db_session, categories, abc_tree):
        with pytest.raises(NotFoundError) as exc_info:
            await categories.rebuild_tree(
                db_session,
                [{"id": abc_tree["B"].id, "parent_id": abc_tree["A"].id}],
                delete_missing=True,
            )

        assert exc_info.value.details["child_id"] == abc_tree["B"].id


@pytest.mark.unit
class TestRebuildSubtree:
    """Test suite for rebuild_subtree."""

    @pytest.mark.asyncio
    async def test_reorder_children_keeps_width(self, db_session, categories, shop_tree):
        books, fiction, science = (shop_tree[k].id for k in ("Books", "Fiction", "Science"))

        changed = await categories.rebuild_subtree(
            db_session,
            books,
            [{"id": science, "parent_id": None}, {"id": fiction, "parent_id": None}],
        )

        assert changed == 2
        layout = await tree_layout(categories, db_session)
        assert layout["Science"] == (3, 4, "Books")
        assert layout["Fiction"] == (5, 6, "Books")
        assert layout["Music"] == (8, 11, "Shop")

    @pytest.mark.asyncio
    async def test_delete_missing_shrinks_scope(self, db_session, categories, shop_tree):
        books, science = shop_tree["Books"].id, shop_tree["Science"].id

        await categories.rebuild_subtree(db_session, books, [{"id": science, "parent_id": None}], delete_missing=True)

        layout = await tree_layout(categories, db_session)
        assert "Fiction" not in layout
        assert layout["Books"] == (2, 5, "Shop")
        assert layout["Science"] == (3, 4, "Books")
        assert layout["Music"] == (6, 9, "Shop")
        assert layout["Shop"] == (1, 12, None)
        assert layout["Archive"] == (13, 14, None)
        assert (await categories.count_errors(db_session)).total == 0

    @pytest.mark.asyncio
    async def test_nested_entries(self, db_session, categories, shop_tree):
        books, fiction, science = (shop_tree[k].id for k in ("Books", "Fiction", "Science"))

        await categories.rebuild_subtree(
            db_session,
            books,
            [{"id": fiction, "parent_id": None}, {"id": science, "parent_id": fiction}],
        )

        layout = await tree_layout(categories, db_session)
        assert layout["Fiction"] == (3, 6, "Books")
        assert layout["Science"] == (4, 5, "Fiction")

    @pytest.mark.asyncio
    async def test_entry_outside_subtree_rejected(self, db_session, categories, shop_tree):
        with pytest.raises(InvalidOperationError):
            await categories.rebuild_subtree(
                db_session,
                shop_tree["Books"].id,
                [{"id": shop_tree["Jazz"].id, "parent_id": None}],
            )

    @pytest.mark.asyncio
    async def test_root_cannot_be_listed(self, db_session, categories, shop_tree):
        with pytest.raises(InvalidOperationError):
            await categories.rebuild_subtree(
                db_session,
                shop_tree["Books"].id,
                [{"id": shop_tree["Books"].id, "parent_id": None}],
            )

    @pytest.mark.asyncio
    async def test_scoped_subtree(self, db_session, menus, acme_menu):
        scope = {"tenant_id": "acme"}
        globex = await build_tree(menus, db_session, [("Main", None), ("Home", "Main")], scope={"tenant_id": "globex"})

        await menus.rebuild_subtree(
            db_session,
            acme_menu["Main"].id,
            [{"id": acme_menu["About"].id}, {"id": acme_menu["Home"].id}],
            scope=scope,
        )

        layout = await tree_layout(menus, db_session, scope=scope)
        assert layout["About"] == (2, 5, "Main")
        assert layout["Team"] == (3, 4, "About")
        assert layout["Home"] == (6, 7, "Main")
        other = await menus.get(db_session, globex["Home"].id, scope={"tenant_id": "globex"})
        assert (other.lft, other.rgt) == (2, 3)
