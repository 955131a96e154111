"""Helpers for building and inspecting trees in tests."""

from __future__ import annotations

from typing import Any

from sqlalchemy import update

from nested_tree.core.nestedset import NestedSetEngine


def _label(node: Any) -> str:
    return getattr(node, "name", None) or node.label


async def build_tree(
    engine: NestedSetEngine[Any],
    session: Any,
    shape: list[tuple[str, str | None]],
    *,
    scope: Any = None,
) -> dict[str, Any]:
    """Create nodes from ``(label, parent_label)`` pairs, appending in order.

    Example:
        nodes = await build_tree(engine, session, [("A", None), ("B", "A"), ("C", "A")])
    """
    attr = "name" if hasattr(engine.model, "name") else "label"
    nodes: dict[str, Any] = {}
    for label, parent in shape:
        node = engine.model(**{attr: label})
        if parent is None:
            nodes[label] = await engine.create_root(session, node, scope=scope)
        else:
            nodes[label] = await engine.append_child(session, nodes[parent].id, node, scope=scope)
    return nodes


async def tree_layout(engine: NestedSetEngine[Any], session: Any, *, scope: Any = None) -> dict[str, tuple]:
    """``{label: (lft, rgt, parent_label)}`` for every row of the scope, deleted included."""
    rows = await engine.whole_tree(session, scope=scope, with_deleted=True)
    by_id = {row.id: row for row in rows}
    return {
        _label(row): (row.lft, row.rgt, _label(by_id[row.parent_id]) if row.parent_id in by_id else row.parent_id)
        for row in rows
    }


def labels(nodes: list[Any]) -> list[str]:
    return [_label(node) for node in nodes]


async def corrupt(session: Any, model: type[Any], node_id: Any, **values: Any) -> None:
    """Overwrite columns of one row behind the engine's back."""
    table = model.__table__
    await session.execute(update(table).where(table.c.id == node_id).values(**values))


async def assert_contiguous(engine: NestedSetEngine[Any], session: Any, *, scope: Any = None) -> None:
    """Boundaries of the scope are exactly ``1..2N`` and every check passes."""
    rows = await engine.whole_tree(session, scope=scope, with_deleted=True)
    boundaries = sorted([row.lft for row in rows] + [row.rgt for row in rows])
    assert boundaries == list(range(1, 2 * len(rows) + 1))
    assert (await engine.count_errors(session, scope=scope)).total == 0
