"""Node store gateway: scoped reads and bulk writes over the tree table.

All structural writes (shifts, parking, bulk boundary writes, deletes) use
SQLAlchemy Core statements against the model's table. They never go through
the ORM unit of work, so the identity map is not half-synchronised by bulk
updates; reads use ``populate_existing`` to refresh any instance the caller
already holds.

Every method takes the caller's ``AsyncSession``. Opening, committing and
rolling back the transaction is the caller's (or ``atomic``'s) job.
"""

from __future__ import annotations

import hashlib
import logging
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from opentelemetry import trace
from sqlalchemy import and_, bindparam, case, delete, func, or_, select, text, update
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import DBAPIError

from nested_tree.core.nestedset.exceptions import (
    ConcurrentModificationError,
    NotFoundError,
    ScopeMismatchError,
)
from nested_tree.core.nestedset.scope import TreeScope
from nested_tree.core.settings import get_tree_settings
from nested_tree.infra.database.session import atomic
from nested_tree.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Iterator, Sequence
    from datetime import datetime

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

    from nested_tree.core.nestedset.boundaries import BoundaryShift, Interval
    from nested_tree.core.settings.tree import TreeSettings

# SQLSTATE codes meaning "someone else holds the scope, try again"
_RETRYABLE_SQLSTATES = frozenset(
    {
        "40001",  # serialization_failure
        "40P01",  # deadlock_detected
        "55P03",  # lock_not_available (lock_timeout)
    }
)
_RETRYABLE_MESSAGES = (
    "database is locked",
    "deadlock",
    "lock wait timeout",
    "could not serialize access",
)

tracer = trace.get_tracer(__name__)


@dataclass(slots=True, frozen=True)
class NodeLink:
    """Structural projection of one row: identity, parent link, boundaries."""

    id: Any
    parent_id: Any
    lft: int | None
    rgt: int | None


T = TypeVar("T")


class NodeStoreGateway(Generic[T]):
    """Scoped persistence operations for one nested-set model.

    Provides:
        - read_node(session, id, scope) -> T (raises NotFoundError/ScopeMismatchError)
        - read_range(session, scope, lft_min, rgt_max) -> Sequence[T]
        - read_links(session, scope) -> list[NodeLink]
        - shift_boundaries(session, scope, shift) -> int
        - write_boundaries(session, rows) -> int
        - park_subtree / unpark_subtree for moves
        - lock_scope(session, scope) before any structural write
    """

    __slots__ = ("model", "settings", "table", "_pk", "_logger", "_lazy")

    def __init__(self, model: type[T], settings: TreeSettings | None = None) -> None:
        """Initialize gateway with model class.

        Args:
            model: SQLAlchemy model class mixing in NestedSetMixin
            settings: Tree settings (locking behaviour); loaded lazily if None
        """
        self.model = model
        self.settings = settings
        self.table = sa_inspect(model).local_table
        self._pk = sa_inspect(model).primary_key[0]
        self._logger = logging.getLogger(f"nested_tree.gateway.{model.__name__}")
        self._lazy = get_lazy_logger(f"nested_tree.gateway.{model.__name__}")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def model_name(self) -> str:
        return self.model.__name__

    @property
    def supports_soft_delete(self) -> bool:
        """True when the table carries a deleted_at marker column."""
        return "deleted_at" in self.table.c

    def scope_for(self, values: Any) -> TreeScope:
        """Normalise caller-supplied scope values for this model."""
        return TreeScope.for_model(self.model, values)

    def _scope_where(self, scope: TreeScope) -> list[ColumnElement[bool]]:
        return scope.criteria(self.table.c)

    def _active(self) -> list[ColumnElement[bool]]:
        if self.supports_soft_delete:
            return [self.table.c.deleted_at.is_(None)]
        return []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read_node(
        self,
        session: AsyncSession,
        node_id: Any,
        scope: TreeScope,
        *,
        with_deleted: bool = False,
    ) -> T:
        """Read one node inside a scope, refreshing any cached instance.

        Args:
            session: Database session
            node_id: Primary key value
            scope: Scope the node must belong to
            with_deleted: Also return soft-deleted rows

        Returns:
            Model instance with current boundaries

        Raises:
            NotFoundError: If the id is absent from the scope
            ScopeMismatchError: If the id exists in another scope
        """
        stmt = (
            select(self.model)
            .where(self._pk == node_id, *self._scope_where(scope))
            .execution_options(populate_existing=True)
        )
        if not with_deleted:
            stmt = stmt.where(*self._active())

        result = await session.execute(stmt)
        instance = result.scalar_one_or_none()
        if instance is None:
            await self._raise_missing(session, node_id, scope)

        self._lazy.debug(
            lambda: f"tree.read_node: {self.model_name}({node_id}) -> [{instance.lft}, {instance.rgt}]"  # type: ignore[attr-defined]
        )
        return instance  # type: ignore[return-value]

    async def _raise_missing(self, session: AsyncSession, node_id: Any, scope: TreeScope) -> None:
        """Raise the most precise error for a node that was not found in scope."""
        stmt = select(self.model).where(self._pk == node_id)
        result = await session.execute(stmt)
        other = result.scalar_one_or_none()
        if other is not None:
            actual = TreeScope.from_instance(other)
            if actual.values != scope.values:
                raise ScopeMismatchError(self.model_name, node_id, scope.as_dict(), actual.as_dict())
            self._logger.info(
                "Node is soft-deleted",
                extra={"entity": self.model_name, "id": str(node_id), "operation": "tree.read_node"},
            )
            raise NotFoundError(self.model_name, {"id": node_id, "deleted": True})

        self._logger.info(
            "Node not found",
            extra={"entity": self.model_name, "id": str(node_id), "operation": "tree.read_node"},
        )
        raise NotFoundError(self.model_name, {"id": node_id})

    async def read_range(
        self,
        session: AsyncSession,
        scope: TreeScope,
        lft_min: int,
        rgt_max: int,
        *,
        with_deleted: bool = True,
    ) -> Sequence[T]:
        """Rows whose interval falls fully or partially in ``[lft_min, rgt_max]``.

        Returns:
            Rows ordered by lft ascending
        """
        c = self.table.c
        stmt = (
            select(self.model)
            .where(*self._scope_where(scope), c.lft <= rgt_max, c.rgt >= lft_min)
            .order_by(c.lft)
            .execution_options(populate_existing=True)
        )
        if not with_deleted:
            stmt = stmt.where(*self._active())
        result = await session.execute(stmt)
        rows = result.scalars().all()

        self._lazy.debug(
            lambda: f"tree.read_range: {self.model_name}[{lft_min}, {rgt_max}] scope={scope} -> {len(rows)} rows"
        )
        return rows

    async def read_links(self, session: AsyncSession, scope: TreeScope) -> list[NodeLink]:
        """Structural projection of every row in the scope (soft-deleted included).

        Returns:
            NodeLink per row, ordered by lft then id (rows lacking boundaries last)
        """
        c = self.table.c
        stmt = (
            select(self._pk, c.parent_id, c.lft, c.rgt)
            .where(*self._scope_where(scope))
            .order_by(c.lft.is_(None), c.lft, self._pk)
        )
        result = await session.execute(stmt)
        links = [NodeLink(id=row[0], parent_id=row[1], lft=row[2], rgt=row[3]) for row in result.all()]

        self._lazy.debug(lambda: f"tree.read_links: {self.model_name} scope={scope} -> {len(links)} rows")
        return links

    async def read_scopes(self, session: AsyncSession) -> list[TreeScope]:
        """Every distinct scope present in the table."""
        columns: tuple[str, ...] = tuple(getattr(self.model, "__scope_columns__", ()))
        if not columns:
            return [TreeScope()]
        stmt = select(*(self.table.c[col] for col in columns)).distinct()
        result = await session.execute(stmt)
        return [TreeScope(values=tuple(row), columns=columns) for row in result.all()]

    async def max_rgt(self, session: AsyncSession, scope: TreeScope) -> int | None:
        """Highest right boundary in the scope (parked subtrees ignored)."""
        c = self.table.c
        stmt = select(func.max(c.rgt)).where(*self._scope_where(scope), c.rgt > 0)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def count_roots(self, session: AsyncSession, scope: TreeScope) -> int:
        """Number of root rows in the scope (soft-deleted included)."""
        stmt = (
            select(func.count())
            .select_from(self.table)
            .where(*self._scope_where(scope), self.table.c.parent_id.is_(None))
        )
        return (await session.execute(stmt)).scalar_one()

    async def read_ids(self, session: AsyncSession, ids: Iterable[Any]) -> dict[Any, TreeScope]:
        """Scope of each existing id (any scope), for reference validation."""
        ids_list = list(ids)
        if not ids_list:
            return {}
        columns: tuple[str, ...] = tuple(getattr(self.model, "__scope_columns__", ()))
        stmt = select(self._pk, *(self.table.c[col] for col in columns)).where(self._pk.in_(ids_list))
        result = await session.execute(stmt)
        return {row[0]: TreeScope(values=tuple(row[1:]), columns=columns) for row in result.all()}

    # ------------------------------------------------------------------
    # Structural writes
    # ------------------------------------------------------------------

    async def shift_boundaries(self, session: AsyncSession, scope: TreeScope, shift: BoundaryShift) -> int:
        """Apply a boundary shift to every row of the scope in one UPDATE.

        Both boundaries are tested independently, so an ancestor whose rgt
        lies past the threshold grows while its lft stays put.

        Returns:
            Number of rows touched
        """
        if shift.is_noop:
            return 0

        c = self.table.c
        threshold, delta = shift.threshold, shift.delta
        stmt = (
            update(self.table)
            .where(*self._scope_where(scope), or_(c.lft >= threshold, c.rgt >= threshold))
            .values(
                lft=case((c.lft >= threshold, c.lft + delta), else_=c.lft),
                rgt=case((c.rgt >= threshold, c.rgt + delta), else_=c.rgt),
            )
        )
        result = await session.execute(stmt)
        touched: int = result.rowcount

        self._lazy.debug(
            lambda: f"tree.shift: {self.model_name} scope={scope} >= {threshold} by {delta:+d} -> {touched} rows"
        )
        return touched

    async def shift_outside(
        self,
        session: AsyncSession,
        scope: TreeScope,
        shift: BoundaryShift,
        exclude_ids: Iterable[Any],
    ) -> int:
        """Like ``shift_boundaries`` but leaves the given rows untouched."""
        if shift.is_noop:
            return 0
        excluded = list(exclude_ids)
        c = self.table.c
        threshold, delta = shift.threshold, shift.delta
        stmt = (
            update(self.table)
            .where(*self._scope_where(scope), or_(c.lft >= threshold, c.rgt >= threshold))
            .values(
                lft=case((c.lft >= threshold, c.lft + delta), else_=c.lft),
                rgt=case((c.rgt >= threshold, c.rgt + delta), else_=c.rgt),
            )
        )
        if excluded:
            stmt = stmt.where(self._pk.not_in(excluded))
        result = await session.execute(stmt)
        return result.rowcount

    async def park_subtree(self, session: AsyncSession, scope: TreeScope, interval: Interval) -> int:
        """Negate the boundaries of a subtree so subsequent shifts skip it.

        Parked rows only exist inside an open move transaction.
        """
        c = self.table.c
        stmt = (
            update(self.table)
            .where(*self._scope_where(scope), c.lft >= interval.lft, c.rgt <= interval.rgt)
            .values(lft=-c.lft, rgt=-c.rgt)
        )
        result = await session.execute(stmt)
        return result.rowcount

    async def unpark_subtree(self, session: AsyncSession, scope: TreeScope, delta: int) -> int:
        """Restore parked boundaries, offset by ``delta``."""
        c = self.table.c
        stmt = (
            update(self.table)
            .where(*self._scope_where(scope), c.lft < 0)
            .values(lft=-c.lft + delta, rgt=-c.rgt + delta)
        )
        result = await session.execute(stmt)
        return result.rowcount

    async def write_boundaries(self, session: AsyncSession, rows: Sequence[dict[str, Any]]) -> int:
        """Bulk UPDATE of lft/rgt/parent_id by primary key.

        Args:
            session: Database session
            rows: Dicts with ``id``, ``lft``, ``rgt`` and ``parent_id`` keys

        Returns:
            Number of rows written
        """
        if not rows:
            return 0
        stmt = (
            update(self.table)
            .where(self._pk == bindparam("b_id"))
            .values(
                lft=bindparam("b_lft"),
                rgt=bindparam("b_rgt"),
                parent_id=bindparam("b_parent_id"),
            )
        )
        params = [
            {"b_id": row["id"], "b_lft": row["lft"], "b_rgt": row["rgt"], "b_parent_id": row["parent_id"]}
            for row in rows
        ]
        await session.execute(stmt, params)

        self._lazy.debug(lambda: f"tree.write_boundaries: {self.model_name} -> {len(params)} rows")
        return len(params)

    async def update_parent(self, session: AsyncSession, node_id: Any, parent_id: Any) -> None:
        """Point one node at a new parent."""
        stmt = update(self.table).where(self._pk == node_id).values(parent_id=parent_id)
        await session.execute(stmt)

    async def insert_node(self, session: AsyncSession, instance: T) -> T:
        """Persist a new node whose boundaries are already assigned."""
        session.add(instance)
        await session.flush()
        await session.refresh(instance)
        return instance

    async def delete_range(self, session: AsyncSession, scope: TreeScope, interval: Interval) -> list[Any]:
        """Hard-delete every row inside ``interval`` (soft-deleted included).

        Deleted instances are expunged from the session so they cannot be
        flushed back by accident.

        Returns:
            Ids of the removed rows
        """
        c = self.table.c
        in_range = and_(*self._scope_where(scope), c.lft >= interval.lft, c.rgt <= interval.rgt)
        ids = list((await session.execute(select(self._pk).where(in_range))).scalars().all())
        if ids:
            await session.execute(delete(self.table).where(in_range))
            self._evict(session, ids)
        return ids

    async def delete_ids(self, session: AsyncSession, ids: Iterable[Any]) -> int:
        """Hard-delete rows by id without any boundary bookkeeping."""
        ids_list = list(ids)
        if not ids_list:
            return 0
        result = await session.execute(delete(self.table).where(self._pk.in_(ids_list)))
        self._evict(session, ids_list)
        return result.rowcount

    def _evict(self, session: AsyncSession, ids: Iterable[Any]) -> None:
        gone = set(ids)
        for instance in list(session.identity_map.values()):
            if isinstance(instance, self.model):
                identity = sa_inspect(instance).identity
                if identity and identity[0] in gone:
                    session.expunge(instance)

    async def mark_deleted(
        self,
        session: AsyncSession,
        scope: TreeScope,
        interval: Interval,
        deleted_at: datetime,
        deleted_by: str | None = None,
    ) -> int:
        """Stamp the soft-delete marker on every not-yet-deleted row of a subtree."""
        c = self.table.c
        values: dict[str, Any] = {"deleted_at": deleted_at}
        if "deleted_by" in c:
            values["deleted_by"] = deleted_by
        stmt = (
            update(self.table)
            .where(
                *self._scope_where(scope),
                c.lft >= interval.lft,
                c.rgt <= interval.rgt,
                c.deleted_at.is_(None),
            )
            .values(**values)
        )
        result = await session.execute(stmt)
        return result.rowcount

    async def clear_deleted(
        self,
        session: AsyncSession,
        scope: TreeScope,
        interval: Interval,
        batch: datetime,
    ) -> int:
        """Clear the soft-delete marker on subtree rows deleted in ``batch``."""
        c = self.table.c
        values: dict[str, Any] = {"deleted_at": None}
        if "deleted_by" in c:
            values["deleted_by"] = None
        stmt = (
            update(self.table)
            .where(
                *self._scope_where(scope),
                c.lft >= interval.lft,
                c.rgt <= interval.rgt,
                c.deleted_at == batch,
            )
            .values(**values)
        )
        result = await session.execute(stmt)
        return result.rowcount

    async def read_deleted_at(self, session: AsyncSession, node_id: Any) -> datetime | None:
        """Stored deletion marker of one row, as the database returns it."""
        stmt = select(self.table.c.deleted_at).where(self._pk == node_id)
        return (await session.execute(stmt)).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Concurrency
    # ------------------------------------------------------------------

    def lock_key(self, scope: TreeScope) -> int:
        """Stable signed 64-bit advisory lock key for (table, scope)."""
        raw = f"{self.table.name}:{scope.values!r}".encode()
        digest = hashlib.blake2b(raw, digest_size=8).digest()
        return int.from_bytes(digest, "big", signed=True)

    async def lock_scope(self, session: AsyncSession, scope: TreeScope) -> None:
        """Serialise structural mutations on one scope until commit.

        PostgreSQL takes a transaction-level advisory lock (released on
        commit/rollback) after setting the lock wait timeout. Other dialects
        lock the scope's rows with SELECT ... FOR UPDATE where supported.
        """
        settings = self._settings()
        dialect = session.get_bind().dialect.name

        if dialect == "postgresql" and settings.use_advisory_locks:
            if settings.lock_timeout_ms:
                await session.execute(text(f"SET LOCAL lock_timeout = {int(settings.lock_timeout_ms)}"))
            await session.execute(select(func.pg_advisory_xact_lock(self.lock_key(scope))))
        else:
            stmt = select(self._pk).where(*self._scope_where(scope)).with_for_update()
            await session.execute(stmt)

        self._lazy.debug(lambda: f"tree.lock_scope: {self.model_name} scope={scope} ({dialect})")

    @asynccontextmanager
    async def mutation(self, session: AsyncSession, scope: TreeScope, operation: str) -> AsyncIterator[None]:
        """Unit of work for one structural operation on a scope.

        Opens a span named ``operation``, runs the block in ``atomic`` (own
        transaction or savepoint) after taking the scope lock, and maps
        lock/serialization failures to ConcurrentModificationError.
        """
        with (
            tracer.start_as_current_span(
                operation,
                kind=trace.SpanKind.INTERNAL,
                attributes={"tree.model": self.model_name, "tree.scope": str(scope)},
            ),
            self.translate_errors(operation),
        ):
            async with atomic(session):
                await self.lock_scope(session, scope)
                yield

    @contextmanager
    def translate_errors(self, operation: str) -> Iterator[None]:
        """Map lock timeouts and serialization failures to ConcurrentModificationError."""
        try:
            yield
        except DBAPIError as exc:
            if not _is_retryable(exc):
                raise
            self._logger.warning(
                "Concurrent modification detected",
                extra={"entity": self.model_name, "operation": operation, "error": str(exc.orig)},
            )
            raise ConcurrentModificationError(
                f"{operation} on {self.model_name} conflicted with a concurrent transaction",
                details={"operation": operation},
            ) from exc

    def _settings(self) -> TreeSettings:
        if self.settings is None:
            self.settings = get_tree_settings()
        return self.settings


def _is_retryable(exc: DBAPIError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True
    message = str(orig).lower()
    return any(fragment in message for fragment in _RETRYABLE_MESSAGES)


__all__ = [
    "NodeLink",
    "NodeStoreGateway",
]
