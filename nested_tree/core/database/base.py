"""Declarative base and composable mixins for tree models.

This module provides the foundation for SQLAlchemy models stored by the
nested-set engine:
- Integer primary keys
- Timestamp tracking (created_at, updated_at)
- Soft delete support (deleted_at, deleted_by)
- Tenant column usable as a tree scope
- Automatic table name generation

Models mix and match capabilities by inheriting from specific mixins.

Examples:
    Unscoped category tree:
    class Category(Base, IntegerPKMixin, NestedSetMixin):
        __tablename__ = "categories"
        name: Mapped[str] = mapped_column(String(255))

    Per-tenant, soft-deletable menu tree:
    class MenuItem(Base, IntegerPKMixin, TenantMixin, SoftDeleteMixin, NestedSetMixin):
        __tablename__ = "menu_items"
        __scope_columns__ = ("tenant_id",)
        label: Mapped[str] = mapped_column(String(255))
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, MetaData, String
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
from sqlalchemy.sql import func

# Consistent naming convention for database constraints
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base with automatic table naming.

    Provides:
    - Consistent constraint naming via NAMING_CONVENTION
    - Automatic table name generation from class name (lowercase)
    - Metadata registry for all models

    The automatic table naming can be overridden by setting __tablename__
    explicitly on the model class.
    """

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    @declared_attr.directive
    def __tablename__(cls) -> str:
        """Auto-derive table name from class name (lowercase)."""
        return cls.__name__.lower()


class IntegerPKMixin:
    """Integer auto-increment primary key.

    Provides:
        id: Auto-incrementing integer primary key
    """

    __allow_unmapped__ = True

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True,
        comment="Auto-incrementing integer primary key",
    )


class TimestampMixin:
    """Timestamp tracking for create and update operations.

    Uses both Python-side defaults (for test environments) and database
    server defaults (for direct SQL inserts).

    Provides:
        created_at: Timestamp of record creation (immutable)
        updated_at: Timestamp of last modification (auto-updates)

    Note: bulk boundary shifts go through Core UPDATE statements and do not
    bump updated_at; it tracks edits to the row's own content.
    """

    __allow_unmapped__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
        nullable=False,
        comment="Timestamp of record creation",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
        comment="Timestamp of last update",
    )


class SoftDeleteMixin:
    """Soft delete support for logical (reversible) deletion.

    Instead of physically removing rows, the tree engine stamps deleted_at
    on a node and its descendants. Boundaries stay allocated, so a restore
    puts the subtree back exactly where it was.

    Provides:
        deleted_at: Timestamp of deletion (None if not deleted). All rows
            deleted by one call share the same value, which identifies the
            deletion batch on restore.
        deleted_by: User who performed the deletion
        is_deleted: Property to check if record is deleted

    Usage:
        # Soft delete a subtree with audit:
        await engine.delete(session, node.id, scope, mode=DeleteMode.SOFT, deleted_by=user.email)

        # Query non-deleted records (engine queries do this by default):
        stmt = select(MenuItem).where(MenuItem.deleted_at.is_(None))

        # Recover the subtree:
        await engine.restore(session, node.id, scope)
    """

    __allow_unmapped__ = True

    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
        comment="Timestamp of soft deletion",
    )
    deleted_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="User who performed the soft deletion",
    )

    @property
    def is_deleted(self) -> bool:
        """Check if this record has been soft-deleted.

        Returns:
            True if deleted_at is set, False otherwise.
        """
        return self.deleted_at is not None


class TenantMixin:
    """Tenant column for tenant-partitioned trees.

    Declare it as a scope column to keep one independent tree space per
    tenant in a shared table:

        class MenuItem(Base, IntegerPKMixin, TenantMixin, NestedSetMixin):
            __tablename__ = "menu_items"
            __scope_columns__ = ("tenant_id",)

    Design Notes:
        - No foreign key constraint: tenant_id can be any identifier
        - Nullable: supports single-tenant mode
        - The nested-set index (tenant_id, lft, rgt) is added by NestedSetMixin
    """

    __allow_unmapped__ = True

    tenant_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Tenant ID for multi-tenant isolation",
    )


__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "IntegerPKMixin",
    "SoftDeleteMixin",
    "TenantMixin",
    "TimestampMixin",
]
