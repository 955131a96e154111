"""Core database package: declarative base and composable model mixins.

Base Classes and Mixins:
    - Base: Declarative base with auto table naming
    - IntegerPKMixin: Integer primary key
    - TimestampMixin: created_at, updated_at tracking
    - SoftDeleteMixin: Soft delete support with deleted_at/deleted_by
    - TenantMixin: tenant_id column, usable as a tree scope column

Tree columns and the nested-set engine live in ``nested_tree.core.nestedset``.
"""

from __future__ import annotations

from nested_tree.core.database.base import (
    NAMING_CONVENTION,
    Base,
    IntegerPKMixin,
    SoftDeleteMixin,
    TenantMixin,
    TimestampMixin,
)

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "IntegerPKMixin",
    "SoftDeleteMixin",
    "TenantMixin",
    "TimestampMixin",
]
