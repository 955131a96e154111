"""Pure boundary arithmetic for nested-set intervals.

Every structural mutation of a nested-set tree boils down to a handful of
integer computations: how wide a subtree is, where a new interval goes, and
which boundaries shift by how much to open or close a gap. This module keeps
those computations free of I/O so the store gateway only has to translate a
``BoundaryShift`` into a bulk UPDATE.

Example:
    >>> parent = Interval(1, 6)
    >>> pivot = insertion_pivot(Position.APPEND, parent)
    >>> pivot
    6
    >>> shift = insertion_shift(pivot)
    >>> shift.apply(6), shift.apply(5)
    (8, 5)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Position(StrEnum):
    """Placement of a node relative to a reference node.

    ``APPEND``/``PREPEND`` treat the reference as the new parent,
    ``BEFORE``/``AFTER`` treat it as the new sibling.
    """

    APPEND = "append"
    PREPEND = "prepend"
    BEFORE = "before"
    AFTER = "after"

    @property
    def is_child(self) -> bool:
        """True when the reference node becomes the parent."""
        return self in (Position.APPEND, Position.PREPEND)


@dataclass(slots=True, frozen=True)
class Interval:
    """A node's ``[lft, rgt]`` boundary pair.

    Attributes:
        lft: Left boundary
        rgt: Right boundary
    """

    lft: int
    rgt: int

    @property
    def width(self) -> int:
        """Number of boundary slots the subtree occupies."""
        return width(self.lft, self.rgt)

    @property
    def is_leaf(self) -> bool:
        """A node is a leaf iff ``rgt = lft + 1``."""
        return self.rgt == self.lft + 1

    @property
    def descendant_count(self) -> int:
        """Number of descendants implied by the interval width."""
        return (self.rgt - self.lft - 1) // 2

    def contains(self, other: Interval) -> bool:
        """Strict containment: ``self`` is a proper ancestor of ``other``."""
        return self.lft < other.lft and other.rgt < self.rgt

    def encloses(self, other: Interval) -> bool:
        """Containment including equality (self or ancestor)."""
        return self.lft <= other.lft and other.rgt <= self.rgt

    def shifted(self, delta: int) -> Interval:
        """Same interval moved by ``delta``."""
        return Interval(self.lft + delta, self.rgt + delta)


@dataclass(slots=True, frozen=True)
class BoundaryShift:
    """Move every boundary ``>= threshold`` by ``delta``.

    Insertion shifts are positive, removal shifts negative. The same rule
    applies independently to ``lft`` and ``rgt``.
    """

    threshold: int
    delta: int

    def apply(self, value: int) -> int:
        """Shift a single boundary value."""
        return value + self.delta if value >= self.threshold else value

    def apply_interval(self, interval: Interval) -> Interval:
        """Shift both boundaries of an interval."""
        return Interval(self.apply(interval.lft), self.apply(interval.rgt))

    @property
    def is_noop(self) -> bool:
        return self.delta == 0


def width(lft: int, rgt: int) -> int:
    """Width of a subtree: ``rgt - lft + 1``."""
    return rgt - lft + 1


def insertion_shift(pivot: int, width: int = 2) -> BoundaryShift:
    """Open a gap of ``width`` slots at ``pivot``.

    Every node with ``lft >= pivot`` gets ``lft += width``; every node with
    ``rgt >= pivot`` gets ``rgt += width``.
    """
    return BoundaryShift(threshold=pivot, delta=width)


def removal_shift(old_lft: int, width: int) -> BoundaryShift:
    """Close the gap left by a subtree that started at ``old_lft``.

    Every boundary greater than ``old_lft + width - 1`` moves left by ``width``.
    """
    return BoundaryShift(threshold=old_lft + width, delta=-width)


def move_offset(old_lft: int, new_lft: int) -> int:
    """Delta applied to every boundary inside a moved subtree."""
    return new_lft - old_lft


def insertion_pivot(position: Position, reference: Interval) -> int:
    """Boundary value the new (or moved) interval starts at.

    Args:
        position: Placement relative to ``reference``
        reference: Current boundaries of the parent (APPEND/PREPEND) or
            sibling (BEFORE/AFTER)

    Returns:
        Pivot for ``insertion_shift``; the placed interval starts there.
    """
    if position is Position.APPEND:
        return reference.rgt
    if position is Position.PREPEND:
        return reference.lft + 1
    if position is Position.BEFORE:
        return reference.lft
    return reference.rgt + 1


def root_pivot(max_rgt: int | None) -> int:
    """Pivot for a new last root in a scope whose highest boundary is ``max_rgt``."""
    return (max_rgt or 0) + 1


__all__ = [
    "BoundaryShift",
    "Interval",
    "Position",
    "insertion_pivot",
    "insertion_shift",
    "move_offset",
    "removal_shift",
    "root_pivot",
    "width",
]
