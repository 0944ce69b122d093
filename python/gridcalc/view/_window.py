"""Axis metrics and visible-window computation for the virtual grid."""

from __future__ import annotations

import bisect
from collections.abc import Mapping
from dataclasses import dataclass
from itertools import accumulate

from gridcalc._utils import CellAddress, CellRange


class AxisMetrics:
    """Offsets along one axis (rows or columns) with per-index size overrides.

    Every index has ``default_size`` unless *overrides* says otherwise.
    Lookups are logarithmic in the number of overrides, so a million rows
    with a handful of custom heights cost nothing extra.
    """

    __slots__ = ("count", "default_size", "_keys", "_sizes", "_extra")

    def __init__(
        self, count: int, default_size: float, overrides: Mapping[int, float] | None = None
    ) -> None:
        if count < 0:
            raise ValueError(f"count must be non-negative, got {count}")
        if default_size <= 0:
            raise ValueError(f"default_size must be positive, got {default_size}")
        self.count = count
        self.default_size = float(default_size)
        items = sorted((i, float(s)) for i, s in (overrides or {}).items() if 0 <= i < count)
        self._keys = [i for i, _ in items]
        self._sizes = [s for _, s in items]
        # _extra[k] = total deviation from default of the first k overrides
        self._extra = [0.0, *accumulate(s - self.default_size for s in self._sizes)]

    def size_of(self, index: int) -> float:
        k = bisect.bisect_left(self._keys, index)
        if k < len(self._keys) and self._keys[k] == index:
            return self._sizes[k]
        return self.default_size

    def offset_of(self, index: int) -> float:
        """Start offset of *index*; ``offset_of(count)`` is the total length."""
        index = max(0, min(index, self.count))
        k = bisect.bisect_left(self._keys, index)
        return index * self.default_size + self._extra[k]

    @property
    def total(self) -> float:
        return self.offset_of(self.count)

    def index_at(self, offset: float) -> int:
        """Index whose span contains *offset*, clamped to the axis."""
        if self.count == 0:
            return 0
        lo, hi = 0, self.count - 1
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self.offset_of(mid) <= offset:
                lo = mid
            else:
                hi = mid - 1
        return lo

    def end_index(self, offset: float) -> int:
        """Number of indexes that start before *offset* (exclusive window end)."""
        if offset <= 0:
            return 0
        if offset >= self.total:
            return self.count
        idx = self.index_at(offset)
        return idx if self.offset_of(idx) >= offset else idx + 1


@dataclass(frozen=True)
class VisibleRange:
    """Half-open window ``[start_row, end_row) x [start_col, end_col)`` (0-based)."""

    start_row: int
    end_row: int
    start_col: int
    end_col: int

    @property
    def n_rows(self) -> int:
        return max(0, self.end_row - self.start_row)

    @property
    def n_cols(self) -> int:
        return max(0, self.end_col - self.start_col)

    @property
    def size(self) -> int:
        return self.n_rows * self.n_cols

    def contains(self, row: int, col: int) -> bool:
        return self.start_row <= row < self.end_row and self.start_col <= col < self.end_col

    def to_cell_range(self) -> CellRange | None:
        if not self.size:
            return None
        return CellRange(
            CellAddress(self.start_row, self.start_col),
            CellAddress(self.end_row - 1, self.end_col - 1),
        )


def compute_window(
    rows: AxisMetrics,
    cols: AxisMetrics,
    scroll_top: float,
    scroll_left: float,
    body_height: float,
    body_width: float,
    overscan: int,
) -> VisibleRange:
    """Rows/columns that intersect the body viewport, widened by *overscan*.

    ``start = max(0, first_visible - overscan)`` and
    ``end = min(total, last_visible_exclusive + overscan)`` on each axis.
    """
    first_row = rows.index_at(scroll_top)
    last_row = rows.end_index(scroll_top + max(0.0, body_height))
    first_col = cols.index_at(scroll_left)
    last_col = cols.end_index(scroll_left + max(0.0, body_width))
    return VisibleRange(
        start_row=max(0, first_row - overscan),
        end_row=min(rows.count, last_row + overscan),
        start_col=max(0, first_col - overscan),
        end_col=min(cols.count, last_col + overscan),
    )
