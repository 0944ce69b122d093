"""Worksheet: sparse cell map plus used range and row/column size overrides."""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from gridcalc._cell import Cell, FormulaCell, LiteralCell, to_cell
from gridcalc._utils import (
    MAX_COLS,
    MAX_ROWS,
    CellAddress,
    CellRange,
    decode_cell,
    decode_range,
    encode_cell,
    expand_range_to_include,
)
from gridcalc.exceptions import AddressError

if TYPE_CHECKING:
    from gridcalc._workbook import Workbook

_ROWS = 0
_COLS = 1


class Worksheet:
    """A single sheet in a Workbook.

    Cells are stored sparsely, keyed by 0-based ``(row, col)``. The used range
    grows on every write and is recomputed exactly after structural edits.
    """

    __slots__ = (
        "_workbook", "_title", "_cells", "_used_range",
        "_row_heights", "_col_widths",
    )

    def __init__(self, workbook: Workbook, title: str) -> None:
        self._workbook = workbook
        self._title = title
        self._cells: dict[CellAddress, Cell] = {}
        self._used_range: CellRange | None = None
        self._row_heights: dict[int, float] = {}
        self._col_widths: dict[int, float] = {}

    @property
    def title(self) -> str:
        return self._title

    @title.setter
    def title(self, value: str) -> None:
        """Rename this worksheet through the owning workbook."""
        self._workbook.rename_sheet(self._title, value)

    @property
    def workbook(self) -> Workbook:
        return self._workbook

    # ------------------------------------------------------------------
    # Cell access
    # ------------------------------------------------------------------

    def get_cell(self, label: str) -> Cell | None:
        return self._cells.get(decode_cell(label))

    def cell_at(self, row: int, col: int) -> Cell | None:
        """Cell at 0-based coordinates, or ``None`` when empty."""
        return self._cells.get(CellAddress(row, col))

    def set_cell(self, label: str, cell: Cell | None) -> None:
        """Write *cell* at *label*; ``None`` deletes it."""
        self.set_cell_at(decode_cell(label), cell)

    def set_cell_at(self, address: tuple[int, int], cell: Cell | None) -> None:
        addr = CellAddress(*address)
        if not (0 <= addr.row < MAX_ROWS and 0 <= addr.col < MAX_COLS):
            raise AddressError(f"Cell {tuple(addr)} is outside the grid")
        self._workbook._journal_write(self)  # noqa: SLF001
        if cell is None or (isinstance(cell, LiteralCell) and cell.is_blank):
            self._cells.pop(addr, None)
            return
        self._cells[addr] = cell
        self._used_range = expand_range_to_include(self._used_range, addr)

    def __getitem__(self, label: str) -> Cell | None:
        return self.get_cell(label)

    def __setitem__(self, label: str, value: Any) -> None:
        """``ws['A1'] = 42`` or ``ws['B1'] = '=A1*2'``."""
        self.set_cell(label, to_cell(value, self.get_cell(label)))

    def __contains__(self, label: str) -> bool:
        return decode_cell(label) in self._cells

    def __len__(self) -> int:
        return len(self._cells)

    def clear_range(self, cell_range: CellRange) -> int:
        """Delete every cell inside *cell_range*; returns how many were removed."""
        doomed = [addr for addr in self._cells if cell_range.contains(addr)]
        if doomed:
            self._workbook._journal_write(self)  # noqa: SLF001
        for addr in doomed:
            del self._cells[addr]
        return len(doomed)

    # ------------------------------------------------------------------
    # Extent
    # ------------------------------------------------------------------

    @property
    def used_range(self) -> CellRange | None:
        return self._used_range

    @property
    def max_row(self) -> int:
        """Number of rows spanned by the used range from row 1 (0 when empty)."""
        return self._used_range.end.row + 1 if self._used_range else 0

    @property
    def max_column(self) -> int:
        return self._used_range.end.col + 1 if self._used_range else 0

    def _recompute_used_range(self) -> None:
        if not self._cells:
            self._used_range = None
            return
        rows = [a.row for a in self._cells]
        cols = [a.col for a in self._cells]
        self._used_range = CellRange(
            CellAddress(min(rows), min(cols)), CellAddress(max(rows), max(cols))
        )

    # ------------------------------------------------------------------
    # Row / column sizes
    # ------------------------------------------------------------------

    @property
    def row_heights(self) -> dict[int, float]:
        return dict(self._row_heights)

    @property
    def col_widths(self) -> dict[int, float]:
        return dict(self._col_widths)

    def set_row_height(self, row: int, height: float | None) -> None:
        """Override the height of 0-based *row*; ``None`` restores the default."""
        if not 0 <= row < MAX_ROWS:
            raise AddressError(f"Row index {row} is outside the grid")
        self._workbook._journal_write(self)  # noqa: SLF001
        if height is None:
            self._row_heights.pop(row, None)
        elif height <= 0:
            raise ValueError(f"Row height must be positive, got {height}")
        else:
            self._row_heights[row] = float(height)

    def set_col_width(self, col: int, width: float | None) -> None:
        if not 0 <= col < MAX_COLS:
            raise AddressError(f"Column index {col} is outside the grid")
        self._workbook._journal_write(self)  # noqa: SLF001
        if width is None:
            self._col_widths.pop(col, None)
        elif width <= 0:
            raise ValueError(f"Column width must be positive, got {width}")
        else:
            self._col_widths[col] = float(width)

    # ------------------------------------------------------------------
    # Structural edits
    # ------------------------------------------------------------------

    def insert_rows(self, index: int, count: int = 1) -> None:
        """Insert *count* empty rows before 0-based row *index*."""
        self._shift(_ROWS, index, count)

    def delete_rows(self, index: int, count: int = 1) -> None:
        """Delete *count* rows starting at 0-based row *index*."""
        self._shift(_ROWS, index, -count)

    def insert_cols(self, index: int, count: int = 1) -> None:
        self._shift(_COLS, index, count)

    def delete_cols(self, index: int, count: int = 1) -> None:
        self._shift(_COLS, index, -count)

    def _shift(self, axis: int, index: int, delta: int) -> None:
        """Move everything at or beyond *index* along *axis* by *delta*.

        A negative *delta* deletes the band ``[index, index - delta)`` first.
        The new map is built completely before it replaces the old one, so a
        rejected edit leaves the sheet untouched.
        """
        limit = MAX_ROWS if axis == _ROWS else MAX_COLS
        if delta == 0:
            raise ValueError("count must be at least 1")
        if not 0 <= index < limit:
            raise AddressError(f"Index {index} is outside the grid")

        band_end = index - delta if delta < 0 else index

        def moved(pos: int) -> int | None:
            if pos < index:
                return pos
            if delta < 0 and pos < band_end:
                return None
            return pos + delta

        if delta > 0:
            far = max((a[axis] for a in self._cells if a[axis] >= index), default=None)
            if far is not None and far + delta >= limit:
                raise AddressError(
                    f"Inserting {delta} would push data beyond the last "
                    f"{'row' if axis == _ROWS else 'column'}"
                )

        cells: dict[CellAddress, Cell] = {}
        for addr, cell in self._cells.items():
            pos = moved(addr[axis])
            if pos is None:
                continue
            new_addr = CellAddress(pos, addr.col) if axis == _ROWS else CellAddress(addr.row, pos)
            cells[new_addr] = cell

        sizes = self._row_heights if axis == _ROWS else self._col_widths
        new_sizes: dict[int, float] = {}
        for pos, size in sizes.items():
            target = moved(pos)
            if target is not None and target < limit:
                new_sizes[target] = size

        self._workbook._journal_write(self)  # noqa: SLF001
        self._cells = cells
        if axis == _ROWS:
            self._row_heights = new_sizes
        else:
            self._col_widths = new_sizes
        self._recompute_used_range()

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    def iter_cells(self) -> Iterator[tuple[str, Cell]]:
        """Yield ``(label, cell)`` for every non-empty cell in row-major order."""
        for addr in sorted(self._cells):
            yield encode_cell(addr), self._cells[addr]

    def formula_cells(self) -> Iterator[tuple[str, FormulaCell]]:
        for label, cell in self.iter_cells():
            if isinstance(cell, FormulaCell):
                yield label, cell

    def iter_rows(self, values_only: bool = True) -> Iterator[tuple[Any, ...]]:
        """Rows of the used range from A1, for exporters.

        With ``values_only`` formulas appear as ``=source`` text.
        """
        if self._used_range is None:
            return
        n_cols = self._used_range.end.col + 1
        for row in range(self._used_range.end.row + 1):
            out: list[Any] = []
            for col in range(n_cols):
                cell = self._cells.get(CellAddress(row, col))
                if not values_only:
                    out.append(cell)
                elif isinstance(cell, FormulaCell):
                    out.append(cell.formula)
                else:
                    out.append(cell.value if cell is not None else None)
            yield tuple(out)

    def range_cells(self, ref: str) -> Iterator[tuple[str, Cell | None]]:
        for addr in decode_range(ref).cells():
            yield encode_cell(addr), self._cells.get(addr)

    # ------------------------------------------------------------------
    # Checkpoints (used by the coordinator for atomic edits)
    # ------------------------------------------------------------------

    def _state(self) -> tuple[Any, ...]:
        return (
            dict(self._cells), self._used_range,
            dict(self._row_heights), dict(self._col_widths),
        )

    def _restore_state(self, state: tuple[Any, ...]) -> None:
        (cells, self._used_range, heights, widths) = state
        self._cells = dict(cells)
        self._row_heights = dict(heights)
        self._col_widths = dict(widths)

    def __repr__(self) -> str:
        return f"<Worksheet {self._title!r} cells={len(self._cells)}>"
