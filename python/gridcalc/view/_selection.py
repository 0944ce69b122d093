"""Selection state: active cell, rectangular range, and Ctrl/Cmd multi-selection."""

from __future__ import annotations

from gridcalc._utils import MAX_COLS, MAX_ROWS, CellAddress, CellRange


class SelectionModel:
    """Tracks what the user has selected in the grid.

    The *anchor* is where a range selection started and the *focus* is its
    moving end; the rectangle between them is :attr:`range`. The *active*
    cell is the one the editor opens on. Ctrl/Cmd-clicked cells live in
    :attr:`multi` alongside the range.
    """

    def __init__(self, rows: int = MAX_ROWS, cols: int = MAX_COLS) -> None:
        self.rows = rows
        self.cols = cols
        self.active: CellAddress | None = None
        self.anchor: CellAddress | None = None
        self.focus: CellAddress | None = None
        self.multi: set[CellAddress] = set()
        self.dragging = False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def range(self) -> CellRange | None:
        if self.anchor is None or self.focus is None:
            return None
        return CellRange(self.anchor, self.focus)

    def ranges(self) -> list[CellRange]:
        """The rectangle plus one single-cell range per multi-selected cell."""
        out: list[CellRange] = []
        rect = self.range
        if rect is not None:
            out.append(rect)
        for addr in sorted(self.multi):
            if rect is None or not rect.contains(addr):
                out.append(CellRange.single(addr))
        return out

    def contains(self, address: tuple[int, int]) -> bool:
        rect = self.range
        return (rect is not None and rect.contains(address)) or CellAddress(*address) in self.multi

    def _clamp(self, row: int, col: int) -> CellAddress:
        return CellAddress(
            max(0, min(row, self.rows - 1)), max(0, min(col, self.cols - 1))
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def select(self, address: tuple[int, int]) -> None:
        """Make *address* the active cell and the whole selection."""
        addr = self._clamp(*address)
        self.active = self.anchor = self.focus = addr
        self.multi.clear()

    def extend_to(self, address: tuple[int, int]) -> None:
        """Stretch the rectangle from the anchor to *address* (Shift-click)."""
        if self.anchor is None:
            self.select(address)
            return
        self.focus = self._clamp(*address)

    def toggle(self, address: tuple[int, int]) -> None:
        """Add or remove one cell from the multi-selection (Ctrl/Cmd-click)."""
        addr = self._clamp(*address)
        if self.active is None:
            self.select(addr)
            return
        if addr in self.multi:
            self.multi.discard(addr)
        else:
            self.multi.add(addr)
        self.active = addr

    def move(self, d_row: int, d_col: int, extend: bool = False) -> CellAddress:
        """Arrow-key movement. With *extend* the focus moves and the anchor stays."""
        if self.active is None:
            self.select((0, 0))
        assert self.active is not None
        if extend:
            base = self.focus if self.focus is not None else self.active
            self.focus = self._clamp(base.row + d_row, base.col + d_col)
            return self.focus
        self.select((self.active.row + d_row, self.active.col + d_col))
        return self.active  # type: ignore[return-value]

    def collapse(self) -> None:
        """Escape: drop the range and multi-selection, keep the active cell."""
        self.multi.clear()
        if self.active is not None:
            self.anchor = self.focus = self.active

    def clear(self) -> None:
        self.active = self.anchor = self.focus = None
        self.multi.clear()
        self.dragging = False

    # ------------------------------------------------------------------
    # Mouse
    # ------------------------------------------------------------------

    def mouse_down(
        self, address: tuple[int, int], shift: bool = False, ctrl: bool = False
    ) -> None:
        if ctrl:
            self.toggle(address)
            return
        if shift:
            self.extend_to(address)
            return
        self.select(address)
        self.dragging = True

    def mouse_enter(self, address: tuple[int, int]) -> None:
        if self.dragging:
            self.extend_to(address)

    def mouse_up(self) -> None:
        self.dragging = False
