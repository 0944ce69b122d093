"""VirtualGrid: headless virtualized view over the active sheet.

Only the cells inside the visible window (plus overscan) exist as
:class:`CellElement` objects; everything else is virtual. Elements that
scroll out of the window go back to bounded pools and are reused for the
cells that scroll in.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from gridcalc._cell import FormulaCell, display_input
from gridcalc._utils import CellAddress, decode_cell, encode_cell, encode_col
from gridcalc.calc._functions import FormulaError, format_number, to_text
from gridcalc.config import Settings, get_settings
from gridcalc.view._pool import CellElement, ElementPool, HeaderElement
from gridcalc.view._scheduler import FrameScheduler, ManualFrameScheduler
from gridcalc.view._selection import SelectionModel
from gridcalc.view._window import AxisMetrics, VisibleRange, compute_window

if TYPE_CHECKING:
    from gridcalc._coordinator import CommitEvent, MutationCoordinator
    from gridcalc._edits import EditResult
    from gridcalc._worksheet import Worksheet

logger = logging.getLogger(__name__)

EVENTS = frozenset({"visible_range_changed", "render", "cell_focused", "cell_blurred"})

_ARROWS = {
    "ArrowUp": (-1, 0),
    "ArrowDown": (1, 0),
    "ArrowLeft": (0, -1),
    "ArrowRight": (0, 1),
}


class VirtualGrid:
    """Renders the active sheet of a coordinator's workbook through a window.

    Usage::

        grid = VirtualGrid(coord, width=682, height=420)
        grid.render()
        grid.scroll_to(top=3600)
        grid.scheduler.pump()         # with the default ManualFrameScheduler
        grid.visible_range            # VisibleRange(175, 200, 0, 15)
    """

    def __init__(
        self,
        coordinator: MutationCoordinator,
        width: float = 800,
        height: float = 600,
        scheduler: FrameScheduler | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._settings = settings or get_settings()
        self.scheduler: FrameScheduler = scheduler or ManualFrameScheduler()
        self.width = float(width)
        self.height = float(height)
        self.scroll_top = 0.0
        self.scroll_left = 0.0

        s = self._settings
        self._cell_pool: ElementPool[CellElement] = ElementPool(CellElement, s.cell_pool_size)
        self._row_pool: ElementPool[HeaderElement] = ElementPool(HeaderElement, s.header_pool_size)
        self._col_pool: ElementPool[HeaderElement] = ElementPool(HeaderElement, s.header_pool_size)
        self.cells: dict[tuple[int, int], CellElement] = {}
        self.row_headers: dict[int, HeaderElement] = {}
        self.col_headers: dict[int, HeaderElement] = {}

        self.selection = SelectionModel()
        self.editing: str | None = None
        self.edit_text = ""
        self._edit_original = ""

        self._window: VisibleRange | None = None
        self._dirty = True
        self.render_count = 0
        self.last_render_ms = 0.0
        self._handlers: dict[str, list[Callable[..., None]]] = defaultdict(list)
        self._unsubscribe = coordinator.subscribe(self._on_commit)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: str, handler: Callable[..., None]) -> Callable[[], None]:
        """Subscribe to a render event; returns an unsubscribe callable."""
        if event not in EVENTS:
            raise ValueError(f"Unknown grid event {event!r}; expected one of {sorted(EVENTS)}")
        self._handlers[event].append(handler)
        return lambda: self._handlers[event].remove(handler)

    def _emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            try:
                handler(*args)
            except Exception:
                logger.exception("Grid %s handler failed", event)

    def close(self) -> None:
        self._unsubscribe()
        self.scheduler.cancel()

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @property
    def sheet(self) -> Worksheet:
        return self._coordinator.workbook.active

    def metrics(self) -> tuple[AxisMetrics, AxisMetrics]:
        """Row and column metrics of the virtual canvas for the active sheet."""
        ws = self.sheet
        s = self._settings
        total_rows = max(ws.max_row, s.min_rows)
        total_cols = max(ws.max_column, s.min_cols)
        rows = AxisMetrics(total_rows, s.row_height, ws.row_heights)
        cols = AxisMetrics(total_cols, s.col_width, ws.col_widths)
        self.selection.rows, self.selection.cols = total_rows, total_cols
        return rows, cols

    @property
    def canvas_size(self) -> tuple[float, float]:
        """``(height, width)`` of the virtual canvas including headers."""
        rows, cols = self.metrics()
        return (
            rows.total + self._settings.header_height,
            cols.total + self._settings.row_header_width,
        )

    @property
    def max_scroll(self) -> tuple[float, float]:
        height, width = self.canvas_size
        return max(0.0, height - self.height), max(0.0, width - self.width)

    def compute_visible_range(self) -> VisibleRange:
        rows, cols = self.metrics()
        s = self._settings
        return compute_window(
            rows, cols,
            self.scroll_top, self.scroll_left,
            self.height - s.header_height, self.width - s.row_header_width,
            s.overscan,
        )

    @property
    def visible_range(self) -> VisibleRange:
        """The window of the last render (computed fresh before the first one)."""
        return self._window if self._window is not None else self.compute_visible_range()

    # ------------------------------------------------------------------
    # Scrolling and resizing
    # ------------------------------------------------------------------

    def scroll_to(self, top: float | None = None, left: float | None = None) -> None:
        """Record the latest scroll offset and request a frame."""
        max_top, max_left = self.max_scroll
        if top is not None:
            self.scroll_top = max(0.0, min(float(top), max_top))
        if left is not None:
            self.scroll_left = max(0.0, min(float(left), max_left))
        self.request_frame()

    def scroll_to_cell(self, row: int, col: int) -> None:
        rows, cols = self.metrics()
        self.scroll_to(rows.offset_of(row), cols.offset_of(col))

    def resize(self, width: float, height: float) -> None:
        self.width, self.height = float(width), float(height)
        self.request_frame()

    def request_frame(self) -> None:
        self.scheduler.request(self._frame)

    def _frame(self) -> None:
        window = self.compute_visible_range()
        if self._dirty or window != self._window:
            self.render()

    def ensure_visible(self, row: int, col: int) -> None:
        """Scroll the minimum amount that brings (row, col) fully into view."""
        rows, cols = self.metrics()
        s = self._settings
        body_h = self.height - s.header_height
        body_w = self.width - s.row_header_width
        top, left = self.scroll_top, self.scroll_left
        row_start, row_end = rows.offset_of(row), rows.offset_of(row + 1)
        col_start, col_end = cols.offset_of(col), cols.offset_of(col + 1)
        if row_start < top:
            top = row_start
        elif row_end > top + body_h:
            top = row_end - body_h
        if col_start < left:
            left = col_start
        elif col_end > left + body_w:
            left = col_end - body_w
        if (top, left) != (self.scroll_top, self.scroll_left):
            self.scroll_to(top, left)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _on_commit(self, event: CommitEvent) -> None:
        self._dirty = True
        self.request_frame()

    def render(self) -> bool:
        """Materialize the current window. Returns False if rendering failed.

        Edits that arrive while the frame renders are deferred by the
        coordinator and applied when it completes.
        """
        self._coordinator.begin_frame()
        try:
            return self._render()
        finally:
            self._coordinator.end_frame()

    def _render(self) -> bool:
        started = time.perf_counter()
        try:
            window = self.compute_visible_range()
            contents = self._resolve_contents(window)
        except Exception:
            # Keep the previous element set on screen
            logger.exception("Virtual grid render failed")
            return False

        self._apply(window, contents)
        self.render_count += 1
        self.last_render_ms = (time.perf_counter() - started) * 1000.0
        self._dirty = False

        changed = window != self._window
        self._window = window
        if changed:
            self._emit("visible_range_changed", window)
        self._emit("render", window, self.last_render_ms)
        logger.debug("Rendered %d cells in %.2f ms", window.size, self.last_render_ms)
        return True

    def _resolve_contents(self, window: VisibleRange) -> dict[tuple[int, int], dict[str, Any]]:
        wb = self._coordinator.workbook
        ws = wb.active
        rows, cols = self.metrics()
        contents: dict[tuple[int, int], dict[str, Any]] = {}
        for row in range(window.start_row, window.end_row):
            top = rows.offset_of(row)
            height = rows.size_of(row)
            for col in range(window.start_col, window.end_col):
                label = encode_cell(CellAddress(row, col))
                state = self._display(ws, label, row, col)
                state.update(
                    row=row, col=col, label=label,
                    top=top, height=height,
                    left=cols.offset_of(col), width=cols.size_of(col),
                )
                contents[(row, col)] = state
        return contents

    def _display(self, ws: Worksheet, label: str, row: int, col: int) -> dict[str, Any]:
        cell = ws.cell_at(row, col)
        if cell is None:
            return {"text": "", "has_formula": False, "is_error": False}
        state: dict[str, Any] = {
            "has_formula": isinstance(cell, FormulaCell),
            "number_format": cell.number_format,
        }
        if cell.style is not None:
            state.update(
                bold=cell.style.bold, italic=cell.style.italic,
                underline=cell.style.underline, color=cell.style.color,
            )
        try:
            if isinstance(cell, FormulaCell):
                value = self._coordinator.engine.execute(
                    cell.source, self._coordinator.workbook, ws.title, label
                )
            else:
                value = cell.value
            if isinstance(value, FormulaError):
                state.update(text=value.code, is_error=True)
            elif isinstance(value, (int, float)) and not isinstance(value, bool):
                state.update(text=format_number(value, cell.number_format), is_error=False)
            else:
                state.update(text=to_text(value), is_error=False)
        except Exception:
            logger.debug("Cannot display %s!%s", ws.title, label, exc_info=True)
            state.update(text=FormulaError.ERROR.code, is_error=True)
        return state

    def _apply(self, window: VisibleRange, contents: dict[tuple[int, int], dict[str, Any]]) -> None:
        rows, cols = self.metrics()

        stale = dict(self.cells)
        cells: dict[tuple[int, int], CellElement] = {}
        for key, state in contents.items():
            element = stale.pop(key, None) or self._cell_pool.acquire()
            element.reset()
            for name, value in state.items():
                setattr(element, name, value)
            cells[key] = element
        for element in stale.values():
            self._cell_pool.release(element)
        self.cells = cells

        self.row_headers = self._headers(
            self.row_headers, self._row_pool,
            range(window.start_row, window.end_row),
            lambda i: str(i + 1), rows,
        )
        self.col_headers = self._headers(
            self.col_headers, self._col_pool,
            range(window.start_col, window.end_col),
            encode_col, cols,
        )

    @staticmethod
    def _headers(
        current: dict[int, HeaderElement],
        pool: ElementPool[HeaderElement],
        indexes: range,
        text: Callable[[int], str],
        metrics: AxisMetrics,
    ) -> dict[int, HeaderElement]:
        stale = dict(current)
        out: dict[int, HeaderElement] = {}
        for i in indexes:
            element = stale.pop(i, None) or pool.acquire()
            element.index = i
            element.text = text(i)
            element.offset = metrics.offset_of(i)
            element.size = metrics.size_of(i)
            out[i] = element
        for element in stale.values():
            pool.release(element)
        return out

    def stats(self) -> dict[str, Any]:
        return {
            "render_count": self.render_count,
            "last_render_ms": self.last_render_ms,
            "rendered": {
                "cells": len(self.cells),
                "row_headers": len(self.row_headers),
                "col_headers": len(self.col_headers),
            },
            "pools": {
                "cells": len(self._cell_pool),
                "row_headers": len(self._row_pool),
                "col_headers": len(self._col_pool),
            },
        }

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def focus_cell(self, label: str) -> str:
        """Enter edit mode on *label*; returns the editor text."""
        addr = decode_cell(label)
        label = encode_cell(addr)
        self.selection.select(addr)
        self.editing = label
        self._edit_original = display_input(self.sheet.get_cell(label))
        self.edit_text = self._edit_original
        self._emit("cell_focused", label)
        return self.edit_text

    def input_text(self, text: str) -> None:
        self.edit_text = text

    def blur_cell(self, label: str | None = None, text: str | None = None) -> EditResult | None:
        """Leave edit mode; commits through the coordinator only if the text changed."""
        label = label or self.editing
        if label is None:
            return None
        new_text = self.edit_text if text is None else text
        original = self._edit_original if label == self.editing else display_input(
            self.sheet.get_cell(label)
        )
        self.editing = None
        self.edit_text = self._edit_original = ""
        self._emit("cell_blurred", label, new_text)
        if new_text == original:
            return None
        return self._coordinator.set_cell(label, new_text, sheet=self._coordinator.workbook.active_sheet)

    def cancel_edit(self) -> None:
        self.editing = None
        self.edit_text = self._edit_original = ""

    # ------------------------------------------------------------------
    # Pointer and keyboard
    # ------------------------------------------------------------------

    def mouse_down(self, label: str, shift: bool = False, ctrl: bool = False) -> None:
        if self.editing is not None:
            self.blur_cell()
        self.selection.mouse_down(decode_cell(label), shift=shift, ctrl=ctrl)

    def mouse_enter(self, label: str) -> None:
        self.selection.mouse_enter(decode_cell(label))

    def mouse_up(self) -> None:
        self.selection.mouse_up()

    def key_down(self, key: str, shift: bool = False) -> EditResult | None:
        """Keyboard handling for navigation and editing.

        Arrows move (Shift extends), Tab/Shift-Tab move right/left, Enter
        commits an edit and moves down, F2 starts editing, Escape cancels
        an edit or collapses the selection, Delete clears the selection.
        """
        self.metrics()
        result: EditResult | None = None
        if self.editing is not None:
            if key == "Escape":
                self.cancel_edit()
                return None
            if key in ("Enter", "Tab"):
                result = self.blur_cell()
                d_row, d_col = (1, 0) if key == "Enter" else (0, -1 if shift else 1)
                self._move(d_row, d_col)
            return result

        if key in _ARROWS:
            d_row, d_col = _ARROWS[key]
            self._move(d_row, d_col, extend=shift)
        elif key == "Tab":
            self._move(0, -1 if shift else 1)
        elif key == "Enter":
            self._move(-1 if shift else 1, 0)
        elif key == "F2":
            if self.selection.active is not None:
                self.focus_cell(encode_cell(self.selection.active))
        elif key == "Escape":
            self.selection.collapse()
        elif key in ("Delete", "Backspace"):
            result = self.clear_selection()
        return result

    def _move(self, d_row: int, d_col: int, extend: bool = False) -> None:
        target = self.selection.move(d_row, d_col, extend=extend)
        self.ensure_visible(target.row, target.col)

    def clear_selection(self) -> EditResult | None:
        """Delete the contents of every selected cell as one edit."""
        ranges = self.selection.ranges()
        if not ranges:
            return None
        sheet = self._coordinator.workbook.active_sheet
        return self._coordinator.apply_edits(
            [{"op": "clearRange", "sheet": sheet, "range": str(r)} for r in ranges]
        )
