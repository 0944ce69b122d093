"""MutationCoordinator: the single entry point for changing a workbook."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from gridcalc._cell import LiteralCell, to_cell
from gridcalc._edits import (
    AddSheet,
    ClearRange,
    DeleteColumn,
    DeleteRow,
    DeleteSheet,
    EditResult,
    FormatCell,
    FormatRange,
    InsertColumn,
    InsertRow,
    RenameSheet,
    ResizeColumn,
    ResizeRow,
    SetCell,
    SetComment,
    SetFormula,
    SetRange,
    parse_edit,
)
from gridcalc._utils import CellAddress, decode_range
from gridcalc._workbook import Workbook
from gridcalc._worksheet import Worksheet
from gridcalc.calc._engine import FormulaEngine
from gridcalc.calc._protocol import RecalcResult
from gridcalc.config import Settings, get_settings
from gridcalc.exceptions import EditError, GridcalcError, InvalidEditError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitEvent:
    """Sent to listeners after a successful mutation.

    ``kind`` is ``"edit"`` for applied edits, ``"replace"`` when a new
    workbook was swapped in, and ``"activate"`` for an active-sheet change
    (which does not advance the version).
    """

    kind: str
    version: int
    edits: tuple[Any, ...] = ()


Listener = Callable[[CommitEvent], None]


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, KeyError) and exc.args:
        return str(exc.args[0])
    return str(exc)


class MutationCoordinator:
    """Applies edits atomically, bumps the version, and notifies listeners.

    Every successful :meth:`apply_edit` / :meth:`apply_edits` call advances
    the workbook version by exactly one, clears the engine cache, and then
    tells subscribers (the grid re-renders, persistence saves a snapshot).
    A failed call leaves the workbook exactly as it was.

    Usage::

        coord = MutationCoordinator()
        coord.apply_edit({"op": "setCell", "cell": "A2", "value": "Alice"})
        coord.apply_edits([
            {"op": "setCell", "cell": "B2", "value": 30},
            {"op": "setFormula", "cell": "C2", "formula": "B2*2"},
        ])
    """

    def __init__(
        self,
        workbook: Workbook | None = None,
        engine: FormulaEngine | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._workbook = workbook if workbook is not None else Workbook.create_default(self._settings)
        self._engine = engine or FormulaEngine(self._settings)
        self._listeners: list[Listener] = []
        self._frame_depth = 0
        self._pending: list[list[Any]] = []

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def workbook(self) -> Workbook:
        return self._workbook

    @property
    def engine(self) -> FormulaEngine:
        return self._engine

    @property
    def version(self) -> int:
        return self._workbook.version

    @property
    def in_frame(self) -> bool:
        return self._frame_depth > 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def get_cell(self, label: str, sheet: str | None = None) -> Any:
        """Display value of a cell (formulas evaluated through the engine)."""
        return self._engine.evaluate_cell(
            self._workbook, sheet or self._workbook.active_sheet, label
        )

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener* for commit events; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: CommitEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # The commit stands; a broken listener must not undo it.
                logger.exception("Commit listener %r failed for version %d", listener, event.version)

    # ------------------------------------------------------------------
    # Applying edits
    # ------------------------------------------------------------------

    def apply_edit(self, edit: Mapping[str, Any] | Any) -> EditResult:
        return self.apply_edits([edit])

    def apply_edits(self, edits: Iterable[Mapping[str, Any] | Any]) -> EditResult:
        """Apply a batch of edits as one atomic commit (one version bump)."""
        try:
            parsed = [parse_edit(e) for e in edits]
        except EditError as exc:
            logger.warning("Rejected edit: %s", exc.message)
            return EditResult(ok=False, version=self.version, error=exc)
        if not parsed:
            error = InvalidEditError("Edit batch is empty")
            return EditResult(ok=False, version=self.version, error=error)

        if self._frame_depth:
            self._pending.append(parsed)
            logger.debug("Deferred %d edits until the current frame ends", len(parsed))
            return EditResult(ok=True, version=self.version, deferred=True)
        return self._commit(parsed)

    def _commit(self, edits: list[Any]) -> EditResult:
        wb = self._workbook
        checkpoint = wb.checkpoint()
        current = edits[0]
        try:
            for current in edits:
                self._apply_one(current)
        except (GridcalcError, KeyError, ValueError, TypeError) as exc:
            wb.restore(checkpoint)
            error = exc if isinstance(exc, EditError) else InvalidEditError(
                _error_message(exc), op=current.op
            )
            logger.warning("Rejected %s edit: %s", current.op, error.message)
            return EditResult(ok=False, version=wb.version, error=error)
        except BaseException:
            # Unexpected failures roll back too, then propagate
            wb.restore(checkpoint)
            raise
        wb.release()

        version = wb.bump_version()
        self._engine.invalidate()
        logger.debug("Committed %d edits at version %d", len(edits), version)
        self._notify(CommitEvent("edit", version, tuple(edits)))
        return EditResult(ok=True, version=version, applied=len(edits))

    def _sheet(self, name: str | None) -> Worksheet:
        return self._workbook[name or self._workbook.active_sheet]

    def _apply_one(self, edit: Any) -> None:
        wb = self._workbook
        if isinstance(edit, SetCell):
            ws = self._sheet(edit.sheet)
            ws.set_cell(edit.cell, to_cell(edit.value, ws.get_cell(edit.cell)))
        elif isinstance(edit, SetFormula):
            ws = self._sheet(edit.sheet)
            ws.set_cell(edit.cell, to_cell(f"={edit.formula}", ws.get_cell(edit.cell)))
        elif isinstance(edit, SetRange):
            self._set_range(self._sheet(edit.sheet), edit)
        elif isinstance(edit, ClearRange):
            self._sheet(edit.sheet).clear_range(decode_range(edit.range))
        elif isinstance(edit, SetComment):
            ws = self._sheet(edit.sheet)
            cell = ws.get_cell(edit.cell) or LiteralCell()
            ws.set_cell(edit.cell, replace(cell, comment=edit.comment or None))
        elif isinstance(edit, InsertRow):
            self._sheet(edit.sheet).insert_rows(edit.index, edit.count)
        elif isinstance(edit, DeleteRow):
            self._sheet(edit.sheet).delete_rows(edit.index, edit.count)
        elif isinstance(edit, InsertColumn):
            self._sheet(edit.sheet).insert_cols(edit.col, edit.count)
        elif isinstance(edit, DeleteColumn):
            self._sheet(edit.sheet).delete_cols(edit.col, edit.count)
        elif isinstance(edit, ResizeRow):
            self._sheet(edit.sheet).set_row_height(edit.row - 1, edit.size)
        elif isinstance(edit, ResizeColumn):
            self._sheet(edit.sheet).set_col_width(edit.col, edit.size)
        elif isinstance(edit, FormatCell):
            ws = self._sheet(edit.sheet)
            ws.set_cell(edit.cell, edit.format.to_cell_format().apply(ws.get_cell(edit.cell)))
        elif isinstance(edit, FormatRange):
            self._format_range(self._sheet(edit.sheet), edit)
        elif isinstance(edit, AddSheet):
            wb.add_sheet(edit.name, edit.position)
        elif isinstance(edit, DeleteSheet):
            wb.delete_sheet(edit.name)
        elif isinstance(edit, RenameSheet):
            wb.rename_sheet(edit.old, edit.new)
        else:
            raise InvalidEditError(f"Unsupported edit {type(edit).__name__}")

    def _set_range(self, ws: Worksheet, edit: SetRange) -> None:
        target = decode_range(edit.range)
        origin = target.start
        # A bare origin label ("B2") places the whole matrix from there
        bounded = ":" in edit.range
        for r, row in enumerate(edit.values):
            if bounded and r >= target.n_rows:
                break
            for c, value in enumerate(row):
                if bounded and c >= target.n_cols:
                    break
                if value is None:
                    continue
                address = CellAddress(origin.row + r, origin.col + c)
                ws.set_cell_at(address, to_cell(value, ws.cell_at(*address)))

    def _format_range(self, ws: Worksheet, edit: FormatRange) -> None:
        target = decode_range(edit.range)
        limit = self._engine.max_range_cells
        if target.size > limit:
            raise InvalidEditError(
                f"Range {edit.range} is larger than {limit} cells", op=edit.op
            )
        fmt = edit.format.to_cell_format()
        for address in target.cells():
            ws.set_cell_at(address, fmt.apply(ws.cell_at(*address)))

    # ------------------------------------------------------------------
    # Frame deferral
    # ------------------------------------------------------------------

    def begin_frame(self) -> None:
        """Mark a render in progress; edits are queued until :meth:`end_frame`."""
        self._frame_depth += 1

    def end_frame(self) -> list[EditResult]:
        """Close a render; when the outermost frame ends, apply queued edits in order."""
        if self._frame_depth == 0:
            raise RuntimeError("end_frame() called without a matching begin_frame()")
        self._frame_depth -= 1
        if self._frame_depth:
            return []
        pending, self._pending = self._pending, []
        return [self._commit(batch) for batch in pending]

    # ------------------------------------------------------------------
    # Convenience wrappers
    # ------------------------------------------------------------------

    def set_cell(self, label: str, value: Any, sheet: str | None = None) -> EditResult:
        return self.apply_edit({"op": "setCell", "sheet": sheet, "cell": label, "value": value})

    def set_formula(self, label: str, formula: str, sheet: str | None = None) -> EditResult:
        return self.apply_edit(
            {"op": "setFormula", "sheet": sheet, "cell": label, "formula": formula}
        )

    def set_range(
        self, ref: str, values: list[list[Any]], sheet: str | None = None
    ) -> EditResult:
        return self.apply_edit({"op": "setRange", "sheet": sheet, "range": ref, "values": values})

    def clear_range(self, ref: str, sheet: str | None = None) -> EditResult:
        return self.apply_edit({"op": "clearRange", "sheet": sheet, "range": ref})

    def set_comment(self, label: str, comment: str | None, sheet: str | None = None) -> EditResult:
        return self.apply_edit(
            {"op": "setComment", "sheet": sheet, "cell": label, "comment": comment}
        )

    def set_format(
        self, scope: str, fmt: str | Mapping[str, Any], sheet: str | None = None
    ) -> EditResult:
        """Apply a format to a cell (``B2``) or a range (``B2:D9``)."""
        if ":" in scope:
            return self.apply_edit({"op": "formatRange", "sheet": sheet, "range": scope, "format": fmt})
        return self.apply_edit({"op": "formatCell", "sheet": sheet, "cell": scope, "format": fmt})

    def insert_row(self, row: int, count: int = 1, sheet: str | None = None) -> EditResult:
        """Insert *count* rows before 1-based *row*."""
        return self.apply_edit({"op": "insertRow", "sheet": sheet, "row": row, "count": count})

    def delete_row(self, row: int, count: int = 1, sheet: str | None = None) -> EditResult:
        return self.apply_edit({"op": "deleteRow", "sheet": sheet, "row": row, "count": count})

    def insert_column(self, col: str | int, count: int = 1, sheet: str | None = None) -> EditResult:
        """Insert before column *col* (letters, or a 0-based index)."""
        return self.apply_edit({"op": "insertColumn", "sheet": sheet, "col": col, "count": count})

    def delete_column(self, col: str | int, count: int = 1, sheet: str | None = None) -> EditResult:
        return self.apply_edit({"op": "deleteColumn", "sheet": sheet, "col": col, "count": count})

    def resize_row(self, row: int, size: float | None, sheet: str | None = None) -> EditResult:
        return self.apply_edit({"op": "resizeRow", "sheet": sheet, "row": row, "size": size})

    def resize_column(
        self, col: str | int, size: float | None, sheet: str | None = None
    ) -> EditResult:
        return self.apply_edit({"op": "resizeColumn", "sheet": sheet, "col": col, "size": size})

    def add_sheet(self, name: str | None = None) -> EditResult:
        return self.apply_edit({"op": "addSheet", "name": name})

    def delete_sheet(self, name: str) -> EditResult:
        return self.apply_edit({"op": "deleteSheet", "name": name})

    def rename_sheet(self, old: str, new: str) -> EditResult:
        return self.apply_edit({"op": "renameSheet", "old": old, "new": new})

    # ------------------------------------------------------------------
    # Whole-workbook operations
    # ------------------------------------------------------------------

    def activate_sheet(self, name: str) -> None:
        """Switch the active sheet. A view change, so the version stays put."""
        self._workbook.set_active(name)
        self._notify(CommitEvent("activate", self.version))

    def replace_workbook(self, workbook: Workbook) -> int:
        """Swap in an imported workbook; counts as one mutation."""
        version = workbook.bump_version(floor=self._workbook.version)
        self._workbook = workbook
        self._engine.invalidate()
        logger.info("Replaced workbook (%d sheets) at version %d", len(workbook), version)
        self._notify(CommitEvent("replace", version))
        return version

    def recalculate(self, changed: Iterable[str] | None = None) -> RecalcResult:
        """Refresh stored formula results (no version change).

        *changed* limits the refresh to formula cells affected by those
        ``Sheet!A1`` keys.
        """
        result = self._engine.recalculate(self._workbook, changed)
        logger.debug(
            "Recalculated %d formula cells, %d changed",
            result.total_formula_cells, len(result.deltas),
        )
        return result
