"""Workbook: ordered sheets, active-sheet pointer, and the version counter."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

from gridcalc._cell import Cell, FormulaCell, to_cell
from gridcalc._snapshot import (
    SheetModel,
    WorkbookSnapshot,
    cell_from_model,
    cell_to_model,
)
from gridcalc._worksheet import Worksheet
from gridcalc.calc._parser import rename_sheet_references
from gridcalc.config import Settings, get_settings
from gridcalc.exceptions import SheetError

logger = logging.getLogger(__name__)

_FORBIDDEN_SHEET_CHARS = re.compile(r"[\[\]:*?/\\!]")


def _validate_sheet_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise SheetError("Sheet name must be a non-empty string", sheet=name)
    if _FORBIDDEN_SHEET_CHARS.search(name):
        raise SheetError(f"Sheet name {name!r} contains a forbidden character", sheet=name)
    return name


class Workbook:
    """In-memory workbook.

    Holds sheets in display order, the active sheet, and a monotonic
    ``version``. Only the mutation coordinator advances the version; the
    formula engine folds it into every cache key.

    Usage::

        wb = Workbook.create_default()
        ws = wb.active
        ws["A2"] = "Alice"
        ws["B2"] = 30
        wb.add_sheet("Totals")
    """

    def __init__(self, sheet_names: Sequence[str] | None = None) -> None:
        names = list(sheet_names) if sheet_names else [get_settings().default_sheet_name]
        # Sheet states saved on first write while a checkpoint is open
        self._journal: dict[int, tuple[Worksheet, tuple[Any, ...]]] | None = None
        self._sheet_names: list[str] = []
        self._sheets: dict[str, Worksheet] = {}
        for name in names:
            self._attach(name)
        self._active = self._sheet_names[0]
        self._version = 0

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create_default(cls, settings: Settings | None = None) -> Workbook:
        """Cold-start workbook: one sheet with the seeded header row."""
        settings = settings or get_settings()
        wb = cls([settings.default_sheet_name])
        ws = wb.active
        for col, text in enumerate(settings.seed_header):
            ws.set_cell_at((0, col), to_cell(text))
        return wb

    @classmethod
    def from_rows(cls, sheets: Mapping[str, Sequence[Sequence[Any]]]) -> Workbook:
        """Build a workbook from decoded importer data (sheet name -> rows from A1).

        Strings starting with ``=`` become formulas; ``None`` and ``""`` are empty.
        """
        if not sheets:
            raise SheetError("An imported workbook needs at least one sheet")
        wb = cls(list(sheets))
        for name, rows in sheets.items():
            ws = wb[name]
            for r, row in enumerate(rows):
                for c, value in enumerate(row):
                    if isinstance(value, str) and value == "":
                        continue
                    ws.set_cell_at((r, c), to_cell(value))
        return wb

    @classmethod
    def from_snapshot(cls, snapshot: WorkbookSnapshot | Mapping[str, Any] | str) -> Workbook:
        """Restore a workbook from a snapshot model, a dict, or its JSON text."""
        if isinstance(snapshot, str):
            snapshot = WorkbookSnapshot.model_validate_json(snapshot)
        elif not isinstance(snapshot, WorkbookSnapshot):
            snapshot = WorkbookSnapshot.model_validate(snapshot)
        wb = cls([s.name for s in snapshot.sheets])
        for sheet in snapshot.sheets:
            ws = wb[sheet.name]
            for label, cell in sheet.cells.items():
                ws.set_cell(label, cell_from_model(cell))
            for row, height in sheet.row_heights.items():
                ws.set_row_height(row, height)
            for col, width in sheet.col_widths.items():
                ws.set_col_width(col, width)
        wb._active = snapshot.active_sheet
        wb._version = snapshot.version
        return wb

    def to_snapshot(self) -> WorkbookSnapshot:
        sheets = []
        for name in self._sheet_names:
            ws = self._sheets[name]
            sheets.append(SheetModel(
                name=name,
                cells={label: cell_to_model(cell) for label, cell in ws.iter_cells()},
                row_heights=ws.row_heights,
                col_widths=ws.col_widths,
            ))
        return WorkbookSnapshot(sheets=sheets, active_sheet=self._active, version=self._version)

    # ------------------------------------------------------------------
    # Sheet access
    # ------------------------------------------------------------------

    @property
    def sheetnames(self) -> list[str]:
        return list(self._sheet_names)

    @property
    def active(self) -> Worksheet:
        return self._sheets[self._active]

    @property
    def active_sheet(self) -> str:
        return self._active

    def set_active(self, name: str) -> None:
        if name not in self._sheets:
            raise KeyError(f"Worksheet '{name}' does not exist")
        self._active = name

    def __getitem__(self, name: str) -> Worksheet:
        if name not in self._sheets:
            raise KeyError(f"Worksheet '{name}' does not exist")
        return self._sheets[name]

    def __contains__(self, name: object) -> bool:
        return name in self._sheets

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sheet_names))

    def __len__(self) -> int:
        return len(self._sheet_names)

    # ------------------------------------------------------------------
    # Version
    # ------------------------------------------------------------------

    @property
    def version(self) -> int:
        return self._version

    def bump_version(self, floor: int | None = None) -> int:
        """Advance the version by one. Called by the coordinator on commit.

        With *floor*, the new version is also strictly greater than it (used
        when a freshly imported workbook replaces the current one).
        """
        if floor is not None and self._version < floor:
            self._version = floor
        self._version += 1
        return self._version

    # ------------------------------------------------------------------
    # Sheet lifecycle
    # ------------------------------------------------------------------

    def _attach(self, name: str, position: int | None = None) -> Worksheet:
        _validate_sheet_name(name)
        if name in self._sheets:
            raise SheetError(f"Sheet '{name}' already exists", sheet=name)
        ws = Worksheet(self, name)
        self._sheets[name] = ws
        if position is None:
            self._sheet_names.append(name)
        else:
            self._sheet_names.insert(position, name)
        return ws

    def _next_sheet_name(self) -> str:
        n = len(self._sheet_names) + 1
        while f"Sheet{n}" in self._sheets:
            n += 1
        return f"Sheet{n}"

    def add_sheet(self, name: str | None = None, position: int | None = None) -> Worksheet:
        """Append a sheet; without *name* the first free ``SheetN`` is used."""
        ws = self._attach(name if name is not None else self._next_sheet_name(), position)
        logger.info("Added sheet %r", ws.title)
        return ws

    def delete_sheet(self, name: str) -> None:
        """Remove a sheet. The last remaining sheet cannot be deleted.

        When the active sheet goes away the sheet before it becomes active.
        """
        if name not in self._sheets:
            raise KeyError(f"Worksheet '{name}' does not exist")
        if len(self._sheet_names) == 1:
            raise SheetError("Cannot delete the only sheet in the workbook", sheet=name)
        idx = self._sheet_names.index(name)
        self._sheet_names.pop(idx)
        del self._sheets[name]
        if self._active == name:
            self._active = self._sheet_names[max(0, idx - 1)]
        logger.info("Deleted sheet %r", name)

    def rename_sheet(self, old: str, new: str) -> None:
        """Rename a sheet and rewrite ``old!`` references in every formula."""
        if old not in self._sheets:
            raise KeyError(f"Worksheet '{old}' does not exist")
        if old == new:
            return
        _validate_sheet_name(new)
        if new in self._sheets:
            raise SheetError(f"Sheet '{new}' already exists", sheet=new)
        idx = self._sheet_names.index(old)
        self._sheet_names[idx] = new
        ws = self._sheets.pop(old)
        ws._title = new  # noqa: SLF001
        self._sheets[new] = ws
        if self._active == old:
            self._active = new

        rewritten = 0
        for sheet in self._sheets.values():
            for label, cell in list(sheet.formula_cells()):
                source = rename_sheet_references(cell.source, old, new)
                if source != cell.source:
                    sheet.set_cell(label, FormulaCell(
                        source,
                        number_format=cell.number_format,
                        style=cell.style,
                        comment=cell.comment,
                    ))
                    rewritten += 1
        logger.info("Renamed sheet %r to %r (%d formulas rewritten)", old, new, rewritten)

    # ------------------------------------------------------------------
    # Cell shortcuts
    # ------------------------------------------------------------------

    def get_cell(self, sheet: str, label: str) -> Cell | None:
        return self[sheet].get_cell(label)

    def set_cell(self, sheet: str, label: str, cell: Cell | None) -> None:
        self[sheet].set_cell(label, cell)

    def formula_cells(self) -> Iterator[tuple[str, str, FormulaCell]]:
        """Yield ``(sheet, label, cell)`` for every formula in the workbook."""
        for name in self._sheet_names:
            for label, cell in self._sheets[name].formula_cells():
                yield name, label, cell

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def checkpoint(self) -> tuple[Any, ...]:
        """Capture enough state to undo any in-progress edit with :meth:`restore`.

        Sheet contents are not copied here; each sheet saves its own state
        the first time it is written afterwards, so an edit costs only the
        sheets it touches. Close the checkpoint with :meth:`release` or
        :meth:`restore`.
        """
        self._journal = {}
        return (
            list(self._sheet_names),
            dict(self._sheets),
            self._active,
            self._version,
        )

    def _journal_write(self, ws: Worksheet) -> None:
        """Called by a worksheet just before it mutates."""
        journal = self._journal
        if journal is not None and id(ws) not in journal:
            journal[id(ws)] = (ws, ws._state())  # noqa: SLF001

    def release(self) -> None:
        """Keep everything written since :meth:`checkpoint`."""
        self._journal = None

    def restore(self, checkpoint: tuple[Any, ...]) -> None:
        names, sheets, active, version = checkpoint
        for ws, state in (self._journal or {}).values():
            ws._restore_state(state)  # noqa: SLF001
        self._journal = None
        self._sheet_names = list(names)
        self._sheets = dict(sheets)
        for name, ws in self._sheets.items():
            ws._title = name  # noqa: SLF001
        self._active = active
        self._version = version

    def __repr__(self) -> str:
        return f"<Workbook v{self._version} sheets={self._sheet_names} active={self._active!r}>"
