"""FormulaEngine: parse, cache, and evaluate formulas against a Workbook."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from gridcalc._cell import FormulaCell
from gridcalc._utils import CellAddress, CellRange, encode_cell, normalize_label
from gridcalc.calc._cache import MISSING, ResultCache
from gridcalc.calc._evaluator import CycleGuard, Evaluator
from gridcalc.calc._functions import FormulaError, FunctionRegistry, RangeValue
from gridcalc.calc._graph import DependencyGraph
from gridcalc.calc._parser import FormulaParser, Node
from gridcalc.calc._protocol import CellDelta, RecalcResult
from gridcalc.config import Settings, get_settings
from gridcalc.exceptions import AddressError, FormulaSyntaxError

if TYPE_CHECKING:
    from gridcalc._workbook import Workbook

logger = logging.getLogger(__name__)

# Results that depend on which cells were already being evaluated; never
# reused within a pass.
_CONTEXTUAL = frozenset({"#CIRCULAR!", "#DEPTH!"})

# Upper bound on interpreter frames one nested formula cell takes while
# its tree is walked.
_FRAMES_PER_LEVEL = 32
_RECURSION_HEADROOM = 1000


class _WorkbookContext:
    """Resolves references for one top-level evaluation pass."""

    __slots__ = ("_engine", "_workbook", "sheet", "owner_key", "_memo")

    def __init__(
        self, engine: FormulaEngine, workbook: Workbook, sheet: str,
        owner_key: str | None, memo: dict[str, Any],
    ) -> None:
        self._engine = engine
        self._workbook = workbook
        self.sheet = sheet
        self.owner_key = owner_key
        self._memo = memo

    def lookup_cell(self, sheet: str | None, label: str) -> Any:
        name = sheet or self.sheet
        if name not in self._workbook:
            return FormulaError.REF.with_details(f"Unknown sheet {name!r}")
        return self._value_at(name, label, self._workbook[name].get_cell(label))

    def lookup_range(self, sheet: str | None, cell_range: CellRange) -> Any:
        name = sheet or self.sheet
        if name not in self._workbook:
            return FormulaError.REF.with_details(f"Unknown sheet {name!r}")
        ws = self._workbook[name]
        used = ws.used_range
        # Rows below the used range are empty; don't materialize them.
        last_row = min(cell_range.end.row, used.end.row) if used else cell_range.start.row - 1
        n_materialized = max(0, last_row - cell_range.start.row + 1) * cell_range.n_cols
        if n_materialized > self._engine.max_range_cells:
            return FormulaError.VALUE.with_details(
                f"Range {cell_range} is larger than {self._engine.max_range_cells} cells"
            )
        values: list[Any] = []
        for row in range(cell_range.start.row, last_row + 1):
            for col in range(cell_range.start.col, cell_range.end.col + 1):
                cell = ws.cell_at(row, col)
                if cell is None:
                    values.append(None)
                else:
                    values.append(self._value_at(name, encode_cell(CellAddress(row, col)), cell))
        return RangeValue(values, cell_range.n_rows, cell_range.n_cols)

    def _value_at(self, sheet: str, label: str, cell: Any) -> Any:
        if cell is None:
            return None
        if not isinstance(cell, FormulaCell):
            return cell.value
        key = f"{sheet}!{label}"
        if key in self._memo:
            return self._memo[key]
        value = self._engine.guard.evaluate(
            key, lambda: self._engine._evaluate_source(  # noqa: SLF001
                cell.source, self._workbook, sheet, key, self._memo
            )
        )
        if isinstance(value, FormulaError):
            if value.details is None:
                value = value.with_details(f"Error in {key}")
            if value.code in _CONTEXTUAL:
                return value
        self._memo[key] = value
        return value


class FormulaEngine:
    """Evaluates formula text against a workbook with caching and cycle detection.

    Results are memoized per ``(version, sheet, owner, source)``; any
    mutation bumps the workbook version, so stale entries are never hit.
    Nothing raises past :meth:`execute`: parse failures, cycles, runaway
    chains and unexpected exceptions all come back as :class:`FormulaError`.

    Usage::

        engine = FormulaEngine()
        engine.execute("=SUM(A1:A3)", wb, "Sheet1")
        engine.execute("=A1*2", wb, "Sheet1", owner_label="B1")
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        max_depth: int | None = None,
        cache: ResultCache | None = None,
        functions: FunctionRegistry | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._functions = functions or FunctionRegistry()
        self._parser = FormulaParser(self._functions)
        self._evaluator = Evaluator(self._functions)
        self._cache = cache or ResultCache(settings.max_cache_size, settings.cache_evict_fraction)
        self._guard = CycleGuard(max_depth if max_depth is not None else settings.max_depth)
        self._parsed: dict[str, Node | FormulaSyntaxError] = {}
        self._parsed_limit = max(settings.max_cache_size * 4, 64)
        self.max_range_cells = settings.max_range_cells

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def guard(self) -> CycleGuard:
        return self._guard

    @property
    def functions(self) -> FunctionRegistry:
        return self._functions

    @property
    def max_depth(self) -> int:
        return self._guard.max_depth

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse(self, source: str) -> Node:
        """Parse formula source, memoized per text. Raises FormulaSyntaxError."""
        entry = self._parsed.get(source)
        if entry is None:
            try:
                entry = self._parser.parse(source)
            except FormulaSyntaxError as exc:
                entry = exc
            if len(self._parsed) >= self._parsed_limit:
                self._parsed.clear()
            self._parsed[source] = entry
        if isinstance(entry, FormulaSyntaxError):
            raise entry
        return entry

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def execute(
        self,
        formula_text: str,
        workbook: Workbook,
        sheet_name: str,
        owner_label: str | None = None,
    ) -> Any:
        """Evaluate *formula_text* (leading ``=`` optional) on *sheet_name*.

        *owner_label* is the cell holding the formula, if any; it seeds the
        cycle guard so a formula reading its own cell is ``#CIRCULAR!``.
        """
        source = formula_text.strip()
        if source.startswith("="):
            source = source[1:].strip()
        try:
            owner = normalize_label(owner_label) if owner_label else ""
        except AddressError as exc:
            return FormulaError.REF.with_details(str(exc))

        key = (workbook.version, sheet_name, owner, source)
        cached = self._cache.get(key)
        if cached is not MISSING:
            return cached

        owner_key = f"{sheet_name}!{owner}" if owner else None
        result = self._run(source, workbook, sheet_name, owner_key, {})
        self._cache.put(key, result)
        return result

    def evaluate_cell(self, workbook: Workbook, sheet_name: str, label: str) -> Any:
        """Display value of a cell: formulas are executed, literals returned as stored."""
        cell = workbook[sheet_name].get_cell(label)
        if cell is None:
            return None
        if isinstance(cell, FormulaCell):
            return self.execute(cell.source, workbook, sheet_name, label)
        return cell.value

    def _run(
        self, source: str, workbook: Workbook, sheet: str,
        owner_key: str | None, memo: dict[str, Any],
    ) -> Any:
        # A chain of max_depth formula cells must fit under the interpreter limit
        limit = sys.getrecursionlimit()
        needed = _RECURSION_HEADROOM + (self.max_depth + 1) * _FRAMES_PER_LEVEL
        if needed > limit:
            sys.setrecursionlimit(needed)
        try:
            if owner_key is not None:
                result = self._guard.evaluate(
                    owner_key,
                    lambda: self._evaluate_source(source, workbook, sheet, owner_key, memo),
                )
            else:
                result = self._evaluate_source(source, workbook, sheet, None, memo)
        except RecursionError:
            logger.debug("Recursion limit hit evaluating %r on %s", source, sheet)
            result = FormulaError.DEPTH.with_details("Python recursion limit reached")
        except Exception:
            logger.exception("Unexpected error evaluating %r on %s", source, sheet)
            result = FormulaError.ERROR.with_details("Internal evaluation error")
        finally:
            self._guard.reset()
            if needed > limit:
                sys.setrecursionlimit(limit)
        return result

    def _evaluate_source(
        self, source: str, workbook: Workbook, sheet: str,
        owner_key: str | None, memo: dict[str, Any],
    ) -> Any:
        try:
            node = self.parse(source)
        except FormulaSyntaxError as exc:
            return FormulaError(exc.code, exc.details)
        ctx = _WorkbookContext(self, workbook, sheet, owner_key, memo)
        result = self._evaluator.evaluate(node, ctx)
        # A formula pointing at an empty cell shows 0
        return 0 if result is None else result

    # ------------------------------------------------------------------
    # Invalidation and recalculation
    # ------------------------------------------------------------------

    def invalidate(self) -> None:
        """Drop every cached result and reset the cycle guard."""
        logger.debug("Invalidating formula cache: %s", self._cache.stats())
        self._cache.clear()
        self._guard.reset()

    def recalculate(
        self, workbook: Workbook, changed: Iterable[str] | None = None
    ) -> RecalcResult:
        """Evaluate formula cells in dependency order and store the results.

        With *changed* (canonical ``Sheet!A1`` keys) only the formula cells
        affected by those cells are refreshed; otherwise every one is. The
        stored ``FormulaCell.result`` values are informational (exporters
        read them); this does not change the workbook version.
        """
        graph = DependencyGraph.from_workbook(workbook, self._parser)
        order, cyclic = graph.partition()
        if changed is not None:
            targets = graph.affected_cells(changed)
            cyclic &= set(targets)
            order = [c for c in targets if c not in cyclic]

        values: dict[str, Any] = {}
        deltas: list[CellDelta] = []
        memo: dict[str, Any] = {}
        for cell_ref in order + sorted(cyclic):
            sheet, label = cell_ref.rsplit("!", 1)
            ws = workbook[sheet]
            cell = ws.get_cell(label)
            if not isinstance(cell, FormulaCell):
                continue
            value = self._run(cell.source, workbook, sheet, cell_ref, memo)
            values[cell_ref] = value
            if not _same_result(cell.result, value):
                deltas.append(CellDelta(cell_ref, cell.result, value, cell.formula))
                ws.set_cell(label, replace(cell, result=value))

        if cyclic:
            logger.debug("Recalculated with %d cells on reference cycles", len(cyclic))
        return RecalcResult(values=values, deltas=tuple(deltas), cyclic=frozenset(cyclic))


def _same_result(old: Any, new: Any) -> bool:
    if type(old) is not type(new):
        return False
    return old == new
