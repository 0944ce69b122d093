"""Dependency graph for formula cells with topological ordering."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

from gridcalc.calc._parser import FormulaParser, all_references
from gridcalc.exceptions import FormulaSyntaxError

if TYPE_CHECKING:
    from gridcalc._utils import CellRange
    from gridcalc._workbook import Workbook


class DependencyGraph:
    """Tracks formula cell dependencies for evaluation ordering.

    All cell references use canonical "SheetName!A1" format.
    """

    __slots__ = ("dependencies", "dependents", "formulas")

    def __init__(self) -> None:
        # cell -> cells it reads from
        self.dependencies: dict[str, set[str]] = {}
        # cell -> cells that read from it (reverse edges)
        self.dependents: dict[str, set[str]] = {}
        # cell -> formula source
        self.formulas: dict[str, str] = {}

    def add_formula(
        self, cell_ref: str, source: str, current_sheet: str,
        parser: FormulaParser | None = None,
        bounds: Callable[[str], CellRange | None] | None = None,
    ) -> None:
        """Register a formula cell and its dependencies.

        Unparseable formulas are registered with no dependencies; they
        evaluate to an error regardless of order. *bounds* clips range
        references to each sheet's used range (see :func:`all_references`).
        """
        self.formulas[cell_ref] = source
        try:
            node = (parser or FormulaParser()).parse(source)
        except FormulaSyntaxError:
            refs: list[str] = []
        else:
            refs = all_references(node, current_sheet, bounds)

        self.dependencies[cell_ref] = set(refs)
        for ref in refs:
            self.dependents.setdefault(ref, set()).add(cell_ref)

    def partition(self) -> tuple[list[str], set[str]]:
        """Split formula cells into an evaluation order and the cells left on cycles.

        Kahn's algorithm over formula cells only; whatever cannot be ordered
        sits on, or downstream of, a circular reference. Ties are broken by
        key so the order is deterministic.
        """
        formula_cells = set(self.formulas)
        if not formula_cells:
            return [], set()

        in_degree = {
            cell: len(self.dependencies.get(cell, set()) & formula_cells)
            for cell in formula_cells
        }
        queue: deque[str] = deque(sorted(c for c, d in in_degree.items() if d == 0))

        order: list[str] = []
        while queue:
            cell = queue.popleft()
            order.append(cell)
            for dep in sorted(self.dependents.get(cell, set())):
                if dep in formula_cells:
                    in_degree[dep] -= 1
                    if in_degree[dep] == 0:
                        queue.append(dep)

        return order, formula_cells - set(order)

    def affected_cells(self, changed_cells: Iterable[str]) -> list[str]:
        """Formula cells that must be re-evaluated after *changed_cells* change.

        That is every formula cell downstream of them, plus the changed
        cells themselves when they hold formulas. Ordered for evaluation,
        with cells on cycles last.
        """
        changed = set(changed_cells)
        affected = {c for c in changed if c in self.formulas}
        queue: deque[str] = deque(changed)
        visited: set[str] = set(changed)

        while queue:
            cell = queue.popleft()
            for dep in self.dependents.get(cell, set()):
                if dep not in visited:
                    visited.add(dep)
                    queue.append(dep)
                    if dep in self.formulas:
                        affected.add(dep)

        order, cyclic = self.partition()
        return [c for c in order if c in affected] + sorted(affected & cyclic)

    @classmethod
    def from_workbook(
        cls, workbook: Workbook, parser: FormulaParser | None = None
    ) -> DependencyGraph:
        """Build a dependency graph by scanning all sheets for formula cells.

        Range references only contribute the cells inside the target sheet's
        used range; everything outside it is empty and cannot hold a formula.
        """
        graph = cls()
        parser = parser or FormulaParser()

        def used_range(name: str) -> CellRange | None:
            return workbook[name].used_range if name in workbook else None

        for sheet_name, label, cell in workbook.formula_cells():
            graph.add_formula(f"{sheet_name}!{label}", cell.source, sheet_name, parser, used_range)
        return graph
