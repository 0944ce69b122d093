"""Evaluation context protocol and recalculation result dataclasses."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, Union, runtime_checkable

if TYPE_CHECKING:
    from gridcalc._utils import CellRange
    from gridcalc.calc._functions import RangeValue

Value = Union[float, int, str, bool, None]


@runtime_checkable
class EvaluationContext(Protocol):
    """What the evaluator needs from the outside world."""

    @property
    def sheet(self) -> str:
        """Sheet that unqualified references resolve against."""
        ...

    @property
    def owner_key(self) -> str | None:
        """``Sheet!A1`` of the formula being evaluated, or None for ad-hoc input."""
        ...

    def lookup_cell(self, sheet: str | None, label: str) -> Any:
        """Value of a cell; formula cells are evaluated under the cycle guard."""
        ...

    def lookup_range(self, sheet: str | None, cell_range: CellRange) -> RangeValue | Any:
        """Row-major values of a range, or a FormulaError for a bad sheet/size."""
        ...


@dataclass(frozen=True)
class CellDelta:
    """A single cell's value change from recalculation."""

    cell_ref: str  # canonical "SheetName!A1"
    old_value: Any
    new_value: Any
    formula: str | None = None  # the formula that produced new_value


@dataclass(frozen=True)
class RecalcResult:
    """Result of a full-workbook recalculation."""

    values: dict[str, Any]  # cell_ref -> computed value for every formula cell
    deltas: tuple[CellDelta, ...]  # cells whose cached result changed
    cyclic: frozenset[str] = frozenset()  # formula cells on a reference cycle

    @property
    def total_formula_cells(self) -> int:
        return len(self.values)

    @property
    def propagation_ratio(self) -> float:
        if not self.values:
            return 0.0
        return len(self.deltas) / len(self.values)
