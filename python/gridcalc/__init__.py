"""gridcalc - in-memory spreadsheet computation core.

Usage::

    from gridcalc import MutationCoordinator, VirtualGrid

    coord = MutationCoordinator()
    coord.set_cell("A1", 10)
    coord.set_formula("B1", "=A1*2")
    coord.get_cell("B1")        # 20

    grid = VirtualGrid(coord, width=800, height=600)
    grid.render()
    grid.cells[(0, 1)].text     # "20"
"""

from gridcalc._cell import CellFormat, CellStyle, FormulaCell, LiteralCell
from gridcalc._coordinator import CommitEvent, MutationCoordinator
from gridcalc._edits import EditResult, parse_edit
from gridcalc._persistence import (
    InMemoryWorkbookStore,
    JsonFileWorkbookStore,
    SnapshotPersister,
    WorkbookStore,
    load_or_create,
)
from gridcalc._snapshot import WorkbookSnapshot
from gridcalc._utils import CellAddress, CellRange, decode_cell, decode_range, encode_cell
from gridcalc._workbook import Workbook
from gridcalc._worksheet import Worksheet
from gridcalc.calc import FormulaEngine, FormulaError, RecalcResult
from gridcalc.config import Settings, get_settings
from gridcalc.exceptions import (
    AddressError,
    EditError,
    FormulaSyntaxError,
    GridcalcError,
    InvalidEditError,
    PersistenceError,
    SheetError,
    UnknownEditError,
)
from gridcalc.view import VirtualGrid

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "AddressError",
    "CellAddress",
    "CellFormat",
    "CellRange",
    "CellStyle",
    "CommitEvent",
    "EditError",
    "EditResult",
    "FormulaCell",
    "FormulaEngine",
    "FormulaError",
    "FormulaSyntaxError",
    "GridcalcError",
    "InMemoryWorkbookStore",
    "InvalidEditError",
    "JsonFileWorkbookStore",
    "LiteralCell",
    "MutationCoordinator",
    "PersistenceError",
    "RecalcResult",
    "Settings",
    "SheetError",
    "SnapshotPersister",
    "UnknownEditError",
    "VirtualGrid",
    "Workbook",
    "WorkbookSnapshot",
    "WorkbookStore",
    "Worksheet",
    "decode_cell",
    "decode_range",
    "encode_cell",
    "get_settings",
    "load_or_create",
    "parse_edit",
]
