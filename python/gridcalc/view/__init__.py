"""gridcalc.view - Headless virtualized grid over a workbook's active sheet."""

from gridcalc.view._grid import EVENTS, VirtualGrid
from gridcalc.view._pool import CellElement, ElementPool, HeaderElement
from gridcalc.view._scheduler import AsyncioFrameScheduler, FrameScheduler, ManualFrameScheduler
from gridcalc.view._selection import SelectionModel
from gridcalc.view._window import AxisMetrics, VisibleRange, compute_window

__all__ = [
    "EVENTS",
    "AsyncioFrameScheduler",
    "AxisMetrics",
    "CellElement",
    "ElementPool",
    "FrameScheduler",
    "HeaderElement",
    "ManualFrameScheduler",
    "SelectionModel",
    "VirtualGrid",
    "VisibleRange",
    "compute_window",
]
