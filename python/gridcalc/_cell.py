"""Cell records.

Cells are immutable; every write replaces the record in the sheet's map.
An empty cell is simply absent from the map.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, fields, replace
from typing import Any, Union

Scalar = Union[int, float, str, bool]

_NUMERIC_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_INT_RE = re.compile(r"^[+-]?\d+$")


def parse_number(text: str) -> int | float | None:
    """Parse a decimal numeral; ``None`` when *text* is not one."""
    stripped = text.strip()
    if not _NUMERIC_RE.match(stripped):
        return None
    if _INT_RE.match(stripped):
        return int(stripped)
    return float(stripped)


@dataclass(frozen=True)
class CellStyle:
    """Font flags and text color from the formatting toolbar."""

    bold: bool = False
    italic: bool = False
    underline: bool = False
    color: str | None = None


@dataclass(frozen=True)
class LiteralCell:
    """A typed literal. ``value=None`` is a blank cell carrying only format or comment."""

    value: Scalar | None = None
    number_format: str | None = None
    style: CellStyle | None = None
    comment: str | None = None

    @property
    def is_blank(self) -> bool:
        return (
            self.value is None
            and self.number_format is None
            and self.style is None
            and not self.comment
        )


@dataclass(frozen=True)
class FormulaCell:
    """A formula. ``source`` never carries the leading ``=``."""

    source: str
    result: Any = None  # last evaluated value, informational only
    number_format: str | None = None
    style: CellStyle | None = None
    comment: str | None = None

    def __post_init__(self) -> None:
        source = self.source.strip()
        if source.startswith("="):
            source = source[1:].strip()
        object.__setattr__(self, "source", source)

    @property
    def formula(self) -> str:
        """Source with the ``=`` prefix, as shown in the editor."""
        return f"={self.source}"


Cell = Union[LiteralCell, FormulaCell]


@dataclass(frozen=True)
class CellFormat:
    """A format application. ``None`` fields leave the cell's current setting alone.

    Applying a format assigns, it never toggles, so applying the same format
    twice leaves the cell exactly as a single application did.
    """

    number_format: str | None = None
    bold: bool | None = None
    italic: bool | None = None
    underline: bool | None = None
    color: str | None = None

    def _style_overrides(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(CellStyle)
            if getattr(self, f.name) is not None
        }

    def apply(self, cell: Cell | None) -> Cell:
        base: Cell = cell if cell is not None else LiteralCell()
        changes: dict[str, Any] = {}
        if self.number_format is not None:
            changes["number_format"] = self.number_format
        overrides = self._style_overrides()
        if overrides:
            changes["style"] = replace(base.style or CellStyle(), **overrides)
        return replace(base, **changes) if changes else base


def parse_input(text: str) -> Cell | None:
    """Interpret editor text: ``""`` deletes, ``=...`` is a formula,
    numerals become numbers, ``TRUE``/``FALSE`` become booleans."""
    if text == "":
        return None
    if text.startswith("=") and len(text) > 1:
        return FormulaCell(text)
    number = parse_number(text)
    if number is not None:
        return LiteralCell(number)
    upper = text.strip().upper()
    if upper in ("TRUE", "FALSE"):
        return LiteralCell(upper == "TRUE")
    return LiteralCell(text)


def to_cell(value: Any, previous: Cell | None = None) -> Cell | None:
    """Build the record for a written value, keeping *previous* format and comment.

    Strings go through :func:`parse_input`; other scalars are stored as-is.
    """
    if isinstance(value, (LiteralCell, FormulaCell)):
        return value
    if value is None:
        return None
    if isinstance(value, str):
        cell = parse_input(value)
        if cell is None:
            return None
    elif isinstance(value, (bool, int, float)):
        cell = LiteralCell(value)
    else:
        raise TypeError(f"Unsupported cell value type: {type(value).__name__}")
    if previous is None:
        return cell
    return replace(
        cell,
        number_format=previous.number_format,
        style=previous.style,
        comment=previous.comment,
    )


def display_input(cell: Cell | None) -> str:
    """Text shown in the editor when a cell gains focus."""
    if cell is None:
        return ""
    if isinstance(cell, FormulaCell):
        return cell.formula
    value = cell.value
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return str(value)
