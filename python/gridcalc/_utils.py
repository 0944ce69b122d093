"""A1 address and range codec.

Internal coordinates are 0-based ``(row, col)``; labels are column letters
(bijective base-26, ``A``..``XFD``) followed by a 1-based row number.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import NamedTuple

from gridcalc.exceptions import AddressError

MAX_ROWS = 1_048_576
MAX_COLS = 16_384

_COL_RE = re.compile(r"^[A-Za-z]+$")
_CELL_RE = re.compile(r"^\$?([A-Za-z]+)\$?([0-9]+)$")
_BARE_SHEET_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")


class CellAddress(NamedTuple):
    """0-based cell coordinates."""

    row: int
    col: int


@dataclass(frozen=True)
class CellRange:
    """Inclusive rectangle of cells, always stored with start <= end."""

    start: CellAddress
    end: CellAddress

    def __post_init__(self) -> None:
        start, end = CellAddress(*self.start), CellAddress(*self.end)
        object.__setattr__(
            self, "start", CellAddress(min(start.row, end.row), min(start.col, end.col))
        )
        object.__setattr__(
            self, "end", CellAddress(max(start.row, end.row), max(start.col, end.col))
        )

    @classmethod
    def single(cls, address: tuple[int, int]) -> CellRange:
        return cls(CellAddress(*address), CellAddress(*address))

    @property
    def n_rows(self) -> int:
        return self.end.row - self.start.row + 1

    @property
    def n_cols(self) -> int:
        return self.end.col - self.start.col + 1

    @property
    def size(self) -> int:
        return self.n_rows * self.n_cols

    def contains(self, address: tuple[int, int]) -> bool:
        row, col = address
        return (
            self.start.row <= row <= self.end.row
            and self.start.col <= col <= self.end.col
        )

    def intersection(self, other: CellRange) -> CellRange | None:
        """Overlap of two ranges, ``None`` when they are disjoint."""
        top, left = max(self.start.row, other.start.row), max(self.start.col, other.start.col)
        bottom, right = min(self.end.row, other.end.row), min(self.end.col, other.end.col)
        if top > bottom or left > right:
            return None
        return CellRange(CellAddress(top, left), CellAddress(bottom, right))

    def cells(self) -> Iterator[CellAddress]:
        """Yield every address in row-major order."""
        for row in range(self.start.row, self.end.row + 1):
            for col in range(self.start.col, self.end.col + 1):
                yield CellAddress(row, col)

    def __str__(self) -> str:
        return encode_range(self)


# ---------------------------------------------------------------------------
# Columns
# ---------------------------------------------------------------------------


def encode_col(index: int) -> str:
    """0 -> ``A``, 25 -> ``Z``, 26 -> ``AA``, 16383 -> ``XFD``."""
    if not 0 <= index < MAX_COLS:
        raise AddressError(f"Column index {index} is outside 0..{MAX_COLS - 1}")
    n = index + 1
    letters: list[str] = []
    while n:
        n, rem = divmod(n - 1, 26)
        letters.append(chr(ord("A") + rem))
    return "".join(reversed(letters))


def decode_col(letters: str) -> int:
    """``A`` -> 0, ``XFD`` -> 16383. Case-insensitive."""
    if not letters or not _COL_RE.match(letters):
        raise AddressError(f"Invalid column {letters!r}", ref=letters)
    n = 0
    for ch in letters.upper():
        n = n * 26 + (ord(ch) - ord("A") + 1)
        if n > MAX_COLS:
            raise AddressError(f"Column {letters!r} is beyond XFD", ref=letters)
    return n - 1


# ---------------------------------------------------------------------------
# Cells and ranges
# ---------------------------------------------------------------------------


def encode_cell(address: tuple[int, int]) -> str:
    row, col = address
    if not 0 <= row < MAX_ROWS:
        raise AddressError(f"Row index {row} is outside 0..{MAX_ROWS - 1}")
    return f"{encode_col(col)}{row + 1}"


def decode_cell(label: str) -> CellAddress:
    """Parse ``A1`` (``$`` markers allowed) into a 0-based :class:`CellAddress`."""
    m = _CELL_RE.match(label.strip()) if isinstance(label, str) else None
    if m is None:
        raise AddressError(f"Invalid cell reference {label!r}", ref=str(label))
    row = int(m.group(2))
    if not 1 <= row <= MAX_ROWS:
        raise AddressError(f"Row {row} in {label!r} is outside 1..{MAX_ROWS}", ref=label)
    return CellAddress(row - 1, decode_col(m.group(1)))


def normalize_label(label: str) -> str:
    """``$b$2`` -> ``B2``."""
    return encode_cell(decode_cell(label))


def encode_range(cell_range: CellRange) -> str:
    if cell_range.start == cell_range.end:
        return encode_cell(cell_range.start)
    return f"{encode_cell(cell_range.start)}:{encode_cell(cell_range.end)}"


def decode_range(ref: str) -> CellRange:
    """``A1`` -> degenerate range, ``C3:A1`` -> normalized ``A1:C3``."""
    parts = ref.strip().split(":") if isinstance(ref, str) else []
    if len(parts) == 1:
        return CellRange.single(decode_cell(parts[0]))
    if len(parts) == 2:
        return CellRange(decode_cell(parts[0]), decode_cell(parts[1]))
    raise AddressError(f"Invalid range {ref!r}", ref=str(ref))


def expand_range_to_include(
    cell_range: CellRange | None, address: tuple[int, int]
) -> CellRange:
    """Smallest range containing both *cell_range* and *address*."""
    row, col = address
    if cell_range is None:
        return CellRange.single((row, col))
    if cell_range.contains(address):
        return cell_range
    return CellRange(
        CellAddress(min(cell_range.start.row, row), min(cell_range.start.col, col)),
        CellAddress(max(cell_range.end.row, row), max(cell_range.end.col, col)),
    )


# ---------------------------------------------------------------------------
# Sheet-qualified references
# ---------------------------------------------------------------------------


def quote_sheet_name(name: str) -> str:
    """Sheet prefix as written in formula text (``Data`` or ``'My Sheet'``)."""
    if _BARE_SHEET_RE.match(name) and not _CELL_RE.match(name):
        return name
    return "'" + name.replace("'", "''") + "'"


def qualify(sheet: str, label: str) -> str:
    """Canonical ``Sheet!A1`` key (unquoted)."""
    return f"{sheet}!{label}"


def split_sheet_ref(ref: str) -> tuple[str | None, str]:
    """``'My Sheet'!A1`` -> ``("My Sheet", "A1")``; ``A1`` -> ``(None, "A1")``."""
    if "!" not in ref:
        return None, ref
    sheet, part = ref.rsplit("!", 1)
    if len(sheet) >= 2 and sheet[0] == "'" and sheet[-1] == "'":
        sheet = sheet[1:-1].replace("''", "'")
    return sheet, part
