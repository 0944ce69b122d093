"""Edit payloads accepted by the mutation coordinator.

Each edit is a pydantic model tagged by ``op``. Payloads use the same
camelCase operation names and field spellings as the JSON edit lists the
assistant panel produces, so ``parse_edit`` can take them unchanged::

    {"op": "setCell", "cell": "B2", "value": 30}
    {"op": "insertRow", "row": 3}
    {"op": "deleteColumn", "col": "C"}
    {"op": "formatRange", "range": "B2:B10", "format": "0.00"}
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Optional, Union, get_args

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from gridcalc._cell import CellFormat
from gridcalc._utils import decode_col, decode_range, normalize_label
from gridcalc.exceptions import EditError, InvalidEditError, UnknownEditError

ScalarValue = Union[bool, int, float, str]


class _Edit(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class _SheetEdit(_Edit):
    """Edits that target one sheet; ``sheet=None`` means the active sheet."""

    sheet: Optional[str] = None


def _column_payload(data: Any) -> Any:
    """Accept a column as letters in ``col`` or a 0-based ``index``."""
    if not isinstance(data, Mapping):
        return data
    data = dict(data)
    col = data.get("col")
    if isinstance(col, str):
        data["col"] = decode_col(col.strip())
    elif col is None and "index" in data:
        data["col"] = data.pop("index")
    return data


def _format_payload(v: Any) -> Any:
    if isinstance(v, str):
        if not v:
            raise ValueError("format must not be empty")
        return {"number_format": v}
    return v


class _CellEdit(_SheetEdit):
    cell: str = Field(validation_alias=AliasChoices("cell", "label"))

    @field_validator("cell")
    @classmethod
    def validate_cell(cls, v: str) -> str:
        return normalize_label(v)


class _RangeEdit(_SheetEdit):
    range: str

    @field_validator("range")
    @classmethod
    def validate_range(cls, v: str) -> str:
        decode_range(v)
        return v.strip().upper().replace("$", "")


# ---------------------------------------------------------------------------
# Cell content
# ---------------------------------------------------------------------------


class SetCell(_CellEdit):
    """Write a typed literal, or a formula when the value starts with ``=``.

    ``value=None`` (or ``""``) deletes the cell.
    """

    op: Literal["setCell"] = "setCell"
    value: Optional[ScalarValue] = None


class SetFormula(_CellEdit):
    op: Literal["setFormula"] = "setFormula"
    formula: str = Field(validation_alias=AliasChoices("formula", "source"))

    @field_validator("formula")
    @classmethod
    def validate_formula(cls, v: str) -> str:
        source = v.strip()
        if source.startswith("="):
            source = source[1:].strip()
        if not source:
            raise ValueError("formula must not be empty")
        return source


class SetRange(_RangeEdit):
    """Write a row-major matrix anchored at the range origin.

    Writing stops at the range bounds; ``None`` entries leave cells untouched.
    """

    op: Literal["setRange"] = "setRange"
    range: str = "A1"
    values: list[list[Optional[ScalarValue]]]


class ClearRange(_RangeEdit):
    op: Literal["clearRange"] = "clearRange"


class SetComment(_CellEdit):
    op: Literal["setComment"] = "setComment"
    comment: Optional[str] = None


# ---------------------------------------------------------------------------
# Structure
# ---------------------------------------------------------------------------


class _RowEdit(_SheetEdit):
    row: int = Field(ge=1, validation_alias=AliasChoices("row", "index"))  # 1-based
    count: int = Field(default=1, ge=1)

    @property
    def index(self) -> int:
        return self.row - 1


class InsertRow(_RowEdit):
    op: Literal["insertRow"] = "insertRow"


class DeleteRow(_RowEdit):
    op: Literal["deleteRow"] = "deleteRow"


class _ColumnEdit(_SheetEdit):
    col: int = Field(ge=0)  # 0-based
    count: int = Field(default=1, ge=1)

    @model_validator(mode="before")
    @classmethod
    def accept_letters(cls, data: Any) -> Any:
        return _column_payload(data)


class InsertColumn(_ColumnEdit):
    op: Literal["insertColumn", "insertCol"] = "insertColumn"


class DeleteColumn(_ColumnEdit):
    op: Literal["deleteColumn", "deleteCol"] = "deleteColumn"


class ResizeRow(_SheetEdit):
    """Set a row height; ``size=None`` restores the default."""

    op: Literal["resizeRow"] = "resizeRow"
    row: int = Field(ge=1, validation_alias=AliasChoices("row", "index"))
    size: Optional[float] = Field(default=None, gt=0)


class ResizeColumn(_SheetEdit):
    op: Literal["resizeColumn", "resizeCol"] = "resizeColumn"
    col: int = Field(ge=0)
    size: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="before")
    @classmethod
    def accept_letters(cls, data: Any) -> Any:
        return _column_payload(data)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


class FormatSpec(BaseModel):
    """A format to assign. A bare string payload is a number format."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    number_format: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("number_format", "numFmt", "z")
    )
    bold: Optional[bool] = None
    italic: Optional[bool] = None
    underline: Optional[bool] = None
    color: Optional[str] = None

    @model_validator(mode="after")
    def validate_not_empty(self) -> FormatSpec:
        if all(v is None for v in (self.number_format, self.bold, self.italic,
                                   self.underline, self.color)):
            raise ValueError("format must set at least one property")
        return self

    def to_cell_format(self) -> CellFormat:
        return CellFormat(
            number_format=self.number_format,
            bold=self.bold,
            italic=self.italic,
            underline=self.underline,
            color=self.color,
        )


class FormatCell(_CellEdit):
    op: Literal["formatCell"] = "formatCell"
    format: FormatSpec

    @field_validator("format", mode="before")
    @classmethod
    def accept_number_format(cls, v: Any) -> Any:
        return _format_payload(v)


class FormatRange(_RangeEdit):
    op: Literal["formatRange"] = "formatRange"
    format: FormatSpec

    @field_validator("format", mode="before")
    @classmethod
    def accept_number_format(cls, v: Any) -> Any:
        return _format_payload(v)


# ---------------------------------------------------------------------------
# Sheets
# ---------------------------------------------------------------------------


class AddSheet(_Edit):
    op: Literal["addSheet"] = "addSheet"
    name: Optional[str] = None
    position: Optional[int] = Field(default=None, ge=0)


class DeleteSheet(_Edit):
    op: Literal["deleteSheet"] = "deleteSheet"
    name: str = Field(validation_alias=AliasChoices("name", "sheet"))


class RenameSheet(_Edit):
    op: Literal["renameSheet"] = "renameSheet"
    old: str = Field(validation_alias=AliasChoices("old", "sheet", "from"))
    new: str = Field(min_length=1, validation_alias=AliasChoices("new", "name", "to"))


Edit = Annotated[
    Union[
        SetCell, SetFormula, SetRange, ClearRange, SetComment,
        InsertRow, DeleteRow, InsertColumn, DeleteColumn, ResizeRow, ResizeColumn,
        FormatCell, FormatRange, AddSheet, DeleteSheet, RenameSheet,
    ],
    Field(discriminator="op"),
]

EDIT_TYPES: tuple[type[_Edit], ...] = (
    SetCell, SetFormula, SetRange, ClearRange, SetComment,
    InsertRow, DeleteRow, InsertColumn, DeleteColumn, ResizeRow, ResizeColumn,
    FormatCell, FormatRange, AddSheet, DeleteSheet, RenameSheet,
)

KNOWN_OPS: frozenset[str] = frozenset(
    op for model in EDIT_TYPES for op in get_args(model.model_fields["op"].annotation)
)

_EDIT_ADAPTER: TypeAdapter[Any] = TypeAdapter(Edit)


def _summarize(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"][1:]) or "payload"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def parse_edit(payload: Mapping[str, Any] | _Edit) -> Any:
    """Validate an edit payload into its model.

    Raises :class:`UnknownEditError` for an unrecognized ``op`` and
    :class:`InvalidEditError` for a malformed payload.
    """
    if isinstance(payload, EDIT_TYPES):
        return payload
    if not isinstance(payload, Mapping):
        raise InvalidEditError(f"Edit must be a mapping, got {type(payload).__name__}")
    op = payload.get("op")
    if op not in KNOWN_OPS:
        raise UnknownEditError(f"Unknown op {op!r}", op=op if isinstance(op, str) else None)
    try:
        return _EDIT_ADAPTER.validate_python(dict(payload))
    except ValidationError as exc:
        raise InvalidEditError(f"Invalid {op} edit: {_summarize(exc)}", op=op) from exc


@dataclass(frozen=True)
class EditResult:
    """Outcome of ``apply_edit``/``apply_edits``.

    ``deferred`` results were queued because a frame was rendering; they are
    applied (and may still fail) when the frame ends.
    """

    ok: bool
    version: int
    error: EditError | None = None
    deferred: bool = False
    applied: int = 0
