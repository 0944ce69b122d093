"""Serializable workbook snapshot (the persistence and import/export boundary)."""

from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, Field, model_validator

from gridcalc._cell import Cell, CellStyle, FormulaCell, LiteralCell
from gridcalc.calc._functions import FormulaError

ScalarValue = Union[bool, int, float, str]


class StyleModel(BaseModel):
    """Font flags and color of a cell."""

    bold: bool = False
    italic: bool = False
    underline: bool = False
    color: Optional[str] = None


class CellModel(BaseModel):
    """One non-empty cell. Exactly one of ``value``/``formula`` describes its content."""

    value: Optional[ScalarValue] = None
    formula: Optional[str] = None  # source without "="
    result: Optional[ScalarValue] = None  # last evaluated value of a formula
    result_error: Optional[str] = None  # error token when the last evaluation failed
    number_format: Optional[str] = None
    style: Optional[StyleModel] = None
    comment: Optional[str] = None


class SheetModel(BaseModel):
    """A sheet: A1 label -> cell, plus row/column size overrides (0-based keys)."""

    name: str = Field(min_length=1)
    cells: dict[str, CellModel] = Field(default_factory=dict)
    row_heights: dict[int, float] = Field(default_factory=dict)
    col_widths: dict[int, float] = Field(default_factory=dict)


class WorkbookSnapshot(BaseModel):
    """Ordered sheets, active sheet, and the version the snapshot was taken at."""

    sheets: list[SheetModel] = Field(min_length=1)
    active_sheet: str
    version: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_sheets(self) -> WorkbookSnapshot:
        names = [s.name for s in self.sheets]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate sheet names in snapshot: {names}")
        if self.active_sheet not in names:
            raise ValueError(f"Active sheet {self.active_sheet!r} is not in {names}")
        return self


def cell_to_model(cell: Cell) -> CellModel:
    style = StyleModel(**vars(cell.style)) if cell.style is not None else None
    if isinstance(cell, FormulaCell):
        result, result_error = cell.result, None
        if isinstance(result, FormulaError):
            result, result_error = None, result.code
        return CellModel(
            formula=cell.source,
            result=result,
            result_error=result_error,
            number_format=cell.number_format,
            style=style,
            comment=cell.comment,
        )
    return CellModel(
        value=cell.value,
        number_format=cell.number_format,
        style=style,
        comment=cell.comment,
    )


def cell_from_model(model: CellModel) -> Cell:
    style = CellStyle(**model.style.model_dump()) if model.style is not None else None
    if model.formula is not None:
        result = model.result
        if model.result_error is not None:
            result = FormulaError.of(model.result_error)
        return FormulaCell(
            model.formula,
            result=result,
            number_format=model.number_format,
            style=style,
            comment=model.comment,
        )
    return LiteralCell(
        model.value,
        number_format=model.number_format,
        style=style,
        comment=model.comment,
    )
