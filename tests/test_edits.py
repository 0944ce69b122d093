"""Tests for edit payload parsing."""

from __future__ import annotations

import pytest

from gridcalc import InvalidEditError, UnknownEditError, parse_edit
from gridcalc._edits import (
    KNOWN_OPS,
    DeleteColumn,
    FormatCell,
    FormatRange,
    InsertColumn,
    InsertRow,
    RenameSheet,
    ResizeColumn,
    SetCell,
    SetFormula,
    SetRange,
)


class TestParseEdit:
    def test_set_cell(self) -> None:
        edit = parse_edit({"op": "setCell", "cell": "$b$2", "value": 30})
        assert isinstance(edit, SetCell)
        assert edit.cell == "B2"
        assert edit.value == 30
        assert edit.sheet is None

    def test_set_cell_label_alias(self) -> None:
        assert parse_edit({"op": "setCell", "label": "A1", "value": "x"}).cell == "A1"

    def test_value_types_preserved(self) -> None:
        assert parse_edit({"op": "setCell", "cell": "A1", "value": True}).value is True
        assert isinstance(parse_edit({"op": "setCell", "cell": "A1", "value": 2.5}).value, float)

    def test_formula_strips_equals(self) -> None:
        edit = parse_edit({"op": "setFormula", "cell": "C2", "formula": "=B2*2"})
        assert isinstance(edit, SetFormula)
        assert edit.formula == "B2*2"

    def test_empty_formula_rejected(self) -> None:
        with pytest.raises(InvalidEditError):
            parse_edit({"op": "setFormula", "cell": "C2", "formula": "="})

    def test_set_range(self) -> None:
        edit = parse_edit({"op": "setRange", "range": "a1:c2", "values": [[1, None, "x"]]})
        assert isinstance(edit, SetRange)
        assert edit.range == "A1:C2"
        assert edit.values == [[1, None, "x"]]

    def test_row_edits_are_one_based(self) -> None:
        edit = parse_edit({"op": "insertRow", "row": 3, "count": 2})
        assert isinstance(edit, InsertRow)
        assert (edit.row, edit.index, edit.count) == (3, 2, 2)
        assert parse_edit({"op": "deleteRow", "index": 1}).index == 0

    def test_row_zero_rejected(self) -> None:
        with pytest.raises(InvalidEditError):
            parse_edit({"op": "insertRow", "row": 0})

    def test_column_letters_or_index(self) -> None:
        edit = parse_edit({"op": "insertColumn", "col": "C"})
        assert isinstance(edit, InsertColumn)
        assert edit.col == 2
        assert parse_edit({"op": "deleteCol", "index": 4}).col == 4
        assert isinstance(parse_edit({"op": "deleteCol", "col": "a"}), DeleteColumn)

    def test_bad_column_letters(self) -> None:
        with pytest.raises(InvalidEditError):
            parse_edit({"op": "insertColumn", "col": "1A"})

    def test_resize(self) -> None:
        edit = parse_edit({"op": "resizeCol", "col": "B", "size": 120})
        assert isinstance(edit, ResizeColumn)
        assert (edit.col, edit.size) == (1, 120)
        with pytest.raises(InvalidEditError):
            parse_edit({"op": "resizeRow", "row": 1, "size": -5})

    def test_format_string_is_number_format(self) -> None:
        edit = parse_edit({"op": "formatRange", "range": "B2:B10", "format": "0.00"})
        assert isinstance(edit, FormatRange)
        assert edit.format.number_format == "0.00"

    def test_format_aliases(self) -> None:
        edit = parse_edit({"op": "formatCell", "cell": "A1", "format": {"numFmt": "0%", "bold": True}})
        assert isinstance(edit, FormatCell)
        assert edit.format.number_format == "0%"
        assert edit.format.bold is True

    def test_empty_format_rejected(self) -> None:
        with pytest.raises(InvalidEditError):
            parse_edit({"op": "formatCell", "cell": "A1", "format": {}})

    def test_unknown_format_key_rejected(self) -> None:
        with pytest.raises(InvalidEditError):
            parse_edit({"op": "formatCell", "cell": "A1", "format": {"blink": True}})

    def test_rename_aliases(self) -> None:
        edit = parse_edit({"op": "renameSheet", "sheet": "Sheet1", "name": "Data"})
        assert isinstance(edit, RenameSheet)
        assert (edit.old, edit.new) == ("Sheet1", "Data")

    def test_models_pass_through(self) -> None:
        edit = SetCell(cell="A1", value=1)
        assert parse_edit(edit) is edit

    def test_known_ops(self) -> None:
        assert {"setCell", "insertCol", "resizeColumn", "renameSheet"} <= KNOWN_OPS


class TestParseEditErrors:
    def test_unknown_op(self) -> None:
        with pytest.raises(UnknownEditError, match="Unknown op 'explode'") as exc_info:
            parse_edit({"op": "explode"})
        assert exc_info.value.op == "explode"

    def test_missing_op(self) -> None:
        with pytest.raises(UnknownEditError):
            parse_edit({"cell": "A1"})

    def test_not_a_mapping(self) -> None:
        with pytest.raises(InvalidEditError):
            parse_edit(["setCell"])  # type: ignore[arg-type]

    def test_bad_label(self) -> None:
        with pytest.raises(InvalidEditError, match="Invalid setCell edit"):
            parse_edit({"op": "setCell", "cell": "A0", "value": 1})

    def test_missing_field(self) -> None:
        with pytest.raises(InvalidEditError) as exc_info:
            parse_edit({"op": "setFormula", "cell": "A1"})
        assert "formula" in exc_info.value.message
