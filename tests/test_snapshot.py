"""Tests for WorkbookSnapshot serialization."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from gridcalc import CellStyle, FormulaCell, LiteralCell, Workbook, WorkbookSnapshot
from gridcalc.calc import FormulaEngine, FormulaError


def _sample() -> Workbook:
    wb = Workbook(["Data", "Summary"])
    data = wb["Data"]
    data["A1"] = "Revenue"
    data["B1"] = 1200.5
    data["C1"] = True
    data.set_cell("D1", LiteralCell(None, number_format="0.00", comment="todo"))
    data.set_cell("B2", LiteralCell(7, style=CellStyle(bold=True, color="#ff0000")))
    data.set_row_height(0, 32)
    data.set_col_width(1, 120)
    wb["Summary"]["A1"] = "=Data!B1*2"
    wb.set_active("Summary")
    wb.bump_version()
    return wb


class TestSnapshotRoundTrip:
    def test_model_round_trip(self) -> None:
        wb = _sample()
        restored = Workbook.from_snapshot(wb.to_snapshot())
        assert restored.sheetnames == ["Data", "Summary"]
        assert restored.active_sheet == "Summary"
        assert restored.version == 1
        assert dict(restored["Data"].iter_cells()) == dict(wb["Data"].iter_cells())
        assert restored["Data"].row_heights == {0: 32.0}
        assert restored["Data"].col_widths == {1: 120.0}

    def test_json_round_trip_keeps_types(self) -> None:
        wb = _sample()
        text = wb.to_snapshot().model_dump_json()
        restored = Workbook.from_snapshot(text)
        data = restored["Data"]
        assert data["B1"].value == 1200.5
        assert data["C1"].value is True
        assert data["B2"].style == CellStyle(bold=True, color="#ff0000")
        assert data["D1"].comment == "todo"
        assert restored["Summary"]["A1"] == FormulaCell("Data!B1*2")
        assert restored["Data"].row_heights == {0: 32.0}

    def test_dict_input(self) -> None:
        restored = Workbook.from_snapshot({
            "sheets": [{"name": "S", "cells": {"A1": {"value": 3}}}],
            "active_sheet": "S",
        })
        assert restored["S"]["A1"] == LiteralCell(3)
        assert restored.version == 0

    def test_formula_results_survive(self) -> None:
        wb = Workbook(["S"])
        wb.active["A1"] = 2
        wb.active["A2"] = "=A1*21"
        wb.active["A3"] = "=1/0"
        FormulaEngine().recalculate(wb)
        restored = Workbook.from_snapshot(wb.to_snapshot().model_dump_json())
        assert restored.active["A2"].result == 42
        assert restored.active["A3"].result == FormulaError.DIV0

    def test_error_result_stored_as_token(self) -> None:
        wb = Workbook(["S"])
        wb.active.set_cell("A1", FormulaCell("1/0", result=FormulaError.DIV0))
        cell = wb.to_snapshot().sheets[0].cells["A1"]
        assert cell.result is None
        assert cell.result_error == "#DIV/0!"


class TestSnapshotValidation:
    def test_needs_a_sheet(self) -> None:
        with pytest.raises(ValidationError):
            WorkbookSnapshot(sheets=[], active_sheet="S")

    def test_duplicate_names(self) -> None:
        with pytest.raises(ValidationError, match="Duplicate"):
            WorkbookSnapshot.model_validate({
                "sheets": [{"name": "S"}, {"name": "S"}], "active_sheet": "S",
            })

    def test_active_must_exist(self) -> None:
        with pytest.raises(ValidationError):
            WorkbookSnapshot.model_validate({"sheets": [{"name": "S"}], "active_sheet": "T"})

    def test_negative_version(self) -> None:
        with pytest.raises(ValidationError):
            WorkbookSnapshot.model_validate(
                {"sheets": [{"name": "S"}], "active_sheet": "S", "version": -1}
            )
