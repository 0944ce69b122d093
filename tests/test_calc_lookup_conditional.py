"""Tests for lookup and conditional aggregation builtins.

Covers: INDEX, MATCH, VLOOKUP, HLOOKUP, SUMIF, COUNTIF, AVERAGEIF, and the
criteria parser they share.
"""

from __future__ import annotations

import pytest

from gridcalc import Workbook
from gridcalc.calc import FormulaEngine
from gridcalc.calc._functions import _parse_criteria

# ---------------------------------------------------------------------------
# Helper: build workbook with data + formulas
# ---------------------------------------------------------------------------


def _make_wb(data: dict[str, object]) -> Workbook:
    wb = Workbook(["Sheet1"])
    ws = wb.active
    for ref, val in data.items():
        ws[ref] = val
    return wb


_PRODUCTS = {
    "A1": "Apple", "B1": 1.2, "C1": 50,
    "A2": "Banana", "B2": 0.5, "C2": 120,
    "A3": "Cherry", "B3": 4.0, "C3": 15,
    "A4": "Apricot", "B4": 2.2, "C4": 40,
}

_BRACKETS = {"A1": 0, "B1": "F", "A2": 60, "B2": "D", "A3": 70, "B3": "C", "A4": 90, "B4": "A"}


def _calc(formula: str, data: dict[str, object] = _PRODUCTS) -> object:
    return FormulaEngine().execute(formula, _make_wb(data), "Sheet1")


# ---------------------------------------------------------------------------
# Criteria parser
# ---------------------------------------------------------------------------


class TestParseCriteria:
    def test_number(self) -> None:
        pred = _parse_criteria(100)
        assert pred(100)
        assert pred(100.0)
        assert not pred("100")

    def test_operator(self) -> None:
        pred = _parse_criteria(">=50")
        assert pred(50)
        assert not pred(49.9)
        assert not pred("text")

    def test_not_equal_includes_other_types(self) -> None:
        pred = _parse_criteria("<>0")
        assert pred(1)
        assert pred("x")
        assert not pred(0)

    def test_text_case_insensitive(self) -> None:
        pred = _parse_criteria("apple")
        assert pred("APPLE")
        assert not pred("Apples")

    def test_wildcards(self) -> None:
        assert _parse_criteria("ap*")("Apricot")
        assert _parse_criteria("?pple")("Apple")
        assert not _parse_criteria("?pple")("Pineapple")

    def test_numeric_text_criteria(self) -> None:
        assert _parse_criteria("15")(15)


# ---------------------------------------------------------------------------
# Conditional aggregation
# ---------------------------------------------------------------------------


class TestConditional:
    def test_sumif_with_sum_range(self) -> None:
        assert _calc('=SUMIF(A1:A4, "A*", C1:C4)') == 90

    def test_sumif_without_sum_range(self) -> None:
        assert _calc('=SUMIF(C1:C4, ">40")') == 170

    def test_countif(self) -> None:
        assert _calc('=COUNTIF(B1:B4, "<2")') == 2
        assert _calc('=COUNTIF(A1:A4, "cherry")') == 1

    def test_averageif(self) -> None:
        assert _calc('=AVERAGEIF(A1:A4, "A*", B1:B4)') == pytest.approx(1.7)

    def test_averageif_no_match(self) -> None:
        assert _calc('=AVERAGEIF(A1:A4, "zzz", B1:B4)') == "#DIV/0!"

    def test_sumif_criteria_from_cell(self) -> None:
        data = dict(_PRODUCTS, E1="Banana")
        assert _calc("=SUMIF(A1:A4, E1, C1:C4)", data) == 120


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


class TestVlookup:
    def test_exact(self) -> None:
        assert _calc('=VLOOKUP("Cherry", A1:C4, 3, FALSE)') == 15

    def test_exact_case_insensitive(self) -> None:
        assert _calc('=VLOOKUP("banana", A1:C4, 2, FALSE)') == 0.5

    def test_exact_missing(self) -> None:
        assert _calc('=VLOOKUP("Kiwi", A1:C4, 2, FALSE)') == "#N/A"

    def test_column_out_of_table(self) -> None:
        assert _calc('=VLOOKUP("Apple", A1:C4, 4, FALSE)') == "#REF!"

    def test_approximate(self) -> None:
        assert _calc("=VLOOKUP(75, A1:B4, 2)", _BRACKETS) == "C"
        assert _calc("=VLOOKUP(95, A1:B4, 2, TRUE)", _BRACKETS) == "A"

    def test_approximate_below_first(self) -> None:
        assert _calc("=VLOOKUP(-1, A1:B4, 2)", _BRACKETS) == "#N/A"

    def test_wildcard(self) -> None:
        assert _calc('=VLOOKUP("Ch*", A1:C4, 3, FALSE)') == 15


class TestHlookup:
    def test_exact(self) -> None:
        data = {"A1": "Q1", "B1": "Q2", "C1": "Q3", "A2": 10, "B2": 20, "C2": 30}
        assert _calc('=HLOOKUP("Q2", A1:C2, 2, FALSE)', data) == 20

    def test_row_out_of_table(self) -> None:
        data = {"A1": "Q1", "A2": 10}
        assert _calc('=HLOOKUP("Q1", A1:A2, 3, FALSE)', data) == "#REF!"


class TestIndexMatch:
    def test_index_2d(self) -> None:
        assert _calc("=INDEX(A1:C4, 2, 3)") == 120

    def test_index_column_vector(self) -> None:
        assert _calc("=INDEX(A1:A4, 3)") == "Cherry"

    def test_index_row_vector(self) -> None:
        assert _calc("=INDEX(A1:C1, 2)") == 1.2

    def test_index_out_of_bounds(self) -> None:
        assert _calc("=INDEX(A1:C4, 5, 1)") == "#REF!"

    def test_match_exact(self) -> None:
        assert _calc('=MATCH("Cherry", A1:A4, 0)') == 3

    def test_match_approximate(self) -> None:
        assert _calc("=MATCH(65, A1:A4)", _BRACKETS) == 2

    def test_match_descending(self) -> None:
        data = {"A1": 90, "A2": 70, "A3": 60}
        assert _calc("=MATCH(65, A1:A3, -1)", data) == 2

    def test_index_match_combo(self) -> None:
        assert _calc('=INDEX(C1:C4, MATCH("Apricot", A1:A4, 0))') == 40
