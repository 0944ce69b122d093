"""Tests for gridcalc.calc builtin functions, coercion, and number formats."""

from __future__ import annotations

import pytest

from gridcalc import Workbook
from gridcalc.calc import FormulaEngine, FormulaError, FunctionRegistry, RangeValue, format_number
from gridcalc.calc._functions import ERROR_CODES, is_truthy, to_number, to_text


def _calc(formula: str, data: dict[str, object] | None = None) -> object:
    wb = Workbook(["Sheet1"])
    ws = wb.active
    for ref, val in (data or {}).items():
        ws[ref] = val
    return FormulaEngine().execute(formula, wb, "Sheet1")


_COLUMN = {"A1": 10, "A2": 20, "A3": 30}


# ---------------------------------------------------------------------------
# FormulaError
# ---------------------------------------------------------------------------


class TestFormulaError:
    def test_singletons(self) -> None:
        assert FormulaError.of("#n/a") is FormulaError.NA
        assert str(FormulaError.DIV0) == "#DIV/0!"

    def test_equality_by_code(self) -> None:
        detailed = FormulaError.VALUE.with_details("bad input")
        assert detailed == FormulaError.VALUE
        assert detailed == "#VALUE!"
        assert detailed is not FormulaError.VALUE
        assert detailed.details == "bad input"

    def test_known_codes(self) -> None:
        assert {"#CIRCULAR!", "#DEPTH!", "#ERROR!", "#REF!"} <= ERROR_CODES

    def test_hashable(self) -> None:
        assert len({FormulaError.NA, FormulaError.NA.with_details("x")}) == 1


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------


class TestCoercion:
    def test_to_number(self) -> None:
        assert to_number(None) == 0
        assert to_number(True) == 1
        assert to_number(" 2.5 ") == 2.5
        assert to_number("abc") == "#VALUE!"

    def test_to_text(self) -> None:
        assert to_text(None) == ""
        assert to_text(False) == "FALSE"
        assert to_text(3.0) == "3"
        assert to_text(0.1 + 0.2) == "0.3"

    def test_is_truthy(self) -> None:
        assert is_truthy(0) is False
        assert is_truthy("true") is True
        assert is_truthy("yes") == "#VALUE!"


class TestRangeValue:
    def test_get_is_one_based(self) -> None:
        rv = RangeValue([1, 2, 3, 4], 2, 2)
        assert rv.get(2, 1) == 3
        assert rv.get(3, 1) is None

    def test_short_values_read_as_empty(self) -> None:
        rv = RangeValue([1, 2], 3, 2)
        assert rv.get(3, 2) is None
        assert rv.row(3) == [None, None]
        assert rv.column(1) == [1]


# ---------------------------------------------------------------------------
# Math and statistics
# ---------------------------------------------------------------------------


class TestAggregates:
    def test_sum(self) -> None:
        assert _calc("=SUM(A1:A3)", _COLUMN) == 60

    def test_sum_mixed_arguments(self) -> None:
        assert _calc("=SUM(A1:A2, 5, A3)", _COLUMN) == 65

    def test_sum_skips_text_in_ranges(self) -> None:
        assert _calc("=SUM(A1:A3)", {"A1": 1, "A2": "two", "A3": True}) == 1

    def test_sum_scalar_text_is_value_error(self) -> None:
        assert _calc('=SUM(1, "x")') == "#VALUE!"

    def test_sum_propagates_range_errors(self) -> None:
        assert _calc("=SUM(A1:A2)", {"A1": 1, "A2": "=1/0"}) == "#DIV/0!"

    def test_sum_over_rows_beyond_data(self) -> None:
        assert _calc("=SUM(A1:A1048576)", _COLUMN) == 60

    def test_average(self) -> None:
        assert _calc("=AVERAGE(A1:A3)", _COLUMN) == 20

    def test_average_of_nothing(self) -> None:
        assert _calc("=AVERAGE(B1:B3)") == "#DIV/0!"

    def test_min_max(self) -> None:
        assert _calc("=MIN(A1:A3)", _COLUMN) == 10
        assert _calc("=MAX(A1:A3, 99)", _COLUMN) == 99
        assert _calc("=MAX(B1:B2)") == 0

    def test_count_and_counta(self) -> None:
        data = {"A1": 1, "A2": "x", "A3": 2.5}
        assert _calc("=COUNT(A1:A4)", data) == 2
        assert _calc("=COUNTA(A1:A4)", data) == 3

    def test_count_ignores_errors(self) -> None:
        assert _calc("=COUNT(A1:A2)", {"A1": 1, "A2": "=1/0"}) == 1


class TestMath:
    @pytest.mark.parametrize(
        ("formula", "expected"),
        [
            ("=ABS(-3)", 3),
            ("=ROUND(2.5, 0)", 3),
            ("=ROUND(-2.5, 0)", -3),
            ("=ROUND(3.14159, 2)", 3.14),
            ("=ROUNDUP(1.21, 1)", 1.3),
            ("=ROUNDDOWN(-1.29, 1)", -1.2),
            ("=INT(-1.5)", -2),
            ("=MOD(-7, 3)", 2),
            ("=POWER(2, 10)", 1024),
            ("=SQRT(16)", 4),
            ("=SIGN(-0.5)", -1),
        ],
    )
    def test_values(self, formula: str, expected: float) -> None:
        assert _calc(formula) == pytest.approx(expected)

    def test_errors(self) -> None:
        assert _calc("=MOD(1, 0)") == "#DIV/0!"
        assert _calc("=SQRT(-1)") == "#NUM!"
        assert _calc("=POWER(0, -1)") == "#DIV/0!"
        assert _calc('=ABS("x")') == "#VALUE!"


# ---------------------------------------------------------------------------
# Logic
# ---------------------------------------------------------------------------


class TestLogic:
    def test_if(self) -> None:
        assert _calc('=IF(A1>50,"big","small")', {"A1": 100}) == "big"
        assert _calc('=IF(A1>50,"big","small")', {"A1": 1}) == "small"

    def test_if_without_else(self) -> None:
        assert _calc("=IF(FALSE, 1)") is False

    def test_if_is_lazy(self) -> None:
        assert _calc("=IF(TRUE, 1, 1/0)") == 1

    def test_iferror(self) -> None:
        assert _calc('=IFERROR(1/0, "fallback")') == "fallback"
        assert _calc('=IFERROR(5, "fallback")') == 5

    def test_choose(self) -> None:
        assert _calc('=CHOOSE(2, "a", "b", "c")') == "b"
        assert _calc('=CHOOSE(4, "a", "b")') == "#VALUE!"

    def test_and_or_not(self) -> None:
        assert _calc("=AND(TRUE, 1, A1:A2)", {"A1": 1, "A2": 2}) is True
        assert _calc("=OR(FALSE, 0)") is False
        assert _calc("=NOT(0)") is True

    def test_is_functions(self) -> None:
        assert _calc("=ISERROR(1/0)") is True
        assert _calc("=ISBLANK(A1)") is True
        assert _calc("=ISNUMBER(A1)", {"A1": 3}) is True
        assert _calc('=ISTEXT("x")') is True


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------


class TestText:
    @pytest.mark.parametrize(
        ("formula", "expected"),
        [
            ('=LEFT("Hello", 2)', "He"),
            ('=RIGHT("Hello", 3)', "llo"),
            ('=MID("Hello", 2, 3)', "ell"),
            ('=LEN("Hello")', 5),
            ('=CONCATENATE("a", 1, TRUE)', "a1TRUE"),
            ('=UPPER("abc")', "ABC"),
            ('=LOWER("ABC")', "abc"),
            ('=TRIM("  a   b  ")', "a b"),
            ('=SUBSTITUTE("a-b-c", "-", "+")', "a+b+c"),
            ('=SUBSTITUTE("a-b-c", "-", "+", 2)', "a-b+c"),
            ('=REPT("ab", 3)', "ababab"),
            ('=EXACT("a", "A")', False),
            ('=FIND("l", "Hello")', 3),
            ('=TEXT(1234.5, "#,##0.00")', "1,234.50"),
        ],
    )
    def test_values(self, formula: str, expected: object) -> None:
        assert _calc(formula) == expected

    def test_find_missing_is_value_error(self) -> None:
        assert _calc('=FIND("z", "Hello")') == "#VALUE!"


class TestFormatNumber:
    @pytest.mark.parametrize(
        ("value", "fmt", "expected"),
        [
            (1234.5, None, "1234.5"),
            (1234.5, "General", "1234.5"),
            (3.14159, "0.00", "3.14"),
            (1234567.891, "#,##0.00", "1,234,567.89"),
            (1234.4, "$#,##0", "$1,234"),
            (-1234.4, "$#,##0", "-$1,234"),
            (0.1234, "0.0%", "12.3%"),
            (-1500, "#,##0_);(#,##0)", "(1,500)"),
            (1500, "#,##0_);(#,##0)", "1,500 "),
            (12345, "0.00E+00", "1.23E+04"),
            (5, "not a format", "5"),
        ],
    )
    def test_formats(self, value: float, fmt: str | None, expected: str) -> None:
        assert format_number(value, fmt) == expected

    def test_non_numbers_pass_through(self) -> None:
        assert format_number("abc", "0.00") == "abc"
        assert format_number(True, "0.00") == "TRUE"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestFunctionRegistry:
    def test_lookup_case_insensitive(self) -> None:
        registry = FunctionRegistry()
        assert registry.has("sum")
        assert registry.get("Sum") is registry.get("SUM")

    def test_register_custom_function(self) -> None:
        registry = FunctionRegistry()
        registry.register("DOUBLE", lambda args: args[0] * 2, 1, 1)
        engine = FormulaEngine(functions=registry)
        wb = Workbook(["Sheet1"])
        assert engine.execute("=double(21)", wb, "Sheet1") == 42
        assert "DOUBLE" in registry.supported_functions

    def test_arity_text(self) -> None:
        registry = FunctionRegistry()
        assert registry.get("ABS").arity_text() == "exactly 1"
        assert registry.get("ROUND").arity_text() == "1 to 2"
        assert registry.get("SUM").arity_text() == "at least 1"
