"""Error values, range container, and the builtin function table."""

from __future__ import annotations

import fnmatch
import math
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from gridcalc._cell import parse_number

# ---------------------------------------------------------------------------
# FormulaError: typed error values that propagate through formula chains
# ---------------------------------------------------------------------------


class FormulaError:
    """Spreadsheet error value that propagates through formula chains.

    Use ``FormulaError.of(code)`` to get a cached singleton for each error
    code, or ``with_details`` for a copy that explains where it came from.
    Errors compare equal by code, and to their token string
    (``FormulaError.NA == "#N/A"``).
    """

    __slots__ = ("code", "details")
    _cache: dict[str, FormulaError] = {}

    NA: FormulaError
    VALUE: FormulaError
    REF: FormulaError
    DIV0: FormulaError
    NUM: FormulaError
    NAME: FormulaError
    CIRCULAR: FormulaError
    DEPTH: FormulaError
    ERROR: FormulaError

    def __init__(self, code: str, details: str | None = None) -> None:
        self.code = code.upper()
        self.details = details

    @classmethod
    def of(cls, code: str) -> FormulaError:
        canon = code.upper()
        if canon not in cls._cache:
            cls._cache[canon] = cls(canon)
        return cls._cache[canon]

    def with_details(self, details: str) -> FormulaError:
        return FormulaError(self.code, details)

    def __repr__(self) -> str:
        if self.details:
            return f"FormulaError({self.code!r}, {self.details!r})"
        return f"FormulaError({self.code!r})"

    def __str__(self) -> str:
        return self.code

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FormulaError):
            return self.code == other.code
        if isinstance(other, str):
            return self.code == other.upper()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.code)


# Singletons
FormulaError.NA = FormulaError.of("#N/A")
FormulaError.VALUE = FormulaError.of("#VALUE!")
FormulaError.REF = FormulaError.of("#REF!")
FormulaError.DIV0 = FormulaError.of("#DIV/0!")
FormulaError.NUM = FormulaError.of("#NUM!")
FormulaError.NAME = FormulaError.of("#NAME?")
FormulaError.CIRCULAR = FormulaError.of("#CIRCULAR!")
FormulaError.DEPTH = FormulaError.of("#DEPTH!")
FormulaError.ERROR = FormulaError.of("#ERROR!")

ERROR_CODES = frozenset(FormulaError._cache)  # noqa: SLF001


def is_error(val: Any) -> bool:
    """Return True if *val* is a FormulaError instance."""
    return isinstance(val, FormulaError)


def first_error(*values: Any) -> FormulaError | None:
    """Return the first FormulaError found in *values*, or None."""
    for v in values:
        if isinstance(v, FormulaError):
            return v
    return None


# ---------------------------------------------------------------------------
# RangeValue: shape-aware 2D range container
# ---------------------------------------------------------------------------


@dataclass
class RangeValue:
    """A resolved cell range that keeps its full 2D shape.

    ``values`` is row-major and may stop early: rows past the sheet's used
    range are not materialized and read back as empty (``None``).
    """

    values: list[Any]
    n_rows: int
    n_cols: int

    def get(self, row: int, col: int) -> Any:
        """Get value at 1-based (row, col) position."""
        if row < 1 or row > self.n_rows or col < 1 or col > self.n_cols:
            return None
        idx = (row - 1) * self.n_cols + (col - 1)
        return self.values[idx] if idx < len(self.values) else None

    def column(self, col: int) -> list[Any]:
        """Extract a 1-based column (materialized rows only)."""
        if col < 1 or col > self.n_cols:
            return []
        return [self.values[(r * self.n_cols) + (col - 1)]
                for r in range(self.n_rows)
                if (r * self.n_cols) + (col - 1) < len(self.values)]

    def row(self, row: int) -> list[Any]:
        """Extract a 1-based row, padded with ``None`` to the full width."""
        if row < 1 or row > self.n_rows:
            return []
        start = (row - 1) * self.n_cols
        out = self.values[start:start + self.n_cols]
        return out + [None] * (self.n_cols - len(out))

    def as_flat(self) -> list[Any]:
        return list(self.values)

    def first_error(self) -> FormulaError | None:
        return first_error(*self.values)

    def __iter__(self):
        return iter(self.values)

    def __len__(self):
        return len(self.values)


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


# Integers above this are not exact as doubles
_MAX_EXACT_INT = 2**53


def as_double(val: int | float) -> int | float | FormulaError:
    """Clamp *val* to what a double holds: big ints become floats, and
    anything outside double range (or NaN) is ``#NUM!``."""
    if isinstance(val, int) and not isinstance(val, bool) and abs(val) > _MAX_EXACT_INT:
        try:
            val = float(val)
        except OverflowError:
            return FormulaError.NUM.with_details("Number is beyond double range")
    if isinstance(val, float) and not math.isfinite(val):
        return FormulaError.NUM.with_details("Number is beyond double range")
    return val


def to_number(val: Any) -> int | float | FormulaError:
    """Scalar coercion for arithmetic: empty is 0, booleans are 1/0,
    numeric text parses, other text is ``#VALUE!``."""
    if isinstance(val, FormulaError):
        return val
    if val is None:
        return 0
    if isinstance(val, bool):
        return int(val)
    if isinstance(val, (int, float)):
        return as_double(val)
    if isinstance(val, str):
        number = parse_number(val)
        if number is not None:
            return as_double(number)
        return FormulaError.VALUE.with_details(f"Cannot use {val!r} as a number")
    return FormulaError.VALUE


def number_to_text(val: int | float) -> str:
    """General-format rendering: ``6.0`` -> ``"6"``, at most 15 significant digits."""
    if isinstance(val, float):
        if val.is_integer() and abs(val) < 1e15:
            return str(int(val))
        return format(val, ".15g").upper()
    return str(val)


def to_text(val: Any) -> str:
    if val is None:
        return ""
    if isinstance(val, bool):
        return "TRUE" if val else "FALSE"
    if isinstance(val, (int, float)):
        return number_to_text(val)
    return str(val)


def is_truthy(val: Any) -> bool | FormulaError:
    if isinstance(val, FormulaError):
        return val
    if val is None:
        return False
    if isinstance(val, (bool, int, float)):
        return val != 0
    if isinstance(val, str):
        upper = val.strip().upper()
        if upper in ("TRUE", "FALSE"):
            return upper == "TRUE"
    return FormulaError.VALUE


def _num(val: Any) -> float:
    """Strict scalar number for builtins; raises ValueError (-> ``#VALUE!``)."""
    n = to_number(val)
    if isinstance(n, FormulaError):
        raise ValueError(n.details or f"not a number: {val!r}")
    return float(n)


def _int(val: Any) -> int:
    return int(math.floor(_num(val)))


def _aggregate_numbers(args: Iterable[Any]) -> list[float] | FormulaError:
    """Collect numbers the way SUM/AVERAGE/MIN/MAX see them.

    Inside ranges only real numbers count (text, booleans, and blanks are
    skipped) and an error anywhere in a range is returned. Scalar arguments
    coerce: booleans become 1/0, numeric text parses, other text is
    ``#VALUE!``.
    """
    result: list[float] = []
    for v in args:
        if isinstance(v, RangeValue):
            for item in v.values:
                if isinstance(item, FormulaError):
                    return item
                if isinstance(item, (int, float)) and not isinstance(item, bool):
                    n = as_double(item)
                    if isinstance(n, FormulaError):
                        return n
                    result.append(float(n))
            continue
        if v is None:
            continue
        n = to_number(v)
        if isinstance(n, FormulaError):
            return n
        result.append(float(n))
    return result


def _flatten(arg: Any) -> list[Any]:
    if isinstance(arg, RangeValue):
        return arg.values
    return [arg]


# ---------------------------------------------------------------------------
# Math and statistics
# ---------------------------------------------------------------------------


def _builtin_sum(args: list[Any]) -> float | FormulaError:
    nums = _aggregate_numbers(args)
    if isinstance(nums, FormulaError):
        return nums
    return math.fsum(nums)


def _builtin_average(args: list[Any]) -> float | FormulaError:
    nums = _aggregate_numbers(args)
    if isinstance(nums, FormulaError):
        return nums
    if not nums:
        return FormulaError.DIV0.with_details("AVERAGE of no numbers")
    return math.fsum(nums) / len(nums)


def _builtin_min(args: list[Any]) -> float | FormulaError:
    nums = _aggregate_numbers(args)
    if isinstance(nums, FormulaError):
        return nums
    return min(nums) if nums else 0.0


def _builtin_max(args: list[Any]) -> float | FormulaError:
    nums = _aggregate_numbers(args)
    if isinstance(nums, FormulaError):
        return nums
    return max(nums) if nums else 0.0


def _builtin_count(args: list[Any]) -> int:
    """COUNT - counts numbers; scalar arguments also count numeric text."""
    count = 0
    for v in args:
        if isinstance(v, RangeValue):
            count += sum(
                1 for x in v.values
                if isinstance(x, (int, float)) and not isinstance(x, bool)
            )
        elif isinstance(v, (int, float)) or (isinstance(v, str) and parse_number(v) is not None):
            count += 1
    return count


def _builtin_counta(args: list[Any]) -> int:
    """COUNTA - counts non-empty values."""
    count = 0
    for v in args:
        if isinstance(v, RangeValue):
            count += sum(1 for x in v.values if x is not None)
        elif v is not None:
            count += 1
    return count


def _builtin_abs(args: list[Any]) -> float:
    return abs(_num(args[0]))


def _round_digits(args: list[Any]) -> int:
    return int(_num(args[1])) if len(args) > 1 else 0


def _builtin_round(args: list[Any]) -> float:
    value, digits = _num(args[0]), _round_digits(args)
    # Excel rounds half away from zero
    factor = 10.0 ** digits
    return math.copysign(math.floor(abs(value) * factor + 0.5) / factor, value)


def _builtin_roundup(args: list[Any]) -> float:
    value, digits = _num(args[0]), _round_digits(args)
    factor = 10.0 ** digits
    return math.copysign(math.ceil(abs(value) * factor) / factor, value)


def _builtin_rounddown(args: list[Any]) -> float:
    value, digits = _num(args[0]), _round_digits(args)
    factor = 10.0 ** digits
    return math.copysign(math.floor(abs(value) * factor) / factor, value)


def _builtin_int(args: list[Any]) -> float:
    return float(math.floor(_num(args[0])))


def _builtin_mod(args: list[Any]) -> float | FormulaError:
    number, divisor = _num(args[0]), _num(args[1])
    if divisor == 0:
        return FormulaError.DIV0
    # Excel MOD: result has the sign of the divisor
    return number - divisor * math.floor(number / divisor)


def _builtin_power(args: list[Any]) -> float | FormulaError:
    return power(_num(args[0]), _num(args[1]))


def power(base: float, exponent: float) -> float | FormulaError:
    """``base ^ exponent`` with spreadsheet error semantics."""
    if base == 0 and exponent < 0:
        return FormulaError.DIV0
    # Negative base with fractional exponent has no real result
    if base < 0 and not float(exponent).is_integer():
        return FormulaError.NUM
    try:
        result = float(base) ** float(exponent)
    except OverflowError:
        return FormulaError.NUM
    if not math.isfinite(result):
        return FormulaError.NUM
    return result


def _builtin_sqrt(args: list[Any]) -> float | FormulaError:
    value = _num(args[0])
    if value < 0:
        return FormulaError.NUM
    return math.sqrt(value)


def _builtin_sign(args: list[Any]) -> float:
    value = _num(args[0])
    if value > 0:
        return 1.0
    if value < 0:
        return -1.0
    return 0.0


# ---------------------------------------------------------------------------
# Logic (IF, IFERROR, CHOOSE are lazy: they receive zero-arg thunks)
# ---------------------------------------------------------------------------


def _builtin_if(args: list[Callable[[], Any]]) -> Any:
    condition = is_truthy(args[0]())
    if isinstance(condition, FormulaError):
        return condition
    if condition:
        return args[1]()
    return args[2]() if len(args) > 2 else False


def _builtin_iferror(args: list[Callable[[], Any]]) -> Any:
    value = args[0]()
    if isinstance(value, FormulaError):
        return args[1]()
    return value


def _builtin_choose(args: list[Callable[[], Any]]) -> Any:
    """CHOOSE(index_num, value1, value2, ...)."""
    index = args[0]()
    if isinstance(index, FormulaError):
        return index
    index_num = _int(index)
    if index_num < 1 or index_num > len(args) - 1:
        return FormulaError.VALUE
    return args[index_num]()


def _logical_values(args: list[Any]) -> list[bool] | FormulaError:
    out: list[bool] = []
    for a in args:
        if isinstance(a, RangeValue):
            for x in a.values:
                if isinstance(x, FormulaError):
                    return x
                # ranges contribute numbers and booleans only
                if isinstance(x, (bool, int, float)):
                    out.append(x != 0)
            continue
        t = is_truthy(a)
        if isinstance(t, FormulaError):
            return t
        out.append(t)
    if not out:
        return FormulaError.VALUE
    return out


def _builtin_and(args: list[Any]) -> bool | FormulaError:
    values = _logical_values(args)
    return values if isinstance(values, FormulaError) else all(values)


def _builtin_or(args: list[Any]) -> bool | FormulaError:
    values = _logical_values(args)
    return values if isinstance(values, FormulaError) else any(values)


def _builtin_not(args: list[Any]) -> bool | FormulaError:
    t = is_truthy(args[0])
    return t if isinstance(t, FormulaError) else not t


def _builtin_iserror(args: list[Any]) -> bool:
    return isinstance(args[0], FormulaError)


def _builtin_isblank(args: list[Any]) -> bool:
    return args[0] is None


def _builtin_isnumber(args: list[Any]) -> bool:
    return isinstance(args[0], (int, float)) and not isinstance(args[0], bool)


def _builtin_istext(args: list[Any]) -> bool:
    return isinstance(args[0], str)


# ---------------------------------------------------------------------------
# Text builtins
# ---------------------------------------------------------------------------


def _builtin_left(args: list[Any]) -> str | FormulaError:
    text = to_text(args[0])
    num_chars = _int(args[1]) if len(args) > 1 else 1
    if num_chars < 0:
        return FormulaError.VALUE
    return text[:num_chars]


def _builtin_right(args: list[Any]) -> str | FormulaError:
    text = to_text(args[0])
    num_chars = _int(args[1]) if len(args) > 1 else 1
    if num_chars < 0:
        return FormulaError.VALUE
    return text[-num_chars:] if num_chars > 0 else ""


def _builtin_mid(args: list[Any]) -> str | FormulaError:
    text = to_text(args[0])
    start, num_chars = _int(args[1]), _int(args[2])
    if start < 1 or num_chars < 0:
        return FormulaError.VALUE
    # MID is 1-indexed
    return text[start - 1 : start - 1 + num_chars]


def _builtin_len(args: list[Any]) -> int:
    return len(to_text(args[0]))


def _builtin_concatenate(args: list[Any]) -> str:
    return "".join(to_text(a) for a in args)


def _builtin_upper(args: list[Any]) -> str:
    return to_text(args[0]).upper()


def _builtin_lower(args: list[Any]) -> str:
    return to_text(args[0]).lower()


def _builtin_trim(args: list[Any]) -> str:
    """TRIM: remove leading/trailing spaces and collapse internal runs."""
    return " ".join(to_text(args[0]).split())


def _builtin_substitute(args: list[Any]) -> str:
    """SUBSTITUTE(text, old_text, new_text, [instance_num])."""
    text, old_text, new_text = to_text(args[0]), to_text(args[1]), to_text(args[2])
    if not old_text:
        return text
    if len(args) > 3 and args[3] is not None:
        instance = _int(args[3])
        if instance < 1:
            raise ValueError("SUBSTITUTE instance_num must be at least 1")
        count = 0
        start = 0
        while True:
            idx = text.find(old_text, start)
            if idx == -1:
                return text
            count += 1
            if count == instance:
                return text[:idx] + new_text + text[idx + len(old_text):]
            start = idx + 1
    return text.replace(old_text, new_text)


def _builtin_rept(args: list[Any]) -> str | FormulaError:
    n = _int(args[1])
    if n < 0:
        return FormulaError.VALUE
    return to_text(args[0]) * n


def _builtin_exact(args: list[Any]) -> bool:
    """EXACT(text1, text2). Case-sensitive comparison."""
    return to_text(args[0]) == to_text(args[1])


def _builtin_find(args: list[Any]) -> int | FormulaError:
    """FIND(find_text, within_text, [start_num]). Case-sensitive, 1-based."""
    find_text, within_text = to_text(args[0]), to_text(args[1])
    start_num = _int(args[2]) if len(args) > 2 and args[2] is not None else 1
    if start_num < 1 or start_num > len(within_text) + 1:
        return FormulaError.VALUE
    idx = within_text.find(find_text, start_num - 1)
    if idx == -1:
        return FormulaError.VALUE
    return idx + 1


def format_number(value: Any, fmt: str | None) -> str:
    """Render *value* with a number format (the TEXT function and cell display).

    Supports General, fixed decimals (``0.00``), thousands separators
    (``#,##0.00``), currency (``$#,##0``), percentages (``0.0%``),
    accounting negatives (``#,##0_);(#,##0)``), and scientific (``0.00E+00``).
    Unknown patterns fall back to General.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return to_text(value)
    if not fmt:
        return number_to_text(value)

    val = float(value)
    fmt_clean = fmt.replace('"', '')
    fmt_lower = fmt_clean.lower()

    if fmt_lower == "general":
        return number_to_text(value)

    # --- Percentage formats ---
    m = re.fullmatch(r"0(?:\.(0+))?%", fmt_lower)
    if m:
        decimals = len(m.group(1) or "")
        return f"{val * 100:.{decimals}f}%"

    # --- Accounting format with parentheses for negatives ---
    m = re.fullmatch(r"#,##0(?:\.(0+))?_\);\(#,##0(?:\.0+)?\)", fmt_lower)
    if m:
        decimals = len(m.group(1) or "")
        if val < 0:
            return f"({abs(val):,.{decimals}f})"
        return f"{val:,.{decimals}f} "

    # --- Currency and thousands separators ---
    m = re.fullmatch(r"(\$?)#,##0(?:\.(0+))?", fmt_lower)
    if m:
        decimals = len(m.group(2) or "")
        body = f"{abs(val):,.{decimals}f}"
        sign = "-" if val < 0 and float(body.replace(",", "")) != 0 else ""
        return f"{sign}{m.group(1)}{body}"

    # --- Scientific notation ---
    m = re.fullmatch(r"0(?:\.(0+))?e\+00", fmt_lower)
    if m:
        decimals = len(m.group(1) or "")
        return f"{val:.{decimals}E}"

    # --- Plain numeric 0, 0.0, 0.00, ... ---
    m = re.fullmatch(r"0(?:\.(0+))?", fmt_lower)
    if m:
        decimals = len(m.group(1) or "")
        return f"{val:.{decimals}f}"

    return number_to_text(value)


def _builtin_text(args: list[Any]) -> str:
    """TEXT(value, format_text)."""
    value = args[0]
    if isinstance(value, str):
        number = parse_number(value)
        if number is not None:
            value = number
    return format_number(value, to_text(args[1]))


# ---------------------------------------------------------------------------
# Criteria matching engine (shared by SUMIF, COUNTIF, AVERAGEIF)
# ---------------------------------------------------------------------------

_CRITERIA_OP_RE = re.compile(r"^(>=|<=|<>|>|<|=)(.*)$", re.DOTALL)


def _parse_criteria(criteria: Any) -> Callable[[Any], bool]:
    """Parse a criteria value into a predicate function.

    Supports:
    - Numeric exact match: ``100`` matches cells equal to 100
    - String exact match (case-insensitive): ``"Sales"``
    - Operator prefix: ``">100"``, ``"<=50"``, ``"<>0"``
    - Wildcards: ``"apple*"``, ``"?pple"`` (via fnmatch)
    """
    if isinstance(criteria, bool):
        return lambda v, c=criteria: isinstance(v, bool) and v == c
    if isinstance(criteria, (int, float)):
        target = float(criteria)
        return lambda v: _is_number(v) and float(v) == target

    crit_str = to_text(criteria)

    m = _CRITERIA_OP_RE.match(crit_str)
    if m:
        op, val_str = m.group(1), m.group(2).strip()
        threshold = parse_number(val_str)
        if threshold is None:
            # String comparison with operator
            val_lower = val_str.lower()
            compare = _STRING_OPS[op]
            if op == "<>":
                return lambda v: v is None or not isinstance(v, str) or v.lower() != val_lower
            return lambda v: isinstance(v, str) and compare(v.lower(), val_lower)
        t = float(threshold)
        compare = _NUMBER_OPS[op]
        if op == "<>":
            return lambda v: not (_is_number(v) and float(v) == t)
        return lambda v: _is_number(v) and compare(float(v), t)

    number = parse_number(crit_str)
    if number is not None:
        target = float(number)
        return lambda v: _is_number(v) and float(v) == target

    if "*" in crit_str or "?" in crit_str:
        pattern = crit_str.lower()
        return lambda v: isinstance(v, str) and fnmatch.fnmatchcase(v.lower(), pattern)

    lower = crit_str.lower()
    return lambda v: isinstance(v, str) and v.lower() == lower


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


_NUMBER_OPS: dict[str, Callable[[float, float], bool]] = {
    ">": lambda a, b: a > b,
    "<": lambda a, b: a < b,
    ">=": lambda a, b: a >= b,
    "<=": lambda a, b: a <= b,
    "=": lambda a, b: a == b,
    "<>": lambda a, b: a != b,
}
_STRING_OPS: dict[str, Callable[[str, str], bool]] = dict(_NUMBER_OPS)  # type: ignore[arg-type]


def _paired(criteria_range: Any, target_range: Any) -> list[tuple[Any, Any]]:
    """Align a criteria range with an optional target range by position."""
    crit = _flatten(criteria_range)
    if target_range is None:
        return [(v, v) for v in crit]
    if isinstance(criteria_range, RangeValue) and isinstance(target_range, RangeValue):
        # Target range is resized to the criteria range's shape from its origin
        pairs = []
        for r in range(1, criteria_range.n_rows + 1):
            for c in range(1, criteria_range.n_cols + 1):
                pairs.append((criteria_range.get(r, c), target_range.get(r, c)))
        return pairs
    target = _flatten(target_range)
    return [(v, target[i] if i < len(target) else None) for i, v in enumerate(crit)]


def _builtin_sumif(args: list[Any]) -> float | FormulaError:
    """SUMIF(criteria_range, criteria, [sum_range])."""
    predicate = _parse_criteria(args[1])
    total = 0.0
    for cv, sv in _paired(args[0], args[2] if len(args) > 2 else None):
        if predicate(cv):
            if isinstance(sv, FormulaError):
                return sv
            if _is_number(sv):
                total += float(sv)
    return total


def _builtin_countif(args: list[Any]) -> int:
    """COUNTIF(range, criteria)."""
    predicate = _parse_criteria(args[1])
    return sum(1 for v in _flatten(args[0]) if predicate(v))


def _builtin_averageif(args: list[Any]) -> float | FormulaError:
    """AVERAGEIF(criteria_range, criteria, [average_range])."""
    predicate = _parse_criteria(args[1])
    picked: list[float] = []
    for cv, av in _paired(args[0], args[2] if len(args) > 2 else None):
        if predicate(cv):
            if isinstance(av, FormulaError):
                return av
            if _is_number(av):
                picked.append(float(av))
    if not picked:
        return FormulaError.DIV0
    return math.fsum(picked) / len(picked)


# ---------------------------------------------------------------------------
# Lookup builtins (INDEX, MATCH, VLOOKUP, HLOOKUP)
# ---------------------------------------------------------------------------


def _lookup_equal(needle: Any, candidate: Any) -> bool:
    if candidate is None:
        return False
    if isinstance(needle, str) and isinstance(candidate, str):
        return needle.lower() == candidate.lower()
    if isinstance(needle, bool) or isinstance(candidate, bool):
        return isinstance(needle, bool) and isinstance(candidate, bool) and needle == candidate
    if _is_number(needle) and _is_number(candidate):
        return float(needle) == float(candidate)
    return False


def _lookup_le(candidate: Any, needle: Any) -> bool:
    """Approximate-match test: same type and ``candidate <= needle``."""
    if _is_number(needle) and _is_number(candidate):
        return float(candidate) <= float(needle)
    if isinstance(needle, str) and isinstance(candidate, str):
        return candidate.lower() <= needle.lower()
    return False


def _approximate_index(values: Sequence[Any], needle: Any) -> int | None:
    """Position of the last value <= needle in an ascending list."""
    best = None
    for i, v in enumerate(values):
        if v is None:
            continue
        if _lookup_le(v, needle):
            best = i
        elif (_is_number(v) and _is_number(needle)) or (isinstance(v, str) and isinstance(needle, str)):
            break
    return best


def _exact_index(values: Sequence[Any], needle: Any) -> int | None:
    if isinstance(needle, str) and ("*" in needle or "?" in needle):
        pattern = needle.lower()
        for i, v in enumerate(values):
            if isinstance(v, str) and fnmatch.fnmatchcase(v.lower(), pattern):
                return i
        return None
    for i, v in enumerate(values):
        if _lookup_equal(needle, v):
            return i
    return None


def _range_lookup_flag(args: list[Any], position: int) -> bool:
    if len(args) <= position or args[position] is None:
        return True
    t = is_truthy(args[position])
    if isinstance(t, FormulaError):
        raise ValueError("range_lookup must be TRUE or FALSE")
    return t


def _builtin_index(args: list[Any]) -> Any:
    """INDEX(array, row_num, [col_num])."""
    array = args[0]
    row_num = _int(args[1])
    col_num = _int(args[2]) if len(args) > 2 and args[2] is not None else None

    if not isinstance(array, RangeValue):
        array = RangeValue([array], 1, 1)

    if col_num is None:
        if array.n_rows == 1:
            # 1D horizontal range: row_num acts as column index
            row_num, col_num = 1, row_num
        else:
            col_num = 1
    if row_num == 0:
        row_num = 1
    if col_num == 0:
        col_num = 1
    if row_num < 1 or row_num > array.n_rows or col_num < 1 or col_num > array.n_cols:
        return FormulaError.REF.with_details(
            f"INDEX position ({row_num}, {col_num}) is outside {array.n_rows}x{array.n_cols}"
        )
    return array.get(row_num, col_num)


def _builtin_match(args: list[Any]) -> Any:
    """MATCH(lookup_value, lookup_array, [match_type]).

    match_type: 0=exact, 1=largest<=, -1=smallest>=. Default 1.
    """
    lookup_value = args[0]
    values = _flatten(args[1])
    match_type = _int(args[2]) if len(args) > 2 and args[2] is not None else 1

    if match_type == 0:
        idx = _exact_index(values, lookup_value)
        return idx + 1 if idx is not None else FormulaError.NA
    if match_type > 0:
        idx = _approximate_index(values, lookup_value)
        return idx + 1 if idx is not None else FormulaError.NA

    # Smallest value >= lookup (sorted descending)
    best = None
    for i, v in enumerate(values):
        if _is_number(v) and _is_number(lookup_value):
            if float(v) >= float(lookup_value):
                best = i + 1
            else:
                break
    return best if best is not None else FormulaError.NA


def _builtin_vlookup(args: list[Any]) -> Any:
    """VLOOKUP(lookup_value, table_array, col_index_num, [range_lookup])."""
    lookup_value, table = args[0], args[1]
    col_index = _int(args[2])
    approximate = _range_lookup_flag(args, 3)

    if not isinstance(table, RangeValue):
        table = RangeValue([table], 1, 1)
    if col_index < 1:
        return FormulaError.VALUE
    if col_index > table.n_cols:
        return FormulaError.REF

    keys = table.column(1)
    idx = _approximate_index(keys, lookup_value) if approximate else _exact_index(keys, lookup_value)
    if idx is None:
        return FormulaError.NA.with_details(f"{to_text(lookup_value)!r} not found")
    return table.get(idx + 1, col_index)


def _builtin_hlookup(args: list[Any]) -> Any:
    """HLOOKUP(lookup_value, table_array, row_index_num, [range_lookup])."""
    lookup_value, table = args[0], args[1]
    row_index = _int(args[2])
    approximate = _range_lookup_flag(args, 3)

    if not isinstance(table, RangeValue):
        table = RangeValue([table], 1, 1)
    if row_index < 1:
        return FormulaError.VALUE
    if row_index > table.n_rows:
        return FormulaError.REF

    keys = table.row(1)
    idx = _approximate_index(keys, lookup_value) if approximate else _exact_index(keys, lookup_value)
    if idx is None:
        return FormulaError.NA.with_details(f"{to_text(lookup_value)!r} not found")
    return table.get(row_index, idx + 1)


# ---------------------------------------------------------------------------
# Function table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FunctionSpec:
    """Declaration of a builtin.

    ``range_args`` lists the 0-based argument positions that receive a
    :class:`RangeValue` when given a reference; ``any_range`` extends that
    to every position. ``lazy`` functions receive zero-argument thunks.
    ``errors_ok`` functions see error arguments instead of short-circuiting.
    """

    name: str
    func: Callable[[list[Any]], Any]
    min_args: int
    max_args: int | None
    range_args: frozenset[int] = field(default_factory=frozenset)
    any_range: bool = False
    lazy: bool = False
    errors_ok: bool = False

    def accepts_range(self, index: int) -> bool:
        return self.any_range or index in self.range_args

    def accepts_arity(self, n: int) -> bool:
        return n >= self.min_args and (self.max_args is None or n <= self.max_args)

    def arity_text(self) -> str:
        if self.max_args is None:
            return f"at least {self.min_args}"
        if self.min_args == self.max_args:
            return f"exactly {self.min_args}"
        return f"{self.min_args} to {self.max_args}"


def _spec(name: str, func: Callable[[list[Any]], Any], min_args: int, max_args: int | None,
          ranges: Iterable[int] = (), **kwargs: Any) -> FunctionSpec:
    return FunctionSpec(name, func, min_args, max_args, frozenset(ranges), **kwargs)


_BUILTINS: dict[str, FunctionSpec] = {
    spec.name: spec
    for spec in (
        # Math and statistics
        _spec("SUM", _builtin_sum, 1, None, any_range=True),
        _spec("AVERAGE", _builtin_average, 1, None, any_range=True),
        _spec("MIN", _builtin_min, 1, None, any_range=True),
        _spec("MAX", _builtin_max, 1, None, any_range=True),
        _spec("COUNT", _builtin_count, 1, None, any_range=True, errors_ok=True),
        _spec("COUNTA", _builtin_counta, 1, None, any_range=True, errors_ok=True),
        _spec("ABS", _builtin_abs, 1, 1),
        _spec("ROUND", _builtin_round, 1, 2),
        _spec("ROUNDUP", _builtin_roundup, 1, 2),
        _spec("ROUNDDOWN", _builtin_rounddown, 1, 2),
        _spec("INT", _builtin_int, 1, 1),
        _spec("MOD", _builtin_mod, 2, 2),
        _spec("POWER", _builtin_power, 2, 2),
        _spec("SQRT", _builtin_sqrt, 1, 1),
        _spec("SIGN", _builtin_sign, 1, 1),
        # Logic
        _spec("IF", _builtin_if, 2, 3, lazy=True),
        _spec("IFERROR", _builtin_iferror, 2, 2, lazy=True),
        _spec("CHOOSE", _builtin_choose, 2, None, lazy=True),
        _spec("AND", _builtin_and, 1, None, any_range=True),
        _spec("OR", _builtin_or, 1, None, any_range=True),
        _spec("NOT", _builtin_not, 1, 1),
        _spec("ISERROR", _builtin_iserror, 1, 1, errors_ok=True),
        _spec("ISBLANK", _builtin_isblank, 1, 1, errors_ok=True),
        _spec("ISNUMBER", _builtin_isnumber, 1, 1, errors_ok=True),
        _spec("ISTEXT", _builtin_istext, 1, 1, errors_ok=True),
        # Lookup
        _spec("VLOOKUP", _builtin_vlookup, 3, 4, ranges=(1,)),
        _spec("HLOOKUP", _builtin_hlookup, 3, 4, ranges=(1,)),
        _spec("INDEX", _builtin_index, 2, 3, ranges=(0,)),
        _spec("MATCH", _builtin_match, 2, 3, ranges=(1,)),
        # Conditional aggregation
        _spec("SUMIF", _builtin_sumif, 2, 3, ranges=(0, 2)),
        _spec("COUNTIF", _builtin_countif, 2, 2, ranges=(0,)),
        _spec("AVERAGEIF", _builtin_averageif, 2, 3, ranges=(0, 2)),
        # Text
        _spec("LEFT", _builtin_left, 1, 2),
        _spec("RIGHT", _builtin_right, 1, 2),
        _spec("MID", _builtin_mid, 3, 3),
        _spec("LEN", _builtin_len, 1, 1),
        _spec("CONCATENATE", _builtin_concatenate, 1, None),
        _spec("UPPER", _builtin_upper, 1, 1),
        _spec("LOWER", _builtin_lower, 1, 1),
        _spec("TRIM", _builtin_trim, 1, 1),
        _spec("SUBSTITUTE", _builtin_substitute, 3, 4),
        _spec("TEXT", _builtin_text, 2, 2),
        _spec("REPT", _builtin_rept, 2, 2),
        _spec("EXACT", _builtin_exact, 2, 2),
        _spec("FIND", _builtin_find, 2, 3),
    )
}


class FunctionRegistry:
    """Case-insensitive table of function declarations.

    Starts with the builtins and can be extended with custom functions.
    """

    def __init__(self) -> None:
        self._functions: dict[str, FunctionSpec] = dict(_BUILTINS)

    def register(
        self,
        name: str,
        func: Callable[[list[Any]], Any],
        min_args: int = 0,
        max_args: int | None = None,
        **kwargs: Any,
    ) -> FunctionSpec:
        spec = _spec(name.upper(), func, min_args, max_args, **kwargs)
        self._functions[spec.name] = spec
        return spec

    def get(self, name: str) -> FunctionSpec | None:
        return self._functions.get(name.upper())

    def has(self, name: str) -> bool:
        return name.upper() in self._functions

    @property
    def supported_functions(self) -> frozenset[str]:
        return frozenset(self._functions.keys())
