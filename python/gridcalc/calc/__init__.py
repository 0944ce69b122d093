"""gridcalc.calc - Formula parsing, evaluation, and caching for gridcalc workbooks."""

from gridcalc.calc._cache import ResultCache
from gridcalc.calc._engine import FormulaEngine
from gridcalc.calc._evaluator import CycleGuard, Evaluator
from gridcalc.calc._functions import (
    FormulaError,
    FunctionRegistry,
    FunctionSpec,
    RangeValue,
    format_number,
    is_error,
)
from gridcalc.calc._graph import DependencyGraph
from gridcalc.calc._parser import (
    FormulaParser,
    all_references,
    expand_range,
    parse_functions,
    references,
    rename_sheet_references,
)
from gridcalc.calc._protocol import CellDelta, EvaluationContext, RecalcResult
from gridcalc.calc._tokenizer import Token, tokenize

__all__ = [
    "CellDelta",
    "CycleGuard",
    "DependencyGraph",
    "EvaluationContext",
    "Evaluator",
    "FormulaEngine",
    "FormulaError",
    "FormulaParser",
    "FunctionRegistry",
    "FunctionSpec",
    "RangeValue",
    "RecalcResult",
    "ResultCache",
    "Token",
    "all_references",
    "expand_range",
    "format_number",
    "is_error",
    "parse_functions",
    "references",
    "rename_sheet_references",
    "tokenize",
]
