"""Tree-walking evaluator for parsed formulas, plus the cycle guard.

The evaluator never raises for formula-level problems: every failure
becomes a :class:`FormulaError` value that propagates through the
expression, the way a spreadsheet shows ``#DIV/0!`` instead of crashing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from gridcalc._utils import CellRange
from gridcalc.calc._functions import (
    FormulaError,
    FunctionRegistry,
    FunctionSpec,
    RangeValue,
    as_double,
    first_error,
    power,
    to_number,
    to_text,
)
from gridcalc.calc._parser import (
    BinaryOp,
    Boolean,
    CellRef,
    ErrorLiteral,
    FunctionCall,
    Node,
    Number,
    RangeRef,
    Text,
    UnaryOp,
)
from gridcalc.calc._protocol import EvaluationContext

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Cycle guard
# ---------------------------------------------------------------------------


class CycleGuard:
    """Active-set of ``Sheet!A1`` keys currently being evaluated.

    Re-entering a key that is already active is a circular reference; more
    than ``max_depth`` nested keys is a runaway chain. Keys are always
    removed on the way out, so the set is empty between top-level calls.
    """

    __slots__ = ("max_depth", "active")

    def __init__(self, max_depth: int = 100) -> None:
        self.max_depth = max_depth
        self.active: set[str] = set()

    def evaluate(self, key: str, compute: Callable[[], Any]) -> Any:
        if key in self.active:
            return FormulaError.CIRCULAR.with_details(f"Circular reference through {key}")
        if len(self.active) >= self.max_depth:
            return FormulaError.DEPTH.with_details(
                f"Reference chain deeper than {self.max_depth} at {key}"
            )
        self.active.add(key)
        try:
            return compute()
        finally:
            self.active.discard(key)

    @property
    def depth(self) -> int:
        return len(self.active)

    def reset(self) -> None:
        self.active.clear()


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


def _arithmetic(left: Any, op: str, right: Any) -> Any:
    lhs, rhs = to_number(left), to_number(right)
    err = first_error(lhs, rhs)
    if err is not None:
        return err
    if op == "^":
        return power(lhs, rhs)
    if op == "/" and rhs == 0:
        return FormulaError.DIV0.with_details("Division by zero")
    try:
        if op == "+":
            result = lhs + rhs
        elif op == "-":
            result = lhs - rhs
        elif op == "*":
            result = lhs * rhs
        elif op == "/":
            result = lhs / rhs
        else:
            return FormulaError.ERROR.with_details(f"Unknown operator {op!r}")
    except OverflowError:
        return FormulaError.NUM
    return as_double(result)


def _type_rank(value: Any) -> int:
    # number < text < boolean
    if isinstance(value, bool):
        return 2
    if isinstance(value, str):
        return 1
    return 0


def _blank_like(other: Any) -> Any:
    if isinstance(other, bool):
        return False
    if isinstance(other, str):
        return ""
    return 0


def _compare(left: Any, op: str, right: Any) -> Any:
    """Evaluate a comparison operation.

    Values of different types never compare equal; ordering across types
    follows number < text < boolean. Text compares case-insensitively. An
    empty operand takes the type of the other side.
    """
    err = first_error(left, right)
    if err is not None:
        return err
    if left is None:
        left = _blank_like(right)
    if right is None:
        right = _blank_like(left)

    lrank, rrank = _type_rank(left), _type_rank(right)
    if lrank != rrank:
        lhs, rhs = lrank, rrank
    elif lrank == 1:
        lhs, rhs = left.lower(), right.lower()
    else:
        lhs, rhs = left, right

    if op == "=":
        return lhs == rhs
    if op == "<>":
        return lhs != rhs
    if op == "<":
        return lhs < rhs
    if op == ">":
        return lhs > rhs
    if op == "<=":
        return lhs <= rhs
    if op == ">=":
        return lhs >= rhs
    return FormulaError.ERROR.with_details(f"Unknown comparison {op!r}")


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class Evaluator:
    """Evaluates parsed formula trees against an :class:`EvaluationContext`.

    Usage::

        evaluator = Evaluator(FunctionRegistry())
        value = evaluator.evaluate(FormulaParser().parse("SUM(A1:A3)*2"), ctx)
    """

    def __init__(self, functions: FunctionRegistry | None = None) -> None:
        self._functions = functions or FunctionRegistry()

    @property
    def functions(self) -> FunctionRegistry:
        return self._functions

    def evaluate(self, node: Node, ctx: EvaluationContext) -> Any:
        if isinstance(node, Number):
            return as_double(node.value)
        if isinstance(node, Text):
            return node.value
        if isinstance(node, Boolean):
            return node.value
        if isinstance(node, ErrorLiteral):
            return FormulaError.of(node.code)
        if isinstance(node, CellRef):
            return ctx.lookup_cell(node.sheet, node.label)
        if isinstance(node, RangeRef):
            return FormulaError.VALUE.with_details(
                f"Range {node.range} used where a single value is expected"
            )
        if isinstance(node, UnaryOp):
            operand = to_number(self.evaluate(node.operand, ctx))
            if isinstance(operand, FormulaError):
                return operand
            return -operand if node.op == "-" else operand
        if isinstance(node, BinaryOp):
            return self._binary(node, ctx)
        if isinstance(node, FunctionCall):
            return self._call(node, ctx)
        return FormulaError.ERROR.with_details(f"Cannot evaluate {type(node).__name__}")

    def _binary(self, node: BinaryOp, ctx: EvaluationContext) -> Any:
        left = self.evaluate(node.left, ctx)
        right = self.evaluate(node.right, ctx)
        op = node.op
        if op == "&":
            err = first_error(left, right)
            if err is not None:
                return err
            return to_text(left) + to_text(right)
        if op in ("=", "<>", "<", ">", "<=", ">="):
            return _compare(left, op, right)
        return _arithmetic(left, op, right)

    # ------------------------------------------------------------------
    # Function dispatch
    # ------------------------------------------------------------------

    def _call(self, node: FunctionCall, ctx: EvaluationContext) -> Any:
        spec = self._functions.get(node.name)
        if spec is None:
            logger.debug("Unsupported function: %s", node.name)
            return FormulaError.NAME.with_details(f"Unknown function {node.name}")
        if not spec.accepts_arity(len(node.args)):
            return FormulaError.VALUE.with_details(
                f"{spec.name} takes {spec.arity_text()} arguments, got {len(node.args)}"
            )

        if spec.lazy:
            thunks = [
                (lambda arg=arg: self.evaluate(arg, ctx)) for arg in node.args
            ]
            return self._invoke(spec, thunks)

        args: list[Any] = []
        for i, arg in enumerate(node.args):
            if spec.accepts_range(i) and isinstance(arg, RangeRef):
                args.append(ctx.lookup_range(arg.sheet, arg.range))
            elif spec.accepts_range(i) and isinstance(arg, CellRef):
                args.append(ctx.lookup_range(arg.sheet, CellRange.single(arg.address)))
            else:
                args.append(self.evaluate(arg, ctx))

        if not spec.errors_ok:
            err = first_error(*(a for a in args if not isinstance(a, RangeValue)))
            if err is not None:
                return err
        return self._invoke(spec, args)

    @staticmethod
    def _invoke(spec: FunctionSpec, args: list[Any]) -> Any:
        try:
            result = spec.func(args)
        except ZeroDivisionError:
            return FormulaError.DIV0
        except OverflowError:
            return FormulaError.NUM
        except (ValueError, TypeError) as e:
            logger.debug("Error evaluating %s: %s", spec.name, e)
            return FormulaError.VALUE.with_details(f"{spec.name}: {e}")
        if isinstance(result, RangeValue):
            return FormulaError.VALUE.with_details(f"{spec.name} returned a range")
        if isinstance(result, (int, float)) and not isinstance(result, bool):
            return as_double(result)
        return result
