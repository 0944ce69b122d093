"""Exception hierarchy for gridcalc.

Formula-level failures are *values* (see :class:`gridcalc.calc.FormulaError`)
and never raise past the engine. The exceptions below cover the places where
Python code calls into the model with bad input: malformed addresses, sheet
bookkeeping, rejected edits, and persistence.
"""

from __future__ import annotations


class GridcalcError(Exception):
    """Base exception for all gridcalc errors."""


class AddressError(GridcalcError, ValueError):
    """A column, A1 label, or range is malformed or outside the grid."""

    code = "#REF!"

    def __init__(self, message: str, ref: str | None = None) -> None:
        super().__init__(message)
        self.ref = ref


class SheetError(GridcalcError, ValueError):
    """Duplicate sheet name, deleting the only sheet, or a bad sheet name."""

    def __init__(self, message: str, sheet: str | None = None) -> None:
        super().__init__(message)
        self.sheet = sheet


class FormulaSyntaxError(GridcalcError):
    """A formula could not be tokenized or parsed.

    ``code`` is the error token the engine reports in place of a value
    (``#ERROR!`` for syntax, ``#NAME?`` for unknown names, ``#REF!`` for bad
    references).
    """

    def __init__(self, code: str, details: str, position: int | None = None) -> None:
        super().__init__(f"{code} {details}")
        self.code = code
        self.details = details
        self.position = position


class EditError(GridcalcError):
    """An edit was rejected by the mutation coordinator."""

    def __init__(self, message: str, op: str | None = None) -> None:
        super().__init__(message)
        self.op = op
        self.message = message


class UnknownEditError(EditError):
    """The edit names an operation the coordinator does not support."""


class InvalidEditError(EditError):
    """The edit payload is malformed or violates a workbook invariant."""


class PersistenceError(GridcalcError):
    """A snapshot could not be saved or restored."""

    def __init__(self, message: str, workbook_id: str | None = None) -> None:
        super().__init__(message)
        self.workbook_id = workbook_id
