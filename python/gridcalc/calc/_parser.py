"""Formula parser: recursive descent over tokens into an immutable AST."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from gridcalc._utils import CellAddress, CellRange, decode_cell, encode_cell, quote_sheet_name
from gridcalc.calc._tokenizer import Token, tokenize
from gridcalc.exceptions import AddressError, FormulaSyntaxError

if TYPE_CHECKING:
    from gridcalc.calc._functions import FunctionRegistry

# ---------------------------------------------------------------------------
# AST nodes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Number:
    value: int | float


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Boolean:
    value: bool


@dataclass(frozen=True)
class ErrorLiteral:
    code: str


@dataclass(frozen=True)
class CellRef:
    """A single cell. ``sheet=None`` means the sheet the formula lives on."""

    sheet: str | None
    address: CellAddress

    @property
    def label(self) -> str:
        return encode_cell(self.address)


@dataclass(frozen=True)
class RangeRef:
    sheet: str | None
    range: CellRange


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: Node


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: tuple[Node, ...]


Node = Union[Number, Text, Boolean, ErrorLiteral, CellRef, RangeRef, UnaryOp, BinaryOp, FunctionCall]

_COMPARISON_OPS = frozenset({"=", "<>", "<", ">", "<=", ">="})


# ---------------------------------------------------------------------------
# FormulaParser
# ---------------------------------------------------------------------------


class FormulaParser:
    """Parse formula source into a :data:`Node` tree.

    With a function registry, calls to names it does not know fail with
    ``#NAME?`` at parse time.
    """

    def __init__(self, functions: FunctionRegistry | None = None) -> None:
        self._functions = functions
        self._tokens: list[Token] = []
        self._pos = 0
        self._source = ""

    def parse(self, formula: str) -> Node:
        source = formula.strip()
        if source.startswith("="):
            source = source[1:]
        if not source.strip():
            raise FormulaSyntaxError("#ERROR!", "Empty formula", 0)
        self._source = source
        self._tokens = tokenize(source)
        self._pos = 0
        node = self._comparison()
        tok = self._peek()
        if tok is not None:
            raise FormulaSyntaxError(
                "#ERROR!", f"Unexpected {tok.text!r} at position {tok.pos}", tok.pos
            )
        return node

    # -- token helpers -----------------------------------------------------

    def _peek(self) -> Token | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _advance(self) -> Token:
        tok = self._peek()
        if tok is None:
            raise FormulaSyntaxError(
                "#ERROR!", "Unexpected end of formula", len(self._source)
            )
        self._pos += 1
        return tok

    def _accept_op(self, ops: frozenset[str] | set[str]) -> str | None:
        tok = self._peek()
        if tok is not None and tok.kind == "OP" and tok.text in ops:
            self._pos += 1
            return tok.text
        return None

    def _expect(self, kind: str, what: str) -> Token:
        tok = self._peek()
        if tok is None or tok.kind != kind:
            where = f"{tok.text!r} at position {tok.pos}" if tok else "end of formula"
            pos = tok.pos if tok else len(self._source)
            raise FormulaSyntaxError("#ERROR!", f"Expected {what}, found {where}", pos)
        self._pos += 1
        return tok

    # -- precedence levels -------------------------------------------------

    def _comparison(self) -> Node:
        node = self._concat()
        while (op := self._accept_op(_COMPARISON_OPS)) is not None:
            node = BinaryOp(op, node, self._concat())
        return node

    def _concat(self) -> Node:
        node = self._addsub()
        while self._accept_op({"&"}) is not None:
            node = BinaryOp("&", node, self._addsub())
        return node

    def _addsub(self) -> Node:
        node = self._muldiv()
        while (op := self._accept_op({"+", "-"})) is not None:
            node = BinaryOp(op, node, self._muldiv())
        return node

    def _muldiv(self) -> Node:
        node = self._power()
        while (op := self._accept_op({"*", "/"})) is not None:
            node = BinaryOp(op, node, self._power())
        return node

    def _power(self) -> Node:
        node = self._unary()
        while self._accept_op({"^"}) is not None:
            node = BinaryOp("^", node, self._unary())
        return node

    def _unary(self) -> Node:
        op = self._accept_op({"+", "-"})
        if op is not None:
            return UnaryOp(op, self._unary())
        return self._primary()

    def _primary(self) -> Node:
        tok = self._advance()
        kind = tok.kind

        if kind == "NUMBER":
            text = tok.text
            if text.isdigit():
                return Number(int(text))
            return Number(float(text))
        if kind == "STRING":
            return Text(tok.text[1:-1].replace('""', '"'))
        if kind == "ERROR":
            return ErrorLiteral(tok.text.upper())
        if kind == "LPAREN":
            node = self._comparison()
            self._expect("RPAREN", "')'")
            return node
        if kind in ("SHEET", "QSHEET"):
            return self._reference(_sheet_from_token(tok))
        if kind == "REF":
            self._pos -= 1
            return self._reference(None)
        if kind == "IDENT":
            nxt = self._peek()
            if nxt is not None and nxt.kind == "LPAREN":
                return self._call(tok)
            upper = tok.text.upper()
            if upper in ("TRUE", "FALSE"):
                return Boolean(upper == "TRUE")
            raise FormulaSyntaxError("#NAME?", f"Unknown name {tok.text!r}", tok.pos)
        raise FormulaSyntaxError(
            "#ERROR!", f"Unexpected {tok.text!r} at position {tok.pos}", tok.pos
        )

    def _reference(self, sheet: str | None) -> Node:
        start_tok = self._expect("REF", "a cell reference")
        start = _decode_ref(start_tok)
        nxt = self._peek()
        if nxt is not None and nxt.kind == "COLON":
            self._pos += 1
            end_tok = self._expect("REF", "a cell reference after ':'")
            return RangeRef(sheet, CellRange(start, _decode_ref(end_tok)))
        return CellRef(sheet, start)

    def _call(self, name_tok: Token) -> FunctionCall:
        name = name_tok.text.upper()
        if self._functions is not None and not self._functions.has(name):
            raise FormulaSyntaxError("#NAME?", f"Unknown function {name}", name_tok.pos)
        self._expect("LPAREN", "'('")
        args: list[Node] = []
        nxt = self._peek()
        if nxt is not None and nxt.kind == "RPAREN":
            self._pos += 1
            return FunctionCall(name, ())
        while True:
            args.append(self._comparison())
            tok = self._advance()
            if tok.kind == "RPAREN":
                break
            if tok.kind != "COMMA":
                raise FormulaSyntaxError(
                    "#ERROR!",
                    f"Expected ',' or ')' in {name}(), found {tok.text!r} at position {tok.pos}",
                    tok.pos,
                )
        return FunctionCall(name, tuple(args))


def _sheet_from_token(tok: Token) -> str:
    text = tok.text[:-1]
    if tok.kind == "QSHEET":
        return text[1:-1].replace("''", "'")
    return text


def _decode_ref(tok: Token) -> CellAddress:
    try:
        return decode_cell(tok.text)
    except AddressError as exc:
        raise FormulaSyntaxError("#REF!", str(exc), tok.pos) from exc


# ---------------------------------------------------------------------------
# Reference extraction
# ---------------------------------------------------------------------------


def iter_nodes(node: Node) -> Iterator[Node]:
    """Depth-first walk of *node* and all its children."""
    yield node
    if isinstance(node, UnaryOp):
        yield from iter_nodes(node.operand)
    elif isinstance(node, BinaryOp):
        yield from iter_nodes(node.left)
        yield from iter_nodes(node.right)
    elif isinstance(node, FunctionCall):
        for arg in node.args:
            yield from iter_nodes(arg)


def references(node: Node) -> list[CellRef | RangeRef]:
    """All reference nodes in source order."""
    return [n for n in iter_nodes(node) if isinstance(n, (CellRef, RangeRef))]


def all_references(
    node: Node, current_sheet: str,
    bounds: Callable[[str], CellRange | None] | None = None,
) -> list[str]:
    """Canonical ``Sheet!A1`` keys for every referenced cell, ranges expanded.

    Keys are unquoted and free of ``$`` markers; duplicates are dropped.
    With *bounds* (sheet name to its used range, or ``None`` when empty)
    ranges are expanded only where they overlap that sheet's data.
    """
    refs: list[str] = []
    seen: set[str] = set()
    for ref in references(node):
        sheet = ref.sheet or current_sheet
        if isinstance(ref, CellRef):
            addresses: Iterator[CellAddress] = iter([ref.address])
        elif bounds is None:
            addresses = ref.range.cells()
        else:
            used = bounds(sheet)
            overlap = ref.range.intersection(used) if used is not None else None
            addresses = overlap.cells() if overlap is not None else iter(())
        for addr in addresses:
            key = f"{sheet}!{encode_cell(addr)}"
            if key not in seen:
                refs.append(key)
                seen.add(key)
    return refs


def parse_functions(node: Node) -> list[str]:
    """Function names used in *node*, upper-cased, in first-seen order."""
    funcs: list[str] = []
    for n in iter_nodes(node):
        if isinstance(n, FunctionCall) and n.name not in funcs:
            funcs.append(n.name)
    return funcs


def expand_range(range_ref: RangeRef, current_sheet: str) -> list[str]:
    """Expand a range node into ``Sheet!A1`` keys (row-major)."""
    sheet = range_ref.sheet or current_sheet
    return [f"{sheet}!{encode_cell(addr)}" for addr in range_ref.range.cells()]


# ---------------------------------------------------------------------------
# Sheet rename rewriting
# ---------------------------------------------------------------------------


def rename_sheet_references(source: str, old: str, new: str) -> str:
    """Rewrite ``old!`` prefixes in formula *source* to point at *new*.

    Text inside string literals is left alone. Source that cannot be
    tokenized is returned unchanged (it evaluates to an error either way).
    """
    try:
        tokens = tokenize(source)
    except FormulaSyntaxError:
        return source
    replacement = f"{quote_sheet_name(new)}!"
    out: list[str] = []
    last = 0
    for tok in tokens:
        if tok.kind in ("SHEET", "QSHEET") and _sheet_from_token(tok) == old:
            out.append(source[last:tok.pos])
            out.append(replacement)
            last = tok.pos + len(tok.text)
    if not out:
        return source
    out.append(source[last:])
    return "".join(out)
