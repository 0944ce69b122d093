"""Formula tokenizer."""

from __future__ import annotations

import re
from typing import NamedTuple

from gridcalc.exceptions import FormulaSyntaxError


class Token(NamedTuple):
    kind: str
    text: str
    pos: int


_ERROR_LITERALS = (
    "#NULL!", "#DIV/0!", "#VALUE!", "#REF!", "#NAME?", "#NUM!", "#N/A",
    "#CIRCULAR!", "#DEPTH!", "#ERROR!",
)

# Order matters: sheet prefixes before numbers/idents, refs before idents.
_TOKEN_SPEC = [
    ("WS", r"\s+"),
    ("STRING", r'"(?:[^"]|"")*"'),
    ("QSHEET", r"'(?:[^']|'')+'!"),
    ("ERROR", "|".join(re.escape(e) for e in _ERROR_LITERALS)),
    ("SHEET", r"[A-Za-z0-9_][A-Za-z0-9_.]*!"),
    ("NUMBER", r"(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?"),
    ("REF", r"\$?[A-Za-z]{1,3}\$?\d+(?![A-Za-z0-9_(])"),
    ("IDENT", r"[A-Za-z_][A-Za-z0-9_.]*"),
    ("OP", r"<>|<=|>=|[-+*/^&=<>]"),
    ("LPAREN", r"\("),
    ("RPAREN", r"\)"),
    ("COMMA", r","),
    ("COLON", r":"),
]
_MASTER_RE = re.compile(
    "|".join(f"(?P<{name}>{pattern})" for name, pattern in _TOKEN_SPEC),
    re.IGNORECASE,
)


def tokenize(formula: str) -> list[Token]:
    """Split formula source (without ``=``) into tokens, dropping whitespace.

    Raises :class:`FormulaSyntaxError` (``#ERROR!``) on an unterminated
    string or a character that starts no token.
    """
    tokens: list[Token] = []
    pos = 0
    length = len(formula)
    while pos < length:
        m = _MASTER_RE.match(formula, pos)
        if m is None:
            if formula[pos] == '"':
                raise FormulaSyntaxError("#ERROR!", "Unterminated string literal", pos)
            raise FormulaSyntaxError(
                "#ERROR!", f"Unexpected character {formula[pos]!r} at position {pos}", pos
            )
        kind = m.lastgroup or ""
        if kind != "WS":
            tokens.append(Token(kind, m.group(), pos))
        pos = m.end()
    return tokens
