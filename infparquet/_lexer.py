"""Tokenizer for the small SQL-like languages used by infparquet.

Both the metadata filter (``query``) and the derivation queries
(``custom``) tokenize with this module; each has its own parser and
evaluator on top.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import NoReturn

from infparquet._exceptions import InvalidQueryError


class TokenKind(Enum):
    IDENT = "identifier"
    STRING = "string"
    NUMBER = "number"
    OP = "operator"
    LPAREN = "("
    RPAREN = ")"
    COMMA = ","
    STAR = "*"
    EOF = "end of query"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    pos: int
    value: str | int | float | None = None
    quoted: bool = False

    def is_keyword(self, *words: str) -> bool:
        return self.kind is TokenKind.IDENT and not self.quoted and self.text.upper() in words


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    | (?P<number>-?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?)
    | (?P<string>'(?:[^']|'')*')
    | (?P<qident>"(?:[^"]|"")*")
    | (?P<ident>[A-Za-z_][A-Za-z0-9_.]*)
    | (?P<op><>|!=|<=|>=|=|<|>)
    | (?P<lparen>\()
    | (?P<rparen>\))
    | (?P<comma>,)
    | (?P<star>\*)
    """,
    re.VERBOSE,
)


def tokenize(text: str) -> list[Token]:
    """Split ``text`` into tokens, ending with an EOF token.

    Raises:
        InvalidQueryError: On characters no token starts with, or unterminated quotes
    """
    if text is None or not text.strip():
        raise InvalidQueryError("Query is empty")

    tokens: list[Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            snippet = text[pos : pos + 10]
            raise InvalidQueryError(f"Unexpected character at position {pos}: {snippet!r}")
        kind = match.lastgroup
        raw = match.group()
        if kind == "number":
            value: int | float = float(raw) if any(c in raw for c in ".eE") else int(raw)
            tokens.append(Token(TokenKind.NUMBER, raw, pos, value))
        elif kind == "string":
            tokens.append(Token(TokenKind.STRING, raw, pos, raw[1:-1].replace("''", "'")))
        elif kind == "qident":
            tokens.append(Token(TokenKind.IDENT, raw[1:-1].replace('""', '"'), pos, quoted=True))
        elif kind == "ident":
            tokens.append(Token(TokenKind.IDENT, raw, pos))
        elif kind == "op":
            tokens.append(Token(TokenKind.OP, "!=" if raw == "<>" else raw, pos))
        elif kind == "lparen":
            tokens.append(Token(TokenKind.LPAREN, raw, pos))
        elif kind == "rparen":
            tokens.append(Token(TokenKind.RPAREN, raw, pos))
        elif kind == "comma":
            tokens.append(Token(TokenKind.COMMA, raw, pos))
        elif kind == "star":
            tokens.append(Token(TokenKind.STAR, raw, pos))
        pos = match.end()

    tokens.append(Token(TokenKind.EOF, "", len(text)))
    return tokens


class TokenStream:
    """Cursor over tokens with the helpers recursive-descent parsers need."""

    def __init__(self, text: str) -> None:
        self.text = text
        self._tokens = tokenize(text)
        self._index = 0

    @property
    def current(self) -> Token:
        return self._tokens[self._index]

    def advance(self) -> Token:
        token = self._tokens[self._index]
        if token.kind is not TokenKind.EOF:
            self._index += 1
        return token

    def accept_keyword(self, *words: str) -> Token | None:
        if self.current.is_keyword(*words):
            return self.advance()
        return None

    def expect_keyword(self, word: str) -> Token:
        token = self.accept_keyword(word)
        if token is None:
            self.fail(f"Expected {word}")
        return token

    def accept(self, kind: TokenKind) -> Token | None:
        if self.current.kind is kind:
            return self.advance()
        return None

    def expect(self, kind: TokenKind, what: str | None = None) -> Token:
        token = self.accept(kind)
        if token is None:
            self.fail(f"Expected {what or kind.value}")
        return token

    def expect_end(self) -> None:
        if self.current.kind is not TokenKind.EOF:
            self.fail("Unexpected trailing input")

    def fail(self, message: str) -> NoReturn:
        token = self.current
        found = token.kind.value if token.kind is TokenKind.EOF else repr(token.text)
        raise InvalidQueryError(f"{message} at position {token.pos}, found {found}")
