"""Token types shared by the lexer and the parser."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from kiln.environment.exceptions import ErrorCode, TemplateSyntaxError


class TokenType(Enum):
    TEXT = "text"
    VAR_START = "var_start"
    VAR_END = "var_end"
    BLOCK_START = "block_start"
    BLOCK_END = "block_end"
    NAME = "name"
    NUMBER = "number"
    STRING = "string"
    OPERATOR = "operator"
    PUNCTUATION = "punctuation"
    EOF = "eof"


@dataclass(frozen=True, slots=True)
class Token:
    """A lexed token with the template line it starts on."""

    type: TokenType
    value: Any
    lineno: int

    def test(self, type: TokenType, values: str | Iterable[str] | None = None) -> bool:
        """Check the token type and, optionally, its value or one of several values."""
        if self.type is not type:
            return False
        if values is None:
            return True
        if isinstance(values, str):
            return self.value == values
        return self.value in values

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.value!r}, line {self.lineno})"


class TokenStream:
    """Cursor over a token list that always ends with an EOF token."""

    __slots__ = ("_tokens", "_pos", "name", "source")

    def __init__(self, tokens: Sequence[Token], name: str | None = None, source: str | None = None):
        self._tokens = list(tokens)
        if not self._tokens or self._tokens[-1].type is not TokenType.EOF:
            lineno = self._tokens[-1].lineno if self._tokens else 1
            self._tokens.append(Token(TokenType.EOF, None, lineno))
        self._pos = 0
        self.name = name
        self.source = source

    def __repr__(self) -> str:
        return f"TokenStream({self.name!r}, at={self.current!r})"

    @property
    def current(self) -> Token:
        return self._tokens[self._pos]

    def is_eof(self) -> bool:
        return self.current.type is TokenType.EOF

    def look(self, n: int = 1) -> Token:
        """Peek ``n`` tokens ahead without moving."""
        return self._tokens[min(self._pos + n, len(self._tokens) - 1)]

    def next(self) -> Token:
        """Return the current token and advance. EOF is sticky."""
        token = self._tokens[self._pos]
        if token.type is not TokenType.EOF:
            self._pos += 1
        return token

    def test(self, type: TokenType, values: str | Iterable[str] | None = None) -> bool:
        return self.current.test(type, values)

    def next_if(self, type: TokenType, values: str | Iterable[str] | None = None) -> Token | None:
        if self.current.test(type, values):
            return self.next()
        return None

    def expect(
        self,
        type: TokenType,
        values: str | Iterable[str] | None = None,
        message: str | None = None,
    ) -> Token:
        """Consume a token of the given type/value or raise ``TemplateSyntaxError``."""
        token = self.current
        if not token.test(type, values):
            found = "end of template" if token.type is TokenType.EOF else (
                f"{token.type.value} '{token.value}'"
            )
            expected = type.value if values is None else f"{type.value} {values!r}"
            detail = f"{message}. " if message else ""
            raise TemplateSyntaxError(
                f"{detail}Unexpected {found} (expected {expected}).",
                lineno=token.lineno,
                name=self.name,
                source=self.source,
                code=ErrorCode.UNEXPECTED_TOKEN,
            )
        return self.next()
