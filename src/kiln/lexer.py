"""Template tokenizer.

Splits source into text and the tokens inside ``{{ }}`` and ``{% %}``;
``{# #}`` comments are dropped. A ``-`` next to a delimiter trims the
whitespace on that side: ``{{- x -}}``. ``{% raw %}...{% endraw %}`` passes
its content through as text.

Operators come from the environment's registry, so extensions can add new
ones. They are matched longest first; word operators (``and``, ``not in``)
only match on word boundaries.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from kiln._types import Token, TokenStream, TokenType
from kiln.environment.exceptions import ErrorCode, TemplateSyntaxError

if TYPE_CHECKING:
    from kiln.environment.core import Environment

_NAME_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
_NUMBER_RE = re.compile(r"[0-9]+(?:\.[0-9]+)?")
_STRING_RE = re.compile(r""""([^"\\]*(?:\\.[^"\\]*)*)"|'([^'\\]*(?:\\.[^'\\]*)*)'""", re.S)
_WHITESPACE_RE = re.compile(r"\s+")
_STRING_ESCAPE_RE = re.compile(r"\\(.)", re.S)
_STRING_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0"}

PUNCTUATION = "()[]{}?:.,|="
_CLOSING = {")": "(", "]": "[", "}": "{"}


def _unescape(value: str) -> str:
    return _STRING_ESCAPE_RE.sub(lambda m: _STRING_ESCAPES.get(m.group(1), m.group(1)), value)


class Lexer:
    """Regex-driven tokenizer bound to an environment.

    Example:
        >>> stream = Lexer(env).tokenize("Hello {{ name }}!", "hello.html")
        >>> [t.type.name for t in stream._tokens]
        ['TEXT', 'VAR_START', 'NAME', 'VAR_END', 'TEXT', 'EOF']
    """

    def __init__(
        self,
        env: Environment,
        *,
        comment: tuple[str, str] = ("{#", "#}"),
        block: tuple[str, str] = ("{%", "%}"),
        variable: tuple[str, str] = ("{{", "}}"),
        whitespace_trim: str = "-",
    ):
        self._env = env
        self._comment = comment
        self._block = block
        self._variable = variable
        self._trim = whitespace_trim
        starts = sorted((comment[0], block[0], variable[0]), key=len, reverse=True)
        self._start_re = re.compile(
            f"({'|'.join(re.escape(s) for s in starts)})({re.escape(whitespace_trim)})?"
        )
        self._raw_re = re.compile(
            rf"\s*raw\s*({re.escape(whitespace_trim)})?{re.escape(block[1])}"
        )
        self._endraw_re = re.compile(
            rf"({re.escape(block[0])})({re.escape(whitespace_trim)})?\s*endraw\s*"
            rf"({re.escape(whitespace_trim)})?{re.escape(block[1])}"
        )
        self._operator_re: re.Pattern[str] | None = None

    def _operators(self) -> re.Pattern[str]:
        if self._operator_re is None:
            names = {*self._env.get_unary_operators(), *self._env.get_binary_operators()}
            patterns = []
            for name in sorted(names, key=len, reverse=True):
                pattern = re.escape(name).replace(r"\ ", r"\s+")
                if name[-1].isalnum() or name[-1] == "_":
                    pattern += r"(?![\w])"
                patterns.append(pattern)
            self._operator_re = re.compile("|".join(patterns) or r"(?!)")
        return self._operator_re

    def tokenize(self, source: str, name: str | None = None) -> TokenStream:
        """Tokenize ``source``. Raises ``TemplateSyntaxError`` with the line of the problem."""
        source = source.replace("\r\n", "\n").replace("\r", "\n")
        return _Scanner(self, source, name).run()


class _Scanner:
    """State for a single ``tokenize`` call."""

    __slots__ = ("lexer", "source", "name", "pos", "lineno", "tokens", "trim_next")

    def __init__(self, lexer: Lexer, source: str, name: str | None):
        self.lexer = lexer
        self.source = source
        self.name = name
        self.pos = 0
        self.lineno = 1
        self.tokens: list[Token] = []
        self.trim_next = False

    def error(self, message: str, lineno: int, code: ErrorCode) -> TemplateSyntaxError:
        return TemplateSyntaxError(
            message, lineno=lineno, name=self.name, source=self.source, code=code
        )

    def push(self, type: TokenType, value: object, lineno: int | None = None) -> None:
        self.tokens.append(Token(type, value, self.lineno if lineno is None else lineno))

    def advance_to(self, pos: int) -> None:
        self.lineno += self.source.count("\n", self.pos, pos)
        self.pos = pos

    def push_text(self, end: int, rstrip: bool) -> None:
        original = self.source[self.pos:end]
        text = original
        lineno = self.lineno
        if self.trim_next:
            text = text.lstrip()
            lineno += original.count("\n", 0, len(original) - len(text))
            self.trim_next = False
        if rstrip:
            text = text.rstrip()
        self.advance_to(end)
        if text:
            self.push(TokenType.TEXT, text, lineno)

    def run(self) -> TokenStream:
        lexer = self.lexer
        source = self.source
        while self.pos < len(source):
            match = lexer._start_re.search(source, self.pos)
            if match is None:
                self.push_text(len(source), rstrip=False)
                break
            self.push_text(match.start(), rstrip=match.group(2) is not None)
            self.advance_to(match.end())
            opener = match.group(1)
            if opener == lexer._comment[0]:
                self.lex_comment(match.start())
            elif opener == lexer._block[0]:
                raw = lexer._raw_re.match(source, self.pos)
                if raw is not None:
                    self.lex_raw(raw)
                else:
                    self.push(TokenType.BLOCK_START, opener)
                    self.lex_expression(lexer._block[1], TokenType.BLOCK_END, "block")
            else:
                self.push(TokenType.VAR_START, opener)
                self.lex_expression(lexer._variable[1], TokenType.VAR_END, "variable")
        self.push(TokenType.EOF, None)
        return TokenStream(self.tokens, self.name, self.source)

    def lex_comment(self, start: int) -> None:
        lexer = self.lexer
        lineno = self.lineno
        end = self.source.find(lexer._comment[1], self.pos)
        if end < 0:
            raise self.error("Unclosed comment.", lineno, ErrorCode.UNCLOSED_COMMENT)
        trim = end > self.pos and self.source[end - len(lexer._trim):end] == lexer._trim
        self.advance_to(end + len(lexer._comment[1]))
        self.trim_next = trim

    def lex_raw(self, raw: re.Match[str]) -> None:
        lexer = self.lexer
        lineno = self.lineno
        self.advance_to(raw.end())
        if raw.group(1):
            self.trim_next = True
        end = lexer._endraw_re.search(self.source, self.pos)
        if end is None:
            raise self.error('Unexpected end of file: unclosed "raw" block.', lineno,
                             ErrorCode.UNCLOSED_BLOCK)
        self.push_text(end.start(), rstrip=end.group(2) is not None)
        self.advance_to(end.end())
        self.trim_next = end.group(3) is not None

    def lex_expression(self, closer: str, end_type: TokenType, kind: str) -> None:
        lexer = self.lexer
        source = self.source
        start_line = self.lineno
        brackets: list[tuple[str, int]] = []
        trimmed_closer = lexer._trim + closer
        while True:
            whitespace = _WHITESPACE_RE.match(source, self.pos)
            if whitespace is not None:
                self.advance_to(whitespace.end())
            if self.pos >= len(source):
                raise self.error(f"Unclosed {kind}.", start_line, ErrorCode.UNCLOSED_TAG)

            if not brackets:
                if source.startswith(trimmed_closer, self.pos):
                    self.push(end_type, closer)
                    self.advance_to(self.pos + len(trimmed_closer))
                    self.trim_next = True
                    return
                if source.startswith(closer, self.pos):
                    self.push(end_type, closer)
                    self.advance_to(self.pos + len(closer))
                    return

            after_dot = bool(self.tokens) and self.tokens[-1].test(TokenType.PUNCTUATION, ".")
            operator = None if after_dot else lexer._operators().match(source, self.pos)
            if operator is not None:
                value = " ".join(operator.group().split())
                self.push(TokenType.OPERATOR, value)
                self.advance_to(operator.end())
                continue

            name = _NAME_RE.match(source, self.pos)
            if name is not None:
                self.push(TokenType.NAME, name.group())
                self.advance_to(name.end())
                continue

            number = _NUMBER_RE.match(source, self.pos)
            if number is not None:
                text = number.group()
                self.push(TokenType.NUMBER, float(text) if "." in text else int(text))
                self.advance_to(number.end())
                continue

            char = source[self.pos]
            if char in PUNCTUATION:
                if char in "([{":
                    brackets.append((char, self.lineno))
                elif char in _CLOSING:
                    if not brackets:
                        raise self.error(f"Unexpected '{char}'.", self.lineno,
                                         ErrorCode.UNEXPECTED_CHARACTER)
                    opened, opened_line = brackets.pop()
                    if opened != _CLOSING[char]:
                        raise self.error(
                            f"Unclosed '{opened}' (opened on line {opened_line}).",
                            self.lineno,
                            ErrorCode.UNEXPECTED_CHARACTER,
                        )
                self.push(TokenType.PUNCTUATION, char)
                self.advance_to(self.pos + 1)
                continue

            string = _STRING_RE.match(source, self.pos)
            if string is not None:
                body = string.group(1) if string.group(1) is not None else string.group(2)
                self.push(TokenType.STRING, _unescape(body))
                self.advance_to(string.end())
                continue

            raise self.error(f"Unexpected character '{char}'.", self.lineno,
                             ErrorCode.UNEXPECTED_CHARACTER)
