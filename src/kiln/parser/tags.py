"""Tag parsers.

A tag parser owns one ``{% tag %}``: the parser hands it control right after
the tag name and takes back a node (or ``None`` for tags that only change
parser state, like ``extends``). Extensions contribute tag parsers through
``Extension.get_token_parsers()``.

Example:
    >>> class SpacelessTokenParser(TokenParser):
    ...     tag = "spaceless"
    ...     def parse(self, parser, token):
    ...         parser.stream.expect(TokenType.BLOCK_END)
    ...         body = parser.subparse(end_tags("endspaceless"), drop_needle=True)
    ...         parser.stream.expect(TokenType.BLOCK_END)
    ...         return body
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from kiln._types import Token, TokenType
from kiln.environment.exceptions import ErrorCode
from kiln.nodes import (
    AutoEscape,
    BlockNode,
    BlockReference,
    Body,
    Const,
    Embed,
    Expr,
    For,
    If,
    Include,
    Node,
    Set,
)
from kiln.parser.core import end_tags

if TYPE_CHECKING:
    from kiln.parser.core import Parser


class TokenParser:
    """Base class for tag parsers. Subclasses set ``tag`` and implement ``parse``."""

    tag: str = ""

    def parse(self, parser: Parser, token: Token) -> Node | None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {{% {self.tag} %}}>"


class IfTokenParser(TokenParser):
    """``{% if a %}...{% elif b %}...{% else %}...{% endif %}``"""

    tag = "if"

    def parse(self, parser: Parser, token: Token) -> Node:
        stream = parser.stream
        branch_end = end_tags("elif", "else", "endif")
        test = parser.parse_expression()
        stream.expect(TokenType.BLOCK_END)
        tests: list[tuple[Expr, Body]] = [(test, parser.subparse(branch_end))]
        else_: Body | None = None
        while True:
            tag = stream.next()
            if tag.value == "elif":
                test = parser.parse_expression()
                stream.expect(TokenType.BLOCK_END)
                tests.append((test, parser.subparse(branch_end)))
            elif tag.value == "else":
                stream.expect(TokenType.BLOCK_END)
                else_ = parser.subparse(end_tags("endif"))
            else:
                break
        stream.expect(TokenType.BLOCK_END)
        return If(token.lineno, tuple(tests), else_)


class ForTokenParser(TokenParser):
    """``{% for item in seq %}`` / ``{% for key, value in mapping %}`` with optional ``else``."""

    tag = "for"

    def parse(self, parser: Parser, token: Token) -> Node:
        stream = parser.stream
        targets = [stream.expect(TokenType.NAME).value]
        if stream.next_if(TokenType.PUNCTUATION, ","):
            targets.append(stream.expect(TokenType.NAME).value)
        stream.expect(TokenType.OPERATOR, "in", "A for loop names its targets before 'in'")
        seq = parser.parse_expression()
        stream.expect(TokenType.BLOCK_END)
        body = parser.subparse(end_tags("else", "endfor"))
        else_: Body | None = None
        if stream.next().value == "else":
            stream.expect(TokenType.BLOCK_END)
            else_ = parser.subparse(end_tags("endfor"), drop_needle=True)
        stream.expect(TokenType.BLOCK_END)
        return For(token.lineno, tuple(targets), seq, body, else_)


class SetTokenParser(TokenParser):
    """``{% set name = expr %}``"""

    tag = "set"

    def parse(self, parser: Parser, token: Token) -> Node:
        stream = parser.stream
        name = stream.expect(TokenType.NAME).value
        stream.expect(TokenType.PUNCTUATION, "=")
        value = parser.parse_expression()
        stream.expect(TokenType.BLOCK_END)
        return Set(token.lineno, name, value)


class BlockTokenParser(TokenParser):
    """``{% block name %}...{% endblock [name] %}``"""

    tag = "block"

    def parse(self, parser: Parser, token: Token) -> Node:
        stream = parser.stream
        name_token = stream.expect(TokenType.NAME)
        name = name_token.value
        if parser.has_block(name):
            previous = parser.get_block(name)
            raise parser._error(
                f"The block '{name}' has already been defined line {previous.lineno}.",
                name_token,
            )
        stream.expect(TokenType.BLOCK_END)
        parser.push_block(name)
        try:
            body = parser.subparse(end_tags("endblock"), drop_needle=True)
        finally:
            parser.pop_block()
        closing = stream.next_if(TokenType.NAME)
        if closing is not None and closing.value != name:
            raise parser._error(
                f"Expected endblock for block '{name}' (but '{closing.value}' given).",
                closing,
                ErrorCode.UNCLOSED_BLOCK,
            )
        stream.expect(TokenType.BLOCK_END)
        parser.set_block(BlockNode(token.lineno, name, body))
        return BlockReference(token.lineno, name)


class ExtendsTokenParser(TokenParser):
    """``{% extends "base.html" %}``; a list of names picks the first that exists."""

    tag = "extends"

    def parse(self, parser: Parser, token: Token) -> None:
        if not parser.is_main_scope():
            raise parser._error("Cannot use 'extends' in a block.", token)
        if parser.has_parent():
            raise parser._error("Multiple extends tags are forbidden.", token)
        parser.set_parent(parser.parse_expression())
        parser.stream.expect(TokenType.BLOCK_END)
        return None


def _parse_include_options(parser: Parser, allow_ignore: bool) -> tuple[Expr | None, bool, bool]:
    """Parse ``[ignore missing] [with expr] [only]``."""
    stream = parser.stream
    ignore_missing = False
    if allow_ignore and stream.next_if(TokenType.NAME, "ignore"):
        stream.expect(TokenType.NAME, "missing")
        ignore_missing = True
    variables = parser.parse_expression() if stream.next_if(TokenType.NAME, "with") else None
    only = stream.next_if(TokenType.NAME, "only") is not None
    stream.expect(TokenType.BLOCK_END)
    return variables, only, ignore_missing


class IncludeTokenParser(TokenParser):
    """``{% include expr [ignore missing] [with vars] [only] %}``"""

    tag = "include"

    def parse(self, parser: Parser, token: Token) -> Node:
        template = parser.parse_expression()
        variables, only, ignore_missing = _parse_include_options(parser, allow_ignore=True)
        return Include(token.lineno, template, variables, only, ignore_missing)


class EmbedTokenParser(TokenParser):
    """``{% embed "card.html" [with vars] [only] %}{% block x %}...{% endblock %}{% endembed %}``

    The body is an anonymous child template of ``expr`` that may only
    override blocks.
    """

    tag = "embed"

    def parse(self, parser: Parser, token: Token) -> Node:
        parent = parser.parse_expression()
        variables, only, _ = _parse_include_options(parser, allow_ignore=False)
        index = parser.parse_embedded(parent, "endembed", token.lineno)
        parser.stream.expect(TokenType.BLOCK_END)
        return Embed(token.lineno, index, variables, only)


class AutoEscapeTokenParser(TokenParser):
    """``{% autoescape ["html"|false] %}...{% endautoescape %}``"""

    tag = "autoescape"

    def parse(self, parser: Parser, token: Token) -> Node:
        stream = parser.stream
        strategy: str | bool = "html"
        if not stream.test(TokenType.BLOCK_END):
            expr = parser.parse_expression()
            if not isinstance(expr, Const) or not (
                expr.value is False or isinstance(expr.value, str)
            ):
                raise parser._error(
                    "An escaping strategy must be a string or false.", token
                )
            strategy = expr.value
        stream.expect(TokenType.BLOCK_END)
        body = parser.subparse(end_tags("endautoescape"), drop_needle=True)
        stream.expect(TokenType.BLOCK_END)
        return AutoEscape(token.lineno, strategy, body)
