"""Token stream -> AST.

The parser handles text and ``{{ }}`` output itself and delegates every
``{% tag %}`` to the token parser registered for that tag. After parsing, the
registered node visitors run over the module in priority order.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from kiln._types import Token, TokenStream, TokenType
from kiln.environment.exceptions import ErrorCode, TemplateSyntaxError, did_you_mean
from kiln.nodes import (
    BlockNode,
    BlockReference,
    Body,
    Expr,
    Module,
    Node,
    NodeTraverser,
    Print,
    Text,
)
from kiln.parser.expressions import ExpressionParsingMixin

if TYPE_CHECKING:
    from kiln.environment.core import Environment
    from kiln.parser.tags import TokenParser

EndTest = Callable[[Token], bool]


@dataclass(slots=True)
class _ModuleState:
    """Per-template parsing state; embedded templates push their own."""

    blocks: dict[str, BlockNode] = field(default_factory=dict)
    parent: Expr | None = None
    block_stack: list[str] = field(default_factory=list)


def end_tags(*names: str) -> EndTest:
    """Build a ``subparse`` stop test matching any of the given tag names."""
    return lambda token: token.test(TokenType.NAME, names)


class Parser(ExpressionParsingMixin):
    """Parses a ``TokenStream`` into a ``Module``.

    A parser instance is reusable but not reentrant: one ``parse`` call at a
    time.
    """

    def __init__(self, env: Environment):
        self.env = env
        self.stream = TokenStream([])
        self._states: list[_ModuleState] = []
        self._embedded: list[Module] = []
        self._tag_parsers: dict[str, TokenParser] = {}
        self._unary = {}
        self._binary = {}

    def parse(self, stream: TokenStream) -> Module:
        self.stream = stream
        self._states = [_ModuleState()]
        self._embedded = []
        self._tag_parsers = self.env.get_token_parsers()
        self._unary = self.env.get_unary_operators()
        self._binary = self.env.get_binary_operators()
        try:
            body = self.subparse(None)
            state = self._states.pop()
            if state.parent is not None:
                body = self._filter_child_body(body)
            module = Module(
                lineno=1,
                name=stream.name,
                body=body,
                blocks=tuple(state.blocks.values()),
                parent=state.parent,
                embedded=tuple(self._embedded),
                index=None,
                source=stream.source,
            )
        finally:
            self._states = []
            self._embedded = []
        traverser = NodeTraverser(self.env, self.env.get_node_visitors())
        return traverser.traverse(module)  # type: ignore[return-value]

    def _error(
        self,
        message: str,
        token: Token | None = None,
        code: ErrorCode = ErrorCode.UNEXPECTED_TOKEN,
    ) -> TemplateSyntaxError:
        token = token or self.stream.current
        return TemplateSyntaxError(
            message,
            lineno=token.lineno,
            name=self.stream.name,
            source=self.stream.source,
            code=code,
        )

    # -- body -------------------------------------------------------------

    def subparse(self, test: EndTest | None, drop_needle: bool = False) -> Body:
        """Parse nodes until a tag satisfying ``test`` (or EOF when ``test`` is None).

        On return the stream sits on the matching tag name, or just after it
        with ``drop_needle``.
        """
        stream = self.stream
        lineno = stream.current.lineno
        nodes: list[Node] = []
        while not stream.is_eof():
            token = stream.current
            if token.type is TokenType.TEXT:
                stream.next()
                nodes.append(Text(token.lineno, token.value))
            elif token.type is TokenType.VAR_START:
                stream.next()
                expr = self.parse_expression()
                stream.expect(TokenType.VAR_END)
                nodes.append(Print(token.lineno, expr))
            elif token.type is TokenType.BLOCK_START:
                stream.next()
                tag = stream.current
                if tag.type is not TokenType.NAME:
                    raise self._error("A block must start with a tag name.", tag)
                if test is not None and test(tag):
                    if drop_needle:
                        stream.next()
                    return Body(lineno, tuple(nodes))
                tag_parser = self._tag_parsers.get(tag.value)
                if tag_parser is None:
                    raise self._unknown_tag(tag, expecting_end=test is not None)
                stream.next()
                node = tag_parser.parse(self, tag)
                if node is not None:
                    nodes.append(node)
            else:
                raise self._error(f"Unexpected {token.type.value} token.", token)
        if test is not None:
            raise self._error("Unexpected end of template.", stream.current, ErrorCode.UNCLOSED_BLOCK)
        return Body(lineno, tuple(nodes))

    def _unknown_tag(self, tag: Token, expecting_end: bool) -> TemplateSyntaxError:
        if expecting_end and tag.value.startswith("end"):
            return self._error(
                f"Unexpected '{tag.value}' tag.", tag, ErrorCode.UNCLOSED_BLOCK
            )
        return self._error(
            f"Unknown '{tag.value}' tag." + did_you_mean(tag.value, self._tag_parsers),
            tag,
            ErrorCode.UNKNOWN_TAG,
        )

    def _filter_child_body(self, body: Body) -> Body:
        """Drop output nodes from a template that extends another.

        Whitespace between blocks is discarded; any other output is an error
        since it would never be rendered.
        """
        kept: list[Node] = []
        for node in body.nodes:
            if isinstance(node, Text):
                if node.data.strip():
                    raise self._error(
                        "A template that extends another one cannot include content "
                        "outside blocks. Did you forget to put the content inside a "
                        "{% block %} tag?",
                        Token(TokenType.TEXT, node.data, node.lineno),
                    )
                continue
            if isinstance(node, Print):
                raise self._error(
                    "A template that extends another one cannot print outside blocks.",
                    Token(TokenType.VAR_START, None, node.lineno),
                )
            if isinstance(node, BlockReference):
                continue
            kept.append(node)
        return Body(body.lineno, tuple(kept))

    # -- state used by tag parsers ------------------------------------------

    @property
    def _state(self) -> _ModuleState:
        return self._states[-1]

    def is_main_scope(self) -> bool:
        """True outside of any block definition."""
        return not self._state.block_stack

    def has_parent(self) -> bool:
        return self._state.parent is not None

    def set_parent(self, parent: Expr) -> None:
        self._state.parent = parent

    def has_block(self, name: str) -> bool:
        return name in self._state.blocks

    def get_block(self, name: str) -> BlockNode:
        return self._state.blocks[name]

    def set_block(self, block: BlockNode) -> None:
        self._state.blocks[block.name] = block

    def push_block(self, name: str) -> None:
        self._state.block_stack.append(name)

    def pop_block(self) -> str:
        return self._state.block_stack.pop()

    def parse_embedded(self, parent: Expr, end_tag: str, lineno: int) -> int:
        """Parse the body of an embedded template up to ``end_tag``.

        Returns the index the embedded template is compiled under.
        """
        self._states.append(_ModuleState(parent=parent))
        try:
            body = self.subparse(end_tags(end_tag), drop_needle=True)
            state = self._state
        finally:
            self._states.pop()
        index = len(self._embedded)
        self._embedded.append(
            Module(
                lineno=lineno,
                name=self.stream.name,
                body=self._filter_child_body(body),
                blocks=tuple(state.blocks.values()),
                parent=state.parent,
                index=index,
                source=self.stream.source,
            )
        )
        return index
