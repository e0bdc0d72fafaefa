"""Expression parsing mixin.

Binary operators are parsed by precedence climbing over the operator table
the environment's registry provides; postfix forms (``.attr``, ``[key]``,
``|filter``) bind tighter than any operator.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from kiln._types import Token, TokenType
from kiln.environment.exceptions import ErrorCode, did_you_mean
from kiln.extensions.callables import Associativity
from kiln.nodes import (
    BinaryOp,
    Conditional,
    Const,
    DictExpr,
    Expr,
    Filter,
    FunctionCall,
    GetAttr,
    GetItem,
    ListExpr,
    Name,
    Test,
    UnaryOp,
)

if TYPE_CHECKING:
    from kiln._types import TokenStream
    from kiln.environment.core import Environment
    from kiln.extensions.callables import BinaryOperator, UnaryOperator

_CONSTANTS = {"true": True, "false": False, "none": None, "null": None}

# Filters and tests whose operand may legitimately be undefined.
_LENIENT_FILTERS = frozenset({"default"})
_LENIENT_TESTS = frozenset({"defined"})


def _lenient(node: Expr) -> Expr:
    """Mark a lookup chain so strict variables do not raise on it."""
    if isinstance(node, Name):
        return replace(node, ignore_strict=True)
    if isinstance(node, (GetAttr, GetItem)):
        return replace(node, node=_lenient(node.node), ignore_strict=True)
    return node


class ExpressionParsingMixin:
    """Mixin for parsing expressions.

    Required Host Attributes:
        - stream: TokenStream
        - env: Environment
        - _unary: mapping of unary operators
        - _binary: mapping of binary operators
        - _error: method
    """

    stream: TokenStream
    env: Environment
    _unary: dict[str, UnaryOperator]
    _binary: dict[str, BinaryOperator]

    def parse_expression(self, precedence: int = 0) -> Expr:
        expr = self._parse_primary()
        token = self.stream.current
        while token.type is TokenType.OPERATOR and token.value in self._binary:
            operator = self._binary[token.value]
            if operator.precedence < precedence:
                break
            self.stream.next()
            if operator.is_test:
                expr = self._parse_test(expr, token, negated=token.value == "is not")
            else:
                if operator.associativity is Associativity.LEFT:
                    right = self.parse_expression(operator.precedence + 1)
                else:
                    right = self.parse_expression(operator.precedence)
                expr = BinaryOp(token.lineno, token.value, expr, right)
            token = self.stream.current
        if precedence == 0:
            return self._parse_conditional(expr)
        return expr

    def _parse_conditional(self, expr: Expr) -> Expr:
        while self.stream.test(TokenType.PUNCTUATION, "?"):
            token = self.stream.next()
            if_true = self.parse_expression()
            if self.stream.next_if(TokenType.PUNCTUATION, ":"):
                if_false = self.parse_expression()
            else:
                if_false = Const(token.lineno, None)
            expr = Conditional(token.lineno, expr, if_true, if_false)
        return expr

    def _parse_primary(self) -> Expr:
        token = self.stream.current
        if token.type is TokenType.OPERATOR and token.value in self._unary:
            operator = self._unary[token.value]
            self.stream.next()
            operand = self.parse_expression(operator.precedence)
            return self._parse_postfix(UnaryOp(token.lineno, token.value, operand))
        if token.test(TokenType.PUNCTUATION, "("):
            self.stream.next()
            expr = self.parse_expression()
            self.stream.expect(TokenType.PUNCTUATION, ")", "An opened parenthesis is not properly closed")
            return self._parse_postfix(expr)
        return self._parse_postfix(self._parse_atom())

    def _parse_atom(self) -> Expr:
        token = self.stream.current
        if token.type is TokenType.NAME:
            self.stream.next()
            if token.value.lower() in _CONSTANTS:
                return Const(token.lineno, _CONSTANTS[token.value.lower()])
            if self.stream.test(TokenType.PUNCTUATION, "("):
                return self._parse_function_call(token)
            return Name(token.lineno, token.value)
        if token.type in (TokenType.NUMBER, TokenType.STRING):
            self.stream.next()
            return Const(token.lineno, token.value)
        if token.test(TokenType.PUNCTUATION, "["):
            return self._parse_list()
        if token.test(TokenType.PUNCTUATION, "{"):
            return self._parse_dict()
        if token.type is TokenType.EOF:
            raise self._error("Unexpected end of template.", token)
        raise self._error(f"Unexpected token '{token.value}' of type {token.type.value}.", token)

    def _parse_list(self) -> ListExpr:
        start = self.stream.expect(TokenType.PUNCTUATION, "[")
        items: list[Expr] = []
        while not self.stream.test(TokenType.PUNCTUATION, "]"):
            if items:
                self.stream.expect(TokenType.PUNCTUATION, ",", "A list must be separated by commas")
                if self.stream.test(TokenType.PUNCTUATION, "]"):
                    break
            items.append(self.parse_expression())
        self.stream.expect(TokenType.PUNCTUATION, "]", "An opened list is not properly closed")
        return ListExpr(start.lineno, tuple(items))

    def _parse_dict(self) -> DictExpr:
        start = self.stream.expect(TokenType.PUNCTUATION, "{")
        pairs: list[tuple[Expr, Expr]] = []
        while not self.stream.test(TokenType.PUNCTUATION, "}"):
            if pairs:
                self.stream.expect(TokenType.PUNCTUATION, ",", "A mapping must be separated by commas")
                if self.stream.test(TokenType.PUNCTUATION, "}"):
                    break
            token = self.stream.current
            if token.type in (TokenType.STRING, TokenType.NUMBER, TokenType.NAME):
                # Bare names are string keys: {title: x} == {"title": x}
                self.stream.next()
                key: Expr = Const(token.lineno, token.value)
            elif token.test(TokenType.PUNCTUATION, "("):
                key = self.parse_expression()
            else:
                raise self._error(
                    "A mapping key must be a quoted string, a number, a name, "
                    f"or an expression enclosed in parentheses (unexpected '{token.value}').",
                    token,
                )
            self.stream.expect(TokenType.PUNCTUATION, ":", "A mapping key must be followed by a colon")
            pairs.append((key, self.parse_expression()))
        self.stream.expect(TokenType.PUNCTUATION, "}", "An opened mapping is not properly closed")
        return DictExpr(start.lineno, tuple(pairs))

    def _parse_postfix(self, node: Expr) -> Expr:
        while True:
            token = self.stream.current
            if token.test(TokenType.PUNCTUATION, "."):
                node = self._parse_attribute(node)
            elif token.test(TokenType.PUNCTUATION, "["):
                self.stream.next()
                key = self.parse_expression()
                self.stream.expect(TokenType.PUNCTUATION, "]")
                node = GetItem(token.lineno, node, key)
            elif token.test(TokenType.PUNCTUATION, "|"):
                node = self._parse_filter(node)
            else:
                return node

    def _parse_attribute(self, node: Expr) -> Expr:
        dot = self.stream.next()
        token = self.stream.next()
        if token.type is TokenType.NUMBER:
            return GetItem(dot.lineno, node, Const(token.lineno, token.value))
        if token.type is not TokenType.NAME:
            raise self._error(f"Expected an attribute name after '.', got '{token.value}'.", token)
        if self.stream.test(TokenType.PUNCTUATION, "("):
            args, kwargs = self._parse_arguments()
            if kwargs:
                raise self._error("Method calls do not accept keyword arguments.", token)
            return GetAttr(dot.lineno, node, token.value, args)
        return GetAttr(dot.lineno, node, token.value)

    def _parse_arguments(self) -> tuple[tuple[Expr, ...], tuple[tuple[str, Expr], ...]]:
        """Parse ``(a, b, key=value)``."""
        self.stream.expect(TokenType.PUNCTUATION, "(", "A list of arguments must begin with an opening parenthesis")
        args: list[Expr] = []
        kwargs: list[tuple[str, Expr]] = []
        while not self.stream.test(TokenType.PUNCTUATION, ")"):
            if args or kwargs:
                self.stream.expect(TokenType.PUNCTUATION, ",", "Arguments must be separated by a comma")
            token = self.stream.current
            if token.type is TokenType.NAME and self.stream.look().test(TokenType.PUNCTUATION, "="):
                self.stream.next()
                self.stream.next()
                kwargs.append((token.value, self.parse_expression()))
            else:
                if kwargs:
                    raise self._error("Positional arguments cannot be used after named arguments.", token)
                args.append(self.parse_expression())
        self.stream.expect(TokenType.PUNCTUATION, ")", "A list of arguments must be closed by a parenthesis")
        return tuple(args), tuple(kwargs)

    def _parse_function_call(self, token: Token) -> FunctionCall:
        name = token.value
        if self.env.get_function(name) is None:
            raise self._error(
                f"Unknown function '{name}'." + did_you_mean(name, self.env.get_functions()),
                token,
                ErrorCode.UNKNOWN_FUNCTION,
            )
        args, kwargs = self._parse_arguments()
        return FunctionCall(token.lineno, name, args, kwargs)

    def _parse_filter(self, node: Expr) -> Expr:
        self.stream.expect(TokenType.PUNCTUATION, "|")
        token = self.stream.expect(TokenType.NAME, message="Expected a filter name after '|'")
        name = token.value
        if self.env.get_filter(name) is None:
            raise self._error(
                f"Unknown filter '{name}'." + did_you_mean(name, self.env.get_filters()),
                token,
                ErrorCode.UNKNOWN_FILTER,
            )
        args: tuple[Expr, ...] = ()
        kwargs: tuple[tuple[str, Expr], ...] = ()
        if self.stream.test(TokenType.PUNCTUATION, "("):
            args, kwargs = self._parse_arguments()
        if name in _LENIENT_FILTERS:
            node = _lenient(node)
        return Filter(token.lineno, node, name, args, kwargs)

    def _parse_test(self, node: Expr, operator: Token, negated: bool) -> Expr:
        token = self.stream.expect(TokenType.NAME, message="Expected a test name after 'is'")
        name = token.value
        if self.env.get_test(name) is None:
            raise self._error(
                f"Unknown test '{name}'." + did_you_mean(name, self.env.get_tests()),
                token,
                ErrorCode.UNKNOWN_TEST,
            )
        args: tuple[Expr, ...] = ()
        if self.stream.test(TokenType.PUNCTUATION, "("):
            args, kwargs = self._parse_arguments()
            if kwargs:
                raise self._error("Tests do not accept named arguments.", token)
        if name in _LENIENT_TESTS:
            node = _lenient(node)
        return Test(operator.lineno, node, name, args, negated)
