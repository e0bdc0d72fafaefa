"""Expression nodes.

Every expression compiles to a single Python expression. Lookups that depend
on render-time state go through helpers on the render unit (``self``) and the
context dict (``ctx``) that generated methods receive.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from kiln.nodes.base import Expr

if TYPE_CHECKING:
    from kiln.compiler.emitter import CodeEmitter


def compile_arguments(
    emitter: CodeEmitter,
    args: tuple[Expr, ...],
    kwargs: tuple[tuple[str, Expr], ...],
) -> None:
    """Emit ``, a, b, **{"k": v}`` for a call whose leading arguments are already written."""
    for arg in args:
        emitter.raw(", ").subcompile(arg)
    if kwargs:
        emitter.raw(", **{")
        for i, (key, value) in enumerate(kwargs):
            if i:
                emitter.raw(", ")
            emitter.string(key).raw(": ").subcompile(value)
        emitter.raw("}")


def _strict(emitter: CodeEmitter, ignore_strict: bool) -> bool:
    return emitter.get_environment().strict_variables and not ignore_strict


@dataclass(frozen=True, slots=True)
class Const(Expr):
    """Literal value: string, number, boolean or ``None``."""

    value: Any

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.literal(self.value)


@dataclass(frozen=True, slots=True)
class Name(Expr):
    """Context variable lookup: ``{{ user }}``.

    ``ignore_strict`` is set for operands of ``default`` and ``defined``,
    which must not raise under strict variables.
    """

    name: str
    ignore_strict: bool = False

    def compile(self, emitter: CodeEmitter) -> None:
        if _strict(emitter, self.ignore_strict):
            emitter.raw("self.get_context_variable(ctx, ").string(self.name).raw(")")
        else:
            emitter.raw("ctx.get(").string(self.name).raw(")")


@dataclass(frozen=True, slots=True)
class GetAttr(Expr):
    """Attribute or key access ``obj.attr``; ``obj.method(args)`` when ``args`` is set."""

    node: Expr
    attr: str
    args: tuple[Expr, ...] | None = None
    ignore_strict: bool = False

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.raw("self.get_attribute(").subcompile(self.node).raw(", ").string(self.attr)
        if self.args is None:
            emitter.raw(", None")
        else:
            emitter.raw(", (")
            for arg in self.args:
                emitter.subcompile(arg).raw(", ")
            emitter.raw(")")
        emitter.raw(", True)" if _strict(emitter, self.ignore_strict) else ", False)")


@dataclass(frozen=True, slots=True)
class GetItem(Expr):
    """Subscript access ``obj[key]``."""

    node: Expr
    key: Expr
    ignore_strict: bool = False

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.raw("self.get_item(").subcompile(self.node).raw(", ").subcompile(self.key)
        emitter.raw(", True)" if _strict(emitter, self.ignore_strict) else ", False)")


@dataclass(frozen=True, slots=True)
class ListExpr(Expr):
    items: tuple[Expr, ...]

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.raw("[")
        for i, item in enumerate(self.items):
            if i:
                emitter.raw(", ")
            emitter.subcompile(item)
        emitter.raw("]")


@dataclass(frozen=True, slots=True)
class DictExpr(Expr):
    pairs: tuple[tuple[Expr, Expr], ...]

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.raw("{")
        for i, (key, value) in enumerate(self.pairs):
            if i:
                emitter.raw(", ")
            emitter.subcompile(key).raw(": ").subcompile(value)
        emitter.raw("}")


@dataclass(frozen=True, slots=True)
class Filter(Expr):
    """``value|name(args)``."""

    node: Expr
    name: str
    args: tuple[Expr, ...] = ()
    kwargs: tuple[tuple[str, Expr], ...] = ()

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.raw("self.call_filter(").string(self.name).raw(", ctx, ").subcompile(self.node)
        compile_arguments(emitter, self.args, self.kwargs)
        emitter.raw(")")


@dataclass(frozen=True, slots=True)
class FunctionCall(Expr):
    """``name(args)`` resolved through the registered functions."""

    name: str
    args: tuple[Expr, ...] = ()
    kwargs: tuple[tuple[str, Expr], ...] = ()

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.raw("self.call_function(").string(self.name).raw(", ctx")
        compile_arguments(emitter, self.args, self.kwargs)
        emitter.raw(")")


@dataclass(frozen=True, slots=True)
class Test(Expr):
    """``value is [not] name(args)``.

    ``defined`` on a variable, attribute or item compiles to a presence check
    so that a defined variable holding ``None`` still counts as defined.
    """

    node: Expr
    name: str
    args: tuple[Expr, ...] = ()
    negated: bool = False

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.raw("(not " if self.negated else "(")
        node = self.node
        if self.name == "defined" and isinstance(node, Name):
            emitter.string(node.name).raw(" in ctx")
        elif self.name == "defined" and isinstance(node, GetAttr) and node.args is None:
            emitter.raw("self.has_attribute(").subcompile(node.node).raw(", ")
            emitter.string(node.attr).raw(")")
        elif self.name == "defined" and isinstance(node, GetItem):
            emitter.raw("self.has_item(").subcompile(node.node).raw(", ")
            emitter.subcompile(node.key).raw(")")
        else:
            emitter.raw("self.call_test(").string(self.name).raw(", ctx, ").subcompile(node)
            compile_arguments(emitter, self.args, ())
            emitter.raw(")")
        emitter.raw(")")


@dataclass(frozen=True, slots=True)
class UnaryOp(Expr):
    operator: str
    node: Expr

    def compile(self, emitter: CodeEmitter) -> None:
        operator_def = emitter.get_environment().get_unary_operators()[self.operator]
        if operator_def.python is not None:
            separator = " " if operator_def.python[-1].isalpha() else ""
            emitter.raw(f"({operator_def.python}{separator}").subcompile(self.node).raw(")")
        else:
            emitter.raw("self.call_unary_operator(").string(self.operator).raw(", ")
            emitter.subcompile(self.node).raw(")")


@dataclass(frozen=True, slots=True)
class BinaryOp(Expr):
    operator: str
    left: Expr
    right: Expr

    def compile(self, emitter: CodeEmitter) -> None:
        operator_def = emitter.get_environment().get_binary_operators()[self.operator]
        if operator_def.python is not None:
            emitter.raw("(").subcompile(self.left).raw(f" {operator_def.python} ")
            emitter.subcompile(self.right).raw(")")
        else:
            emitter.raw("self.call_binary_operator(").string(self.operator).raw(", ")
            emitter.subcompile(self.left).raw(", ").subcompile(self.right).raw(")")


@dataclass(frozen=True, slots=True)
class Conditional(Expr):
    """``test ? if_true : if_false``."""

    test: Expr
    if_true: Expr
    if_false: Expr

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.raw("(").subcompile(self.if_true).raw(" if ").subcompile(self.test)
        emitter.raw(" else ").subcompile(self.if_false).raw(")")
