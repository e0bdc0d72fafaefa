"""Statement nodes.

Statements compile to complete lines inside a render method whose locals are
``self`` (the render unit), ``ctx`` (the context dict), ``buf`` (the output
list), ``blocks`` (block overrides) and ``_append`` (``buf.append``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from kiln.nodes.base import Expr, Node, Stmt

if TYPE_CHECKING:
    from kiln.compiler.emitter import CodeEmitter


@dataclass(frozen=True, slots=True)
class Body(Stmt):
    """Ordered statement list."""

    nodes: tuple[Node, ...]

    def compile(self, emitter: CodeEmitter) -> None:
        if not self.nodes:
            emitter.write("pass\n")
            return
        for node in self.nodes:
            node.compile(emitter)


@dataclass(frozen=True, slots=True)
class Text(Stmt):
    """Raw template text outside of tags."""

    data: str

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.add_debug_info(self)
        emitter.write("_append(").string(self.data).raw(")\n")


@dataclass(frozen=True, slots=True)
class Print(Stmt):
    """``{{ expr }}``."""

    expr: Expr

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.add_debug_info(self)
        emitter.write("_append(self.to_string(").subcompile(self.expr).raw("))\n")


@dataclass(frozen=True, slots=True)
class If(Stmt):
    """``{% if %}`` with ``elif`` branches kept in order in ``tests``."""

    tests: tuple[tuple[Expr, Body], ...]
    else_: Body | None = None

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.add_debug_info(self)
        for i, (test, body) in enumerate(self.tests):
            emitter.write("if " if i == 0 else "elif ").subcompile(test).raw(":\n")
            emitter.indent()
            body.compile(emitter)
            emitter.outdent()
        if self.else_ is not None:
            emitter.write("else:\n").indent()
            self.else_.compile(emitter)
            emitter.outdent()


@dataclass(frozen=True, slots=True)
class For(Stmt):
    """``{% for item in seq %}`` or ``{% for key, value in seq %}``.

    The context is snapshotted before the loop and restored afterwards:
    variables that existed before keep the value the loop body left them
    with, loop targets and variables introduced inside the loop disappear.
    ``with_loop`` is cleared by the optimizer when the body never reads
    ``loop``.
    """

    targets: tuple[str, ...]
    iter: Expr
    body: Body
    else_: Body | None = None
    with_loop: bool = True

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.add_debug_info(self)
        saved = emitter.fresh_temporary_name()
        item = emitter.fresh_temporary_name()
        pairs = "True" if len(self.targets) == 2 else "False"
        emitter.write(f"{saved} = ctx.copy()\n")

        iterated = None
        if self.else_ is not None:
            iterated = emitter.fresh_temporary_name()
            emitter.write(f"{iterated} = False\n")

        if self.with_loop:
            loop = emitter.fresh_temporary_name()
            emitter.write(f"{loop} = self.make_loop(").subcompile(self.iter).raw(f", {pairs})\n")
            emitter.write(f"for {item} in {loop}:\n").indent()
            emitter.write(f'ctx["loop"] = {loop}\n')
        else:
            emitter.write(f"for {item} in self.iterate(").subcompile(self.iter).raw(f", {pairs}):\n")
            emitter.indent()

        if len(self.targets) == 1:
            emitter.write("ctx[").string(self.targets[0]).raw(f"] = {item}\n")
        else:
            key, value = self.targets
            emitter.write("ctx[").string(key).raw("], ctx[").string(value).raw(f"] = {item}\n")
        if iterated is not None:
            emitter.write(f"{iterated} = True\n")
        self.body.compile(emitter)
        emitter.outdent()

        if self.else_ is not None:
            emitter.write(f"if not {iterated}:\n").indent()
            self.else_.compile(emitter)
            emitter.outdent()

        names = self.targets + ("loop",) if self.with_loop else self.targets
        emitter.write(f"self.restore_context(ctx, {saved}, ").literal(names).raw(")\n")


@dataclass(frozen=True, slots=True)
class Set(Stmt):
    """``{% set name = expr %}``."""

    name: str
    value: Expr

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.add_debug_info(self)
        emitter.write("ctx[").string(self.name).raw("] = ").subcompile(self.value).raw("\n")


@dataclass(frozen=True, slots=True)
class BlockNode(Stmt):
    """A named block definition. Compiled as a ``block_<name>`` method by ``Module``."""

    name: str
    body: Body

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.write(f"def block_{self.name}(self, ctx, buf, blocks):\n").indent()
        emitter.write("_append = buf.append\n")
        self.body.compile(emitter)
        emitter.outdent()


@dataclass(frozen=True, slots=True)
class BlockReference(Stmt):
    """The place where a block renders in its defining template."""

    name: str

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.add_debug_info(self)
        emitter.write("self.display_block(").string(self.name).raw(", ctx, buf, blocks)\n")


def _compile_include_options(
    emitter: CodeEmitter,
    variables: Expr | None,
    only: bool,
    ignore_missing: bool,
) -> None:
    emitter.raw(", ctx, buf, ")
    if variables is None:
        emitter.raw("None")
    else:
        emitter.subcompile(variables)
    emitter.raw(f", {only}, {ignore_missing})\n")


@dataclass(frozen=True, slots=True)
class Include(Stmt):
    """``{% include expr [ignore missing] [with vars] [only] %}``.

    ``template`` may evaluate to a name, a list of names (first found wins)
    or an already loaded unit.
    """

    template: Expr
    variables: Expr | None = None
    only: bool = False
    ignore_missing: bool = False

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.add_debug_info(self)
        emitter.write("self.include(").subcompile(self.template)
        _compile_include_options(emitter, self.variables, self.only, self.ignore_missing)


@dataclass(frozen=True, slots=True)
class Embed(Stmt):
    """``{% embed %}``: include an anonymous child template compiled into the same file."""

    index: int
    variables: Expr | None = None
    only: bool = False

    def compile(self, emitter: CodeEmitter) -> None:
        emitter.add_debug_info(self)
        emitter.write(f"self.include(self.load_embedded({self.index})")
        _compile_include_options(emitter, self.variables, self.only, False)


@dataclass(frozen=True, slots=True)
class AutoEscape(Stmt):
    """``{% autoescape strategy %}``; ``strategy`` is a name or ``False``."""

    strategy: str | bool
    body: Body

    def compile(self, emitter: CodeEmitter) -> None:
        self.body.compile(emitter)
