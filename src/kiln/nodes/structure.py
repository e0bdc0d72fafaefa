"""The root node of a parsed template."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from kiln.nodes.base import Expr, Node
from kiln.nodes.statements import BlockNode, Body

if TYPE_CHECKING:
    from kiln.compiler.emitter import CodeEmitter

BASE_ALIAS = "_KilnBaseTemplate"


@dataclass(frozen=True, slots=True)
class Module(Node):
    """A template (``index is None``) or one of its embedded templates.

    Only the top-level module carries ``embedded``; compiling it emits one
    Python module defining a class for itself followed by one class per
    embedded template.

    Attributes:
        name: Logical template name handed to the loader
        body: Top-level statements
        blocks: Block definitions, in source order
        parent: Expression naming the template this one extends
        embedded: Embedded templates (top-level module only)
        index: Embedded template index, ``None`` for the main template
        source: Template source, for diagnostics
    """

    name: str | None
    body: Body
    blocks: tuple[BlockNode, ...] = ()
    parent: Expr | None = None
    embedded: tuple[Module, ...] = ()
    index: int | None = None
    source: str | None = None

    @property
    def block_names(self) -> tuple[str, ...]:
        return tuple(block.name for block in self.blocks)

    def compile(self, emitter: CodeEmitter) -> None:
        env = emitter.get_environment()
        module_path, _, class_name = env.base_template_class.rpartition(".")
        emitter.write(f"# Compiled template: {self.name!r}\n")
        emitter.write(f"from {module_path} import {class_name} as {BASE_ALIAS}\n")
        self.compile_class(emitter)
        for module in self.embedded:
            module.compile_class(emitter)

    def compile_class(self, emitter: CodeEmitter) -> None:
        env = emitter.get_environment()
        unit_name = env.get_unit_name(self.name, self.index)
        emitter.raw("\n\n").write(f"class {unit_name}({BASE_ALIAS}):\n").indent()
        emitter.write("template_name = ").literal(self.name).raw("\n")
        emitter.write("block_names = ").literal(self.block_names).raw("\n")

        if self.parent is not None:
            emitter.raw("\n").write("def get_parent(self, ctx):\n").indent()
            emitter.add_debug_info(self.parent)
            emitter.write("return self.load_parent(").subcompile(self.parent).raw(")\n")
            emitter.outdent()

        emitter.raw("\n").write("def do_display(self, ctx, buf, blocks):\n").indent()
        emitter.write("_append = buf.append\n")
        if self.parent is None:
            self.body.compile(emitter)
        else:
            for node in self.body.nodes:
                node.compile(emitter)
            emitter.write("self.get_parent(ctx).display(ctx, buf, {**self.blocks, **blocks})\n")
        emitter.outdent()

        for block in self.blocks:
            emitter.raw("\n")
            block.compile(emitter)

        emitter.raw("\n").write("debug_info = ").literal(emitter.get_debug_info()).raw("\n")
        emitter.outdent()
