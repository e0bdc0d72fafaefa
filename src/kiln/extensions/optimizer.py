"""Compile-time tree optimizations.

Each pass is enabled by a bit in the ``optimizations`` mask:

- ``OPTIMIZE_FOR``: skip the ``loop`` helper when the loop body never reads it
- ``OPTIMIZE_RAW_FILTER``: drop ``|raw`` once escaping has been decided
- ``OPTIMIZE_TEXT``: fold constant prints into text and merge adjacent text
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from typing import TYPE_CHECKING

from kiln.extensions.base import Extension
from kiln.nodes import (
    BlockReference,
    Body,
    Const,
    Filter,
    For,
    Include,
    Name,
    Node,
    Print,
    Text,
    walk,
)

if TYPE_CHECKING:
    from kiln.environment.core import Environment
    from kiln.nodes.visitor import NodeVisitor

OPTIMIZE_ALL = -1
OPTIMIZE_NONE = 0
OPTIMIZE_FOR = 2
OPTIMIZE_RAW_FILTER = 4
OPTIMIZE_TEXT = 8


class OptimizerExtension(Extension):
    name = "optimizer"

    def __init__(self, optimizations: int = OPTIMIZE_ALL):
        self.optimizations = optimizations

    def get_node_visitors(self) -> Iterable[NodeVisitor]:
        return (OptimizerNodeVisitor(self.optimizations),)


def _uses_loop(body: Node) -> bool:
    # An include or a block call may read ``loop`` from the shared context.
    for node in walk(body):
        if isinstance(node, Name) and node.name == "loop":
            return True
        if isinstance(node, (Include, BlockReference)):
            return True
    return False


def _merge_text(nodes: tuple[Node, ...]) -> tuple[Node, ...]:
    merged: list[Node] = []
    for node in nodes:
        if isinstance(node, Text) and merged and isinstance(merged[-1], Text):
            previous = merged[-1]
            merged[-1] = Text(previous.lineno, previous.data + node.data)
        else:
            merged.append(node)
    return tuple(merged) if len(merged) != len(nodes) else nodes


class OptimizerNodeVisitor:
    """Runs last, after escaping has been decided."""

    priority = 255

    def __init__(self, optimizations: int = OPTIMIZE_ALL):
        self.optimizations = optimizations

    def _enabled(self, flag: int) -> bool:
        return bool(self.optimizations & flag)

    def enter_node(self, node: Node, env: Environment) -> Node:
        return node

    def leave_node(self, node: Node, env: Environment) -> Node | None:
        if isinstance(node, For) and self._enabled(OPTIMIZE_FOR):
            if node.with_loop and not _uses_loop(node.body):
                return replace(node, with_loop=False)
        elif isinstance(node, Filter) and self._enabled(OPTIMIZE_RAW_FILTER):
            if node.name == "raw":
                return node.node
        elif isinstance(node, Print) and self._enabled(OPTIMIZE_TEXT):
            if isinstance(node.expr, Const) and isinstance(node.expr.value, str):
                return Text(node.lineno, node.expr.value)
        elif isinstance(node, Body) and self._enabled(OPTIMIZE_TEXT):
            merged = _merge_text(node.nodes)
            if merged is not node.nodes:
                return replace(node, nodes=merged)
        return node
