"""Generic AST traversal.

Children are discovered from dataclass fields: any field holding a node, or a
(possibly nested) tuple containing nodes. Visitors rebuild nodes with
``dataclasses.replace`` since nodes are immutable.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import fields, replace
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from kiln.nodes.base import Node

if TYPE_CHECKING:
    from kiln.environment.core import Environment


@runtime_checkable
class NodeVisitor(Protocol):
    """Transforms nodes during parsing.

    ``enter_node`` runs before the children are visited, ``leave_node``
    after. Returning ``None`` from ``leave_node`` removes the node from its
    enclosing tuple. Visitors run one after another, lowest ``priority``
    first.
    """

    priority: int

    def enter_node(self, node: Node, env: Environment) -> Node: ...

    def leave_node(self, node: Node, env: Environment) -> Node | None: ...


def iter_child_nodes(node: Node) -> Iterator[Node]:
    """Yield the direct children of ``node`` in field order."""
    for field in fields(node):
        yield from _nodes_in(getattr(node, field.name))


def _nodes_in(value: Any) -> Iterator[Node]:
    if isinstance(value, Node):
        yield value
    elif isinstance(value, tuple):
        for item in value:
            yield from _nodes_in(item)


def walk(node: Node) -> Iterator[Node]:
    """Yield ``node`` and all of its descendants, depth first."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(list(iter_child_nodes(current))))


class NodeTraverser:
    """Runs each visitor over the whole tree, in priority order."""

    __slots__ = ("_env", "_visitors")

    def __init__(self, env: Environment, visitors: Iterable[NodeVisitor] = ()):
        self._env = env
        self._visitors: Sequence[NodeVisitor] = sorted(visitors, key=lambda v: v.priority)

    def traverse(self, node: Node) -> Node:
        for visitor in self._visitors:
            result = self._visit(visitor, node)
            if result is None:
                raise TypeError(f"{type(visitor).__name__} removed the root node")
            node = result
        return node

    def _visit(self, visitor: NodeVisitor, node: Node) -> Node | None:
        node = visitor.enter_node(node, self._env)
        changes = {}
        for field in fields(node):
            value = getattr(node, field.name)
            updated = self._visit_value(visitor, value)
            if updated is not value:
                changes[field.name] = updated
        if changes:
            node = replace(node, **changes)
        return visitor.leave_node(node, self._env)

    def _visit_value(self, visitor: NodeVisitor, value: Any) -> Any:
        if isinstance(value, Node):
            return self._visit(visitor, value)
        if not isinstance(value, tuple):
            return value
        items = []
        changed = False
        for item in value:
            updated = self._visit_value(visitor, item)
            if updated is not item:
                changed = True
            if updated is None and isinstance(item, Node):
                continue
            items.append(updated)
        return tuple(items) if changed else value
