"""Base node classes for the Kiln AST."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kiln.compiler.emitter import CodeEmitter


@dataclass(frozen=True, slots=True)
class Node:
    """Base class for all AST nodes.

    Nodes are immutable and carry the template line they start on. Each node
    emits its own Python code through ``compile``.
    """

    lineno: int

    def compile(self, emitter: CodeEmitter) -> None:
        raise NotImplementedError(f"{type(self).__name__} cannot be compiled")


@dataclass(frozen=True, slots=True)
class Expr(Node):
    """Base class for expressions. Compiles to a single Python expression."""


@dataclass(frozen=True, slots=True)
class Stmt(Node):
    """Base class for statements. Compiles to complete lines."""
