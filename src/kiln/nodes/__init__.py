"""Kiln AST nodes.

Immutable node tree produced by the parser. Each node compiles itself through
a ``CodeEmitter``.
"""

from kiln.nodes.base import Expr, Node, Stmt
from kiln.nodes.expressions import (
    BinaryOp,
    Conditional,
    Const,
    DictExpr,
    Filter,
    FunctionCall,
    GetAttr,
    GetItem,
    ListExpr,
    Name,
    Test,
    UnaryOp,
)
from kiln.nodes.statements import (
    AutoEscape,
    BlockNode,
    BlockReference,
    Body,
    Embed,
    For,
    If,
    Include,
    Print,
    Set,
    Text,
)
from kiln.nodes.structure import Module
from kiln.nodes.visitor import NodeTraverser, NodeVisitor, iter_child_nodes, walk

__all__ = [
    "AutoEscape",
    "BinaryOp",
    "BlockNode",
    "BlockReference",
    "Body",
    "Conditional",
    "Const",
    "DictExpr",
    "Embed",
    "Expr",
    "Filter",
    "For",
    "FunctionCall",
    "GetAttr",
    "GetItem",
    "If",
    "Include",
    "ListExpr",
    "Module",
    "Name",
    "Node",
    "NodeTraverser",
    "NodeVisitor",
    "Print",
    "Set",
    "Stmt",
    "Test",
    "Text",
    "UnaryOp",
    "iter_child_nodes",
    "walk",
]
