"""Automatic output escaping.

Every ``{{ ... }}`` whose value is not known to be safe for the active
strategy is rewritten to ``{{ (...)|escape("<strategy>") }}`` at compile
time. The active strategy comes from the environment default and is
overridden per region with ``{% autoescape %}``.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from kiln.extensions.base import Extension
from kiln.extensions.callables import TemplateFilter
from kiln.nodes import AutoEscape, Conditional, Const, Filter, FunctionCall, Module, Node, Print
from kiln.parser.tags import AutoEscapeTokenParser, TokenParser
from kiln.utils.html import ESCAPERS, escape

if TYPE_CHECKING:
    from kiln.environment.core import Environment
    from kiln.nodes.base import Expr
    from kiln.nodes.visitor import NodeVisitor

logger = logging.getLogger(__name__)

Strategy = str | bool
StrategySetting = Strategy | Callable[[str | None], Strategy]

_EXTENSION_STRATEGIES = {
    ".js": "js",
    ".css": "css",
    ".txt": False,
}


def guess_strategy_from_name(name: str | None) -> Strategy:
    """``"page.html.twig"`` -> ``"html"``, ``"app.js.twig"`` -> ``"js"``."""
    if not name:
        return "html"
    base = os.path.basename(name)
    if base.endswith(".twig"):
        base = base[: -len(".twig")]
    return _EXTENSION_STRATEGIES.get(os.path.splitext(base)[1], "html")


def do_escape(value: Any, strategy: str = "html") -> str:
    return escape(value, strategy)


def do_raw(value: Any) -> Any:
    return value


class EscaperExtension(Extension):
    """Adds ``escape``/``e``/``raw``, the ``autoescape`` tag and the escaping pass.

    Args:
        default_strategy: ``"html"`` (or any strategy name), ``True`` for
            ``"html"``, ``False`` to disable, ``"filename"`` to guess from the
            template name, or a callable taking the template name.
    """

    name = "escaper"

    def __init__(self, default_strategy: StrategySetting = "html"):
        self.set_default_strategy(default_strategy)

    def set_default_strategy(self, strategy: StrategySetting) -> None:
        if strategy is True:
            strategy = "html"
        elif strategy == "filename":
            strategy = guess_strategy_from_name
        if isinstance(strategy, str) and strategy not in ESCAPERS:
            raise ValueError(f"Unknown escaping strategy {strategy!r}.")
        self._default_strategy = strategy

    def get_default_strategy(self, name: str | None) -> Strategy:
        if callable(self._default_strategy):
            return self._default_strategy(name)
        return self._default_strategy

    def get_filters(self) -> Iterable[TemplateFilter]:
        return (
            TemplateFilter("escape", do_escape, is_safe=("all",)),
            TemplateFilter("e", do_escape, is_safe=("all",)),
            TemplateFilter("raw", do_raw, is_safe=("all",)),
        )

    def get_token_parsers(self) -> Iterable[TokenParser]:
        return (AutoEscapeTokenParser(),)

    def get_node_visitors(self) -> Iterable[NodeVisitor]:
        return (EscaperNodeVisitor(),)


def is_safe_for(expr: Expr, strategy: str, env: Environment) -> bool:
    """True when ``expr`` is known to produce output safe for ``strategy``."""
    if isinstance(expr, Const):
        return True
    if isinstance(expr, Conditional):
        return is_safe_for(expr.if_true, strategy, env) and is_safe_for(
            expr.if_false, strategy, env
        )
    if isinstance(expr, Filter):
        descriptor = env.get_filter(expr.name)
    elif isinstance(expr, FunctionCall):
        descriptor = env.get_function(expr.name)
    else:
        return False
    return descriptor is not None and descriptor.is_safe_for(strategy)


class EscaperNodeVisitor:
    """Wraps unsafe prints in an ``escape`` filter.

    Runs first so later passes (the optimizer's raw-filter removal) see the
    final shape.
    """

    priority = 0

    def __init__(self) -> None:
        self._local = threading.local()

    @property
    def _strategies(self) -> list[Strategy]:
        # One stack per thread, parsers may share the registered visitor.
        try:
            return self._local.strategies
        except AttributeError:
            self._local.strategies = []
            return self._local.strategies

    def enter_node(self, node: Node, env: Environment) -> Node:
        if isinstance(node, Module):
            if node.index is None:
                self._strategies.clear()
            extension = env.get_extension(EscaperExtension.name)
            self._strategies.append(extension.get_default_strategy(node.name))
        elif isinstance(node, AutoEscape):
            self._strategies.append(node.strategy)
        return node

    def leave_node(self, node: Node, env: Environment) -> Node | None:
        if isinstance(node, (Module, AutoEscape)):
            self._strategies.pop()
            return node
        if not isinstance(node, Print) or not self._strategies:
            return node
        strategy = self._strategies[-1]
        if not strategy or is_safe_for(node.expr, strategy, env):
            return node
        logger.debug("Escaping print on line %d for %s", node.lineno, strategy)
        wrapped = Filter(node.lineno, node.expr, "escape", (Const(node.lineno, strategy),))
        return Print(node.lineno, wrapped)
