"""Extension contract.

An extension bundles vocabulary for the compiler. The registry reads every
hook once, when it freezes; later changes to an extension object are not
seen.

Example:
    >>> class MoneyExtension(Extension):
    ...     name = "money"
    ...     def get_filters(self):
    ...         return [TemplateFilter("money", lambda v: f"${v:,.2f}")]
    >>> env.add_extension(MoneyExtension())
"""

from __future__ import annotations

import inspect
import os
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from kiln.extensions.callables import (
    BinaryOperator,
    TemplateFilter,
    TemplateFunction,
    TemplateTest,
    UnaryOperator,
)

if TYPE_CHECKING:
    from kiln.environment.core import Environment
    from kiln.nodes.visitor import NodeVisitor
    from kiln.parser.tags import TokenParser

OperatorTables = tuple[Mapping[str, UnaryOperator], Mapping[str, BinaryOperator]]


class Extension:
    """Base class for extensions. Every hook defaults to contributing nothing."""

    #: Unique registry key. Defaults to the qualified class name.
    name: str = ""

    def get_name(self) -> str:
        return self.name or f"{type(self).__module__}.{type(self).__qualname__}"

    def get_filters(self) -> Iterable[TemplateFilter]:
        return ()

    def get_functions(self) -> Iterable[TemplateFunction]:
        return ()

    def get_tests(self) -> Iterable[TemplateTest]:
        return ()

    def get_token_parsers(self) -> Iterable[TokenParser]:
        return ()

    def get_node_visitors(self) -> Iterable[NodeVisitor]:
        return ()

    def get_operators(self) -> OperatorTables | None:
        """Return ``(unary, binary)`` operator tables, or ``None``."""
        return None

    def get_globals(self) -> Mapping[str, Any]:
        return {}

    def init_runtime(self, env: Environment) -> None:
        """Called once, when the environment first initializes its runtime."""

    def get_last_modified(self) -> float:
        """Freshness fingerprint compared against cached units.

        Defaults to the modification time of the file defining the
        extension's class, so editing an extension invalidates units
        compiled with the old version.
        """
        try:
            path = inspect.getsourcefile(type(self))
        except TypeError:
            return 0.0
        if path is None:
            return 0.0
        try:
            return os.stat(path).st_mtime
        except OSError:
            return 0.0


class StagingExtension(Extension):
    """Holds vocabulary registered directly on the environment.

    Merged after every regular extension, so its entries win on name clashes.
    """

    name = "_staging"

    def __init__(self) -> None:
        self.filters: dict[str, TemplateFilter] = {}
        self.functions: dict[str, TemplateFunction] = {}
        self.tests: dict[str, TemplateTest] = {}
        self.token_parsers: list[TokenParser] = []
        self.node_visitors: list[NodeVisitor] = []
        self.globals: dict[str, Any] = {}

    def get_filters(self) -> Iterable[TemplateFilter]:
        return self.filters.values()

    def get_functions(self) -> Iterable[TemplateFunction]:
        return self.functions.values()

    def get_tests(self) -> Iterable[TemplateTest]:
        return self.tests.values()

    def get_token_parsers(self) -> Iterable[TokenParser]:
        return self.token_parsers

    def get_node_visitors(self) -> Iterable[NodeVisitor]:
        return self.node_visitors

    def get_globals(self) -> Mapping[str, Any]:
        return self.globals

    def get_last_modified(self) -> float:
        return 0.0
