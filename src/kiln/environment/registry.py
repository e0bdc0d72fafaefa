"""Extension registry for the Kiln environment.

Collects the vocabulary of every registered extension and resolves names at
compile time. The registry has two states:

- ``OPEN``: extensions and ad-hoc vocabulary may be added or removed.
- ``FROZEN``: everything is merged into lookup tables; registration raises
  ``LogicError``. The only allowed mutation is updating an existing global.

The transition happens on the first lookup, one way. Build the registry
fully before sharing the environment between threads.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from kiln.environment.exceptions import ConfigurationError, LogicError
from kiln.extensions.base import Extension, StagingExtension
from kiln.extensions.callables import (
    BinaryOperator,
    TemplateCallable,
    TemplateFilter,
    TemplateFunction,
    TemplateTest,
    UnaryOperator,
)

if TYPE_CHECKING:
    from kiln.nodes.visitor import NodeVisitor
    from kiln.parser.tags import TokenParser

C = TypeVar("C", bound=TemplateCallable)
UndefinedCallback = Callable[[str], Any]


class RegistryState(Enum):
    OPEN = "open"
    FROZEN = "frozen"


def compile_wildcard(name: str) -> re.Pattern[str]:
    """``"date_*"`` -> a full-match pattern capturing each ``*`` fragment."""
    return re.compile(re.escape(name).replace(r"\*", "(.*?)"))


def _is_mapping_pair(value: Any) -> bool:
    return (
        isinstance(value, (tuple, list))
        and len(value) == 2
        and all(isinstance(table, Mapping) for table in value)
    )


class ExtensionRegistry:
    """Merged view over registered extensions plus the staging extension.

    Resolution order for filters and functions:
        1. exact name
        2. wildcard names, in registration order (first full match wins,
           captured fragments become the descriptor's ``arguments``)
        3. undefined callbacks, in registration order (first non-``None`` wins)

    Tests resolve by exact name only.
    """

    __slots__ = (
        "_state",
        "_lock",
        "_extensions",
        "_staging",
        "_filters",
        "_functions",
        "_tests",
        "_filter_patterns",
        "_function_patterns",
        "_filter_callbacks",
        "_function_callbacks",
        "_token_parsers",
        "_node_visitors",
        "_unary_operators",
        "_binary_operators",
        "_globals",
    )

    def __init__(self) -> None:
        self._state = RegistryState.OPEN
        self._lock = threading.Lock()
        self._extensions: dict[str, Extension] = {}
        self._staging = StagingExtension()
        self._filters: dict[str, TemplateFilter] = {}
        self._functions: dict[str, TemplateFunction] = {}
        self._tests: dict[str, TemplateTest] = {}
        self._filter_patterns: list[tuple[re.Pattern[str], TemplateFilter]] = []
        self._function_patterns: list[tuple[re.Pattern[str], TemplateFunction]] = []
        self._filter_callbacks: list[UndefinedCallback] = []
        self._function_callbacks: list[UndefinedCallback] = []
        self._token_parsers: dict[str, TokenParser] = {}
        self._node_visitors: list[NodeVisitor] = []
        self._unary_operators: dict[str, UnaryOperator] = {}
        self._binary_operators: dict[str, BinaryOperator] = {}
        self._globals: dict[str, Any] | None = None

    def __repr__(self) -> str:
        return f"<ExtensionRegistry {self._state.value} extensions={list(self._extensions)}>"

    @property
    def state(self) -> RegistryState:
        return self._state

    @property
    def is_frozen(self) -> bool:
        return self._state is RegistryState.FROZEN

    def _check_open(self, action: str) -> None:
        if self.is_frozen:
            raise LogicError(f"Unable to {action} as extensions have already been initialized.")

    # -- extensions -----------------------------------------------------------

    def add_extension(self, extension: Extension) -> None:
        name = extension.get_name()
        self._check_open(f'register extension "{name}"')
        if name in self._extensions:
            raise LogicError(f'Unable to register extension "{name}" as it is already registered.')
        self._extensions[name] = extension

    def remove_extension(self, name: str) -> None:
        self._check_open(f'remove extension "{name}"')
        if self._extensions.pop(name, None) is None:
            raise LogicError(f'Unable to remove extension "{name}" as it is not registered.')

    def has_extension(self, name: str) -> bool:
        return name in self._extensions

    def get_extension(self, name: str) -> Extension:
        try:
            return self._extensions[name]
        except KeyError:
            raise LogicError(f'The "{name}" extension is not enabled.') from None

    def get_extensions(self) -> dict[str, Extension]:
        return dict(self._extensions)

    @property
    def staging(self) -> StagingExtension:
        return self._staging

    # -- ad-hoc registration --------------------------------------------------

    def add_filter(self, filter_: TemplateFilter) -> None:
        self._check_open(f'add filter "{filter_.name}"')
        self._staging.filters[filter_.name] = filter_

    def add_function(self, function: TemplateFunction) -> None:
        self._check_open(f'add function "{function.name}"')
        self._staging.functions[function.name] = function

    def add_test(self, test: TemplateTest) -> None:
        self._check_open(f'add test "{test.name}"')
        self._staging.tests[test.name] = test

    def add_token_parser(self, parser: TokenParser) -> None:
        self._check_open(f'add token parser "{parser.tag}"')
        self._staging.token_parsers.append(parser)

    def add_node_visitor(self, visitor: NodeVisitor) -> None:
        self._check_open("add a node visitor")
        self._staging.node_visitors.append(visitor)

    def register_undefined_filter_callback(self, callback: UndefinedCallback) -> None:
        self._check_open("register an undefined filter callback")
        self._filter_callbacks.append(callback)

    def register_undefined_function_callback(self, callback: UndefinedCallback) -> None:
        self._check_open("register an undefined function callback")
        self._function_callbacks.append(callback)

    def add_global(self, name: str, value: Any) -> None:
        """Add a global; once frozen, only existing globals can be updated."""
        if not self.is_frozen:
            self._staging.globals[name] = value
            return
        current = self.get_globals()
        if name not in current:
            raise LogicError(
                f'Unable to add global "{name}" as the runtime or the extensions '
                "have already been initialized."
            )
        # Copy-on-write: renders in flight keep the mapping they started with.
        self._globals = {**current, name: value}

    # -- freezing -------------------------------------------------------------

    def freeze(self) -> None:
        """Merge every extension (then staging) into the lookup tables."""
        if self.is_frozen:
            return
        with self._lock:
            if self.is_frozen:
                return
            try:
                for extension in (*self._extensions.values(), self._staging):
                    self._merge(extension)
            except ConfigurationError:
                self._clear_tables()
                raise
            self._filter_patterns = self._wildcards(self._filters)
            self._function_patterns = self._wildcards(self._functions)
            self._state = RegistryState.FROZEN

    def _clear_tables(self) -> None:
        for table in (
            self._filters,
            self._functions,
            self._tests,
            self._token_parsers,
            self._unary_operators,
            self._binary_operators,
        ):
            table.clear()
        self._node_visitors.clear()

    def _merge(self, extension: Extension) -> None:
        for filter_ in extension.get_filters():
            self._filters[filter_.name] = filter_
        for function in extension.get_functions():
            self._functions[function.name] = function
        for test in extension.get_tests():
            self._tests[test.name] = test
        for parser in extension.get_token_parsers():
            self._token_parsers[parser.tag] = parser
        self._node_visitors.extend(extension.get_node_visitors())

        operators = extension.get_operators()
        if operators is None:
            return
        if not _is_mapping_pair(operators):
            raise ConfigurationError(
                f'"{type(extension).__name__}.get_operators()" must return a pair of '
                f"mappings (unary, binary) or None, got {operators!r}."
            )
        unary, binary = operators
        self._unary_operators.update(unary)
        self._binary_operators.update(binary)

    @staticmethod
    def _wildcards(table: Mapping[str, C]) -> list[tuple[re.Pattern[str], C]]:
        return [
            (compile_wildcard(name), descriptor)
            for name, descriptor in table.items()
            if "*" in name
        ]

    # -- lookups (freeze on first use) ----------------------------------------

    @staticmethod
    def _resolve(
        name: str,
        table: Mapping[str, C],
        patterns: Iterable[tuple[re.Pattern[str], C]],
        callbacks: Iterable[UndefinedCallback],
    ) -> C | None:
        exact = table.get(name)
        if exact is not None:
            return exact
        for pattern, descriptor in patterns:
            match = pattern.fullmatch(name)
            if match is not None:
                return descriptor.with_arguments(match.groups())  # type: ignore[return-value]
        for callback in callbacks:
            found = callback(name)
            if found is not None and found is not False:
                return found
        return None

    def get_filter(self, name: str) -> TemplateFilter | None:
        self.freeze()
        return self._resolve(name, self._filters, self._filter_patterns, self._filter_callbacks)

    def get_function(self, name: str) -> TemplateFunction | None:
        self.freeze()
        return self._resolve(
            name, self._functions, self._function_patterns, self._function_callbacks
        )

    def get_test(self, name: str) -> TemplateTest | None:
        self.freeze()
        return self._tests.get(name)

    def get_filters(self) -> dict[str, TemplateFilter]:
        self.freeze()
        return dict(self._filters)

    def get_functions(self) -> dict[str, TemplateFunction]:
        self.freeze()
        return dict(self._functions)

    def get_tests(self) -> dict[str, TemplateTest]:
        self.freeze()
        return dict(self._tests)

    def get_token_parsers(self) -> dict[str, TokenParser]:
        self.freeze()
        return dict(self._token_parsers)

    def get_node_visitors(self) -> list[NodeVisitor]:
        self.freeze()
        return sorted(self._node_visitors, key=lambda visitor: visitor.priority)

    def get_unary_operators(self) -> dict[str, UnaryOperator]:
        self.freeze()
        return self._unary_operators

    def get_binary_operators(self) -> dict[str, BinaryOperator]:
        self.freeze()
        return self._binary_operators

    def get_globals(self) -> dict[str, Any]:
        """Merged globals. Recomputed on each call until frozen, cached afterwards."""
        if self._globals is not None:
            return self._globals
        merged: dict[str, Any] = {}
        for extension in (*self._extensions.values(), self._staging):
            values = extension.get_globals()
            if not isinstance(values, Mapping):
                raise ConfigurationError(
                    f'"{type(extension).__name__}.get_globals()" must return a mapping, '
                    f"got {type(values).__name__}."
                )
            merged.update(values)
        if self.is_frozen:
            self._globals = merged
        return merged
