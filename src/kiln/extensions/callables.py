"""Descriptors for the vocabulary extensions contribute.

Filters, functions and tests are frozen dataclasses that carry their own
name. A name may contain ``*`` wildcards; resolving such a name returns a copy
with the captured fragments bound as leading ``arguments``::

    TemplateFilter("date_*", format_date)   # {{ d|date_iso }} -> format_date("iso", d)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any


@dataclass(frozen=True, slots=True)
class TemplateCallable:
    """Shared shape of filters, functions and tests.

    Attributes:
        name: Template-facing name, ``*`` marks a wildcard fragment
        callable: The Python callable invoked at render time
        needs_environment: Pass the environment as first argument
        needs_context: Pass the render context (after the environment)
        is_safe: Escaping strategies the output is already safe for; ``"all"`` for any
        arguments: Wildcard captures bound at resolution time
    """

    name: str
    callable: Callable[..., Any]
    needs_environment: bool = False
    needs_context: bool = False
    is_safe: tuple[str, ...] = ()
    arguments: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        if isinstance(self.is_safe, str):
            object.__setattr__(self, "is_safe", (self.is_safe,))
        else:
            object.__setattr__(self, "is_safe", tuple(self.is_safe))
        object.__setattr__(self, "arguments", tuple(self.arguments))

    @property
    def is_dynamic(self) -> bool:
        return "*" in self.name

    def with_arguments(self, arguments: Iterable[Any]) -> TemplateCallable:
        """Copy of this descriptor with wildcard captures bound."""
        return replace(self, arguments=tuple(arguments))

    def is_safe_for(self, strategy: str) -> bool:
        return "all" in self.is_safe or strategy in self.is_safe

    def invoke(self, env: Any, context: Any, *args: Any, **kwargs: Any) -> Any:
        prefix: list[Any] = []
        if self.needs_environment:
            prefix.append(env)
        if self.needs_context:
            prefix.append(context)
        return self.callable(*prefix, *self.arguments, *args, **kwargs)


@dataclass(frozen=True, slots=True)
class TemplateFilter(TemplateCallable):
    """Filter applied with ``value|name(args)``; the filtered value comes first."""


@dataclass(frozen=True, slots=True)
class TemplateFunction(TemplateCallable):
    """Function called with ``name(args)``."""


@dataclass(frozen=True, slots=True)
class TemplateTest(TemplateCallable):
    """Predicate used with ``value is name(args)``. Never wildcard-resolved."""


class Associativity(Enum):
    LEFT = "left"
    RIGHT = "right"


@dataclass(frozen=True, slots=True)
class UnaryOperator:
    """Prefix operator. Emits ``python`` directly or calls ``function`` at render time."""

    precedence: int
    python: str | None = None
    function: Callable[[Any], Any] | None = None


@dataclass(frozen=True, slots=True)
class BinaryOperator:
    """Infix operator.

    ``is_test`` marks ``is`` / ``is not``: the right-hand side is a test name,
    not an expression.
    """

    precedence: int
    python: str | None = None
    function: Callable[[Any, Any], Any] | None = None
    associativity: Associativity = Associativity.LEFT
    is_test: bool = False
