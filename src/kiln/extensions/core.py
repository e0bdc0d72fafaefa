"""Core extension: the built-in tags, filters, functions, tests and operators."""

from __future__ import annotations

import json
import operator
from collections.abc import Iterable, Mapping, Sized
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any

from kiln.extensions.base import Extension, OperatorTables
from kiln.extensions.callables import (
    Associativity,
    BinaryOperator,
    TemplateFilter,
    TemplateFunction,
    TemplateTest,
    UnaryOperator,
)
from kiln.parser.tags import (
    BlockTokenParser,
    EmbedTokenParser,
    ExtendsTokenParser,
    ForTokenParser,
    IfTokenParser,
    IncludeTokenParser,
    SetTokenParser,
    TokenParser,
)

# =============================================================================
# Filters
# =============================================================================


def _is_empty(value: Any) -> bool:
    if value is None or value is False or value == "":
        return True
    if isinstance(value, Sized) and not isinstance(value, str):
        return len(value) == 0
    return False


def do_default(value: Any, default: Any = "") -> Any:
    """Return ``default`` when ``value`` is undefined, ``None`` or empty."""
    return default if _is_empty(value) else value


def do_length(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, Sized):
        return len(value)
    return len(str(value))


def do_join(value: Iterable[Any] | None, glue: str = "") -> str:
    if value is None:
        return ""
    return glue.join(str(item) for item in value)


def do_first(value: Any) -> Any:
    if isinstance(value, Mapping):
        value = value.values()
    for item in value or ():
        return item
    return None


def do_last(value: Any) -> Any:
    if isinstance(value, Mapping):
        value = list(value.values())
    elif not isinstance(value, (str, list, tuple)):
        value = list(value or ())
    return value[-1] if value else None


def do_reverse(value: Any) -> Any:
    if isinstance(value, str):
        return value[::-1]
    if isinstance(value, Mapping):
        return dict(reversed(list(value.items())))
    return list(reversed(list(value or ())))


def do_sort(value: Any) -> list[Any]:
    if isinstance(value, Mapping):
        return sorted(value.values())
    return sorted(value or ())


def do_keys(value: Any) -> list[Any]:
    if isinstance(value, Mapping):
        return list(value.keys())
    return list(range(len(value or ())))


_ROUNDING = {"common": ROUND_HALF_UP, "ceil": ROUND_CEILING, "floor": ROUND_FLOOR}


def do_round(value: Any, precision: int = 0, method: str = "common") -> float | int:
    """Round half away from zero (``common``), up (``ceil``) or down (``floor``)."""
    if method not in _ROUNDING:
        raise ValueError("The round filter only supports the 'common', 'ceil' and 'floor' methods.")
    exponent = Decimal(1).scaleb(-precision)
    rounded = Decimal(str(value)).quantize(exponent, rounding=_ROUNDING[method])
    return int(rounded) if precision <= 0 else float(rounded)


def do_replace(value: Any, search: Any, replacement: str | None = None) -> str:
    """``"a-b"|replace("-", "+")`` or ``"%a %b"|replace({"%a": 1, "%b": 2})``."""
    text = "" if value is None else str(value)
    if isinstance(search, Mapping):
        for old, new in search.items():
            text = text.replace(str(old), str(new))
        return text
    return text.replace(str(search), "" if replacement is None else str(replacement))


def do_format(value: str, *args: Any) -> str:
    """printf-style formatting: ``"%s has %d items"|format(name, count)``."""
    return value % args


def do_json_encode(value: Any, indent: int | None = None) -> str:
    return json.dumps(value, indent=indent, default=str)


def do_trim(value: Any, characters: str | None = None) -> str:
    return ("" if value is None else str(value)).strip(characters)


def _text_filter(method: str):
    def apply(value: Any) -> str:
        return getattr("" if value is None else str(value), method)()

    apply.__name__ = f"do_{method}"
    return apply


# =============================================================================
# Functions
# =============================================================================


def inclusive_range(start: Any, end: Any, step: int = 1) -> list[Any]:
    """``range(1, 3)`` and ``1..3`` both yield ``[1, 2, 3]``; letters work too."""
    if step == 0:
        raise ValueError("The step of a range cannot be zero.")
    step = abs(step)
    if isinstance(start, str) and isinstance(end, str) and len(start) == len(end) == 1:
        return [chr(code) for code in inclusive_range(ord(start), ord(end), step)]
    if start <= end:
        return list(range(start, end + 1, step))
    return list(range(start, end - 1, -step))


def _extreme(pick):
    def apply(*values: Any) -> Any:
        if len(values) == 1:
            (single,) = values
            if isinstance(single, Mapping):
                single = single.values()
            return pick(single)
        return pick(values)

    apply.__name__ = pick.__name__
    return apply


# =============================================================================
# Tests
# =============================================================================


def test_iterable(value: Any) -> bool:
    try:
        iter(value)
    except TypeError:
        return False
    return True


def test_divisibleby(value: int, num: int) -> bool:
    return value % num == 0


def concat(left: Any, right: Any) -> str:
    return f"{'' if left is None else left}{'' if right is None else right}"


class CoreExtension(Extension):
    """Built-in vocabulary every environment starts with."""

    name = "core"

    def get_token_parsers(self) -> Iterable[TokenParser]:
        return (
            IfTokenParser(),
            ForTokenParser(),
            SetTokenParser(),
            BlockTokenParser(),
            ExtendsTokenParser(),
            IncludeTokenParser(),
            EmbedTokenParser(),
        )

    def get_filters(self) -> Iterable[TemplateFilter]:
        return (
            TemplateFilter("upper", _text_filter("upper")),
            TemplateFilter("lower", _text_filter("lower")),
            TemplateFilter("title", _text_filter("title")),
            TemplateFilter("capitalize", _text_filter("capitalize")),
            TemplateFilter("trim", do_trim),
            TemplateFilter("length", do_length),
            TemplateFilter("join", do_join),
            TemplateFilter("default", do_default),
            TemplateFilter("first", do_first),
            TemplateFilter("last", do_last),
            TemplateFilter("reverse", do_reverse),
            TemplateFilter("sort", do_sort),
            TemplateFilter("keys", do_keys),
            TemplateFilter("abs", abs),
            TemplateFilter("round", do_round),
            TemplateFilter("replace", do_replace),
            TemplateFilter("format", do_format),
            TemplateFilter("json_encode", do_json_encode),
        )

    def get_functions(self) -> Iterable[TemplateFunction]:
        return (
            TemplateFunction("range", inclusive_range),
            TemplateFunction("max", _extreme(max)),
            TemplateFunction("min", _extreme(min)),
        )

    def get_tests(self) -> Iterable[TemplateTest]:
        return (
            TemplateTest("defined", lambda value: value is not None),
            TemplateTest("none", lambda value: value is None),
            TemplateTest("null", lambda value: value is None),
            TemplateTest("even", lambda value: value % 2 == 0),
            TemplateTest("odd", lambda value: value % 2 == 1),
            TemplateTest("empty", _is_empty),
            TemplateTest("iterable", test_iterable),
            TemplateTest("divisibleby", test_divisibleby),
        )

    def get_operators(self) -> OperatorTables:
        unary = {
            "not": UnaryOperator(50, python="not"),
            "-": UnaryOperator(500, python="-"),
            "+": UnaryOperator(500, python="+"),
        }
        binary = {
            "or": BinaryOperator(10, python="or"),
            "and": BinaryOperator(15, python="and"),
            "==": BinaryOperator(20, python="=="),
            "!=": BinaryOperator(20, python="!="),
            "<": BinaryOperator(20, python="<"),
            ">": BinaryOperator(20, python=">"),
            ">=": BinaryOperator(20, python=">="),
            "<=": BinaryOperator(20, python="<="),
            "in": BinaryOperator(20, python="in"),
            "not in": BinaryOperator(20, python="not in"),
            "..": BinaryOperator(25, function=inclusive_range),
            "+": BinaryOperator(30, python="+"),
            "-": BinaryOperator(30, python="-"),
            "~": BinaryOperator(40, function=concat),
            "*": BinaryOperator(60, python="*"),
            "/": BinaryOperator(60, python="/"),
            "//": BinaryOperator(60, python="//"),
            "%": BinaryOperator(60, python="%"),
            "is": BinaryOperator(100, is_test=True),
            "is not": BinaryOperator(100, is_test=True),
            "**": BinaryOperator(200, function=operator.pow, associativity=Associativity.RIGHT),
        }
        return unary, binary
