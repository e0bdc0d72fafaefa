"""Safe strings and escaping strategies.

``Markup`` marks a string as already escaped: escaping it again for HTML is a
no-op. Each strategy takes plain text and returns text safe to embed in that
context.
"""

from __future__ import annotations

import html
import re
from collections.abc import Callable
from typing import Any
from urllib.parse import quote


class Markup(str):
    """A string that is safe to output without HTML escaping."""

    __slots__ = ()

    def __html__(self) -> Markup:
        return self

    def __repr__(self) -> str:
        return f"Markup({str.__repr__(self)})"


_JS_SAFE_RE = re.compile(r"[^a-zA-Z0-9,._]")
_CSS_SAFE_RE = re.compile(r"[^a-zA-Z0-9]")


def escape_html(text: str) -> str:
    return html.escape(text, quote=True)


def _escape_js_char(match: re.Match[str]) -> str:
    char = match.group()
    code = ord(char)
    if code > 0xFFFF:
        # Surrogate pair, as JavaScript strings are UTF-16.
        code -= 0x10000
        return f"\\u{0xD800 + (code >> 10):04X}\\u{0xDC00 + (code & 0x3FF):04X}"
    return f"\\u{code:04X}"


def escape_js(text: str) -> str:
    """Escape for a JavaScript string literal; only ``[a-zA-Z0-9,._]`` pass through."""
    return _JS_SAFE_RE.sub(_escape_js_char, text)


def escape_css(text: str) -> str:
    """Escape for CSS; every non-alphanumeric becomes ``\\HEX `` ."""
    return _CSS_SAFE_RE.sub(lambda m: f"\\{ord(m.group()):X} ", text)


def escape_url(text: str) -> str:
    """Percent-encode a URL component (RFC 3986 unreserved characters pass through)."""
    return quote(text, safe="~")


ESCAPERS: dict[str, Callable[[str], str]] = {
    "html": escape_html,
    "js": escape_js,
    "css": escape_css,
    "url": escape_url,
}


def escape(value: Any, strategy: str = "html") -> Markup:
    """Escape ``value`` for ``strategy``.

    ``None`` renders as an empty string. Objects that provide ``__html__``
    are trusted for the ``html`` strategy.
    """
    if value is None:
        return Markup("")
    if strategy == "html" and hasattr(value, "__html__"):
        return Markup(value.__html__())
    try:
        escaper = ESCAPERS[strategy]
    except KeyError:
        valid = ", ".join(sorted(ESCAPERS))
        raise ValueError(f"Invalid escaping strategy '{strategy}' (valid ones: {valid}).") from None
    return Markup(escaper(str(value)))
