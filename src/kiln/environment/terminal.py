"""ANSI coloring for diagnostics.

Colors are applied only when stdout is a TTY. ``NO_COLOR`` disables them and
``FORCE_COLOR`` wins over both.
"""

from __future__ import annotations

import os
import re
import sys
from typing import Literal

_CODES = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    "yellow": "\033[33m",
    "cyan": "\033[36m",
    "green": "\033[32m",
    "bright_red": "\033[91m",
    "bright_green": "\033[92m",
}

Style = Literal["bold", "dim", "yellow", "cyan", "green", "bright_red", "bright_green"]

_ANSI_RE = re.compile(r"\x1B\[[0-?]*[ -/]*[@-~]")


def _detect_colors() -> bool:
    if os.environ.get("FORCE_COLOR"):
        return True
    if os.environ.get("NO_COLOR"):
        return False
    stream = sys.stdout
    return stream is not None and stream.isatty()


_ENABLED = _detect_colors()


def supports_color() -> bool:
    """Whether diagnostics are colored in this process."""
    return _ENABLED


def colorize(text: str, *styles: Style) -> str:
    """Wrap ``text`` in the ANSI codes for ``styles`` when colors are on."""
    if not _ENABLED or not styles:
        return text
    prefix = "".join(_CODES[style] for style in styles)
    return f"{prefix}{text}{_CODES['reset']}"


def strip_colors(text: str) -> str:
    return _ANSI_RE.sub("", text)


def location(text: str) -> str:
    return colorize(text, "cyan")


def hint(text: str) -> str:
    return colorize(text, "green")


def suggestion(text: str) -> str:
    return colorize(text, "bright_green", "bold")


def dim_text(text: str) -> str:
    return colorize(text, "dim")


def format_error_header(code: str | None, message: str) -> str:
    """Prefix ``message`` with a highlighted error code, if any."""
    if code:
        return f"{colorize(code, 'bright_red', 'bold')}: {message}"
    return message


def format_source_line(lineno: int, content: str, *, is_error: bool = False) -> str:
    """Render one numbered source line, marking the failing one with ``>``."""
    gutter = colorize(f"{'>' if is_error else ' '}{lineno:>3}", "yellow")
    body = colorize(content, "bright_red") if is_error else dim_text(content)
    return f"{gutter} | {body}"
