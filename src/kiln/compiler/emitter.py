"""Python source emitter.

Nodes drive the emitter through a small fluent API; the emitter owns the
output buffer, the indentation level and the map from output lines back to
template lines that runtime error reporting relies on.

Example:
    >>> emitter = CodeEmitter(env)
    >>> source = emitter.compile(module).get_source()
    >>> emitter.get_debug_info()
    {6: 1, 9: 3}
"""

from __future__ import annotations

import hashlib
import math
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from kiln.environment.exceptions import LogicError
from kiln.nodes.structure import Module

if TYPE_CHECKING:
    from kiln.environment.core import Environment
    from kiln.nodes import Node

INDENT = "    "

_STRING_ESCAPES = {
    ord("\\"): "\\\\",
    ord('"'): '\\"',
    ord("\n"): "\\n",
    ord("\r"): "\\r",
    ord("\t"): "\\t",
    ord("\0"): "\\x00",
}
for _code in (*range(0x20), 0x7F):
    _STRING_ESCAPES.setdefault(_code, f"\\x{_code:02x}")
del _code

_SURROGATE_RE = re.compile("[\ud800-\udfff]")


def quote_string(value: str) -> str:
    """Render ``value`` as a double-quoted Python string literal."""
    escaped = value.translate(_STRING_ESCAPES)
    escaped = _SURROGATE_RE.sub(lambda m: f"\\u{ord(m.group()):04x}", escaped)
    return f'"{escaped}"'


def render_literal(value: Any) -> str:
    """Render ``value`` as Python source that evaluates back to it.

    Floats go through ``repr`` so the output never depends on the locale.
    """
    if value is None or value is True or value is False:
        return repr(value)
    if isinstance(value, int):
        return int.__repr__(value)
    if isinstance(value, float):
        if math.isnan(value):
            return 'float("nan")'
        if math.isinf(value):
            return 'float("inf")' if value > 0 else 'float("-inf")'
        return float.__repr__(value)
    if isinstance(value, Mapping):
        items = ", ".join(f"{render_literal(k)}: {render_literal(v)}" for k, v in value.items())
        return f"{{{items}}}"
    if isinstance(value, list):
        return f"[{', '.join(render_literal(item) for item in value)}]"
    if isinstance(value, tuple):
        if len(value) == 1:
            return f"({render_literal(value[0])},)"
        return f"({', '.join(render_literal(item) for item in value)})"
    return quote_string(str(value))


class CodeEmitter:
    """Accumulates Python source for one compile session.

    ``compile()`` resets every piece of session state, so one emitter can be
    reused for any number of templates.
    """

    __slots__ = (
        "_env",
        "_chunks",
        "_indentation",
        "_last_line",
        "_debug_info",
        "_scanned_chunks",
        "_source_line",
        "_filename",
        "_temp_counter",
    )

    def __init__(self, env: Environment):
        self._env = env
        self._reset()

    def _reset(self, indentation: int = 0) -> None:
        self._chunks: list[str] = []
        self._indentation = indentation
        self._last_line: int | None = None
        self._debug_info: dict[int, int] = {}
        self._scanned_chunks = 0
        self._source_line = 1
        self._filename: str | None = None
        self._temp_counter = 0

    def get_environment(self) -> Environment:
        return self._env

    def get_source(self) -> str:
        return "".join(self._chunks)

    def get_filename(self) -> str | None:
        return self._filename

    def get_debug_info(self) -> dict[int, int]:
        """Output line -> template line, keys ascending."""
        return dict(sorted(self._debug_info.items()))

    def compile(self, node: Node, indentation: int = 0) -> CodeEmitter:
        """Start a fresh session and emit ``node``."""
        self._reset(indentation)
        if isinstance(node, Module):
            self._filename = node.name
        node.compile(self)
        return self

    def subcompile(self, node: Node, raw: bool = True) -> CodeEmitter:
        """Emit a child node into the current session, indented unless ``raw``."""
        if not raw:
            self._chunks.append(INDENT * self._indentation)
        node.compile(self)
        return self

    def raw(self, text: str) -> CodeEmitter:
        self._chunks.append(text)
        return self

    def write(self, *fragments: str) -> CodeEmitter:
        """Emit each fragment at the current indentation."""
        prefix = INDENT * self._indentation
        for fragment in fragments:
            self._chunks.append(prefix)
            self._chunks.append(fragment)
        return self

    def string(self, value: str) -> CodeEmitter:
        self._chunks.append(quote_string(value))
        return self

    def literal(self, value: Any) -> CodeEmitter:
        self._chunks.append(render_literal(value))
        return self

    def add_debug_info(self, node: Node) -> CodeEmitter:
        """Record which template line the following output line came from.

        Writes a ``# line N`` marker when ``node`` starts on a line other than
        the last recorded one. Only chunks emitted since the previous marker
        are scanned for newlines.
        """
        if node.lineno == self._last_line:
            return self
        self.write(f"# line {node.lineno}\n")
        pending = self._chunks[self._scanned_chunks:]
        self._source_line += sum(chunk.count("\n") for chunk in pending)
        self._scanned_chunks = len(self._chunks)
        self._debug_info[self._source_line] = node.lineno
        self._last_line = node.lineno
        return self

    def indent(self, step: int = 1) -> CodeEmitter:
        self._indentation += step
        return self

    def outdent(self, step: int = 1) -> CodeEmitter:
        if self._indentation - step < 0:
            raise LogicError("Unable to call outdent() as the indentation would become negative.")
        self._indentation -= step
        return self

    def fresh_temporary_name(self) -> str:
        """Return a local variable name no template expression can collide with.

        Names embed a digest of the filename and a per-session counter, so
        they differ between templates while repeated compiles of one template
        stay byte-identical.
        """
        self._temp_counter += 1
        seed = f"{self._filename}:{self._temp_counter}".encode()
        return f"_kiln_t{self._temp_counter}_{hashlib.sha256(seed).hexdigest()[:8]}"
