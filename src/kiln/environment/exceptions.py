"""Exceptions for the Kiln template compiler.

Exception Hierarchy:
TemplateError (base)
├── LoaderError               # Loader could not provide a template
│   └── TemplateNotFoundError # Unknown name (aggregate form carries .names)
├── TemplateSyntaxError       # Lexing, parsing or compilation failed
├── TemplateRuntimeError      # Render-time failure mapped to a template line
│   └── UndefinedError        # Undefined variable under strict_variables
├── LogicError                # API used in the wrong lifecycle state
├── ConfigurationError        # Malformed extension or option value
└── CacheIOError              # Compiled-unit cache could not be written/read

Every error carries an ``ErrorCode`` so messages stay searchable:

    KLN-PAR-002: Unknown filter 'uper'. Did you mean 'upper'?
      --> page.html:3
"""

from __future__ import annotations

from collections.abc import Iterable
from difflib import get_close_matches
from enum import Enum

from kiln.environment import terminal


class ErrorCode(Enum):
    """Searchable error codes.

    Format: KLN-{CATEGORY}-{NUMBER}
    Categories: LEX (lexer), PAR (parser), CMP (code generation),
    RUN (runtime), TPL (template loading), ENV (environment), CCH (cache)
    """

    UNCLOSED_TAG = "KLN-LEX-001"
    UNCLOSED_COMMENT = "KLN-LEX-002"
    UNEXPECTED_CHARACTER = "KLN-LEX-003"

    UNEXPECTED_TOKEN = "KLN-PAR-001"
    UNKNOWN_FILTER = "KLN-PAR-002"
    UNKNOWN_FUNCTION = "KLN-PAR-003"
    UNKNOWN_TEST = "KLN-PAR-004"
    UNKNOWN_TAG = "KLN-PAR-005"
    UNCLOSED_BLOCK = "KLN-PAR-006"

    COMPILATION_FAILED = "KLN-CMP-001"

    RUNTIME_ERROR = "KLN-RUN-001"
    UNDEFINED_VARIABLE = "KLN-RUN-002"

    TEMPLATE_NOT_FOUND = "KLN-TPL-001"
    LOADER_ERROR = "KLN-TPL-002"

    LOGIC_ERROR = "KLN-ENV-001"
    CONFIGURATION_ERROR = "KLN-ENV-002"

    CACHE_IO = "KLN-CCH-001"

    @property
    def category(self) -> str:
        prefix = self.value.split("-")[1]
        return {
            "LEX": "lexer",
            "PAR": "parser",
            "CMP": "compiler",
            "RUN": "runtime",
            "TPL": "template",
            "ENV": "environment",
            "CCH": "cache",
        }.get(prefix, "unknown")


def did_you_mean(name: str, candidates: Iterable[str]) -> str:
    """Return a ``" Did you mean 'x'?"`` suffix, or ``""`` without a close match."""
    matches = get_close_matches(name, list(candidates), n=1, cutoff=0.6)
    if not matches:
        return ""
    return f" Did you mean '{terminal.suggestion(matches[0])}'?"


def _location(name: str | None, lineno: int | None) -> str:
    location = name or "<template>"
    if lineno is not None and lineno > 0:
        location += f":{lineno}"
    return location


class TemplateError(Exception):
    """Base exception for all Kiln errors.

    Attributes:
        code: ErrorCode for searchable error identification.
    """

    code: ErrorCode | None = None

    def set_template_name(self, name: str | None) -> None:
        """Attach the name of the template being processed, if it has none yet."""

    def format_compact(self) -> str:
        """Format the error as a short terminal diagnostic without traceback noise."""
        header = str(self)
        if self.code and self.code.value not in header:
            return terminal.format_error_header(self.code.value, header)
        return header


class LoaderError(TemplateError):
    """A loader failed to provide template source."""

    code: ErrorCode | None = ErrorCode.LOADER_ERROR


class TemplateNotFoundError(LoaderError):
    """No loader knows the requested template.

    When several candidates were tried, ``names`` lists all of them.

    Example:
        >>> env.resolve_first_available(["a.html", "b.html"])
        TemplateNotFoundError: Unable to find one of the following templates: 'a.html', 'b.html'
    """

    code: ErrorCode | None = ErrorCode.TEMPLATE_NOT_FOUND

    def __init__(self, message: str, *, names: Iterable[str] = ()):
        self.names = tuple(names)
        super().__init__(message)


class TemplateSyntaxError(TemplateError):
    """Template source could not be tokenized, parsed or compiled.

    ``lineno`` of ``-1`` means the line is unknown. When ``source`` is given,
    the message includes the offending line.
    """

    code: ErrorCode | None = ErrorCode.UNEXPECTED_TOKEN

    def __init__(
        self,
        message: str,
        lineno: int | None = None,
        name: str | None = None,
        filename: str | None = None,
        source: str | None = None,
        code: ErrorCode | None = None,
    ):
        self.message = message
        self.lineno = lineno
        self.name = name
        self.filename = filename
        self.source = source
        if code is not None:
            self.code = code
        super().__init__(self._format_message())

    def set_template_name(self, name: str | None) -> None:
        if self.name is None and name is not None:
            self.name = name
            self.args = (self._format_message(),)

    def _snippet(self) -> str | None:
        if not self.source or not self.lineno or self.lineno < 1:
            return None
        lines = self.source.splitlines()
        if self.lineno > len(lines):
            return None
        return terminal.format_source_line(self.lineno, lines[self.lineno - 1], is_error=True)

    def _format_message(self) -> str:
        location = _location(self.filename or self.name, self.lineno)
        header = f"{self.message}\n  --> {terminal.location(location)}"
        snippet = self._snippet()
        if snippet:
            return f"{header}\n     |\n{snippet}"
        return header

    def format_compact(self) -> str:
        parts = [
            terminal.format_error_header(self.code.value if self.code else None, self.message),
            f"  --> {terminal.location(_location(self.filename or self.name, self.lineno))}",
        ]
        snippet = self._snippet()
        if snippet:
            parts.extend(["     |", snippet, "     |"])
        return "\n".join(parts)


class TemplateRuntimeError(TemplateError):
    """Render-time failure.

    Output Format:
        ```
        Runtime Error: division by zero
          Location: invoice.html:12
          Suggestion: check the divisor before dividing
        ```
    """

    code: ErrorCode | None = ErrorCode.RUNTIME_ERROR

    def __init__(
        self,
        message: str,
        *,
        template_name: str | None = None,
        lineno: int | None = None,
        suggestion: str | None = None,
    ):
        self.message = message
        self.template_name = template_name
        self.lineno = lineno
        self.suggestion = suggestion
        super().__init__(self._format_message())

    def set_template_name(self, name: str | None) -> None:
        if self.template_name is None and name is not None:
            self.template_name = name
            self.args = (self._format_message(),)

    def _format_message(self) -> str:
        parts = [f"Runtime Error: {self.message}"]
        if self.template_name or self.lineno:
            loc = _location(self.template_name, self.lineno)
            parts.append(f"  Location: {terminal.location(loc)}")
        if self.suggestion:
            parts.append(f"  {terminal.hint('Suggestion:')} {self.suggestion}")
        return "\n".join(parts)

    def format_compact(self) -> str:
        parts = [
            terminal.format_error_header(self.code.value if self.code else None, self.message),
            f"  Location: {terminal.location(_location(self.template_name, self.lineno))}",
        ]
        if self.suggestion:
            parts.append(f"  {terminal.hint('Hint:')} {self.suggestion}")
        return "\n".join(parts)


class UndefinedError(TemplateRuntimeError):
    """A template read a variable or attribute that does not exist.

    Only raised with ``strict_variables`` enabled; otherwise the lookup
    yields ``None``. ``available_names`` feeds a "Did you mean?" hint.
    """

    code: ErrorCode | None = ErrorCode.UNDEFINED_VARIABLE

    def __init__(
        self,
        name: str,
        template: str | None = None,
        lineno: int | None = None,
        available_names: Iterable[str] | None = None,
    ):
        self.name = name
        message = f"Undefined variable '{name}'"
        if available_names:
            message += "." + did_you_mean(name, available_names)
        super().__init__(
            message,
            template_name=template,
            lineno=lineno,
            suggestion=f"Use {{{{ {name}|default('') }}}} for optional variables",
        )


class LogicError(TemplateError, RuntimeError):
    """An operation was attempted in a state that forbids it.

    Typical causes: registering extensions after the registry was frozen,
    using the environment without a loader, unbalanced indentation in the
    code emitter.
    """

    code: ErrorCode | None = ErrorCode.LOGIC_ERROR


class ConfigurationError(TemplateError, ValueError):
    """An extension or option returned a value of the wrong shape."""

    code: ErrorCode | None = ErrorCode.CONFIGURATION_ERROR


class CacheIOError(TemplateError, OSError):
    """The compiled-unit cache could not be written or read."""

    code: ErrorCode | None = ErrorCode.CACHE_IO
