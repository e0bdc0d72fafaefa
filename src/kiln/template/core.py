"""Render-unit base class.

Every compiled template is a subclass of ``Template`` generated by the code
emitter, roughly::

    class __KilnTemplate_3f2a...(_KilnBaseTemplate):
        template_name = "page.html"
        block_names = ("content",)

        def get_parent(self, ctx):
            return self.load_parent("base.html")

        def do_display(self, ctx, buf, blocks):
            _append = buf.append
            self.get_parent(ctx).display(ctx, buf, {**self.blocks, **blocks})

        def block_content(self, ctx, buf, blocks):
            _append = buf.append
            # line 3
            _append(self.to_string(ctx.get("title")))

        debug_info = {12: 3}

The environment instantiates each unit class once and shares the instance;
all per-render state lives in ``ctx`` and ``buf``, so ``render()`` is safe
to call concurrently.
"""

from __future__ import annotations

import sys
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from kiln.environment.exceptions import (
    LoaderError,
    TemplateError,
    TemplateRuntimeError,
    UndefinedError,
)
from kiln.template.loop_context import LoopContext
from kiln.utils.html import Markup

if TYPE_CHECKING:
    from kiln.environment.core import Environment
    from kiln.extensions.callables import TemplateCallable

BlockFunc = Any


class Template:
    """Base class of compiled render units."""

    template_name: str | None = None
    block_names: tuple[str, ...] = ()
    debug_info: dict[int, int] = {}
    source_filename: str = "<template>"

    def __init__(self, env: Environment):
        self.env = env
        self.blocks: dict[str, BlockFunc] = {
            name: getattr(self, f"block_{name}") for name in self.block_names
        }
        self._filters: dict[str, TemplateCallable] = {}
        self._functions: dict[str, TemplateCallable] = {}
        self._tests: dict[str, TemplateCallable] = {}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.template_name or '(inline)'}>"

    # -- rendering ------------------------------------------------------------

    def render(self, context: Mapping[str, Any] | None = None, /, **kwargs: Any) -> str:
        """Render with ``context`` overlaid by ``kwargs``.

        Example:
            >>> env.get_template("hello.html").render(name="World")
            'Hello, World!'
        """
        ctx = dict(context or {})
        ctx.update(kwargs)
        buf: list[str] = []
        self.display(ctx, buf)
        return "".join(buf)

    def display(
        self,
        context: Mapping[str, Any],
        buf: list[str],
        blocks: Mapping[str, BlockFunc] | None = None,
    ) -> None:
        """Append this template's output to ``buf``.

        Exceptions that are not ``TemplateError`` are wrapped in
        ``TemplateRuntimeError`` carrying the template line they came from.
        """
        ctx = self.env.merge_globals(context)
        try:
            self.do_display(ctx, buf, dict(blocks or {}))
        except TemplateError:
            raise
        except Exception as exc:
            raise self._runtime_error(exc) from exc

    def do_display(self, ctx: dict[str, Any], buf: list[str], blocks: dict[str, BlockFunc]) -> None:
        raise NotImplementedError

    def get_parent(self, ctx: dict[str, Any]) -> Template | None:
        return None

    def display_block(
        self,
        name: str,
        ctx: dict[str, Any],
        buf: list[str],
        blocks: Mapping[str, BlockFunc],
    ) -> None:
        """Render block ``name``, preferring an override from a child template."""
        block = blocks.get(name) or self.blocks.get(name)
        if block is None:
            raise TemplateRuntimeError(
                f"Block '{name}' is not defined", template_name=self.template_name
            )
        block(ctx, buf, blocks)

    def load_parent(self, template: Any) -> Template:
        if isinstance(template, Template):
            return template
        if isinstance(template, (list, tuple)):
            return self.env.resolve_first_available(template)
        return self.env.resolve_unit(template)

    def load_embedded(self, index: int) -> Template:
        return self.env.resolve_unit(self.template_name, index)

    def include(
        self,
        template: Any,
        ctx: dict[str, Any],
        buf: list[str],
        variables: Mapping[str, Any] | None = None,
        only: bool = False,
        ignore_missing: bool = False,
    ) -> None:
        """Render another template into ``buf``.

        ``template`` is a name, a list of names (first found wins) or a unit.
        The included template sees a copy of the context unless ``only``.
        """
        candidates = list(template) if isinstance(template, (list, tuple)) else [template]
        try:
            unit = self.env.resolve_first_available(candidates)
        except LoaderError:
            if ignore_missing:
                return
            raise
        context = {} if only else dict(ctx)
        if variables:
            context.update(variables)
        unit.display(context, buf)

    # -- variables ----------------------------------------------------------

    def get_context_variable(self, ctx: Mapping[str, Any], name: str) -> Any:
        """Strict variable lookup: a missing name raises ``UndefinedError``."""
        try:
            return ctx[name]
        except KeyError:
            raise UndefinedError(
                name,
                template=self.template_name,
                lineno=self._caller_line(),
                available_names=ctx.keys(),
            ) from None

    def get_attribute(
        self,
        obj: Any,
        attr: str,
        args: Sequence[Any] | None = None,
        strict: bool = False,
    ) -> Any:
        """Resolve ``obj.attr`` (or call ``obj.attr(*args)``).

        Mappings are subscripted first so keys like ``items`` resolve to data
        rather than dict methods; other objects use ``getattr`` first.
        Underscore-prefixed names are never exposed.
        """
        found, value = self._lookup_attribute(obj, attr)
        if not found:
            if strict:
                raise UndefinedError(
                    f"{type(obj).__name__}.{attr}",
                    template=self.template_name,
                    lineno=self._caller_line(),
                )
            return None
        if args is not None:
            return value(*args)
        return value

    @staticmethod
    def _lookup_attribute(obj: Any, attr: str) -> tuple[bool, Any]:
        if obj is None or attr.startswith("_"):
            return False, None
        if isinstance(obj, Mapping):
            if attr in obj:
                return True, obj[attr]
            try:
                return True, getattr(obj, attr)
            except AttributeError:
                return False, None
        try:
            return True, getattr(obj, attr)
        except AttributeError:
            pass
        try:
            return True, obj[attr]
        except (KeyError, IndexError, TypeError):
            return False, None

    def has_attribute(self, obj: Any, attr: str) -> bool:
        return self._lookup_attribute(obj, attr)[0]

    def get_item(self, obj: Any, key: Any, strict: bool = False) -> Any:
        try:
            return obj[key]
        except (KeyError, IndexError, TypeError):
            if strict:
                raise UndefinedError(
                    f"{type(obj).__name__}[{key!r}]",
                    template=self.template_name,
                    lineno=self._caller_line(),
                ) from None
            return None

    def has_item(self, obj: Any, key: Any) -> bool:
        try:
            obj[key]
        except (KeyError, IndexError, TypeError):
            return False
        return True

    @staticmethod
    def to_string(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        return str(value)

    # -- loops --------------------------------------------------------------

    @staticmethod
    def iterate(seq: Any, pairs: bool = False) -> Iterable[Any]:
        """Iterate ``seq``; with ``pairs``, yield ``(key, value)`` (indexes for sequences)."""
        if seq is None:
            return ()
        if pairs:
            if isinstance(seq, Mapping):
                return seq.items()
            return enumerate(seq)
        return seq

    def make_loop(self, seq: Any, pairs: bool = False) -> LoopContext:
        return LoopContext(list(self.iterate(seq, pairs)))

    @staticmethod
    def restore_context(ctx: dict[str, Any], saved: Mapping[str, Any], names: Iterable[str]) -> None:
        """Restore the context after a loop.

        Loop targets are dropped, names the loop introduced are removed and
        names that existed before keep their current value. Shadowed names
        get their saved value back.
        """
        for name in names:
            ctx.pop(name, None)
        for name in [name for name in ctx if name not in saved]:
            del ctx[name]
        for name, value in saved.items():
            ctx.setdefault(name, value)

    # -- vocabulary -----------------------------------------------------------

    def _resolve(self, kind: str, cache: dict[str, TemplateCallable], name: str) -> TemplateCallable:
        descriptor = cache.get(name)
        if descriptor is None:
            descriptor = getattr(self.env, f"get_{kind}")(name)
            if descriptor is None:
                raise TemplateRuntimeError(
                    f"Unknown {kind} '{name}'", template_name=self.template_name
                )
            cache[name] = descriptor
        return descriptor

    def call_filter(self, name: str, ctx: dict[str, Any], value: Any, *args: Any, **kwargs: Any) -> Any:
        filter_ = self._resolve("filter", self._filters, name)
        return filter_.invoke(self.env, ctx, value, *args, **kwargs)

    def call_function(self, name: str, ctx: dict[str, Any], *args: Any, **kwargs: Any) -> Any:
        function = self._resolve("function", self._functions, name)
        return function.invoke(self.env, ctx, *args, **kwargs)

    def call_test(self, name: str, ctx: dict[str, Any], value: Any, *args: Any) -> bool:
        test = self._resolve("test", self._tests, name)
        return bool(test.invoke(self.env, ctx, value, *args))

    def call_unary_operator(self, operator: str, value: Any) -> Any:
        return self.env.get_unary_operators()[operator].function(value)

    def call_binary_operator(self, operator: str, left: Any, right: Any) -> Any:
        return self.env.get_binary_operators()[operator].function(left, right)

    # -- error mapping --------------------------------------------------------

    @classmethod
    def get_template_line(cls, code_line: int) -> int | None:
        """Map a line of the generated source back to the template line."""
        template_line = None
        for emitted, source in cls.debug_info.items():
            if emitted > code_line:
                break
            template_line = source
        return template_line

    def _caller_line(self) -> int | None:
        frame = sys._getframe(2)
        if frame.f_code.co_filename != self.source_filename:
            return None
        return self.get_template_line(frame.f_lineno)

    def _runtime_error(self, exc: Exception) -> TemplateRuntimeError:
        """Wrap ``exc``, locating the innermost generated frame in its traceback."""
        unit: Template = self
        lineno = None
        tb = exc.__traceback__
        while tb is not None:
            frame = tb.tb_frame
            owner = frame.f_locals.get("self")
            if isinstance(owner, Template) and frame.f_code.co_filename == owner.source_filename:
                unit, lineno = owner, owner.get_template_line(tb.tb_lineno)
            tb = tb.tb_next
        detail = str(exc).strip()
        return TemplateRuntimeError(
            f"{type(exc).__name__}: {detail}" if detail else type(exc).__name__,
            template_name=unit.template_name,
            lineno=lineno,
        )
