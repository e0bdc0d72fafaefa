"""The Kiln environment: configuration, vocabulary and compiled-unit cache.

The environment wires the pipeline together::

    source -> Lexer -> TokenStream -> Parser -> Module -> visitors
           -> CodeEmitter -> Python source -> exec -> render unit

Every template resolves to a content-addressed unit name derived from its
loader cache key. Units are loaded at most once per environment; with a cache
directory configured, the generated source is also persisted and reused
across processes.

Example:
    >>> from kiln import DictLoader, Environment
    >>> env = Environment(loader=DictLoader({"hello.html": "Hello {{ name }}!"}))
    >>> env.render("hello.html", name="World")
    'Hello World!'
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
import types
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

from kiln.compiler.emitter import CodeEmitter
from kiln.environment.cache import FilesystemCache, execute_source
from kiln.environment.exceptions import (
    LoaderError,
    LogicError,
    TemplateError,
    TemplateNotFoundError,
    TemplateSyntaxError,
)
from kiln.environment.loaders import DictLoader, Loader
from kiln.environment.registry import ExtensionRegistry, UndefinedCallback
from kiln.extensions.core import CoreExtension
from kiln.extensions.escaper import EscaperExtension
from kiln.extensions.optimizer import OPTIMIZE_ALL, OptimizerExtension
from kiln.lexer import Lexer
from kiln.parser.core import Parser
from kiln.template.core import Template

if TYPE_CHECKING:
    from kiln._types import TokenStream
    from kiln.extensions.base import Extension
    from kiln.extensions.callables import (
        BinaryOperator,
        TemplateFilter,
        TemplateFunction,
        TemplateTest,
        UnaryOperator,
    )
    from kiln.nodes import Module, Node, NodeVisitor
    from kiln.parser.tags import TokenParser

logger = logging.getLogger(__name__)

STRING_TEMPLATE_PREFIX = "__string_template__"


class Environment:
    """Central configuration and unit cache for templates.

    Args:
        loader: Source of templates (``get_source``/``get_cache_key``/``is_fresh``)
        debug: Enables auto-reload unless ``auto_reload`` is given
        charset: Output charset, stored uppercased
        base_template_class: Dotted path of the class generated units derive from
        strict_variables: Undefined variables and attributes raise ``UndefinedError``
        autoescape: Default escaping strategy (see ``EscaperExtension``)
        cache: Directory for generated modules, or ``False`` to compile in memory
        auto_reload: Recompile cached units whose source changed
        optimizations: Bit mask of ``OPTIMIZE_*`` flags, ``-1`` for all
        extensions: Extra extensions registered after the default ones

    Thread-Safety:
        Configure the environment (extensions, filters, globals) before
        sharing it. Lookups freeze the registry; resolving units is guarded
        by a lock so each unit is loaded once.
    """

    UNIT_PREFIX = "__KilnTemplate_"

    def __init__(
        self,
        loader: Loader | None = None,
        *,
        debug: bool = False,
        charset: str = "UTF-8",
        base_template_class: str = "kiln.template.Template",
        strict_variables: bool = False,
        autoescape: Any = "html",
        cache: str | os.PathLike[str] | bool = False,
        auto_reload: bool | None = None,
        optimizations: int = OPTIMIZE_ALL,
        extensions: Iterable[Extension] = (),
    ):
        self._loader = loader
        self.debug = debug
        self.charset = charset.upper()
        self.base_template_class = base_template_class
        self.strict_variables = strict_variables
        self.autoescape = autoescape
        self.auto_reload = debug if auto_reload is None else auto_reload
        self.optimizations = optimizations

        self._cache: FilesystemCache | None = None
        self.set_cache(cache)

        self._lexer: Lexer | None = None
        self._parser: Parser | None = None
        self._compiler: CodeEmitter | None = None

        self._registry = ExtensionRegistry()
        self._runtime_initialized = False
        self._lock = threading.RLock()
        self._units: dict[str, Template] = {}
        self._unit_types: dict[str, type[Template]] = {}
        self._string_templates: dict[str, str] = {}
        self._string_loader = DictLoader(self._string_templates)

        self.add_extension(CoreExtension())
        self.add_extension(EscaperExtension(autoescape))
        self.add_extension(OptimizerExtension(optimizations))
        for extension in extensions:
            self.add_extension(extension)

    def __repr__(self) -> str:
        return f"<Environment loader={self._loader!r} cache={self._cache!r}>"

    # =========================================================================
    # Configuration
    # =========================================================================

    def enable_debug(self) -> None:
        self.debug = True

    def disable_debug(self) -> None:
        self.debug = False

    def enable_auto_reload(self) -> None:
        self.auto_reload = True

    def disable_auto_reload(self) -> None:
        self.auto_reload = False

    def enable_strict_variables(self) -> None:
        self.strict_variables = True

    def disable_strict_variables(self) -> None:
        self.strict_variables = False

    def set_cache(self, cache: str | os.PathLike[str] | bool) -> None:
        """Set the cache directory, or ``False`` to compile in memory only."""
        if cache is False or cache is None:
            self._cache = None
        elif cache is True:
            raise ValueError("cache must be a directory path or False.")
        else:
            self._cache = FilesystemCache(cache)

    def get_cache(self) -> str | bool:
        return False if self._cache is None else str(self._cache.directory)

    def set_loader(self, loader: Loader) -> None:
        self._loader = loader

    def get_loader(self) -> Loader:
        if self._loader is None:
            raise LogicError("You must set a loader first.")
        return self._loader

    def _loader_for(self, name: str) -> Loader:
        if name in self._string_templates:
            return self._string_loader
        return self.get_loader()

    def set_lexer(self, lexer: Lexer) -> None:
        self._lexer = lexer

    def set_parser(self, parser: Parser) -> None:
        self._parser = parser

    def set_compiler(self, compiler: CodeEmitter) -> None:
        self._compiler = compiler

    # =========================================================================
    # Units
    # =========================================================================

    def get_unit_name(self, name: str | None, index: int | None = None) -> str:
        """Content-addressed class name for template ``name``.

        Depends only on the loader cache key and ``index``, never on the
        process, so the same template always gets the same name.
        """
        if name is None:
            raise LogicError("Unable to name a unit for a template without a name.")
        key = self._loader_for(name).get_cache_key(name)
        unit_name = self.UNIT_PREFIX + hashlib.sha256(key.encode("utf-8")).hexdigest()
        if index is not None:
            unit_name += f"_{index}"
        return unit_name

    def get_cache_filename(self, name: str) -> str | None:
        """Path of the cached module for ``name``, or ``None`` without a cache."""
        if self._cache is None:
            return None
        return str(self._cache_path(self.get_unit_name(name)))

    def _cache_path(self, main_name: str) -> Path:
        # The file lives under the digest the unit class is named after.
        return self._cache.generate_path(main_name.removeprefix(self.UNIT_PREFIX))

    def is_fresh(self, name: str, since: float) -> bool:
        """True when no extension and not the template changed after ``since``."""
        for extension in self._registry.get_extensions().values():
            if extension.get_last_modified() > since:
                return False
        return self._loader_for(name).is_fresh(name, since)

    def resolve_unit(self, name: str, index: int | None = None) -> Template:
        """Return the render unit for ``name`` (or its embedded ``index``).

        Raises:
            TemplateNotFoundError: The loader does not know ``name``
            TemplateSyntaxError: The template failed to compile
        """
        main_name = self.get_unit_name(name)
        unit_name = main_name if index is None else f"{main_name}_{index}"

        with self._lock:
            unit = self._units.get(unit_name)
            if unit is not None:
                return unit

            unit_type = self._unit_types.get(unit_name)
            if unit_type is None:
                self._load_unit_types(name, main_name)
                unit_type = self._unit_types.get(unit_name)
                if unit_type is None:
                    raise LogicError(
                        f'Failed to load template "{name}"'
                        + ("" if index is None else f" (embedded index {index})")
                        + f': class "{unit_name}" is missing from the compiled module.'
                    )

            if not self._runtime_initialized:
                self.init_runtime()

            unit = unit_type(self)
            self._units[unit_name] = unit
            return unit

    def _load_unit_types(self, name: str, main_name: str) -> None:
        loader = self._loader_for(name)
        if self._cache is None or name in self._string_templates:
            source, _ = loader.get_source(name)
            filename = f"<kiln:{name}>"
            logger.debug("Compiling %s in memory", name)
            module = execute_source(self.compile_source(source, name), filename, main_name)
        else:
            path = self._cache_path(main_name)
            timestamp = self._cache.get_timestamp(path)
            if not timestamp or (self.auto_reload and not self.is_fresh(name, timestamp)):
                source, _ = loader.get_source(name)
                logger.debug("Compiling %s into %s", name, path)
                self._cache.write(path, self.compile_source(source, name))
            else:
                logger.debug("Cache hit for %s at %s", name, path)
            filename = str(path)
            module = self._cache.load(path, main_name)
        self._register_unit_types(module, main_name, filename)

    def _register_unit_types(self, module: types.ModuleType, main_name: str, filename: str) -> None:
        for attr, value in vars(module).items():
            if not isinstance(value, type) or not issubclass(value, Template):
                continue
            if attr == main_name or attr.startswith(main_name + "_"):
                value.source_filename = filename
                self._unit_types[attr] = value

    def resolve_first_available(self, names: Sequence[str | Template] | str | Template) -> Template:
        """Return the first template of ``names`` that exists.

        A single candidate re-raises its own error. Several missing
        candidates raise one ``TemplateNotFoundError`` naming all of them.
        """
        if isinstance(names, (str, Template)):
            names = [names]
        if not names:
            raise TemplateNotFoundError("No template names were provided.")

        error: LoaderError | None = None
        for name in names:
            if isinstance(name, Template):
                return name
            try:
                return self.resolve_unit(name)
            except LoaderError as e:
                error = e

        if len(names) == 1 and error is not None:
            raise error
        listed = ", ".join(repr(name) for name in names)
        raise TemplateNotFoundError(
            f"Unable to find one of the following templates: {listed}.",
            names=[str(name) for name in names],
        ) from error

    def clear_compiled_units_cache(self) -> None:
        """Forget loaded units; the next resolve loads them again."""
        with self._lock:
            self._units.clear()
            self._unit_types.clear()
            self._string_templates.clear()

    def clear_persisted_cache(self) -> None:
        """Delete the generated modules on disk. A no-op without a cache."""
        if self._cache is not None:
            self._cache.clear()

    # =========================================================================
    # Compilation
    # =========================================================================

    def get_lexer(self) -> Lexer:
        if self._lexer is None:
            self._lexer = Lexer(self)
        return self._lexer

    def get_parser(self) -> Parser:
        if self._parser is None:
            self._parser = Parser(self)
        return self._parser

    def get_compiler(self) -> CodeEmitter:
        if self._compiler is None:
            self._compiler = CodeEmitter(self)
        return self._compiler

    def tokenize(self, source: str, name: str | None = None) -> TokenStream:
        return self.get_lexer().tokenize(source, name)

    def parse(self, stream: TokenStream) -> Module:
        return self.get_parser().parse(stream)

    def compile(self, node: Node) -> str:
        return self.get_compiler().compile(node).get_source()

    def compile_source(self, source: str, name: str | None = None) -> str:
        """Compile template ``source`` into Python source.

        Template errors get the template name attached. Anything else is
        wrapped in ``TemplateSyntaxError``.
        """
        transient = None
        if name is None:
            name = self._string_template_name(source)
            if name not in self._string_templates:
                # Registered only while compiling so the unit can be named.
                transient = name
                self._string_templates[name] = source
        try:
            return self.compile(self.parse(self.tokenize(source, name)))
        except TemplateError as e:
            e.set_template_name(name)
            raise
        except Exception as e:
            raise TemplateSyntaxError(
                f'An exception has been thrown during the compilation of a template ("{e}").',
                lineno=-1,
                name=name,
                source=source,
            ) from e
        finally:
            if transient is not None:
                self._string_templates.pop(transient, None)

    def _string_template_name(self, source: str) -> str:
        return STRING_TEMPLATE_PREFIX + hashlib.sha256(source.encode("utf-8")).hexdigest()

    def from_string(self, source: str) -> Template:
        """Compile ``source`` in memory and return its render unit. Never cached on disk.

        The source is kept until ``clear_compiled_units_cache()``.
        """
        name = self._string_template_name(source)
        with self._lock:
            self._string_templates[name] = source
        return self.resolve_unit(name)

    def get_template(self, name: str) -> Template:
        return self.resolve_unit(name)

    def select_template(self, names: Sequence[str | Template]) -> Template:
        return self.resolve_first_available(names)

    def render(
        self, name: str, context: Mapping[str, Any] | None = None, /, **kwargs: Any
    ) -> str:
        return self.resolve_unit(name).render(context, **kwargs)

    # =========================================================================
    # Extensions and vocabulary
    # =========================================================================

    @property
    def registry(self) -> ExtensionRegistry:
        return self._registry

    def add_extension(self, extension: Extension) -> None:
        self._registry.add_extension(extension)

    def remove_extension(self, name: str) -> None:
        self._registry.remove_extension(name)

    def has_extension(self, name: str) -> bool:
        return self._registry.has_extension(name)

    def get_extension(self, name: str) -> Extension:
        return self._registry.get_extension(name)

    def get_extensions(self) -> dict[str, Extension]:
        return self._registry.get_extensions()

    def add_filter(self, filter_: TemplateFilter) -> None:
        self._registry.add_filter(filter_)

    def add_function(self, function: TemplateFunction) -> None:
        self._registry.add_function(function)

    def add_test(self, test: TemplateTest) -> None:
        self._registry.add_test(test)

    def add_token_parser(self, parser: TokenParser) -> None:
        self._registry.add_token_parser(parser)

    def add_node_visitor(self, visitor: NodeVisitor) -> None:
        self._registry.add_node_visitor(visitor)

    def add_global(self, name: str, value: Any) -> None:
        self._registry.add_global(name, value)

    def register_undefined_filter_callback(self, callback: UndefinedCallback) -> None:
        self._registry.register_undefined_filter_callback(callback)

    def register_undefined_function_callback(self, callback: UndefinedCallback) -> None:
        self._registry.register_undefined_function_callback(callback)

    def get_filter(self, name: str) -> TemplateFilter | None:
        return self._registry.get_filter(name)

    def get_function(self, name: str) -> TemplateFunction | None:
        return self._registry.get_function(name)

    def get_test(self, name: str) -> TemplateTest | None:
        return self._registry.get_test(name)

    def get_filters(self) -> dict[str, TemplateFilter]:
        return self._registry.get_filters()

    def get_functions(self) -> dict[str, TemplateFunction]:
        return self._registry.get_functions()

    def get_tests(self) -> dict[str, TemplateTest]:
        return self._registry.get_tests()

    def get_token_parsers(self) -> dict[str, TokenParser]:
        return self._registry.get_token_parsers()

    def get_node_visitors(self) -> list[NodeVisitor]:
        return self._registry.get_node_visitors()

    def get_unary_operators(self) -> dict[str, UnaryOperator]:
        return self._registry.get_unary_operators()

    def get_binary_operators(self) -> dict[str, BinaryOperator]:
        return self._registry.get_binary_operators()

    def get_globals(self) -> dict[str, Any]:
        return self._registry.get_globals()

    # =========================================================================
    # Runtime
    # =========================================================================

    def init_runtime(self) -> None:
        """Freeze the registry and run every extension's ``init_runtime`` once."""
        with self._lock:
            if self._runtime_initialized:
                return
            self._registry.freeze()
            self._runtime_initialized = True
            for extension in self._registry.get_extensions().values():
                extension.init_runtime(self)

    def merge_globals(self, context: Mapping[str, Any]) -> dict[str, Any]:
        """Globals overlaid by ``context``; context values win."""
        return {**self.get_globals(), **context}

