"""Kiln: a template compiler that emits cached Python render classes.

Templates are tokenized, parsed into an immutable AST, rewritten by node
visitors and emitted as the source of a Python class. The source is cached
on disk under a content-addressed name and executed once per environment.

Quickstart:
    >>> from kiln import Environment, DictLoader
    >>> env = Environment(loader=DictLoader({"hello.html": "Hello, {{ name }}!"}))
    >>> env.render("hello.html", name="World")
    'Hello, World!'

Persistent cache:
    >>> env = Environment(loader=FileSystemLoader("templates/"), cache="/tmp/kiln")
    >>> env.get_template("index.html").render(page=page)

Extensions:
    >>> class MoneyExtension(Extension):
    ...     name = "money"
    ...     def get_filters(self):
    ...         return [TemplateFilter("money", lambda v: f"${v:,.2f}")]
    >>> env.add_extension(MoneyExtension())

Pipeline:
    Template Source → Lexer → Parser → AST → Visitors → CodeEmitter → exec()
"""

# The environment package loads first, _types depends on its exceptions.
from kiln.environment import (
    CacheIOError,
    ChoiceLoader,
    ConfigurationError,
    DictLoader,
    Environment,
    ErrorCode,
    FileSystemLoader,
    FunctionLoader,
    LoaderError,
    LogicError,
    TemplateError,
    TemplateNotFoundError,
    TemplateRuntimeError,
    TemplateSyntaxError,
    UndefinedError,
)
from kiln._types import Token, TokenStream, TokenType  # noqa: I001
from kiln.extensions import (
    Extension,
    TemplateFilter,
    TemplateFunction,
    TemplateTest,
)
from kiln.template import LoopContext, Template
from kiln.utils.html import Markup, escape

__version__ = "0.1.0"

__all__ = [
    "CacheIOError",
    "ChoiceLoader",
    "ConfigurationError",
    "DictLoader",
    "Environment",
    "ErrorCode",
    "Extension",
    "FileSystemLoader",
    "FunctionLoader",
    "LoaderError",
    "LogicError",
    "LoopContext",
    "Markup",
    "Template",
    "TemplateError",
    "TemplateFilter",
    "TemplateFunction",
    "TemplateNotFoundError",
    "TemplateRuntimeError",
    "TemplateSyntaxError",
    "TemplateTest",
    "Token",
    "TokenStream",
    "TokenType",
    "UndefinedError",
    "__version__",
    "escape",
]
