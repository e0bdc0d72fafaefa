"""Kiln environment: configuration, loaders, the extension registry and the unit cache."""

from kiln.environment.exceptions import (
    CacheIOError,
    ConfigurationError,
    ErrorCode,
    LoaderError,
    LogicError,
    TemplateError,
    TemplateNotFoundError,
    TemplateRuntimeError,
    TemplateSyntaxError,
    UndefinedError,
)
from kiln.environment.cache import FilesystemCache
from kiln.environment.core import Environment
from kiln.environment.loaders import ChoiceLoader, DictLoader, FileSystemLoader, FunctionLoader, Loader
from kiln.environment.registry import ExtensionRegistry, RegistryState

__all__ = [
    "CacheIOError",
    "ChoiceLoader",
    "ConfigurationError",
    "DictLoader",
    "Environment",
    "ErrorCode",
    "ExtensionRegistry",
    "FileSystemLoader",
    "FilesystemCache",
    "FunctionLoader",
    "Loader",
    "LoaderError",
    "LogicError",
    "RegistryState",
    "TemplateError",
    "TemplateNotFoundError",
    "TemplateRuntimeError",
    "TemplateSyntaxError",
    "UndefinedError",
]
