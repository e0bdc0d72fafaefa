"""Kiln parser: token stream -> AST."""

from kiln.parser.core import Parser, end_tags
from kiln.parser.tags import (
    AutoEscapeTokenParser,
    BlockTokenParser,
    EmbedTokenParser,
    ExtendsTokenParser,
    ForTokenParser,
    IfTokenParser,
    IncludeTokenParser,
    SetTokenParser,
    TokenParser,
)

__all__ = [
    "AutoEscapeTokenParser",
    "BlockTokenParser",
    "EmbedTokenParser",
    "ExtendsTokenParser",
    "ForTokenParser",
    "IfTokenParser",
    "IncludeTokenParser",
    "Parser",
    "SetTokenParser",
    "TokenParser",
    "end_tags",
]
