"""Extension contract and the default extensions."""

from kiln.extensions.base import Extension, StagingExtension
from kiln.extensions.callables import (
    Associativity,
    BinaryOperator,
    TemplateCallable,
    TemplateFilter,
    TemplateFunction,
    TemplateTest,
    UnaryOperator,
)
from kiln.extensions.core import CoreExtension
from kiln.extensions.escaper import EscaperExtension
from kiln.extensions.optimizer import (
    OPTIMIZE_ALL,
    OPTIMIZE_FOR,
    OPTIMIZE_NONE,
    OPTIMIZE_RAW_FILTER,
    OPTIMIZE_TEXT,
    OptimizerExtension,
)

__all__ = [
    "OPTIMIZE_ALL",
    "OPTIMIZE_FOR",
    "OPTIMIZE_NONE",
    "OPTIMIZE_RAW_FILTER",
    "OPTIMIZE_TEXT",
    "Associativity",
    "BinaryOperator",
    "CoreExtension",
    "EscaperExtension",
    "Extension",
    "OptimizerExtension",
    "StagingExtension",
    "TemplateCallable",
    "TemplateFilter",
    "TemplateFunction",
    "TemplateTest",
    "UnaryOperator",
]
