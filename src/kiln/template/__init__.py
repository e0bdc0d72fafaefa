"""Render units: the base class compiled templates derive from."""

from kiln.template.core import Template
from kiln.template.loop_context import LoopContext

__all__ = ["LoopContext", "Template"]
