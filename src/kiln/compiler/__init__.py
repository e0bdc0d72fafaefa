"""Code generation: AST -> Python source."""

from kiln.compiler.emitter import CodeEmitter, quote_string, render_literal

__all__ = ["CodeEmitter", "quote_string", "render_literal"]
