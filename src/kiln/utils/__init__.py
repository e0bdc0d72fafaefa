"""Utilities shared by the runtime and the default extensions."""
