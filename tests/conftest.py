"""Pytest configuration and fixtures for Kiln tests."""

import pytest

from kiln import DictLoader, Environment
from kiln.environment import terminal


@pytest.fixture(autouse=True)
def plain_terminal(monkeypatch):
    """Keep error messages free of ANSI codes regardless of the test runner's TTY."""
    monkeypatch.setattr(terminal, "_ENABLED", False)


@pytest.fixture
def templates():
    """Mutable template mapping shared by the loader of ``env``."""
    return {
        "base.html": (
            "<title>{% block title %}Default{% endblock %}</title>"
            "<main>{% block body %}{% endblock %}</main>"
        ),
        "child.html": (
            '{% extends "base.html" %}'
            "{% block title %}Child{% endblock %}"
            "{% block body %}Hello {{ name }}{% endblock %}"
        ),
        "partial.html": "<p>{{ text }}</p>",
        "card.html": "<div>{% block header %}H{% endblock %}|{% block content %}{% endblock %}</div>",
    }


@pytest.fixture
def env(templates):
    """Environment over an in-memory loader."""
    return Environment(loader=DictLoader(templates))


@pytest.fixture
def make_env(templates):
    """Factory for environments over the shared templates with custom options."""

    def factory(**options):
        return Environment(loader=DictLoader(templates), **options)

    return factory


@pytest.fixture
def render(env):
    """Render a template string with the default environment."""

    def _render(source, **context):
        return env.from_string(source).render(context)

    return _render
