"""Tests for the built-in template loaders."""

import os

import pytest

from kiln import (
    ChoiceLoader,
    DictLoader,
    Environment,
    FileSystemLoader,
    FunctionLoader,
    LoaderError,
    TemplateNotFoundError,
)
from kiln.environment import Loader


@pytest.fixture
def template_dir(tmp_path):
    (tmp_path / "pages").mkdir()
    (tmp_path / "index.html").write_text("Index {{ n }}")
    (tmp_path / "pages" / "about.html").write_text("About")
    return tmp_path


class TestFileSystemLoader:
    """Loading from directories."""

    def test_get_source(self, template_dir):
        loader = FileSystemLoader(template_dir)
        source, filename = loader.get_source("pages/about.html")
        assert source == "About"
        assert filename == str(template_dir / "pages" / "about.html")

    def test_first_directory_wins(self, tmp_path, template_dir):
        override = tmp_path / "override"
        override.mkdir()
        (override / "index.html").write_text("Override")
        loader = FileSystemLoader([override, template_dir])
        assert loader.get_source("index.html")[0] == "Override"
        assert loader.get_source("pages/about.html")[0] == "About"

    def test_cache_key_is_resolved_path(self, template_dir):
        loader = FileSystemLoader(template_dir)
        key = loader.get_cache_key("index.html")
        assert key == str((template_dir / "index.html").resolve())

    def test_missing_template(self, template_dir):
        loader = FileSystemLoader(template_dir)
        with pytest.raises(TemplateNotFoundError, match="'nope.html' not found"):
            loader.get_source("nope.html")
        assert not loader.exists("nope.html")

    @pytest.mark.parametrize("name", ["../secret.txt", "pages/../../secret.txt"])
    def test_parent_traversal_rejected(self, template_dir, name):
        loader = FileSystemLoader(template_dir / "pages")
        with pytest.raises(LoaderError, match="outside configured directories"):
            loader.get_source(name)

    def test_absolute_name_rejected(self, template_dir):
        loader = FileSystemLoader(template_dir)
        with pytest.raises(LoaderError):
            loader.get_source(str(template_dir / "index.html"))

    def test_is_fresh_follows_mtime(self, template_dir):
        loader = FileSystemLoader(template_dir)
        path = template_dir / "index.html"
        os.utime(path, (1000, 1000))
        assert loader.is_fresh("index.html", 1000)
        assert loader.is_fresh("index.html", 2000)
        assert not loader.is_fresh("index.html", 999)

    def test_list_templates(self, template_dir):
        assert FileSystemLoader(template_dir).list_templates() == ["index.html", "pages/about.html"]

    def test_satisfies_protocol(self, template_dir):
        assert isinstance(FileSystemLoader(template_dir), Loader)

    def test_renders_through_environment(self, template_dir):
        env = Environment(loader=FileSystemLoader(str(template_dir)))
        assert env.render("index.html", n=3) == "Index 3"


class TestDictLoader:
    """In-memory templates."""

    def test_get_source(self):
        assert DictLoader({"a.html": "A"}).get_source("a.html") == ("A", None)

    def test_cache_key_changes_with_source(self):
        mapping = {"a.html": "one"}
        loader = DictLoader(mapping)
        before = loader.get_cache_key("a.html")
        mapping["a.html"] = "two"
        assert loader.get_cache_key("a.html") != before

    def test_always_fresh(self):
        assert DictLoader({"a.html": "A"}).is_fresh("a.html", 0)

    def test_did_you_mean(self):
        loader = DictLoader({"index.html": "", "about.html": ""})
        with pytest.raises(TemplateNotFoundError, match="Did you mean 'index.html'"):
            loader.get_source("indx.html")

    def test_lists_available_without_close_match(self):
        loader = DictLoader({"index.html": "", "about.html": ""})
        with pytest.raises(TemplateNotFoundError, match="Available: about.html, index.html"):
            loader.get_source("zzz")

    def test_exists(self):
        loader = DictLoader({"a.html": "A"})
        assert loader.exists("a.html")
        assert not loader.exists("b.html")


class TestChoiceLoader:
    """First loader that has the template wins."""

    def test_order(self):
        loader = ChoiceLoader([DictLoader({"a.html": "first"}), DictLoader({"a.html": "second"})])
        assert loader.get_source("a.html")[0] == "first"

    def test_falls_through(self):
        loader = ChoiceLoader([DictLoader({"a.html": "A"}), DictLoader({"b.html": "B"})])
        assert loader.get_source("b.html")[0] == "B"
        assert loader.get_cache_key("b.html") == "b.html:B"

    def test_add_loader(self):
        loader = ChoiceLoader([DictLoader({})])
        assert not loader.exists("late.html")
        loader.add_loader(DictLoader({"late.html": "L"}))
        assert loader.exists("late.html")

    def test_missing_everywhere(self):
        loader = ChoiceLoader([DictLoader({}), DictLoader({})])
        with pytest.raises(TemplateNotFoundError, match="any of 2 loaders"):
            loader.get_source("x.html")

    def test_list_templates_union(self):
        loader = ChoiceLoader([DictLoader({"b": ""}), DictLoader({"a": "", "b": ""})])
        assert loader.list_templates() == ["a", "b"]


class TestFunctionLoader:
    """Callable-backed loading."""

    def test_string_result(self):
        loader = FunctionLoader(lambda name: f"<p>{name}</p>" if name != "none" else None)
        assert loader.get_source("x") == ("<p>x</p>", None)
        assert loader.get_cache_key("x") == "x:<p>x</p>"
        assert loader.is_fresh("x", 0)

    def test_tuple_result(self):
        loader = FunctionLoader(lambda name: ("src", "/virtual/" + name))
        assert loader.get_source("t") == ("src", "/virtual/t")

    def test_none_is_not_found(self):
        loader = FunctionLoader(lambda name: None)
        assert not loader.exists("x")
        with pytest.raises(TemplateNotFoundError):
            loader.get_source("x")
