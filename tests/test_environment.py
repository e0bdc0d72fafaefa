"""Tests for the Environment: unit naming, resolution and compilation."""

import hashlib
import os
import time

import pytest

from kiln import (
    DictLoader,
    Environment,
    Extension,
    FileSystemLoader,
    LogicError,
    Template,
    TemplateFilter,
    TemplateNotFoundError,
    TemplateSyntaxError,
)
from kiln.environment.core import STRING_TEMPLATE_PREFIX
from kiln.extensions import CoreExtension


class TestConfiguration:
    """Constructor options and toggles."""

    def test_defaults(self):
        env = Environment()
        assert env.charset == "UTF-8"
        assert env.get_cache() is False
        assert not env.debug
        assert not env.auto_reload
        assert not env.strict_variables

    def test_charset_uppercased(self):
        assert Environment(charset="utf-8").charset == "UTF-8"

    def test_debug_implies_auto_reload(self):
        assert Environment(debug=True).auto_reload
        assert not Environment(debug=True, auto_reload=False).auto_reload

    def test_toggles(self):
        env = Environment()
        env.enable_debug()
        env.enable_auto_reload()
        env.enable_strict_variables()
        assert env.debug and env.auto_reload and env.strict_variables
        env.disable_debug()
        env.disable_auto_reload()
        env.disable_strict_variables()
        assert not (env.debug or env.auto_reload or env.strict_variables)

    def test_cache_true_rejected(self):
        with pytest.raises(ValueError):
            Environment(cache=True)

    def test_set_cache(self, tmp_path):
        env = Environment()
        env.set_cache(tmp_path)
        assert env.get_cache() == str(tmp_path)
        env.set_cache(False)
        assert env.get_cache() is False

    def test_missing_loader(self):
        with pytest.raises(LogicError, match="You must set a loader first."):
            Environment().get_loader()

    def test_set_loader(self, env):
        loader = DictLoader({"x.html": "X"})
        env.set_loader(loader)
        assert env.get_loader() is loader
        assert env.render("x.html") == "X"

    def test_default_extensions(self, env):
        assert set(env.get_extensions()) == {"core", "escaper", "optimizer"}

    def test_extensions_argument(self, templates):
        class Money(Extension):
            name = "money"

            def get_filters(self):
                return [TemplateFilter("money", lambda value: f"${value:,.2f}")]

        env = Environment(loader=DictLoader(templates), extensions=[Money()])
        assert env.has_extension("money")
        assert env.from_string("{{ 1234.5|money }}").render() == "$1,234.50"


class TestUnitNames:
    """Content-addressed class names."""

    def test_derived_from_cache_key(self, env):
        key = env.get_loader().get_cache_key("partial.html")
        expected = "__KilnTemplate_" + hashlib.sha256(key.encode("utf-8")).hexdigest()
        assert env.get_unit_name("partial.html") == expected

    def test_embedded_index_suffix(self, env):
        assert env.get_unit_name("partial.html", 3) == env.get_unit_name("partial.html") + "_3"

    def test_pure_across_environments(self, templates):
        first = Environment(loader=DictLoader(templates))
        second = Environment(loader=DictLoader(dict(templates)))
        assert first.get_unit_name("child.html") == second.get_unit_name("child.html")

    def test_changes_with_source(self, env, templates):
        before = env.get_unit_name("partial.html")
        templates["partial.html"] = "<p>changed</p>"
        assert env.get_unit_name("partial.html") != before

    def test_none_name(self, env):
        with pytest.raises(LogicError):
            env.get_unit_name(None)

    def test_unknown_name(self, env):
        with pytest.raises(TemplateNotFoundError):
            env.get_unit_name("missing.html")

    def test_cache_filename_without_cache(self, env):
        assert env.get_cache_filename("partial.html") is None


class TestResolveUnit:
    """Loading and reusing render units."""

    def test_same_instance(self, env):
        assert env.resolve_unit("partial.html") is env.resolve_unit("partial.html")
        assert env.get_template("partial.html") is env.resolve_unit("partial.html")

    def test_unit_class(self, env):
        unit = env.resolve_unit("child.html")
        assert isinstance(unit, Template)
        assert type(unit).__name__ == env.get_unit_name("child.html")
        assert unit.template_name == "child.html"
        assert unit.block_names == ("title", "body")
        assert type(unit).source_filename == "<kiln:child.html>"

    def test_embedded_units(self, env, templates):
        templates["page.html"] = '{% embed "card.html" %}{% block content %}X{% endblock %}{% endembed %}'
        embedded = env.resolve_unit("page.html", 0)
        assert type(embedded).__name__ == env.get_unit_name("page.html") + "_0"
        assert embedded.template_name == "page.html"

    def test_missing_embedded_index(self, env):
        with pytest.raises(LogicError, match="embedded index 5"):
            env.resolve_unit("partial.html", 5)

    def test_edited_template_gets_new_unit(self, env, templates):
        first = env.resolve_unit("partial.html")
        templates["partial.html"] = "<b>{{ text }}</b>"
        second = env.resolve_unit("partial.html")
        assert first is not second
        assert second.render(text="x") == "<b>x</b>"

    def test_clear_compiled_units_cache(self, env):
        first = env.resolve_unit("partial.html")
        env.clear_compiled_units_cache()
        assert env.resolve_unit("partial.html") is not first


class TestResolveFirstAvailable:
    """Candidate lists and aggregate errors."""

    def test_first_existing(self, env):
        unit = env.resolve_first_available(["missing.html", "partial.html", "base.html"])
        assert unit.template_name == "partial.html"

    def test_unit_passes_through(self, env):
        unit = env.resolve_unit("partial.html")
        assert env.resolve_first_available(["missing.html", unit]) is unit
        assert env.resolve_first_available(unit) is unit

    def test_single_name_reraises_own_error(self, env):
        with pytest.raises(TemplateNotFoundError, match="Did you mean 'partial.html'") as info:
            env.resolve_first_available("partia.html")
        assert info.value.names == ()

    def test_several_missing_aggregate(self, env):
        with pytest.raises(TemplateNotFoundError) as info:
            env.resolve_first_available(["a.html", "b.html"])
        assert str(info.value) == (
            "Unable to find one of the following templates: 'a.html', 'b.html'."
        )
        assert info.value.names == ("a.html", "b.html")
        assert isinstance(info.value.__cause__, TemplateNotFoundError)

    def test_empty_list(self, env):
        with pytest.raises(TemplateNotFoundError):
            env.resolve_first_available([])

    def test_select_template(self, env):
        assert env.select_template(["nope.html", "base.html"]).template_name == "base.html"

    def test_syntax_errors_are_not_swallowed(self, env, templates):
        templates["broken.html"] = "{% if %}"
        with pytest.raises(TemplateSyntaxError):
            env.resolve_first_available(["broken.html", "partial.html"])


class TestCompileSource:
    """Compilation entry point and error wrapping."""

    def test_returns_python_source(self, env):
        code = env.compile_source("Hi {{ name }}", "partial.html")
        assert "class __KilnTemplate_" in code
        compile(code, "<test>", "exec")

    def test_template_error_gets_name(self, env):
        with pytest.raises(TemplateSyntaxError) as info:
            env.compile_source("{{ x|nope }}", "partial.html")
        assert info.value.name == "partial.html"
        assert "partial.html:1" in str(info.value)

    def test_other_errors_wrapped(self, env):
        class Exploding:
            priority = 10

            def enter_node(self, node, env):
                raise RuntimeError("boom")

            def leave_node(self, node, env):
                return node

        env.add_node_visitor(Exploding())
        with pytest.raises(TemplateSyntaxError) as info:
            env.compile_source("x", "partial.html")
        assert info.value.message == (
            'An exception has been thrown during the compilation of a template ("boom").'
        )
        assert info.value.lineno == -1
        assert info.value.name == "partial.html"
        assert isinstance(info.value.__cause__, RuntimeError)

    def test_unnamed_source_is_not_retained(self, env):
        code = env.compile_source("inline {{ x }}")
        name = STRING_TEMPLATE_PREFIX + hashlib.sha256(b"inline {{ x }}").hexdigest()
        assert "class __KilnTemplate_" in code
        with pytest.raises(TemplateNotFoundError):
            env.get_unit_name(name)

    def test_unnamed_source_failure_is_not_retained(self, env):
        with pytest.raises(TemplateSyntaxError):
            env.compile_source("{% if %}")
        name = STRING_TEMPLATE_PREFIX + hashlib.sha256(b"{% if %}").hexdigest()
        with pytest.raises(TemplateNotFoundError):
            env.get_unit_name(name)

    def test_string_templates_kept_until_cleared(self, env):
        unit = env.from_string("inline {{ x }}")
        name = STRING_TEMPLATE_PREFIX + hashlib.sha256(b"inline {{ x }}").hexdigest()
        assert env.get_unit_name(name) == type(unit).__name__
        env.compile_source("inline {{ x }}")
        assert env.get_unit_name(name) == type(unit).__name__

        env.clear_compiled_units_cache()
        with pytest.raises(TemplateNotFoundError):
            env.get_unit_name(name)
        assert unit.render(x=1) == "inline 1"

    def test_from_string(self, env):
        unit = env.from_string("{{ a }}+{{ b }}")
        assert unit.render(a=1, b=2) == "1+2"
        assert env.from_string("{{ a }}+{{ b }}") is unit

    def test_from_string_can_include(self, env):
        assert env.from_string('{% include "partial.html" %}').render(text="t") == "<p>t</p>"

    def test_tokenize_and_parse(self, env):
        module = env.parse(env.tokenize("{{ x }}", "partial.html"))
        assert module.name == "partial.html"


class TestRuntime:
    """Runtime initialization and globals."""

    def test_init_runtime_once(self, env):
        calls = []

        class Counting(Extension):
            name = "counting"

            def init_runtime(self, env):
                calls.append(env)

        env.add_extension(Counting())
        env.render("partial.html")
        env.render("base.html")
        env.init_runtime()
        assert calls == [env]
        assert env.registry.is_frozen

    def test_merge_globals_context_wins(self, env):
        env.add_global("site", "kiln")
        env.add_global("title", "Global")
        assert env.merge_globals({"title": "Local"}) == {"site": "kiln", "title": "Local"}

    def test_globals_visible_in_templates(self, env):
        env.add_global("site", "kiln")
        assert env.from_string("{{ site }}/{{ page }}").render(page="home") == "kiln/home"

    def test_update_global_after_render(self, env):
        env.add_global("site", "kiln")
        unit = env.from_string("{{ site }}")
        assert unit.render() == "kiln"
        env.add_global("site", "forge")
        assert unit.render() == "forge"

    def test_add_filter_after_render_fails(self, env):
        env.render("partial.html")
        with pytest.raises(LogicError):
            env.add_filter(TemplateFilter("late", str))

    def test_render_accepts_name_and_context_variables(self, env, templates):
        templates["vars.html"] = "{{ name }}/{{ context }}"
        assert env.render("vars.html", name="Ada", context="ctx") == "Ada/ctx"
        assert env.render("vars.html", {"name": "Bo"}, context="c") == "Bo/c"
        unit = env.get_template("vars.html")
        assert unit.render(context="only", name="n") == "n/only"
        assert unit.render({"context": "base"}, name="m") == "m/base"

    def test_render_shortcut(self, env):
        assert env.render("child.html", {"name": "Ada"}) == (
            "<title>Child</title><main>Hello Ada</main>"
        )


class StampedExtension(Extension):
    """Extension whose freshness fingerprint is set by the test."""

    name = "stamped"

    def __init__(self, stamp):
        self.stamp = stamp

    def get_last_modified(self):
        return self.stamp


class TestFreshness:
    """Both the extensions and the loader must predate the cached unit."""

    @pytest.fixture
    def fs_env(self, tmp_path):
        (tmp_path / "page.html").write_text("Page")
        os.utime(tmp_path / "page.html", (1_000, 1_000))
        return Environment(loader=FileSystemLoader(tmp_path))

    def test_fresh(self, fs_env):
        assert fs_env.is_fresh("page.html", time.time() + 3600)

    def test_stale_template(self, fs_env):
        assert not fs_env.is_fresh("page.html", 999)

    def test_stale_extension(self, fs_env):
        later = time.time() + 3600
        fs_env.add_extension(StampedExtension(later + 1))
        assert not fs_env.is_fresh("page.html", later)

    def test_old_extension_stays_fresh(self, fs_env):
        later = time.time() + 3600
        fs_env.add_extension(StampedExtension(0))
        assert fs_env.is_fresh("page.html", later)

    def test_default_fingerprint_is_class_file_mtime(self):
        import kiln.extensions.core as module

        assert CoreExtension().get_last_modified() == os.stat(module.__file__).st_mtime
