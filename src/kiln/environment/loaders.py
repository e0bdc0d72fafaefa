"""Template loaders for the Kiln environment.

Loaders provide template source to the Environment. Besides
``get_source(name)`` returning ``(source, filename)``, a loader supplies the
fingerprint the compiled unit is named after and answers freshness checks
for the disk cache.

Built-in Loaders:
- `FileSystemLoader`: Load from filesystem directories
- `DictLoader`: Load from an in-memory dictionary (testing/embedded)
- `ChoiceLoader`: Try multiple loaders in order (theme fallback)
- `FunctionLoader`: Wrap a callable as a loader (quick one-offs)

Custom Loaders:
Implement the Loader protocol:
    ```python
    class DatabaseLoader:
        def get_source(self, name: str) -> tuple[str, str | None]:
            row = db.query("SELECT source FROM templates WHERE name = ?", name)
            if not row:
                raise TemplateNotFoundError(f"Template '{name}' not found")
            return row.source, f"db://{name}"

        def get_cache_key(self, name: str) -> str:
            return f"db://{name}"

        def is_fresh(self, name: str, since: float) -> bool:
            return db.updated_at(name) <= since

        def exists(self, name: str) -> bool:
            return db.has(name)
    ```

Thread-Safety:
Loaders should be safe for concurrent calls. The built-in loaders hold no
mutable state of their own.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from difflib import get_close_matches
from pathlib import Path
from typing import Protocol, runtime_checkable

from kiln.environment.exceptions import LoaderError, TemplateNotFoundError


@runtime_checkable
class Loader(Protocol):
    """What the environment needs from a template source."""

    def get_source(self, name: str) -> tuple[str, str | None]: ...

    def get_cache_key(self, name: str) -> str: ...

    def is_fresh(self, name: str, since: float) -> bool: ...

    def exists(self, name: str) -> bool: ...


class FileSystemLoader:
    """Load templates from filesystem directories.

    Directories are searched in order; the first matching file wins. The
    cache key is the resolved path of that file, so two names reaching the
    same file share one compiled unit.

    Example:
            >>> loader = FileSystemLoader(["site/", "shared/"])
            >>> source, filename = loader.get_source("pages/about.html")
            >>> filename
            'site/pages/about.html'

    Raises:
        TemplateNotFoundError: If template not found in any search path
        LoaderError: If the name escapes the search path
    """

    __slots__ = ("_encoding", "_paths")

    def __init__(
        self,
        paths: str | Path | Sequence[str | Path],
        encoding: str = "utf-8",
    ):
        if isinstance(paths, (str, Path)):
            paths = [paths]
        self._paths = [Path(p) for p in paths]
        self._encoding = encoding

    def _find(self, name: str) -> Path:
        parts = Path(name.replace("\\", "/")).parts
        if ".." in parts or (parts and Path(name).is_absolute()):
            raise LoaderError(f"Looks like you try to load a template outside configured directories ({name}).")
        for base in self._paths:
            path = base / name
            if path.is_file():
                return path
        raise TemplateNotFoundError(
            f"Template '{name}' not found in: {', '.join(str(p) for p in self._paths)}"
        )

    def get_source(self, name: str) -> tuple[str, str]:
        path = self._find(name)
        return path.read_text(self._encoding), str(path)

    def get_cache_key(self, name: str) -> str:
        return str(self._find(name).resolve())

    def is_fresh(self, name: str, since: float) -> bool:
        return self._find(name).stat().st_mtime <= since

    def exists(self, name: str) -> bool:
        try:
            self._find(name)
        except LoaderError:
            return False
        return True

    def list_templates(self) -> list[str]:
        templates = set()
        for base in self._paths:
            if base.is_dir():
                for path in base.rglob("*"):
                    if path.is_file():
                        templates.add(path.relative_to(base).as_posix())
        return sorted(templates)


class DictLoader:
    """Load templates from an in-memory dictionary.

    The cache key includes the source, so editing an entry yields a new
    unit name and a stale unit is never reused. Entries are always fresh.

    Example:
            >>> loader = DictLoader({"test.html": "{{ x * 2 }}"})
            >>> env = Environment(loader=loader)
            >>> env.render("test.html", x=21)
            '42'
    """

    __slots__ = ("_mapping",)

    def __init__(self, mapping: Mapping[str, str]):
        self._mapping = mapping

    def _lookup(self, name: str) -> str:
        try:
            return self._mapping[name]
        except KeyError:
            pass
        available = sorted(self._mapping)
        msg = f"Template '{name}' not found"
        matches = get_close_matches(name, available, n=1, cutoff=0.6)
        if matches:
            msg += f". Did you mean '{matches[0]}'?"
        elif available:
            msg += f". Available: {', '.join(available[:10])}"
            if len(available) > 10:
                msg += f" ... ({len(available)} total)"
        raise TemplateNotFoundError(msg)

    def get_source(self, name: str) -> tuple[str, None]:
        return self._lookup(name), None

    def get_cache_key(self, name: str) -> str:
        return f"{name}:{self._lookup(name)}"

    def is_fresh(self, name: str, since: float) -> bool:
        self._lookup(name)
        return True

    def exists(self, name: str) -> bool:
        return name in self._mapping

    def list_templates(self) -> list[str]:
        return sorted(self._mapping)


class ChoiceLoader:
    """Try multiple loaders in order, returning the first match.

    Example:
            >>> loader = ChoiceLoader([
            ...     FileSystemLoader("themes/custom/"),
            ...     FileSystemLoader("themes/default/"),
            ... ])
    """

    __slots__ = ("_loaders",)

    def __init__(self, loaders: Sequence[Loader]):
        self._loaders = list(loaders)

    def add_loader(self, loader: Loader) -> None:
        self._loaders.append(loader)

    def _select(self, name: str) -> Loader:
        for loader in self._loaders:
            if loader.exists(name):
                return loader
        raise TemplateNotFoundError(
            f"Template '{name}' not found in any of {len(self._loaders)} loaders"
        )

    def get_source(self, name: str) -> tuple[str, str | None]:
        return self._select(name).get_source(name)

    def get_cache_key(self, name: str) -> str:
        return self._select(name).get_cache_key(name)

    def is_fresh(self, name: str, since: float) -> bool:
        return self._select(name).is_fresh(name, since)

    def exists(self, name: str) -> bool:
        return any(loader.exists(name) for loader in self._loaders)

    def list_templates(self) -> list[str]:
        templates: set[str] = set()
        for loader in self._loaders:
            if hasattr(loader, "list_templates"):
                templates.update(loader.list_templates())
        return sorted(templates)


class FunctionLoader:
    """Wrap a callable as a loader.

    The callable receives a template name and returns the source string,
    a ``(source, filename)`` tuple, or ``None`` when the name is unknown.
    Sources are re-fetched on every call, so the cache key embeds the source
    and entries are always fresh.

    Example:
            >>> loader = FunctionLoader(lambda name: f"<p>{name}</p>")
    """

    __slots__ = ("_load_func",)

    def __init__(self, load_func: Callable[[str], str | tuple[str, str | None] | None]):
        self._load_func = load_func

    def get_source(self, name: str) -> tuple[str, str | None]:
        result = self._load_func(name)
        if result is None:
            raise TemplateNotFoundError(f"Template '{name}' not found")
        if isinstance(result, str):
            return result, None
        return result

    def get_cache_key(self, name: str) -> str:
        source, _ = self.get_source(name)
        return f"{name}:{source}"

    def is_fresh(self, name: str, since: float) -> bool:
        return True

    def exists(self, name: str) -> bool:
        return self._load_func(name) is not None
