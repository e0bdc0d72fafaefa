"""On-disk cache for generated template modules.

Each main unit is stored as one Python source file under a two-level fan-out
of its digest::

    <directory>/ab/cd/ef0123....py

Writes go to a temporary file in the target directory and are moved into
place with ``os.replace``, so readers never see a partial file. There is no
cross-process lock: the last writer wins.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import types
from pathlib import Path

from kiln.environment.exceptions import CacheIOError

logger = logging.getLogger(__name__)


def _umask() -> int:
    # os.umask can only be read by setting it.
    current = os.umask(0)
    os.umask(current)
    return current


class FilesystemCache:
    """Stores one generated module per main unit under ``directory``."""

    __slots__ = ("directory",)

    def __init__(self, directory: str | os.PathLike[str]):
        self.directory = Path(directory)

    def __repr__(self) -> str:
        return f"<FilesystemCache {str(self.directory)!r}>"

    def generate_path(self, digest: str) -> Path:
        """Path for the unit whose class name ends in the hex ``digest``."""
        return self.directory / digest[:2] / digest[2:4] / f"{digest[4:]}.py"

    def get_timestamp(self, path: str | os.PathLike[str]) -> float:
        try:
            return os.stat(path).st_mtime
        except OSError:
            return 0.0

    def write(self, path: str | os.PathLike[str], source: str) -> None:
        """Atomically write ``source`` to ``path``, creating directories as needed."""
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheIOError(f'Unable to create the cache directory "{path.parent}".') from e

        try:
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
        except OSError as e:
            raise CacheIOError(f'Unable to write in the cache directory "{path.parent}".') from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fp:
                fp.write(source)
            try:
                os.replace(tmp_name, path)
            except OSError:
                # Some filesystems refuse to rename over an open file.
                shutil.copyfile(tmp_name, path)
                os.unlink(tmp_name)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise CacheIOError(f'Failed to write cache file "{path}".') from e

        try:
            os.chmod(path, 0o666 & ~_umask())
        except OSError:
            logger.debug("Could not set permissions on %s", path)
        logger.debug("Wrote cache file %s", path)

    def load(self, path: str | os.PathLike[str], unit_name: str) -> types.ModuleType:
        """Execute the cached module at ``path`` and return its namespace."""
        path = Path(path)
        try:
            source = path.read_text("utf-8")
        except OSError as e:
            raise CacheIOError(f'Failed to read cache file "{path}".') from e
        logger.debug("Loading cached unit %s from %s", unit_name, path)
        return execute_source(source, str(path), unit_name)

    def clear(self) -> None:
        """Delete every cached module, deepest directories first.

        Files that cannot be removed are logged and skipped.
        """
        if not self.directory.is_dir():
            return
        for root, _dirs, files in os.walk(self.directory, topdown=False):
            for filename in files:
                if not filename.endswith(".py"):
                    continue
                target = os.path.join(root, filename)
                try:
                    os.unlink(target)
                except OSError as e:
                    logger.warning("Could not delete cache file %s: %s", target, e)


def execute_source(source: str, filename: str, module_name: str) -> types.ModuleType:
    """Compile and execute generated source into a fresh module.

    Nothing is written to ``sys.modules`` and no ``.pyc`` side file is produced.
    """
    code = compile(source, filename, "exec")
    module = types.ModuleType(module_name)
    module.__file__ = filename
    exec(code, module.__dict__)
    return module
