"""
Filesystem handles used by file, template and output steps.

LocalFileSystem resolves relative paths against a base directory;
MemoryFileSystem keeps everything in a dict and is what tests use. Both
create parent directories on write.
"""

from __future__ import annotations

import posixpath
import shutil
from pathlib import Path
from typing import Protocol


class FileSystem(Protocol):
    def read_text(self, path: str) -> str: ...

    def write_text(self, path: str, content: str) -> str: ...

    def exists(self, path: str) -> bool: ...

    def copy(self, source: str, target: str) -> str: ...

    def move(self, source: str, target: str) -> str: ...

    def delete(self, path: str) -> None: ...

    def resolve(self, path: str) -> str: ...


class LocalFileSystem:
    def __init__(self, base_dir: Path | str | None = None):
        self.base_dir = Path(base_dir) if base_dir is not None else Path.cwd()

    def _path(self, path: str) -> Path:
        candidate = Path(path).expanduser()
        return candidate if candidate.is_absolute() else self.base_dir / candidate

    def resolve(self, path: str) -> str:
        return str(self._path(path))

    def read_text(self, path: str) -> str:
        return self._path(path).read_text(encoding="utf-8")

    def write_text(self, path: str, content: str) -> str:
        target = self._path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return str(target)

    def exists(self, path: str) -> bool:
        return self._path(path).exists()

    def copy(self, source: str, target: str) -> str:
        destination = self._path(target)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self._path(source), destination)
        return str(destination)

    def move(self, source: str, target: str) -> str:
        destination = self._path(target)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(self._path(source)), str(destination))
        return str(destination)

    def delete(self, path: str) -> None:
        self._path(path).unlink()

    def __repr__(self) -> str:
        return f"LocalFileSystem(base_dir={self.base_dir})"


class MemoryFileSystem:
    """In-memory files keyed by normalized POSIX path."""

    def __init__(self, files: dict[str, str] | None = None, cwd: str = "/work"):
        self.cwd = cwd
        self.files: dict[str, str] = {}
        for path, content in (files or {}).items():
            self.files[self.resolve(path)] = content

    def resolve(self, path: str) -> str:
        joined = path if path.startswith("/") else posixpath.join(self.cwd, path)
        return posixpath.normpath(joined)

    def read_text(self, path: str) -> str:
        key = self.resolve(path)
        if key not in self.files:
            raise FileNotFoundError(f"No such file: {path}")
        return self.files[key]

    def write_text(self, path: str, content: str) -> str:
        key = self.resolve(path)
        self.files[key] = content
        return key

    def exists(self, path: str) -> bool:
        return self.resolve(path) in self.files

    def copy(self, source: str, target: str) -> str:
        return self.write_text(target, self.read_text(source))

    def move(self, source: str, target: str) -> str:
        content = self.read_text(source)
        del self.files[self.resolve(source)]
        return self.write_text(target, content)

    def delete(self, path: str) -> None:
        key = self.resolve(path)
        if key not in self.files:
            raise FileNotFoundError(f"No such file: {path}")
        del self.files[key]

    def __repr__(self) -> str:
        return f"MemoryFileSystem(files={len(self.files)})"


__all__ = ["FileSystem", "LocalFileSystem", "MemoryFileSystem"]
