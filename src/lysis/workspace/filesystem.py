"""
Filesystem collaborators used by worker tools.

``LocalFileSystem`` works on a real directory (blocking I/O runs in a
thread); ``MemoryFileSystem`` keeps files in a dict and backs mock mode
and tests.
"""

from __future__ import annotations

import asyncio
import posixpath
from pathlib import Path
from typing import Protocol

from lysis.utils.errors import WorkspacePathError

# Directories skipped by recursive listings
IGNORED_DIRS = frozenset({"node_modules", ".git"})


class FileSystem(Protocol):
    """Minimal async filesystem interface."""

    async def write(self, path: str, content: str) -> None: ...

    async def read(self, path: str) -> str | None: ...

    async def list(self, path: str = ".") -> list[str]: ...

    async def walk(self, path: str = ".") -> list[str]: ...


def format_listing(names: list[str]) -> str:
    """Render a listing the way tools report it."""
    return "\n".join(names) if names else "(empty)"


class LocalFileSystem:
    """
    Filesystem rooted at a local directory.

    Paths are relative to the root; anything resolving outside it is
    rejected.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser().resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if target != self._root and self._root not in target.parents:
            raise WorkspacePathError(path)
        return target

    async def write(self, path: str, content: str) -> None:
        target = self.resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)

    async def read(self, path: str) -> str | None:
        target = self.resolve(path)
        if not target.is_file():
            return None
        return await asyncio.to_thread(target.read_text, encoding="utf-8")

    async def list(self, path: str = ".") -> list[str]:
        target = self.resolve(path)
        if not target.is_dir():
            return []
        entries = await asyncio.to_thread(lambda: sorted(target.iterdir()))
        return [f"{p.name}/" if p.is_dir() else p.name for p in entries]

    async def walk(self, path: str = ".") -> list[str]:
        """Recursive file listing relative to the root, skipping ignored dirs."""
        target = self.resolve(path)

        def _walk() -> list[str]:
            found: list[str] = []
            if not target.is_dir():
                return found
            for p in sorted(target.rglob("*")):
                rel = p.relative_to(self._root)
                if IGNORED_DIRS.intersection(rel.parts) or not p.is_file():
                    continue
                found.append(rel.as_posix())
            return found

        return await asyncio.to_thread(_walk)

    def __repr__(self) -> str:
        return f"LocalFileSystem(root={str(self._root)!r})"


class MemoryFileSystem:
    """In-memory filesystem keyed by normalized relative paths."""

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self.files: dict[str, str] = {}
        for path, content in (files or {}).items():
            self.files[self._norm(path)] = content

    @staticmethod
    def _norm(path: str) -> str:
        norm = posixpath.normpath(path.strip().lstrip("/")) if path.strip() else "."
        if norm == ".." or norm.startswith("../"):
            raise WorkspacePathError(path)
        return norm

    async def write(self, path: str, content: str) -> None:
        self.files[self._norm(path)] = content

    async def read(self, path: str) -> str | None:
        return self.files.get(self._norm(path))

    async def list(self, path: str = ".") -> list[str]:
        base = self._norm(path)
        prefix = "" if base == "." else f"{base}/"
        names: set[str] = set()
        for file_path in self.files:
            if not file_path.startswith(prefix):
                continue
            head, sep, _ = file_path[len(prefix):].partition("/")
            names.add(f"{head}/" if sep else head)
        return sorted(names)

    async def walk(self, path: str = ".") -> list[str]:
        base = self._norm(path)
        prefix = "" if base == "." else f"{base}/"
        return sorted(
            p for p in self.files
            if p.startswith(prefix) and not IGNORED_DIRS.intersection(p.split("/"))
        )

    def __repr__(self) -> str:
        return f"MemoryFileSystem(files={len(self.files)})"
