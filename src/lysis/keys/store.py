"""
Key-value stores for persisted credential configuration.

The key pool keeps two entries per role: the comma-separated key list and
the rotation cursor. Anything offering ``get``/``set`` on strings works.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Protocol

from lysis.core.types import Role
from lysis.utils.logging import get_logger

logger = get_logger(__name__)


def keys_entry(role: Role) -> str:
    """Store entry holding a role's comma-separated key list."""
    return f"lysis_{role.value}_api_key"


def index_entry(role: Role) -> str:
    """Store entry holding a role's rotation cursor."""
    return f"lysis_{role.value}_key_index"


class KeyValueStore(Protocol):
    """Minimal persistent string store."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    """In-process store, used for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def __repr__(self) -> str:
        return f"MemoryStore(entries={len(self._data)})"


class JsonFileStore:
    """
    Store backed by a single JSON object on disk.

    Writes go through a temporary file and ``os.replace`` so a crash never
    leaves a truncated file behind.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()
        self._data: dict[str, str] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("Key store unreadable, starting empty", path=str(self._path), error=str(e))
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=".keys-", suffix=".json")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self._path)

    def __repr__(self) -> str:
        return f"JsonFileStore(path={str(self._path)!r})"
