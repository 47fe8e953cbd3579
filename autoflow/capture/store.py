"""Key-value persistence for recording sessions, schedules and history."""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Protocol

from autoflow.errors import StorageError

_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStore(Protocol):
    """
    Abstract storage boundary.

    Values must be JSON-serializable. Implementations raise StorageError
    when the medium is unavailable.
    """

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> bool: ...

    def keys(self) -> list[str]: ...


class MemoryStore:
    """In-process store. Values are round-tripped through JSON on write."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Value for {key!r} is not JSON-serializable: {exc}") from exc

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        return list(self._data)


class JSONFileStore:
    """
    Filesystem store, one JSON document per key.

    Directory layout::

        {store_dir}/
            {key}.json
    """

    def __init__(self, store_dir: str) -> None:
        self._dir = Path(store_dir)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create store directory {store_dir!r}: {exc}") from exc

    def _path(self, key: str) -> Path:
        return self._dir / f"{_KEY_RE.sub('_', key)}.json"

    def get(self, key: str, default: Any = None) -> Any:
        try:
            with open(self._path(key), encoding="utf-8") as f:
                return json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            return default
        except OSError as exc:
            raise StorageError(f"Cannot read {key!r}: {exc}") from exc

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(value, f, indent=2)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"Cannot write {key!r}: {exc}") from exc

    def delete(self, key: str) -> bool:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"Cannot delete {key!r}: {exc}") from exc
        return True

    def keys(self) -> list[str]:
        return sorted(p.stem for p in self._dir.glob("*.json"))
