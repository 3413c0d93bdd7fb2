"""Key/value storage for the persisted session and PKCE verifier."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

# Keys containing any of these fragments are auth-related and wiped on sign-out
AUTH_KEY_FRAGMENTS = ("auth", "session")


@runtime_checkable
class SessionStorage(Protocol):
    """Protocol defining the local storage interface."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryStorage(SessionStorage):
    def __init__(self, initial: dict[str, str] | None = None):
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)


class FileStorage(SessionStorage):
    """JSON file storage; every write rewrites the file atomically."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except ValueError:
            logger.warning("storage_corrupt", extra={"meta": {"path": str(self.path)}})
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        os.replace(tmp, self.path)

    def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)

    def keys(self) -> list[str]:
        return list(self._load())


def clear_auth_items(storage: SessionStorage) -> list[str]:
    """Remove every auth/session key; returns the keys removed."""
    removed = []
    for key in storage.keys():
        lowered = key.lower()
        if any(fragment in lowered for fragment in AUTH_KEY_FRAGMENTS):
            storage.remove_item(key)
            removed.append(key)
    return removed


def build_storage(backend: str, path: str) -> SessionStorage:
    if backend == "file":
        return FileStorage(path)
    return MemoryStorage()
