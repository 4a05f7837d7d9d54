"""
FanZone - Local Key-Value Storage

String-keyed persistent flags and cached records that survive a restart:
degraded-mode flags set by recovery routines, stored credentials, and the
offline copies used by fallback service implementations.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from config import StorageBackend, StorageConfig

# Well-known keys
FALLBACK_MODE_KEY = "fanzone_fallback_mode"
OFFLINE_MODE_KEY = "fanzone_offline_mode"
USER_KEY = "fanzone_user"
AUTH_TOKEN_KEY = "fanzone_auth_token"
USER_GIFTS_KEY = "fanzone_user_gifts"


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal string key-value storage contract."""

    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self) -> List[str]: ...

    def clear(self) -> None: ...


class MemoryStore:
    """Process-local store; contents vanish with the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)

    def clear(self) -> None:
        self._data.clear()


class JsonFileStore(MemoryStore):
    """
    Store persisted to a single JSON object on disk.

    Every mutation rewrites the file; reads are served from memory.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        initial: Dict[str, str] = {}
        if self.path.exists():
            with open(self.path, encoding="utf-8") as f:
                initial = json.load(f)
        super().__init__(initial)

    def _flush(self) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, sort_keys=True)
            tmp_path.replace(self.path)

    def set_item(self, key: str, value: str) -> None:
        super().set_item(key, value)
        self._flush()

    def remove_item(self, key: str) -> None:
        if key in self._data:
            super().remove_item(key)
            self._flush()

    def clear(self) -> None:
        super().clear()
        self._flush()


def get_json(store: KeyValueStore, key: str, default: Any = None) -> Any:
    """Read a JSON encoded value, returning ``default`` when absent."""
    raw = store.get_item(key)
    if raw is None:
        return default
    return json.loads(raw)


def set_json(store: KeyValueStore, key: str, value: Any) -> None:
    store.set_item(key, json.dumps(value, default=str))


def create_store(config: Optional[StorageConfig] = None) -> KeyValueStore:
    """Build the store selected by configuration."""
    config = config or StorageConfig()
    if config.backend == StorageBackend.FILE:
        return JsonFileStore(config.path)
    return MemoryStore()
