"""Persistent key-value store used as local fallback storage.

Keys are plain strings. Global keys (``vini_sites``) and scoped keys
(``vini_materials_<siteId>``) share one namespace. Values are JSON documents.
Write failures are logged and swallowed: callers keep their in-memory state.
"""

from __future__ import annotations

import copy
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from sitecache.logging import get_logger
from sitecache.storage.errors import PersistenceError

logger = get_logger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> bool: ...

    def delete(self, key: str) -> bool: ...

    def keys(self, prefix: str = "") -> List[str]: ...


def scoped_key(name: str, scope_id: Any) -> str:
    """Namespace ``name`` by scope: ``name + "_" + scopeId``."""
    return f"{name}_{scope_id}"


def _encode(key: str, value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as exc:
        raise PersistenceError(
            f"value for {key} is not JSON serializable", {"key": key}
        ) from exc


class MemoryKeyValueStore:
    """Dict-backed store. Values are JSON round-tripped to match durable backends."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.RLock()
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            raw = self._data.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError as exc:
            logger.error("kv_decode_failed", key=key, error=str(exc))
            return default

    def set(self, key: str, value: Any) -> bool:
        try:
            encoded = _encode(key, value)
        except PersistenceError as exc:
            logger.error("kv_write_failed", key=key, error=exc.message)
            return False
        with self._lock:
            self._data[key] = encoded
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


class FileKeyValueStore:
    """Single JSON document on disk, rewritten atomically on every change."""

    def __init__(self, state_dir: str) -> None:
        self.state_dir = Path(state_dir)
        self._data: Dict[str, Any] = {}
        self._lock = threading.RLock()
        self._load_state()

    def _state_path(self) -> Path:
        path = self.state_dir / "state"
        path.mkdir(parents=True, exist_ok=True)
        return path / "local_storage.json"

    def _load_state(self) -> bool:
        try:
            path = self._state_path()
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        except (OSError, ValueError) as exc:
            logger.error("kv_load_failed", state_dir=str(self.state_dir), error=str(exc))
            return False
        if isinstance(data, dict):
            self._data = data
        return True

    def _persist_state(self) -> None:
        path = self._state_path()
        # Use atomic write pattern: write to temp file then rename
        fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent), prefix=".local_storage_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as handle:
                json.dump(self._data, handle)
            os.replace(tmp_path, path)
        except OSError as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise PersistenceError(f"failed to persist local storage: {exc}") from exc

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> bool:
        with self._lock:
            previous = self._data.get(key)
            had_key = key in self._data
            try:
                self._data[key] = json.loads(_encode(key, value))
                self._persist_state()
            except PersistenceError as exc:
                if had_key:
                    self._data[key] = previous
                else:
                    self._data.pop(key, None)
                logger.error("kv_write_failed", key=key, error=exc.message)
                return False
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._data:
                return False
            previous = self._data.pop(key)
            try:
                self._persist_state()
            except PersistenceError as exc:
                self._data[key] = previous
                logger.error("kv_delete_failed", key=key, error=exc.message)
                return False
        return True

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    "scoped_key",
]
