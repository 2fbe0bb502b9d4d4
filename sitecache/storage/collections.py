from __future__ import annotations

import threading
from typing import Any, Dict, Iterable, List, Optional, Union

from sitecache.storage.models import (
    Identity,
    ListEntry,
    NameEntry,
    PendingRecord,
    Record,
    RecordEntry,
    record_from_local,
)

Item = Union[Record, ListEntry]


class CollectionStore:
    """In-memory mapping of collection name to an ordered sequence of items.

    Records are ``ConfirmedRecord``/``PendingRecord``; name lists hold
    ``NameEntry``/``RecordEntry``. Only the sync engine (wholesale replace) and
    the CRUD paths (single insert, replace, remove) mutate it.
    """

    def __init__(self, names: Iterable[str]) -> None:
        self._lock = threading.RLock()
        self._data: Dict[str, List[Item]] = {name: [] for name in names}
        self._last_local_id = 0

    def _bucket(self, name: str) -> List[Item]:
        if name not in self._data:
            raise KeyError(name)
        return self._data[name]

    def names(self) -> List[str]:
        return list(self._data)

    def next_local_id(self) -> int:
        with self._lock:
            self._last_local_id += 1
            return self._last_local_id

    def _observe_local_id(self, value: int) -> None:
        if value > self._last_local_id:
            self._last_local_id = value

    def pending_from_raw(self, raw: Any) -> PendingRecord:
        """Wrap a persisted local value, reusing its integer ``id`` when present."""
        with self._lock:
            local_id = raw.get("id") if isinstance(raw, dict) else None
            if isinstance(local_id, int) and not isinstance(local_id, bool):
                self._observe_local_id(local_id)
            else:
                local_id = self.next_local_id()
            return record_from_local(raw, local_id)

    def get(self, name: str) -> List[Item]:
        with self._lock:
            return list(self._bucket(name))

    def size(self, name: str) -> int:
        with self._lock:
            return len(self._bucket(name))

    def replace(self, name: str, items: Iterable[Item]) -> None:
        with self._lock:
            self._bucket(name)
            self._data[name] = list(items)

    def append(self, name: str, item: Item) -> None:
        with self._lock:
            self._bucket(name).append(item)

    def prepend(self, name: str, item: Item) -> None:
        with self._lock:
            self._bucket(name).insert(0, item)

    def find(self, name: str, identity: Identity) -> Optional[Record]:
        with self._lock:
            for item in self._bucket(name):
                if getattr(item, "identity", None) == identity:
                    return item  # type: ignore[return-value]
        return None

    def replace_at(self, name: str, identity: Identity, record: Record) -> bool:
        with self._lock:
            bucket = self._bucket(name)
            for index, item in enumerate(bucket):
                if getattr(item, "identity", None) == identity:
                    bucket[index] = record
                    return True
        return False

    def remove(self, name: str, identity: Identity) -> Optional[Record]:
        with self._lock:
            bucket = self._bucket(name)
            for index, item in enumerate(bucket):
                if getattr(item, "identity", None) == identity:
                    return bucket.pop(index)  # type: ignore[return-value]
        return None

    def reset(self, names: Iterable[str]) -> None:
        with self._lock:
            for name in names:
                self._bucket(name)
                self._data[name] = []

    def reset_all(self) -> None:
        self.reset(list(self._data))

    def as_dicts(self, name: str) -> List[Any]:
        """Render a collection the way consumers read it."""
        out: List[Any] = []
        for item in self.get(name):
            if isinstance(item, (NameEntry, RecordEntry)):
                out.append(item.to_raw())
            else:
                out.append(item.to_dict())
        return out
