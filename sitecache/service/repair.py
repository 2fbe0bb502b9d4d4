from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from sitecache.logging import get_logger
from sitecache.service.registry import (
    REPAIRED_NAME_LISTS,
    REPAIRED_TRANSACTION_FIELDS,
    CollectionRegistry,
)
from sitecache.storage.collections import CollectionStore
from sitecache.storage.kv import KeyValueStore, scoped_key
from sitecache.storage.models import entry_from_raw

logger = get_logger(__name__)


def _numeric_keys(value: Dict[Any, Any]) -> List[Any]:
    keys = []
    for key in value:
        text = str(key)
        if text.isdigit():
            keys.append(key)
    return sorted(keys, key=lambda k: int(str(k)))


def recover_string(value: Any) -> str:
    """Rebuild a string that was spread into an index-keyed object.

    ``{"0": "a", "1": "b", "id": 3}`` becomes ``"ab"``. Objects without index
    keys fall back to their ``name``/``label``; anything else to ``""``.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        keys = _numeric_keys(value)
        if keys:
            return "".join(str(value[k]) for k in keys)
        fallback = value.get("name") or value.get("label") or ""
        return fallback if isinstance(fallback, str) else str(fallback)
    return ""


def repair_name_list(raw: List[Any]) -> Tuple[List[Any], bool]:
    """Return ``(cleaned, changed)`` for a persisted name list.

    Spread strings are recovered, named records kept, other malformed entries
    dropped, and duplicate display names removed keeping the first occurrence.
    """
    cleaned: List[Any] = []
    seen = set()
    changed = False
    for item in raw:
        value: Any = item
        if isinstance(item, dict) and _numeric_keys(item):
            value = recover_string(item)
            changed = True
        entry = entry_from_raw(value)
        if entry is None or not entry.display_name:
            changed = True
            continue
        if entry.display_name in seen:
            changed = True
            continue
        seen.add(entry.display_name)
        cleaned.append(entry.to_raw())
    return cleaned, changed


class RepairRoutine:
    """Recovery of spread strings in free-text lists and transaction fields.

    Name lists are repaired where they are stored, at session start.
    Transactions only exist in memory once fetched, so the sync engine calls
    :meth:`repair_records` after each transactions refresh.
    """

    record_collections = {"transactions": REPAIRED_TRANSACTION_FIELDS}

    def __init__(
        self,
        registry: CollectionRegistry,
        collections: CollectionStore,
        kv: KeyValueStore,
    ) -> None:
        self.registry = registry
        self.collections = collections
        self.kv = kv

    def run(self, site_id: Optional[str]) -> Dict[str, int]:
        """Repair the name lists stored for ``site_id``; returns changes per list."""
        repaired: Dict[str, int] = {}
        if site_id:
            for name in REPAIRED_NAME_LISTS:
                count = self._repair_stored_list(name, site_id)
                if count:
                    repaired[name] = count
        if repaired:
            logger.warning("repair_applied", site_id=site_id, repaired=repaired)
        return repaired

    def _repair_stored_list(self, name: str, site_id: str) -> int:
        spec = self.registry.get(name)
        key = scoped_key(spec.legacy_key, site_id)
        raw = self.kv.get(key, None)
        if not isinstance(raw, list):
            return 0
        cleaned, changed = repair_name_list(raw)
        if not changed:
            return 0
        self.kv.set(key, cleaned)
        return max(len(raw) - len(cleaned), 1)

    def repair_records(self, name: str) -> int:
        fields = self.record_collections.get(name, ())
        fixed = 0
        out = []
        for record in self.collections.get(name):
            payload = dict(record.payload)  # type: ignore[union-attr]
            touched = False
            for field_name in fields:
                value = payload.get(field_name)
                if value and not isinstance(value, str):
                    payload[field_name] = recover_string(value)
                    touched = True
            if touched:
                fixed += 1
                record = replace(record, payload=payload)
            out.append(record)
        if fixed:
            self.collections.replace(name, out)
            logger.warning("repair_applied", collection=name, repaired=fixed)
        return fixed


__all__ = ["RepairRoutine", "recover_string", "repair_name_list"]
