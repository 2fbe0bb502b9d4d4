"""One-shot promotion of legacy locally cached records into the remote store.

Legacy records live under ``vini_<collection>_<siteId>``. A batch is
transactional at the key level: the legacy key is removed only once every
entry is confirmed remotely. Entries confirmed so far are recorded by content
hash in a ledger (``vini_migration_ledger_<collection>_<siteId>``) so a retry
resubmits only the rest. Once the remote store is seen non-empty without a
ledger, the collection is sealed for that site (``vini_migrated_<...>``) and
its legacy key is never a migration source again.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sitecache.logging import get_logger
from sitecache.service.crud import CrudFacade
from sitecache.service.registry import CollectionSpec
from sitecache.storage.kv import KeyValueStore, scoped_key
from sitecache.storage.models import (
    ConfirmedRecord,
    TenantScope,
    record_from_remote,
    strip_identity,
)

logger = get_logger(__name__)

LEDGER_PREFIX = "vini_migration_ledger"
SEAL_PREFIX = "vini_migrated"


def content_hashes(entries: Sequence[Dict[str, Any]]) -> List[str]:
    """Stable digest per legacy entry; repeated content gets an occurrence suffix."""
    seen: Dict[str, int] = {}
    digests = []
    for entry in entries:
        body = json.dumps(strip_identity(entry), sort_keys=True, default=str)
        digest = hashlib.sha256(body.encode("utf-8")).hexdigest()[:32]
        occurrence = seen.get(digest, 0)
        seen[digest] = occurrence + 1
        digests.append(f"{digest}:{occurrence}")
    return digests


@dataclass
class MigrationResult:
    collection: str
    site_id: str
    attempted: int = 0
    migrated: List[ConfirmedRecord] = field(default_factory=list)
    completed: bool = False
    message: Optional[str] = None


class MigrationEngine:
    def __init__(self, kv: KeyValueStore, crud: CrudFacade) -> None:
        self.kv = kv
        self.crud = crud
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    def lock_for(self, spec: CollectionSpec, site_id: str) -> asyncio.Lock:
        """Lock serialising refresh-and-migrate passes over one legacy batch."""
        key = (spec.name, site_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def legacy_key(self, spec: CollectionSpec, site_id: str) -> str:
        return scoped_key(spec.legacy_key, site_id)

    def ledger_key(self, spec: CollectionSpec, site_id: str) -> str:
        return scoped_key(f"{LEDGER_PREFIX}_{spec.name}", site_id)

    def seal_key(self, spec: CollectionSpec, site_id: str) -> str:
        return scoped_key(f"{SEAL_PREFIX}_{spec.name}", site_id)

    def is_sealed(self, spec: CollectionSpec, site_id: str) -> bool:
        return bool(self.kv.get(self.seal_key(spec, site_id), False))

    def has_ledger(self, spec: CollectionSpec, site_id: str) -> bool:
        return isinstance(self.kv.get(self.ledger_key(spec, site_id)), list)

    def legacy_entries(self, spec: CollectionSpec, site_id: str) -> List[Dict[str, Any]]:
        raw = self.kv.get(self.legacy_key(spec, site_id), None)
        if not isinstance(raw, list):
            return []
        return [entry for entry in raw if isinstance(entry, dict)]

    def should_run(
        self, spec: CollectionSpec, site_id: str, remote_records: Sequence[Any]
    ) -> bool:
        """Migrate after an empty remote result, or to resume a partial batch.

        Call while holding :meth:`lock_for`; the ledger and seal are only
        stable under it.
        """
        if not spec.migratable or self.is_sealed(spec, site_id):
            return False
        if not self.legacy_entries(spec, site_id):
            return False
        return not remote_records or self.has_ledger(spec, site_id)

    def observe(self, spec: CollectionSpec, site_id: str, remote_records: Sequence[Any]) -> None:
        """Seal the collection for ``site_id`` once the remote store holds data."""
        if not spec.migratable or not remote_records:
            return
        if self.has_ledger(spec, site_id) or self.is_sealed(spec, site_id):
            return
        self.kv.set(self.seal_key(spec, site_id), True)
        logger.info("migration_sealed", collection=spec.name, site_id=site_id)

    async def migrate(self, spec: CollectionSpec, scope: TenantScope) -> MigrationResult:
        site_id = scope.site_id or ""
        entries = self.legacy_entries(spec, site_id)
        digests = content_hashes(entries)
        ledger_key = self.ledger_key(spec, site_id)
        stored = self.kv.get(ledger_key, [])
        confirmed: List[str] = list(stored) if isinstance(stored, list) else []
        result = MigrationResult(collection=spec.name, site_id=site_id)

        logger.info(
            "migration_started",
            collection=spec.name,
            site_id=site_id,
            legacy_count=len(entries),
            already_confirmed=len(confirmed),
        )
        for entry, digest in zip(entries, digests):
            if digest in confirmed:
                continue
            result.attempted += 1
            outcome = await self.crud.create(
                spec.name, strip_identity(entry), scope=scope, apply=False
            )
            record = record_from_remote(outcome.record) if outcome.success else None
            if record is None:
                result.message = outcome.message or f"Failed to migrate {spec.entity}"
                logger.warning(
                    "migration_aborted",
                    collection=spec.name,
                    site_id=site_id,
                    migrated=len(result.migrated),
                    remaining=len(entries) - len(confirmed),
                    error=result.message,
                )
                return result
            confirmed.append(digest)
            result.migrated.append(record)
            self.kv.set(ledger_key, confirmed)

        legacy_key = self.legacy_key(spec, site_id)
        raw = self.kv.get(legacy_key, [])
        if isinstance(raw, list) and len(raw) > len(entries):
            logger.warning(
                "migration_entries_dropped",
                collection=spec.name,
                site_id=site_id,
                dropped=len(raw) - len(entries),
                kinds=sorted({type(item).__name__ for item in raw if not isinstance(item, dict)}),
            )
        self.kv.delete(legacy_key)
        self.kv.delete(ledger_key)
        self.kv.set(self.seal_key(spec, site_id), True)
        result.completed = True
        logger.info(
            "migration_completed",
            collection=spec.name,
            site_id=site_id,
            migrated=len(result.migrated),
        )
        return result
