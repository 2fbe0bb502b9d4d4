from __future__ import annotations

from typing import List, Optional

from sitecache.logging import get_logger
from sitecache.service.registry import CollectionRegistry, CollectionSpec, ScopeKind
from sitecache.service.scope import ScopeResolver
from sitecache.storage.collections import CollectionStore
from sitecache.storage.kv import KeyValueStore, scoped_key
from sitecache.storage.models import entry_from_raw, record_from_remote

logger = get_logger(__name__)


class LocalMirror:
    """Keeps the locally persisted copy of collections that have one.

    - tenant lists (``companies``, ``sites``) under their global key
    - name lists and local-only collections under ``vini_<name>_<siteId>``

    Site-scoped remote collections are never written here; their legacy keys
    are read only as migration sources.
    """

    def __init__(
        self,
        registry: CollectionRegistry,
        collections: CollectionStore,
        resolver: ScopeResolver,
        kv: KeyValueStore,
    ) -> None:
        self.registry = registry
        self.collections = collections
        self.resolver = resolver
        self.kv = kv

    def key_for(self, spec: CollectionSpec, site_id: Optional[str] = None) -> Optional[str]:
        if spec.scope in (ScopeKind.GLOBAL, ScopeKind.COMPANY):
            return spec.legacy_key
        if not spec.persist_locally:
            return None
        site_id = site_id if site_id is not None else self.resolver.site_id
        if not site_id:
            return None
        return scoped_key(spec.legacy_key, site_id)

    def persist(self, spec: CollectionSpec) -> None:
        key = self.key_for(spec)
        if key is None:
            return
        if not self.kv.set(key, self.collections.as_dicts(spec.name)):
            logger.warning("mirror_persist_failed", collection=spec.name, key=key)

    def load_tenants(self) -> None:
        """Seed ``companies``/``sites`` from their last persisted copy."""
        for spec in self.registry:
            if spec.scope == ScopeKind.SITE:
                continue
            raw = self.kv.get(spec.legacy_key, [])
            records = [r for r in map(record_from_remote, raw if isinstance(raw, list) else []) if r]
            self.collections.replace(spec.name, records)

    def load_site(self, site_id: Optional[str]) -> List[str]:
        """Reload name lists and local-only collections for ``site_id``.

        Lists without a persisted value fall back to their defaults.
        """
        loaded: List[str] = []
        for spec in self.registry:
            if spec.scope != ScopeKind.SITE or not spec.persist_locally:
                continue
            key = self.key_for(spec, site_id) if site_id else None
            raw = self.kv.get(key, None) if key else None
            if not isinstance(raw, list):
                raw = list(spec.default)
            else:
                loaded.append(spec.name)
            if spec.is_name_list:
                items = [entry for entry in map(entry_from_raw, raw) if entry is not None]
            else:
                items = [self.collections.pending_from_raw(value) for value in raw]
            self.collections.replace(spec.name, items)
        return loaded
