from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional

from sitecache.logging import get_logger
from sitecache.service.errors import RemoteError, ValidationError
from sitecache.service.mirror import LocalMirror
from sitecache.service.registry import CollectionRegistry, CollectionSpec
from sitecache.service.remote import SiteSettingsRemote
from sitecache.service.scope import ScopeResolver
from sitecache.storage.collections import CollectionStore
from sitecache.storage.models import (
    ListEntry,
    Outcome,
    entry_from_raw,
    is_valid_identifier,
)

logger = get_logger(__name__)

TokenProvider = Callable[[], Optional[str]]


class SiteSettingsService:
    """Per-site name lists backed by the remote site-settings aggregate.

    Each list lives in memory, under its scoped key in the local store, and as
    one field of the site-settings resource. Additions are suppressed when an
    entry with the same display name (exact, case-sensitive) already exists.
    """

    def __init__(
        self,
        registry: CollectionRegistry,
        collections: CollectionStore,
        resolver: ScopeResolver,
        mirror: LocalMirror,
        remote: SiteSettingsRemote,
        token_provider: TokenProvider,
    ) -> None:
        self.registry = registry
        self.collections = collections
        self.resolver = resolver
        self.mirror = mirror
        self.remote = remote
        self.token_provider = token_provider

    def _name_list(self, name: str) -> CollectionSpec:
        spec = self.registry.get(name)
        if not spec.is_name_list:
            raise ValidationError(f"{name} is not a name list", detail={"collection": name})
        return spec

    def entries(self, name: str) -> List[ListEntry]:
        return list(self.collections.get(name))  # type: ignore[arg-type]

    def display_names(self, name: str) -> List[str]:
        return [entry.display_name for entry in self.entries(name)]

    def _raw_list(self, name: str) -> List[Any]:
        return self.collections.as_dicts(name)

    async def push(self, spec: CollectionSpec) -> bool:
        """Send ``{field: list}`` to the site-settings resource for the active site."""
        token = self.token_provider()
        site_id = self.resolver.site_id
        if not token or not is_valid_identifier(site_id):
            return False
        patch = {spec.settings_field: self._raw_list(spec.name)}
        try:
            result = await self.remote.update(token, site_id, patch)  # type: ignore[arg-type]
        except RemoteError as exc:
            logger.error(
                "site_settings_update_failed",
                collection=spec.name,
                site_id=site_id,
                error=exc.message,
            )
            return False
        if isinstance(result, dict) and "message" in result and spec.settings_field not in result:
            logger.warning(
                "site_settings_update_rejected",
                collection=spec.name,
                site_id=site_id,
                error=result.get("message"),
            )
            return False
        return True

    async def add(self, name: str, value: Any) -> Outcome:
        spec = self._name_list(name)
        if isinstance(value, str):
            value = value.strip()
        entry = entry_from_raw(value)
        if entry is None or not entry.display_name:
            return Outcome.fail(f"Cannot add an empty entry to {name}", "validation_error")
        if entry.display_name in self.display_names(name):
            return Outcome.ok(message="Already present")
        self.collections.append(name, entry)
        self.mirror.persist(spec)
        await self.push(spec)
        return Outcome.ok(record={"value": entry.to_raw()})

    async def remove(self, name: str, display_name: str) -> Outcome:
        spec = self._name_list(name)
        kept = [e for e in self.entries(name) if e.display_name != display_name]
        if len(kept) == len(self.entries(name)):
            return Outcome.fail(f"{display_name} is not in {name}", "not_found")
        self.collections.replace(name, kept)
        self.mirror.persist(spec)
        await self.push(spec)
        return Outcome.ok()

    async def rename(self, name: str, old: str, new: Any) -> Outcome:
        spec = self._name_list(name)
        replacement = entry_from_raw(new.strip() if isinstance(new, str) else new)
        if replacement is None or not replacement.display_name:
            return Outcome.fail(f"Cannot rename to an empty entry in {name}", "validation_error")
        entries = self.entries(name)
        names = [e.display_name for e in entries]
        if old not in names:
            return Outcome.fail(f"{old} is not in {name}", "not_found")
        if replacement.display_name != old and replacement.display_name in names:
            return Outcome.fail(
                f"{replacement.display_name} already exists in {name}", "refused"
            )
        entries[names.index(old)] = replacement
        self.collections.replace(name, entries)
        self.mirror.persist(spec)
        await self.push(spec)
        return Outcome.ok(record={"value": replacement.to_raw()})

    async def apply_links(self, spec: CollectionSpec, payload: Mapping[str, Any]) -> None:
        """Record linked free-text fields of a saved record in their name lists."""
        for field_name, target in spec.settings_links:
            value = payload.get(field_name)
            if isinstance(value, str) and value.strip():
                await self.add(target, value)

    def apply_remote(self, settings: Any) -> List[str]:
        """Adopt every non-empty list carried by a site-settings response."""
        if not isinstance(settings, dict):
            return []
        updated: List[str] = []
        for spec in self.registry.name_lists():
            raw = settings.get(spec.settings_field)
            if not isinstance(raw, list) or not raw:
                continue
            items = [entry for entry in map(entry_from_raw, raw) if entry is not None]
            self.collections.replace(spec.name, items)
            self.mirror.persist(spec)
            updated.append(spec.name)
        return updated

    async def fetch(self, token: str, site_id: str) -> Dict[str, Any]:
        result = await self.remote.get(token, site_id)
        return result if isinstance(result, dict) else {}
