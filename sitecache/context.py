"""Read/write surface consumed by forms and lists.

Every collection is readable as an attribute (``ctx.materials``) and every
entity has generated coroutine mutators (``await ctx.add_material({...})``,
``update_material(identity, patch)``, ``delete_material(identity)``). Each
mutator returns an :class:`~sitecache.storage.models.Outcome`.
"""

from __future__ import annotations

import functools
from typing import Any, Dict, List, Mapping, Optional

from sitecache.logging import get_logger
from sitecache.service.errors import RemoteError, UnknownCollectionError
from sitecache.service.registry import CollectionSpec
from sitecache.service.runtime import CacheSession, Runtime
from sitecache.service.sync import RefreshReport
from sitecache.storage.models import (
    CurrentUser,
    Outcome,
    TenantScope,
    is_valid_identifier,
    resolve_identity,
)

logger = get_logger(__name__)

_MUTATOR_PREFIXES = ("add_", "update_", "delete_")


class DataContext:
    def __init__(self, runtime: Runtime) -> None:
        self.runtime = runtime

    @property
    def session(self) -> CacheSession:
        return self.runtime.require_session()

    @property
    def scope(self) -> TenantScope:
        return self.session.resolver.current

    @property
    def active_site(self) -> Optional[str]:
        return self.session.resolver.site_id

    @property
    def active_company(self) -> Optional[str]:
        return self.session.resolver.company_id

    @property
    def current_user(self) -> Optional[CurrentUser]:
        return self.runtime.auth.current_user

    def collection(self, name: str) -> List[Any]:
        return self.session.crud.list(name)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        registry = self.runtime.registry
        if name in registry:
            return self.collection(name)
        for prefix in _MUTATOR_PREFIXES:
            if name.startswith(prefix):
                try:
                    spec = registry.by_entity(name[len(prefix):])
                except UnknownCollectionError:
                    break
                return functools.partial(getattr(self, f"_{prefix.rstrip('_')}"), spec)
        raise AttributeError(f"{type(self).__name__} has no attribute {name!r}")

    def __dir__(self) -> List[str]:
        names = list(super().__dir__())
        for spec in self.runtime.registry:
            names.append(spec.name)
            names.extend(f"{prefix}{spec.entity}" for prefix in _MUTATOR_PREFIXES)
        return names

    # -- generated mutators ------------------------------------------------

    async def _add(self, spec: CollectionSpec, draft: Any) -> Outcome:
        if spec.is_name_list:
            return await self.session.site_settings.add(spec.name, draft)
        return await self.session.crud.create(spec.name, draft)

    async def _update(self, spec: CollectionSpec, identity: Any, patch: Any) -> Outcome:
        if spec.is_name_list:
            return await self.session.site_settings.rename(spec.name, identity, patch)
        return await self.session.crud.update(spec.name, identity, patch)

    async def _delete(self, spec: CollectionSpec, identity: Any) -> Outcome:
        if spec.is_name_list:
            return await self.session.site_settings.remove(spec.name, identity)
        return await self.session.crud.delete(spec.name, identity)

    # -- scope -------------------------------------------------------------

    async def set_site(self, site_id: Optional[str]) -> TenantScope:
        scope = self.session.resolver.set_site(site_id)
        await self.session.resolver.drain()
        return scope

    async def switch_company(self, company_id: Optional[str]) -> TenantScope:
        """Activate a company; its first listed site becomes active."""
        resolver = self.session.resolver
        resolver.set_company(company_id)
        await resolver.drain()
        await self.session.sync.refresh_tenants()
        await resolver.drain()
        return resolver.current

    async def delete_site(self, site_id: str) -> Outcome:
        outcome = await self.session.crud.delete("sites", site_id)
        if outcome.success and self.active_site == site_id:
            await self.set_site(None)
        return outcome

    async def refresh(self) -> RefreshReport:
        return await self.session.sync.refresh_all()

    def notify_focus(self) -> None:
        self.session.sync.notify_focus()

    # -- session -----------------------------------------------------------

    async def login(self, username: str, password: str) -> Outcome:
        return await self.runtime.login(username, password)

    async def signup(self, email: str, password: str, name: str = "User") -> Outcome:
        return await self.runtime.signup(email, password, name)

    async def logout(self) -> Outcome:
        return await self.runtime.logout()

    # -- composite operations ----------------------------------------------

    async def import_contacts_from_site(self, source_site_id: str) -> Outcome:
        """Copy contacts of another site into the active one, skipping name+number duplicates."""
        token = self.runtime.token()
        if not token or not self.scope.site_valid:
            return Outcome.fail("Select a site before importing contacts", "refused")
        if not is_valid_identifier(source_site_id):
            return Outcome.fail("Source site is not a valid site", "validation_error")
        spec = self.runtime.registry.get("contacts")
        try:
            source = await self.session.remote.entity(spec).list(
                token, {"siteId": source_site_id}
            )
        except RemoteError as exc:
            logger.error("contacts_import_failed", source_site_id=source_site_id, error=exc.message)
            return Outcome.fail(exc.message, exc.error_code)
        if not isinstance(source, list):
            return Outcome.ok(record={"count": 0})

        existing = {(c.get("name"), c.get("number")) for c in self.collection("contacts")}
        imported = 0
        for contact in source:
            if not isinstance(contact, dict):
                continue
            key = (contact.get("name"), contact.get("number"))
            if key in existing:
                continue
            outcome = await self.session.crud.create(
                "contacts",
                {"name": contact.get("name"), "number": contact.get("number"),
                 "role": contact.get("role")},
            )
            if outcome.success:
                existing.add(key)
                imported += 1
        return Outcome.ok(record={"count": imported})

    async def update_concrete_test_result(self, identity: Any, day: str, result: Any) -> Outcome:
        """Record the strength result of ``day`` on a concrete test report."""
        try:
            target = resolve_identity(identity)
        except ValueError as exc:
            return Outcome.fail(str(exc), "validation_error")
        record = self.session.collections.find("concrete_tests", target)
        if record is None:
            return Outcome.fail("Concrete test not found", "not_found")
        payload: Dict[str, Any] = dict(record.payload)
        data = dict(payload.get("data") or {})
        data["results"] = {**(data.get("results") or {}), day: result}
        patch = {
            "type": "concrete",
            "location": payload.get("location"),
            "date": payload.get("date"),
            "status": payload.get("status"),
            "image": payload.get("image"),
            "data": data,
        }
        return await self.session.crud.update("concrete_tests", identity, patch)

    async def save_manpower_attendance(
        self, date: str, records: List[Mapping[str, Any]]
    ) -> Outcome:
        """Save the attendance sheet of ``date``; replaces a sheet already held for it."""
        return await self.session.crud.upsert(
            "manpower_attendance", {"date": date, "records": list(records)}, "date"
        )
