from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional

from sitecache.logging import get_logger
from sitecache.service.errors import (
    NotAuthenticatedError,
    NotFoundError,
    RemoteError,
    ScopeError,
    ServiceError,
    ValidationError,
)
from sitecache.service.mirror import LocalMirror
from sitecache.service.registry import CollectionRegistry, CollectionSpec, ScopeKind
from sitecache.service.remote import RemoteStore
from sitecache.service.scope import ScopeResolver
from sitecache.service.site_settings import SiteSettingsService
from sitecache.storage.collections import CollectionStore
from sitecache.storage.models import (
    ConfirmedRecord,
    Identity,
    LocalIdentity,
    Outcome,
    PendingRecord,
    TenantScope,
    error_message,
    record_from_remote,
    resolve_identity,
    strip_identity,
)

logger = get_logger(__name__)

TokenProvider = Callable[[], Optional[str]]


class CrudFacade:
    """Create, update and delete records against the remote store.

    Every operation returns an :class:`Outcome`; refusals and remote failures
    are reported through it and never raised. The in-memory collection only
    changes after the remote store confirms (deletes excepted: the record is
    dropped once the remote call returns without raising).
    """

    def __init__(
        self,
        registry: CollectionRegistry,
        collections: CollectionStore,
        resolver: ScopeResolver,
        remote: RemoteStore,
        site_settings: SiteSettingsService,
        mirror: LocalMirror,
        token_provider: TokenProvider,
    ) -> None:
        self.registry = registry
        self.collections = collections
        self.resolver = resolver
        self.remote = remote
        self.site_settings = site_settings
        self.mirror = mirror
        self.token_provider = token_provider

    # -- preconditions -----------------------------------------------------

    def _require_token(self) -> str:
        token = self.token_provider()
        if not token:
            raise NotAuthenticatedError("You must be logged in to change data")
        return token

    def _require_scope(self, spec: CollectionSpec, scope: TenantScope) -> Dict[str, str]:
        """Scope fields tagged onto records of ``spec``."""
        if spec.scope == ScopeKind.SITE:
            if not scope.site_valid:
                raise ScopeError(
                    "Select a site before changing site data",
                    detail={"collection": spec.name, "site_id": scope.site_id},
                )
            return {"siteId": scope.site_id}  # type: ignore[dict-item]
        if spec.scope == ScopeKind.COMPANY:
            if not scope.company_valid:
                raise ScopeError(
                    "Select a company before changing its sites",
                    detail={"collection": spec.name, "company_id": scope.company_id},
                )
            return {"companyId": scope.company_id}  # type: ignore[dict-item]
        return {}

    def _refuse(self, spec_name: str, operation: str, exc: ServiceError) -> Outcome:
        log = logger.error if isinstance(exc, RemoteError) else logger.info
        log(
            f"crud_{operation}_failed",
            collection=spec_name,
            error_code=exc.error_code,
            error=exc.message,
            site_id=self.resolver.site_id,
        )
        return Outcome.fail(exc.message, exc.error_code)

    def _insert(self, spec: CollectionSpec, record: Any) -> None:
        if spec.prepend_on_create:
            self.collections.prepend(spec.name, record)
        else:
            self.collections.append(spec.name, record)

    # -- reads -------------------------------------------------------------

    def list(self, name: str) -> List[Any]:
        """Current in-memory contents; never fetches."""
        return self.collections.as_dicts(self.registry.get(name).name)

    # -- create ------------------------------------------------------------

    async def create(
        self,
        name: str,
        draft: Mapping[str, Any],
        *,
        scope: Optional[TenantScope] = None,
        apply: bool = True,
    ) -> Outcome:
        """Create a record remotely and add the confirmed record in memory.

        ``scope`` pins the tenant the record is tagged with (defaults to the
        active one); ``apply=False`` leaves the in-memory collection alone.
        """
        try:
            spec = self.registry.get(name)
            if spec.is_name_list:
                value = draft.get("value", draft.get("name")) if isinstance(draft, Mapping) else draft
                return await self.site_settings.add(spec.name, value)
            if spec.local_only:
                return self._create_local(spec, draft)
            token = self._require_token()
            scope = scope or self.resolver.current
            tags = self._require_scope(spec, scope)
            record = await self._remote_create(spec, token, draft, tags)
        except ServiceError as exc:
            return self._refuse(name, "create", exc)
        if apply and self._apply_created(spec, record, scope):
            await self.site_settings.apply_links(spec, record.payload)
        logger.info("crud_created", collection=spec.name, identity=record.identity.value)
        return Outcome.ok(record=record.to_dict())

    async def _remote_create(
        self,
        spec: CollectionSpec,
        token: str,
        draft: Mapping[str, Any],
        tags: Mapping[str, str],
    ) -> ConfirmedRecord:
        payload = {**spec.create_defaults, **strip_identity(draft), **tags}
        raw = await self.remote.entity(spec).create(token, payload)
        record = record_from_remote(raw)
        if record is None:
            raise RemoteError(error_message(raw, f"Failed to create {spec.entity}"))
        return record

    def _apply_created(self, spec: CollectionSpec, record: ConfirmedRecord, scope: TenantScope) -> bool:
        if not self.resolver.is_current(scope.generation):
            logger.info("crud_result_out_of_scope", collection=spec.name)
            return False
        self._insert(spec, record)
        self.mirror.persist(spec)
        return True

    def _create_local(self, spec: CollectionSpec, draft: Mapping[str, Any]) -> Outcome:
        site_id = self.resolver.site_id
        if not site_id:
            raise ScopeError("Select a site before saving local data")
        record = PendingRecord(
            identity=LocalIdentity(self.collections.next_local_id()),
            payload={**strip_identity(draft), "siteId": site_id},
            site_id=site_id,
        )
        self._insert(spec, record)
        self.mirror.persist(spec)
        return Outcome.ok(record=record.to_dict())

    async def upsert(self, name: str, draft: Mapping[str, Any], match_field: str) -> Outcome:
        """Create through the remote store, replacing the record with the same ``match_field``.

        The remote endpoint is expected to upsert; locally the confirmed record
        takes the position of the matching one or is appended.
        """
        scope = self.resolver.current
        outcome = await self.create(name, draft, scope=scope, apply=False)
        if not outcome.success or not self.resolver.is_current(scope.generation):
            return outcome
        spec = self.registry.get(name)
        record = record_from_remote(outcome.record)
        if record is None:
            return Outcome.fail(f"Failed to save {spec.entity}", "remote_error")
        key = draft.get(match_field)
        for item in self.collections.get(spec.name):
            payload = getattr(item, "payload", {})
            if payload.get(match_field) == key and payload.get("siteId") == scope.site_id:
                self.collections.replace_at(spec.name, item.identity, record)  # type: ignore[union-attr]
                break
        else:
            self.collections.append(spec.name, record)
        return outcome

    # -- staging of pending records ----------------------------------------

    def stage(self, name: str, draft: Mapping[str, Any]) -> Outcome:
        """Hold a draft locally as a pending record until it is promoted."""
        try:
            spec = self.registry.get(name)
            if not spec.remote_backed:
                raise ValidationError(f"{name} has no remote store to promote to")
        except ServiceError as exc:
            return self._refuse(name, "stage", exc)
        site_id = self.resolver.site_id
        record = PendingRecord(
            identity=LocalIdentity(self.collections.next_local_id()),
            payload=strip_identity(draft),
            site_id=site_id,
        )
        self._insert(spec, record)
        return Outcome.ok(record=record.to_dict())

    async def promote(self, name: str, identity: Any) -> Outcome:
        """Create a pending record remotely and swap in the confirmed record."""
        return await self.update(name, identity, {})

    # -- update ------------------------------------------------------------

    async def update(self, name: str, identity: Any, patch: Mapping[str, Any]) -> Outcome:
        try:
            spec = self.registry.get(name)
            target = self._resolve(name, identity)
            existing = self.collections.find(spec.name, target)
            if existing is None:
                raise NotFoundError(
                    f"{spec.entity} not found", detail={"collection": name, "identity": identity}
                )
            if spec.local_only:
                return self._update_local(spec, existing, patch)
            token = self._require_token()
            scope = self.resolver.current
            tags = self._require_scope(spec, scope)
            if isinstance(existing, PendingRecord):
                merged = {**existing.payload, **strip_identity(patch)}
                record = await self._remote_create(spec, token, merged, tags)
            else:
                record = await self._remote_update(spec, token, existing, patch)
        except ServiceError as exc:
            return self._refuse(name, "update", exc)
        if self.resolver.is_current(scope.generation):
            self.collections.replace_at(spec.name, target, record)
            self.mirror.persist(spec)
            await self.site_settings.apply_links(spec, record.payload)
        else:
            logger.info("crud_result_out_of_scope", collection=spec.name)
        return Outcome.ok(record=record.to_dict())

    async def _remote_update(
        self,
        spec: CollectionSpec,
        token: str,
        existing: ConfirmedRecord,
        patch: Mapping[str, Any],
    ) -> ConfirmedRecord:
        raw = await self.remote.entity(spec).update(
            token, existing.identity.value, strip_identity(patch)
        )
        record = record_from_remote(raw)
        if record is None:
            raise RemoteError(error_message(raw, f"Failed to update {spec.entity}"))
        return record

    def _update_local(
        self, spec: CollectionSpec, existing: Any, patch: Mapping[str, Any]
    ) -> Outcome:
        record = PendingRecord(
            identity=existing.identity,
            payload={**existing.payload, **strip_identity(patch)},
            site_id=existing.site_id,
        )
        self.collections.replace_at(spec.name, existing.identity, record)
        self.mirror.persist(spec)
        return Outcome.ok(record=record.to_dict())

    # -- delete ------------------------------------------------------------

    async def delete(self, name: str, identity: Any) -> Outcome:
        try:
            spec = self.registry.get(name)
            target = self._resolve(name, identity)
            existing = self.collections.find(spec.name, target)
            if existing is None:
                raise NotFoundError(
                    f"{spec.entity} not found", detail={"collection": name, "identity": identity}
                )
            if spec.local_only or isinstance(existing, PendingRecord):
                # Never reached the remote store
                self.collections.remove(spec.name, target)
                self.mirror.persist(spec)
                return Outcome.ok(record=existing.to_dict())
            token = self._require_token()
            await self.remote.entity(spec).remove(token, existing.identity.value)
        except ServiceError as exc:
            return self._refuse(name, "delete", exc)
        self.collections.remove(spec.name, target)
        self.mirror.persist(spec)
        logger.info("crud_deleted", collection=spec.name, identity=existing.identity.value)
        return Outcome.ok(record=existing.to_dict())

    def _resolve(self, name: str, identity: Any) -> Identity:
        try:
            return resolve_identity(identity)
        except ValueError as exc:
            raise ValidationError(str(exc), detail={"collection": name}) from exc
