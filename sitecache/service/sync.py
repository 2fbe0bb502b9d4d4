from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from sitecache.logging import get_logger, log_refresh_report, set_sync_cycle_id
from sitecache.service.errors import RemoteError
from sitecache.service.migration import MigrationEngine
from sitecache.service.mirror import LocalMirror
from sitecache.service.registry import CollectionRegistry, CollectionSpec, ScopeKind
from sitecache.service.remote import RemoteStore
from sitecache.service.repair import RepairRoutine
from sitecache.service.scope import ScopeResolver
from sitecache.service.site_settings import SiteSettingsService
from sitecache.storage.collections import CollectionStore
from sitecache.storage.models import (
    ConfirmedRecord,
    TenantScope,
    record_from_remote,
)

logger = get_logger(__name__)

DEFAULT_REFRESH_INTERVAL_SECONDS = 30.0
SITE_SETTINGS = "site_settings"

TokenProvider = Callable[[], Optional[str]]


@dataclass
class RefreshReport:
    """What one refresh pass did to each collection it considered."""

    cycle_id: str
    generation: int
    applied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    stale: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    migrated: Dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "generation": self.generation,
            "applied": list(self.applied),
            "skipped": list(self.skipped),
            "stale": list(self.stale),
            "failed": list(self.failed),
            "migrated": dict(self.migrated),
        }


class RemoteSyncEngine:
    """Refreshes collections of the active scope from the remote store.

    Each fetch captures the scope generation when issued; its result is
    applied only if that generation is still current. Collections replace
    independently; there is no cross-collection transaction.
    """

    def __init__(
        self,
        registry: CollectionRegistry,
        collections: CollectionStore,
        resolver: ScopeResolver,
        remote: RemoteStore,
        site_settings: SiteSettingsService,
        migration: MigrationEngine,
        mirror: LocalMirror,
        token_provider: TokenProvider,
        *,
        interval: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
        repair: Optional[RepairRoutine] = None,
    ) -> None:
        self.registry = registry
        self.collections = collections
        self.resolver = resolver
        self.remote = remote
        self.site_settings = site_settings
        self.migration = migration
        self.mirror = mirror
        self.token_provider = token_provider
        self.interval = interval
        self.repair = repair
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    # -- scope qualification -----------------------------------------------

    @staticmethod
    def qualifier(spec: CollectionSpec, scope: TenantScope) -> Optional[Dict[str, str]]:
        """List qualifier for ``spec`` under ``scope``; None when it cannot be fetched."""
        if spec.scope == ScopeKind.GLOBAL:
            return {}
        if spec.scope == ScopeKind.COMPANY:
            return {"companyId": scope.company_id} if scope.company_valid else None  # type: ignore[dict-item]
        if scope.site_valid:
            return {"siteId": scope.site_id}  # type: ignore[dict-item]
        if spec.company_fallback and scope.company_valid:
            return {"companyId": scope.company_id}  # type: ignore[dict-item]
        return None

    # -- refresh -----------------------------------------------------------

    async def refresh_all(self) -> RefreshReport:
        """Re-fetch every site-scoped collection for the scope active now."""
        scope = self.resolver.current
        report = RefreshReport(cycle_id=set_sync_cycle_id(), generation=scope.generation)
        token = self.token_provider()
        targets = self.registry.site_remote()
        if not token:
            report.skipped.extend(spec.name for spec in targets)
            logger.info("refresh_skipped_no_session")
            return report

        pending: List[Awaitable[None]] = []
        for spec in targets:
            qualifier = self.qualifier(spec, scope)
            if qualifier is None:
                report.skipped.append(spec.name)
                continue
            pending.append(self._refresh_collection(spec, token, scope, qualifier, report))
        if scope.site_valid:
            pending.append(self._refresh_site_settings(token, scope, report))
        else:
            report.skipped.append(SITE_SETTINGS)
        await asyncio.gather(*pending)
        log_refresh_report(report, logger)
        return report

    async def refresh_collection(self, name: str) -> RefreshReport:
        """Re-fetch a single collection for the active scope."""
        spec = self.registry.get(name)
        scope = self.resolver.current
        report = RefreshReport(cycle_id=set_sync_cycle_id(), generation=scope.generation)
        token = self.token_provider()
        qualifier = self.qualifier(spec, scope) if spec.remote_backed else None
        if not token or qualifier is None:
            report.skipped.append(spec.name)
            return report
        await self._refresh_collection(spec, token, scope, qualifier, report)
        return report

    async def _fetch(
        self,
        spec: CollectionSpec,
        token: str,
        scope: TenantScope,
        qualifier: Dict[str, str],
        report: RefreshReport,
    ) -> Optional[List[ConfirmedRecord]]:
        try:
            raw = await self.remote.entity(spec).list(token, qualifier)
        except RemoteError as exc:
            logger.warning(
                "refresh_fetch_failed",
                collection=spec.name,
                site_id=scope.site_id,
                error=exc.message,
            )
            report.failed.append(spec.name)
            return None
        if not isinstance(raw, list):
            # Error shapes leave the collection as it was
            logger.info(
                "refresh_non_list_response",
                collection=spec.name,
                site_id=scope.site_id,
                response_type=type(raw).__name__,
            )
            report.failed.append(spec.name)
            return None
        if not self.resolver.is_current(scope.generation):
            logger.info(
                "refresh_result_stale",
                collection=spec.name,
                captured_generation=scope.generation,
                current_generation=self.resolver.generation,
            )
            report.stale.append(spec.name)
            return None
        return [
            record
            for record in (record_from_remote(item) for item in raw if spec.accepts(item))
            if record is not None
        ]

    async def _refresh_collection(
        self,
        spec: CollectionSpec,
        token: str,
        scope: TenantScope,
        qualifier: Dict[str, str],
        report: RefreshReport,
    ) -> None:
        if spec.migratable and scope.site_valid:
            # Overlapping passes take turns; a later one fetches what the
            # earlier one uploaded and finds the batch sealed
            async with self.migration.lock_for(spec, scope.site_id or ""):
                await self._apply_collection(spec, token, scope, qualifier, report)
        else:
            await self._apply_collection(spec, token, scope, qualifier, report)

    async def _apply_collection(
        self,
        spec: CollectionSpec,
        token: str,
        scope: TenantScope,
        qualifier: Dict[str, str],
        report: RefreshReport,
    ) -> None:
        records = await self._fetch(spec, token, scope, qualifier, report)
        if records is None:
            return
        self.collections.replace(spec.name, records)
        report.applied.append(spec.name)
        if spec.migratable and scope.site_valid:
            await self._migrate_if_needed(spec, scope, records, report)
        if self.repair is not None and spec.name in self.repair.record_collections:
            self.repair.repair_records(spec.name)

    async def _migrate_if_needed(
        self,
        spec: CollectionSpec,
        scope: TenantScope,
        records: List[ConfirmedRecord],
        report: RefreshReport,
    ) -> None:
        site_id = scope.site_id or ""
        if not self.migration.should_run(spec, site_id, records):
            self.migration.observe(spec, site_id, records)
            return
        result = await self.migration.migrate(spec, scope)
        report.migrated[spec.name] = len(result.migrated)
        if result.migrated and self.resolver.is_current(scope.generation):
            self.collections.replace(spec.name, [*records, *result.migrated])

    async def _refresh_site_settings(
        self, token: str, scope: TenantScope, report: RefreshReport
    ) -> None:
        try:
            settings = await self.site_settings.fetch(token, scope.site_id)  # type: ignore[arg-type]
        except RemoteError as exc:
            logger.warning(
                "refresh_site_settings_failed", site_id=scope.site_id, error=exc.message
            )
            report.failed.append(SITE_SETTINGS)
            return
        if not self.resolver.is_current(scope.generation):
            report.stale.append(SITE_SETTINGS)
            return
        self.site_settings.apply_remote(settings)
        report.applied.append(SITE_SETTINGS)

    async def refresh_tenants(self) -> RefreshReport:
        """Load companies and sites, keeping the active ones when still listed."""
        report = RefreshReport(
            cycle_id=set_sync_cycle_id(), generation=self.resolver.generation
        )
        token = self.token_provider()
        if not token:
            report.skipped.extend(["companies", "sites"])
            return report

        companies = await self._refresh_tenant_list("companies", token, report)
        if companies:
            ids = [record.identity.value for record in companies]
            if self.resolver.company_id not in ids:
                self.resolver.set_company(ids[0])

        sites = await self._refresh_tenant_list("sites", token, report)
        if sites:
            ids = [record.identity.value for record in sites]
            if self.resolver.site_id not in ids:
                self.resolver.set_site(ids[0])
        log_refresh_report(report, logger)
        return report

    async def _refresh_tenant_list(
        self, name: str, token: str, report: RefreshReport
    ) -> Optional[List[ConfirmedRecord]]:
        spec = self.registry.get(name)
        scope = self.resolver.current
        qualifier = self.qualifier(spec, scope)
        if qualifier is None:
            report.skipped.append(name)
            return None
        records = await self._fetch(spec, token, scope, qualifier, report)
        if records is None:
            return None
        self.collections.replace(name, records)
        self.mirror.persist(spec)
        report.applied.append(name)
        return records

    # -- triggers ----------------------------------------------------------

    def schedule_refresh(self, reason: str) -> Optional[asyncio.Task]:
        """Start a refresh pass without waiting for it."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("refresh_not_scheduled", reason=reason)
            return None
        task = loop.create_task(self._guarded_refresh(reason))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _guarded_refresh(self, reason: str) -> Optional[RefreshReport]:
        try:
            return await self.refresh_all()
        except Exception as exc:
            logger.error(
                "refresh_pass_error",
                reason=reason,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

    def notify_focus(self) -> Optional[asyncio.Task]:
        """Host regained foreground focus."""
        return self.schedule_refresh("focus")

    async def on_scope_change(self, previous: TenantScope, current: TenantScope) -> None:
        if current.site_valid and current.site_id != previous.site_id:
            await self._guarded_refresh("scope")

    async def start(self) -> None:
        """Start the refresh timer."""
        if self._running:
            logger.warning("sync_engine_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("sync_engine_started", interval=self.interval)

    async def stop(self) -> None:
        """Stop the refresh timer and wait for passes already started."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        logger.info("sync_engine_stopped")

    @property
    def running(self) -> bool:
        return self._running

    async def _run_loop(self) -> None:
        # Ticks are independent triggers: a slow pass does not delay the next one
        while self._running:
            await asyncio.sleep(self.interval)
            self.schedule_refresh("timer")

    async def drain(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
