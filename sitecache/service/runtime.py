from __future__ import annotations

import threading
from typing import Any, Optional
from urllib.parse import urlparse, urlunparse

from redis.exceptions import RedisError

from sitecache.config import KVBackend, Settings, get_settings, reset_settings_cache
from sitecache.logging import get_logger
from sitecache.service.auth import AuthService
from sitecache.service.crud import CrudFacade
from sitecache.service.migration import MigrationEngine
from sitecache.service.mirror import LocalMirror
from sitecache.service.registry import CollectionRegistry, ScopeKind
from sitecache.service.remote import HttpRemoteStore, MemoryRemoteStore, RemoteStore
from sitecache.service.repair import RepairRoutine
from sitecache.service.scope import ScopeResolver
from sitecache.service.site_settings import SiteSettingsService
from sitecache.service.sync import RemoteSyncEngine, TokenProvider
from sitecache.storage.collections import CollectionStore
from sitecache.storage.kv import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from sitecache.storage.models import Outcome, TenantScope
from sitecache.storage.redis_kv import RedisKeyValueStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    if parsed.username:
        netloc = f"{parsed.username}:***@{netloc}"
    else:
        netloc = f":***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class CacheSession:
    """Cache components living for one user session.

    Built on session start, discarded (collections emptied) when it ends.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        remote: RemoteStore,
        token_provider: TokenProvider,
        *,
        registry: Optional[CollectionRegistry] = None,
        refresh_interval: float = 30.0,
        run_repair: bool = True,
    ) -> None:
        self.kv = kv
        self.remote = remote
        self.token_provider = token_provider
        self.registry = registry or CollectionRegistry()
        self.collections = CollectionStore(self.registry.names())
        self.resolver = ScopeResolver(kv)
        self.mirror = LocalMirror(self.registry, self.collections, self.resolver, kv)
        self.site_settings = SiteSettingsService(
            self.registry,
            self.collections,
            self.resolver,
            self.mirror,
            remote.site_settings,
            token_provider,
        )
        self.crud = CrudFacade(
            self.registry,
            self.collections,
            self.resolver,
            remote,
            self.site_settings,
            self.mirror,
            token_provider,
        )
        self.migration = MigrationEngine(kv, self.crud)
        self.repair = RepairRoutine(self.registry, self.collections, kv)
        self.sync = RemoteSyncEngine(
            self.registry,
            self.collections,
            self.resolver,
            remote,
            self.site_settings,
            self.migration,
            self.mirror,
            token_provider,
            interval=refresh_interval,
            repair=self.repair if run_repair else None,
        )
        self._unsubscribe = self.resolver.subscribe(self._on_scope_change)

        self.mirror.load_tenants()
        if run_repair:
            self.repair.run(self.resolver.site_id)
        self.mirror.load_site(self.resolver.site_id)

    def _on_scope_change(self, previous: TenantScope, current: TenantScope) -> Any:
        if current.company_id != previous.company_id:
            self.collections.reset(
                spec.name for spec in self.registry.with_scope(ScopeKind.COMPANY)
            )
        if current.site_id != previous.site_id:
            self.collections.reset(spec.name for spec in self.registry.site_remote())
            self.mirror.load_site(current.site_id)
        return self.sync.on_scope_change(previous, current)

    async def start(self, *, polling: bool = True) -> None:
        """Load tenants, refresh the active scope once and start the timer."""
        site_before = self.resolver.site_id
        await self.sync.refresh_tenants()
        await self.resolver.drain()
        if self.resolver.site_id == site_before and self.resolver.current.site_valid:
            await self.sync.refresh_all()
        if polling:
            await self.sync.start()

    async def close(self) -> None:
        await self.sync.stop()
        await self.resolver.drain()
        self._unsubscribe()
        self.collections.reset_all()


def build_kv(settings: Settings) -> KeyValueStore:
    if settings.kv_backend == KVBackend.MEMORY:
        return MemoryKeyValueStore()
    if settings.kv_backend == KVBackend.REDIS:
        try:
            store = RedisKeyValueStore(
                settings.redis_url,
                namespace=settings.kv_namespace,
                socket_timeout=settings.request_timeout_seconds,
            )
            store.verify_connection()
            return store
        except RedisError as exc:
            if not settings.test_mode:
                raise RuntimeError(
                    "Redis is configured as the local store but is unreachable; "
                    "start Redis or set KV_BACKEND=file."
                ) from exc
            logger.warning(
                "redis_kv_disabled_fallback",
                redis_url=_mask_url_password(settings.redis_url),
                error=str(exc),
                mode="TEST_MODE",
            )
            return MemoryKeyValueStore()
    return FileKeyValueStore(settings.state_dir)


def build_remote(settings: Settings) -> RemoteStore:
    if settings.use_memory_remote:
        return MemoryRemoteStore()
    return HttpRemoteStore(settings.api_base_url, timeout=settings.request_timeout_seconds)


class Runtime:
    """Composition root: settings, local store, remote store, auth and session."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        kv: Optional[KeyValueStore] = None,
        remote: Optional[RemoteStore] = None,
    ) -> None:
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            kv_backend=self.settings.kv_backend.value,
            use_memory_remote=self.settings.use_memory_remote,
            test_mode=self.settings.test_mode,
        )
        self.kv = kv if kv is not None else build_kv(self.settings)
        self.remote = remote if remote is not None else build_remote(self.settings)
        self.auth = AuthService(self.remote.auth, self.kv)
        self.registry = CollectionRegistry()
        self.session: Optional[CacheSession] = None

    def token(self) -> Optional[str]:
        return self.auth.bearer_token

    def require_session(self) -> CacheSession:
        if self.session is None:
            self.session = self._new_session()
        return self.session

    def _new_session(self) -> CacheSession:
        return CacheSession(
            self.kv,
            self.remote,
            self.token,
            registry=self.registry,
            refresh_interval=self.settings.refresh_interval_seconds,
            run_repair=self.settings.run_repair_on_start,
        )

    async def open_session(self, *, polling: bool = True) -> CacheSession:
        if self.session is not None:
            await self.session.close()
        self.session = self._new_session()
        logger.info(
            "session_started",
            authenticated=self.token() is not None,
            site_id=self.session.resolver.site_id,
        )
        await self.session.start(polling=polling)
        return self.session

    async def close_session(self) -> None:
        if self.session is None:
            return
        await self.session.close()
        self.session = None
        logger.info("session_ended")

    async def startup(self, *, polling: bool = True) -> CacheSession:
        await self.auth.restore()
        return await self.open_session(polling=polling)

    async def login(self, username: str, password: str, *, polling: bool = True) -> Outcome:
        outcome = await self.auth.login(username, password)
        if outcome.success:
            await self.open_session(polling=polling)
        return outcome

    async def signup(
        self, email: str, password: str, name: str = "User", *, polling: bool = True
    ) -> Outcome:
        outcome = await self.auth.signup(email, password, name)
        if outcome.success:
            await self.open_session(polling=polling)
        return outcome

    async def logout(self) -> Outcome:
        await self.close_session()
        return await self.auth.logout()

    async def shutdown(self) -> None:
        await self.close_session()
        await self.remote.aclose()
        if isinstance(self.kv, RedisKeyValueStore):
            self.kv.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and isinstance(runtime.kv, RedisKeyValueStore):
            try:
                runtime.kv.close()
            except RedisError:
                pass
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
