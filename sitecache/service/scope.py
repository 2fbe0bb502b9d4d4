from __future__ import annotations

import asyncio
import inspect
import threading
from typing import Any, Callable, List, Optional, Set

from sitecache.logging import get_logger
from sitecache.storage.kv import KeyValueStore
from sitecache.storage.models import TenantScope

logger = get_logger(__name__)

ACTIVE_SITE_KEY = "vini_active_site"
ACTIVE_COMPANY_KEY = "vini_active_company_id"

ScopeObserver = Callable[[TenantScope, TenantScope], Any]


class ScopeResolver:
    """Holds the active (company, site) pair and its generation counter.

    ``current`` is read at call time by timers and focus handlers so they always
    observe the latest scope, never one captured when they were registered.
    Every effective change bumps the generation; fetches compare the generation
    they captured against :meth:`is_current` before applying results.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        company_id: Optional[str] = None,
        site_id: Optional[str] = None,
    ) -> None:
        self.kv = kv
        self._lock = threading.RLock()
        self._observers: List[ScopeObserver] = []
        self._tasks: Set[asyncio.Task] = set()
        if company_id is None:
            company_id = self._load(ACTIVE_COMPANY_KEY)
        if site_id is None:
            site_id = self._load(ACTIVE_SITE_KEY)
        self._current = TenantScope(company_id=company_id, site_id=site_id, generation=0)

    def _load(self, key: str) -> Optional[str]:
        value = self.kv.get(key)
        if value is None:
            return None
        return str(value)

    def _persist(self, key: str, value: Optional[str]) -> None:
        if value is None:
            self.kv.delete(key)
        else:
            self.kv.set(key, value)

    @property
    def current(self) -> TenantScope:
        return self._current

    @property
    def site_id(self) -> Optional[str]:
        return self._current.site_id

    @property
    def company_id(self) -> Optional[str]:
        return self._current.company_id

    @property
    def generation(self) -> int:
        return self._current.generation

    def is_current(self, generation: int) -> bool:
        return self._current.generation == generation

    def subscribe(self, observer: ScopeObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def set_site(self, site_id: Optional[str]) -> TenantScope:
        with self._lock:
            previous = self._current
            if previous.site_id == site_id:
                return previous
            self._current = TenantScope(
                company_id=previous.company_id,
                site_id=site_id,
                generation=previous.generation + 1,
            )
            self._persist(ACTIVE_SITE_KEY, site_id)
        logger.info("scope_site_changed", previous=previous.site_id, site_id=site_id)
        self._notify(previous, self._current)
        return self._current

    def set_company(self, company_id: Optional[str]) -> TenantScope:
        """Activate ``company_id``; the active site is cleared."""
        with self._lock:
            previous = self._current
            if previous.company_id == company_id:
                return previous
            self._current = TenantScope(
                company_id=company_id,
                site_id=None,
                generation=previous.generation + 1,
            )
            self._persist(ACTIVE_COMPANY_KEY, company_id)
            self._persist(ACTIVE_SITE_KEY, None)
        logger.info(
            "scope_company_changed", previous=previous.company_id, company_id=company_id
        )
        self._notify(previous, self._current)
        return self._current

    def clear(self) -> TenantScope:
        with self._lock:
            previous = self._current
            self._current = TenantScope(generation=previous.generation + 1)
            self._persist(ACTIVE_COMPANY_KEY, None)
            self._persist(ACTIVE_SITE_KEY, None)
        self._notify(previous, self._current)
        return self._current

    def _notify(self, previous: TenantScope, current: TenantScope) -> None:
        for observer in list(self._observers):
            result = observer(previous, current)
            if inspect.isawaitable(result):
                self._schedule(result)

    def _schedule(self, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the observer reruns on the next explicit refresh
            logger.debug("scope_observer_deferred")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = loop.create_task(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for observer tasks scheduled by earlier scope changes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
