"""Remote store capability interfaces and their HTTP / in-process renditions.

Every entity exposes the same four operations. Responses are returned as
decoded JSON, error shapes included; interpreting them is the caller's job.
Transport failures raise :class:`RemoteError`.
"""

from __future__ import annotations

import asyncio
import copy
import secrets
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

import httpx

from sitecache.logging import get_logger
from sitecache.service.errors import RemoteError
from sitecache.service.registry import CollectionSpec, ScopeKind

logger = get_logger(__name__)


class EntityRemote(Protocol):
    async def list(self, token: str, scope: Mapping[str, str]) -> Any: ...

    async def create(self, token: str, payload: Mapping[str, Any]) -> Any: ...

    async def update(self, token: str, identity: str, payload: Mapping[str, Any]) -> Any: ...

    async def remove(self, token: str, identity: str) -> Any: ...


class SiteSettingsRemote(Protocol):
    async def get(self, token: str, site_id: str) -> Any: ...

    async def update(self, token: str, site_id: str, patch: Mapping[str, Any]) -> Any: ...


class AuthRemote(Protocol):
    async def login(self, username: str, password: str) -> Any: ...

    async def register(self, payload: Mapping[str, Any]) -> Any: ...

    async def verify(self, token: str) -> Any: ...


class RemoteStore(Protocol):
    def entity(self, spec: CollectionSpec) -> EntityRemote: ...

    @property
    def site_settings(self) -> SiteSettingsRemote: ...

    @property
    def auth(self) -> AuthRemote: ...

    async def aclose(self) -> None: ...


def scope_params(spec: CollectionSpec, scope: Mapping[str, str]) -> Dict[str, str]:
    params = dict(scope)
    params.update(spec.list_params)
    return params


class HttpRemoteStore:
    """Remote store reached over HTTP with a bearer credential per call."""

    def __init__(self, base_url: str, *, timeout: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/") + "/api"
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None
        self._entities: Dict[str, HttpEntityRemote] = {}
        self._site_settings = HttpSiteSettingsRemote(self)
        self._auth = HttpAuthRemote(self)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
            )
        return self._client

    async def request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        params: Optional[Mapping[str, str]] = None,
        json: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            response = await client.request(
                method, f"/{path}", params=params or None, json=json, headers=headers
            )
        except httpx.TimeoutException as e:
            logger.error("remote_timeout", method=method, path=path, error=str(e))
            raise RemoteError("Remote store timed out") from e
        except httpx.ConnectError as e:
            logger.error(
                "remote_connect_error",
                method=method,
                path=path,
                api_base=self.base_url,
                error=str(e),
            )
            raise RemoteError("Failed to connect to remote store") from e
        except httpx.HTTPError as e:
            logger.error("remote_transport_error", method=method, path=path, error=str(e))
            raise RemoteError(f"Remote request failed: {e}") from e
        try:
            return response.json()
        except ValueError as e:
            logger.warning(
                "remote_non_json_response",
                method=method,
                path=path,
                status_code=response.status_code,
            )
            raise RemoteError(
                f"Remote store returned a non-JSON response ({response.status_code})"
            ) from e

    def entity(self, spec: CollectionSpec) -> "HttpEntityRemote":
        if spec.resource is None:
            raise ValueError(f"{spec.name} has no remote resource")
        if spec.name not in self._entities:
            self._entities[spec.name] = HttpEntityRemote(self, spec)
        return self._entities[spec.name]

    @property
    def site_settings(self) -> "HttpSiteSettingsRemote":
        return self._site_settings

    @property
    def auth(self) -> "HttpAuthRemote":
        return self._auth

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class HttpEntityRemote:
    def __init__(self, store: HttpRemoteStore, spec: CollectionSpec) -> None:
        self.store = store
        self.spec = spec
        self.resource = spec.resource or spec.name

    async def list(self, token: str, scope: Mapping[str, str]) -> Any:
        params = scope_params(self.spec, scope)
        path = self.resource
        if self.spec.site_in_path and "siteId" in params:
            path = f"{path}/{params.pop('siteId')}"
        return await self.store.request("GET", path, token=token, params=params)

    async def create(self, token: str, payload: Mapping[str, Any]) -> Any:
        return await self.store.request("POST", self.resource, token=token, json=payload)

    async def update(self, token: str, identity: str, payload: Mapping[str, Any]) -> Any:
        return await self.store.request(
            "PUT", f"{self.resource}/{identity}", token=token, json=payload
        )

    async def remove(self, token: str, identity: str) -> Any:
        return await self.store.request("DELETE", f"{self.resource}/{identity}", token=token)


class HttpSiteSettingsRemote:
    def __init__(self, store: HttpRemoteStore) -> None:
        self.store = store

    async def get(self, token: str, site_id: str) -> Any:
        return await self.store.request(
            "GET", "site-settings", token=token, params={"siteId": site_id}
        )

    async def update(self, token: str, site_id: str, patch: Mapping[str, Any]) -> Any:
        return await self.store.request(
            "PUT", "site-settings", token=token, params={"siteId": site_id}, json=patch
        )


class HttpAuthRemote:
    def __init__(self, store: HttpRemoteStore) -> None:
        self.store = store

    async def login(self, username: str, password: str) -> Any:
        return await self.store.request(
            "POST", "auth/login", json={"username": username, "password": password}
        )

    async def register(self, payload: Mapping[str, Any]) -> Any:
        return await self.store.request("POST", "auth/register", json=payload)

    async def verify(self, token: str) -> Any:
        return await self.store.request("GET", "auth/verify", token=token)


def new_object_id() -> str:
    return secrets.token_hex(12)


class MemoryRemoteStore:
    """In-process remote store with the same response shapes as the HTTP API.

    ``fail(resource, operation, error)`` makes the next matching call raise
    ``error`` (an exception) or return it (an error shape). ``hold(resource)``
    returns an event that list calls for ``resource`` wait on until set.
    """

    def __init__(self) -> None:
        self.resources: Dict[str, List[Dict[str, Any]]] = {}
        self.settings: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self._failures: Dict[Tuple[str, str], List[Any]] = {}
        self._holds: Dict[str, asyncio.Event] = {}
        self._entities: Dict[str, MemoryEntityRemote] = {}
        self._users: Dict[str, Dict[str, Any]] = {}
        self._tokens: Dict[str, str] = {}
        self._site_settings = MemorySiteSettingsRemote(self)
        self._auth = MemoryAuthRemote(self)

    def seed(self, resource: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        stored = []
        for raw in records:
            record = dict(raw)
            record.setdefault("_id", new_object_id())
            stored.append(record)
        self.resources.setdefault(resource, []).extend(stored)
        return copy.deepcopy(stored)

    def records(self, resource: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self.resources.get(resource, []))

    def fail(self, resource: str, operation: str, error: Any) -> None:
        self._failures.setdefault((resource, operation), []).append(error)

    def hold(self, resource: str) -> asyncio.Event:
        event = asyncio.Event()
        self._holds[resource] = event
        return event

    def release(self, resource: str) -> None:
        event = self._holds.pop(resource, None)
        if event is not None:
            event.set()

    async def _enter(self, resource: str, operation: str, detail: Dict[str, Any]) -> Any:
        self.calls.append((operation, resource, detail))
        # Yield so concurrent callers interleave at the remote boundary
        await asyncio.sleep(0)
        if operation == "list" and resource in self._holds:
            await self._holds[resource].wait()
        queued = self._failures.get((resource, operation))
        if queued:
            error = queued.pop(0)
            if isinstance(error, BaseException):
                raise error
            return error
        return None

    def call_count(self, operation: str, resource: Optional[str] = None) -> int:
        return sum(
            1
            for op, res, _ in self.calls
            if op == operation and (resource is None or res == resource)
        )

    def entity(self, spec: CollectionSpec) -> "MemoryEntityRemote":
        if spec.resource is None:
            raise ValueError(f"{spec.name} has no remote resource")
        if spec.name not in self._entities:
            self._entities[spec.name] = MemoryEntityRemote(self, spec)
        return self._entities[spec.name]

    @property
    def site_settings(self) -> "MemorySiteSettingsRemote":
        return self._site_settings

    @property
    def auth(self) -> "MemoryAuthRemote":
        return self._auth

    def authorized(self, token: Optional[str]) -> bool:
        return bool(token) and token in self._tokens

    async def aclose(self) -> None:
        return None


class MemoryEntityRemote:
    def __init__(self, store: MemoryRemoteStore, spec: CollectionSpec) -> None:
        self.store = store
        self.spec = spec
        self.resource = spec.resource or spec.name

    def _bucket(self) -> List[Dict[str, Any]]:
        return self.store.resources.setdefault(self.resource, [])

    async def list(self, token: str, scope: Mapping[str, str]) -> Any:
        params = scope_params(self.spec, scope)
        injected = await self.store._enter(self.resource, "list", dict(params))
        if injected is not None:
            return injected
        if not self.store.authorized(token):
            return {"message": "Not authorized"}
        if self.spec.scope != ScopeKind.GLOBAL and not params:
            return {"message": "siteId is required"}
        return [
            copy.deepcopy(record)
            for record in self._bucket()
            if all(record.get(key) == value for key, value in params.items())
        ]

    async def create(self, token: str, payload: Mapping[str, Any]) -> Any:
        injected = await self.store._enter(self.resource, "create", dict(payload))
        if injected is not None:
            return injected
        if not self.store.authorized(token):
            return {"message": "Not authorized"}
        record = {**copy.deepcopy(dict(payload)), "_id": new_object_id()}
        record.pop("id", None)
        self._bucket().append(record)
        return copy.deepcopy(record)

    async def update(self, token: str, identity: str, payload: Mapping[str, Any]) -> Any:
        injected = await self.store._enter(self.resource, "update", {"_id": identity})
        if injected is not None:
            return injected
        if not self.store.authorized(token):
            return {"message": "Not authorized"}
        for record in self._bucket():
            if record.get("_id") == identity:
                record.update(copy.deepcopy(dict(payload)))
                record["_id"] = identity
                record.pop("id", None)
                return copy.deepcopy(record)
        return {"message": f"{self.spec.entity} not found"}

    async def remove(self, token: str, identity: str) -> Any:
        injected = await self.store._enter(self.resource, "remove", {"_id": identity})
        if injected is not None:
            return injected
        if not self.store.authorized(token):
            return {"message": "Not authorized"}
        bucket = self._bucket()
        for index, record in enumerate(bucket):
            if record.get("_id") == identity:
                bucket.pop(index)
                return {"message": "Deleted"}
        return {"message": f"{self.spec.entity} not found"}


class MemorySiteSettingsRemote:
    def __init__(self, store: MemoryRemoteStore) -> None:
        self.store = store

    async def get(self, token: str, site_id: str) -> Any:
        injected = await self.store._enter("site-settings", "get", {"siteId": site_id})
        if injected is not None:
            return injected
        if not self.store.authorized(token):
            return {"message": "Not authorized"}
        return copy.deepcopy(self.store.settings.get(site_id, {"siteId": site_id}))

    async def update(self, token: str, site_id: str, patch: Mapping[str, Any]) -> Any:
        injected = await self.store._enter("site-settings", "update", dict(patch))
        if injected is not None:
            return injected
        if not self.store.authorized(token):
            return {"message": "Not authorized"}
        settings = self.store.settings.setdefault(site_id, {"siteId": site_id})
        settings.update(copy.deepcopy(dict(patch)))
        return copy.deepcopy(settings)


class MemoryAuthRemote:
    def __init__(self, store: MemoryRemoteStore) -> None:
        self.store = store

    def _issue(self, user: Dict[str, Any]) -> Dict[str, Any]:
        token = secrets.token_urlsafe(24)
        self.store._tokens[token] = user["_id"]
        public = {k: v for k, v in user.items() if k != "password"}
        return {**public, "token": token}

    async def login(self, username: str, password: str) -> Any:
        injected = await self.store._enter("auth", "login", {"username": username})
        if injected is not None:
            return injected
        user = self.store._users.get(username)
        if user is None or user.get("password") != password:
            return {"message": "Invalid credentials"}
        return self._issue(user)

    async def register(self, payload: Mapping[str, Any]) -> Any:
        injected = await self.store._enter("auth", "register", {})
        if injected is not None:
            return injected
        username = payload.get("username") or payload.get("email")
        if not username:
            return {"message": "username is required"}
        if username in self.store._users:
            return {"message": "User already exists"}
        user = {**dict(payload), "username": username, "_id": new_object_id()}
        user.setdefault("role", "Owner")
        self.store._users[username] = user
        return self._issue(user)

    async def verify(self, token: str) -> Any:
        injected = await self.store._enter("auth", "verify", {})
        if injected is not None:
            return injected
        user_id = self.store._tokens.get(token)
        for user in self.store._users.values():
            if user["_id"] == user_id:
                return {k: v for k, v in user.items() if k != "password"}
        return {"message": "Invalid token"}

    def issue_token(self, username: str, password: str = "secret") -> str:
        """Register ``username`` if needed and return a fresh bearer token."""
        user = self.store._users.get(username)
        if user is None:
            user = {"username": username, "password": password, "_id": new_object_id()}
            user["role"] = "Owner"
            self.store._users[username] = user
        return self._issue(user)["token"]
