from __future__ import annotations

import json
from typing import Any, List

from redis import Redis
from redis.exceptions import RedisError

from sitecache.logging import get_logger

logger = get_logger(__name__)


class RedisKeyValueStore:
    """Key-value store kept in Redis under a namespace prefix.

    Uses a synchronous client: the cache reads local state inline, outside the
    remote-call suspension points.
    """

    def __init__(
        self, redis_url: str, *, namespace: str = "sitecache", socket_timeout: float = 5.0
    ) -> None:
        self.redis_url = redis_url
        self.namespace = namespace
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before using it as the local store."""
        self.client.ping()

    def _key(self, key: str) -> str:
        return f"{self.namespace}:kv:{key}"

    def get(self, key: str, default: Any = None) -> Any:
        try:
            raw = self.client.get(self._key(key))
        except RedisError as exc:
            logger.error("kv_redis_read_failed", key=key, error=str(exc))
            return default
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            logger.error("kv_decode_failed", key=key, error=str(exc))
            return default

    def set(self, key: str, value: Any) -> bool:
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as exc:
            logger.error("kv_write_failed", key=key, error=str(exc))
            return False
        try:
            self.client.set(self._key(key), encoded)
        except RedisError as exc:
            logger.error("kv_redis_write_failed", key=key, error=str(exc))
            return False
        return True

    def delete(self, key: str) -> bool:
        try:
            return bool(self.client.delete(self._key(key)))
        except RedisError as exc:
            logger.error("kv_redis_delete_failed", key=key, error=str(exc))
            return False

    def keys(self, prefix: str = "") -> List[str]:
        strip = len(self._key(""))
        try:
            found = [k[strip:] for k in self.client.scan_iter(match=f"{self._key(prefix)}*")]
        except RedisError as exc:
            logger.error("kv_redis_scan_failed", prefix=prefix, error=str(exc))
            return []
        return sorted(found)

    def close(self) -> None:
        self.client.close()
