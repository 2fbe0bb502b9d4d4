from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator


class KVBackend(str, Enum):
    """Durable local storage backends for the persistent key-value store."""

    FILE = "file"
    REDIS = "redis"
    MEMORY = "memory"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the scoped cache and its collaborators."""

    api_base_url: str = env_field("http://localhost:5000", "API_BASE_URL")
    request_timeout_seconds: float = env_field(
        30.0,
        "REQUEST_TIMEOUT_SECONDS",
        description="Transport timeout for remote calls; the cache adds none of its own",
    )
    state_dir: str = env_field("/tmp/sitecache", "SITECACHE_STATE_DIR")
    kv_backend: KVBackend = env_field(KVBackend.FILE, "KV_BACKEND")
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    kv_namespace: str = env_field("sitecache", "KV_NAMESPACE")
    refresh_interval_seconds: float = env_field(
        30.0,
        "REFRESH_INTERVAL_SECONDS",
        description="Period of the background refresh timer",
    )
    use_memory_remote: bool = env_field(False, "USE_MEMORY_REMOTE")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow runtime resets and deterministic test behaviors.",
    )
    run_repair_on_start: bool = env_field(True, "RUN_REPAIR_ON_START")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("kv_backend")
    @classmethod
    def _validate_kv_backend(cls, value: KVBackend) -> KVBackend:
        return KVBackend(value)

    @field_validator("refresh_interval_seconds")
    @classmethod
    def _validate_refresh_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("refresh_interval_seconds must be positive")
        return value

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
