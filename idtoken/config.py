from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the token manager and its backing store."""

    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_socket_timeout: float = env_field(
        5.0,
        "REDIS_SOCKET_TIMEOUT",
        description="Socket and connect timeout for Redis connections, in seconds",
    )
    token_namespace: str = env_field(
        "token",
        "TOKEN_NAMESPACE",
        description="Key prefix shared by the forward and reverse token mappings",
    )
    token_expire_seconds: int = env_field(
        7 * 24 * 60 * 60,
        "TOKEN_EXPIRE_SECONDS",
        description="Default token TTL used when create() is given no expiry",
    )
    token_repeatable: bool = env_field(
        False,
        "TOKEN_REPEATABLE",
        description="Allow several live tokens per identifier",
    )
    token_disposable: bool = env_field(
        False,
        "TOKEN_DISPOSABLE",
        description="Consume tokens on their first successful verification",
    )
    token_operation_timeout: float | None = env_field(
        None,
        "TOKEN_OPERATION_TIMEOUT",
        description="Deadline applied to each store call, in seconds",
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors (sync Redis client, runtime resets).",
    )

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

    @field_validator("token_namespace")
    @classmethod
    def _validate_namespace(cls, value: str) -> str:
        if not value:
            raise ValueError("token namespace must not be empty")
        return value

    @field_validator("token_expire_seconds")
    @classmethod
    def _validate_expire(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("token expiry must be a positive number of seconds")
        return value

    @field_validator("token_operation_timeout", mode="before")
    @classmethod
    def _blank_timeout_is_none(cls, value: Any) -> Any:
        # An empty env var means "no deadline"
        if value == "":
            return None
        return value


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
