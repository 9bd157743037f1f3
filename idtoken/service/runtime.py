from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from idtoken.config import Settings, get_settings, reset_settings_cache
from idtoken.logging import get_logger
from idtoken.service.tokens import KeyValueStore, TokenManager
from idtoken.storage.memory import MemoryKeyValueStore
from idtoken.storage.redis_cache import RedisKeyValueStore, SyncRedisKeyValueStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask password in URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


def build_store(settings: Settings) -> KeyValueStore:
    """Pick the backing store for ``settings``.

    Redis is required unless TEST_MODE or ALLOW_REDIS_FALLBACK_DEV permits the
    in-memory fallback.
    """
    if settings.use_memory_store:
        logger.info("runtime_store_initialized", store_type="memory")
        return MemoryKeyValueStore()

    redis_error: Exception | None = None
    if settings.redis_url:
        try:
            # Use sync Redis client in test mode to avoid event loop issues
            if settings.test_mode:
                store = SyncRedisKeyValueStore(
                    settings.redis_url, socket_timeout=settings.redis_socket_timeout
                )
            else:
                store = RedisKeyValueStore(
                    settings.redis_url, socket_timeout=settings.redis_socket_timeout
                )
            store.verify_connection()
            logger.info(
                "runtime_store_initialized",
                store_type="redis",
                redis_url=_mask_url_password(settings.redis_url),
            )
            return store
        except Exception as exc:
            redis_error = exc

    if not settings.test_mode and not settings.allow_redis_fallback_dev:
        raise RuntimeError(
            "Redis is required for token storage; start Redis or set "
            "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
        ) from redis_error

    fallback_mode = "TEST_MODE" if settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
    logger.warning(
        "redis_disabled_fallback",
        redis_url=_mask_url_password(settings.redis_url),
        error=str(redis_error) if redis_error else "redis_url_missing",
        message=(
            f"Running without Redis under {fallback_mode}; tokens live in this "
            "process only and are lost on restart."
        ),
        mode=fallback_mode,
    )
    return MemoryKeyValueStore()


class Runtime:
    """Holds the shared store and token manager built from settings."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )
        self.store = build_store(self.settings)
        operation_timeout = self.settings.token_operation_timeout
        if operation_timeout is None:
            operation_timeout = getattr(self.store, "DEFAULT_OPERATION_TIMEOUT", None)
        self.tokens = TokenManager(
            self.store,
            namespace=self.settings.token_namespace,
            default_expire_seconds=self.settings.token_expire_seconds,
            repeatable=self.settings.token_repeatable,
            disposable=self.settings.token_disposable,
            operation_timeout=operation_timeout,
        )

    async def close(self) -> None:
        await self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Return the process-wide runtime, creating it on first use.

    Uses double-checked locking so the common path takes no lock.
    """
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
        if runtime is not None:
            if isinstance(runtime.store, RedisKeyValueStore):
                try:
                    loop = asyncio.get_running_loop()
                    loop.create_task(runtime.close())
                except RuntimeError:
                    asyncio.run(runtime.close())
            elif isinstance(runtime.store, SyncRedisKeyValueStore):
                runtime.store.client.close()

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
