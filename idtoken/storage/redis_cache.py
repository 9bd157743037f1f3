from __future__ import annotations

from typing import Optional, Sequence

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import ResponseError

from idtoken.storage.models import BatchOp, DelOp, SetOp


class RedisKeyValueStore:
    """Thin async Redis wrapper exposing the key-value contract used by tokens."""

    DEFAULT_OPERATION_TIMEOUT = 5.0  # 5 seconds

    # Atomic get-and-delete for servers without GETDEL (Redis < 6.2)
    _GETDEL_SCRIPT = """
local value = redis.call('GET', KEYS[1])
if value then
    redis.call('DEL', KEYS[1])
end
return value
"""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before handing the store to a manager."""
        # Use a short-lived synchronous client to avoid binding the async client to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> int:
        return await self.client.delete(key)

    async def getdel(self, key: str) -> Optional[str]:
        """Atomically read and remove ``key``.

        Uses GETDEL (Redis 6.2+) and falls back to a Lua script when the
        server does not know the command, so two concurrent callers can never
        both read the value.
        """
        try:
            return await self.client.getdel(key)
        except ResponseError as exc:
            if not _is_unknown_command(exc):
                raise
            return await self.client.eval(self._GETDEL_SCRIPT, 1, key)

    async def multi_exec(self, ops: Sequence[BatchOp]) -> None:
        """Apply ``ops`` inside MULTI/EXEC.

        Other clients never see a partial batch, but EXEC does not roll back:
        a command that fails at run time (e.g. a bad EX) leaves the rest
        applied. Callers validate arguments before building the batch.
        """
        pipe = self.client.pipeline(transaction=True)
        _queue_ops(pipe, ops)
        await pipe.execute()

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.close()
        await self.client.connection_pool.disconnect()


class SyncRedisKeyValueStore:
    """Synchronous Redis wrapper for use in tests and scripts.

    Uses a synchronous Redis client internally to avoid event loop binding
    issues in pytest, but exposes async methods so it can be awaited
    uniformly like RedisKeyValueStore.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0  # 5 seconds

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity."""
        self.client.ping()

    async def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self.client.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> int:
        return self.client.delete(key)

    async def getdel(self, key: str) -> Optional[str]:
        try:
            return self.client.getdel(key)
        except ResponseError as exc:
            if not _is_unknown_command(exc):
                raise
            return self.client.eval(RedisKeyValueStore._GETDEL_SCRIPT, 1, key)

    async def multi_exec(self, ops: Sequence[BatchOp]) -> None:
        pipe = self.client.pipeline(transaction=True)
        _queue_ops(pipe, ops)
        pipe.execute()

    async def close(self) -> None:
        self.client.close()


def _is_unknown_command(exc: ResponseError) -> bool:
    return "unknown command" in str(exc).lower()


def _queue_ops(pipe, ops: Sequence[BatchOp]) -> None:
    for op in ops:
        if isinstance(op, SetOp):
            pipe.set(op.key, op.value, ex=op.ttl_seconds)
        elif isinstance(op, DelOp):
            pipe.delete(op.key)
        else:
            raise TypeError(f"unsupported batch operation: {type(op).__name__}")
