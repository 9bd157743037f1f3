from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Sequence

from idtoken.logging import get_logger
from idtoken.storage.errors import StoreError
from idtoken.storage.models import BatchOp, DelOp, SetOp


class MemoryKeyValueStore:
    """In-process key-value store with per-key expiry.

    Mirrors the subset of Redis the token manager relies on, including EXEC's
    lack of rollback when one queued command fails. Expired keys are
    dropped lazily on access. Not shared across processes, so it only suits
    tests and single-process development.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.logger = get_logger(__name__)
        self._clock = clock
        self._values: Dict[str, str] = {}
        self._expires_at: Dict[str, float] = {}
        # RLock so batch application can reuse the single-key helpers
        self._lock = threading.RLock()

    def _alive(self, key: str) -> bool:
        expires_at = self._expires_at.get(key)
        if expires_at is not None and expires_at <= self._clock():
            self._values.pop(key, None)
            self._expires_at.pop(key, None)
            return False
        return key in self._values

    def _set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._values[key] = str(value)
        self._expires_at[key] = self._clock() + ttl_seconds

    def _delete(self, key: str) -> int:
        existed = self._alive(key)
        self._values.pop(key, None)
        self._expires_at.pop(key, None)
        return int(existed)

    @staticmethod
    def _check_ttl(key: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise StoreError(
                "invalid expire time in set", detail={"key": key, "ttl": ttl_seconds}
            )

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            if not self._alive(key):
                return None
            return self._values[key]

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._check_ttl(key, ttl_seconds)
        with self._lock:
            self._set(key, value, ttl_seconds)

    async def delete(self, key: str) -> int:
        with self._lock:
            return self._delete(key)

    async def getdel(self, key: str) -> Optional[str]:
        with self._lock:
            if not self._alive(key):
                return None
            value = self._values.pop(key)
            self._expires_at.pop(key, None)
            return value

    async def multi_exec(self, ops: Sequence[BatchOp]) -> None:
        """Apply ``ops`` the way Redis runs a MULTI/EXEC block.

        Unknown ops are rejected before anything runs, like a pipeline that
        fails to queue. Once running, an op that fails (a non-positive TTL)
        does not stop the ones after it; the failures are raised together at
        the end, so a bad batch can leave partial state exactly as EXEC does.
        """
        for op in ops:
            if not isinstance(op, (SetOp, DelOp)):
                raise StoreError(
                    "unsupported batch operation", detail={"op": type(op).__name__}
                )
        failures: list[dict] = []
        with self._lock:
            for index, op in enumerate(ops):
                if isinstance(op, DelOp):
                    self._delete(op.key)
                elif op.ttl_seconds <= 0:
                    failures.append({"index": index, "key": op.key, "ttl": op.ttl_seconds})
                else:
                    self._set(op.key, op.value, op.ttl_seconds)
        if failures:
            self.logger.warning(
                "memory_store_batch_failed", failed=len(failures), ops=len(ops)
            )
            raise StoreError("invalid expire time in set", detail={"failures": failures})

    def ttl(self, key: str) -> Optional[float]:
        """Seconds left before ``key`` expires, or None when absent."""
        with self._lock:
            if not self._alive(key):
                return None
            return self._expires_at[key] - self._clock()

    def keys(self) -> list[str]:
        with self._lock:
            return [key for key in list(self._values) if self._alive(key)]

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            self._expires_at.clear()

    def verify_connection(self) -> None:
        return None

    async def close(self) -> None:
        self.clear()
