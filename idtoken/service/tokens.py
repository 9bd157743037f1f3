"""Identifier-bound bearer tokens backed by a key-value store with TTLs.

Two mappings live in the store under one namespace:

* forward ``{namespace}:{identifier}`` -> current token
* reverse ``{namespace}-store:{token}`` -> identifier

The reverse entry is what makes a token valid; the forward entry tells
``verify`` whether the token is still the identifier's current one.

Known limitation: ``create`` reads the previous token before, and outside of,
its atomic write batch. Two concurrent ``create`` calls for the same identifier
can both succeed, leaving both reverse entries alive while the forward entry
names only the last writer. The other token then fails ``verify`` with
``VerifyChangedError`` until it expires. Callers needing strict single-session
semantics under concurrent logins must serialize ``create`` per identifier.
"""

from __future__ import annotations

import asyncio
import hashlib
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence, TypeVar

from idtoken.logging import get_logger
from idtoken.service.errors import (
    InvalidCreateParamsError,
    MissingTokenParamError,
    TokenNotFoundError,
    VerifyChangedError,
    VerifyIdFailedError,
    VerifyTokenFailedError,
)
from idtoken.storage.models import BatchOp, DelOp, SetOp

logger = get_logger(__name__)

T = TypeVar("T")


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> int: ...

    async def getdel(self, key: str) -> Optional[str]: ...

    async def multi_exec(self, ops: Sequence[BatchOp]) -> None: ...


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_token(identifier: str, *, timestamp: str, nonce: str) -> str:
    """Hash identifier, timestamp and nonce into a 40-char lowercase hex token.

    Only ``nonce`` is unpredictable; the hash adds no secrecy of its own.
    """
    raw = f"{identifier},{timestamp},{nonce}"
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


class TokenManager:
    """Create, verify and look up identifier-bound tokens.

    ``repeatable`` lets several tokens per identifier stay valid at once;
    otherwise each ``create`` revokes the previous token. ``disposable``
    consumes a token on its first successful ``verify``.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        namespace: str,
        default_expire_seconds: int,
        repeatable: bool = False,
        disposable: bool = False,
        random_source: Callable[[], Any] = uuid.uuid4,
        clock: Callable[[], str] = _utc_timestamp,
        operation_timeout: Optional[float] = None,
    ) -> None:
        if not namespace:
            raise ValueError("namespace must not be empty")
        if default_expire_seconds <= 0:
            raise ValueError("default_expire_seconds must be positive")
        self.store = store
        self.namespace = namespace
        self.default_expire_seconds = default_expire_seconds
        self.repeatable = repeatable
        self.disposable = disposable
        self.random_source = random_source
        self.clock = clock
        self.operation_timeout = operation_timeout
        self.logger = logger.bind(namespace=namespace)

    def forward_key(self, identifier: Any) -> str:
        return f"{self.namespace}:{identifier}"

    def reverse_key(self, token: str) -> str:
        return f"{self.namespace}-store:{token}"

    def generate_token(self, identifier: Any) -> str:
        return generate_token(
            str(identifier), timestamp=self.clock(), nonce=str(self.random_source())
        )

    async def _call(self, awaitable: Awaitable[T]) -> T:
        if self.operation_timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, self.operation_timeout)

    async def get(self, identifier: Any) -> str:
        """Return the current token for ``identifier``."""
        token = await self._call(self.store.get(self.forward_key(identifier)))
        if not token:
            raise TokenNotFoundError()
        return token

    async def create(self, identifier: Any, expire_seconds: int = 0) -> str:
        """Issue a new token for ``identifier``.

        ``expire_seconds`` of 0 falls back to ``default_expire_seconds``; a
        negative value raises ``InvalidCreateParamsError`` before any store
        access, since Redis would run the rest of a MULTI/EXEC batch after a
        rejected ``SET ... EX``. Store errors propagate unchanged.
        """
        if identifier is None or str(identifier) == "":
            raise InvalidCreateParamsError()
        if expire_seconds < 0:
            raise InvalidCreateParamsError(
                "expire time can't be negative", detail={"expire_seconds": expire_seconds}
            )

        id_str = str(identifier)
        previous: Optional[str] = None
        if not self.repeatable:
            # Read outside the batch below; see the module docstring.
            previous = await self._call(self.store.get(self.forward_key(id_str)))

        token = self.generate_token(id_str)
        ttl = expire_seconds if expire_seconds != 0 else self.default_expire_seconds

        ops: list[BatchOp] = [
            SetOp(self.reverse_key(token), id_str, ttl),
            SetOp(self.forward_key(id_str), token, ttl),
        ]
        if not self.repeatable and previous:
            ops.append(DelOp(self.reverse_key(previous)))

        await self._call(self.store.multi_exec(ops))

        self.logger.info("token_created", identifier=id_str, token=token, ttl=ttl)
        if not self.repeatable and previous:
            self.logger.debug(
                "token_superseded", identifier=id_str, previous_token=previous
            )
        return token

    async def verify(self, token: str) -> str:
        """Resolve ``token`` to its identifier or raise a ``TokenError``."""
        if not token:
            raise MissingTokenParamError()

        reverse_key = self.reverse_key(token)
        if self.disposable:
            identifier = await self._call(self.store.getdel(reverse_key))
        else:
            identifier = await self._call(self.store.get(reverse_key))
        if not identifier:
            self.logger.info(
                "token_verify_failed", token=token, reason=VerifyIdFailedError.error_code
            )
            raise VerifyIdFailedError()

        current = await self._call(self.store.get(self.forward_key(identifier)))
        if not current:
            self.logger.info(
                "token_verify_failed",
                token=token,
                identifier=identifier,
                reason=VerifyTokenFailedError.error_code,
            )
            raise VerifyTokenFailedError()

        if not self.repeatable and current != token:
            self.logger.info(
                "token_verify_failed",
                token=token,
                identifier=identifier,
                reason=VerifyChangedError.error_code,
            )
            raise VerifyChangedError()

        self.logger.debug(
            "token_verified", identifier=identifier, consumed=self.disposable
        )
        return identifier
