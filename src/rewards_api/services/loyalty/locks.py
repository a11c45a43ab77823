"""Per-user serialization of reward pipeline runs."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable, Protocol
from uuid import UUID

from loguru import logger
from redis.asyncio import Redis
from redis.exceptions import LockError

from rewards_api.core.settings import settings

from .errors import LoyaltyError


class UserLockTimeoutError(LoyaltyError):
    """Raised when the per-user lock cannot be acquired in time."""

    def __init__(self, user_id: UUID) -> None:
        super().__init__(f"Timed out waiting for reward lock on user {user_id}")
        self.user_id = user_id


class UserLockProvider(Protocol):
    """Mutual exclusion keyed by user id."""

    def hold(self, user_id: UUID) -> AsyncContextManager[None]:
        ...


class LocalUserLockProvider:
    """In-process asyncio locks; only serializes runs inside one worker process."""

    def __init__(self, *, wait_seconds: float | None = None) -> None:
        self._wait_seconds = wait_seconds if wait_seconds is not None else settings.loyalty_user_lock_wait_seconds
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._holders: dict[UUID, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: UUID) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._holders[user_id] = self._holders.get(user_id, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self._wait_seconds)
            except asyncio.TimeoutError as exc:
                raise UserLockTimeoutError(user_id) from exc
            try:
                yield
            finally:
                lock.release()
        finally:
            self._holders[user_id] -= 1
            if self._holders[user_id] == 0:
                self._holders.pop(user_id, None)
                self._locks.pop(user_id, None)


class RedisUserLockProvider:
    """Redis-backed lock shared by every worker process.

    Without an injected client, each hold opens a client on the running loop
    and closes it on exit.
    """

    def __init__(
        self,
        redis_client: Redis | None = None,
        *,
        client_factory: Callable[[], Redis] | None = None,
        timeout_seconds: float | None = None,
        wait_seconds: float | None = None,
    ) -> None:
        self._redis = redis_client
        self._client_factory = client_factory or (lambda: Redis.from_url(settings.redis_url))
        self._timeout_seconds = timeout_seconds or float(settings.pipeline_timeout_seconds)
        self._wait_seconds = wait_seconds if wait_seconds is not None else settings.loyalty_user_lock_wait_seconds

    @staticmethod
    def _lock_key(user_id: UUID) -> str:
        return f"loyalty:user-lock:{user_id}"

    @asynccontextmanager
    async def hold(self, user_id: UUID) -> AsyncIterator[None]:
        client = self._redis or self._client_factory()
        try:
            lock = client.lock(
                self._lock_key(user_id),
                timeout=self._timeout_seconds,
                blocking_timeout=self._wait_seconds,
            )
            acquired = await lock.acquire()
            if not acquired:
                raise UserLockTimeoutError(user_id)
            try:
                yield
            finally:
                try:
                    await lock.release()
                except LockError:
                    # Expired while held; another worker may already own it.
                    logger.warning("Reward lock expired before release", user_id=str(user_id))
        finally:
            if self._redis is None:
                await client.aclose()


_LOCAL_PROVIDER: LocalUserLockProvider | None = None
_REDIS_PROVIDER: RedisUserLockProvider | None = None


def build_user_lock_provider(backend: str | None = None) -> UserLockProvider:
    """Return the lock provider selected by ``loyalty_user_lock_backend``."""

    global _LOCAL_PROVIDER, _REDIS_PROVIDER
    selected = backend or settings.loyalty_user_lock_backend
    if selected == "redis":
        if _REDIS_PROVIDER is None:
            _REDIS_PROVIDER = RedisUserLockProvider()
        return _REDIS_PROVIDER
    if selected == "local":
        if _LOCAL_PROVIDER is None:
            _LOCAL_PROVIDER = LocalUserLockProvider()
        return _LOCAL_PROVIDER
    raise ValueError(f"Unknown user lock backend '{selected}'")


__all__ = [
    "LocalUserLockProvider",
    "RedisUserLockProvider",
    "UserLockProvider",
    "UserLockTimeoutError",
    "build_user_lock_provider",
]
