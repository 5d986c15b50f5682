"""Key-value store abstraction with expiry.

Defines the ``KeyValueStore`` protocol and provides two implementations:

- ``RedisStore``: keys namespaced under ``key_prefix`` with ``SET ... EX``.
- ``MemoryStore``: process-local dict honouring expiry on read; suitable
  for single-process development and tests.

Configuration selects the backend at startup via the ``store_backend``
setting in ``src.core.config.Settings``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.core.errors import StoreError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class KeyValueStore(Protocol):
    """Get / set-with-ttl / delete over string values.

    No transactions and no cross-key consistency are required of
    implementations.
    """

    async def get(self, key: str) -> str | None:
        """Return the value stored at ``key``, or None when absent or expired."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Store ``value`` at ``key``, expiring after ``ttl_seconds`` when given."""
        ...

    async def delete(self, key: str) -> bool:
        """Delete ``key``. Returns True when something was removed."""
        ...

    async def ping(self) -> bool:
        """Return True when the backing substrate is reachable."""
        ...


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class RedisStore:
    """``KeyValueStore`` over a Redis client.

    Args:
        client: Async Redis client created with ``decode_responses=True``.
        key_prefix: Namespace prepended to every key.
    """

    def __init__(self, client: aioredis.Redis, key_prefix: str = "postrelay") -> None:
        self._client = client
        self._prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> str | None:
        try:
            value = await self._client.get(self._key(key))
        except (RedisError, OSError) as exc:
            raise StoreError(f"Failed to read {key}: {exc}") from exc
        return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        try:
            await self._client.set(self._key(key), value, ex=ttl_seconds)
        except (RedisError, OSError) as exc:
            raise StoreError(f"Failed to write {key}: {exc}") from exc

    async def delete(self, key: str) -> bool:
        try:
            removed = await self._client.delete(self._key(key))
        except (RedisError, OSError) as exc:
            raise StoreError(f"Failed to delete {key}: {exc}") from exc
        return bool(removed)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError):
            logger.exception("Redis store is unreachable")
            return False


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class MemoryStore:
    """Process-local ``KeyValueStore``.

    Expired entries are dropped lazily when read.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def ping(self) -> bool:
        return True

    def keys(self) -> list[str]:
        """Return every key currently held, including not-yet-purged expired ones."""
        return list(self._data)
