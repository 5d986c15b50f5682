"""Tests for the key-value store backends."""

from __future__ import annotations

from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.core.errors import StoreError
from src.core.kvstore import KeyValueStore, MemoryStore, RedisStore


class FakeRedis:
    """Minimal Redis double covering GET/SET EX/DELETE/PING."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("connection refused")

    async def get(self, key: str) -> str | None:
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: int | None = None, **_: Any) -> bool:
        self._check()
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    async def ping(self) -> bool:
        self._check()
        return True


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_set_get_delete(self, memory_store: MemoryStore) -> None:
        await memory_store.set("task:1", "payload")
        assert await memory_store.get("task:1") == "payload"
        assert await memory_store.delete("task:1") is True
        assert await memory_store.get("task:1") is None
        assert await memory_store.delete("task:1") is False

    @pytest.mark.asyncio
    async def test_entries_expire(self, memory_store: MemoryStore, clock: Any) -> None:
        await memory_store.set("task:1", "payload", ttl_seconds=60)
        clock.advance(59)
        assert await memory_store.get("task:1") == "payload"
        clock.advance(1)
        assert await memory_store.get("task:1") is None

    @pytest.mark.asyncio
    async def test_no_ttl_never_expires(self, memory_store: MemoryStore, clock: Any) -> None:
        await memory_store.set("secret", "value")
        clock.advance(10**9)
        assert await memory_store.get("secret") == "value"

    def test_satisfies_protocol(self, memory_store: MemoryStore) -> None:
        assert isinstance(memory_store, KeyValueStore)


class TestRedisStore:
    @pytest.mark.asyncio
    async def test_keys_are_namespaced_and_ttl_passed(self) -> None:
        fake = FakeRedis()
        store = RedisStore(fake, key_prefix="relay")  # type: ignore[arg-type]

        await store.set("task:abc", "{}", ttl_seconds=3600)

        assert fake.data == {"relay:task:abc": "{}"}
        assert fake.ttls["relay:task:abc"] == 3600
        assert await store.get("task:abc") == "{}"
        assert await store.delete("task:abc") is True

    @pytest.mark.asyncio
    async def test_redis_errors_become_store_errors(self) -> None:
        fake = FakeRedis()
        fake.fail = True
        store = RedisStore(fake)  # type: ignore[arg-type]

        with pytest.raises(StoreError):
            await store.get("task:abc")
        with pytest.raises(StoreError):
            await store.set("task:abc", "{}")
        with pytest.raises(StoreError):
            await store.delete("task:abc")

    @pytest.mark.asyncio
    async def test_ping_reports_unreachable(self) -> None:
        fake = FakeRedis()
        store = RedisStore(fake)  # type: ignore[arg-type]
        assert await store.ping() is True
        fake.fail = True
        assert await store.ping() is False
