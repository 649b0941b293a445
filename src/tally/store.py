"""Summary store backends.

The aggregation engine only needs three primitives: read a value, write it
unconditionally, and write it only if it still holds what was read. The
Redis backend implements the conditional write as a Lua script so the
compare and the set happen in one server-side step.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import redis.asyncio as redis

from tally.config import Settings, get_settings
from tally.errors import StoreUnavailable

logger = logging.getLogger(__name__)

# KEYS[1] summary key
# ARGV[1] "1" when the key was absent at read time, else "0"
# ARGV[2] value read (ignored when absent)
# ARGV[3] new value
_COMPARE_AND_SET_LUA = """
local current = redis.call('GET', KEYS[1])
if ARGV[1] == '1' then
    if current then
        return 0
    end
elseif current ~= ARGV[2] then
    return 0
end
redis.call('SET', KEYS[1], ARGV[3])
return 1
"""


class BaseSummaryStore(ABC):
    """
    Abstract key-value store holding serialized summaries.

    Lifecycle:
        store = RedisSummaryStore(...)
        # ... use store ...
        await store.close()
    """

    async def close(self) -> None:
        """Release connections. Override if the store holds any."""
        pass

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the stored value, or None when the key is absent."""
        ...

    @abstractmethod
    async def set(self, key: str, value: bytes) -> None:
        """Overwrite the value stored under key."""
        ...

    @abstractmethod
    async def compare_and_set(
        self, key: str, expected: bytes | None, value: bytes
    ) -> bool:
        """
        Write value only if key still holds expected.

        Args:
            key: Summary key
            expected: Value seen at read time (None if the key was absent)
            value: New value

        Returns:
            True if the write happened, False if the key changed meanwhile
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key if present."""
        ...


class InMemorySummaryStore(BaseSummaryStore):
    """Process-local store with the same semantics as the Redis backend."""

    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        self._data: dict[str, bytes] = dict(initial or {})
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    async def compare_and_set(
        self, key: str, expected: bytes | None, value: bytes
    ) -> bool:
        async with self._lock:
            if self._data.get(key) != expected:
                return False
            self._data[key] = bytes(value)
            return True

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, bytes]:
        """Copy of the stored keys (for inspection in tests and debugging)."""
        return dict(self._data)


class RedisSummaryStore(BaseSummaryStore):
    """
    Redis-backed summary store.

    One client is created on first use (or injected) and shared by every
    request. Transport errors are raised as StoreUnavailable.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        *,
        client: Any | None = None,
    ) -> None:
        self._redis_url = redis_url
        self._client: Any = client
        self._owns_client = client is None
        self._cas_sha: str | None = None

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
        self._cas_sha = None

    def _ensure_connected(self) -> Any:
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=False)
        return self._client

    async def _load_scripts(self) -> str:
        if self._cas_sha is None:
            client = self._ensure_connected()
            self._cas_sha = await client.script_load(_COMPARE_AND_SET_LUA)
            logger.debug("Loaded compare-and-set script into Redis")
        return self._cas_sha

    async def get(self, key: str) -> bytes | None:
        client = self._ensure_connected()
        try:
            value = await client.get(key)
        except (redis.RedisError, OSError) as e:
            raise StoreUnavailable(f"GET {key} failed: {e}", key=key) from e
        if isinstance(value, str):
            return value.encode()
        return value

    async def set(self, key: str, value: bytes) -> None:
        client = self._ensure_connected()
        try:
            await client.set(key, value)
        except (redis.RedisError, OSError) as e:
            raise StoreUnavailable(f"SET {key} failed: {e}", key=key) from e

    async def compare_and_set(
        self, key: str, expected: bytes | None, value: bytes
    ) -> bool:
        client = self._ensure_connected()
        args = ["1" if expected is None else "0", expected or b"", value]
        try:
            sha = await self._load_scripts()
            try:
                written = await client.evalsha(sha, 1, key, *args)
            except redis.ResponseError as e:
                if "NOSCRIPT" not in str(e):
                    raise
                # Script cache was flushed on the server.
                self._cas_sha = None
                sha = await self._load_scripts()
                written = await client.evalsha(sha, 1, key, *args)
        except (redis.RedisError, OSError) as e:
            raise StoreUnavailable(f"Compare-and-set {key} failed: {e}", key=key) from e
        return int(written) == 1

    async def delete(self, key: str) -> None:
        client = self._ensure_connected()
        try:
            await client.delete(key)
        except (redis.RedisError, OSError) as e:
            raise StoreUnavailable(f"DEL {key} failed: {e}", key=key) from e


def create_store(settings: Settings | None = None) -> RedisSummaryStore:
    """Build the Redis store from configuration."""
    settings = settings or get_settings()
    return RedisSummaryStore(settings.redis_url)
