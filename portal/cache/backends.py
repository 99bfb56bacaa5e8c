"""Key-value cache backends with per-key TTL."""

import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from portal.exceptions import CacheFetchError

logger = logging.getLogger(__name__)


class KeyValueCache(ABC):
    """String-valued cache with expiry, shared by concurrent requests."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    async def close(self) -> None:
        pass


class RedisCache(KeyValueCache):
    """
    Redis-backed cache shared by every portal process.

    Redis failures are raised as CacheFetchError so callers can fall back.
    """

    def __init__(self, url: str = "redis://localhost:6379/0", client: Optional[redis.Redis] = None):
        self._client = client or redis.Redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except RedisError as e:
            raise CacheFetchError(f"Redis get error for key {key}: {e}") from e

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        try:
            await self._client.set(key, value, ex=max(1, math.ceil(ttl_seconds)))
        except RedisError as e:
            raise CacheFetchError(f"Redis set error for key {key}: {e}") from e

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._client.delete(key))
        except RedisError as e:
            raise CacheFetchError(f"Redis delete error for key {key}: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()


@dataclass
class _MemoryEntry:
    value: str
    expires_at: float


class MemoryCache(KeyValueCache):
    """
    In-process cache for single-instance deployments and tests.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, _MemoryEntry] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        self._entries[key] = _MemoryEntry(value=value, expires_at=self._clock() + ttl_seconds)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None


def create_cache(backend: str, redis_url: str) -> KeyValueCache:
    """
    Build the configured cache backend.

    Args:
        backend: "redis" or "memory"
        redis_url: Connection URL used by the redis backend

    Returns:
        KeyValueCache instance
    """
    if backend == "memory":
        logger.info("Using in-process memory cache for download URLs")
        return MemoryCache()
    if backend == "redis":
        logger.info("Using Redis cache for download URLs")
        return RedisCache(redis_url)
    raise ValueError(f"Unknown cache backend: {backend}")
