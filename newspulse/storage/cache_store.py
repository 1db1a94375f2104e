"""
Cache store implementations.

The store owns expiry: entries disappear once the TTL handed to ``set``
elapses. Failures surface as CacheStoreError and are swallowed one level
up by ArticleCache.
"""

import asyncio
import time
from fnmatch import fnmatchcase
from typing import Callable, Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from newspulse.core.errors import CacheStoreError
from newspulse.services.ingestion.interfaces import CacheStore

logger = structlog.get_logger(__name__)


class InMemoryCacheStore(CacheStore):
    """Process-local store for development, tests and single-node deployments."""

    def __init__(self, timer: Callable[[], float] = time.monotonic):
        self._timer = timer
        self._data: dict[str, tuple[str, float]] = {}  # key -> (payload, expires_at)
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            payload, expires_at = item
            if self._timer() >= expires_at:
                del self._data[key]
                return None
            return payload

    async def set(self, key: str, payload: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise CacheStoreError(f"TTL must be positive, got {ttl_seconds}")
        async with self._lock:
            now = self._timer()
            self._sweep(now)
            self._data[key] = (payload, now + ttl_seconds)

    async def invalidate(self, pattern: str) -> int:
        async with self._lock:
            self._sweep(self._timer())
            doomed = [key for key in self._data if fnmatchcase(key, pattern)]
            for key in doomed:
                del self._data[key]
        return len(doomed)

    def _sweep(self, now: float) -> None:
        """Drop every expired entry. Caller holds the lock."""
        expired = [key for key, (_, expires_at) in self._data.items() if now >= expires_at]
        for key in expired:
            del self._data[key]

    def __len__(self) -> int:
        return len(self._data)


class RedisCacheStore(CacheStore):
    """Shared store on Redis (GET, SET EX, SCAN + DEL)."""

    SCAN_BATCH = 500

    def __init__(self, redis: Redis):
        self.redis = redis

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheStore":
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self.redis.get(key)
        except RedisError as e:
            raise CacheStoreError(f"GET {key} failed: {e}") from e
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set(self, key: str, payload: str, ttl_seconds: int) -> None:
        try:
            await self.redis.set(key, payload, ex=ttl_seconds)
        except RedisError as e:
            raise CacheStoreError(f"SET {key} failed: {e}") from e

    async def invalidate(self, pattern: str) -> int:
        removed = 0
        batch: list[str] = []
        try:
            async for key in self.redis.scan_iter(match=pattern, count=self.SCAN_BATCH):
                batch.append(key)
                if len(batch) >= self.SCAN_BATCH:
                    removed += await self.redis.delete(*batch)
                    batch.clear()
            if batch:
                removed += await self.redis.delete(*batch)
        except RedisError as e:
            raise CacheStoreError(f"Invalidate {pattern} failed: {e}") from e
        return removed

    async def close(self) -> None:
        await self.redis.aclose()
