# cache/backends.py
"""Key-value backend implementations."""

import asyncio
import logging
import time
from collections import defaultdict
from typing import Callable, Dict, Optional

import redis.asyncio as aioredis

from .core import KeyValueStore

logger = logging.getLogger(__name__)


class InMemoryBackend(KeyValueStore):
    """Process-local backend using dictionaries.

    Each key has its own asyncio lock, so writers to different keys never
    contend. Expired entries are dropped lazily on read and by a periodic
    sweep task.
    """

    def __init__(
        self,
        cleanup_interval: int = 60,
        clock: Callable[[], float] = time.monotonic,
        **config
    ):
        super().__init__(**config)
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._data: Dict[str, str] = {}
        self._expiry: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._cleanup_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start background cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_expired())

    async def _cleanup_expired(self):
        """Background task to clean up expired entries."""
        while True:
            try:
                await asyncio.sleep(self.cleanup_interval)
                removed = self.sweep()
                if removed:
                    logger.debug(f"Swept {removed} expired entries")
            except asyncio.CancelledError:
                break

    def sweep(self) -> int:
        """Drop every expired entry and any idle lock. Returns entries removed."""
        now = self._clock()
        expired_keys = [
            key for key, exp_time in self._expiry.items()
            if exp_time <= now
        ]
        for key in expired_keys:
            self._evict(key)

        for key in [k for k, lock in self._locks.items() if k not in self._data and not lock.locked()]:
            self._locks.pop(key, None)
        return len(expired_keys)

    def _evict(self, key: str) -> None:
        self._data.pop(key, None)
        self._expiry.pop(key, None)

    def _read(self, key: str) -> Optional[str]:
        if key not in self._data:
            return None
        if key in self._expiry and self._expiry[key] <= self._clock():
            self._evict(key)
            return None
        return self._data[key]

    def _write(self, key: str, value: str, ttl: Optional[float]) -> None:
        self._data[key] = value
        if ttl is not None:
            self._expiry[key] = self._clock() + ttl
        else:
            self._expiry.pop(key, None)

    async def get(self, key: str) -> Optional[str]:
        """Get value from memory."""
        value = self._read(self.make_key(key))
        if value is None:
            self.stats.misses += 1
        else:
            self.stats.hits += 1
        return value

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> bool:
        """Set value in memory."""
        full_key = self.make_key(key)
        async with self._locks[full_key]:
            self._write(full_key, value, ttl)
        self.stats.sets += 1
        return True

    async def delete(self, key: str) -> bool:
        """Delete key from memory."""
        full_key = self.make_key(key)
        async with self._locks[full_key]:
            existed = self._read(full_key) is not None
            self._evict(full_key)
        if existed:
            self.stats.deletes += 1
        return existed

    async def compare_and_set(
        self,
        key: str,
        expected: Optional[str],
        value: Optional[str],
        ttl: Optional[float] = None,
    ) -> bool:
        full_key = self.make_key(key)
        async with self._locks[full_key]:
            if self._read(full_key) != expected:
                self.stats.conflicts += 1
                return False
            if value is None:
                self._evict(full_key)
                self.stats.deletes += 1
            else:
                self._write(full_key, value, ttl)
                self.stats.sets += 1
            return True

    async def close(self):
        """Stop the sweep task and drop all entries."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        self._data.clear()
        self._expiry.clear()
        self._locks.clear()


# KEYS[1] key; ARGV: has_expected, expected, op ("set"|"del"), value, ttl_ms
_COMPARE_AND_SET_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if ARGV[1] == '1' then
  if current ~= ARGV[2] then return 0 end
else
  if current then return 0 end
end
if ARGV[3] == 'del' then
  redis.call('DEL', KEYS[1])
elseif tonumber(ARGV[5]) > 0 then
  redis.call('SET', KEYS[1], ARGV[4], 'PX', ARGV[5])
else
  redis.call('SET', KEYS[1], ARGV[4])
end
return 1
"""


class RedisBackend(KeyValueStore):
    """Redis backend for multi-instance deployments."""

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        client: Optional[aioredis.Redis] = None,
        **config
    ):
        super().__init__(**config)
        self.url = url
        self.redis: Optional[aioredis.Redis] = client
        self._cas_script = client.register_script(_COMPARE_AND_SET_SCRIPT) if client is not None else None

    async def _get_redis(self) -> aioredis.Redis:
        """Get Redis connection."""
        if self.redis is None:
            self.redis = aioredis.from_url(self.url, decode_responses=True)
            self._cas_script = self.redis.register_script(_COMPARE_AND_SET_SCRIPT)
        return self.redis

    async def start(self) -> None:
        redis = await self._get_redis()
        await redis.ping()
        logger.info("Connected to Redis store")

    async def get(self, key: str) -> Optional[str]:
        """Get value from Redis."""
        redis = await self._get_redis()
        value = await redis.get(self.make_key(key))
        if value is None:
            self.stats.misses += 1
        else:
            self.stats.hits += 1
        return value

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> bool:
        """Set value in Redis."""
        redis = await self._get_redis()
        if ttl is not None:
            await redis.set(self.make_key(key), value, px=max(1, int(ttl * 1000)))
        else:
            await redis.set(self.make_key(key), value)
        self.stats.sets += 1
        return True

    async def delete(self, key: str) -> bool:
        """Delete key from Redis."""
        redis = await self._get_redis()
        result = await redis.delete(self.make_key(key))
        if result:
            self.stats.deletes += 1
        return result > 0

    async def compare_and_set(
        self,
        key: str,
        expected: Optional[str],
        value: Optional[str],
        ttl: Optional[float] = None,
    ) -> bool:
        await self._get_redis()
        ttl_ms = max(1, int(ttl * 1000)) if ttl is not None else 0
        swapped = await self._cas_script(
            keys=[self.make_key(key)],
            args=[
                "0" if expected is None else "1",
                expected or "",
                "del" if value is None else "set",
                value or "",
                ttl_ms,
            ],
        )
        if not swapped:
            self.stats.conflicts += 1
        return bool(swapped)

    async def close(self):
        """Close Redis connection."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
