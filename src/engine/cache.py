"""
Reverse-geocode cache stores.

Two realizations share one async contract ({get, put}):
    - MemoryCacheStore: in-process, bounded, FIFO eviction
    - RedisCacheStore: shared/durable, one hash per key with an epoch expiry

Expired entries are treated as absent on read regardless of whether the
backend has physically removed them yet.
"""

import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from engine.errors import StoreError
from shared.config import Settings

logger = logging.getLogger("CacheStore")


@dataclass(frozen=True)
class CacheEntry:
    key: str
    address: str
    expires_at: float  # epoch seconds

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class CacheStore(Protocol):
    async def get(self, key: str) -> Optional[CacheEntry]:
        ...

    async def put(self, key: str, address: str, ttl_seconds: int) -> None:
        ...

    async def close(self) -> None:
        ...


class MemoryCacheStore:
    """Bounded in-process store. When full, the oldest inserted entry goes first."""

    def __init__(self, max_entries: int = 100, clock: Callable[[], float] = time.time):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._clock = clock
        self._data: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    async def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._data[key]
                return None
            return entry

    async def put(self, key: str, address: str, ttl_seconds: int) -> None:
        entry = CacheEntry(key=key, address=address, expires_at=self._clock() + ttl_seconds)
        with self._lock:
            if key in self._data:
                del self._data[key]
            elif len(self._data) >= self._max_entries:
                self._purge_expired()
                while len(self._data) >= self._max_entries:
                    evicted, _ = self._data.popitem(last=False)
                    logger.debug(f"Evicted {evicted} (capacity {self._max_entries})")
            self._data[key] = entry

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, e in self._data.items() if e.is_expired(now)]:
            del self._data[key]

    async def close(self) -> None:
        pass

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class RedisCacheStore:
    """
    Durable store backed by redis.

    Layout: hash "{table}:{k}" with fields k (cache key), addr (address) and
    ttl (epoch seconds). EXPIREAT on the same instant lets redis purge it.
    """

    def __init__(
        self,
        table: str,
        client: Optional[aioredis.Redis] = None,
        url: str = "redis://localhost:6379/0",
        clock: Callable[[], float] = time.time,
    ):
        if not table:
            raise ValueError("CACHE_TABLE is required for the redis cache backend")
        self._table = table
        self._client = client if client is not None else aioredis.from_url(url, decode_responses=True)
        self._clock = clock

    def _name(self, key: str) -> str:
        return f"{self._table}:{key}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        try:
            item = await self._client.hgetall(self._name(key))
        except RedisError as e:
            raise StoreError(f"read failed for {key}: {e}") from e

        if not item or "addr" not in item:
            return None
        try:
            expires_at = float(item.get("ttl", 0))
            if not math.isfinite(expires_at):
                raise ValueError(expires_at)
        except (TypeError, ValueError):
            logger.warning(f"Malformed ttl for {key}: {item.get('ttl')!r}")
            return None

        entry = CacheEntry(key=key, address=item["addr"], expires_at=expires_at)
        if entry.is_expired(self._clock()):
            return None
        return entry

    async def put(self, key: str, address: str, ttl_seconds: int) -> None:
        expires_at = int(self._clock()) + ttl_seconds
        name = self._name(key)
        try:
            await self._client.hset(name, mapping={"k": key, "addr": address, "ttl": str(expires_at)})
            await self._client.expireat(name, expires_at)
        except RedisError as e:
            raise StoreError(f"write failed for {key}: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()


def build_cache_store(config: Settings) -> CacheStore:
    """Pick the store realization named by CACHE_BACKEND."""
    backend = config.CACHE_BACKEND.lower()
    if backend == "memory":
        return MemoryCacheStore(max_entries=config.CACHE_MAX_ENTRIES)
    if backend == "redis":
        return RedisCacheStore(table=config.CACHE_TABLE, url=config.REDIS_URL)
    raise ValueError(f"Unknown CACHE_BACKEND: {config.CACHE_BACKEND}")
