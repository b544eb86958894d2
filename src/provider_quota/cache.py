# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Response caches placed in front of provider calls.

A cache hit answers the request without touching the quota ledger, so the
cache is a correctness-relevant collaborator: it is the first thing the
admission flow consults. The cache is best effort, though. FailSafeCache
wraps any implementation and turns every cache failure into a miss (on get)
or a dropped write (on set), so a cache outage only costs quota.
"""

from __future__ import annotations

import heapq
import json
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .observability import (
    CACHE_ERRORS_TOTAL,
    CACHE_HITS_TOTAL,
    CACHE_MISSES_TOTAL,
    MetricsCollector,
)

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_TTL = 900
NEWS_TTL = 600


@runtime_checkable
class ResponseCache(Protocol):
    """Keyed response store with per-entry TTL."""

    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None on a miss or expired entry."""
        ...

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store a value; ``ttl_seconds=None`` uses the cache's default TTL."""
        ...


class MemoryResponseCache:
    """
    In-process TTL cache.

    Expiry is tracked in a min-heap so cleanup only looks at entries that
    are actually due. Heap entries are lazily invalidated: an entry whose
    key was overwritten with a later expiry is skipped when popped.
    """

    def __init__(
        self,
        default_ttl: int = DEFAULT_TTL,
        time_func: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl < 0:
            raise ValueError("default_ttl must be non-negative")
        self.default_ttl = default_ttl
        self._time = time_func
        self._entries: dict[str, tuple[Any, float]] = {}
        self._expiration_heap: list[tuple[float, str]] = []

    def _cleanup_expired(self) -> int:
        now = self._time()
        removed = 0
        while self._expiration_heap and self._expiration_heap[0][0] <= now:
            expiry, key = heapq.heappop(self._expiration_heap)
            entry = self._entries.get(key)
            # Skip stale heap entries left behind by overwrites
            if entry is not None and entry[1] == expiry:
                del self._entries[key]
                removed += 1
        if removed:
            logger.debug(f"Evicted {removed} expired cache entries")
        return removed

    async def get(self, key: str) -> Any | None:
        self._cleanup_expired()
        entry = self._entries.get(key)
        return None if entry is None else entry[0]

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            self._entries.pop(key, None)
            return
        expiry = self._time() + ttl
        self._entries[key] = (value, expiry)
        heapq.heappush(self._expiration_heap, (expiry, key))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()
        self._expiration_heap.clear()

    def __len__(self) -> int:
        self._cleanup_expired()
        return len(self._entries)


class RedisResponseCache:
    """
    Shared response cache storing JSON payloads with SETEX.

    Values must be JSON-serializable. Like RedisLedger, an injected client
    must be created with ``decode_responses=True``.
    """

    def __init__(
        self,
        redis_client: Redis,
        namespace: str = "quota",
        default_ttl: int = DEFAULT_TTL,
    ) -> None:
        if default_ttl < 0:
            raise ValueError("default_ttl must be non-negative")
        self._redis = redis_client
        self.namespace = namespace
        self.default_ttl = default_ttl

    def _key(self, key: str) -> str:
        return f"{self.namespace}:cache:{key}"

    async def get(self, key: str) -> Any | None:
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            await self._redis.delete(self._key(key))
            return
        await self._redis.setex(self._key(key), ttl, json.dumps(value))

    async def close(self) -> None:
        await self._redis.aclose()


class FailSafeCache:
    """
    Wraps a cache so that no cache failure reaches the caller.

    A failing get is logged and reported as a miss. A failing set is logged
    and dropped. Hit, miss and error counts go to the metrics collector.
    """

    def __init__(
        self, inner: ResponseCache, metrics: MetricsCollector | None = None
    ) -> None:
        self.inner = inner
        self._metrics = metrics

    def _count(self, name: str, labels: dict[str, str] | None = None) -> None:
        if self._metrics is not None:
            self._metrics.inc_counter(name, labels=labels)

    async def get(self, key: str) -> Any | None:
        try:
            value = await self.inner.get(key)
        except Exception as e:
            self._count(CACHE_ERRORS_TOTAL, {"operation": "get"})
            logger.warning(f"Cache get failed for {key!r}, treating as miss: {e}")
            return None

        self._count(CACHE_HITS_TOTAL if value is not None else CACHE_MISSES_TOTAL)
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        try:
            await self.inner.set(key, value, ttl_seconds)
        except Exception as e:
            self._count(CACHE_ERRORS_TOTAL, {"operation": "set"})
            logger.warning(f"Cache set failed for {key!r}, dropping entry: {e}")


__all__ = [
    "DEFAULT_TTL",
    "NEWS_TTL",
    "FailSafeCache",
    "MemoryResponseCache",
    "RedisResponseCache",
    "ResponseCache",
]
