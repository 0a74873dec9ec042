"""
Response cache with TTL, LRU eviction and single-flight computation.

Used by the provider manager for generation responses and by the workflow
executor for side-effect-free step results.

Example:
    cache = ResponseCache(ttl_seconds=3600, max_entries=1000)
    key = cache.make_key("itinerary", {"prompt": "Plan a trip to Lisbon"})
    value, hit = await cache.get_or_compute(key, lambda: backend.complete(prompt))
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Optional

from ..domain.entities import CacheEntry

logger = logging.getLogger(__name__)

# Share of entries dropped when the cache is over its limits
EVICTION_FRACTION = 0.2

# Placed on an in-flight future when its owner was cancelled
_RETRY = object()


def _normalize(value: Any) -> Any:
    """Lower-case strings, collapse whitespace, recurse into containers."""
    if isinstance(value, str):
        return " ".join(value.lower().split())
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


class ResponseCache:
    """In-memory TTL cache with LRU eviction and single-flight lookups.

    Eviction happens when the entry count exceeds ``max_entries`` or the
    tracked size exceeds ``offload_bytes``; the least recently used 20% of
    entries are dropped.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        max_entries: int = 1000,
        offload_bytes: int = 100 * 1024 * 1024,
        name: str = "response",
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.offload_bytes = offload_bytes
        self.name = name
        self._clock = clock

        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._in_flight: dict[str, asyncio.Future] = {}
        self._size_bytes = 0

        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @staticmethod
    def make_key(namespace: str, payload: Any) -> str:
        """SHA-256 of the normalized JSON form of (namespace, payload)."""
        normalized = json.dumps(
            {"ns": namespace, "payload": _normalize(payload)},
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )
        return hashlib.sha256(normalized.encode()).hexdigest()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def size_bytes(self) -> int:
        return self._size_bytes

    # ============================================
    # Basic Operations
    # ============================================

    def get(self, key: str) -> Optional[Any]:
        """Return a live cached value (or None), updating LRU order."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        if entry.is_expired(now):
            self._remove(key)
            return None
        entry.last_accessed = now
        entry.access_count += 1
        self._entries.move_to_end(key)
        return entry.value

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        size_estimate: Optional[int] = None,
    ) -> None:
        """Store a value, evicting LRU entries if the cache is over its limits."""
        if key in self._entries:
            self._remove(key)

        now = self._clock()
        size = size_estimate if size_estimate is not None else len(str(value))
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + (ttl_seconds if ttl_seconds is not None else self.ttl_seconds),
            size_estimate=size,
            last_accessed=now,
        )
        self._size_bytes += size
        self._evict_if_needed()

    def delete(self, key: str) -> bool:
        if key in self._entries:
            self._remove(key)
            return True
        return False

    def clear(self) -> None:
        self._entries.clear()
        self._size_bytes = 0

    def purge_expired(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            self._remove(key)
        if expired:
            logger.debug(f"Cache '{self.name}' purged {len(expired)} expired entries")
        return len(expired)

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._size_bytes -= entry.size_estimate

    def _evict_if_needed(self) -> None:
        if len(self._entries) <= self.max_entries and self._size_bytes <= self.offload_bytes:
            return
        count = max(1, int(len(self._entries) * EVICTION_FRACTION))
        for key in list(self._entries.keys())[:count]:
            self._remove(key)
        self.evictions += count
        logger.info(
            f"Cache '{self.name}' evicted {count} LRU entries "
            f"({len(self._entries)} entries, {self._size_bytes} bytes remain)"
        )

    # ============================================
    # Single-flight
    # ============================================

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        should_cache: Callable[[Any], bool] = lambda value: True,
        ttl_seconds: Optional[float] = None,
    ) -> tuple[Any, bool]:
        """Return ``(value, hit)`` for ``key``, computing it at most once.

        Concurrent callers for the same key wait for the first computation
        instead of starting their own. Waiters count as hits. Values rejected
        by ``should_cache`` are returned but not stored.

        Raises:
            Whatever ``compute`` raises (waiters see the same exception)
        """
        while True:
            cached = self.get(key)
            if cached is not None:
                self.hits += 1
                return cached, True

            pending = self._in_flight.get(key)
            if pending is None:
                break

            value = await asyncio.shield(pending)
            if value is _RETRY:
                continue
            self.hits += 1
            return value, True

        self.misses += 1
        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            value = await compute()
        except asyncio.CancelledError:
            future.set_result(_RETRY)
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unobserved failure is not reported at GC
            future.exception()
            raise
        finally:
            self._in_flight.pop(key, None)

        if should_cache(value):
            self.set(key, value, ttl_seconds=ttl_seconds)
        future.set_result(value)
        return value, False

    def get_stats(self) -> dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "name": self.name,
            "entries": len(self._entries),
            "size_bytes": self._size_bytes,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
            "evictions": self.evictions,
            "in_flight": len(self._in_flight),
        }


__all__ = ["ResponseCache", "EVICTION_FRACTION"]
