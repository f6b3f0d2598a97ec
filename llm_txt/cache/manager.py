"""
In-memory TTL cache with least-recently-used bounding.
"""
import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

from ..clock import Clock
from .coalescer import RequestCoalescer
from .core import CacheCategory, CacheEntry
from .ttl_policies import get_ttl_for_category

logger = logging.getLogger("cache.manager")


class TTLCache:
    """
    Key -> value store with per-entry expiry.

    - A read at/after an entry's expiry reports absent and evicts it
    - ``max_entries`` bounds the size; the least recently used entry goes
      first when it is exceeded
    - ``get_or_set`` coalesces concurrent computations of the same key

    Single-process only: separate workers each hold their own copy and a
    miss is indistinguishable from "never computed". ``None`` is never
    stored, since it doubles as the absent marker.
    """

    def __init__(
        self,
        max_entries: Optional[int] = None,
        clock: Optional[Clock] = None,
        coalesce_timeout: float = 30.0,
    ):
        self.max_entries = max_entries
        self.clock = clock or Clock()
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._coalescer = RequestCoalescer(timeout=coalesce_timeout)
        self._stats = {
            "hits": 0,
            "misses": 0,
            "expired": 0,
            "evicted": 0,
        }

    def get(self, key: str) -> Optional[Any]:
        """Return the live value for ``key`` or None."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None
            if entry.is_expired(self.clock.now()):
                del self._cache[key]
                self._stats["expired"] += 1
                self._stats["misses"] += 1
                logger.debug(f"CACHE EXPIRED: {key}")
                return None
            self._cache.move_to_end(key)
            self._stats["hits"] += 1
            return entry.value

    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        category: CacheCategory = CacheCategory.PROFILE,
    ) -> None:
        """
        Store ``value`` under ``key``.

        Args:
            key: Cache key
            value: Value to store (None is ignored)
            ttl: Seconds to live; defaults to the category's TTL
            category: Cache category for the default TTL
        """
        if value is None:
            return
        if ttl is None:
            ttl = get_ttl_for_category(category)
        entry = CacheEntry(value=value, expires_at=self.clock.now() + ttl, category=category)
        with self._lock:
            self._cache[key] = entry
            self._cache.move_to_end(key)
            if self.max_entries is not None:
                while len(self._cache) > self.max_entries:
                    evicted, _ = self._cache.popitem(last=False)
                    self._stats["evicted"] += 1
                    logger.debug(f"CACHE EVICT (lru): {evicted}")

    def get_or_set(
        self,
        key: str,
        compute: Callable[[], Any],
        ttl: Optional[float] = None,
        category: CacheCategory = CacheCategory.PROFILE,
    ) -> Any:
        """
        Return the cached value, computing and storing it on a miss.

        Concurrent misses for the same key share one ``compute`` call.
        Errors from ``compute`` propagate and nothing is stored.
        """
        value = self.get(key)
        if value is not None:
            logger.debug(f"CACHE HIT: {key}")
            return value

        logger.info(f"CACHE MISS: {key}")
        return self._coalescer.run(
            key,
            compute,
            on_result=lambda result: self.set(key, result, ttl=ttl, category=category),
        )

    def invalidate(self, key: str) -> bool:
        """
        Invalidate a specific cache entry.

        Returns:
            True if entry was found and removed
        """
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                logger.info(f"Invalidated cache: {key}")
                return True
            return False

    def clear(self) -> int:
        """
        Clear all cache entries.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            logger.info(f"Cleared {count} cache entries")
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            lookups = self._stats["hits"] + self._stats["misses"]
            hit_rate = (self._stats["hits"] / lookups * 100) if lookups > 0 else 0
            return {
                "entries": len(self._cache),
                "max_entries": self.max_entries,
                "hits": self._stats["hits"],
                "misses": self._stats["misses"],
                "expired": self._stats["expired"],
                "evicted": self._stats["evicted"],
                "hit_rate_percent": round(hit_rate, 1),
                "in_flight": self._coalescer.active,
            }
