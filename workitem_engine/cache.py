"""
TTL cache for backend lookups.

Each service owns its Cache instance, so independent services (and tests)
never share entries. Expired entries are dropped lazily on read and by
cleanup_expired().
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Dict

logger = logging.getLogger(__name__)


class CacheEntry:
    """
    A cached value with its expiry.

    Attributes:
        data: The cached data
        expiry: When this entry expires
        created_at: When this entry was created
        hit_count: Number of times this entry was retrieved
    """

    def __init__(self, data: Any, ttl_seconds: float):
        self.data = data
        self.created_at = datetime.now()
        self.expiry = self.created_at + timedelta(seconds=ttl_seconds)
        self.hit_count = 0

    def is_expired(self) -> bool:
        return datetime.now() >= self.expiry

    def age_seconds(self) -> float:
        return (datetime.now() - self.created_at).total_seconds()


class Cache:
    """In-memory TTL cache with a size bound and hit statistics."""

    def __init__(self, default_ttl_seconds: float = 300, max_size: int = 1000):
        """
        Initialize cache.

        Args:
            default_ttl_seconds: TTL applied when set() is given none
            max_size: Entry count above which the oldest entry is evicted
        """
        self.default_ttl = default_ttl_seconds
        self.max_size = max_size

        self._cache: Dict[str, CacheEntry] = {}
        self._stats = {
            'hits': 0,
            'misses': 0,
            'evictions': 0,
            'expirations': 0
        }

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        entry = self._cache.get(key)

        if entry is None:
            self._stats['misses'] += 1
            return None

        if entry.is_expired():
            del self._cache[key]
            self._stats['expirations'] += 1
            self._stats['misses'] += 1
            return None

        entry.hit_count += 1
        self._stats['hits'] += 1
        logger.debug(f"Cache hit: {key} (age: {entry.age_seconds():.1f}s, hits: {entry.hit_count})")

        return entry.data

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None):
        if len(self._cache) >= self.max_size and key not in self._cache:
            self._evict_oldest()

        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        self._cache[key] = CacheEntry(value, ttl)
        logger.debug(f"Cache set: {key} (TTL: {ttl}s)")

    def _evict_oldest(self):
        if not self._cache:
            return

        oldest_key = min(self._cache, key=lambda k: self._cache[k].created_at)
        del self._cache[oldest_key]
        self._stats['evictions'] += 1
        logger.debug(f"Cache eviction: {oldest_key}")

    def cleanup_expired(self) -> int:
        """
        Remove expired entries.

        Returns:
            Number of entries removed
        """
        expired = [key for key, entry in self._cache.items() if entry.is_expired()]
        for key in expired:
            del self._cache[key]

        if expired:
            self._stats['expirations'] += len(expired)
            logger.debug(f"Cache cleanup: removed {len(expired)} expired entries")

        return len(expired)

    def invalidate(self, key: str) -> bool:
        if key in self._cache:
            del self._cache[key]
            logger.debug(f"Cache invalidation: {key}")
            return True
        return False

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with prefix."""
        keys_to_remove = [key for key in self._cache if key.startswith(prefix)]
        for key in keys_to_remove:
            del self._cache[key]

        if keys_to_remove:
            logger.debug(f"Cache invalidation: {len(keys_to_remove)} entries with prefix '{prefix}'")

        return len(keys_to_remove)

    def clear(self):
        count = len(self._cache)
        self._cache.clear()
        logger.info(f"Cache cleared: {count} entries removed")

    def get_stats(self) -> Dict[str, Any]:
        total_requests = self._stats['hits'] + self._stats['misses']
        hit_rate = (self._stats['hits'] / total_requests * 100) if total_requests > 0 else 0

        return {
            'size': len(self._cache),
            'max_size': self.max_size,
            'hits': self._stats['hits'],
            'misses': self._stats['misses'],
            'hit_rate_percent': round(hit_rate, 2),
            'evictions': self._stats['evictions'],
            'expirations': self._stats['expirations'],
            'total_requests': total_requests
        }


class CachedService:
    """
    Base class for services that cache backend lookups.

    Keys are namespaced as "<namespace>:<part>:<part>...".
    """

    def __init__(self, cache_namespace: str, cache_ttl: float = 300, cache: Optional[Cache] = None):
        """
        Initialize cached service.

        Args:
            cache_namespace: Prefix for this service's cache keys
            cache_ttl: TTL for entries this service writes
            cache: Cache to use; a private one is created when omitted
        """
        self.cache_namespace = cache_namespace
        self.cache_ttl = cache_ttl
        self.cache = cache if cache is not None else Cache(default_ttl_seconds=cache_ttl)

    def _make_cache_key(self, *parts) -> str:
        return ':'.join([self.cache_namespace] + [str(p) for p in parts])

    def _get_cached(self, *key_parts) -> Optional[Any]:
        return self.cache.get(self._make_cache_key(*key_parts))

    def _set_cached(self, value: Any, *key_parts, ttl: Optional[float] = None):
        self.cache.set(self._make_cache_key(*key_parts), value, ttl if ttl is not None else self.cache_ttl)

    def _invalidate_all(self):
        self.cache.invalidate_prefix(f"{self.cache_namespace}:")

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_stats()
