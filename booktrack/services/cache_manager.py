"""
In-memory TTL cache for search results.
Only successful lookups are stored; failures always go back to the proxy.
"""

import hashlib
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from booktrack.config import settings

logger = logging.getLogger(__name__)


class SearchCache:
    """Bounded in-memory cache with per-entry expiry."""

    def __init__(self, ttl_seconds: Optional[int] = None, max_entries: Optional[int] = None):
        self.ttl_seconds = settings.cache_ttl if ttl_seconds is None else ttl_seconds
        self.max_entries = max_entries or settings.cache_max_entries
        self.memory_cache: Dict[str, Any] = {}
        self.memory_cache_lock = threading.RLock()
        self.cache_stats = {
            'hits': 0,
            'misses': 0,
        }

    @staticmethod
    def make_key(*parts: Any) -> str:
        """Build a stable cache key from the request parameters."""
        raw = "|".join(str(p) for p in parts)
        return "search:" + hashlib.md5(raw.encode('utf-8')).hexdigest()

    def get(self, key: str) -> Optional[Any]:
        with self.memory_cache_lock:
            cache_entry = self.memory_cache.get(key)
            if cache_entry:
                value, expires_at = cache_entry
                if datetime.now() < expires_at:
                    self.cache_stats['hits'] += 1
                    return value
                del self.memory_cache[key]

        self.cache_stats['misses'] += 1
        return None

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return

        with self.memory_cache_lock:
            expires_at = datetime.now() + timedelta(seconds=ttl)
            self.memory_cache[key] = (value, expires_at)

            if len(self.memory_cache) > self.max_entries:
                # Evict the 10% of entries closest to expiry
                sorted_items = sorted(
                    self.memory_cache.items(),
                    key=lambda x: x[1][1]
                )
                for k, _ in sorted_items[:max(1, self.max_entries // 10)]:
                    self.memory_cache.pop(k, None)
                logger.debug(f"Search cache full, evicted down to {len(self.memory_cache)} entries")

    def get_stats(self) -> Dict[str, Any]:
        stats = self.cache_stats.copy()
        stats['memory_cache_size'] = len(self.memory_cache)

        if stats['hits'] + stats['misses'] > 0:
            stats['hit_ratio'] = stats['hits'] / (stats['hits'] + stats['misses'])
        else:
            stats['hit_ratio'] = 0.0

        return stats
