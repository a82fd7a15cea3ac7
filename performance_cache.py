"""
Performance caching utilities
In-memory TTL cache for oracle prices and registrar TLD pricing, with hit/miss
counters for the status command
"""

import logging
import time
from typing import Dict, Any, Optional, Tuple

logger = logging.getLogger(__name__)

class SimpleCache:
    """TTL cache keyed by string; entries are (value, expires_at) pairs"""

    def __init__(self, default_ttl: int = 300):
        self.entries: Dict[str, Tuple[Any, float]] = {}
        self.default_ttl = default_ttl
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        entry = self.entries.get(key)
        if entry is not None:
            value, expires_at = entry
            if expires_at > time.time():
                self.hits += 1
                return value
            self.entries.pop(key, None)
        self.misses += 1
        return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self.entries[key] = (value, time.time() + (ttl or self.default_ttl))

    def clear(self) -> None:
        self.entries.clear()
        self.hits = 0
        self.misses = 0

    def cleanup_expired(self) -> int:
        """Drop expired entries, returns how many were dropped"""
        now = time.time()
        expired = [key for key, (_, expires_at) in self.entries.items() if expires_at <= now]
        for key in expired:
            del self.entries[key]
        if expired:
            logger.debug(f"🧹 Cache cleanup removed {len(expired)} expired entries")
        return len(expired)

# Global cache instance
_cache = SimpleCache()

def cache_get(key: str) -> Optional[Any]:
    return _cache.get(key)

def cache_set(key: str, value: Any, ttl: Optional[int] = None) -> None:
    _cache.set(key, value, ttl)

def clear_cache() -> None:
    _cache.clear()

def cache_stats() -> Dict[str, Any]:
    """Entry count and hit rate of the global cache"""
    expired = _cache.cleanup_expired()
    lookups = _cache.hits + _cache.misses
    return {
        'total_entries': len(_cache.entries),
        'expired_removed': expired,
        'hits': _cache.hits,
        'misses': _cache.misses,
        'hit_rate': round(_cache.hits / lookups, 3) if lookups else None,
    }
