"""In-memory TTL cache for computed activity streams and the repository listing."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from cachetools import TTLCache

from hours_tracker.models import ActivityItem

logger = logging.getLogger(__name__)

# Longest window-scaled TTL; the TTLCache itself never evicts before this.
MAX_TTL_MINUTES = 360


@dataclass(frozen=True)
class CacheEntry:
    items: Tuple[ActivityItem, ...]
    timestamp: float


def ttl_minutes_for(days):
    """Short windows change fastest, so they expire soonest."""
    if days <= 1:
        return 30
    if days <= 7:
        return 120
    return MAX_TTL_MINUTES


def make_cache_key(repos, days, author):
    """Order independent key: sorted repos, day window, author filter."""
    return f"{','.join(sorted(repos))}:{days}:{author}"


class ActivityCache:
    """Keyed activity store with lazy, window-scaled expiry.

    Expired entries are only noticed (and deleted) on lookup. One RLock
    serializes every read and write.
    """

    def __init__(self, maxsize=256, repositories_ttl_minutes=60, clock=time.time):
        self._clock = clock
        self._data = TTLCache(maxsize=maxsize, ttl=MAX_TTL_MINUTES * 60, timer=clock)
        self._lock = threading.RLock()
        self._repositories = None
        self._repositories_timestamp = None
        self.repositories_ttl_seconds = repositories_ttl_minutes * 60

    def get_entry(self, repos, days, author) -> Optional[CacheEntry]:
        key = make_cache_key(repos, days, author)
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            ttl = ttl_minutes_for(days)
            if self._clock() - entry.timestamp < ttl * 60:
                logger.info(f"Cache hit for {key} ({ttl}min TTL)")
                return entry
            del self._data[key]
            logger.info(f"Cache entry expired for {key}")
            return None

    def get(self, repos, days, author) -> Optional[List[ActivityItem]]:
        """Cached items, or None on a miss (including an expired entry)."""
        entry = self.get_entry(repos, days, author)
        return list(entry.items) if entry else None

    def put(self, repos, days, author, items):
        key = make_cache_key(repos, days, author)
        with self._lock:
            self._data[key] = CacheEntry(items=tuple(items), timestamp=self._clock())
        logger.info(f"Cached {len(items)} items for {key}")

    def invalidate(self, pattern=None):
        """Drop entries whose key contains `pattern`, or everything when no pattern is given.

        Returns:
            Number of activity entries removed.
        """
        with self._lock:
            if pattern:
                keys = [key for key in list(self._data.keys()) if pattern in key]
                for key in keys:
                    self._data.pop(key, None)
                removed = len(keys)
            else:
                removed = len(self._data)
                self._data.clear()
                self._repositories = None
                self._repositories_timestamp = None
        logger.info(f"Cache cleared{f' (pattern: {pattern})' if pattern else ''}: {removed} entries")
        return removed

    def get_repositories(self):
        with self._lock:
            if self._repositories is None:
                return None
            if self._clock() - self._repositories_timestamp >= self.repositories_ttl_seconds:
                self._repositories = None
                self._repositories_timestamp = None
                return None
            return list(self._repositories)

    def put_repositories(self, repositories):
        with self._lock:
            self._repositories = list(repositories)
            self._repositories_timestamp = self._clock()

    def clear_repositories(self):
        with self._lock:
            self._repositories = None
            self._repositories_timestamp = None

    def stats(self):
        with self._lock:
            return {
                "entries": len(self._data),
                "keys": sorted(self._data.keys()),
                "repositories_cached": self._repositories is not None,
            }
