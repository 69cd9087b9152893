"""
In-process key/value cache with per-entry TTL.

Expiry is lazy (checked on read) plus an explicit `clear_expired` sweep. The
store has a soft capacity: inserting a new key when full evicts the single
oldest-inserted entry (FIFO, not LRU).
"""
from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_ENTRIES = 1000
# TTLs at or below this are taken to be seconds and upscaled to milliseconds
SECONDS_TTL_THRESHOLD = 100_000


def resolve_ttl_ms(ttl: Optional[float]) -> int:
    """Normalize a TTL to milliseconds.

    Callers should always pass seconds; the upscaling only exists so a value
    handed over in milliseconds by mistake is not multiplied a second time.
    """
    effective = DEFAULT_TTL_SECONDS if ttl is None else ttl
    if effective > SECONDS_TTL_THRESHOLD:
        return int(effective)
    return int(effective * 1000)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class CacheEntry:
    key: str
    payload: Any
    inserted_at: int  # ms since epoch
    ttl: int  # ms
    access_count: int = 0

    def is_expired(self, now_ms: int) -> bool:
        return now_ms - self.inserted_at > self.ttl

    def remaining_seconds(self, now_ms: int) -> int:
        return max(0, (self.inserted_at + self.ttl - now_ms) // 1000)


class CacheStore:
    """Interface shared by the in-process, SQLite and tiered stores."""

    def get(self, key: str) -> Optional[Any]:
        entry = self.get_entry(key)
        return entry.payload if entry is not None else None

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        raise NotImplementedError

    def has(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def clear_expired(self) -> int:
        raise NotImplementedError

    def get_stats(self) -> Dict[str, Any]:
        raise NotImplementedError


class MemoryCacheStore(CacheStore):
    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES, clock_ms: Callable[[], int] = _now_ms):
        self.max_entries = max_entries
        self._clock_ms = clock_ms
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            logger.debug("Cache miss for key: %s", key)
            return None
        if entry.is_expired(self._clock_ms()):
            del self._entries[key]
            self.misses += 1
            logger.debug("Cache expired for key: %s", key)
            return None
        entry.access_count += 1
        self.hits += 1
        logger.debug("Cache hit for key: %s", key)
        return entry

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl_ms = resolve_ttl_ms(ttl)
        if key in self._entries:
            # Replace rather than mutate; the key moves to the newest position
            del self._entries[key]
        elif len(self._entries) >= self.max_entries:
            oldest_key, _ = self._entries.popitem(last=False)
            logger.debug("Cache full (%d entries); evicted %s", self.max_entries, oldest_key)
        self._entries[key] = CacheEntry(key=key, payload=value, inserted_at=self._clock_ms(), ttl=ttl_ms)
        logger.debug("Cached key: %s (ttl=%ds)", key, ttl_ms // 1000)

    def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock_ms()):
            del self._entries[key]
            return False
        return True

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        size = len(self._entries)
        self._entries.clear()
        logger.info("Cache cleared (%d entries removed)", size)

    def clear_expired(self) -> int:
        now = self._clock_ms()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Expired entries purged: %d", len(expired))
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total, 2) if total else 0.0,
            "max_entries": self.max_entries,
        }


class TieredCacheStore(CacheStore):
    """An in-process store in front of a shared (e.g. SQLite) store."""

    def __init__(self, primary: CacheStore, secondary: CacheStore, clock_ms: Callable[[], int] = _now_ms):
        self.primary = primary
        self.secondary = secondary
        self._clock_ms = clock_ms

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self.primary.get_entry(key)
        if entry is not None:
            return entry
        entry = self.secondary.get_entry(key)
        if entry is None:
            return None
        remaining = entry.remaining_seconds(self._clock_ms())
        if remaining > 0:
            self.primary.set(key, entry.payload, remaining)
        return entry

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self.primary.set(key, value, ttl)
        self.secondary.set(key, value, ttl)

    def has(self, key: str) -> bool:
        return self.primary.has(key) or self.secondary.has(key)

    def delete(self, key: str) -> bool:
        removed_primary = self.primary.delete(key)
        removed_secondary = self.secondary.delete(key)
        return removed_primary or removed_secondary

    def clear(self) -> None:
        self.primary.clear()
        self.secondary.clear()

    def clear_expired(self) -> int:
        return self.primary.clear_expired() + self.secondary.clear_expired()

    def get_stats(self) -> Dict[str, Any]:
        stats = dict(self.primary.get_stats())
        stats["secondary"] = self.secondary.get_stats()
        return stats
