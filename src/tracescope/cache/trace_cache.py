"""
Bounded in-memory cache for trace analyses.

Entries are bounded by count and by an estimated byte size; when either
limit would be exceeded on set(), entries are evicted one at a time by the
configured strategy. A value larger than max_bytes on its own is not
stored and leaves the other entries alone. Expired entries read as misses
and are swept in the background by a daemon timer that shares the
foreground lock.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Hashable, Iterable, Optional, Union

from tracescope.config import settings
from tracescope.core.enums import EvictionStrategy

logger = logging.getLogger(__name__)

FALLBACK_SIZE_BYTES = 1000


@dataclass(frozen=True)
class CacheKey:
    identifier: str          # tx hash or block id
    network: str
    method: str              # "callTracer", "structLog", "block", ...


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    last_accessed_at: float
    size_bytes: int
    ttl: float
    access_count: int = 0
    dependency_tags: FrozenSet[str] = field(default_factory=frozenset)

    def expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


@dataclass(frozen=True)
class CacheStats:
    entries: int
    total_bytes: int
    hits: int
    misses: int
    evictions: int

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


def estimate_size(value: Any) -> int:
    """Two bytes per character of the JSON form."""
    try:
        return len(json.dumps(value, default=str)) * 2
    except (TypeError, ValueError):
        return FALLBACK_SIZE_BYTES


_VICTIM_ORDER: Dict[EvictionStrategy, Callable[[CacheEntry], float]] = {
    EvictionStrategy.LRU: lambda e: e.last_accessed_at,
    EvictionStrategy.LFU: lambda e: e.access_count,
    EvictionStrategy.TTL: lambda e: e.created_at,
    EvictionStrategy.SIZE: lambda e: -e.size_bytes,
}


class TraceCache:
    def __init__(
        self,
        max_entries: int = settings.CACHE_MAX_ENTRIES,
        max_bytes: int = settings.CACHE_MAX_BYTES,
        default_ttl: float = settings.CACHE_DEFAULT_TTL_SEC,
        cleanup_interval: float = settings.CACHE_CLEANUP_INTERVAL_SEC,
        strategy: Union[EvictionStrategy, str] = settings.CACHE_EVICTION_STRATEGY,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self.default_ttl = default_ttl
        self.cleanup_interval = cleanup_interval
        self.strategy = EvictionStrategy(strategy)
        self._clock = clock

        self._lock = threading.RLock()
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._bytes = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0

        self._timer: Optional[threading.Timer] = None
        self._closed = False
        if cleanup_interval > 0:
            self._schedule_cleanup()

    # ---- Public API ----

    def get(self, key: Hashable) -> Any:
        """Cached value, or None on a miss (absent or expired)."""
        with self._lock:
            entry = self._entries.get(key)
            now = self._clock()
            if entry is None or entry.expired(now):
                if entry is not None:
                    self._remove(key)
                self._misses += 1
                return None
            entry.access_count += 1
            entry.last_accessed_at = now
            self._hits += 1
            return entry.value

    def set(
        self,
        key: Hashable,
        value: Any,
        ttl: Optional[float] = None,
        tags: Iterable[str] = (),
    ) -> None:
        size = estimate_size(value)
        with self._lock:
            if key in self._entries:
                self._remove(key)
            if size > self.max_bytes:
                logger.warning("not caching %s: %d bytes exceeds max_bytes %d", key, size, self.max_bytes)
                return
            while self._entries and (
                len(self._entries) >= self.max_entries or self._bytes + size > self.max_bytes
            ):
                self._evict_one()
            now = self._clock()
            self._entries[key] = CacheEntry(
                value=value,
                created_at=now,
                last_accessed_at=now,
                size_bytes=size,
                ttl=self.default_ttl if ttl is None else ttl,
                dependency_tags=frozenset(tags),
            )
            self._bytes += size

    def delete(self, key: Hashable) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            self._remove(key)
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._bytes = 0
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def invalidate_by_dependency(self, tag: str) -> int:
        """Drop every entry tagged with tag; returns how many were dropped."""
        with self._lock:
            doomed = [k for k, e in self._entries.items() if tag in e.dependency_tags]
            for key in doomed:
                self._remove(key)
        if doomed:
            logger.debug("invalidated %d cache entries tagged %s", len(doomed), tag)
        return len(doomed)

    def get_or_compute(
        self,
        key: Hashable,
        compute: Callable[[], Any],
        ttl: Optional[float] = None,
        tags: Iterable[str] = (),
    ) -> Any:
        # compute() runs outside the lock; concurrent misses may both compute
        value = self.get(key)
        if value is not None:
            return value
        value = compute()
        self.set(key, value, ttl=ttl, tags=tags)
        return value

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                entries=len(self._entries),
                total_bytes=self._bytes,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
            )

    def cleanup_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.expired(now)]
            for key in expired:
                self._remove(key)
        return len(expired)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.expired(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __enter__(self) -> "TraceCache":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ---- Internals ----

    def _remove(self, key: Hashable) -> None:
        entry = self._entries.pop(key)
        self._bytes -= entry.size_bytes

    def _evict_one(self) -> None:
        victim = min(self._entries, key=lambda k: _VICTIM_ORDER[self.strategy](self._entries[k]))
        self._remove(victim)
        self._evictions += 1
        logger.debug("evicted cache entry %s (%s)", victim, self.strategy.value)

    def _schedule_cleanup(self) -> None:
        self._timer = threading.Timer(self.cleanup_interval, self._run_cleanup)
        self._timer.daemon = True
        self._timer.start()

    def _run_cleanup(self) -> None:
        removed = self.cleanup_expired()
        if removed:
            logger.debug("swept %d expired cache entries", removed)
        with self._lock:
            if not self._closed:
                self._schedule_cleanup()
