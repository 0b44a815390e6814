"""Content-fingerprint cache of drift results."""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from arch_drift.core.drift_config import DEFAULT_CACHE_MAX_ENTRIES, DEFAULT_CACHE_TTL_SECONDS
from arch_drift.core.models import DriftResult

logger = logging.getLogger(__name__)


def fingerprint(path: str, content: str) -> str:
    """sha256 over the path and the exact file content."""
    digest = hashlib.sha256()
    digest.update(path.encode("utf-8"))
    digest.update(b"\0")
    digest.update(content.encode("utf-8", errors="surrogateescape"))
    return digest.hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: str
    results: Tuple[DriftResult, ...]
    extracted_at: float
    expires_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    size: int = 0

    @property
    def hit_ratio(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "size": self.size,
            "hit_ratio": self.hit_ratio,
        }


class ResultCache:
    """
    Thread-safe fingerprint -> CacheEntry map with a TTL and an LRU cap.

    Losing an entry only costs a recomputation, so eviction happens whenever
    the cap is reached and expired entries are dropped lazily on lookup.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._stats = CacheStats()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                self._stats.expirations += 1
                self._stats.misses += 1
                return None
            self._entries.move_to_end(key)
            self._stats.hits += 1
            return entry

    def put(self, key: str, results: Tuple[DriftResult, ...]) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry(fingerprint=key, results=tuple(results), extracted_at=now, expires_at=now + self.ttl_seconds)
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._stats.evictions += 1
                logger.debug(f"Evicted cache entry {evicted[:12]}")
        return entry

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
                expirations=self._stats.expirations,
                size=len(self._entries),
            )
