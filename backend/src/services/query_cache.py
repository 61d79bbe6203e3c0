from __future__ import annotations

import hashlib
import json
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, Iterable, Optional

from models import CacheEntry, GeoPoint, RankedResult, SearchQuery
from utils import haversine_km


DEFAULT_PRECISION = 4  # ~11 m at the equator


def fingerprint(query: SearchQuery, precision: int = DEFAULT_PRECISION) -> str:
    """Stable cache key over every field that changes the result list.

    The center is rounded so GPS jitter below ``precision`` decimals maps to
    the same key.
    """
    # + 0.0 folds -0.0 into 0.0 so both sides of the equator share a key
    payload = {
        "lat": round(query.center.latitude, precision) + 0.0,
        "lng": round(query.center.longitude, precision) + 0.0,
        "radius_km": query.radius_km,
        "categories": sorted(query.service_categories),
        "min_rating": query.min_rating,
        "tags": sorted(query.tags),
        "sort_by": query.sort_by,
        "max_results": query.max_results,
        "verified": query.verified,
        "online_only": query.online_only,
        "min_hourly_rate": query.min_hourly_rate,
        "max_hourly_rate": query.max_hourly_rate,
    }
    raw = json.dumps(payload, sort_keys=True)
    digest = hashlib.sha256(raw.encode()).hexdigest()
    return f"search:{digest}"


def entry_mentions_vendor(vendor_id: str, *locations: Optional[GeoPoint]) -> Callable[[CacheEntry], bool]:
    """Predicate matching entries a change to ``vendor_id`` could make stale.

    An entry is stale when it lists the vendor, or when one of ``locations``
    (old or new position) falls inside the entry's search circle.
    """
    points = [p for p in locations if p is not None]

    def _predicate(entry: CacheEntry) -> bool:
        if any(r.vendor.id == vendor_id for r in entry.results):
            return True
        if entry.query is None:
            # cannot tell which area the entry covers
            return bool(points)
        return any(haversine_km(entry.query.center, p) <= entry.query.radius_km for p in points)

    return _predicate


class QueryCache:
    """Thread-safe TTL + LRU cache of complete search results.

    Every invalidation bumps ``generation``. A writer that read the generation
    before computing passes it to ``put`` as ``expected_generation``; if an
    invalidation ran in between, the write is dropped.
    """

    def __init__(
        self,
        capacity: int = 512,
        default_ttl: float = 300.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("cache capacity must be at least 1")
        if default_ttl <= 0:
            raise ValueError("cache ttl must be positive")
        self.capacity = capacity
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._generation = 0
        self._stale_writes = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry

    def put(
        self,
        key: str,
        results: Iterable[RankedResult],
        ttl: Optional[float] = None,
        *,
        query: Optional[SearchQuery] = None,
        expected_generation: Optional[int] = None,
    ) -> Optional[CacheEntry]:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("cache ttl must be positive")
        with self._lock:
            if expected_generation is not None and expected_generation != self._generation:
                self._stale_writes += 1
                return None
            now = self._clock()
            entry = CacheEntry(
                fingerprint=key,
                results=tuple(results),
                computed_at=now,
                expires_at=now + ttl,
                query=query,
            )
            if key in self._entries:
                self._entries.move_to_end(key)
            elif len(self._entries) >= self.capacity:
                self._purge_expired(now)
                while len(self._entries) >= self.capacity:
                    self._entries.popitem(last=False)
                    self._evictions += 1
            self._entries[key] = entry
            return entry

    def invalidate(self, predicate: Callable[[CacheEntry], bool]) -> int:
        with self._lock:
            doomed = [k for k, e in self._entries.items() if predicate(e)]
            for key in doomed:
                del self._entries[key]
            self._generation += 1
            return len(doomed)

    def invalidate_all(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._generation += 1
            return count

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "capacity": self.capacity,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
                "generation": self._generation,
                "stale_writes": self._stale_writes,
            }

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]
        self._expirations += len(expired)
