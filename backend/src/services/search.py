from __future__ import annotations

import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from config import Configuration
from models import SORT_OPTIONS, AreaStats, BoundingBox, GeoPoint, SearchEnvelope, SearchQuery, VendorRecord
from services.bbox_builder import bounding_box
from services.candidate_source import InMemoryVendorSource, VendorCandidateSource
from services.errors import (
    CandidateSourceUnavailable,
    InvalidCoordinate,
    InvalidQuery,
    InvalidRadius,
    SearchCancelled,
)
from services.query_cache import QueryCache, entry_mentions_vendor, fingerprint
from services.ranking import rank_and_filter
from utils import haversine_km, validate_coordinate


def _finite_number(value: Any, name: str) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        raise InvalidQuery(f"{name} must be a number: {value!r}")
    if not math.isfinite(out):
        raise InvalidQuery(f"{name} must be finite: {value!r}")
    return out


def validate_query(query: SearchQuery, cfg: Configuration) -> SearchQuery:
    """Check a query and return it with limits applied.

    max_results above the configured cap is clamped rather than rejected.
    """
    if not isinstance(query.center, GeoPoint):
        raise InvalidCoordinate("query center must be a GeoPoint")
    validate_coordinate(query.center.latitude, query.center.longitude)

    try:
        radius = float(query.radius_km)
    except (TypeError, ValueError):
        raise InvalidRadius(f"radiusKm must be a number: {query.radius_km!r}")
    if not math.isfinite(radius) or radius <= 0:
        raise InvalidRadius(f"radiusKm must be positive, got {query.radius_km!r}")
    if radius > cfg.max_radius_km:
        raise InvalidRadius(f"radiusKm {radius} exceeds maximum {cfg.max_radius_km}")

    min_rating = _finite_number(query.min_rating, "minRating")
    if not 0.0 <= min_rating <= 5.0:
        raise InvalidQuery(f"minRating must be within [0, 5], got {min_rating}")

    if query.sort_by not in SORT_OPTIONS:
        raise InvalidQuery(f"sortBy must be one of {', '.join(SORT_OPTIONS)}; got {query.sort_by!r}")

    if isinstance(query.max_results, bool) or not isinstance(query.max_results, int):
        raise InvalidQuery(f"maxResults must be an integer: {query.max_results!r}")
    if query.max_results < 1:
        raise InvalidQuery(f"maxResults must be positive, got {query.max_results}")
    max_results = min(query.max_results, cfg.max_results_cap)

    min_rate = query.min_hourly_rate
    max_rate = query.max_hourly_rate
    if min_rate is not None:
        min_rate = _finite_number(min_rate, "minHourlyRate")
    if max_rate is not None:
        max_rate = _finite_number(max_rate, "maxHourlyRate")
    if min_rate is not None and max_rate is not None and min_rate > max_rate:
        raise InvalidQuery("minHourlyRate cannot exceed maxHourlyRate")

    return replace(
        query,
        radius_km=radius,
        min_rating=min_rating,
        max_results=max_results,
        min_hourly_rate=min_rate,
        max_hourly_rate=max_rate,
    )


def _section(filters: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = filters.get(name) or {}
    if not isinstance(value, dict):
        raise InvalidQuery(f"{name} must be an object, got {type(value).__name__}")
    return value


def _labels(section: Dict[str, Any], name: str) -> frozenset:
    values = section.get(name) or []
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        raise InvalidQuery(f"services.{name} must be a list of strings")
    return frozenset(values)


def query_from_filters(filters: Dict[str, Any], cfg: Configuration) -> SearchQuery:
    """Map a nested advanced-search document onto a SearchQuery.

    Shape: ``location{lat,lng,radius}``, ``services{categories,tags}``,
    ``pricing{minHourly,maxHourly}``, ``ratings{minimum}``,
    ``verification{required}``, ``availability{onlineOnly}``,
    ``sorting{by,limit}``.
    """
    if not isinstance(filters, dict):
        raise InvalidQuery("advanced search filters must be an object")
    location = _section(filters, "location")
    if "lat" not in location or "lng" not in location:
        raise InvalidCoordinate("advanced search requires location.lat and location.lng")
    services = _section(filters, "services")
    pricing = _section(filters, "pricing")
    ratings = _section(filters, "ratings")
    verification = _section(filters, "verification")
    availability = _section(filters, "availability")
    sorting = _section(filters, "sorting")
    sort_by = sorting.get("by") or "distance"
    if not isinstance(sort_by, str):
        raise InvalidQuery(f"sorting.by must be a string: {sort_by!r}")

    required = verification.get("required")
    return SearchQuery(
        center=GeoPoint(location["lat"], location["lng"]),
        radius_km=location.get("radius") or cfg.default_radius_km,
        service_categories=_labels(services, "categories"),
        min_rating=ratings.get("minimum") or 0.0,
        tags=_labels(services, "tags"),
        sort_by=sort_by,
        max_results=sorting.get("limit") or cfg.default_max_results,
        # only "verified required" filters; false means "don't care"
        verified=True if required else None,
        online_only=bool(availability.get("onlineOnly", False)),
        min_hourly_rate=pricing.get("minHourly"),
        max_hourly_rate=pricing.get("maxHourly"),
    )


class SearchOrchestrator:
    """Validate, consult the cache, fetch, rank and cache vendor searches."""

    def __init__(
        self,
        source: VendorCandidateSource,
        cache: QueryCache,
        cfg: Optional[Configuration] = None,
        *,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.source = source
        self.cache = cache
        self.cfg = cfg or Configuration()
        self.weights = self.cfg.ranking_weights()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max(1, self.cfg.fetch_workers), thread_name_prefix="vendor-fetch"
        )
        if self.cfg.invalidate_on_write and isinstance(source, InMemoryVendorSource):
            source.subscribe(self.vendor_changed)

    def search(
        self,
        query: SearchQuery,
        *,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SearchEnvelope:
        started = time.perf_counter()
        query = validate_query(query, self.cfg)
        key = fingerprint(query, self.cfg.fingerprint_precision)

        entry = None
        try:
            entry = self.cache.get(key)
        except Exception as exc:
            logger.warning("query cache read failed, computing directly: {}", exc)

        if entry is not None:
            elapsed = (time.perf_counter() - started) * 1000.0
            logger.debug("cache hit key={} results={}", key[:19], len(entry.results))
            return SearchEnvelope(
                results=entry.results,
                query=query,
                cached=True,
                compute_time_ms=elapsed,
                fingerprint=key,
            )

        _check_cancelled(cancel_event)
        # read before the snapshot; any invalidation after this point voids the write
        generation = None
        try:
            generation = self.cache.generation
        except Exception as exc:
            logger.warning("query cache generation unavailable: {}", exc)
        box = bounding_box(query.center, query.radius_km)
        candidates = self._fetch(box, timeout)
        _check_cancelled(cancel_event)
        results = tuple(rank_and_filter(candidates, query, weights=self.weights))
        _check_cancelled(cancel_event)

        if generation is not None:
            try:
                stored = self.cache.put(
                    key, results, self.cfg.cache_ttl_sec, query=query, expected_generation=generation
                )
                if stored is None:
                    logger.debug("cache invalidated during search, not caching key={}", key[:19])
            except Exception as exc:
                logger.warning("query cache write failed: {}", exc)

        elapsed = (time.perf_counter() - started) * 1000.0
        logger.info(
            "search center=({:.4f},{:.4f}) radius_km={} candidates={} results={} ms={:.1f}",
            query.center.latitude,
            query.center.longitude,
            query.radius_km,
            len(candidates),
            len(results),
            elapsed,
        )
        return SearchEnvelope(
            results=results,
            query=query,
            cached=False,
            compute_time_ms=elapsed,
            fingerprint=key,
        )

    def _fetch(self, box: BoundingBox, timeout: Optional[float]) -> Sequence[VendorRecord]:
        timeout = self.cfg.fetch_timeout_sec if timeout is None else timeout
        future = self._executor.submit(self.source.fetch_in_box, box)
        try:
            return list(future.result(timeout=timeout))
        except FutureTimeout:
            future.cancel()
            raise CandidateSourceUnavailable(f"vendor fetch timed out after {timeout}s")
        except CandidateSourceUnavailable:
            raise
        except Exception as exc:
            raise CandidateSourceUnavailable(f"vendor fetch failed: {exc}") from exc

    def find_nearby(
        self,
        center: GeoPoint,
        radius_km: float = 10.0,
        limit: int = 20,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> SearchEnvelope:
        return self.search(
            SearchQuery(center=center, radius_km=radius_km, max_results=limit, sort_by="distance"),
            cancel_event=cancel_event,
        )

    def search_by_category(
        self,
        category: str,
        center: GeoPoint,
        radius_km: float = 25.0,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> SearchEnvelope:
        return self.search(
            SearchQuery(
                center=center,
                radius_km=radius_km,
                service_categories=frozenset([category]),
                sort_by="rating",
                max_results=self.cfg.default_max_results,
            ),
            cancel_event=cancel_event,
        )

    def advanced_search(
        self, filters: Dict[str, Any], *, cancel_event: Optional[threading.Event] = None
    ) -> SearchEnvelope:
        return self.search(query_from_filters(filters, self.cfg), cancel_event=cancel_event)

    def area_stats(self, center: GeoPoint, radius_km: float = 25.0) -> AreaStats:
        """Vendor counts and categories inside the circle. Not cached."""
        query = validate_query(SearchQuery(center=center, radius_km=radius_km), self.cfg)
        box = bounding_box(query.center, query.radius_km)
        inside: List[VendorRecord] = [
            v for v in self._fetch(box, None) if haversine_km(query.center, v.location) <= query.radius_km
        ]
        categories: set[str] = set()
        for v in inside:
            categories.update(v.service_categories)
        return AreaStats(
            center=query.center,
            radius_km=query.radius_km,
            box=box,
            total=len(inside),
            verified=sum(1 for v in inside if v.is_verified),
            online=sum(1 for v in inside if v.is_online),
            average_rating=round(sum(v.rating for v in inside) / len(inside), 2) if inside else 0.0,
            categories=sorted(categories),
        )

    def vendor_changed(
        self,
        vendor_id: str,
        old: Optional[VendorRecord] = None,
        new: Optional[VendorRecord] = None,
    ) -> int:
        """Listener for vendor store writes."""
        locations = [v.location for v in (old, new) if v is not None]
        return self.invalidate_vendor(vendor_id, *locations)

    def invalidate_vendor(self, vendor_id: str, *locations: GeoPoint) -> int:
        """Drop cached results a change to this vendor may have made stale."""
        removed = self.cache.invalidate(entry_mentions_vendor(vendor_id, *locations))
        if removed:
            logger.info("invalidated {} cached searches after change to vendor {}", removed, vendor_id)
        return removed

    def invalidate_all(self) -> int:
        removed = self.cache.invalidate_all()
        logger.info("invalidated all {} cached searches", removed)
        return removed

    def status(self) -> Dict[str, Any]:
        return {
            "cache": self.cache.stats(),
            "source": type(self.source).__name__,
            "weights": {
                "distance": self.weights.distance,
                "rating": self.weights.rating,
                "tags": self.weights.tags,
            },
            "limits": {
                "maxRadiusKm": self.cfg.max_radius_km,
                "maxResultsCap": self.cfg.max_results_cap,
                "cacheTtlSec": self.cfg.cache_ttl_sec,
            },
        }


def _check_cancelled(event: Optional[threading.Event]) -> None:
    if event is not None and event.is_set():
        raise SearchCancelled("search cancelled by caller")
