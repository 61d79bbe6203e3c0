"""Data models for vendor geo search."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

from utils import validate_coordinate


SORT_OPTIONS = ("distance", "rating", "match", "price_low", "price_high", "newest")


def _normalize_labels(values: Optional[Iterable[str]]) -> frozenset[str]:
    if not values:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    return frozenset(v.strip().lower() for v in values if v and v.strip())


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        lat, lon = validate_coordinate(self.latitude, self.longitude)
        object.__setattr__(self, "latitude", lat)
        object.__setattr__(self, "longitude", lon)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned lat/lng rectangle.

    When the box wraps the antimeridian ``min_lng > max_lng``; a box covering
    every longitude has ``min_lng == -180`` and ``max_lng == 180``.
    """

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    @property
    def crosses_antimeridian(self) -> bool:
        return self.min_lng > self.max_lng

    @property
    def spans_all_longitudes(self) -> bool:
        return self.min_lng <= -180.0 and self.max_lng >= 180.0

    def contains(self, point: GeoPoint) -> bool:
        if not self.min_lat <= point.latitude <= self.max_lat:
            return False
        if self.crosses_antimeridian:
            return point.longitude >= self.min_lng or point.longitude <= self.max_lng
        return self.min_lng <= point.longitude <= self.max_lng


@dataclass(frozen=True)
class VendorRecord:
    id: str
    location: GeoPoint
    service_categories: frozenset[str]
    rating: float = 0.0
    review_count: int = 0
    tags: frozenset[str] = frozenset()
    hourly_rate: float = 0.0
    is_online: bool = False
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    name: Optional[str] = None
    is_verified: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "service_categories", _normalize_labels(self.service_categories))
        object.__setattr__(self, "tags", _normalize_labels(self.tags))
        if not self.service_categories:
            raise ValueError(f"vendor {self.id!r} has no service categories")
        if not (math.isfinite(self.rating) and 0.0 <= self.rating <= 5.0):
            raise ValueError(f"vendor {self.id!r} rating out of range: {self.rating}")
        if self.review_count < 0:
            raise ValueError(f"vendor {self.id!r} review_count must be non-negative")
        if not (math.isfinite(self.hourly_rate) and self.hourly_rate >= 0.0):
            raise ValueError(f"vendor {self.id!r} hourly_rate must be non-negative")

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "VendorRecord":
        """Parse the camelCase shape served by vendor providers.

        Accepts either a nested ``location`` object or flat ``lat``/``lng``.
        """
        loc = raw.get("location") or {}
        lat = loc.get("latitude", loc.get("lat", raw.get("lat", raw.get("latitude"))))
        lng = loc.get("longitude", loc.get("lng", raw.get("lng", raw.get("longitude"))))
        if raw.get("id") is None:
            raise ValueError("vendor row without id")
        updated = raw.get("lastUpdated") or raw.get("updatedAt")
        if isinstance(updated, str):
            last_updated = datetime.fromisoformat(updated.replace("Z", "+00:00"))
        elif isinstance(updated, datetime):
            last_updated = updated
        else:
            last_updated = datetime.now(timezone.utc)
        return cls(
            id=str(raw["id"]),
            location=GeoPoint(lat, lng),
            service_categories=frozenset(raw.get("serviceCategories") or []),
            rating=float(raw.get("rating") or 0.0),
            review_count=int(raw.get("reviewCount") or 0),
            tags=frozenset(raw.get("tags") or []),
            hourly_rate=float(raw.get("hourlyRate") or 0.0),
            is_online=bool(raw.get("isOnline", False)),
            last_updated=last_updated,
            name=raw.get("name") or raw.get("businessName"),
            is_verified=bool(raw.get("isVerified", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "location": {"latitude": self.location.latitude, "longitude": self.location.longitude},
            "serviceCategories": sorted(self.service_categories),
            "rating": self.rating,
            "reviewCount": self.review_count,
            "tags": sorted(self.tags),
            "hourlyRate": self.hourly_rate,
            "isOnline": self.is_online,
            "isVerified": self.is_verified,
            "lastUpdated": self.last_updated.isoformat(),
        }


@dataclass(frozen=True)
class SearchQuery:
    center: GeoPoint
    radius_km: float
    service_categories: frozenset[str] = frozenset()
    min_rating: float = 0.0
    tags: frozenset[str] = frozenset()
    sort_by: str = "distance"
    max_results: int = 20
    verified: Optional[bool] = None
    online_only: bool = False
    min_hourly_rate: Optional[float] = None
    max_hourly_rate: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "service_categories", _normalize_labels(self.service_categories))
        object.__setattr__(self, "tags", _normalize_labels(self.tags))
        object.__setattr__(self, "sort_by", (self.sort_by or "distance").strip().lower())


@dataclass(frozen=True)
class RankedResult:
    vendor: VendorRecord
    distance_km: float
    match_score: float


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: str
    results: Tuple[RankedResult, ...]
    computed_at: float
    expires_at: float
    query: Optional[SearchQuery] = None


@dataclass
class SearchEnvelope:
    results: Tuple[RankedResult, ...]
    query: SearchQuery
    cached: bool
    compute_time_ms: float
    fingerprint: str = ""


@dataclass
class AreaStats:
    center: GeoPoint
    radius_km: float
    box: BoundingBox
    total: int = 0
    verified: int = 0
    online: int = 0
    average_rating: float = 0.0
    categories: list[str] = field(default_factory=list)
