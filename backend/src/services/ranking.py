from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Tuple

from models import RankedResult, SearchQuery, VendorRecord
from utils import haversine_km


@dataclass(frozen=True)
class RankingWeights:
    """Blend weights for match_score.

    match_score = 100 * (distance * (1 - d/r) + rating * rating/5
                         + tags * |matched tags| / max(1, |query tags|))
    """

    distance: float = 0.5
    rating: float = 0.3
    tags: float = 0.2

    def __post_init__(self) -> None:
        values = (self.distance, self.rating, self.tags)
        if any(not math.isfinite(w) or w < 0 for w in values):
            raise ValueError(f"ranking weights must be non-negative: {values}")
        if abs(sum(values) - 1.0) > 1e-6:
            raise ValueError(f"ranking weights must sum to 1, got {sum(values):.6f}")


DEFAULT_WEIGHTS = RankingWeights()


def _passes_filters(vendor: VendorRecord, query: SearchQuery) -> bool:
    if query.service_categories and not (vendor.service_categories & query.service_categories):
        return False
    if vendor.rating < query.min_rating:
        return False
    if query.tags and not (vendor.tags & query.tags):
        return False
    if query.verified is not None and vendor.is_verified != query.verified:
        return False
    if query.online_only and not vendor.is_online:
        return False
    if query.min_hourly_rate is not None and vendor.hourly_rate < query.min_hourly_rate:
        return False
    if query.max_hourly_rate is not None and vendor.hourly_rate > query.max_hourly_rate:
        return False
    return True


def match_score(vendor: VendorRecord, distance_km: float, query: SearchQuery, weights: RankingWeights) -> float:
    distance_factor = max(0.0, 1.0 - distance_km / query.radius_km)
    rating_factor = min(max(vendor.rating / 5.0, 0.0), 1.0)
    tag_factor = len(vendor.tags & query.tags) / max(1, len(query.tags))
    score = 100.0 * (
        weights.distance * distance_factor
        + weights.rating * rating_factor
        + weights.tags * tag_factor
    )
    return round(min(max(score, 0.0), 100.0), 2)


_SORT_KEYS: Dict[str, Callable[[RankedResult], Tuple]] = {
    "distance": lambda r: (r.distance_km, str(r.vendor.id)),
    "rating": lambda r: (-r.vendor.rating, str(r.vendor.id)),
    "match": lambda r: (-r.match_score, str(r.vendor.id)),
    "price_low": lambda r: (r.vendor.hourly_rate, str(r.vendor.id)),
    "price_high": lambda r: (-r.vendor.hourly_rate, str(r.vendor.id)),
    "newest": lambda r: (-r.vendor.last_updated.timestamp(), str(r.vendor.id)),
}


def rank_and_filter(
    candidates: Iterable[VendorRecord],
    query: SearchQuery,
    *,
    weights: RankingWeights = DEFAULT_WEIGHTS,
) -> List[RankedResult]:
    """Exact-radius filter, hard filters, score, deterministic sort, truncate."""
    try:
        sort_key = _SORT_KEYS[query.sort_by]
    except KeyError:
        raise ValueError(f"unknown sort order: {query.sort_by!r}")

    ranked: list[RankedResult] = []
    seen: set[str] = set()
    for vendor in candidates:
        # sources may overlap when a box wraps; keep the first copy
        if vendor.id in seen:
            continue
        dist_km = haversine_km(query.center, vendor.location)
        if dist_km > query.radius_km:
            continue
        if not _passes_filters(vendor, query):
            continue
        seen.add(vendor.id)
        ranked.append(
            RankedResult(
                vendor=vendor,
                distance_km=dist_km,
                match_score=match_score(vendor, dist_km, query, weights),
            )
        )

    ranked.sort(key=sort_key)
    return ranked[: max(0, query.max_results)]
