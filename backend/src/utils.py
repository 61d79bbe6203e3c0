"""Utility helpers for vendor geo search."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Optional

from services.errors import InvalidCoordinate

if TYPE_CHECKING:  # pragma: no cover
    from models import GeoPoint


EARTH_RADIUS_KM = 6371.0


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    if not value:
        return "unset"
    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"{value[:visible]}...{value[-visible:]}"


def validate_coordinate(lat: Any, lon: Any) -> tuple[float, float]:
    """Return (lat, lon) as floats or raise InvalidCoordinate."""
    try:
        lat_f = float(lat)
        lon_f = float(lon)
    except (TypeError, ValueError):
        raise InvalidCoordinate(f"coordinates must be numeric: lat={lat!r} lng={lon!r}")
    if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
        raise InvalidCoordinate(f"coordinates must be finite: lat={lat_f} lng={lon_f}")
    if not -90.0 <= lat_f <= 90.0:
        raise InvalidCoordinate(f"latitude out of range: {lat_f}")
    if not -180.0 <= lon_f <= 180.0:
        raise InvalidCoordinate(f"longitude out of range: {lon_f}")
    return lat_f, lon_f


def haversine_km(a: "GeoPoint", b: "GeoPoint") -> float:
    """Great-circle distance in kilometers."""
    lat1, lon1 = validate_coordinate(a.latitude, a.longitude)
    lat2, lon2 = validate_coordinate(b.latitude, b.longitude)
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # rounding can push h a hair outside [0, 1] for antipodal points
    h = min(max(h, 0.0), 1.0)
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c
