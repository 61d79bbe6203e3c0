from __future__ import annotations

import math

from models import BoundingBox, GeoPoint
from services.errors import InvalidRadius
from utils import EARTH_RADIUS_KM, validate_coordinate


# degrees per km on the same sphere haversine_km measures on
KM_PER_DEGREE = EARTH_RADIUS_KM * math.pi / 180.0
# absorbs float rounding at the box edges
_EDGE_EPS_DEG = 1e-9
_MIN_COS_LAT = 1e-12


def _wrap_lng(lng: float) -> float:
    return ((lng + 180.0) % 360.0) - 180.0


def bounding_box(center: GeoPoint, radius_km: float) -> BoundingBox:
    """Rectangle guaranteed to contain every point within radius_km of center.

    The box over-approximates the circle: callers must still filter by exact
    distance. Longitudes wrap across the antimeridian; near the poles (or when
    the circle contains a pole) the longitude range spans the whole globe.
    """
    lat, lng = validate_coordinate(center.latitude, center.longitude)
    try:
        radius = float(radius_km)
    except (TypeError, ValueError):
        raise InvalidRadius(f"radius must be numeric: {radius_km!r}")
    if not math.isfinite(radius) or radius <= 0:
        raise InvalidRadius(f"radius must be a positive finite number: {radius_km!r}")

    angular = radius / EARTH_RADIUS_KM  # radians
    dlat = radius / KM_PER_DEGREE
    min_lat = lat - dlat - _EDGE_EPS_DEG
    max_lat = lat + dlat + _EDGE_EPS_DEG

    cos_lat = math.cos(math.radians(lat))
    if min_lat <= -90.0 or max_lat >= 90.0 or cos_lat < _MIN_COS_LAT or angular >= math.pi / 2:
        # pole inside the circle: no longitude filter
        return BoundingBox(max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0)

    ratio = math.sin(angular) / cos_lat
    if ratio >= 1.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)
    dlng = math.degrees(math.asin(ratio)) + _EDGE_EPS_DEG
    if dlng >= 180.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    min_lng = lng - dlng
    max_lng = lng + dlng
    if min_lng < -180.0 or max_lng > 180.0:
        min_lng = _wrap_lng(min_lng)
        max_lng = _wrap_lng(max_lng)
    return BoundingBox(min_lat, max_lat, min_lng, max_lng)
