import math
import random
from types import SimpleNamespace

import pytest

from models import GeoPoint
from services.bbox_builder import bounding_box
from services.errors import InvalidCoordinate, InvalidRadius
from utils import EARTH_RADIUS_KM, haversine_km


def _destination(center: GeoPoint, bearing_deg: float, km: float) -> GeoPoint:
    phi1 = math.radians(center.latitude)
    lam1 = math.radians(center.longitude)
    theta = math.radians(bearing_deg)
    delta = km / EARTH_RADIUS_KM
    sin_phi2 = math.sin(phi1) * math.cos(delta) + math.cos(phi1) * math.sin(delta) * math.cos(theta)
    phi2 = math.asin(min(max(sin_phi2, -1.0), 1.0))
    lam2 = lam1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * math.sin(phi2),
    )
    lon = (math.degrees(lam2) + 540.0) % 360.0 - 180.0
    return GeoPoint(max(-90.0, min(90.0, math.degrees(phi2))), lon)


def test_expand_bbox_basic():
    lat, lon = 31.2304, 121.4737  # Shanghai
    box = bounding_box(GeoPoint(lat, lon), 3.0)
    assert box.min_lng < box.max_lng
    assert box.min_lat < box.max_lat
    # center must lie within bbox
    assert box.min_lng < lon < box.max_lng
    assert box.min_lat < lat < box.max_lat
    assert not box.crosses_antimeridian


def test_box_has_no_false_negatives():
    rng = random.Random(20240315)
    checked = 0
    for _ in range(400):
        center = GeoPoint(rng.uniform(-89.5, 89.5), rng.uniform(-180.0, 180.0))
        radius = rng.choice([0.05, 1.0, 10.0, 50.0, 200.0, 1500.0])
        box = bounding_box(center, radius)
        for _ in range(25):
            point = _destination(center, rng.uniform(0.0, 360.0), radius * rng.uniform(0.0, 0.999999))
            if haversine_km(center, point) > radius:
                continue
            assert box.contains(point), (center, radius, point, box)
            checked += 1
    assert checked > 9000


def test_box_contains_points_on_cardinal_edges():
    for center in (GeoPoint(37.7749, -122.4194), GeoPoint(70.0, 20.0), GeoPoint(-60.0, 179.9)):
        box = bounding_box(center, 10.0)
        for bearing in (0.0, 90.0, 180.0, 270.0):
            point = _destination(center, bearing, 10.0 * (1 - 1e-9))
            assert box.contains(point)


def test_box_wraps_antimeridian():
    box = bounding_box(GeoPoint(0.0, 179.99), 10.0)
    assert box.crosses_antimeridian
    assert box.contains(GeoPoint(0.0, -179.99))
    assert box.contains(GeoPoint(0.0, 179.95))
    assert not box.contains(GeoPoint(0.0, 0.0))


def test_box_near_pole_drops_longitude_filter():
    box = bounding_box(GeoPoint(89.99, 10.0), 5.0)
    assert box.spans_all_longitudes
    assert box.max_lat == 90.0
    assert box.contains(GeoPoint(89.97, -170.0))

    pole = bounding_box(GeoPoint(-90.0, 0.0), 1.0)
    assert pole.spans_all_longitudes
    assert pole.min_lat == -90.0


def test_box_is_an_over_approximation_only():
    center = GeoPoint(37.7749, -122.4194)
    box = bounding_box(center, 10.0)
    corner = GeoPoint(box.max_lat - 1e-6, box.max_lng - 1e-6)
    # the corner is inside the box but outside the circle
    assert box.contains(corner)
    assert haversine_km(center, corner) > 10.0


@pytest.mark.parametrize("radius", [0, -1.0, float("nan"), float("inf"), "far"])
def test_invalid_radius(radius):
    with pytest.raises(InvalidRadius):
        bounding_box(GeoPoint(0.0, 0.0), radius)


@pytest.mark.parametrize(
    "lat,lng",
    [(float("nan"), 0.0), (0.0, float("inf")), (91.0, 0.0), (0.0, -180.5), (None, 0.0)],
)
def test_invalid_center(lat, lng):
    with pytest.raises(InvalidCoordinate):
        bounding_box(SimpleNamespace(latitude=lat, longitude=lng), 5.0)
