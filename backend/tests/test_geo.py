import math
from types import SimpleNamespace

import pytest

from models import GeoPoint
from services.errors import InvalidCoordinate
from utils import haversine_km, mask_secret

from factories import SF, north_of


def test_haversine_zero_for_same_point():
    assert haversine_km(SF, SF) == 0.0
    assert haversine_km(SF, GeoPoint(37.7749, -122.4194)) == 0.0


def test_haversine_symmetric():
    la = GeoPoint(34.0522, -118.2437)
    assert haversine_km(SF, la) == haversine_km(la, SF)


def test_haversine_known_distance():
    la = GeoPoint(34.0522, -118.2437)
    # SF to LA is roughly 559 km great-circle
    assert 555.0 < haversine_km(SF, la) < 563.0


def test_haversine_along_meridian_matches_offset():
    assert haversine_km(SF, north_of(SF, 5.0)) == pytest.approx(5.0, abs=1e-9)


def test_haversine_antipodal_is_finite():
    d = haversine_km(GeoPoint(0.0, 0.0), GeoPoint(0.0, 180.0))
    assert math.isfinite(d)
    assert d == pytest.approx(math.pi * 6371.0, rel=1e-9)


@pytest.mark.parametrize(
    "lat,lng",
    [(90.5, 0.0), (-90.5, 0.0), (0.0, 180.01), (float("nan"), 0.0), (0.0, float("-inf")), ("abc", 0.0)],
)
def test_geopoint_rejects_bad_coordinates(lat, lng):
    with pytest.raises(InvalidCoordinate):
        GeoPoint(lat, lng)


def test_haversine_rejects_bad_coordinates():
    with pytest.raises(InvalidCoordinate):
        haversine_km(SF, SimpleNamespace(latitude=float("nan"), longitude=0.0))


def test_geopoint_is_immutable():
    with pytest.raises(AttributeError):
        SF.latitude = 0.0  # type: ignore[misc]


def test_mask_secret():
    assert mask_secret(None) == "unset"
    assert mask_secret("abcd") == "****"
    assert mask_secret("abcdefghijkl") == "abcd...ijkl"
