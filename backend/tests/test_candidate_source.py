from __future__ import annotations

import json
from pathlib import Path

from models import GeoPoint, VendorRecord
from services.bbox_builder import bounding_box
from services.candidate_source import InMemoryVendorSource

from factories import SF, make_vendor, north_of

SAMPLE = Path(__file__).resolve().parent.parent / "data" / "vendors_sample.json"


def test_fetch_in_box_returns_everything_inside():
    inside = make_vendor("in", north_of(SF, 3.0))
    edge = make_vendor("edge", north_of(SF, 9.999))
    outside = make_vendor("out", north_of(SF, 30.0))
    source = InMemoryVendorSource([inside, edge, outside])

    found = {v.id for v in source.fetch_in_box(bounding_box(SF, 10.0))}
    assert found == {"in", "edge"}


def test_fetch_in_box_across_antimeridian():
    east = make_vendor("east", GeoPoint(-17.0, 179.95))
    west = make_vendor("west", GeoPoint(-17.0, -179.95))
    source = InMemoryVendorSource([east, west])

    found = {v.id for v in source.fetch_in_box(bounding_box(GeoPoint(-17.0, 179.99), 20.0))}
    assert found == {"east", "west"}


def test_writes_notify_subscribers():
    source = InMemoryVendorSource()
    events: list[tuple] = []
    source.subscribe(lambda vid, old, new: events.append((vid, old, new)))

    first = make_vendor("v1", north_of(SF, 1.0))
    moved = make_vendor("v1", north_of(SF, 2.0))
    source.upsert(first)
    source.upsert(moved)
    assert source.remove("v1") == moved
    assert source.remove("missing") is None

    assert events == [("v1", None, first), ("v1", first, moved), ("v1", moved, None)]
    assert len(source) == 0


def test_from_file_loads_sample_data():
    source = InMemoryVendorSource.from_file(SAMPLE)
    assert len(source) == 6
    vendor = source.get("v-1001")
    assert vendor is not None
    assert vendor.service_categories == frozenset({"plumbing"})
    assert vendor.is_verified


def test_from_file_skips_malformed_rows(tmp_path):
    rows = [
        {"id": "ok", "lat": 37.78, "lng": -122.41, "serviceCategories": ["hvac"], "rating": 4.1},
        {"id": "bad-lat", "lat": 120.0, "lng": -122.41, "serviceCategories": ["hvac"]},
        {"id": "no-category", "lat": 37.78, "lng": -122.41, "serviceCategories": []},
        {"lat": 37.78, "lng": -122.41, "serviceCategories": ["hvac"]},
    ]
    path = tmp_path / "vendors.json"
    path.write_text(json.dumps({"vendors": rows}), encoding="utf-8")

    source = InMemoryVendorSource.from_file(path)
    assert [v.id for v in source.all()] == ["ok"]


def test_vendor_record_from_dict_round_trips_fields():
    raw = {
        "id": 42,
        "businessName": "Bay Plumbing",
        "location": {"latitude": 37.7, "longitude": -122.4},
        "serviceCategories": ["Plumbing"],
        "rating": 4.4,
        "reviewCount": 3,
        "tags": ["Emergency"],
        "hourlyRate": 70,
        "isOnline": True,
        "isVerified": True,
        "lastUpdated": "2024-03-15T12:00:00Z",
    }
    vendor = VendorRecord.from_dict(raw)
    assert vendor.id == "42"
    assert vendor.name == "Bay Plumbing"
    assert vendor.tags == frozenset({"emergency"})
    assert vendor.last_updated.year == 2024
    assert vendor.to_dict()["location"] == {"latitude": 37.7, "longitude": -122.4}
