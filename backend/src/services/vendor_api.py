from __future__ import annotations

import time
from dataclasses import dataclass
from typing import List

import requests
from loguru import logger

from config import Configuration
from models import BoundingBox, VendorRecord
from services.errors import CandidateSourceUnavailable


@dataclass
class _RetryPolicy:
    retries: int = 3
    base_delay: float = 0.5


class HttpVendorSource:
    """Vendor candidate source backed by an external vendor provider API.

    Calls ``GET /vendors?minLat&maxLat&minLng&maxLng`` and expects every
    vendor with ``minLng <= lng <= maxLng``. Boxes that wrap the antimeridian
    are sent as two requests, one per side, so the provider never sees
    ``minLng > maxLng``.
    """

    def __init__(self, cfg: Configuration, *, retry: _RetryPolicy | None = None) -> None:
        if not cfg.vendor_api_base_url:
            raise ValueError("VENDOR_API_BASE_URL is required for HttpVendorSource")
        self.cfg = cfg
        self.base = cfg.vendor_api_base_url.rstrip("/")
        self.session = requests.Session()
        self.retry = retry or _RetryPolicy()

    def _get(self, path: str, params: dict) -> dict | list:
        url = f"{self.base}{path}"
        headers = {"Accept": "application/json"}
        if self.cfg.vendor_api_key:
            headers["Authorization"] = f"Bearer {self.cfg.vendor_api_key}"
        attempts = self.retry.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                resp = self.session.get(url, headers=headers, params=params, timeout=self.cfg.vendor_api_timeout)
            except requests.RequestException as exc:
                if attempt == attempts:
                    raise CandidateSourceUnavailable(f"vendor api unreachable: {exc}") from exc
                logger.warning("vendor api request error (attempt {}/{}): {}", attempt, attempts, exc)
            else:
                retryable = resp.status_code == 429 or resp.status_code >= 500
                if resp.ok:
                    try:
                        return resp.json()
                    except ValueError:
                        raise CandidateSourceUnavailable("vendor api returned invalid json")
                if not retryable or attempt == attempts:
                    raise CandidateSourceUnavailable(f"vendor api {resp.status_code}: {resp.text[:300]}")
                logger.warning("vendor api {} (attempt {}/{})", resp.status_code, attempt, attempts)
            time.sleep(self.retry.base_delay * attempt)
        raise CandidateSourceUnavailable("vendor api retries exhausted")

    def _parse_vendors(self, rows: list) -> List[VendorRecord]:
        results: list[VendorRecord] = []
        for row in rows:
            if not isinstance(row, dict):
                logger.warning("vendor api returned non-object row: {!r}", row)
                continue
            try:
                results.append(VendorRecord.from_dict(row))
            except (ValueError, TypeError, KeyError) as exc:
                logger.warning("skipping malformed vendor {}: {}", row.get("id"), exc)
        return results

    def _fetch_range(self, box: BoundingBox, min_lng: float, max_lng: float) -> List[VendorRecord]:
        params = {
            "minLat": box.min_lat,
            "maxLat": box.max_lat,
            "minLng": min_lng,
            "maxLng": max_lng,
        }
        payload = self._get("/vendors", params)
        rows = payload.get("vendors") if isinstance(payload, dict) else payload
        if not isinstance(rows, list):
            raise CandidateSourceUnavailable("vendor api response has no vendor list")
        return self._parse_vendors(rows)

    def fetch_in_box(self, box: BoundingBox) -> List[VendorRecord]:
        if box.crosses_antimeridian:
            # provider filters with minLng <= lng <= maxLng, so ask for each side
            vendors = self._fetch_range(box, box.min_lng, 180.0) + self._fetch_range(box, -180.0, box.max_lng)
        else:
            vendors = self._fetch_range(box, box.min_lng, box.max_lng)
        logger.debug("vendor api returned {} vendors for box {}", len(vendors), box)
        return vendors
