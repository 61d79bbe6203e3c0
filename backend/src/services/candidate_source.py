from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Union

from loguru import logger

from models import BoundingBox, VendorRecord


VendorListener = Callable[[str, Optional[VendorRecord], Optional[VendorRecord]], None]


class VendorCandidateSource(Protocol):
    """Anything that can list vendors inside a bounding box.

    Implementations must return every vendor located in the box. Extra vendors
    outside the search circle are fine; the ranking step drops them.
    """

    def fetch_in_box(self, box: BoundingBox) -> Sequence[VendorRecord]:
        ...


class InMemoryVendorSource:
    """Linear-scan vendor store.

    Writes notify subscribers with ``(vendor_id, old, new)`` so a query cache
    can invalidate stale entries.
    """

    def __init__(self, vendors: Optional[Iterable[VendorRecord]] = None) -> None:
        self._vendors: Dict[str, VendorRecord] = {}
        self._listeners: List[VendorListener] = []
        self._lock = threading.RLock()
        for vendor in vendors or []:
            self._vendors[vendor.id] = vendor

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "InMemoryVendorSource":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        rows = raw.get("vendors", []) if isinstance(raw, dict) else raw
        vendors: list[VendorRecord] = []
        for row in rows:
            try:
                vendors.append(VendorRecord.from_dict(row))
            except (ValueError, TypeError, KeyError) as exc:
                logger.warning("skipping malformed vendor row in {}: {}", path, exc)
        logger.info("loaded {} vendors from {}", len(vendors), path)
        return cls(vendors)

    def __len__(self) -> int:
        with self._lock:
            return len(self._vendors)

    def fetch_in_box(self, box: BoundingBox) -> List[VendorRecord]:
        with self._lock:
            snapshot = list(self._vendors.values())
        return [v for v in snapshot if box.contains(v.location)]

    def all(self) -> List[VendorRecord]:
        with self._lock:
            return list(self._vendors.values())

    def get(self, vendor_id: str) -> Optional[VendorRecord]:
        with self._lock:
            return self._vendors.get(vendor_id)

    def subscribe(self, listener: VendorListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def upsert(self, vendor: VendorRecord) -> None:
        with self._lock:
            old = self._vendors.get(vendor.id)
            self._vendors[vendor.id] = vendor
            listeners = list(self._listeners)
        self._notify(listeners, vendor.id, old, vendor)

    def remove(self, vendor_id: str) -> Optional[VendorRecord]:
        with self._lock:
            old = self._vendors.pop(vendor_id, None)
            listeners = list(self._listeners)
        if old is not None:
            self._notify(listeners, vendor_id, old, None)
        return old

    @staticmethod
    def _notify(
        listeners: List[VendorListener],
        vendor_id: str,
        old: Optional[VendorRecord],
        new: Optional[VendorRecord],
    ) -> None:
        for listener in listeners:
            listener(vendor_id, old, new)
