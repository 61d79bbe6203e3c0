from __future__ import annotations

import asyncio
import threading
from functools import lru_cache
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from config import Configuration
from models import AreaStats, GeoPoint, RankedResult, SearchEnvelope, SearchQuery
from services.candidate_source import InMemoryVendorSource
from services.errors import CandidateSourceUnavailable, InvalidQuery, SearchCancelled
from services.query_cache import QueryCache
from services.search import SearchOrchestrator
from services.vendor_api import HttpVendorSource


load_dotenv()

app = FastAPI(title="Vendor Geo Search")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_orchestrator() -> SearchOrchestrator:
    cfg = Configuration.from_env()
    logger.info("cfg: {}", cfg.log_summary())
    if cfg.vendor_api_base_url:
        source = HttpVendorSource(cfg)
    elif cfg.vendor_seed_path:
        source = InMemoryVendorSource.from_file(cfg.vendor_seed_path)
    else:
        logger.warning("no vendor provider configured; searching an empty in-memory store")
        source = InMemoryVendorSource()
    cache = QueryCache(capacity=cfg.cache_max_entries, default_ttl=cfg.cache_ttl_sec)
    return SearchOrchestrator(source, cache, cfg)


class SearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lat: float = Field(..., description="Center latitude")
    lng: float = Field(..., description="Center longitude")
    radius_km: Optional[float] = Field(None, alias="radiusKm")
    service_categories: List[str] = Field(default_factory=list, alias="serviceCategories")
    min_rating: float = Field(0.0, alias="minRating")
    tags: List[str] = Field(default_factory=list)
    sort_by: str = Field("distance", alias="sortBy")
    max_results: Optional[int] = Field(None, alias="maxResults")
    verified: Optional[bool] = None
    online_only: bool = Field(False, alias="onlineOnly")
    min_hourly_rate: Optional[float] = Field(None, alias="minHourlyRate")
    max_hourly_rate: Optional[float] = Field(None, alias="maxHourlyRate")

    def to_query(self, cfg: Configuration) -> SearchQuery:
        return SearchQuery(
            center=GeoPoint(self.lat, self.lng),
            radius_km=self.radius_km if self.radius_km is not None else cfg.default_radius_km,
            service_categories=frozenset(self.service_categories),
            min_rating=self.min_rating,
            tags=frozenset(self.tags),
            sort_by=self.sort_by,
            max_results=self.max_results if self.max_results is not None else cfg.default_max_results,
            verified=self.verified,
            online_only=self.online_only,
            min_hourly_rate=self.min_hourly_rate,
            max_hourly_rate=self.max_hourly_rate,
        )


class InvalidateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    vendor_id: Optional[str] = Field(None, alias="vendorId")
    lat: Optional[float] = None
    lng: Optional[float] = None


def _vendor_payload(result: RankedResult) -> Dict[str, Any]:
    payload = result.vendor.to_dict()
    payload["distanceKm"] = round(result.distance_km, 3)
    payload["matchScore"] = result.match_score
    return payload


def _envelope_payload(envelope: SearchEnvelope) -> Dict[str, Any]:
    q = envelope.query
    return {
        "vendors": [_vendor_payload(r) for r in envelope.results],
        "searchParams": {
            "center": {"lat": q.center.latitude, "lng": q.center.longitude},
            "radiusKm": q.radius_km,
            "serviceCategories": sorted(q.service_categories),
            "tags": sorted(q.tags),
            "minRating": q.min_rating,
            "sortBy": q.sort_by,
            "maxResults": q.max_results,
            "resultsCount": len(envelope.results),
        },
        "performance": {
            "cached": envelope.cached,
            "computeTimeMs": round(envelope.compute_time_ms, 3),
        },
    }


def _stats_payload(stats: AreaStats) -> Dict[str, Any]:
    box = stats.box
    return {
        "area": {
            "center": {"lat": stats.center.latitude, "lng": stats.center.longitude},
            "radiusKm": stats.radius_km,
            "boundingBox": {
                "minLat": box.min_lat,
                "maxLat": box.max_lat,
                "minLng": box.min_lng,
                "maxLng": box.max_lng,
            },
        },
        "vendors": {
            "total": stats.total,
            "verified": stats.verified,
            "online": stats.online,
            "averageRating": stats.average_rating,
        },
        "services": {"categories": stats.categories},
    }


async def _watch_disconnect(request: Request, cancel: threading.Event) -> None:
    while not cancel.is_set():
        if await request.is_disconnected():
            cancel.set()
            return
        await asyncio.sleep(0.1)


async def _run(request: Request, fn):
    """Run a blocking search in a worker thread, mapping errors to HTTP."""
    cancel = threading.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel))
    try:
        return await asyncio.to_thread(fn, cancel_event=cancel)
    except InvalidQuery as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except CandidateSourceUnavailable as exc:
        logger.warning("vendor source unavailable: {}", exc)
        raise HTTPException(status_code=503, detail=str(exc), headers={"Retry-After": "1"})
    except SearchCancelled:
        logger.info("search cancelled: client disconnected")
        raise HTTPException(status_code=499, detail="client closed request")
    except Exception as exc:
        logger.exception("search failed: {}", exc)
        raise HTTPException(status_code=500, detail="internal error")
    finally:
        cancel.set()
        watcher.cancel()


@app.get("/favicon.ico")
def favicon() -> Response:
    return Response(status_code=204)


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


@app.get("/search/status")
def search_status(orch: SearchOrchestrator = Depends(get_orchestrator)) -> dict:
    return orch.status()


@app.post("/search/vendors")
async def search_vendors(
    req: SearchRequest,
    request: Request,
    orch: SearchOrchestrator = Depends(get_orchestrator),
) -> dict:
    envelope = await _run(request, lambda cancel_event: orch.search(req.to_query(orch.cfg), cancel_event=cancel_event))
    return _envelope_payload(envelope)


@app.get("/search/nearby")
async def search_nearby(
    request: Request,
    lat: float,
    lng: float,
    radiusKm: float = 10.0,
    limit: int = 20,
    orch: SearchOrchestrator = Depends(get_orchestrator),
) -> dict:
    envelope = await _run(
        request,
        lambda cancel_event: orch.find_nearby(GeoPoint(lat, lng), radiusKm, limit, cancel_event=cancel_event),
    )
    return _envelope_payload(envelope)


@app.get("/search/category/{category}")
async def search_category(
    category: str,
    request: Request,
    lat: float,
    lng: float,
    radiusKm: float = 25.0,
    orch: SearchOrchestrator = Depends(get_orchestrator),
) -> dict:
    envelope = await _run(
        request,
        lambda cancel_event: orch.search_by_category(
            category, GeoPoint(lat, lng), radiusKm, cancel_event=cancel_event
        ),
    )
    return _envelope_payload(envelope)


@app.post("/search/advanced")
async def search_advanced(
    filters: Dict[str, Any],
    request: Request,
    orch: SearchOrchestrator = Depends(get_orchestrator),
) -> dict:
    envelope = await _run(request, lambda cancel_event: orch.advanced_search(filters, cancel_event=cancel_event))
    return _envelope_payload(envelope)


@app.get("/search/stats")
async def search_stats(
    lat: float,
    lng: float,
    radiusKm: float = 25.0,
    orch: SearchOrchestrator = Depends(get_orchestrator),
) -> dict:
    try:
        stats = await asyncio.to_thread(lambda: orch.area_stats(GeoPoint(lat, lng), radiusKm))
    except InvalidQuery as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except CandidateSourceUnavailable as exc:
        logger.warning("vendor source unavailable: {}", exc)
        raise HTTPException(status_code=503, detail=str(exc), headers={"Retry-After": "1"})
    return _stats_payload(stats)


@app.post("/cache/invalidate")
def invalidate_cache(
    req: Optional[InvalidateRequest] = None,
    orch: SearchOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Invalidation signal for the vendor store.

    With a vendorId only entries listing that vendor (or whose circle holds
    the given lat/lng) are dropped; without one the whole cache is cleared.
    """
    if req is None or not req.vendor_id:
        return {"invalidated": orch.invalidate_all(), "scope": "all"}
    locations = []
    if req.lat is not None and req.lng is not None:
        try:
            locations.append(GeoPoint(req.lat, req.lng))
        except InvalidQuery as exc:
            raise HTTPException(status_code=400, detail=str(exc))
    removed = orch.invalidate_vendor(req.vendor_id, *locations)
    return {"invalidated": removed, "scope": "vendor", "vendorId": req.vendor_id}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8010, reload=True)
