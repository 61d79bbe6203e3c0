from __future__ import annotations

import os
from typing import Any, Optional

from pydantic import BaseModel, Field

from services.ranking import RankingWeights
from utils import mask_secret


class Configuration(BaseModel):
    # Cache
    cache_ttl_sec: float = Field(default=300.0)
    cache_max_entries: int = Field(default=512)
    fingerprint_precision: int = Field(default=4)

    # Query limits
    default_radius_km: float = Field(default=25.0)
    max_radius_km: float = Field(default=200.0)
    default_max_results: int = Field(default=20)
    max_results_cap: int = Field(default=200)

    # Ranking weights, must sum to 1
    weight_distance: float = Field(default=0.5)
    weight_rating: float = Field(default=0.3)
    weight_tags: float = Field(default=0.2)

    # Candidate fetch
    fetch_timeout_sec: float = Field(default=5.0)
    fetch_workers: int = Field(default=8)
    invalidate_on_write: bool = Field(default=True)

    # Vendor provider
    vendor_api_base_url: Optional[str] = Field(default=None)
    vendor_api_key: Optional[str] = Field(default=None)
    vendor_api_timeout: float = Field(default=5.0)
    vendor_seed_path: Optional[str] = Field(default=None)

    @classmethod
    def from_env(cls, overrides: Optional[dict[str, Any]] = None) -> "Configuration":
        raw: dict[str, Any] = {}

        env_map = {
            "cache_ttl_sec": os.getenv("SEARCH_CACHE_TTL_SEC"),
            "cache_max_entries": os.getenv("SEARCH_CACHE_MAX_ENTRIES"),
            "fingerprint_precision": os.getenv("SEARCH_FINGERPRINT_PRECISION"),
            "default_radius_km": os.getenv("SEARCH_DEFAULT_RADIUS_KM"),
            "max_radius_km": os.getenv("SEARCH_MAX_RADIUS_KM"),
            "default_max_results": os.getenv("SEARCH_DEFAULT_MAX_RESULTS"),
            "max_results_cap": os.getenv("SEARCH_MAX_RESULTS_CAP"),
            "weight_distance": os.getenv("RANK_WEIGHT_DISTANCE"),
            "weight_rating": os.getenv("RANK_WEIGHT_RATING"),
            "weight_tags": os.getenv("RANK_WEIGHT_TAGS"),
            "fetch_timeout_sec": os.getenv("SEARCH_FETCH_TIMEOUT_SEC"),
            "fetch_workers": os.getenv("SEARCH_FETCH_WORKERS"),
            "invalidate_on_write": os.getenv("SEARCH_INVALIDATE_ON_WRITE"),
            # Vendor provider
            "vendor_api_base_url": os.getenv("VENDOR_API_BASE_URL"),
            "vendor_api_key": os.getenv("VENDOR_API_KEY"),
            "vendor_api_timeout": os.getenv("VENDOR_API_TIMEOUT"),
            "vendor_seed_path": os.getenv("VENDOR_SEED_PATH"),
        }

        bool_fields = {"invalidate_on_write"}

        for k, v in env_map.items():
            if v is None:
                continue
            if k in bool_fields:
                raw[k] = str(v).lower() in {"1", "true", "yes", "on"}
            else:
                raw[k] = v

        if overrides:
            raw.update({k: v for k, v in overrides.items() if v is not None})

        return cls(**raw)

    def ranking_weights(self) -> RankingWeights:
        """Validated weights; raises ValueError when they do not sum to 1."""
        return RankingWeights(
            distance=self.weight_distance,
            rating=self.weight_rating,
            tags=self.weight_tags,
        )

    def log_summary(self) -> str:
        return (
            "cache_ttl=%ss cache_max=%s precision=%s max_radius_km=%s results_cap=%s "
            "weights=%.2f/%.2f/%.2f fetch_timeout=%ss vendor_api=%s api_key=%s seed=%s"
            % (
                self.cache_ttl_sec,
                self.cache_max_entries,
                self.fingerprint_precision,
                self.max_radius_km,
                self.max_results_cap,
                self.weight_distance,
                self.weight_rating,
                self.weight_tags,
                self.fetch_timeout_sec,
                self.vendor_api_base_url or "unset",
                mask_secret(self.vendor_api_key),
                self.vendor_seed_path or "unset",
            )
        )
