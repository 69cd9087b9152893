"""
Cache keys and TTLs for location searches and raw provider responses.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from domain.models import DetectionResult, SearchStrategy
from domain.requests import SearchRequest

# Seconds
CONFIDENT_REGIONAL_TTL = 24 * 3600
REGIONAL_TTL = 6 * 3600
INTERNATIONAL_TTL = 3600
REVERSE_GEOCODE_TTL = 6 * 3600
PROVIDER_RESPONSE_TTL = 30 * 60

CONFIDENT_THRESHOLD = 0.7


def _bucket(value: float, step: float = 0.1) -> float:
    return round(round(value / step) * step, 2)


def _digest(payload: Dict[str, Any]) -> str:
    encoded = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def normalize_query(query: str) -> str:
    return " ".join((query or "").lower().split())


@dataclass(frozen=True)
class SearchCacheKey:
    query: str
    strategy: str
    limit: int
    country: Optional[str]
    location_type: str
    min_importance: float
    is_regional: bool
    confidence: float
    lat: Optional[float] = None
    lng: Optional[float] = None

    @classmethod
    def from_request(
        cls, request: SearchRequest, strategy: SearchStrategy, detection: DetectionResult
    ) -> "SearchCacheKey":
        coords = request.user_coordinates
        return cls(
            query=normalize_query(request.query),
            strategy=strategy.value,
            limit=request.limit,
            country=request.user_country,
            location_type=request.location_type.value,
            min_importance=_bucket(request.min_importance),
            is_regional=detection.is_regional,
            confidence=_bucket(detection.confidence),
            lat=round(coords.lat, 2) if coords else None,
            lng=round(coords.lng, 2) if coords else None,
        )

    def digest(self) -> str:
        return "search:" + _digest(asdict(self))


def reverse_cache_key(lat: float, lng: float, zoom: int) -> str:
    return "reverse:" + _digest({"lat": round(lat, 4), "lng": round(lng, 4), "zoom": zoom})


def provider_cache_key(provider: str, operation: str, params: Dict[str, Any]) -> str:
    """`provider:operation:<sha256>` over sorted params; the query is lower-cased and stripped."""
    canonical = dict(params)
    if isinstance(canonical.get("query"), str):
        canonical["query"] = canonical["query"].strip().lower()
    return f"{provider}:{operation}:{_digest(canonical)}"


def search_ttl_seconds(detection: DetectionResult) -> int:
    if detection.is_regional and detection.confidence >= CONFIDENT_THRESHOLD:
        return CONFIDENT_REGIONAL_TTL
    if detection.is_regional:
        return REGIONAL_TTL
    return INTERNATIONAL_TTL
