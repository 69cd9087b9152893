"""
Core domain models for location resolution.
These are framework-agnostic and shared by the adapters and the search service.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import math


class LocationSource(str, Enum):
    """Where a Location came from."""
    LOCAL_DATASET = "local-dataset"
    REGIONAL_PROVIDER = "regional-provider"
    INTERNATIONAL_PROVIDER = "international-provider"
    CACHE = "cache"
    USER_INPUT = "user-input"
    FALLBACK = "fallback"


class SearchStrategy(str, Enum):
    """Source-ordering policy for a search."""
    AUTO = "auto"
    REGIONAL_ONLY = "regional-only"
    INTERNATIONAL_ONLY = "international-only"
    REGIONAL_FIRST = "regional-first"
    INTERNATIONAL_FIRST = "international-first"


class LocationType(str, Enum):
    """Category filter applied to place types."""
    ALL = "all"
    CITIES = "cities"
    PROVINCES = "provinces"
    DISTRICTS = "districts"
    TOURIST_ATTRACTIONS = "tourist_attractions"
    AIRPORTS = "airports"
    LANDMARKS = "landmarks"


def clamp_unit(value: Optional[float]) -> float:
    """Clamp a score into [0, 1]; NaN and None become 0."""
    if value is None:
        return 0.0
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float

    def __post_init__(self) -> None:
        if not is_valid_coordinate(self.lat, self.lng):
            raise ValueError(f"Coordinates out of range: lat={self.lat} lng={self.lng}")

    @classmethod
    def maybe(cls, lat: Any, lng: Any) -> Optional["Coordinates"]:
        """Build coordinates from loosely typed provider values, or None if unusable."""
        try:
            lat_f = float(lat)
            lng_f = float(lng)
        except (TypeError, ValueError):
            return None
        if not is_valid_coordinate(lat_f, lng_f):
            return None
        return cls(lat=lat_f, lng=lng_f)

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


def is_valid_coordinate(lat: float, lng: float) -> bool:
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return False
    if math.isnan(lat) or math.isnan(lng):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    min_lng: float
    max_lat: float
    max_lng: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "min_lat": self.min_lat,
            "min_lng": self.min_lng,
            "max_lat": self.max_lat,
            "max_lng": self.max_lng,
        }


@dataclass
class Location:
    """
    Canonical location record returned by every search path.

    `source` is always set and `importance` is clamped into [0, 1]. Coordinates
    are None only for regional autocomplete rows whose detail lookup failed.
    """
    id: str
    name: str
    display_name: str
    source: LocationSource
    coordinates: Optional[Coordinates] = None
    country: str = ""
    country_code: str = ""
    province: Optional[str] = None
    district: Optional[str] = None
    ward: Optional[str] = None
    address: str = ""
    place_type: str = "place"
    importance: float = 0.0
    distance_from_user: Optional[float] = None  # km
    region: Optional[str] = None  # "north" / "central" / "south"
    administrative: Dict[str, str] = field(default_factory=dict)
    bounding_box: Optional[BoundingBox] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.source = LocationSource(self.source)
        self.importance = clamp_unit(self.importance)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "source": self.source.value,
            "coordinates": self.coordinates.to_dict() if self.coordinates else None,
            "country": self.country,
            "country_code": self.country_code,
            "province": self.province,
            "district": self.district,
            "ward": self.ward,
            "address": self.address,
            "place_type": self.place_type,
            "importance": self.importance,
            "distance_from_user": self.distance_from_user,
            "region": self.region,
            "administrative": dict(self.administrative),
            "bounding_box": self.bounding_box.to_dict() if self.bounding_box else None,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Location":
        coords = data.get("coordinates")
        bbox = data.get("bounding_box")
        return cls(
            id=data["id"],
            name=data["name"],
            display_name=data.get("display_name") or data["name"],
            source=LocationSource(data["source"]),
            coordinates=Coordinates(lat=coords["lat"], lng=coords["lng"]) if coords else None,
            country=data.get("country", ""),
            country_code=data.get("country_code", ""),
            province=data.get("province"),
            district=data.get("district"),
            ward=data.get("ward"),
            address=data.get("address", ""),
            place_type=data.get("place_type", "place"),
            importance=data.get("importance", 0.0),
            distance_from_user=data.get("distance_from_user"),
            region=data.get("region"),
            administrative=dict(data.get("administrative") or {}),
            bounding_box=BoundingBox(**bbox) if bbox else None,
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class DetectionResult:
    """Outcome of regional classification. Diagnostic except for strategy selection."""
    is_regional: bool
    confidence: float
    detected_keywords: List[str] = field(default_factory=list)
    region: Optional[str] = None
    reasoning: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_regional": self.is_regional,
            "confidence": self.confidence,
            "detected_keywords": list(self.detected_keywords),
            "region": self.region,
            "reasoning": list(self.reasoning),
        }


@dataclass
class AdministrativeRecord:
    """A row of the local administrative-boundary dataset."""
    id: str
    province_name: str
    full_name: str
    province_id: Optional[int] = None
    district_id: Optional[int] = None
    ward_id: Optional[int] = None
    district_name: Optional[str] = None
    ward_name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    type: Optional[str] = None  # 'tinh', 'thanh-pho', 'quan', 'huyen', 'xa', 'phuong', 'thi-tran'
    slug: Optional[str] = None
    name_with_type: Optional[str] = None
    path: Optional[str] = None
    path_with_type: Optional[str] = None


@dataclass
class ApiError:
    """One failed source attempt, reported in response metadata."""
    service: str
    message: str
    retryable: bool
    status_code: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "message": self.message,
            "retryable": self.retryable,
            "status_code": self.status_code,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class CacheInfo:
    hit: bool
    key: Optional[str] = None
    ttl: Optional[int] = None  # seconds


@dataclass
class SearchMetadata:
    search_time_ms: float
    strategy_used: SearchStrategy
    detection: DetectionResult
    cache: CacheInfo
    sources_attempted: List[LocationSource] = field(default_factory=list)
    sources_with_results: List[LocationSource] = field(default_factory=list)
    errors: List[ApiError] = field(default_factory=list)
    api_usage: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "search_time_ms": self.search_time_ms,
            "strategy_used": self.strategy_used.value,
            "sources_attempted": [s.value for s in self.sources_attempted],
            "sources_with_results": [s.value for s in self.sources_with_results],
            "cache": {"hit": self.cache.hit, "key": self.cache.key, "ttl": self.cache.ttl},
            "detection": self.detection.to_dict(),
            "errors": [e.to_dict() for e in self.errors],
            "api_usage": self.api_usage,
        }


@dataclass
class SearchResponse:
    results: List[Location]
    metadata: SearchMetadata
    total_results: int
    returned_results: int
    has_more: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "metadata": self.metadata.to_dict(),
            "total_results": self.total_results,
            "returned_results": self.returned_results,
            "has_more": self.has_more,
        }


@dataclass
class ReverseGeocodeMetadata:
    source: Optional[LocationSource]
    confidence: float
    zoom: int
    search_time_ms: float
    cache_hit: bool = False
    region: Optional[str] = None
    errors: List[ApiError] = field(default_factory=list)


@dataclass
class ReverseGeocodeResponse:
    location: Optional[Location]
    metadata: ReverseGeocodeMetadata

    def to_dict(self) -> Dict[str, Any]:
        meta = self.metadata
        return {
            "location": self.location.to_dict() if self.location else None,
            "metadata": {
                "source": meta.source.value if meta.source else None,
                "confidence": meta.confidence,
                "zoom": meta.zoom,
                "search_time_ms": meta.search_time_ms,
                "cache_hit": meta.cache_hit,
                "region": meta.region,
                "errors": [e.to_dict() for e in meta.errors],
            },
        }


@dataclass
class BulkSearchMetadata:
    total_queries: int
    successful_queries: int
    failed_queries: int
    total_search_time_ms: float
    strategy_used: SearchStrategy
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass
class BulkSearchResponse:
    results_by_query: Dict[str, List[Location]]
    metadata: BulkSearchMetadata

    def to_dict(self) -> Dict[str, Any]:
        meta = self.metadata
        return {
            "results_by_query": {
                q: [loc.to_dict() for loc in locs] for q, locs in self.results_by_query.items()
            },
            "metadata": {
                "total_queries": meta.total_queries,
                "successful_queries": meta.successful_queries,
                "failed_queries": meta.failed_queries,
                "total_search_time_ms": meta.total_search_time_ms,
                "strategy_used": meta.strategy_used.value,
                "errors": dict(meta.errors),
            },
        }
