"""
Location search orchestration.

One request runs a linear pipeline: detect region, pick a strategy, check the
cache, walk the strategy's sources in order until one returns results, then
filter, sort, paginate and cache. Source failures are collected into the
response metadata; the request only fails when every attempted source failed.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from functools import wraps
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from domain.errors import (
    InternalError,
    LocationServiceError,
    ProviderUnavailable,
    RateLimitExceeded,
    ValidationError,
)
from domain.models import (
    ApiError,
    BulkSearchMetadata,
    BulkSearchResponse,
    CacheInfo,
    Coordinates,
    DetectionResult,
    Location,
    LocationSource,
    LocationType,
    ReverseGeocodeMetadata,
    ReverseGeocodeResponse,
    SearchMetadata,
    SearchResponse,
    SearchStrategy,
    is_valid_coordinate,
)
from domain.requests import BulkSearchOptions, SearchRequest
from services.cache_policy import (
    REVERSE_GEOCODE_TTL,
    CONFIDENT_THRESHOLD,
    SearchCacheKey,
    reverse_cache_key,
    search_ttl_seconds,
)
from services.cache_store import CacheStore, MemoryCacheStore, TieredCacheStore
from services.geocoding import haversine_km
from services.goong_client import GoongClient, GoongSearchOptions
from services.local_dataset import LocalDatasetAdapter
from services.nominatim_client import NominatimClient, NominatimReverseOptions, NominatimSearchOptions
from services.rate_limiter import RateLimiter, get_default_rate_limiter
from services.region_detector import (
    RegionDetector,
    is_in_target_bounds,
    region_from_coordinates,
    strip_diacritics,
)
from settings import settings

logger = logging.getLogger(__name__)

IMPORTANCE_TIE_BAND = 0.1
DEFAULT_REVERSE_ZOOM = 18
MIN_SUGGESTION_CHARS = 2
DEFAULT_NEARBY_RADIUS_KM = 5.0

# Free-text Nominatim phrases for the nearby-places categories
NEARBY_CATEGORY_QUERIES = {
    "all": "tourist attraction",
    "attractions": "tourist attraction",
    "restaurants": "restaurant",
    "hotels": "hotel",
    "cafes": "cafe",
    "shopping": "shop",
    "hospitals": "hospital",
    "transport": "station",
}

STRATEGY_SOURCES: Dict[SearchStrategy, Tuple[LocationSource, ...]] = {
    SearchStrategy.REGIONAL_ONLY: (
        LocationSource.LOCAL_DATASET,
        LocationSource.REGIONAL_PROVIDER,
    ),
    SearchStrategy.INTERNATIONAL_ONLY: (LocationSource.INTERNATIONAL_PROVIDER,),
    SearchStrategy.REGIONAL_FIRST: (
        LocationSource.LOCAL_DATASET,
        LocationSource.REGIONAL_PROVIDER,
        LocationSource.INTERNATIONAL_PROVIDER,
    ),
    SearchStrategy.INTERNATIONAL_FIRST: (
        LocationSource.INTERNATIONAL_PROVIDER,
        LocationSource.LOCAL_DATASET,
        LocationSource.REGIONAL_PROVIDER,
    ),
}

SOURCE_SERVICES = {
    LocationSource.LOCAL_DATASET: "local-dataset",
    LocationSource.REGIONAL_PROVIDER: "goong",
    LocationSource.INTERNATIONAL_PROVIDER: "nominatim",
}

# Place types (or OSM classes) accepted by each location_type filter
LOCATION_TYPE_KEYWORDS: Dict[LocationType, frozenset] = {
    LocationType.CITIES: frozenset(
        {"city", "town", "village", "locality", "municipality", "hamlet"}
    ),
    LocationType.PROVINCES: frozenset(
        {"province", "state", "region", "administrative_area_level_1", "administrative", "boundary"}
    ),
    LocationType.DISTRICTS: frozenset(
        {"district", "county", "suburb", "administrative_area_level_2", "sublocality", "city_district"}
    ),
    LocationType.TOURIST_ATTRACTIONS: frozenset(
        {"attraction", "tourism", "museum", "viewpoint", "theme_park", "zoo", "beach", "park", "gallery"}
    ),
    LocationType.AIRPORTS: frozenset({"airport", "aerodrome", "terminal"}),
    LocationType.LANDMARKS: frozenset(
        {"landmark", "monument", "memorial", "historic", "castle", "tower", "ruins", "place_of_worship",
         "point_of_interest", "establishment"}
    ),
}

POPULAR_DESTINATIONS: Tuple[str, ...] = (
    "Hà Nội", "Hồ Chí Minh", "Đà Nẵng", "Hội An", "Huế", "Nha Trang", "Đà Lạt",
    "Phú Quốc", "Hạ Long", "Sa Pa", "Vũng Tàu", "Cần Thơ", "Quy Nhơn", "Mũi Né",
    "Ninh Bình", "Hải Phòng", "Côn Đảo", "Phan Thiết", "Hà Giang", "Buôn Ma Thuột",
)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def api_error_from(service: str, exc: Exception) -> ApiError:
    if isinstance(exc, LocationServiceError):
        return ApiError(
            service=service,
            message=exc.message,
            retryable=exc.retryable,
            status_code=getattr(exc, "status_code", None),
        )
    return ApiError(service=service, message=f"Unexpected error: {exc}", retryable=False)


def terminal_error(failures: Sequence[Exception], errors: List[ApiError]) -> LocationServiceError:
    """The error to raise when every attempted source failed."""
    if failures and all(isinstance(f, RateLimitExceeded) for f in failures):
        hints = [f.retry_after_seconds for f in failures if f.retry_after_seconds is not None]
        services = ", ".join(f.service for f in failures)
        return RateLimitExceeded(services, min(hints) if hints else None, f"Rate limit exceeded for {services}")
    return ProviderUnavailable(
        "location-search",
        "All location sources failed: " + "; ".join(f"{e.service}: {e.message}" for e in errors),
        errors=errors,
    )


def matches_location_type(location: Location, location_type: LocationType) -> bool:
    if location_type is LocationType.ALL:
        return True
    keywords = LOCATION_TYPE_KEYWORDS[location_type]
    candidates = {
        (location.place_type or "").lower(),
        str(location.metadata.get("class") or "").lower(),
    }
    candidates.update(str(t).lower() for t in location.metadata.get("types") or [])
    return bool(keywords.intersection(candidates))


def _distance_key(location: Location) -> float:
    return location.distance_from_user if location.distance_from_user is not None else math.inf


def sort_results(results: List[Location], user_coordinates: Optional[Coordinates]) -> List[Location]:
    """Descending importance; near-equal importance falls back to distance from the user.

    With user coordinates, results are grouped into tie bands: each group is a
    leader plus every following result within IMPORTANCE_TIE_BAND of it. Only
    inside a group does distance decide, and equal or unknown distances keep
    importance order.
    """
    ordered = sorted(results, key=lambda r: r.importance, reverse=True)
    if user_coordinates is None:
        return ordered
    banded: List[Location] = []
    start = 0
    while start < len(ordered):
        leader = ordered[start].importance
        end = start + 1
        while end < len(ordered) and leader - ordered[end].importance <= IMPORTANCE_TIE_BAND + 1e-9:
            end += 1
        banded.extend(sorted(ordered[start:end], key=_distance_key))
        start = end
    return banded


def attach_distances(results: Iterable[Location], origin: Coordinates) -> None:
    for location in results:
        if location.coordinates is not None:
            location.distance_from_user = round(
                haversine_km(origin.lat, origin.lng, location.coordinates.lat, location.coordinates.lng), 3
            )


def surfaces_internal_errors(operation):
    """Re-raise anything that is not a LocationServiceError as InternalError."""

    @wraps(operation)
    async def wrapper(*args, **kwargs):
        try:
            return await operation(*args, **kwargs)
        except LocationServiceError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error in %s", operation.__name__)
            raise InternalError() from exc

    return wrapper


class LocationSearchService:
    def __init__(
        self,
        detector: Optional[RegionDetector] = None,
        local: Optional[LocalDatasetAdapter] = None,
        goong: Optional[GoongClient] = None,
        nominatim: Optional[NominatimClient] = None,
        cache: Optional[CacheStore] = None,
        rate_limiter: Optional[RateLimiter] = None,
        min_importance_filter: Optional[bool] = None,
        bulk_max_queries: Optional[int] = None,
    ):
        self.rate_limiter = rate_limiter or get_default_rate_limiter()
        self.detector = detector or RegionDetector()
        self.local = local or LocalDatasetAdapter()
        self.goong = goong or GoongClient(rate_limiter=self.rate_limiter)
        self.nominatim = nominatim or NominatimClient(rate_limiter=self.rate_limiter)
        self.cache = cache if cache is not None else MemoryCacheStore(settings.LOCATION_CACHE_MAX_ENTRIES)
        self.min_importance_filter = (
            settings.LOCATION_MIN_IMPORTANCE_FILTER if min_importance_filter is None else min_importance_filter
        )
        self.bulk_max_queries = bulk_max_queries or settings.LOCATION_BULK_MAX_QUERIES

    # --- strategy -----------------------------------------------------------

    def resolve_strategy(self, request: SearchRequest, detection: DetectionResult) -> SearchStrategy:
        if request.strategy is not SearchStrategy.AUTO:
            return request.strategy
        if detection.is_regional and detection.confidence > CONFIDENT_THRESHOLD:
            return SearchStrategy.REGIONAL_FIRST
        if request.user_country and request.user_country == self.detector.target_country:
            return SearchStrategy.REGIONAL_FIRST
        return SearchStrategy.INTERNATIONAL_FIRST

    def _source_available(self, source: LocationSource) -> bool:
        if source is LocationSource.LOCAL_DATASET:
            return self.local.is_available()
        if source is LocationSource.REGIONAL_PROVIDER:
            return self.goong.is_available()
        return self.nominatim.is_available()

    async def _query_source(
        self, source: LocationSource, request: SearchRequest, detection: DetectionResult
    ) -> List[Location]:
        coords = request.user_coordinates.to_coordinates() if request.user_coordinates else None
        if source is LocationSource.LOCAL_DATASET:
            return await self.local.search(request.query, request.limit)
        if source is LocationSource.REGIONAL_PROVIDER:
            return await self.goong.search(request.query, GoongSearchOptions(limit=request.limit, location=coords))
        country_codes = self.detector.target_country if detection.is_regional else None
        return await self.nominatim.search(
            request.query, NominatimSearchOptions(limit=request.limit, country_codes=country_codes)
        )

    async def _walk_sources(self, request: SearchRequest, strategy: SearchStrategy, detection: DetectionResult):
        results: List[Location] = []
        attempted: List[LocationSource] = []
        with_results: List[LocationSource] = []
        errors: List[ApiError] = []
        failures: List[Exception] = []

        for source in STRATEGY_SOURCES[strategy]:
            if source in request.exclude_sources:
                logger.debug("Skipping excluded source %s", source.value)
                continue
            if not self._source_available(source):
                logger.debug("Skipping unavailable source %s", source.value)
                continue
            attempted.append(source)
            service = SOURCE_SERVICES[source]
            try:
                found = await self._query_source(source, request, detection)
            except LocationServiceError as exc:
                logger.warning("Source %s failed for %r: %s", service, request.query, exc.message)
                errors.append(api_error_from(service, exc))
                failures.append(exc)
                continue
            except Exception as exc:
                logger.exception("Unexpected error from source %s for %r", service, request.query)
                errors.append(api_error_from(service, exc))
                failures.append(exc)
                continue
            logger.debug("Source %s returned %d results for %r", service, len(found), request.query)
            if found:
                with_results.append(source)
                results = found
                break
        return results, attempted, with_results, errors, failures

    # --- operations ---------------------------------------------------------

    @surfaces_internal_errors
    async def search(self, request: Any) -> SearchResponse:
        request = SearchRequest.parse(request)
        started = time.perf_counter()
        detection = self.detector.detect(request.query, request.user_country)
        strategy = self.resolve_strategy(request, detection)
        cache_key = SearchCacheKey.from_request(request, strategy, detection).digest()
        ttl = search_ttl_seconds(detection)

        if not request.exclude_cache:
            entry = self.cache.get_entry(cache_key)
            if entry is not None:
                try:
                    cached = [Location.from_dict(item) for item in entry.payload]
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning("Discarding undecodable cache entry %s: %s", cache_key, exc)
                    self.cache.delete(cache_key)
                else:
                    logger.debug("Search cache hit for %r", request.query)
                    metadata = SearchMetadata(
                        search_time_ms=_elapsed_ms(started),
                        strategy_used=strategy,
                        detection=detection,
                        cache=CacheInfo(
                            hit=True,
                            key=cache_key,
                            ttl=entry.remaining_seconds(int(time.time() * 1000)),
                        ),
                    )
                    return SearchResponse(
                        results=cached,
                        metadata=metadata,
                        total_results=len(cached),
                        returned_results=len(cached),
                    )

        results, attempted, with_results, errors, failures = await self._walk_sources(
            request, strategy, detection
        )
        if not results and attempted and len(failures) == len(attempted):
            raise terminal_error(failures, errors)

        if self.min_importance_filter and request.min_importance > 0:
            results = [r for r in results if r.importance >= request.min_importance]
        results = [r for r in results if matches_location_type(r, request.location_type)]

        coords = request.user_coordinates.to_coordinates() if request.user_coordinates else None
        if coords is not None:
            attach_distances(results, coords)
        results = sort_results(results, coords)
        page = results[: request.limit]

        if page:
            self.cache.set(cache_key, [loc.to_dict() for loc in page], ttl)

        metadata = SearchMetadata(
            search_time_ms=_elapsed_ms(started),
            strategy_used=strategy,
            detection=detection,
            cache=CacheInfo(hit=False, key=cache_key, ttl=ttl if page else None),
            sources_attempted=attempted,
            sources_with_results=with_results,
            errors=errors,
            api_usage=self._api_usage(),
        )
        logger.info(
            "Search %r via %s: %d results (%d returned) in %.1fms",
            request.query,
            strategy.value,
            len(results),
            len(page),
            metadata.search_time_ms,
        )
        return SearchResponse(
            results=page,
            metadata=metadata,
            total_results=len(results),
            returned_results=len(page),
            has_more=False,
        )

    @surfaces_internal_errors
    async def reverse_geocode(self, lat: float, lng: float, zoom: Optional[int] = None) -> ReverseGeocodeResponse:
        if not is_valid_coordinate(lat, lng):
            raise ValidationError(f"Invalid coordinates: lat={lat} lng={lng}")
        zoom = DEFAULT_REVERSE_ZOOM if zoom is None else zoom
        if not 0 <= zoom <= 18:
            raise ValidationError(f"zoom must be between 0 and 18, got {zoom}")
        started = time.perf_counter()
        region = region_from_coordinates(lat, lng)
        cache_key = reverse_cache_key(lat, lng, zoom)

        cached = self.cache.get(cache_key)
        if cached is not None:
            try:
                location = Location.from_dict(cached)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Discarding undecodable cache entry %s: %s", cache_key, exc)
                self.cache.delete(cache_key)
            else:
                return ReverseGeocodeResponse(
                    location=location,
                    metadata=ReverseGeocodeMetadata(
                        source=location.source,
                        confidence=location.importance,
                        zoom=zoom,
                        search_time_ms=_elapsed_ms(started),
                        cache_hit=True,
                        region=region,
                    ),
                )

        attempts = []
        if is_in_target_bounds(lat, lng) and self.goong.is_available():
            attempts.append(("goong", lambda: self.goong.reverse_geocode(lat, lng, {"zoom": zoom})))
        attempts.append(
            ("nominatim", lambda: self.nominatim.reverse_geocode(lat, lng, NominatimReverseOptions(zoom=zoom)))
        )

        location: Optional[Location] = None
        errors: List[ApiError] = []
        failures: List[Exception] = []
        for service, call in attempts:
            try:
                location = await call()
            except LocationServiceError as exc:
                logger.warning("Reverse geocode via %s failed: %s", service, exc.message)
                errors.append(api_error_from(service, exc))
                failures.append(exc)
                continue
            except Exception as exc:
                logger.exception("Unexpected error from %s during reverse geocode", service)
                errors.append(api_error_from(service, exc))
                failures.append(exc)
                continue
            if location is not None:
                break

        if location is None and len(failures) == len(attempts):
            raise terminal_error(failures, errors)
        if location is not None:
            self.cache.set(cache_key, location.to_dict(), REVERSE_GEOCODE_TTL)

        return ReverseGeocodeResponse(
            location=location,
            metadata=ReverseGeocodeMetadata(
                source=location.source if location else None,
                confidence=location.importance if location else 0.0,
                zoom=zoom,
                search_time_ms=_elapsed_ms(started),
                cache_hit=False,
                region=region,
                errors=errors,
            ),
        )

    async def bulk_search(self, queries: Sequence[str], options: Any = None) -> BulkSearchResponse:
        if not queries:
            raise ValidationError("At least one query is required")
        if len(queries) > self.bulk_max_queries:
            raise ValidationError(f"At most {self.bulk_max_queries} queries per batch, got {len(queries)}")
        options = BulkSearchOptions.parse(options or {})
        started = time.perf_counter()

        async def run_one(query: str) -> SearchResponse:
            return await self.search(options.request_for(query))

        # Repeated queries run once and share one results_by_query entry
        distinct = list(dict.fromkeys(queries))
        outcomes = await asyncio.gather(*(run_one(q) for q in distinct), return_exceptions=True)

        results_by_query: Dict[str, List[Location]] = {}
        errors: Dict[str, str] = {}
        failed = 0
        for query, outcome in zip(distinct, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Bulk search query %r failed: %r", query, outcome)
                results_by_query[query] = []
                errors[query] = getattr(outcome, "message", None) or str(outcome) or type(outcome).__name__
                failed += 1
            else:
                results_by_query[query] = outcome.results
        return BulkSearchResponse(
            results_by_query=results_by_query,
            metadata=BulkSearchMetadata(
                total_queries=len(distinct),
                successful_queries=len(distinct) - failed,
                failed_queries=failed,
                total_search_time_ms=_elapsed_ms(started),
                strategy_used=options.strategy,
                errors=errors,
            ),
        )

    async def suggestions(self, partial_query: str, limit: int = 5) -> List[str]:
        """Accent-insensitive name completions from the local dataset and popular destinations."""
        partial = (partial_query or "").strip()
        if len(partial) < MIN_SUGGESTION_CHARS:
            return []
        needle = strip_diacritics(partial)

        names: List[str] = list(POPULAR_DESTINATIONS)
        if self.local.is_available():
            try:
                names.extend(await self.local.list_names())
            except LocationServiceError as exc:
                logger.warning("Local dataset unavailable for suggestions: %s", exc.message)

        prefix, contains = [], []
        seen = set()
        for name in names:
            folded = strip_diacritics(name)
            if folded in seen:
                continue
            if folded.startswith(needle):
                prefix.append(name)
            elif needle in folded:
                contains.append(name)
            else:
                continue
            seen.add(folded)
        return (prefix + contains)[:limit]

    @surfaces_internal_errors
    async def find_nearby_places(
        self,
        lat: float,
        lng: float,
        category: str = "all",
        radius_km: float = DEFAULT_NEARBY_RADIUS_KM,
        limit: int = 20,
    ) -> List[Location]:
        """Points of interest around a coordinate, nearest first.

        Provider failures yield an empty list; bad coordinates still raise.
        """
        if not is_valid_coordinate(lat, lng):
            raise ValidationError(f"Invalid coordinates: lat={lat} lng={lng}")
        if radius_km <= 0:
            raise ValidationError(f"radius_km must be positive, got {radius_km}")
        query = NEARBY_CATEGORY_QUERIES.get((category or "all").lower(), category)
        try:
            places = await self.nominatim.search_nearby(lat, lng, query, radius_km=radius_km, limit=limit)
        except ValidationError:
            raise
        except LocationServiceError as exc:
            logger.warning("Nearby search for %r at %s,%s failed: %s", category, lat, lng, exc.message)
            return []
        logger.info("Nearby %r within %.1fkm of %s,%s: %d places", category, radius_km, lat, lng, len(places))
        return places[:limit]

    @surfaces_internal_errors
    async def list_provinces(self) -> List[Location]:
        """Province-level units of the local dataset, ordered by name."""
        if not self.local.is_available():
            raise ProviderUnavailable(SOURCE_SERVICES[LocationSource.LOCAL_DATASET], "Local dataset is not configured")
        return await self.local.list_provinces()

    # --- operational --------------------------------------------------------

    def _api_usage(self) -> Dict[str, Any]:
        return {
            self.goong.service: self.goong.get_usage_stats()["usage"],
            self.nominatim.service: self.nominatim.get_usage_stats()["usage"],
        }

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "search": self.cache.get_stats(),
            self.goong.service: self.goong.cache.get_stats(),
            self.nominatim.service: self.nominatim.cache.get_stats(),
        }

    def get_usage_stats(self) -> Dict[str, Any]:
        return {
            self.goong.service: self.goong.get_usage_stats(),
            self.nominatim.service: self.nominatim.get_usage_stats(),
        }

    def clear_expired_cache(self) -> int:
        stores = {id(s): s for s in (self.cache, self.goong.cache, self.nominatim.cache)}
        removed = sum(store.clear_expired() for store in stores.values())
        logger.info("Cleared %d expired cache entries", removed)
        return removed


def build_default_service() -> LocationSearchService:
    """Wire the service from settings; adds the SQLite tier when configured."""
    from services.cache_sqlite import SqliteCacheStore

    cache: CacheStore = MemoryCacheStore(settings.LOCATION_CACHE_MAX_ENTRIES)
    if settings.LOCATION_CACHE_SQLITE_PATH:
        cache = TieredCacheStore(cache, SqliteCacheStore(settings.LOCATION_CACHE_SQLITE_PATH))
    return LocationSearchService(cache=cache, rate_limiter=get_default_rate_limiter())
