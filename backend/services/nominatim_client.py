"""
International geocoding via OpenStreetMap Nominatim.

Requests carry an identifying User-Agent (and Referer when configured) and are
spaced by a process-wide minimum interval, as the public instance requires.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from domain.errors import ValidationError
from domain.models import BoundingBox, Location, is_valid_coordinate
from services.cache_policy import PROVIDER_RESPONSE_TTL, provider_cache_key
from services.cache_store import CacheStore
from services.geocoding import (
    FALLBACK_UA,
    ProviderClient,
    _redact_email,
    bounding_box_around,
    haversine_km,
)
from services.location_converters import (
    nominatim_district,
    nominatim_province,
    nominatim_ward,
    to_location,
)
from services.location_records import NominatimPlaceRecord
from services.rate_limiter import RateLimiter
from settings import settings

OSM_REF_RE = re.compile(r"^([NWR])(\d+)$", re.IGNORECASE)
DEFAULT_REVERSE_ZOOM = 18


@dataclass
class NominatimSearchOptions:
    limit: int = 10
    country_codes: Optional[str] = None
    bounding_box: Optional[BoundingBox] = None
    language: Optional[str] = None
    dedupe: bool = True

    def to_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": self.limit}
        if self.country_codes:
            params["countrycodes"] = self.country_codes.lower()
        if self.bounding_box is not None:
            bbox = self.bounding_box
            params["viewbox"] = f"{bbox.min_lng},{bbox.max_lat},{bbox.max_lng},{bbox.min_lat}"
            params["bounded"] = 1
        if self.language:
            params["accept-language"] = self.language
        if not self.dedupe:
            params["dedupe"] = 0
        return params


@dataclass
class NominatimReverseOptions:
    zoom: int = DEFAULT_REVERSE_ZOOM
    language: Optional[str] = None

    def to_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"zoom": self.zoom}
        if self.language:
            params["accept-language"] = self.language
        return params


def parse_osm_ref(osm_ref: str):
    """Split 'W1234' into ('W', 1234)."""
    match = OSM_REF_RE.match((osm_ref or "").strip())
    if not match:
        raise ValidationError(f"Invalid OSM reference {osm_ref!r}; expected e.g. 'W1234'")
    return match.group(1).upper(), int(match.group(2))


def _details_item(data: Dict[str, Any]) -> Dict[str, Any]:
    """Reshape a /details payload into the /search item layout."""
    item = dict(data)
    centroid = (data.get("centroid") or {}).get("coordinates") or []
    if "lat" not in item and len(centroid) == 2:
        item["lon"], item["lat"] = centroid
    if not item.get("name"):
        item["name"] = data.get("localname") or (data.get("names") or {}).get("name")
    if isinstance(item.get("address"), list):
        # addressdetails on /details is a list of ranked address lines
        address: Dict[str, str] = {}
        for line in item["address"]:
            kind = line.get("type")
            if kind and line.get("localname") and kind not in address:
                address[kind] = line["localname"]
        item["address"] = address
    item.setdefault("category", data.get("category"))
    item.setdefault("place_rank", data.get("rank_search"))
    if item.get("extratags") is None:
        item["extratags"] = {}
    return item


class NominatimClient(ProviderClient):
    service = "nominatim"

    extract_province = staticmethod(nominatim_province)
    extract_district = staticmethod(nominatim_district)
    extract_ward = staticmethod(nominatim_ward)

    def __init__(
        self,
        base_url: Optional[str] = None,
        user_agent: Optional[str] = None,
        referer: Optional[str] = None,
        timeout: Optional[float] = None,
        min_interval: Optional[float] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[CacheStore] = None,
        fetch=None,
    ):
        super().__init__(rate_limiter=rate_limiter, cache=cache, fetch=fetch)
        self.base_url = (base_url or settings.NOMINATIM_BASE_URL).rstrip("/")
        self.user_agent = user_agent or settings.NOMINATIM_USER_AGENT or FALLBACK_UA
        self.referer = referer if referer is not None else settings.NOMINATIM_REFERER
        self.timeout = timeout or settings.NOMINATIM_TIMEOUT_SEC
        self.min_interval = settings.NOMINATIM_MIN_INTERVAL if min_interval is None else min_interval
        if self.user_agent == FALLBACK_UA:
            self.logger.warning(
                "NOMINATIM_USER_AGENT not set; using fallback %s", _redact_email(self.user_agent)
            )

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"User-Agent": self.user_agent}
        if self.referer:
            headers["Referer"] = self.referer
        return headers

    def is_available(self) -> bool:
        return bool(self.base_url)

    async def _request(self, path: str, params: Dict[str, Any]) -> Any:
        return await self._get_json(
            f"{self.base_url}{path}",
            {"format": "json", "addressdetails": 1, "extratags": 1, "namedetails": 1, **params},
            headers=self.headers,
            timeout=self.timeout,
            min_interval=self.min_interval,
        )

    def _locations(self, items: List[Dict[str, Any]]) -> List[Location]:
        locations = []
        for item in items:
            location = to_location(NominatimPlaceRecord.from_dict(item))
            # Results without usable coordinates are not addressable
            if location.coordinates is not None:
                locations.append(location)
        return locations

    async def search(self, query: str, options: Optional[NominatimSearchOptions] = None) -> List[Location]:
        options = options or NominatimSearchOptions()
        if not query or not query.strip():
            return []
        self._consume_budget()

        key = provider_cache_key(self.service, "search", {"query": query, **options.to_params()})
        cached = self.cache.get(key)
        if cached is not None:
            self.logger.debug("Returning cached Nominatim search results: %d results", len(cached))
            return self._locations(cached)

        data = await self._request("/search", {"q": query, **options.to_params()})
        if not isinstance(data, list):
            self.logger.warning("Nominatim /search returned a non-list payload for %r", query)
            return []
        records = [NominatimPlaceRecord.from_api(item).to_dict() for item in data if isinstance(item, dict)]
        self.cache.set(key, records, PROVIDER_RESPONSE_TTL)
        locations = self._locations(records)
        self.logger.debug(
            "Nominatim search %r: %d raw, %d with coordinates", query, len(records), len(locations)
        )
        return locations

    async def place_details(self, osm_ref: str) -> Optional[Location]:
        """Look up a place by compact OSM reference such as 'W1234'."""
        osm_type, osm_id = parse_osm_ref(osm_ref)
        self._consume_budget()
        key = provider_cache_key(self.service, "details", {"osmtype": osm_type, "osmid": osm_id})
        cached = self.cache.get(key)
        if cached is None:
            data = await self._request("/details", {"osmtype": osm_type, "osmid": osm_id})
            if not isinstance(data, dict) or not data or "error" in data:
                return None
            cached = NominatimPlaceRecord.from_api(_details_item(data)).to_dict()
            self.cache.set(key, cached, PROVIDER_RESPONSE_TTL)
        found = self._locations([cached])
        return found[0] if found else None

    async def reverse_geocode(
        self, lat: float, lng: float, options: Optional[NominatimReverseOptions] = None
    ) -> Optional[Location]:
        if not is_valid_coordinate(lat, lng):
            raise ValidationError(f"Invalid coordinates provided: lat={lat} lng={lng}")
        options = options or NominatimReverseOptions()
        self._consume_budget()
        params = {"lat": lat, "lon": lng, **options.to_params()}
        key = provider_cache_key(self.service, "reverse", params)
        cached = self.cache.get(key)
        if cached is None:
            data = await self._request("/reverse", params)
            if not isinstance(data, dict) or not data or "error" in data:
                return None
            cached = NominatimPlaceRecord.from_api(data).to_dict()
            self.cache.set(key, cached, PROVIDER_RESPONSE_TTL)
        found = self._locations([cached])
        return found[0] if found else None

    async def search_nearby(
        self,
        lat: float,
        lng: float,
        category: str,
        radius_km: float = 1.0,
        limit: int = 10,
    ) -> List[Location]:
        """Places matching `category` within `radius_km`, nearest first."""
        if not is_valid_coordinate(lat, lng):
            raise ValidationError(f"Invalid coordinates provided: lat={lat} lng={lng}")
        min_lat, min_lng, max_lat, max_lng = bounding_box_around(lat, lng, radius_km)
        options = NominatimSearchOptions(
            limit=limit,
            bounding_box=BoundingBox(min_lat=min_lat, min_lng=min_lng, max_lat=max_lat, max_lng=max_lng),
        )
        nearby = []
        for location in await self.search(category, options):
            distance = haversine_km(lat, lng, location.coordinates.lat, location.coordinates.lng)
            if distance <= radius_km:
                location.distance_from_user = round(distance, 3)
                nearby.append(location)
        nearby.sort(key=lambda loc: loc.distance_from_user)
        return nearby
