"""
Regional geocoding via Goong Maps (rsapi.goong.io).

Autocomplete predictions carry no coordinates, so the top few predictions are
resolved through /Place/Detail. A failed detail lookup leaves that prediction
without coordinates rather than failing the search.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from domain.errors import ProviderUnavailable, RateLimitExceeded
from domain.models import Coordinates, Location
from services.cache_policy import PROVIDER_RESPONSE_TTL, provider_cache_key
from services.cache_store import CacheStore
from services.geocoding import ProviderClient, _redact_secret
from services.location_converters import goong_district, goong_province, goong_ward, to_location
from services.location_records import GoongPlaceRecord
from services.rate_limiter import RateLimiter
from settings import settings

MAX_DETAIL_LOOKUPS = 3
MAX_RADIUS_M = 50_000
GOONG_USER_AGENT = "trip-location-resolver/0.1"


@dataclass
class GoongSearchOptions:
    limit: int = 10
    location: Optional[Coordinates] = None
    radius_m: Optional[int] = None
    types: Optional[str] = None
    language: Optional[str] = None

    def to_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": self.limit}
        if self.location is not None:
            params["location"] = f"{self.location.lat},{self.location.lng}"
            if self.radius_m:
                params["radius"] = min(self.radius_m, MAX_RADIUS_M)
        if self.types:
            params["types"] = self.types
        if self.language:
            params["language"] = self.language
        return params


class GoongClient(ProviderClient):
    service = "goong"

    extract_province = staticmethod(goong_province)
    extract_district = staticmethod(goong_district)
    extract_ward = staticmethod(goong_ward)

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[CacheStore] = None,
        fetch=None,
    ):
        super().__init__(rate_limiter=rate_limiter, cache=cache, fetch=fetch)
        self.api_key = settings.GOONG_API_KEY if api_key is None else api_key
        self.base_url = (base_url or settings.GOONG_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.GOONG_TIMEOUT_SEC
        if not self.api_key:
            self.logger.warning("GOONG_API_KEY not configured; Goong lookups are disabled")

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _require_key(self) -> None:
        if not self.api_key:
            raise ProviderUnavailable(self.service, "Goong API key not configured", retryable=False)

    async def _request(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._get_json(
            f"{self.base_url}{path}",
            {**params, "api_key": self.api_key},
            headers={"User-Agent": GOONG_USER_AGENT},
            timeout=self.timeout,
        )
        if not isinstance(data, dict):
            raise ProviderUnavailable(self.service, "Goong returned an unexpected payload")
        status = data.get("status", "OK")
        if status in ("OK", "ZERO_RESULTS"):
            return data
        message = data.get("error_message") or status
        if status == "OVER_QUERY_LIMIT":
            raise RateLimitExceeded(self.service, None, f"Goong API error: {message}")
        raise ProviderUnavailable(
            self.service, f"Goong API error: {message}", retryable=status == "UNKNOWN_ERROR"
        )

    async def search(self, query: str, options: Optional[GoongSearchOptions] = None) -> List[Location]:
        """Autocomplete search; the top predictions get coordinates via detail lookups."""
        options = options or GoongSearchOptions()
        self._require_key()
        if not query or not query.strip():
            return []
        self._consume_budget()

        key = provider_cache_key(self.service, "search", {"query": query, **options.to_params()})
        cached = self.cache.get(key)
        if cached is not None:
            self.logger.debug("Returning cached Goong search results: %d results", len(cached))
            return [to_location(GoongPlaceRecord.from_dict(item)) for item in cached]

        self.logger.debug("Searching Goong for %r (key=%s)", query, _redact_secret(self.api_key))
        data = await self._request("/Place/AutoComplete", {"input": query, **options.to_params()})
        predictions = data.get("predictions") or []
        records = [
            GoongPlaceRecord.from_prediction(item, rank, query) for rank, item in enumerate(predictions)
        ]
        await self._attach_details(records[:MAX_DETAIL_LOOKUPS])

        self.cache.set(key, [r.to_dict() for r in records], PROVIDER_RESPONSE_TTL)
        self.logger.debug(
            "Goong search %r: %d results, %d with coordinates",
            query,
            len(records),
            sum(1 for r in records if r.lat is not None),
        )
        return [to_location(r) for r in records]

    async def _attach_details(self, records: List[GoongPlaceRecord]) -> None:
        outcomes = await asyncio.gather(
            *(self._detail_result(r.place_id) for r in records), return_exceptions=True
        )
        for record, outcome in zip(records, outcomes):
            if isinstance(outcome, BaseException):
                self.logger.debug("Failed to fetch coordinates for place %s: %s", record.place_id, outcome)
            elif outcome:
                record.with_detail(outcome)

    async def _detail_result(self, place_id: str) -> Optional[Dict[str, Any]]:
        self._consume_budget()
        key = provider_cache_key(self.service, "detail", {"place_id": place_id})
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        data = await self._request("/Place/Detail", {"place_id": place_id})
        result = data.get("result")
        if result:
            self.cache.set(key, result, PROVIDER_RESPONSE_TTL)
        return result

    async def place_details(self, place_id: str) -> Optional[Location]:
        self._require_key()
        if not place_id:
            return None
        result = await self._detail_result(place_id)
        if not result:
            return None
        record = GoongPlaceRecord(
            place_id=result.get("place_id") or place_id,
            description=result.get("formatted_address") or "",
            main_text=result.get("name") or "",
            types=list(result.get("types") or []),
        ).with_detail(result)
        return to_location(record)

    async def reverse_geocode(self, lat: float, lng: float, options: Optional[Dict[str, Any]] = None) -> Optional[Location]:
        self._require_key()
        self._consume_budget()
        params = {"latlng": f"{lat},{lng}"}
        key = provider_cache_key(self.service, "reverse", {**params, **(options or {})})
        result = self.cache.get(key)
        if result is None:
            data = await self._request("/Geocode", params)
            results = data.get("results") or []
            if not results:
                return None
            result = results[0]
            self.cache.set(key, result, PROVIDER_RESPONSE_TTL)
        record = GoongPlaceRecord(
            place_id=result.get("place_id") or "",
            description=result.get("formatted_address") or "",
            main_text=result.get("name") or "",
            types=list(result.get("types") or []),
        ).with_detail(result)
        return to_location(record)
