import sys
from pathlib import Path

# Ensure the backend package root is on sys.path for direct pytest runs
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import copy  # noqa: E402

import pytest  # noqa: E402

from domain.models import Coordinates, Location, LocationSource  # noqa: E402
from services.cache_store import MemoryCacheStore  # noqa: E402
from services.location_search import LocationSearchService  # noqa: E402
from services.rate_limiter import RateLimiter  # noqa: E402
from services.region_detector import RegionDetector  # noqa: E402


def make_location(
    id,
    importance=0.5,
    lat=None,
    lng=None,
    source=LocationSource.INTERNATIONAL_PROVIDER,
    place_type="place",
    name=None,
):
    return Location(
        id=id,
        name=name or id,
        display_name=name or id,
        source=source,
        coordinates=Coordinates(lat=lat, lng=lng) if lat is not None else None,
        place_type=place_type,
        importance=importance,
    )


class FakeSource:
    """Stands in for the local dataset adapter or a provider client."""

    def __init__(self, service, results=None, error=None, available=True, names=None):
        self.service = service
        self.results = list(results or [])
        self.error = error
        self.available = available
        self.names = list(names or [])
        self.reverse_result = None
        self.reverse_error = None
        self.nearby_results = []
        self.nearby_error = None
        self.provinces = []
        self.calls = []
        self.reverse_calls = []
        self.nearby_calls = []
        self.cache = MemoryCacheStore()

    def is_available(self):
        return self.available

    async def search(self, query, options=None):
        self.calls.append(query)
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.results)

    async def reverse_geocode(self, lat, lng, options=None):
        self.reverse_calls.append((lat, lng))
        if self.reverse_error is not None:
            raise self.reverse_error
        return copy.deepcopy(self.reverse_result)

    async def search_nearby(self, lat, lng, category, radius_km=1.0, limit=10):
        self.nearby_calls.append((lat, lng, category, radius_km, limit))
        if self.nearby_error is not None:
            raise self.nearby_error
        return copy.deepcopy(self.nearby_results)

    async def list_names(self):
        return list(self.names)

    async def list_provinces(self):
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.provinces)

    def get_usage_stats(self):
        return {"service": self.service, "usage": {"hourly": len(self.calls)}}


@pytest.fixture
def sources():
    return {
        "local": FakeSource("local-dataset"),
        "goong": FakeSource("goong"),
        "nominatim": FakeSource("nominatim"),
    }


@pytest.fixture
def service(sources):
    return LocationSearchService(
        detector=RegionDetector(target_country="VN"),
        local=sources["local"],
        goong=sources["goong"],
        nominatim=sources["nominatim"],
        cache=MemoryCacheStore(),
        rate_limiter=RateLimiter({}),
        min_importance_filter=True,
        bulk_max_queries=20,
    )
