import asyncio

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import Base
from domain.models import LocationSource, SearchStrategy
from repositories import models  # noqa: F401  Registers the ORM tables
from services import geocoding
from services.cache_store import MemoryCacheStore
from services.goong_client import GoongClient
from services.local_dataset import LocalDatasetAdapter
from services.location_search import LocationSearchService
from services.nominatim_client import NominatimClient
from services.rate_limiter import RateLimiter, ServiceLimits
from services.region_detector import RegionDetector

PREDICTIONS = [
    {
        "place_id": f"hcm{i}",
        "description": f"Địa điểm {i}, Quận {i + 1}, Thành phố Hồ Chí Minh",
        "structured_formatting": {"main_text": f"Địa điểm {i}", "secondary_text": f"Quận {i + 1}"},
        "types": ["locality"],
        "compound": {"province": "Hồ Chí Minh", "district": f"Quận {i + 1}"},
    }
    for i in range(7)
]


class RecordingFetch:
    """Serves Goong payloads; any Nominatim request is recorded."""

    def __init__(self):
        self.urls = []

    def __call__(self, service, url, *, params, headers=None, timeout=None, min_interval=0.0):
        self.urls.append(url)
        if url.endswith("/Place/AutoComplete"):
            return {"status": "OK", "predictions": PREDICTIONS}
        if url.endswith("/Place/Detail"):
            return {
                "status": "OK",
                "result": {
                    "place_id": params["place_id"],
                    "name": params["place_id"],
                    "formatted_address": "Thành phố Hồ Chí Minh",
                    "geometry": {"location": {"lat": 10.7769, "lng": 106.7009}},
                },
            }
        return []


@pytest.fixture
def empty_local_dataset():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield LocalDatasetAdapter(sessionmaker(bind=engine, autoflush=False, autocommit=False))
    engine.dispose()


def test_ascii_city_name_resolves_through_regional_provider(monkeypatch, empty_local_dataset):
    fetch = RecordingFetch()
    monkeypatch.setattr(geocoding, "fetch_json", fetch)
    limiter = RateLimiter(
        {
            "goong": ServiceLimits(hourly=100, daily=1000),
            "nominatim": ServiceLimits(hourly=100, daily=1000),
        }
    )
    service = LocationSearchService(
        detector=RegionDetector(target_country="VN"),
        local=empty_local_dataset,
        goong=GoongClient(api_key="test-key-123", base_url="https://goong.test", rate_limiter=limiter),
        nominatim=NominatimClient(
            base_url="https://nominatim.test", user_agent="tests/1.0 (dev@example.com)",
            min_interval=0, rate_limiter=limiter,
        ),
        cache=MemoryCacheStore(),
        rate_limiter=limiter,
    )

    response = asyncio.run(service.search({"query": "Ho Chi Minh City", "strategy": "auto", "limit": 5}))

    assert response.metadata.strategy_used == SearchStrategy.REGIONAL_FIRST
    assert response.metadata.sources_attempted == [
        LocationSource.LOCAL_DATASET,
        LocationSource.REGIONAL_PROVIDER,
    ]
    assert 0 < len(response.results) <= 5
    assert all(r.source == LocationSource.REGIONAL_PROVIDER for r in response.results)
    importances = [r.importance for r in response.results]
    assert importances == sorted(importances, reverse=True)
    assert not any("nominatim.test" in url for url in fetch.urls)
