import asyncio

import pytest

from conftest import make_location
from domain.errors import ProviderUnavailable, ValidationError
from domain.models import SearchStrategy


def test_bulk_search_collects_per_query_results(service, sources):
    sources["nominatim"].results = [make_location("n1", 0.9), make_location("n2", 0.8)]

    response = asyncio.run(service.bulk_search(["Paris", "Tokyo"], {"limit_per_query": 1}))

    assert set(response.results_by_query) == {"Paris", "Tokyo"}
    assert [r.id for r in response.results_by_query["Paris"]] == ["n1"]
    meta = response.metadata
    assert meta.total_queries == 2
    assert meta.successful_queries == 2
    assert meta.failed_queries == 0
    assert meta.strategy_used == SearchStrategy.AUTO


def test_bulk_search_captures_failures_without_raising(service, sources):
    sources["nominatim"].error = ProviderUnavailable("nominatim", "timeout")

    response = asyncio.run(
        service.bulk_search(["Paris", "   "], {"strategy": "international-only"})
    )

    assert response.results_by_query == {"Paris": [], "   ": []}
    assert response.metadata.failed_queries == 2
    assert "timeout" in response.metadata.errors["Paris"]
    assert "query" in response.metadata.errors["   "]


def test_bulk_search_rejects_malformed_batches(service):
    with pytest.raises(ValidationError):
        asyncio.run(service.bulk_search([]))
    with pytest.raises(ValidationError):
        asyncio.run(service.bulk_search([f"q{i}" for i in range(21)]))


def test_bulk_search_rejects_bad_options(service):
    with pytest.raises(ValidationError):
        asyncio.run(service.bulk_search(["Paris"], {"limit_per_query": 0}))


def test_bulk_response_serializes(service, sources):
    sources["goong"].results = [make_location("g1", 0.7, 16.05, 108.2)]
    payload = asyncio.run(service.bulk_search(["Đà Nẵng"])).to_dict()
    assert payload["results_by_query"]["Đà Nẵng"][0]["id"] == "g1"
    assert payload["metadata"]["strategy_used"] == "auto"


def test_bulk_search_runs_duplicate_queries_once(service, sources):
    sources["nominatim"].results = [make_location("n1", 0.9)]

    response = asyncio.run(service.bulk_search(["Paris", "Tokyo", "Paris"]))

    assert list(response.results_by_query) == ["Paris", "Tokyo"]
    assert response.metadata.total_queries == 2
    assert response.metadata.successful_queries == 2
    assert sources["nominatim"].calls == ["Paris", "Tokyo"]


def test_bulk_search_records_cancelled_queries(service, monkeypatch):
    original = service.search

    async def search(request):
        if request.query == "Paris":
            raise asyncio.CancelledError()
        return await original(request)

    monkeypatch.setattr(service, "search", search)
    response = asyncio.run(service.bulk_search(["Paris", "Tokyo"]))

    assert response.results_by_query["Paris"] == []
    assert response.metadata.failed_queries == 1
    assert response.metadata.successful_queries == 1
    assert response.metadata.errors["Paris"] == "CancelledError"
