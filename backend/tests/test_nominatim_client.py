import asyncio

import pytest

from domain.errors import RateLimitExceeded, ValidationError
from domain.models import LocationSource
from services import geocoding
from services.location_records import NominatimPlaceRecord
from services.nominatim_client import NominatimClient, NominatimSearchOptions, parse_osm_ref
from services.rate_limiter import RateLimiter, ServiceLimits

EIFFEL = {
    "place_id": 123,
    "osm_type": "way",
    "osm_id": 5013364,
    "lat": "48.8582599",
    "lon": "2.2945006",
    "class": "tourism",
    "type": "attraction",
    "place_rank": 30,
    "importance": 0.8960608532461685,
    "display_name": "Tour Eiffel, 5, Avenue Anatole France, Paris, Île-de-France, France",
    "name": "Tour Eiffel",
    "address": {
        "tourism": "Tour Eiffel",
        "road": "Avenue Anatole France",
        "suburb": "Gros-Caillou",
        "city": "Paris",
        "county": "Paris",
        "state": "Île-de-France",
        "country": "France",
        "country_code": "fr",
    },
    "boundingbox": ["48.8574753", "48.8590453", "2.2933119", "2.2956897"],
}


class FakeNominatim:
    def __init__(self, payloads):
        self.payloads = payloads
        self.calls = []

    def __call__(self, service, url, *, params, headers=None, timeout=None, min_interval=0.0):
        self.calls.append({"url": url, "params": dict(params), "headers": headers, "min_interval": min_interval})
        for suffix, payload in self.payloads.items():
            if url.endswith(suffix):
                return payload
        raise AssertionError(f"unexpected url {url}")


def _client(limits=None):
    limiter = RateLimiter({"nominatim": limits or ServiceLimits(hourly=100)})
    return NominatimClient(
        base_url="https://nominatim.test",
        user_agent="trip-tests/1.0 (tests@example.com)",
        referer="https://example.com",
        min_interval=0,
        rate_limiter=limiter,
    )


def test_search_maps_results_and_drops_missing_coordinates(monkeypatch):
    no_coords = {"place_id": 9, "display_name": "Nowhere", "address": {}}
    fake = FakeNominatim({"/search": [EIFFEL, no_coords]})
    monkeypatch.setattr(geocoding, "fetch_json", fake)

    results = asyncio.run(_client().search("Eiffel Tower", NominatimSearchOptions(limit=5)))

    assert len(results) == 1
    loc = results[0]
    assert loc.name == "Tour Eiffel"
    assert loc.source == LocationSource.INTERNATIONAL_PROVIDER
    assert loc.country_code == "FR"
    assert loc.province == "Île-de-France"
    assert loc.district == "Paris"
    assert loc.ward == "Gros-Caillou"
    assert loc.place_type == "attraction"
    assert loc.importance == pytest.approx(0.896, abs=1e-3)
    assert loc.bounding_box.min_lat == pytest.approx(48.8574753)
    assert loc.metadata["osm_ref"] == "W5013364"


def test_request_headers_and_params(monkeypatch):
    fake = FakeNominatim({"/search": []})
    monkeypatch.setattr(geocoding, "fetch_json", fake)
    asyncio.run(_client().search("Huế", NominatimSearchOptions(limit=3, country_codes="VN")))

    call = fake.calls[0]
    assert call["headers"]["User-Agent"] == "trip-tests/1.0 (tests@example.com)"
    assert call["headers"]["Referer"] == "https://example.com"
    assert call["params"]["q"] == "Huế"
    assert call["params"]["countrycodes"] == "vn"
    assert call["params"]["format"] == "json"
    assert call["min_interval"] == 0


def test_importance_derived_from_place_rank(monkeypatch):
    item = dict(EIFFEL, importance=None, place_rank=15)
    monkeypatch.setattr(geocoding, "fetch_json", FakeNominatim({"/search": [item]}))
    results = asyncio.run(_client().search("Eiffel"))
    assert results[0].importance == pytest.approx(0.5)


def test_results_are_cached(monkeypatch):
    fake = FakeNominatim({"/search": [EIFFEL]})
    monkeypatch.setattr(geocoding, "fetch_json", fake)
    client = _client()
    asyncio.run(client.search("Eiffel Tower"))
    asyncio.run(client.search("eiffel tower "))
    assert len(fake.calls) == 1


def test_non_list_payload_is_empty(monkeypatch):
    monkeypatch.setattr(geocoding, "fetch_json", FakeNominatim({"/search": {"error": "bad"}}))
    assert asyncio.run(_client().search("x")) == []


def test_rate_limit_refusal(monkeypatch):
    fake = FakeNominatim({"/search": [EIFFEL]})
    monkeypatch.setattr(geocoding, "fetch_json", fake)
    with pytest.raises(RateLimitExceeded):
        asyncio.run(_client(ServiceLimits(hourly=0)).search("Eiffel"))
    assert fake.calls == []


def test_place_details_by_osm_ref(monkeypatch):
    details = {
        "place_id": 123,
        "osm_type": "W",
        "osm_id": 5013364,
        "category": "tourism",
        "type": "attraction",
        "localname": "Tour Eiffel",
        "rank_search": 30,
        "importance": 0.9,
        "centroid": {"type": "Point", "coordinates": [2.2945, 48.8582]},
        "address": [
            {"localname": "Paris", "type": "city"},
            {"localname": "France", "type": "country"},
        ],
    }
    fake = FakeNominatim({"/details": details})
    monkeypatch.setattr(geocoding, "fetch_json", fake)
    loc = asyncio.run(_client().place_details("W5013364"))

    assert fake.calls[0]["params"]["osmtype"] == "W"
    assert fake.calls[0]["params"]["osmid"] == 5013364
    assert loc.name == "Tour Eiffel"
    assert loc.coordinates.lat == pytest.approx(48.8582)
    assert loc.coordinates.lng == pytest.approx(2.2945)
    assert loc.country == "France"


def test_parse_osm_ref_rejects_garbage():
    assert parse_osm_ref("n42") == ("N", 42)
    with pytest.raises(ValidationError):
        parse_osm_ref("way/42")


def test_reverse_geocode(monkeypatch):
    fake = FakeNominatim({"/reverse": EIFFEL})
    monkeypatch.setattr(geocoding, "fetch_json", fake)
    loc = asyncio.run(_client().reverse_geocode(48.8582, 2.2945))
    assert loc.name == "Tour Eiffel"
    assert fake.calls[0]["params"]["zoom"] == 18

    monkeypatch.setattr(geocoding, "fetch_json", FakeNominatim({"/reverse": {"error": "Unable to geocode"}}))
    assert asyncio.run(_client().reverse_geocode(0.0, 0.0)) is None

    with pytest.raises(ValidationError):
        asyncio.run(_client().reverse_geocode(95.0, 0.0))


def test_search_nearby_filters_by_radius(monkeypatch):
    far = dict(EIFFEL, place_id=2, osm_id=2, name="Far cafe", lat="48.9500", lon="2.2945")
    near = dict(EIFFEL, place_id=1, osm_id=1, name="Near cafe", lat="48.8590", lon="2.2950")
    fake = FakeNominatim({"/search": [far, near]})
    monkeypatch.setattr(geocoding, "fetch_json", fake)

    results = asyncio.run(_client().search_nearby(48.8582, 2.2945, "cafe", radius_km=1.0))
    assert [r.name for r in results] == ["Near cafe"]
    assert results[0].distance_from_user < 1.0
    assert fake.calls[0]["params"]["bounded"] == 1


def test_extraction_priority():
    record = NominatimPlaceRecord.from_api(
        {"place_id": 1, "lat": "10", "lon": "106", "display_name": "x",
         "address": {"region": "Nam Bộ", "municipality": "M", "quarter": "Q"}}
    )
    assert NominatimClient.extract_province(record) == "Nam Bộ"
    assert NominatimClient.extract_district(record) == "M"
    assert NominatimClient.extract_ward(record) == "Q"
