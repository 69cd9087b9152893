import pytest

from domain.models import AdministrativeRecord, Location, LocationSource
from services.location_converters import LOCAL_IMPORTANCE, to_location
from services.location_records import GoongPlaceRecord, NominatimPlaceRecord


def test_local_record_conversion():
    record = AdministrativeRecord(
        id="01",
        province_name="Hà Nội",
        full_name="Thành phố Hà Nội",
        province_id=1,
        latitude=21.0285,
        longitude=105.8542,
        type="thanh-pho",
        slug="ha-noi",
        name_with_type="Thành phố Hà Nội",
        path_with_type="Thành phố Hà Nội",
    )
    loc = to_location(record)
    assert loc.id == "local_01"
    assert loc.source == LocationSource.LOCAL_DATASET
    assert loc.importance == LOCAL_IMPORTANCE
    assert loc.place_type == "city"
    assert loc.country_code == "VN"
    assert loc.region == "north"
    assert loc.coordinates.lat == pytest.approx(21.0285)


def test_invalid_coordinates_are_dropped_not_raised():
    record = AdministrativeRecord(id="x", province_name="P", full_name="P", latitude=123.0, longitude=500.0)
    assert to_location(record).coordinates is None

    nominatim = NominatimPlaceRecord.from_api({"place_id": 1, "lat": "abc", "lon": "2", "display_name": "A, B"})
    loc = to_location(nominatim)
    assert loc.coordinates is None
    assert loc.name == "A"


def test_goong_importance_is_clamped():
    record = GoongPlaceRecord(
        place_id="g1",
        description="Hà Nội, Việt Nam",
        main_text="Hà Nội",
        types=["administrative_area_level_1"],
        compound={"province": "Hà Nội"},
        query="ha noi",
        lat=21.0285,
        lng=105.8542,
    )
    loc = to_location(record)
    # base 0.5 + admin 0.2 + coords 0.1 + prefix 0.1 + province 0.05
    assert loc.importance == pytest.approx(0.95)
    assert loc.region == "north"


def test_location_dict_round_trip_preserves_fields():
    record = NominatimPlaceRecord.from_api(
        {
            "place_id": 7,
            "osm_type": "node",
            "osm_id": 7,
            "lat": "16.0544",
            "lon": "108.2022",
            "display_name": "Đà Nẵng, Việt Nam",
            "type": "city",
            "importance": 0.7,
            "address": {"city": "Đà Nẵng", "country": "Việt Nam", "country_code": "vn"},
        }
    )
    loc = to_location(record)
    assert loc.region == "central"
    restored = Location.from_dict(loc.to_dict())
    assert restored == loc


def test_unknown_record_type_raises():
    with pytest.raises(TypeError):
        to_location(object())


def test_importance_clamped_on_construction():
    loc = Location(id="a", name="a", display_name="a", source="cache", importance=3.2)
    assert loc.importance == 1.0
    assert loc.source == LocationSource.CACHE
