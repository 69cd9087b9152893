"""
Raw record -> canonical Location conversion, one pure function per record type.
"""
from __future__ import annotations

from functools import singledispatch
from typing import Any, Dict, Iterable, Optional

from domain.models import AdministrativeRecord, BoundingBox, Coordinates, Location, LocationSource
from services.location_records import GoongPlaceRecord, NominatimPlaceRecord
from services.region_detector import (
    detect_sub_region,
    extract_administrative,
    region_from_coordinates,
    strip_diacritics,
)

LOCAL_IMPORTANCE = 0.8
TARGET_COUNTRY_NAME = "Vietnam"

GOONG_BASE_IMPORTANCE = 0.5
GOONG_RANK_PENALTY = 0.03
GOONG_ADMIN_BONUS = 0.2
GOONG_COORDS_BONUS = 0.1
GOONG_PREFIX_BONUS = 0.1
GOONG_PROVINCE_BONUS = 0.05
GOONG_ADMIN_TYPES = frozenset(
    {
        "administrative_area_level_1",
        "administrative_area_level_2",
        "administrative_area_level_3",
        "locality",
        "sublocality",
        "political",
    }
)

# Local dataset `type` values -> place types used by the location_type filter
LOCAL_PLACE_TYPES = {
    "tinh": "province",
    "thanh-pho": "city",
    "quan": "district",
    "huyen": "district",
    "thi-xa": "district",
    "phuong": "ward",
    "xa": "ward",
    "thi-tran": "ward",
}


@singledispatch
def to_location(record) -> Location:
    raise TypeError(f"No Location converter for {type(record).__name__}")


# --- local dataset ---------------------------------------------------------


@to_location.register
def _(record: AdministrativeRecord) -> Location:
    coords = Coordinates.maybe(record.latitude, record.longitude)
    name = record.ward_name or record.district_name or record.province_name
    administrative = {
        k: v
        for k, v in (
            ("province", record.province_name),
            ("district", record.district_name),
            ("ward", record.ward_name),
        )
        if v
    }
    return Location(
        id=f"local_{record.id}",
        name=record.name_with_type or name,
        display_name=record.path_with_type or record.full_name,
        source=LocationSource.LOCAL_DATASET,
        coordinates=coords,
        country=TARGET_COUNTRY_NAME,
        country_code="VN",
        province=record.province_name,
        district=record.district_name,
        ward=record.ward_name,
        address=record.path_with_type or record.full_name,
        place_type=LOCAL_PLACE_TYPES.get(record.type or "", record.type or "administrative"),
        importance=LOCAL_IMPORTANCE,
        region=region_from_coordinates(coords.lat, coords.lng) if coords else None,
        administrative=administrative,
        metadata={"slug": record.slug, "province_id": record.province_id, "district_id": record.district_id},
    )


# --- regional provider (Goong) ---------------------------------------------


def _component(record: GoongPlaceRecord, types: Iterable[str]) -> Optional[str]:
    for wanted in types:
        for component in record.address_components:
            if wanted in (component.get("types") or []):
                return component.get("long_name")
    return None


def _parsed_address(record: GoongPlaceRecord) -> Dict[str, str]:
    return extract_administrative(record.formatted_address or record.description)


def goong_province(record: GoongPlaceRecord) -> Optional[str]:
    return (
        record.compound.get("province")
        or _component(record, ("administrative_area_level_1", "locality"))
        or _parsed_address(record).get("province")
    )


def goong_district(record: GoongPlaceRecord) -> Optional[str]:
    return (
        record.compound.get("district")
        or _component(record, ("administrative_area_level_2", "sublocality"))
        or _parsed_address(record).get("district")
    )


def goong_ward(record: GoongPlaceRecord) -> Optional[str]:
    return (
        record.compound.get("commune")
        or _component(record, ("administrative_area_level_3", "sublocality_level_1"))
        or _parsed_address(record).get("ward")
    )


def goong_importance(record: GoongPlaceRecord, has_coordinates: bool, province: Optional[str]) -> float:
    score = GOONG_BASE_IMPORTANCE - GOONG_RANK_PENALTY * record.rank
    if GOONG_ADMIN_TYPES.intersection(record.types):
        score += GOONG_ADMIN_BONUS
    if has_coordinates:
        score += GOONG_COORDS_BONUS
    query = strip_diacritics(record.query).strip()
    name = strip_diacritics(record.main_text or record.description)
    if query and name.startswith(query):
        score += GOONG_PREFIX_BONUS
    if province:
        score += GOONG_PROVINCE_BONUS
    return score


@to_location.register
def _(record: GoongPlaceRecord) -> Location:
    coords = Coordinates.maybe(record.lat, record.lng)
    province = goong_province(record)
    district = goong_district(record)
    ward = goong_ward(record)
    address = record.formatted_address or record.description
    name = record.main_text or address.split(",")[0].strip() or "Unknown"
    if coords:
        region = region_from_coordinates(coords.lat, coords.lng)
    else:
        region = detect_sub_region(address.lower())
    return Location(
        id=record.place_id or f"goong_{strip_diacritics(name).replace(' ', '_')}",
        name=name,
        display_name=address or name,
        source=LocationSource.REGIONAL_PROVIDER,
        coordinates=coords,
        country=TARGET_COUNTRY_NAME,
        country_code="VN",
        province=province,
        district=district,
        ward=ward,
        address=address,
        place_type=record.types[0] if record.types else "place",
        importance=goong_importance(record, coords is not None, province),
        region=region,
        administrative={k: v for k, v in (("province", province), ("district", district), ("ward", ward)) if v},
        metadata={"place_id": record.place_id, "types": list(record.types), "rank": record.rank},
    )


# --- international provider (Nominatim) ------------------------------------


def _first(address: Dict[str, str], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        if address.get(key):
            return address[key]
    return None


def nominatim_province(record: NominatimPlaceRecord) -> Optional[str]:
    return _first(record.address, ("province", "state", "region"))


def nominatim_district(record: NominatimPlaceRecord) -> Optional[str]:
    return _first(record.address, ("district", "county", "municipality"))


def nominatim_ward(record: NominatimPlaceRecord) -> Optional[str]:
    return _first(record.address, ("suburb", "neighbourhood", "quarter"))


def nominatim_importance(record: NominatimPlaceRecord) -> float:
    if record.importance is not None:
        return record.importance
    if record.place_rank is not None:
        return 1 - record.place_rank / 30
    return 0.0


def nominatim_name(record: NominatimPlaceRecord) -> str:
    if record.name:
        return record.name
    named = _first(record.address, ("attraction", "tourism", "road"))
    if named:
        return named
    return record.display_name.split(",")[0].strip() or "Unknown"


def _nominatim_bbox(record: NominatimPlaceRecord) -> Optional[BoundingBox]:
    # Nominatim order: [south, north, west, east]
    if not record.boundingbox:
        return None
    south, north, west, east = record.boundingbox
    return BoundingBox(min_lat=south, min_lng=west, max_lat=north, max_lng=east)


@to_location.register
def _(record: NominatimPlaceRecord) -> Location:
    coords = Coordinates.maybe(record.lat, record.lng)
    address = record.address
    country_code = (address.get("country_code") or "").upper()
    city = _first(address, ("city", "town", "village"))
    administrative: Dict[str, Any] = {
        k: v
        for k, v in (
            ("country", address.get("country")),
            ("state", address.get("state") or address.get("county")),
            ("city", city),
            ("road", address.get("road")),
            ("suburb", address.get("suburb")),
        )
        if v
    }
    region = None
    if coords and country_code == "VN":
        region = region_from_coordinates(coords.lat, coords.lng)
    return Location(
        id=f"nominatim_{record.osm_id or record.place_id}",
        name=nominatim_name(record),
        display_name=record.display_name or nominatim_name(record),
        source=LocationSource.INTERNATIONAL_PROVIDER,
        coordinates=coords,
        country=address.get("country", ""),
        country_code=country_code,
        province=nominatim_province(record),
        district=nominatim_district(record),
        ward=nominatim_ward(record),
        address=record.display_name,
        place_type=record.type or record.category or "place",
        importance=nominatim_importance(record),
        region=region,
        administrative=administrative,
        bounding_box=_nominatim_bbox(record),
        metadata={
            "osm_id": record.osm_id,
            "osm_type": record.osm_type,
            "osm_ref": record.osm_ref,
            "place_id": record.place_id,
            "class": record.category,
            "type": record.type,
            "place_rank": record.place_rank,
        },
    )
