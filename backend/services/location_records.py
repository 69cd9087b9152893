"""
Raw provider records.

Each provider payload is parsed into its own record type before conversion to
the canonical Location (see location_converters). Records are plain data and
round-trip through JSON so provider responses can be cached as-is.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class GoongPlaceRecord:
    place_id: str
    description: str
    main_text: str = ""
    secondary_text: str = ""
    types: List[str] = field(default_factory=list)
    compound: Dict[str, str] = field(default_factory=dict)
    rank: int = 0
    query: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    formatted_address: Optional[str] = None
    address_components: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_prediction(cls, item: Dict[str, Any], rank: int, query: str) -> "GoongPlaceRecord":
        structured = item.get("structured_formatting") or {}
        return cls(
            place_id=str(item.get("place_id", "")),
            description=item.get("description") or "",
            main_text=structured.get("main_text") or "",
            secondary_text=structured.get("secondary_text") or "",
            types=list(item.get("types") or []),
            compound=dict(item.get("compound") or {}),
            rank=rank,
            query=query,
        )

    def with_detail(self, result: Dict[str, Any]) -> "GoongPlaceRecord":
        """Merge a /Place/Detail result into this prediction."""
        location = (result.get("geometry") or {}).get("location") or {}
        self.lat = location.get("lat")
        self.lng = location.get("lng")
        self.formatted_address = result.get("formatted_address") or self.formatted_address
        self.address_components = list(result.get("address_components") or [])
        if result.get("compound"):
            self.compound = dict(result["compound"])
        if not self.main_text and result.get("name"):
            self.main_text = result["name"]
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GoongPlaceRecord":
        return cls(**data)


@dataclass
class NominatimPlaceRecord:
    place_id: str
    osm_type: Optional[str]
    osm_id: Optional[int]
    display_name: str
    lat: Optional[float]
    lng: Optional[float]
    name: str = ""
    category: Optional[str] = None
    type: Optional[str] = None
    place_rank: Optional[int] = None
    importance: Optional[float] = None
    address: Dict[str, str] = field(default_factory=dict)
    boundingbox: Optional[List[float]] = None
    extratags: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "NominatimPlaceRecord":
        bbox = item.get("boundingbox")
        try:
            bbox = [float(v) for v in bbox] if bbox and len(bbox) == 4 else None
        except (TypeError, ValueError):
            bbox = None
        return cls(
            place_id=str(item.get("place_id", "")),
            osm_type=item.get("osm_type"),
            osm_id=item.get("osm_id"),
            display_name=item.get("display_name") or "",
            lat=_float_or_none(item.get("lat")),
            lng=_float_or_none(item.get("lon")),
            name=item.get("name") or (item.get("namedetails") or {}).get("name") or "",
            category=item.get("category") or item.get("class"),
            type=item.get("type"),
            place_rank=item.get("place_rank"),
            importance=_float_or_none(item.get("importance")),
            address=dict(item.get("address") or {}),
            boundingbox=bbox,
            extratags=dict(item.get("extratags") or {}),
        )

    @property
    def osm_ref(self) -> Optional[str]:
        """Compact OSM reference like 'W1234', as accepted by /details."""
        if not self.osm_type or self.osm_id is None:
            return None
        return f"{self.osm_type[0].upper()}{self.osm_id}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NominatimPlaceRecord":
        return cls(**data)


def _float_or_none(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
