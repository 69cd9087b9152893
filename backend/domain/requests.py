"""
Request models for the location services, validated with pydantic.

Pydantic failures are re-raised as the domain ValidationError so callers only
deal with one error taxonomy.
"""
from typing import Any, List, Optional, Set

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from domain.errors import ValidationError
from domain.models import Coordinates, LocationSource, LocationType, SearchStrategy


class UserCoordinates(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)

    def to_coordinates(self) -> Coordinates:
        return Coordinates(lat=self.lat, lng=self.lng)


def _format_errors(exc: PydanticValidationError) -> List[str]:
    details = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        details.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return details


class _ParsedModel(BaseModel):
    @classmethod
    def parse(cls, data: Any):
        """Validate a dict (or an existing instance) into this model."""
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except PydanticValidationError as exc:
            details = _format_errors(exc)
            raise ValidationError(f"Invalid {cls.__name__}: " + "; ".join(details), details) from exc


def _normalize_country(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip().upper()
    if not value:
        return None
    if len(value) != 2 or not value.isalpha():
        raise ValueError("country must be a 2-letter ISO code")
    return value


class SearchRequest(_ParsedModel):
    query: str
    user_country: Optional[str] = None
    user_coordinates: Optional[UserCoordinates] = None
    strategy: SearchStrategy = SearchStrategy.AUTO
    location_type: LocationType = LocationType.ALL
    limit: int = Field(default=10, ge=1, le=50)
    min_importance: float = Field(default=0.0, ge=0.0, le=1.0)
    exclude_sources: Set[LocationSource] = Field(default_factory=set)
    exclude_cache: bool = False

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be empty")
        return value

    @field_validator("user_country")
    @classmethod
    def _country_code(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_country(value)


class BulkSearchOptions(_ParsedModel):
    user_country: Optional[str] = None
    user_coordinates: Optional[UserCoordinates] = None
    strategy: SearchStrategy = SearchStrategy.AUTO
    location_type: LocationType = LocationType.ALL
    limit_per_query: int = Field(default=5, ge=1, le=50)
    min_importance: float = Field(default=0.0, ge=0.0, le=1.0)
    exclude_sources: Set[LocationSource] = Field(default_factory=set)
    exclude_cache: bool = False

    @field_validator("user_country")
    @classmethod
    def _country_code(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_country(value)

    def request_for(self, query: str) -> SearchRequest:
        return SearchRequest.parse(
            {
                "query": query,
                "user_country": self.user_country,
                "user_coordinates": self.user_coordinates,
                "strategy": self.strategy,
                "location_type": self.location_type,
                "limit": self.limit_per_query,
                "min_importance": self.min_importance,
                "exclude_sources": self.exclude_sources,
                "exclude_cache": self.exclude_cache,
            }
        )
