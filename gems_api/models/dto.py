# Data models for the proximity and session layers.
# Stored documents are validated on read; anything that does not fit the
# schema is surfaced as MalformedInput instead of being trusted field by field.

from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gems_api.core.errors import MalformedInput

T = TypeVar("T")

# Sorts after every character of the geohash alphabet.
RANGE_SENTINEL = "~"

# --- Geo value types ---

class Coordinates(BaseModel):
    """An immutable (lat, lng) pair in decimal degrees."""
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    lat: float = Field(..., ge=-90.0, le=90.0, description="Latitude.")
    lng: float = Field(..., ge=-180.0, le=180.0, description="Longitude.")


class GeohashBounds(BaseModel):
    """The lat/lng rectangle covered by a geohash cell."""
    model_config = ConfigDict(frozen=True)

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    @property
    def center(self) -> Coordinates:
        return Coordinates(
            lat=(self.min_lat + self.max_lat) / 2,
            lng=(self.min_lng + self.max_lng) / 2,
        )

    @property
    def lat_span(self) -> float:
        return self.max_lat - self.min_lat

    @property
    def lng_span(self) -> float:
        return self.max_lng - self.min_lng

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


class RangeQuery(BaseModel):
    """Half-open lexicographic range [start, end) over geohash strings."""
    model_config = ConfigDict(frozen=True)

    start: str
    end: str

    @classmethod
    def for_prefix(cls, prefix: str) -> "RangeQuery":
        return cls(start=prefix, end=prefix + RANGE_SENTINEL)

    def matches(self, value: str) -> bool:
        return self.start <= value < self.end


class DistanceAnnotated(BaseModel, Generic[T]):
    """An item paired with its great-circle distance (km) from a search centre."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    item: T
    distance: float


# --- Auth types ---

class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class PrincipalStatus(str, Enum):
    ACTIVE = "active"
    BANNED = "banned"


class AccessTokenPayload(BaseModel):
    """Claims carried by a signed access token."""
    model_config = ConfigDict(frozen=True)

    subject_id: str
    role: Role
    email_verified: bool


class IdentityClaims(BaseModel):
    """What the identity provider tells us about a verified credential."""
    uid: str
    email_verified: bool = False


class Principal(BaseModel):
    """User record held by the document store."""
    model_config = ConfigDict(populate_by_name=True)

    uid: str
    email: str = ""
    display_name: str = Field("", alias="displayName")
    role: Role = Role.USER
    status: PrincipalStatus = PrincipalStatus.ACTIVE

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Principal":
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedInput(f"user document does not match schema: {e.error_count()} error(s)") from e


class RotationResult(BaseModel):
    access_token: str
    refresh_credential: Optional[str] = None
    principal: Principal


# --- Listing documents ---

class GemStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Gem(BaseModel):
    """A hidden gem listing as stored in the document store."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: str = ""
    island: str
    coordinates: Coordinates
    geohash: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    status: GemStatus = GemStatus.PENDING
    submitted_by: str = Field(..., alias="submittedBy")
    rating_avg: float = Field(0.0, ge=0.0, le=5.0, alias="ratingAvg")
    review_count: int = Field(0, ge=0, alias="reviewCount")

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "Gem":
        try:
            return cls.model_validate({**data, "id": doc_id})
        except ValidationError as e:
            raise MalformedInput(f"gem document {doc_id} does not match schema: {e.error_count()} error(s)") from e


# --- Public DTOs ---

class NearbyGemResult(BaseModel):
    id: str
    name: str
    island: str
    lat: float
    lng: float
    image_url: Optional[str] = None
    rating_avg: float
    review_count: int
    distance_km: float = Field(..., description="Great-circle distance from the search centre.")
    distance_label: str = Field(..., description="Human readable distance, e.g. '500 m' or '5.2 km'.")


class Pagination(BaseModel):
    page: int
    page_size: int
    total_count: int
    has_more: bool


class NearbyGemsResponse(BaseModel):
    results: List[NearbyGemResult]
    pagination: Pagination
    center: Coordinates
    radius_km: float


class LoginRequest(BaseModel):
    id_token: str = Field(..., min_length=1, description="Identity provider token obtained at sign-in.")


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = Field(None, description="Current refresh credential; falls back to the cookie.")
    new_refresh_token: Optional[str] = Field(None, description="Replacement credential to rotate to.")


class PublicPrincipal(BaseModel):
    uid: str
    email: str
    display_name: str
    role: Role
    status: PrincipalStatus


class AuthSessionResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    user: PublicPrincipal


class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="A machine-readable error code.")
    detail: str = Field(..., description="A human-readable explanation.")
    retry_after_seconds: Optional[int] = Field(None, description="Time until retry is worthwhile.")
