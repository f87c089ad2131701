"""Request and response schemas.

JSON bodies use camelCase keys (``imageUrl``, ``trackId``...) while the
Python side stays snake_case; both spellings are accepted on input.
Every response is wrapped in :class:`Envelope`.
"""

from datetime import datetime
from typing import Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import BikeType, Role, TrackType

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base schema with camelCase aliases and ORM attribute loading."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Envelope(BaseModel, Generic[T]):
    """Response wrapper: ``{"success": true, "data": ...}``."""

    success: bool = True
    data: Optional[T] = None


class Location(BaseModel):
    """GeoJSON point; coordinates are ``[longitude, latitude]``."""

    type: str = "Point"
    coordinates: List[float] = Field(min_length=2, max_length=2)


class TrackCreate(CamelModel):
    """Payload for submitting a track.

    Coordinates come either as ``location.coordinates`` or as separate
    ``longitude``/``latitude`` fields.
    """

    name: str
    type: TrackType
    location: Optional[Location] = None
    longitude: Optional[float] = None
    latitude: Optional[float] = None
    description: Optional[str] = None
    image_url: Optional[str] = None


class TrackUpdate(CamelModel):
    """Schema for updating a track (all fields optional)."""

    name: Optional[str] = None
    type: Optional[TrackType] = None
    location: Optional[Location] = None
    longitude: Optional[float] = None
    latitude: Optional[float] = None
    description: Optional[str] = None
    image_url: Optional[str] = None


class TrackOut(CamelModel):
    id: int
    name: str
    type: str
    location: Location
    longitude: float
    latitude: float
    description: str = ""
    image_url: str = ""
    created_at: Optional[datetime] = None
    review_count: int = 0
    average_rating: float = 0


class UserSummary(CamelModel):
    """Public author information attached to reviews."""

    id: int
    username: str
    profile_picture: Optional[str] = None


class ReviewCreate(CamelModel):
    track_id: Optional[int] = None
    rating: Optional[int] = None
    comment: Optional[str] = None


class ReviewUpdate(CamelModel):
    rating: Optional[int] = None
    comment: Optional[str] = None


class ReviewOut(CamelModel):
    id: int
    user_id: int
    track_id: int
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    user: Optional[UserSummary] = None


class TrackReviews(CamelModel):
    count: int
    average_rating: float
    reviews: List[ReviewOut]


class ReviewStats(CamelModel):
    """Aggregate ratings of a track; ``distribution`` maps stars 5..1 to counts."""

    total_reviews: int
    average_rating: float
    distribution: Dict[int, int]


class FavoriteCreate(CamelModel):
    track_id: Optional[int] = None


class FavoriteOut(CamelModel):
    """A favorite with the creation-time snapshot and the live track."""

    id: int
    user_id: int
    track_id: int
    username: str
    user_email: str
    track_name: str
    created_at: Optional[datetime] = None
    track: Optional[TrackOut] = None


class FavoriteStatus(CamelModel):
    is_favorite: bool


class BikeSizeRequest(CamelModel):
    height: Optional[float] = None
    bike_type: BikeType = BikeType.MTB


class SizeCalculation(CamelModel):
    height_range: str
    recommendation: str


class BikeSizeResult(CamelModel):
    height: float
    bike_type: BikeType
    recommended_frame_size: str
    calculation: SizeCalculation


class BikeSizeCalcOut(CamelModel):
    id: int
    user_id: int
    height: float
    bike_type: BikeType
    recommended_frame_size: str
    calculation_date: Optional[datetime] = None
    created_at: Optional[datetime] = None


class LoginRecord(CamelModel):
    """One entry of a user's login history."""

    timestamp: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class UserCreate(CamelModel):
    """Payload for registering a new user."""

    username: str = Field(min_length=3, max_length=255)
    email: EmailStr
    password: str = Field(min_length=6, max_length=255)


class LoginRequest(CamelModel):
    username: str
    password: str


class ProfileUpdate(CamelModel):
    """Changes a user may make to their own account."""

    username: Optional[str] = Field(default=None, min_length=3, max_length=255)
    email: Optional[EmailStr] = None
    profile_picture: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=6, max_length=255)


class AdminUserUpdate(ProfileUpdate):
    """Changes an administrator may make to any account."""

    role: Optional[Role] = None


class UserOut(CamelModel):
    """Response schema for user data."""

    id: int
    username: str
    email: str
    role: str = Role.USER.value
    profile_picture: Optional[str] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ProfileOut(UserOut):
    permissions: List[str] = []
    login_history: List[LoginRecord] = []

    @field_validator("permissions", "login_history", mode="before")
    @classmethod
    def _empty_when_null(cls, value):
        return value or []


class AuthOut(CamelModel):
    """User data returned together with a fresh bearer token."""

    id: int
    username: str
    email: str
    role: str
    profile_picture: Optional[str] = None
    token: str


class TokenData(BaseModel):
    """Payload stored inside JWT token."""

    sub: str | None = None
    exp: Optional[datetime] = None
    scope: Optional[str] = None
