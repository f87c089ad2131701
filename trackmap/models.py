"""Database models for the track map API.

Table and column names match the original SQLite store
(``Tracks``, ``Users``, ``Reviews``, ``TrackFavorites``,
``bike_size_calculations`` with camelCase columns) so an existing
database file can be opened without a migration. Python attributes
use snake_case.

Child rows are not removed by database cascades; the service layer
deletes them explicitly before their parent (see ``crud``).

Timestamps go through ``UTCDateTime``: on SQLite they are kept as text in
the legacy ``YYYY-MM-DD HH:MM:SS.SSS +00:00`` form and read back as aware
UTC datetimes.
"""

from datetime import datetime, timezone
import enum
import re

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from .database import Base

# "2024-05-01 10:11:12.345 +00:00", as written by the legacy service
_OFFSET_GAP = re.compile(r"\s+(?=[+-]\d{2}:\d{2}$)")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """
    Parse a stored SQLite timestamp.

    Accepts the legacy ``YYYY-MM-DD HH:MM:SS.SSS +00:00`` form as well as
    plain ISO 8601 strings with or without an offset. Naive values are UTC.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(_OFFSET_GAP.sub("", text))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return f"{value:%Y-%m-%d %H:%M:%S}.{value.microsecond // 1000:03d} +00:00"


class _SQLiteTimestamp(String):
    """Text storage that keeps the DATETIME column type in DDL."""

    __visit_name__ = "DATETIME"


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column.

    On SQLite, values are written in the legacy service's text format and
    both that format and ISO 8601 are read back, so existing rows load
    without a migration. Other backends use ``DateTime(timezone=True)``.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(_SQLiteTimestamp())
        return dialect.type_descriptor(DateTime(timezone=True))

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name != "sqlite":
            return value
        if isinstance(value, str):
            value = parse_timestamp(value)
        return format_timestamp(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return parse_timestamp(str(value))


class TrackType(str, enum.Enum):
    """Kinds of riding spots that can be put on the map."""

    SKATEPARK = "skatepark"
    PUMPTRACK = "pumptrack"
    BMX_TRACK = "bmx_track"


class Role(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class BikeType(str, enum.Enum):
    """Riding discipline; selects the frame-size lookup table."""

    MTB = "MTB"
    BMX_FREESTYLE = "BMX_FREESTYLE"
    BMX_RACING = "BMX_RACING"


DEFAULT_PROFILE_PICTURE = "/images/default-profile.png"


class Track(Base):
    """
    SQLAlchemy model representing a riding spot on the map.

    Tracks are created through public submission and are the parent of
    reviews and favorites.
    """

    __tablename__ = "Tracks"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    type = Column(String(255), nullable=False)
    longitude = Column(Float, nullable=False)
    latitude = Column(Float, nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column("imageUrl", String(255), nullable=True)
    created_at = Column("createdAt", UTCDateTime(), default=utcnow)
    updated_at = Column(
        "updatedAt", UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    reviews = relationship(
        "Review", back_populates="track", passive_deletes="all"
    )
    favorites = relationship(
        "TrackFavorite", back_populates="track", passive_deletes="all"
    )


class User(Base):
    """
    SQLAlchemy model representing an application user.

    ``permissions`` is a list of capability strings and ``login_history``
    a list of ``{timestamp, ipAddress, userAgent}`` records, newest last.
    Both are stored as JSON; ``crud`` writes them through typed schemas.
    """

    __tablename__ = "Users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(255), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column("password", String(255), nullable=False)
    profile_picture = Column(
        "profilePicture", String(500), default=DEFAULT_PROFILE_PICTURE
    )
    role = Column(String(20), default=Role.USER.value, nullable=False)
    permissions = Column(JSON, default=list)
    last_login = Column("lastLogin", UTCDateTime(), nullable=True)
    login_history = Column("loginHistory", JSON, default=list)
    created_at = Column("createdAt", UTCDateTime(), default=utcnow)
    updated_at = Column(
        "updatedAt", UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    reviews = relationship(
        "Review", back_populates="user", passive_deletes="all"
    )
    favorites = relationship(
        "TrackFavorite", back_populates="user", passive_deletes="all"
    )
    calculations = relationship(
        "BikeSizeCalc", back_populates="user", passive_deletes="all"
    )

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value


class Review(Base):
    """
    A user's rating of a track.

    At most one review exists per (user, track); the unique constraint
    backs up the check done in ``crud.create_review``.
    """

    __tablename__ = "Reviews"
    __table_args__ = (
        UniqueConstraint("userId", "trackId", name="uq_review_user_track"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column("userId", Integer, ForeignKey("Users.id"), nullable=False)
    track_id = Column("trackId", Integer, ForeignKey("Tracks.id"), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column("createdAt", UTCDateTime(), default=utcnow)
    updated_at = Column(
        "updatedAt", UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    user = relationship("User", back_populates="reviews")
    track = relationship("Track", back_populates="reviews")


class TrackFavorite(Base):
    """
    A track bookmarked by a user.

    ``username``, ``user_email`` and ``track_name`` are snapshots of the
    parent rows, refreshed by ``crud`` whenever those parents are renamed.
    """

    __tablename__ = "TrackFavorites"
    __table_args__ = (
        UniqueConstraint("userId", "trackId", name="uq_favorite_user_track"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column("userId", Integer, ForeignKey("Users.id"), nullable=False)
    track_id = Column("trackId", Integer, ForeignKey("Tracks.id"), nullable=False)
    username = Column(String(255), nullable=False)
    user_email = Column("userEmail", String(255), nullable=False)
    track_name = Column("trackName", String(255), nullable=False)
    created_at = Column("createdAt", UTCDateTime(), default=utcnow)
    updated_at = Column(
        "updatedAt", UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    user = relationship("User", back_populates="favorites")
    track = relationship("Track", back_populates="favorites")


class BikeSizeCalc(Base):
    """A saved frame-size recommendation for a user."""

    __tablename__ = "bike_size_calculations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column("userId", Integer, ForeignKey("Users.id"), nullable=False)
    height = Column(Float, nullable=False)
    recommended_frame_size = Column("recommendedFrameSize", String(255), nullable=False)
    bike_type = Column(
        "bikeType", String(255), nullable=False, default=BikeType.MTB.value
    )
    calculation_date = Column(
        "calculationDate", UTCDateTime(), default=utcnow
    )
    created_at = Column("createdAt", UTCDateTime(), default=utcnow)
    updated_at = Column(
        "updatedAt", UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    user = relationship("User", back_populates="calculations")
