"""CRUD operations and domain rules.

This module contains the database interaction logic for tracks, users,
reviews, favorites and bike-size calculations, isolated from FastAPI
route handlers. It enforces the rules the storage layer is not trusted
with on its own:

* height and rating bounds are checked before anything is classified
  or persisted;
* one review and one favorite per (user, track), checked before insert
  with the unique constraints as a backstop;
* child rows are deleted before their parent, in a fixed order, inside
  one transaction;
* reviews may only be changed by their author (or deleted by an admin).
"""

from datetime import datetime, timezone
import logging
import math

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from . import models, schemas
from .exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .sizing import MAX_HEIGHT_CM, MIN_HEIGHT_CM, classify

logger = logging.getLogger(__name__)

LOGIN_HISTORY_LIMIT = 10
MIN_RATING = 1
MAX_RATING = 5
ADMIN_PERMISSIONS = ["manage_users", "manage_tracks", "manage_settings"]

HEIGHT_ERROR = f"Height must be between {MIN_HEIGHT_CM}cm and {MAX_HEIGHT_CM}cm"
RATING_ERROR = f"Rating must be between {MIN_RATING} and {MAX_RATING}"
DUPLICATE_REVIEW = (
    "You have already reviewed this track. "
    "Please update your existing review instead."
)
DUPLICATE_FAVORITE = "Track is already in favorites"
DUPLICATE_TRACK = "Track with this name already exists"
DUPLICATE_USER = "User already exists"


def _commit(db: Session, conflict_message: str | None = None) -> None:
    """
    Commit the current transaction, rolling back on failure.

    Args:
        db (Session): Database session.
        conflict_message (str | None): When set, a uniqueness violation is
            reported as :class:`ConflictError` with this message.

    Raises:
        ConflictError: On ``IntegrityError`` when ``conflict_message`` is set.
    """
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if conflict_message is None:
            raise
        raise ConflictError(conflict_message) from exc
    except SQLAlchemyError:
        db.rollback()
        raise


def round_rating(value: float | None) -> float:
    """Round an average rating half-up to one decimal; no value gives 0."""
    if not value:
        return 0.0
    return math.floor(float(value) * 10 + 0.5) / 10


# Validation


def validate_height(height: float | None) -> float:
    """
    Check a rider height before classification.

    Raises:
        ValidationError: If the height is missing or outside the
            supported range (NaN included).
    """
    if height is None or height <= 0 or not MIN_HEIGHT_CM <= height <= MAX_HEIGHT_CM:
        raise ValidationError(HEIGHT_ERROR, field="height")
    return height


def validate_rating(rating: int | None) -> int:
    if rating is None:
        raise ValidationError("Rating is required", field="rating")
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError(RATING_ERROR, field="rating")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(RATING_ERROR, field="rating")
    return rating


# Users


def get_user_by_id(db: Session, user_id: int) -> models.User | None:
    """
    Retrieve a user by primary key.

    Args:
        db (Session): Database session.
        user_id (int): User identifier.

    Returns:
        User | None: User if found, otherwise ``None``.
    """
    return db.execute(
        select(models.User).where(models.User.id == user_id)
    ).scalar_one_or_none()


def get_user_or_404(db: Session, user_id: int) -> models.User:
    user = get_user_by_id(db, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def get_user_by_username(db: Session, username: str) -> models.User | None:
    return db.execute(
        select(models.User).where(models.User.username == username)
    ).scalar_one_or_none()


def get_user_by_email(db: Session, email: str) -> models.User | None:
    """
    Retrieve a user by email address.

    Args:
        db (Session): Database session.
        email (str): User email.

    Returns:
        User | None: User if found, otherwise ``None``.
    """
    return db.execute(
        select(models.User).where(models.User.email == email)
    ).scalar_one_or_none()


def list_users(db: Session) -> list[models.User]:
    return db.scalars(select(models.User).order_by(models.User.id)).all()


def create_user(
    db: Session,
    user_in: schemas.UserCreate,
    hashed_password: str,
    role: models.Role = models.Role.USER,
    permissions: list[str] | None = None,
) -> models.User:
    """
    Create and persist a new user.

    Args:
        db (Session): SQLAlchemy database session.
        user_in (UserCreate): Incoming user data.
        hashed_password (str): Securely hashed password.
        role (Role): Account role.
        permissions (list[str] | None): Capability strings.

    Raises:
        ConflictError: If the username or email is already taken.

    Returns:
        User: Newly created user instance.
    """
    existing = db.execute(
        select(models.User).where(
            or_(
                models.User.email == user_in.email,
                models.User.username == user_in.username,
            )
        )
    ).scalars().first()
    if existing:
        raise ConflictError(DUPLICATE_USER)

    user = models.User(
        username=user_in.username,
        email=user_in.email,
        hashed_password=hashed_password,
        role=models.Role(role).value,
        permissions=list(permissions or []),
        login_history=[],
    )
    db.add(user)
    _commit(db, DUPLICATE_USER)
    db.refresh(user)
    return user


def record_login(
    db: Session, user: models.User, ip_address: str | None, user_agent: str | None
) -> models.User:
    """
    Stamp a successful login and append it to the user's history.

    Only the ``LOGIN_HISTORY_LIMIT`` most recent entries are kept; the
    oldest ones are dropped first.

    Args:
        db (Session): Database session.
        user (User): User who logged in.
        ip_address (str | None): Client address.
        user_agent (str | None): Client user agent.

    Returns:
        User: Updated user instance.
    """
    now = datetime.now(timezone.utc)
    history = [
        schemas.LoginRecord.model_validate(entry) for entry in user.login_history or []
    ]
    history.append(
        schemas.LoginRecord(timestamp=now, ip_address=ip_address, user_agent=user_agent)
    )

    user.last_login = now
    user.login_history = [
        entry.model_dump(mode="json", by_alias=True)
        for entry in history[-LOGIN_HISTORY_LIMIT:]
    ]
    db.add(user)
    _commit(db)
    db.refresh(user)
    return user


def _ensure_identity_available(
    db: Session, user: models.User, username: str | None, email: str | None
) -> None:
    clauses = []
    if username and username != user.username:
        clauses.append(models.User.username == username)
    if email and email != user.email:
        clauses.append(models.User.email == email)
    if not clauses:
        return
    taken = db.execute(
        select(models.User.id).where(models.User.id != user.id, or_(*clauses))
    ).first()
    if taken:
        raise ConflictError("Username or email is already in use")


def update_user(
    db: Session,
    user: models.User,
    changes: dict,
    hashed_password: str | None = None,
) -> models.User:
    """
    Apply profile changes to a user.

    Empty values are ignored. When the username or email changes, the
    snapshots stored on the user's favorites are refreshed in the same
    transaction.

    Args:
        db (Session): Database session.
        user (User): Target user.
        changes (dict): ``username``, ``email``, ``profile_picture`` and,
            for administrators, ``role``.
        hashed_password (str | None): New password hash, if any.

    Raises:
        ConflictError: If the new username or email belongs to someone else.

    Returns:
        User: Updated user instance.
    """
    username = changes.get("username")
    email = changes.get("email")
    _ensure_identity_available(db, user, username, email)

    identity_changed = (username and username != user.username) or (
        email and email != user.email
    )
    if username:
        user.username = username
    if email:
        user.email = email
    if changes.get("profile_picture"):
        user.profile_picture = changes["profile_picture"]
    if changes.get("role"):
        user.role = models.Role(changes["role"]).value
    if hashed_password:
        user.hashed_password = hashed_password

    db.add(user)
    if identity_changed:
        db.execute(
            update(models.TrackFavorite)
            .where(models.TrackFavorite.user_id == user.id)
            .values(username=user.username, user_email=user.email)
        )
    _commit(db, "Username or email is already in use")
    db.refresh(user)
    return user


def update_user_avatar(db: Session, user: models.User, avatar_url: str) -> models.User:
    """
    Update the profile picture URL for a user.

    Args:
        db (Session): Database session.
        user (User): Target user.
        avatar_url (str): URL of the uploaded image.

    Returns:
        User: Updated user instance.
    """
    user.profile_picture = avatar_url
    db.add(user)
    _commit(db)
    db.refresh(user)
    return user


def delete_user(db: Session, user: models.User) -> dict[str, int]:
    """
    Delete a user and everything they own.

    Favorites go first, then reviews, then bike-size calculations, then
    the user row. All deletes share one transaction; if any step fails
    nothing is removed and the error propagates.

    Returns:
        dict[str, int]: Number of deleted child rows per kind.
    """
    user_id = user.id
    username = user.username
    try:
        favorites = db.execute(
            delete(models.TrackFavorite).where(models.TrackFavorite.user_id == user_id)
        ).rowcount
        reviews = db.execute(
            delete(models.Review).where(models.Review.user_id == user_id)
        ).rowcount
        calculations = db.execute(
            delete(models.BikeSizeCalc).where(models.BikeSizeCalc.user_id == user_id)
        ).rowcount
        db.execute(delete(models.User).where(models.User.id == user_id))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(
        "Deleted user %s with %d favorites, %d reviews and %d calculations",
        username,
        favorites,
        reviews,
        calculations,
    )
    return {"favorites": favorites, "reviews": reviews, "calculations": calculations}


def delete_user_as_admin(
    db: Session, admin: models.User, user_id: int
) -> dict[str, int]:
    """
    Delete another user's account on behalf of an administrator.

    Raises:
        NotFoundError: If the user does not exist.
        ConflictError: If the administrator targets their own account.
    """
    user = get_user_or_404(db, user_id)
    if user.id == admin.id:
        raise ConflictError("Cannot delete your own admin account")
    return delete_user(db, user)


def ensure_admin(
    db: Session, username: str, email: str, hashed_password: str
) -> tuple[models.User, bool]:
    """
    Create an administrator, or reset the password of an existing one.

    Returns:
        tuple[User, bool]: The admin user and whether it was created.
    """
    user = get_user_by_username(db, username)
    if user is None:
        if get_user_by_email(db, email):
            raise ConflictError(DUPLICATE_USER)
        user = models.User(
            username=username,
            email=email,
            hashed_password=hashed_password,
            role=models.Role.ADMIN.value,
            permissions=list(ADMIN_PERMISSIONS),
            login_history=[],
        )
        db.add(user)
        _commit(db, DUPLICATE_USER)
        db.refresh(user)
        return user, True

    user.hashed_password = hashed_password
    user.role = models.Role.ADMIN.value
    user.permissions = sorted(set(user.permissions or []) | set(ADMIN_PERMISSIONS))
    db.add(user)
    _commit(db)
    db.refresh(user)
    return user, False


# Tracks


def get_track(db: Session, track_id: int) -> models.Track | None:
    return db.execute(
        select(models.Track).where(models.Track.id == track_id)
    ).scalar_one_or_none()


def get_track_or_404(db: Session, track_id: int) -> models.Track:
    track = get_track(db, track_id)
    if track is None:
        raise NotFoundError("Track", track_id)
    return track


def get_track_by_name(db: Session, name: str) -> models.Track | None:
    return db.execute(
        select(models.Track).where(models.Track.name == name)
    ).scalar_one_or_none()


def list_tracks(db: Session) -> list[models.Track]:
    return db.scalars(select(models.Track).order_by(models.Track.id)).all()


def serialize_track(db: Session, track: models.Track) -> schemas.TrackOut:
    """
    Build the public representation of a track with its rating summary.

    Args:
        db (Session): Database session.
        track (Track): Track to serialize.

    Returns:
        TrackOut: Track with GeoJSON location, review count and average.
    """
    stats = get_review_stats(db, track.id)
    return schemas.TrackOut(
        id=track.id,
        name=track.name,
        type=track.type,
        location=schemas.Location(coordinates=[track.longitude, track.latitude]),
        longitude=track.longitude,
        latitude=track.latitude,
        description=track.description or "",
        image_url=track.image_url or "",
        created_at=track.created_at,
        review_count=stats.total_reviews,
        average_rating=stats.average_rating,
    )


def _clean_track_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Track name is required", field="name")
    return name


def create_track(db: Session, track_in: schemas.TrackCreate) -> models.Track:
    """
    Create a new track from a public submission.

    Args:
        db (Session): Database session.
        track_in (TrackCreate): Submitted track data.

    Raises:
        ValidationError: If the name is blank or coordinates are missing.
        ConflictError: If a track with the same name exists.

    Returns:
        Track: Newly created track.
    """
    name = _clean_track_name(track_in.name)
    if get_track_by_name(db, name):
        raise ConflictError(DUPLICATE_TRACK)

    if track_in.location is not None:
        longitude, latitude = track_in.location.coordinates
    else:
        longitude, latitude = track_in.longitude, track_in.latitude
    if longitude is None or latitude is None:
        raise ValidationError("Coordinates are required", field="location")

    track = models.Track(
        name=name,
        type=models.TrackType(track_in.type).value,
        longitude=longitude,
        latitude=latitude,
        description=track_in.description or "",
        image_url=track_in.image_url or "",
    )
    db.add(track)
    _commit(db, DUPLICATE_TRACK)
    db.refresh(track)
    return track


def update_track(
    db: Session, track: models.Track, changes: schemas.TrackUpdate
) -> models.Track:
    """
    Update mutable fields of a track.

    A rename is propagated to the ``track_name`` snapshot of every
    favorite of this track.

    Args:
        db (Session): Database session.
        track (Track): Track instance.
        changes (TrackUpdate): Fields to update; unset fields are kept.

    Returns:
        Track: Updated track.
    """
    data = changes.model_dump(exclude_unset=True)
    location = data.pop("location", None)
    if location:
        data["longitude"], data["latitude"] = location["coordinates"]

    renamed = False
    if "name" in data:
        name = _clean_track_name(data.pop("name"))
        if name != track.name:
            if get_track_by_name(db, name):
                raise ConflictError(DUPLICATE_TRACK)
            track.name = name
            renamed = True
    if data.get("type") is not None:
        track.type = models.TrackType(data.pop("type")).value

    for key in ("longitude", "latitude"):
        if data.get(key) is not None:
            setattr(track, key, data[key])
    for key in ("description", "image_url"):
        if key in data:
            setattr(track, key, data[key] or "")

    db.add(track)
    if renamed:
        db.execute(
            update(models.TrackFavorite)
            .where(models.TrackFavorite.track_id == track.id)
            .values(track_name=track.name)
        )
    _commit(db, DUPLICATE_TRACK)
    db.refresh(track)
    return track


def delete_track(db: Session, track: models.Track) -> dict[str, int]:
    """
    Delete a track together with its favorites and reviews.

    Favorites are removed first, then reviews, then the track itself,
    all in one transaction; a failure rolls everything back and is
    raised to the caller.

    Returns:
        dict[str, int]: Number of deleted favorites and reviews.
    """
    track_id = track.id
    try:
        favorites = db.execute(
            delete(models.TrackFavorite).where(models.TrackFavorite.track_id == track_id)
        ).rowcount
        reviews = db.execute(
            delete(models.Review).where(models.Review.track_id == track_id)
        ).rowcount
        db.execute(delete(models.Track).where(models.Track.id == track_id))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(
        "Deleted track %s with %d favorites and %d reviews",
        track_id,
        favorites,
        reviews,
    )
    return {"favorites": favorites, "reviews": reviews}


# Reviews


def get_review_stats(db: Session, track_id: int) -> schemas.ReviewStats:
    """
    Compute count, average and star histogram of a track's reviews.

    A track without reviews reports zero for every figure.

    Args:
        db (Session): Database session.
        track_id (int): Track identifier.

    Returns:
        ReviewStats: Aggregate statistics.
    """
    rows = db.execute(
        select(models.Review.rating, func.count(models.Review.id))
        .where(models.Review.track_id == track_id)
        .group_by(models.Review.rating)
    ).all()

    distribution = {star: 0 for star in range(MAX_RATING, MIN_RATING - 1, -1)}
    total = 0
    score = 0
    for rating, count in rows:
        total += count
        score += rating * count
        if rating in distribution:
            distribution[rating] = count

    return schemas.ReviewStats(
        total_reviews=total,
        average_rating=round_rating(score / total) if total else 0.0,
        distribution=distribution,
    )


def get_review_or_404(db: Session, review_id: int) -> models.Review:
    review = db.execute(
        select(models.Review)
        .options(joinedload(models.Review.user))
        .where(models.Review.id == review_id)
    ).scalar_one_or_none()
    if review is None:
        raise NotFoundError("Review", review_id)
    return review


def list_track_reviews(db: Session, track_id: int) -> list[models.Review]:
    """Return a track's reviews, newest first, with their authors loaded."""
    get_track_or_404(db, track_id)
    return db.scalars(
        select(models.Review)
        .options(joinedload(models.Review.user))
        .where(models.Review.track_id == track_id)
        .order_by(models.Review.created_at.desc(), models.Review.id.desc())
    ).all()


def find_review(db: Session, track_id: int, user_id: int) -> models.Review | None:
    """Return the review ``user_id`` left on ``track_id``, if any."""
    return db.execute(
        select(models.Review)
        .options(joinedload(models.Review.user))
        .where(
            models.Review.track_id == track_id,
            models.Review.user_id == user_id,
        )
    ).scalar_one_or_none()


def get_user_review(db: Session, track_id: int, user: models.User) -> models.Review:
    review = find_review(db, track_id, user.id)
    if review is None:
        raise NotFoundError("Review")
    return review


def create_review(
    db: Session, user: models.User, review_in: schemas.ReviewCreate
) -> models.Review:
    """
    Create a review of a track by the given user.

    Args:
        db (Session): Database session.
        user (User): Review author.
        review_in (ReviewCreate): Track, rating and optional comment.

    Raises:
        ValidationError: If the track or rating is missing, or the rating
            is outside 1..5.
        NotFoundError: If the track does not exist.
        ConflictError: If the user already reviewed this track.

    Returns:
        Review: Newly created review.
    """
    if review_in.track_id is None or review_in.rating is None:
        raise ValidationError("Track ID and rating are required")
    validate_rating(review_in.rating)
    track = get_track_or_404(db, review_in.track_id)

    if find_review(db, track.id, user.id):
        raise ConflictError(DUPLICATE_REVIEW)

    review = models.Review(
        user_id=user.id,
        track_id=track.id,
        rating=review_in.rating,
        comment=review_in.comment or "",
    )
    db.add(review)
    _commit(db, DUPLICATE_REVIEW)
    db.refresh(review)
    return review


def update_review(
    db: Session, review_id: int, user: models.User, changes: schemas.ReviewUpdate
) -> models.Review:
    """
    Update a review; only its author may do so.

    Raises:
        NotFoundError: If the review does not exist.
        ForbiddenError: If ``user`` is not the author.
        ValidationError: If a new rating is outside 1..5.
    """
    review = get_review_or_404(db, review_id)
    if review.user_id != user.id:
        raise ForbiddenError("You can only update your own reviews")

    data = changes.model_dump(exclude_unset=True)
    if "rating" in data:
        review.rating = validate_rating(data["rating"])
    if "comment" in data:
        review.comment = data["comment"] or ""

    db.add(review)
    _commit(db)
    db.refresh(review)
    return review


def delete_review(db: Session, review_id: int, user: models.User) -> None:
    """
    Delete a review; allowed for its author and for administrators.

    Raises:
        NotFoundError: If the review does not exist.
        ForbiddenError: If ``user`` is neither the author nor an admin.
    """
    review = get_review_or_404(db, review_id)
    if review.user_id != user.id and not user.is_admin:
        raise ForbiddenError("You can only delete your own reviews")
    db.delete(review)
    _commit(db)


# Favorites


def get_favorite(
    db: Session, user: models.User, track_id: int
) -> models.TrackFavorite | None:
    return db.execute(
        select(models.TrackFavorite).where(
            models.TrackFavorite.user_id == user.id,
            models.TrackFavorite.track_id == track_id,
        )
    ).scalar_one_or_none()


def add_favorite(
    db: Session, user: models.User, track_id: int | None
) -> models.TrackFavorite:
    """
    Add a track to the user's favorites.

    The username, email and track name are copied onto the favorite.

    Raises:
        ValidationError: If no track id is given.
        NotFoundError: If the track does not exist.
        ConflictError: If the track is already a favorite.
    """
    if track_id is None:
        raise ValidationError("Track ID is required", field="trackId")
    track = get_track_or_404(db, track_id)
    if get_favorite(db, user, track.id):
        raise ConflictError(DUPLICATE_FAVORITE)

    favorite = models.TrackFavorite(
        user_id=user.id,
        track_id=track.id,
        username=user.username,
        user_email=user.email,
        track_name=track.name,
    )
    db.add(favorite)
    _commit(db, DUPLICATE_FAVORITE)
    db.refresh(favorite)
    return favorite


def remove_favorite(db: Session, user: models.User, track_id: int) -> None:
    favorite = get_favorite(db, user, track_id)
    if favorite is None:
        raise NotFoundError("Favorite", track_id)
    db.delete(favorite)
    _commit(db)


def list_favorites(db: Session, user: models.User) -> list[models.TrackFavorite]:
    return db.scalars(
        select(models.TrackFavorite)
        .options(joinedload(models.TrackFavorite.track))
        .where(models.TrackFavorite.user_id == user.id)
        .order_by(models.TrackFavorite.created_at.desc(), models.TrackFavorite.id.desc())
    ).all()


def is_favorite(db: Session, user: models.User, track_id: int) -> bool:
    return get_favorite(db, user, track_id) is not None


# Bike size calculations


def calculate_bike_size(
    height: float | None, bike_type: models.BikeType
) -> schemas.BikeSizeResult:
    """
    Validate a height and classify it for a discipline.

    Raises:
        ValidationError: If the height is missing or out of range.
    """
    height = validate_height(height)
    result = classify(height, bike_type)
    return schemas.BikeSizeResult(
        height=height,
        bike_type=bike_type,
        recommended_frame_size=result.frame_size,
        calculation=schemas.SizeCalculation(
            height_range=result.height_range,
            recommendation=result.recommendation,
        ),
    )


def save_calculation(
    db: Session, user: models.User, height: float | None, bike_type: models.BikeType
) -> models.BikeSizeCalc:
    """
    Classify a height and store the result for the user.

    Nothing is persisted when the height fails validation.
    """
    result = calculate_bike_size(height, bike_type)
    calculation = models.BikeSizeCalc(
        user_id=user.id,
        height=result.height,
        bike_type=models.BikeType(bike_type).value,
        recommended_frame_size=result.recommended_frame_size,
    )
    db.add(calculation)
    _commit(db)
    db.refresh(calculation)
    return calculation


def list_calculations(db: Session, user: models.User) -> list[models.BikeSizeCalc]:
    return db.scalars(
        select(models.BikeSizeCalc)
        .where(models.BikeSizeCalc.user_id == user.id)
        .order_by(models.BikeSizeCalc.created_at.desc(), models.BikeSizeCalc.id.desc())
    ).all()


def delete_calculation(db: Session, user: models.User, calculation_id: int) -> None:
    """
    Delete one of the user's saved calculations.

    Calculations of other users are reported as not found.
    """
    calculation = db.execute(
        select(models.BikeSizeCalc).where(
            models.BikeSizeCalc.id == calculation_id,
            models.BikeSizeCalc.user_id == user.id,
        )
    ).scalar_one_or_none()
    if calculation is None:
        raise NotFoundError("Calculation", calculation_id)
    db.delete(calculation)
    _commit(db)
