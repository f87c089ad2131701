"""Favorite track routes; every route acts on the caller's own favorites."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from . import crud, schemas
from .auth import get_current_user
from .database import get_db
from .models import TrackFavorite, User

router = APIRouter(prefix="/favorites", tags=["favorites"])


def serialize_favorite(db: Session, favorite: TrackFavorite) -> schemas.FavoriteOut:
    return schemas.FavoriteOut(
        id=favorite.id,
        user_id=favorite.user_id,
        track_id=favorite.track_id,
        username=favorite.username,
        user_email=favorite.user_email,
        track_name=favorite.track_name,
        created_at=favorite.created_at,
        track=crud.serialize_track(db, favorite.track) if favorite.track else None,
    )


@router.get("/", response_model=schemas.Envelope[list[schemas.FavoriteOut]])
def list_favorites(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    List the caller's favorites, newest first, with the current track data.

    Args:
        current_user (User): Authenticated user.
        db (Session): Database session.

    Returns:
        list[FavoriteOut]: Favorites with their tracks.
    """
    favorites = crud.list_favorites(db, current_user)
    return {
        "success": True,
        "data": [serialize_favorite(db, favorite) for favorite in favorites],
    }


@router.post(
    "/",
    response_model=schemas.Envelope[schemas.FavoriteOut],
    status_code=status.HTTP_201_CREATED,
)
def add_favorite(
    favorite_in: schemas.FavoriteCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    favorite = crud.add_favorite(db, current_user, favorite_in.track_id)
    return {"success": True, "data": serialize_favorite(db, favorite)}


@router.delete("/{track_id}", response_model=schemas.Envelope[dict])
def remove_favorite(
    track_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    crud.remove_favorite(db, current_user, track_id)
    return {"success": True, "data": {"message": "Track removed from favorites"}}


@router.get(
    "/check/{track_id}", response_model=schemas.Envelope[schemas.FavoriteStatus]
)
def check_favorite(
    track_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Tell whether a track is in the caller's favorites."""
    data = schemas.FavoriteStatus(is_favorite=crud.is_favorite(db, current_user, track_id))
    return {"success": True, "data": data}
