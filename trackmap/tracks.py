"""Track routes: public listing and submission, admin maintenance."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from . import crud, schemas
from .auth import require_admin
from .database import get_db
from .models import User

router = APIRouter(prefix="/tracks", tags=["tracks"])


@router.get("/", response_model=schemas.Envelope[list[schemas.TrackOut]])
def list_tracks(db: Session = Depends(get_db)):
    """
    List all tracks with their review count and average rating.

    Args:
        db (Session): Database session.

    Returns:
        list[TrackOut]: Tracks in creation order.
    """
    tracks = crud.list_tracks(db)
    return {
        "success": True,
        "data": [crud.serialize_track(db, track) for track in tracks],
    }


@router.get("/{track_id}", response_model=schemas.Envelope[schemas.TrackOut])
def read_track(track_id: int, db: Session = Depends(get_db)):
    track = crud.get_track_or_404(db, track_id)
    return {"success": True, "data": crud.serialize_track(db, track)}


@router.post(
    "/",
    response_model=schemas.Envelope[schemas.TrackOut],
    status_code=status.HTTP_201_CREATED,
)
def create_track(track_in: schemas.TrackCreate, db: Session = Depends(get_db)):
    """
    Submit a new track.

    Coordinates are read from ``location.coordinates`` (``[lon, lat]``) or
    from separate ``longitude``/``latitude`` fields.
    """
    track = crud.create_track(db, track_in)
    return {"success": True, "data": crud.serialize_track(db, track)}


@router.put("/{track_id}", response_model=schemas.Envelope[schemas.TrackOut])
def update_track(
    track_id: int,
    track_in: schemas.TrackUpdate,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    track = crud.get_track_or_404(db, track_id)
    track = crud.update_track(db, track, track_in)
    return {"success": True, "data": crud.serialize_track(db, track)}


@router.delete("/{track_id}", response_model=schemas.Envelope[dict])
def delete_track(
    track_id: int,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Delete a track together with its favorites and reviews."""
    track = crud.get_track_or_404(db, track_id)
    removed = crud.delete_track(db, track)
    return {"success": True, "data": {"message": "Track removed", **removed}}
