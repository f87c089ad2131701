"""Review routes."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from . import crud, schemas
from .auth import get_current_user
from .database import get_db
from .models import User

router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.get("/track/{track_id}", response_model=schemas.Envelope[schemas.TrackReviews])
def list_track_reviews(track_id: int, db: Session = Depends(get_db)):
    """
    List a track's reviews, newest first, with the rating summary.

    Args:
        track_id (int): Track identifier.
        db (Session): Database session.

    Raises:
        NotFoundError: If the track does not exist.

    Returns:
        TrackReviews: Review count, average rating and the reviews.
    """
    reviews = crud.list_track_reviews(db, track_id)
    stats = crud.get_review_stats(db, track_id)
    data = schemas.TrackReviews(
        count=stats.total_reviews,
        average_rating=stats.average_rating,
        reviews=[schemas.ReviewOut.model_validate(review) for review in reviews],
    )
    return {"success": True, "data": data}


@router.get(
    "/track/{track_id}/stats", response_model=schemas.Envelope[schemas.ReviewStats]
)
def track_review_stats(track_id: int, db: Session = Depends(get_db)):
    crud.get_track_or_404(db, track_id)
    return {"success": True, "data": crud.get_review_stats(db, track_id)}


@router.get(
    "/track/{track_id}/user", response_model=schemas.Envelope[schemas.ReviewOut]
)
def read_own_review(
    track_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Return the caller's review of a track, or 404 if there is none."""
    review = crud.get_user_review(db, track_id, current_user)
    return {"success": True, "data": schemas.ReviewOut.model_validate(review)}


@router.post(
    "/",
    response_model=schemas.Envelope[schemas.ReviewOut],
    status_code=status.HTTP_201_CREATED,
)
def create_review(
    review_in: schemas.ReviewCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Review a track.

    A user may review each track once; a second attempt is rejected with
    409 and the existing review must be updated instead.
    """
    review = crud.create_review(db, current_user, review_in)
    return {"success": True, "data": schemas.ReviewOut.model_validate(review)}


@router.put("/{review_id}", response_model=schemas.Envelope[schemas.ReviewOut])
def update_review(
    review_id: int,
    review_in: schemas.ReviewUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    review = crud.update_review(db, review_id, current_user, review_in)
    return {"success": True, "data": schemas.ReviewOut.model_validate(review)}


@router.delete("/{review_id}", response_model=schemas.Envelope[dict])
def delete_review(
    review_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete a review. Allowed for its author and for administrators."""
    crud.delete_review(db, review_id, current_user)
    return {"success": True, "data": {"message": "Review removed"}}
