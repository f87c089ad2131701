"""Bike size calculator routes."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from . import crud, schemas
from .auth import get_current_user
from .database import get_db
from .models import User

router = APIRouter(prefix="/bike-size", tags=["bike-size"])


@router.post("/calculate", response_model=schemas.Envelope[schemas.BikeSizeResult])
def calculate(request_in: schemas.BikeSizeRequest):
    """
    Recommend a frame size for a rider height; nothing is stored.

    Args:
        request_in (BikeSizeRequest): Height in centimetres and discipline.

    Raises:
        ValidationError: If the height is missing or outside 50-250cm.

    Returns:
        BikeSizeResult: Frame size, height-range label and recommendation.
    """
    result = crud.calculate_bike_size(request_in.height, request_in.bike_type)
    return {"success": True, "data": result}


@router.post(
    "/save",
    response_model=schemas.Envelope[schemas.BikeSizeCalcOut],
    status_code=status.HTTP_201_CREATED,
)
def save_calculation(
    request_in: schemas.BikeSizeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    calculation = crud.save_calculation(
        db, current_user, request_in.height, request_in.bike_type
    )
    return {"success": True, "data": schemas.BikeSizeCalcOut.model_validate(calculation)}


@router.get(
    "/my-calculations", response_model=schemas.Envelope[list[schemas.BikeSizeCalcOut]]
)
def my_calculations(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    calculations = crud.list_calculations(db, current_user)
    return {
        "success": True,
        "data": [schemas.BikeSizeCalcOut.model_validate(c) for c in calculations],
    }


@router.delete("/{calculation_id}", response_model=schemas.Envelope[dict])
def delete_calculation(
    calculation_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete one of the caller's saved calculations."""
    crud.delete_calculation(db, current_user, calculation_id)
    return {"success": True, "data": {"message": "Calculation deleted"}}
