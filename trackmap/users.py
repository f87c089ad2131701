"""User profile routes and user administration."""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, File, UploadFile
from sqlalchemy.orm import Session
import cloudinary
import cloudinary.exceptions
import cloudinary.uploader

from . import crud, notifications, schemas
from .auth import get_current_user, get_password_hash, require_admin
from .core import get_settings
from .database import get_db
from .exceptions import InternalError
from .models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

AVATAR_FOLDER = "bmx_mtb_avatars"


def _apply_changes(
    db: Session,
    user: User,
    update_in: schemas.ProfileUpdate,
    background_tasks: BackgroundTasks,
) -> User:
    old_email = user.email
    changes = update_in.model_dump(exclude_unset=True, exclude={"password"})
    hashed_password = (
        get_password_hash(update_in.password) if update_in.password else None
    )
    user = crud.update_user(db, user, changes, hashed_password=hashed_password)
    if user.email != old_email:
        logger.info("User %s changed email address", user.username)
        notifications.send_email_changed(
            background_tasks, old_email, user.email, user.username
        )
    return user


@router.get("/profile", response_model=schemas.Envelope[schemas.ProfileOut])
def read_profile(current_user: User = Depends(get_current_user)):
    """
    Retrieve the profile of the currently authenticated user.

    Args:
        current_user (User): Authenticated user obtained from the bearer token.

    Returns:
        ProfileOut: Profile including permissions and login history.
    """
    return {"success": True, "data": schemas.ProfileOut.model_validate(current_user)}


@router.put("/profile", response_model=schemas.Envelope[schemas.ProfileOut])
def update_profile(
    update_in: schemas.ProfileUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Update username, email, profile picture or password of the caller.

    An email change notifies both the old and the new address.
    """
    user = _apply_changes(db, current_user, update_in, background_tasks)
    return {"success": True, "data": schemas.ProfileOut.model_validate(user)}


@router.put("/profile/avatar", response_model=schemas.Envelope[schemas.ProfileOut])
def update_avatar(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Upload a new profile picture for the authenticated user.

    Args:
        file (UploadFile): Uploaded image file.
        current_user (User): Authenticated user.
        db (Session): Database session.

    Raises:
        InternalError: If Cloudinary is not configured or the upload fails.

    Returns:
        ProfileOut: Updated user profile.
    """
    settings = get_settings()
    if not settings.CLOUDINARY_URL:
        raise InternalError("Avatar uploads are not available")

    cloudinary.config(cloudinary_url=settings.CLOUDINARY_URL)
    try:
        upload_result = cloudinary.uploader.upload(file.file, folder=AVATAR_FOLDER)
    except cloudinary.exceptions.Error as exc:
        logger.exception("Avatar upload failed for user %s", current_user.id)
        raise InternalError("Failed to upload avatar") from exc

    avatar_url = upload_result.get("secure_url")
    if not avatar_url:
        raise InternalError("Failed to upload avatar")

    user = crud.update_user_avatar(db, current_user, avatar_url)
    return {"success": True, "data": schemas.ProfileOut.model_validate(user)}


@router.delete("/profile/delete", response_model=schemas.Envelope[dict])
def delete_own_account(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete the caller's account with its favorites, reviews and calculations."""
    removed = crud.delete_user(db, current_user)
    return {"success": True, "data": {"message": "Account deleted", **removed}}


@router.get("/", response_model=schemas.Envelope[list[schemas.UserOut]])
def list_users(
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    users = crud.list_users(db)
    return {
        "success": True,
        "data": [schemas.UserOut.model_validate(user) for user in users],
    }


@router.get("/{user_id}", response_model=schemas.Envelope[schemas.ProfileOut])
def read_user(
    user_id: int,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = crud.get_user_or_404(db, user_id)
    return {"success": True, "data": schemas.ProfileOut.model_validate(user)}


@router.put("/{user_id}", response_model=schemas.Envelope[schemas.ProfileOut])
def update_user(
    user_id: int,
    update_in: schemas.AdminUserUpdate,
    background_tasks: BackgroundTasks,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Update any account; administrators may also change the role."""
    user = crud.get_user_or_404(db, user_id)
    user = _apply_changes(db, user, update_in, background_tasks)
    return {"success": True, "data": schemas.ProfileOut.model_validate(user)}


@router.delete("/{user_id}", response_model=schemas.Envelope[dict])
def delete_user(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Delete another user's account. Administrators cannot delete themselves."""
    removed = crud.delete_user_as_admin(db, admin, user_id)
    return {"success": True, "data": {"message": "User removed", **removed}}
