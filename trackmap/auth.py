"""Authentication and authorization related routes and helpers."""

from datetime import datetime, timedelta, timezone
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi_limiter.depends import RateLimiter
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import crud, notifications, schemas
from .core import get_settings
from .database import get_db
from .exceptions import AuthenticationError, ForbiddenError
from .models import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)
router = APIRouter(prefix="/users", tags=["auth"])

settings = get_settings()
auth_rate_limit = RateLimiter(
    times=settings.AUTH_RATE_LIMIT_TIMES, seconds=settings.AUTH_RATE_LIMIT_SECONDS
)

UNKNOWN_CLIENT = "Unknown"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Compare a plain password with its hashed value."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Generate a password hash using the configured context."""
    return pwd_context.hash(password)


def create_access_token(
    data: dict, expires_delta: timedelta | None = None, scope: str = "access"
) -> str:
    """Create a signed JWT access token."""
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS)
    )
    to_encode.update({"exp": expire, "scope": scope})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_user_token(user: User) -> str:
    return create_access_token({"sub": str(user.id)})


def decode_access_token(token: str) -> schemas.TokenData:
    """
    Decode and check a bearer token.

    Raises:
        AuthenticationError: If the signature, expiry or scope is invalid.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as exc:
        raise AuthenticationError("Not authorized, token failed") from exc

    token_data = schemas.TokenData(sub=payload.get("sub"), scope=payload.get("scope"))
    if token_data.sub is None or token_data.scope != "access":
        raise AuthenticationError("Not authorized, token failed")
    return token_data


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Dependency that returns the authenticated user from the bearer token.

    The user is loaded from the database on every request so that role
    changes and deletions take effect immediately.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Not authorized, no token")

    token_data = decode_access_token(credentials.credentials)
    try:
        user_id = int(token_data.sub)
    except ValueError as exc:
        raise AuthenticationError("Not authorized, token failed") from exc

    user = crud.get_user_by_id(db, user_id)
    if user is None:
        raise AuthenticationError("Not authorized, token failed")
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Dependency that only lets administrators through."""
    if not current_user.is_admin:
        raise ForbiddenError("Not authorized as an admin")
    return current_user


def auth_payload(user: User) -> schemas.AuthOut:
    return schemas.AuthOut(
        id=user.id,
        username=user.username,
        email=user.email,
        role=user.role,
        profile_picture=user.profile_picture,
        token=create_user_token(user),
    )


@router.post(
    "/register",
    response_model=schemas.Envelope[schemas.AuthOut],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_rate_limit)],
)
def register(
    user_in: schemas.UserCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """Register a new user, send the welcome email and return a token."""

    hashed_password = get_password_hash(user_in.password)
    user = crud.create_user(db, user_in, hashed_password)
    logger.info("Registered user %s", user.username)
    notifications.send_welcome_email(background_tasks, user.email, user.username)
    return {"success": True, "data": auth_payload(user)}


@router.post(
    "/login",
    response_model=schemas.Envelope[schemas.AuthOut],
    dependencies=[Depends(auth_rate_limit)],
)
def login(
    credentials: schemas.LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Authenticate with username and password and record the login."""

    user = crud.get_user_by_username(db, credentials.username)
    if not user or not verify_password(credentials.password, user.hashed_password):
        logger.warning("Failed login for %s", credentials.username)
        raise AuthenticationError("Invalid username or password")

    ip_address = request.client.host if request.client else UNKNOWN_CLIENT
    user_agent = request.headers.get("user-agent") or UNKNOWN_CLIENT
    user = crud.record_login(db, user, ip_address, user_agent)
    return {"success": True, "data": auth_payload(user)}
