"""Application configuration and settings management.

This module defines the application settings loaded from environment
variables and provides helpers for accessing cached settings, email
configuration and logging setup.
"""

import logging
import sys
from functools import lru_cache
from typing import List

from fastapi_mail import ConnectionConfig
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    Attributes:
        DATABASE_URL: Database connection string (file-backed SQLite).
        SECRET_KEY: Secret key used for JWT signing.
        ALGORITHM: Algorithm used to encode JWT tokens.
        ACCESS_TOKEN_EXPIRE_DAYS: Access token lifetime in days.
        ALLOWED_ORIGINS: Allowed origins for CORS.
        REDIS_URL: Redis connection URL for rate limiting.
        AUTH_RATE_LIMIT_TIMES: Allowed register/login calls per window.
        AUTH_RATE_LIMIT_SECONDS: Rate limit window in seconds.
        CLOUDINARY_URL: Cloudinary connection URL for profile pictures.
        SMTP_FROM_EMAIL: Sender email address for outgoing emails.
        SMTP_FROM_NAME: Sender display name.
        SMTP_USER: SMTP username.
        SMTP_PASSWORD: SMTP password.
        SMTP_PORT: SMTP server port.
        SMTP_HOST: SMTP server host.
        FRONTEND_URL: Public URL of the map frontend, linked from emails.
        LOG_LEVEL: Root logging level.
    """

    DATABASE_URL: str = "sqlite:///./data/bmx-mtb-website.sqlite"
    SECRET_KEY: str = "dev-secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_DAYS: int = 30
    ALLOWED_ORIGINS: List[str] = ["*"]
    REDIS_URL: str = "redis://localhost:6379"
    AUTH_RATE_LIMIT_TIMES: int = 10
    AUTH_RATE_LIMIT_SECONDS: int = 60
    CLOUDINARY_URL: str | None = None
    SMTP_FROM_EMAIL: str = "noreply@example.com"
    SMTP_FROM_NAME: str = "BMX-MTB Tracker"
    SMTP_USER: str = "user"
    SMTP_PASSWORD: str = "password"
    SMTP_PORT: int = 587
    SMTP_HOST: str = "localhost"
    FRONTEND_URL: str = "http://localhost:5174"
    LOG_LEVEL: str = "INFO"

    class Config:
        """Pydantic configuration for loading environment variables."""

        env_file = ".env"
        extra = "allow"


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings.

    The settings object is cached to prevent reloading environment
    variables multiple times during application lifetime.
    """

    return Settings()


def get_mail_config() -> ConnectionConfig:
    """Create and return email configuration for FastAPI-Mail.

    Returns:
        ConnectionConfig: Configured email connection settings.
    """

    settings = get_settings()
    return ConnectionConfig(
        MAIL_USERNAME=settings.SMTP_USER,
        MAIL_PASSWORD=settings.SMTP_PASSWORD,
        MAIL_FROM=settings.SMTP_FROM_EMAIL,
        MAIL_FROM_NAME=settings.SMTP_FROM_NAME,
        MAIL_PORT=settings.SMTP_PORT,
        MAIL_SERVER=settings.SMTP_HOST,
        MAIL_STARTTLS=True,
        MAIL_SSL_TLS=False,
        USE_CREDENTIALS=True,
    )


def setup_logging() -> None:
    """Configure process-wide logging.

    Called once from the application lifespan before anything else logs.
    """

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)
