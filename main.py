"""
Main application entry point for the BMX-MTB Track Map API.

This module initializes the FastAPI application, sets up middleware,
configures CORS, registers the error handlers that produce the
``{"success": false, "error": ...}`` envelope, initializes the rate
limiter with a Redis backend and includes the resource routers under
``/api``.

Startup (lifespan):
- configure logging
- reconcile the database schema with the models
- initialize the rate limiter (Redis, or FakeRedis when unreachable)
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_limiter import FastAPILimiter
from fakeredis.aioredis import FakeRedis
import redis.asyncio as redis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from trackmap import bike_size, favorites, reviews, tracks, users
from trackmap.auth import router as auth_router
from trackmap.core import get_settings, setup_logging
from trackmap.exceptions import TrackMapError
from trackmap.middleware import RequestLoggingMiddleware
from trackmap.schema_sync import reconcile_schema

logger = logging.getLogger("trackmap")

settings = get_settings()


async def init_rate_limiter() -> None:
    """
    Initialize the rate limiter with the Redis backend.

    Falls back to FakeRedis if Redis is unavailable (e.g., during tests
    or local development).
    """
    redis_client = redis.from_url(
        settings.REDIS_URL, encoding="utf-8", decode_responses=True
    )
    try:
        await FastAPILimiter.init(redis_client)
    except (RedisError, OSError):
        logger.warning("Redis unavailable at %s, using in-memory limiter", settings.REDIS_URL)
        await FastAPILimiter.init(FakeRedis(decode_responses=True))


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("BMX-MTB Track Map API starting up")
    report = reconcile_schema()
    if report.changed:
        logger.info(
            "Schema updated: created=%s dropped=%s", report.created, report.dropped
        )
    await init_rate_limiter()

    yield

    await FastAPILimiter.close()
    logger.info("Shutdown complete")


def error_response(status_code: int, error) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"success": False, "error": error}),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map every error to the ``{"success": false, "error": ...}`` envelope."""

    @app.exception_handler(TrackMapError)
    async def handle_app_error(request: Request, exc: TrackMapError):
        if exc.status_code >= 500:
            logger.error("%s %s: %s %s", request.method, request.url.path, exc.message, exc.context)
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        messages = [
            f"{'.'.join(str(part) for part in error['loc'][1:]) or 'body'}: {error['msg']}"
            for error in exc.errors()
        ]
        return error_response(status.HTTP_400_BAD_REQUEST, messages)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, exc.detail)

    @app.exception_handler(SQLAlchemyError)
    async def handle_database_error(request: Request, exc: SQLAlchemyError):
        logger.error(
            "Database error on %s %s", request.method, request.url.path, exc_info=exc
        )
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server Error")

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
        )
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server Error")


# Initialize FastAPI application
app = FastAPI(title="BMX-MTB Track Map API", lifespan=lifespan)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers for application areas
app.include_router(auth_router, prefix="/api")
app.include_router(users.router, prefix="/api")
app.include_router(tracks.router, prefix="/api")
app.include_router(reviews.router, prefix="/api")
app.include_router(favorites.router, prefix="/api")
app.include_router(bike_size.router, prefix="/api")


@app.get("/")
def root():
    """
    Root endpoint for the API.

    Returns:
        dict: Envelope pointing to the Swagger UI.
    """
    return {
        "success": True,
        "data": {"message": "BMX-MTB Track Map API. Visit /docs for Swagger UI"},
    }
