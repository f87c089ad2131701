"""Application exception hierarchy.

Service functions raise these instead of ``HTTPException`` so that the
rules in ``crud`` stay independent of the web layer. Handlers registered
in ``main.py`` map each class to its status code and the response
envelope ``{"success": false, "error": message}``.

Exception hierarchy::

    TrackMapError (base)      -> 500
    ├── ValidationError       -> 400
    ├── AuthenticationError   -> 401
    ├── ForbiddenError        -> 403
    ├── NotFoundError         -> 404
    ├── ConflictError         -> 409
    └── InternalError         -> 500
"""

from typing import Any, Dict, Optional


class TrackMapError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message: User-facing error description, safe to return to clients.
        context: Extra debug information; logged but never returned.
        status_code: HTTP status used by the global handler.
    """

    status_code = 500

    def __init__(
        self,
        message: str = "Server Error",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(TrackMapError):
    """Client input is missing or out of range."""

    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(TrackMapError):
    """Missing or invalid credentials."""

    status_code = 401

    def __init__(
        self,
        message: str = "Not authorized",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ForbiddenError(TrackMapError):
    """Authenticated user may not act on the target resource."""

    status_code = 403

    def __init__(
        self,
        message: str = "Not allowed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(TrackMapError):
    """
    A referenced Track, User, Review, Favorite or calculation is absent.

    The message is built from the resource name, e.g. ``"Track not found"``.
    """

    status_code = 404

    def __init__(
        self,
        resource: str = "Resource",
        resource_id: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id is not None:
            ctx["resource_id"] = resource_id
        super().__init__(message=f"{resource} not found", context=ctx)
        self.resource = resource


class ConflictError(TrackMapError):
    """The request would break a uniqueness rule or a protected state."""

    status_code = 409

    def __init__(
        self,
        message: str = "Resource already exists",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class InternalError(TrackMapError):
    """Unclassified server-side failure; the message stays generic."""

    status_code = 500

    def __init__(
        self,
        message: str = "Server Error",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
