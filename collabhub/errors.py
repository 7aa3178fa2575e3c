"""Error taxonomy raised by the collaboration core.

Every error carries the HTTP status the API layer answers with, so route
functions never need their own ``try``/``except`` ladders.
"""

from __future__ import annotations

__all__ = [
    "CollabError",
    "Unauthenticated",
    "Forbidden",
    "NotFound",
    "Conflict",
    "InvalidOperation",
    "ValidationFailed",
    "DependencyError",
]


class CollabError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    code: str = "error"
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(CollabError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Authentication required"


class Forbidden(CollabError):
    status_code = 403
    code = "forbidden"
    default_message = "Forbidden"


class NotFound(CollabError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class Conflict(CollabError):
    status_code = 409
    code = "conflict"
    default_message = "Conflicting resource state"


class InvalidOperation(CollabError):
    status_code = 400
    code = "invalid_operation"
    default_message = "Operation not allowed"


class ValidationFailed(CollabError):
    status_code = 422
    code = "validation_failed"
    default_message = "Invalid request"


class DependencyError(CollabError):
    """Datastore or blob store failure; the caller's I/O layer decides on retries."""

    status_code = 503
    code = "dependency_error"
    default_message = "A backing service is unavailable"
