"""
Valtro exception hierarchy.

All custom exceptions inherit from ValtroError so callers can catch a single
base type. Each subclass carries the HTTP status it renders as, a short
machine tag (``error``) and a human message. Upstream error strings and
other diagnostics go in ``details``, never in ``message``.
"""

from typing import Any, Optional


class ValtroError(Exception):
    """Base exception for all Valtro errors."""

    status_code: int = 500
    error: str = "internal_error"

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(ValtroError):
    """Malformed input or a violated length/format rule."""

    status_code = 400
    error = "validation_error"


class UnauthorizedError(ValtroError):
    """Missing or invalid credentials."""

    status_code = 401
    error = "unauthorized"


class ForbiddenError(ValtroError):
    """Authenticated, but not the owner of the target resource."""

    status_code = 403
    error = "forbidden"


class NotFoundError(ValtroError):
    """Entity missing or soft-deleted."""

    status_code = 404
    error = "not_found"

    @classmethod
    def for_resource(cls, resource: str) -> "NotFoundError":
        return cls(f"{resource} not found")


class ConflictError(ValtroError):
    """Uniqueness violation (name, email, username, API key)."""

    status_code = 409
    error = "conflict"


class InternalError(ValtroError):
    """Store failure, exhausted retries or unexpected state."""

    status_code = 500
    error = "internal_error"


class ServiceUnavailableError(ValtroError):
    """A dependency (the database) is not reachable."""

    status_code = 503
    error = "service_unavailable"
