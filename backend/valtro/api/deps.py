"""Shared FastAPI dependencies."""

import uuid

from fastapi import Request

from valtro.errors import UnauthorizedError


def current_user_id(request: Request) -> uuid.UUID:
    """Internal id of the authenticated caller, set by AuthMiddleware."""
    user_id = getattr(request.state, "user_id", None)
    if user_id is None:
        raise UnauthorizedError("user not authenticated")
    return user_id
