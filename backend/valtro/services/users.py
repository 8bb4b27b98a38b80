"""User service: creation and updates driven by IdP webhooks, plus profile reads.

Usage:
    user = await create_user(db, clerk_user_id="user_abc", email="a@b.co",
                             full_name="A B", email_verified=True)
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from valtro.db.models import User
from valtro.db.repositories import UserRepository
from valtro.errors import ConflictError, NotFoundError, ValidationError
from valtro.services.validation import normalize_email

logger = logging.getLogger(__name__)

USERNAME_MAX_LENGTH = 50


def _check_username(username: Optional[str]) -> None:
    if username is not None and len(username) > USERNAME_MAX_LENGTH:
        raise ValidationError(
            f"username must be at most {USERNAME_MAX_LENGTH} characters long",
            details={"field": "username"},
        )


async def create_user(
    db: AsyncSession,
    *,
    clerk_user_id: str,
    email: str,
    full_name: str,
    username: Optional[str] = None,
    image_url: Optional[str] = None,
    email_verified: bool = False,
    last_sign_in: Optional[datetime] = None,
) -> User:
    """Insert a live user. Raises ConflictError when subject, email or username is taken."""
    clerk_user_id = (clerk_user_id or "").strip()
    if not clerk_user_id:
        raise ValidationError("clerk user ID is required", details={"field": "clerk_user_id"})
    email = normalize_email(email)
    _check_username(username)

    users = UserRepository(db)
    if await users.clerk_id_exists(clerk_user_id):
        raise ConflictError("user with this Clerk ID already exists")
    if await users.email_exists(email):
        raise ConflictError("user with this email already exists")
    if username and await users.username_exists(username):
        raise ConflictError("username already taken")

    user = User(
        id=uuid.uuid4(),
        clerk_user_id=clerk_user_id,
        email=email,
        full_name=(full_name or "").strip(),
        username=username or None,
        image_url=image_url or None,
        email_verified=email_verified,
        active=True,
        last_sign_in=last_sign_in,
    )
    await users.add(user)
    logger.info("user created", extra={"user_id": str(user.id), "clerk_user_id": clerk_user_id})
    return user


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = await UserRepository(db).get(user_id)
    if user is None:
        raise NotFoundError.for_resource("user")
    return user


async def get_user_by_clerk_id(db: AsyncSession, clerk_user_id: str) -> Optional[User]:
    return await UserRepository(db).get_by_clerk_id(clerk_user_id)


async def apply_profile_update(
    db: AsyncSession,
    user: User,
    *,
    full_name: Optional[str] = None,
    username: Optional[str] = None,
    image_url: Optional[str] = None,
    last_sign_in: Optional[datetime] = None,
) -> User:
    """Partial update; ``None`` leaves a field unchanged. Email is never touched."""
    users = UserRepository(db)
    if full_name is not None:
        user.full_name = full_name.strip()
    if username is not None and username != user.username:
        _check_username(username)
        if username:
            holder = await users.get_by_username(username)
            if holder is not None and holder.id != user.id:
                raise ConflictError("username already taken")
        user.username = username or None
    if image_url is not None:
        user.image_url = image_url or None
    if last_sign_in is not None:
        user.last_sign_in = last_sign_in
    await users.flush()
    return user


async def soft_delete_user(db: AsyncSession, user: User) -> None:
    await UserRepository(db).soft_delete(user)
    logger.info("user soft-deleted", extra={"user_id": str(user.id)})
