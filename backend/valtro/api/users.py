"""User routes.

GET /api/v1/users/profile: the authenticated caller's user record.
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from valtro.api.deps import current_user_id
from valtro.api.schemas import UserView, success
from valtro.db.engine import get_db
from valtro.services.users import get_user

router = APIRouter()


@router.get("/profile")
async def get_profile(
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user = await get_user(db, user_id)
    return success("user profile retrieved successfully", UserView.of(user))
