"""Onboarding route.

POST /api/v1/onboarding: create the caller's organisation and first project
in one transaction; returns both, including the project's API key.
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from valtro.api.deps import current_user_id
from valtro.api.schemas import (
    OnboardingRequest,
    OnboardingView,
    OrganizationView,
    ProjectView,
    success,
)
from valtro.db.engine import get_db
from valtro.services.onboarding import onboard

router = APIRouter()


@router.post("", status_code=201)
async def create_onboarding(
    body: OnboardingRequest,
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    org, project = await onboard(
        db,
        user_id=user_id,
        organization_name=body.organization_name,
        project_name=body.project_name,
    )
    view = OnboardingView(
        organization=OrganizationView.of(org),
        project=ProjectView.of(project),
    )
    return success("onboarding completed successfully", view)
