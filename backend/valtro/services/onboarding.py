"""Onboarding: create a user's organisation and first project in one transaction."""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from valtro.db.engine import transaction
from valtro.db.models import Organization, Project
from valtro.db.repositories import OrganizationRepository, ProjectRepository
from valtro.errors import ConflictError
from valtro.services.api_keys import KeyGenerator, assign_unique_api_key, generate_api_key
from valtro.services.validation import validate_name

logger = logging.getLogger(__name__)


async def onboard(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    organization_name: str,
    project_name: str,
    generate_key: KeyGenerator = generate_api_key,
) -> tuple[Organization, Project]:
    """Create organisation + project + API key, or nothing at all.

    Names are validated before the transaction opens. Any failure inside it,
    cancellation included, rolls back the organisation insert too.
    """
    organization_name = validate_name(organization_name, "organization_name")
    project_name = validate_name(project_name, "project_name")

    async with transaction(db):
        orgs = OrganizationRepository(db)
        if await orgs.name_exists_for_owner(organization_name, user_id):
            raise ConflictError("organization with this name already exists")
        org = await orgs.add(
            Organization(id=uuid.uuid4(), name=organization_name, owner_id=user_id)
        )

        if await ProjectRepository(db).name_exists_for_organization(project_name, org.id):
            raise ConflictError("project with this name already exists in organization")
        project = Project(id=uuid.uuid4(), organization_id=org.id, name=project_name)
        await assign_unique_api_key(db, project, generate=generate_key)

    logger.info(
        "onboarding completed",
        extra={"user_id": str(user_id), "org_id": str(org.id), "project_id": str(project.id)},
    )
    return org, project
