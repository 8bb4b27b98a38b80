"""Project service: CRUD under ownership of the parent organisation."""

import logging
import uuid
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from valtro.db.models import Project
from valtro.db.repositories import ProjectRepository
from valtro.errors import ConflictError
from valtro.services.api_keys import KeyGenerator, assign_unique_api_key, generate_api_key
from valtro.services.authorization import require_org_owner, require_project_owner
from valtro.services.validation import validate_name

logger = logging.getLogger(__name__)


async def create_project(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    organization_id: uuid.UUID,
    name: str,
    generate_key: KeyGenerator = generate_api_key,
) -> Project:
    org = await require_org_owner(db, user_id, organization_id)
    name = validate_name(name, "name")
    if await ProjectRepository(db).name_exists_for_organization(name, org.id):
        raise ConflictError("project with this name already exists in organization")
    project = Project(id=uuid.uuid4(), organization_id=org.id, name=name)
    await assign_unique_api_key(db, project, generate=generate_key)
    logger.info("project created", extra={"project_id": str(project.id), "org_id": str(org.id)})
    return project


async def get_project(
    db: AsyncSession, *, user_id: uuid.UUID, project_id: uuid.UUID
) -> Project:
    return await require_project_owner(db, user_id, project_id, conceal=True)


async def list_projects(
    db: AsyncSession, *, user_id: uuid.UUID, organization_id: uuid.UUID
) -> Sequence[Project]:
    org = await require_org_owner(db, user_id, organization_id, conceal=True)
    return await ProjectRepository(db).list_by_organization(org.id)


async def update_project(
    db: AsyncSession, *, user_id: uuid.UUID, project_id: uuid.UUID, name: str
) -> Project:
    project = await require_project_owner(db, user_id, project_id)
    name = validate_name(name, "name")
    projects = ProjectRepository(db)
    if name != project.name and await projects.name_exists_for_organization(
        name, project.organization_id, exclude_id=project.id
    ):
        raise ConflictError("project with this name already exists in organization")
    project.name = name
    await projects.flush()
    return project


async def delete_project(
    db: AsyncSession, *, user_id: uuid.UUID, project_id: uuid.UUID
) -> None:
    project = await require_project_owner(db, user_id, project_id)
    await ProjectRepository(db).soft_delete(project)
    logger.info("project deleted", extra={"project_id": str(project_id)})


async def regenerate_api_key(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    project_id: uuid.UUID,
    generate_key: KeyGenerator = generate_api_key,
) -> Project:
    """Replace the project's key; the previous key stops matching immediately."""
    project = await require_project_owner(db, user_id, project_id)
    await assign_unique_api_key(db, project, generate=generate_key)
    logger.info("project API key regenerated", extra={"project_id": str(project_id)})
    return project
