"""Organisation service: owner-scoped CRUD.

Every function takes the caller's internal user id; ownership is enforced
through ``valtro.services.authorization``.
"""

import logging
import uuid
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from valtro.db.models import Organization, Project
from valtro.db.repositories import OrganizationRepository, ProjectRepository
from valtro.errors import ConflictError, NotFoundError
from valtro.services.authorization import require_org_owner
from valtro.services.validation import validate_name

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


async def create_organization(
    db: AsyncSession, *, owner_id: uuid.UUID, name: str
) -> Organization:
    name = validate_name(name, "name")
    orgs = OrganizationRepository(db)
    if await orgs.name_exists_for_owner(name, owner_id):
        raise ConflictError("organization with this name already exists")
    org = await orgs.add(Organization(id=uuid.uuid4(), name=name, owner_id=owner_id))
    logger.info("organization created", extra={"org_id": str(org.id), "owner_id": str(owner_id)})
    return org


async def list_organizations(
    db: AsyncSession,
    *,
    owner_id: uuid.UUID,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> tuple[Sequence[Organization], int]:
    """Return one page of the caller's organisations (newest first) and the total."""
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
    return await OrganizationRepository(db).list_by_owner(
        owner_id, offset=(page - 1) * page_size, limit=page_size
    )


async def get_organization(
    db: AsyncSession, *, user_id: uuid.UUID, org_id: uuid.UUID
) -> Organization:
    return await require_org_owner(db, user_id, org_id, conceal=True)


async def update_organization(
    db: AsyncSession, *, user_id: uuid.UUID, org_id: uuid.UUID, name: str
) -> Organization:
    org = await require_org_owner(db, user_id, org_id)
    name = validate_name(name, "name")
    orgs = OrganizationRepository(db)
    if name != org.name and await orgs.name_exists_for_owner(name, user_id, exclude_id=org.id):
        raise ConflictError("organization with this name already exists")
    org.name = name
    await orgs.flush()
    return org


async def delete_organization(
    db: AsyncSession, *, user_id: uuid.UUID, org_id: uuid.UUID
) -> None:
    org = await require_org_owner(db, user_id, org_id)
    await OrganizationRepository(db).soft_delete(org)
    logger.info("organization deleted", extra={"org_id": str(org_id)})


async def check_organization(
    db: AsyncSession, *, user_id: uuid.UUID
) -> Optional[Organization]:
    """The caller's first organisation, or None."""
    return await OrganizationRepository(db).first_by_owner(user_id)


async def organization_with_projects(
    db: AsyncSession, *, user_id: uuid.UUID
) -> tuple[Organization, Sequence[Project]]:
    org = await OrganizationRepository(db).first_by_owner(user_id)
    if org is None:
        raise NotFoundError.for_resource("organization")
    projects = await ProjectRepository(db).list_by_organization(org.id)
    return org, projects
