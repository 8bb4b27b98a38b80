"""Ownership checks for organisations and projects.

A user may act on an organisation only if it is the owner, and on a project
only if it owns the project's organisation. Existence is checked first: a
missing or soft-deleted target is always 404, whoever asks.

For reads (``conceal=True``) a foreign target is also reported as 404, so a
GET never reveals that an id exists. Mutations of a foreign target get 403.
"""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from valtro.db.models import Organization, Project
from valtro.db.repositories import OrganizationRepository, ProjectRepository
from valtro.errors import ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)


def _deny(resource: str, user_id: uuid.UUID, target_id: uuid.UUID, conceal: bool) -> Exception:
    logger.warning(
        "ownership check failed",
        extra={"resource": resource, "user_id": str(user_id), "target_id": str(target_id)},
    )
    if conceal:
        return NotFoundError.for_resource(resource)
    return ForbiddenError(f"you do not have access to this {resource}")


async def require_org_owner(
    db: AsyncSession,
    user_id: uuid.UUID,
    org_id: uuid.UUID,
    *,
    conceal: bool = False,
) -> Organization:
    """Return the live organisation owned by ``user_id``."""
    org = await OrganizationRepository(db).get(org_id)
    if org is None:
        raise NotFoundError.for_resource("organization")
    if org.owner_id != user_id:
        raise _deny("organization", user_id, org_id, conceal)
    return org


async def require_project_owner(
    db: AsyncSession,
    user_id: uuid.UUID,
    project_id: uuid.UUID,
    *,
    conceal: bool = False,
) -> Project:
    """Return the live project whose organisation ``user_id`` owns."""
    project = await ProjectRepository(db).get(project_id)
    if project is None:
        raise NotFoundError.for_resource("project")
    org = await OrganizationRepository(db).get(project.organization_id)
    if org is None:
        raise NotFoundError.for_resource("project")
    if org.owner_id != user_id:
        raise _deny("project", user_id, project_id, conceal)
    return project
