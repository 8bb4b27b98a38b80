"""
Repositories for users, organisations and projects.

Each repository wraps one request-scoped AsyncSession and only ever sees
live rows (``deleted_at IS NULL``). Driver errors are translated here:
unique violations become ConflictError (with the violated index name in
``details["constraint"]``) and every other SQLAlchemy failure becomes
InternalError, so services never handle raw SQLAlchemy exceptions.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from valtro.db.models import Organization, Project, User, utcnow
from valtro.errors import ConflictError, InternalError

logger = logging.getLogger(__name__)

# Index name -> substrings that identify it in driver messages. PostgreSQL
# reports the index name, SQLite reports the indexed columns.
_UNIQUE_INDEXES: dict[str, tuple[str, ...]] = {
    "uq_users_clerk_user_id": ("uq_users_clerk_user_id", "users.clerk_user_id"),
    "uq_users_email": ("uq_users_email", "users.email"),
    "uq_users_username": ("uq_users_username", "users.username"),
    "uq_organizations_owner_name": ("uq_organizations_owner_name", "organizations.owner_id"),
    "uq_projects_organization_name": ("uq_projects_organization_name", "projects.organization_id"),
    "uq_projects_api_key": ("uq_projects_api_key", "projects.api_key"),
}

_CONFLICT_MESSAGES = {
    "uq_users_clerk_user_id": "user with this Clerk ID already exists",
    "uq_users_email": "user with this email already exists",
    "uq_users_username": "username already taken",
    "uq_organizations_owner_name": "organization with this name already exists",
    "uq_projects_organization_name": "project with this name already exists in organization",
    "uq_projects_api_key": "API key already in use",
}


def violated_index(exc: IntegrityError) -> Optional[str]:
    """Name of the unique index an IntegrityError tripped, if recognisable."""
    message = str(exc.orig) if exc.orig is not None else str(exc)
    for name, markers in _UNIQUE_INDEXES.items():
        if any(marker in message for marker in markers):
            return name
    return None


class _Repository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    async def _scalar(self, stmt: Any) -> Any:
        try:
            return (await self._session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise InternalError("database query failed", details=str(exc)) from exc

    async def _scalars(self, stmt: Any) -> Sequence[Any]:
        try:
            return (await self._session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise InternalError("database query failed", details=str(exc)) from exc

    async def flush(self) -> None:
        """Flush pending writes, translating constraint violations."""
        try:
            await self._session.flush()
        except IntegrityError as exc:
            index = violated_index(exc)
            message = _CONFLICT_MESSAGES.get(index or "", "resource already exists")
            raise ConflictError(message, details={"constraint": index}) from exc
        except SQLAlchemyError as exc:
            raise InternalError("database write failed", details=str(exc)) from exc


class UserRepository(_Repository):
    """Data access for the users table."""

    async def get(self, user_id: uuid.UUID) -> Optional[User]:
        return await self._scalar(
            select(User).where(User.id == user_id, User.deleted_at.is_(None))
        )

    async def get_by_clerk_id(self, clerk_user_id: str) -> Optional[User]:
        return await self._scalar(
            select(User).where(
                User.clerk_user_id == clerk_user_id, User.deleted_at.is_(None)
            )
        )

    async def get_by_username(self, username: str) -> Optional[User]:
        return await self._scalar(
            select(User).where(User.username == username, User.deleted_at.is_(None))
        )

    async def clerk_id_exists(self, clerk_user_id: str) -> bool:
        return await self.get_by_clerk_id(clerk_user_id) is not None

    async def email_exists(self, email: str) -> bool:
        found = await self._scalar(
            select(User.id).where(User.email == email, User.deleted_at.is_(None))
        )
        return found is not None

    async def username_exists(self, username: str) -> bool:
        return await self.get_by_username(username) is not None

    async def add(self, user: User) -> User:
        self._session.add(user)
        await self.flush()
        return user

    async def soft_delete(self, user: User) -> None:
        user.deleted_at = utcnow()
        user.active = False
        await self.flush()


class OrganizationRepository(_Repository):
    """Data access for the organizations table."""

    async def get(self, org_id: uuid.UUID) -> Optional[Organization]:
        return await self._scalar(
            select(Organization).where(
                Organization.id == org_id, Organization.deleted_at.is_(None)
            )
        )

    async def list_by_owner(
        self, owner_id: uuid.UUID, *, offset: int = 0, limit: int = 20
    ) -> tuple[Sequence[Organization], int]:
        live = (Organization.owner_id == owner_id, Organization.deleted_at.is_(None))
        total = await self._scalar(select(func.count(Organization.id)).where(*live))
        rows = await self._scalars(
            select(Organization)
            .where(*live)
            .order_by(Organization.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return rows, int(total or 0)

    async def first_by_owner(self, owner_id: uuid.UUID) -> Optional[Organization]:
        return await self._scalar(
            select(Organization)
            .where(Organization.owner_id == owner_id, Organization.deleted_at.is_(None))
            .order_by(Organization.created_at.asc())
            .limit(1)
        )

    async def name_exists_for_owner(
        self, name: str, owner_id: uuid.UUID, *, exclude_id: Optional[uuid.UUID] = None
    ) -> bool:
        stmt = select(Organization.id).where(
            Organization.name == name,
            Organization.owner_id == owner_id,
            Organization.deleted_at.is_(None),
        )
        if exclude_id is not None:
            stmt = stmt.where(Organization.id != exclude_id)
        return await self._scalar(stmt.limit(1)) is not None

    async def add(self, org: Organization) -> Organization:
        self._session.add(org)
        await self.flush()
        return org

    async def soft_delete(self, org: Organization) -> None:
        """Soft-delete the organisation and every live project beneath it."""
        now = utcnow()
        try:
            await self._session.execute(
                update(Project)
                .where(Project.organization_id == org.id, Project.deleted_at.is_(None))
                .values(deleted_at=now, updated_at=now)
                .execution_options(synchronize_session="fetch")
            )
        except SQLAlchemyError as exc:
            raise InternalError("database write failed", details=str(exc)) from exc
        org.deleted_at = now
        await self.flush()


class ProjectRepository(_Repository):
    """Data access for the projects table."""

    async def get(self, project_id: uuid.UUID) -> Optional[Project]:
        return await self._scalar(
            select(Project).where(Project.id == project_id, Project.deleted_at.is_(None))
        )

    async def list_by_organization(self, org_id: uuid.UUID) -> Sequence[Project]:
        return await self._scalars(
            select(Project)
            .where(Project.organization_id == org_id, Project.deleted_at.is_(None))
            .order_by(Project.created_at.asc())
        )

    async def name_exists_for_organization(
        self, name: str, org_id: uuid.UUID, *, exclude_id: Optional[uuid.UUID] = None
    ) -> bool:
        stmt = select(Project.id).where(
            Project.name == name,
            Project.organization_id == org_id,
            Project.deleted_at.is_(None),
        )
        if exclude_id is not None:
            stmt = stmt.where(Project.id != exclude_id)
        return await self._scalar(stmt.limit(1)) is not None

    async def soft_delete(self, project: Project) -> None:
        project.deleted_at = utcnow()
        await self.flush()


class SessionUserDirectory:
    """Resolve Clerk subjects to internal ids with a short-lived session.

    Used by the identity bridge, which runs in middleware before any
    request-scoped session exists.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def internal_id_for(self, clerk_user_id: str) -> Optional[uuid.UUID]:
        async with self._session_factory() as session:
            user = await UserRepository(session).get_by_clerk_id(clerk_user_id)
            return user.id if user else None
