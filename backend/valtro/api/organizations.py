"""Organisation routes: owner-scoped CRUD.

POST   /api/v1/organizations  create
GET    /api/v1/organizations  list own (paginated)
GET    /api/v1/organizations/check  does the caller have one?
GET    /api/v1/organizations/with-projects  caller's organisation + live projects
GET    /api/v1/organizations/{id}  get (404 unless owner)
PUT    /api/v1/organizations/{id}  rename (403 unless owner)
DELETE /api/v1/organizations/{id}  soft-delete with its projects
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from valtro.api.deps import current_user_id
from valtro.api.schemas import (
    OrganizationCheckView,
    OrganizationCreateRequest,
    OrganizationUpdateRequest,
    OrganizationView,
    OrganizationWithProjectsView,
    PaginatedResponse,
    Pagination,
    ProjectView,
    success,
)
from valtro.db.engine import get_db
from valtro.services import organizations as org_service

router = APIRouter()


@router.post("", status_code=201)
async def create_organization(
    body: OrganizationCreateRequest,
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    org = await org_service.create_organization(db, owner_id=user_id, name=body.name)
    return success("organization created successfully", OrganizationView.of(org))


@router.get("")
async def list_organizations(
    page: int = Query(1, ge=1),
    page_size: int = Query(org_service.DEFAULT_PAGE_SIZE, ge=1, le=org_service.MAX_PAGE_SIZE),
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    orgs, total = await org_service.list_organizations(
        db, owner_id=user_id, page=page, page_size=page_size
    )
    return PaginatedResponse(
        message="organizations retrieved successfully",
        data=[OrganizationView.of(o) for o in orgs],
        pagination=Pagination.build(page=page, page_size=page_size, total_items=total),
    ).model_dump(mode="json")


@router.get("/check")
async def check_organization(
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    org = await org_service.check_organization(db, user_id=user_id)
    view = OrganizationCheckView(
        has_organization=org is not None,
        organization=OrganizationView.of(org) if org else None,
    )
    return success("organization check completed", view)


@router.get("/with-projects")
async def organization_with_projects(
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    org, projects = await org_service.organization_with_projects(db, user_id=user_id)
    view = OrganizationWithProjectsView(
        **OrganizationView.of(org).model_dump(),
        projects=[ProjectView.of(p) for p in projects],
    )
    return success("organization retrieved successfully", view)


@router.get("/{org_id}")
async def get_organization(
    org_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    org = await org_service.get_organization(db, user_id=user_id, org_id=org_id)
    return success("organization retrieved successfully", OrganizationView.of(org))


@router.put("/{org_id}")
async def update_organization(
    org_id: uuid.UUID,
    body: OrganizationUpdateRequest,
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    org = await org_service.update_organization(
        db, user_id=user_id, org_id=org_id, name=body.name
    )
    return success("organization updated successfully", OrganizationView.of(org))


@router.delete("/{org_id}")
async def delete_organization(
    org_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await org_service.delete_organization(db, user_id=user_id, org_id=org_id)
    return success("organization deleted successfully")
