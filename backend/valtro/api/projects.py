"""Project routes: CRUD under ownership of the parent organisation.

POST   /api/v1/projects  create in an owned organisation
GET    /api/v1/projects/organization/{organization_id}  list an owned organisation's projects
GET    /api/v1/projects/{id}  get (404 unless owner)
PUT    /api/v1/projects/{id}  rename
DELETE /api/v1/projects/{id}  soft-delete
POST   /api/v1/projects/{id}/regenerate-api-key  replace the API key
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from valtro.api.deps import current_user_id
from valtro.api.schemas import (
    ProjectCreateRequest,
    ProjectUpdateRequest,
    ProjectView,
    success,
)
from valtro.db.engine import get_db
from valtro.services import projects as project_service

router = APIRouter()


@router.post("", status_code=201)
async def create_project(
    body: ProjectCreateRequest,
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    project = await project_service.create_project(
        db, user_id=user_id, organization_id=body.organization_id, name=body.name
    )
    return success("project created successfully", ProjectView.of(project))


@router.get("/organization/{organization_id}")
async def list_projects(
    organization_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    projects = await project_service.list_projects(
        db, user_id=user_id, organization_id=organization_id
    )
    return success("projects retrieved successfully", [ProjectView.of(p) for p in projects])


@router.get("/{project_id}")
async def get_project(
    project_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    project = await project_service.get_project(db, user_id=user_id, project_id=project_id)
    return success("project retrieved successfully", ProjectView.of(project))


@router.put("/{project_id}")
async def update_project(
    project_id: uuid.UUID,
    body: ProjectUpdateRequest,
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    project = await project_service.update_project(
        db, user_id=user_id, project_id=project_id, name=body.name
    )
    return success("project updated successfully", ProjectView.of(project))


@router.delete("/{project_id}")
async def delete_project(
    project_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await project_service.delete_project(db, user_id=user_id, project_id=project_id)
    return success("project deleted successfully")


@router.post("/{project_id}/regenerate-api-key")
async def regenerate_api_key(
    project_id: uuid.UUID,
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    project = await project_service.regenerate_api_key(
        db, user_id=user_id, project_id=project_id
    )
    return success("API key regenerated successfully", ProjectView.of(project))
