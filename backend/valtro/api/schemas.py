"""Request bodies, response views and envelopes shared by the API routers."""

import math
import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from valtro.db.models import Organization, Project, User


# ── Envelopes ─────────────────────────────────


class Pagination(BaseModel):
    current_page: int
    page_size: int
    total_pages: int
    total_items: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, *, page: int, page_size: int, total_items: int) -> "Pagination":
        total_pages = math.ceil(total_items / page_size) if total_items else 0
        return cls(
            current_page=page,
            page_size=page_size,
            total_pages=total_pages,
            total_items=total_items,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


class SuccessResponse(BaseModel):
    message: str
    data: Any = None


class PaginatedResponse(SuccessResponse):
    pagination: Pagination


class ErrorResponse(BaseModel):
    error: str
    message: str
    details: Optional[Any] = None


def success(message: str, data: Any = None) -> dict:
    return SuccessResponse(message=message, data=data).model_dump(mode="json")


# ── Views ─────────────────────────────────────


class UserView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    clerk_user_id: str
    email: str
    full_name: str
    username: Optional[str]
    image_url: Optional[str]
    email_verified: bool
    active: bool
    last_sign_in: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def of(cls, user: User) -> "UserView":
        return cls.model_validate(user)


class OrganizationView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    owner_id: uuid.UUID
    created_at: datetime
    updated_at: datetime

    @classmethod
    def of(cls, org: Organization) -> "OrganizationView":
        return cls.model_validate(org)


class ProjectView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    api_key: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def of(cls, project: Project) -> "ProjectView":
        return cls.model_validate(project)


class OrganizationWithProjectsView(OrganizationView):
    projects: list[ProjectView] = []


class OrganizationCheckView(BaseModel):
    has_organization: bool
    organization: Optional[OrganizationView] = None


class OnboardingView(BaseModel):
    organization: OrganizationView
    project: ProjectView


# ── Requests ──────────────────────────────────


class OnboardingRequest(BaseModel):
    organization_name: str
    project_name: str


class OrganizationCreateRequest(BaseModel):
    name: str


class OrganizationUpdateRequest(BaseModel):
    name: str


class ProjectCreateRequest(BaseModel):
    organization_id: uuid.UUID
    name: str


class ProjectUpdateRequest(BaseModel):
    name: str
