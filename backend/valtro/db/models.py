"""SQLAlchemy 2.0 ORM models for the Valtro control plane.

Defines the schema: users (mirrored from Clerk), organisations owned by a
single user, and projects carrying the SDK API key. Every table is
soft-deleted through ``deleted_at``; uniqueness rules only apply to live
rows, which is why they are partial indexes rather than column constraints.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

_LIVE = text("deleted_at IS NULL")


def utcnow() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )


# ──────────────────────────────────────────
# USERS (mirrored from Clerk by the webhook)
# ──────────────────────────────────────────

class User(TimestampMixin, Base):
    """A person known to the IdP. ``clerk_user_id`` is the IdP subject."""
    __tablename__ = "users"
    __table_args__ = (
        Index("uq_users_clerk_user_id", "clerk_user_id", unique=True,
              postgresql_where=_LIVE, sqlite_where=_LIVE),
        Index("uq_users_email", "email", unique=True,
              postgresql_where=_LIVE, sqlite_where=_LIVE),
        Index("uq_users_username", "username", unique=True,
              postgresql_where=text("deleted_at IS NULL AND username IS NOT NULL"),
              sqlite_where=text("deleted_at IS NULL AND username IS NOT NULL")),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clerk_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    username: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_sign_in: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    organizations: Mapped[list["Organization"]] = relationship(
        back_populates="owner", passive_deletes=True
    )


# ──────────────────────────────────────────
# ORGANIZATIONS (single owner)
# ──────────────────────────────────────────

class Organization(TimestampMixin, Base):
    """Tenant owned by exactly one user. ``owner_id`` never changes."""
    __tablename__ = "organizations"
    __table_args__ = (
        Index("uq_organizations_owner_name", "owner_id", "name", unique=True,
              postgresql_where=_LIVE, sqlite_where=_LIVE),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    owner: Mapped["User"] = relationship(back_populates="organizations")
    projects: Mapped[list["Project"]] = relationship(
        back_populates="organization", passive_deletes=True
    )


# ──────────────────────────────────────────
# PROJECTS (carry the SDK API key)
# ──────────────────────────────────────────

class Project(TimestampMixin, Base):
    """A project inside an organisation. ``api_key`` is stored verbatim."""
    __tablename__ = "projects"
    __table_args__ = (
        Index("uq_projects_organization_name", "organization_id", "name", unique=True,
              postgresql_where=_LIVE, sqlite_where=_LIVE),
        Index("uq_projects_api_key", "api_key", unique=True,
              postgresql_where=_LIVE, sqlite_where=_LIVE),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    api_key: Mapped[str] = mapped_column(String(255), nullable=False)

    organization: Mapped["Organization"] = relationship(back_populates="projects")
