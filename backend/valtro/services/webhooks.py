"""
Clerk webhook reconciliation.

Applies ``user.created`` / ``user.updated`` / ``user.deleted`` deliveries to
the users table. Deliveries may be retried, duplicated or reordered, so
every branch is idempotent: a duplicate create reports "already exists", a
delete of an absent user reports success, and an update rewrites the same
fields to the same values. No log of seen delivery ids is kept.

Each event runs in its own transaction so a failed write never leaves the
request session half-applied.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from valtro.auth.identity import IdentityBridge
from valtro.auth.webhooks import WebhookVerifier
from valtro.db.engine import transaction
from valtro.db.models import User
from valtro.errors import ConflictError, NotFoundError, ValidationError
from valtro.services import users as user_service

logger = logging.getLogger(__name__)

USER_CREATED = "user.created"
USER_UPDATED = "user.updated"
USER_DELETED = "user.deleted"


# ── Clerk payload ─────────────────────────────


class ClerkVerification(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: Optional[str] = None


class ClerkEmailAddress(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    email_address: Optional[str] = None
    verification: Optional[ClerkVerification] = None


class ClerkUserData(BaseModel):
    """The ``data`` object of a Clerk user event. Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    id: str
    email_addresses: list[ClerkEmailAddress] = []
    primary_email_address_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    image_url: Optional[str] = None
    last_sign_in_at: Optional[int] = None


@dataclass(frozen=True)
class UserProjection:
    clerk_user_id: str
    email: str
    email_verified: bool
    full_name: str
    has_name: bool
    username: Optional[str]
    image_url: Optional[str]
    last_sign_in: Optional[datetime]


@dataclass
class WebhookOutcome:
    status_code: int
    message: str
    user: Optional[User] = None


def _primary_email(data: ClerkUserData) -> tuple[str, bool]:
    addresses = [e for e in data.email_addresses if e.email_address and e.email_address.strip()]
    chosen: Optional[ClerkEmailAddress] = None
    if data.primary_email_address_id:
        chosen = next((e for e in addresses if e.id == data.primary_email_address_id), None)
    if chosen is None and addresses:
        chosen = addresses[0]
    if chosen is None:
        # Clerk dashboard test events carry no usable address.
        return f"test+{data.id}@clerk.dev", False
    verified = chosen.verification is not None and chosen.verification.status == "verified"
    return chosen.email_address, verified


def project_user(data: ClerkUserData) -> UserProjection:
    """Derive the local user fields from a Clerk user object."""
    email, verified = _primary_email(data)
    parts = [p.strip() for p in (data.first_name, data.last_name) if p and p.strip()]
    joined = " ".join(parts)
    full_name = joined or email.split("@", 1)[0]
    last_sign_in = None
    if data.last_sign_in_at is not None:
        last_sign_in = datetime.fromtimestamp(data.last_sign_in_at / 1000, tz=timezone.utc)
    return UserProjection(
        clerk_user_id=data.id,
        email=email,
        email_verified=verified,
        full_name=full_name,
        has_name=bool(joined),
        username=data.username,
        image_url=data.image_url,
        last_sign_in=last_sign_in,
    )


def _parse_user_data(raw: Any) -> ClerkUserData:
    if not isinstance(raw, dict) or not raw.get("id"):
        raise ValidationError("invalid user payload", details="data.id is required")
    try:
        return ClerkUserData.model_validate(raw)
    except PydanticValidationError as exc:
        details = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise ValidationError("invalid user payload", details=details) from exc


class WebhookReconciler:
    """Verify and apply one Clerk webhook delivery."""

    def __init__(self, verifier: WebhookVerifier, identity: IdentityBridge) -> None:
        self._verifier = verifier
        self._identity = identity

    async def handle(
        self, db: AsyncSession, body: bytes, headers: Mapping[str, str]
    ) -> WebhookOutcome:
        envelope = self._verifier.verify(body, headers)
        if not isinstance(envelope, dict):
            raise ValidationError("invalid JSON payload", details="envelope must be an object")

        event_type = envelope.get("type")
        handlers = {
            USER_CREATED: self._user_created,
            USER_UPDATED: self._user_updated,
            USER_DELETED: self._user_deleted,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.info("webhook event ignored", extra={"event_type": event_type})
            return WebhookOutcome(200, "event type not handled")

        data = _parse_user_data(envelope.get("data"))
        outcome = await handler(db, data)
        logger.info(
            "webhook processed",
            extra={
                "event_type": event_type,
                "clerk_user_id": data.id,
                "svix_id": headers.get("svix-id"),
                "outcome": outcome.message,
            },
        )
        return outcome

    async def _user_created(self, db: AsyncSession, data: ClerkUserData) -> WebhookOutcome:
        view = project_user(data)
        try:
            async with transaction(db):
                user = await user_service.create_user(
                    db,
                    clerk_user_id=view.clerk_user_id,
                    email=view.email,
                    full_name=view.full_name,
                    username=view.username,
                    image_url=view.image_url,
                    email_verified=view.email_verified,
                    last_sign_in=view.last_sign_in,
                )
        except ConflictError as exc:
            logger.info("user already exists", extra={"clerk_user_id": data.id, "reason": exc.message})
            return WebhookOutcome(200, "user already exists")
        return WebhookOutcome(200, "user created", user)

    async def _user_updated(self, db: AsyncSession, data: ClerkUserData) -> WebhookOutcome:
        view = project_user(data)
        async with transaction(db):
            user = await user_service.get_user_by_clerk_id(db, view.clerk_user_id)
            if user is None:
                raise NotFoundError.for_resource("user")
            await user_service.apply_profile_update(
                db,
                user,
                full_name=view.full_name if view.has_name else None,
                username=view.username,
                image_url=view.image_url,
                last_sign_in=view.last_sign_in,
            )
        return WebhookOutcome(200, "user updated", user)

    async def _user_deleted(self, db: AsyncSession, data: ClerkUserData) -> WebhookOutcome:
        async with transaction(db):
            user = await user_service.get_user_by_clerk_id(db, data.id)
            if user is None:
                return WebhookOutcome(200, "user already deleted or doesn't exist")
            await user_service.soft_delete_user(db, user)
        self._identity.forget(data.id)
        return WebhookOutcome(200, "user deleted")
