"""Input rules shared by the organisation, project and user services."""

import re

from valtro.errors import ValidationError

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 255

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def validate_name(value: str, field: str) -> str:
    """Trim ``value`` and enforce the 2-255 character rule; return the trimmed name."""
    name = (value or "").strip()
    if not name:
        raise ValidationError(f"{field} is required", details={"field": field})
    if len(name) < NAME_MIN_LENGTH:
        raise ValidationError(
            f"{field} must be at least {NAME_MIN_LENGTH} characters long",
            details={"field": field},
        )
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(
            f"{field} must be at most {NAME_MAX_LENGTH} characters long",
            details={"field": field},
        )
    return name


def normalize_email(value: str) -> str:
    """Lower-case and trim; reject anything that does not look like an address."""
    email = (value or "").strip().lower()
    if not email:
        raise ValidationError("email is required", details={"field": "email"})
    if not _EMAIL_RE.match(email):
        raise ValidationError("email must be a valid email address", details={"field": "email"})
    return email
