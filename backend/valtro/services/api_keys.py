"""Project API keys: ``vltro_`` followed by 64 lowercase hex characters.

Keys are stored verbatim and must be unique among live projects. Each
attempt writes inside a savepoint so a collision only rolls back that
attempt, not the surrounding transaction.
"""

import logging
import re
import secrets
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from valtro.db.models import Project
from valtro.db.repositories import ProjectRepository
from valtro.errors import ConflictError, InternalError

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "vltro_"
API_KEY_BYTES = 32
MAX_ATTEMPTS = 10
API_KEY_PATTERN = re.compile(r"^vltro_[0-9a-f]{64}$")

KeyGenerator = Callable[[], str]


def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_bytes(API_KEY_BYTES).hex()


def _is_api_key_collision(exc: ConflictError) -> bool:
    return isinstance(exc.details, dict) and exc.details.get("constraint") == "uq_projects_api_key"


async def assign_unique_api_key(
    db: AsyncSession,
    project: Project,
    *,
    generate: KeyGenerator = generate_api_key,
    max_attempts: int = MAX_ATTEMPTS,
) -> str:
    """Give ``project`` a fresh key and flush it; works for new and existing rows.

    Retries only on a collision with another project's key. Any other unique
    violation propagates as ConflictError. Raises InternalError once
    ``max_attempts`` keys have collided.
    """
    projects = ProjectRepository(db)
    collided = False
    for attempt in range(1, max_attempts + 1):
        candidate = generate()
        try:
            async with db.begin_nested():
                project.api_key = candidate
                db.add(project)
                await projects.flush()
        except ConflictError as exc:
            if not _is_api_key_collision(exc):
                raise
            collided = True
            logger.warning("API key collision", extra={"attempt": attempt})
            continue

        if collided:
            # The rolled-back savepoints expired the row; reload it before use.
            await db.refresh(project)
        return candidate

    logger.error("API key generation exhausted", extra={"attempts": max_attempts})
    raise InternalError("failed to generate unique API key")
