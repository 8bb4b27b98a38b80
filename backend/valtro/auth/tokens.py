"""Bearer-token verification for IdP (Clerk) session JWTs."""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import jwt

from valtro.auth.jwks import JWKSCache, JWKSFetchError, UnknownKeyError
from valtro.errors import InternalError, UnauthorizedError

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "
ALLOWED_ALGORITHMS = ("RS256", "RS384", "RS512")

# Failure reasons. Short and stable; they end up in 401 bodies.
MISSING_HEADER = "missing header"
BAD_FORMAT = "bad format"
UNKNOWN_KEY = "unknown key"
BAD_SIGNATURE = "bad signature"
EXPIRED = "expired"
NOT_YET_VALID = "not yet valid"
MISSING_SUB = "missing sub"


class TokenVerificationError(UnauthorizedError):
    """The bearer token was rejected. ``reason`` is safe to show callers."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"invalid token: {reason}")
        self.reason = reason


@dataclass(frozen=True)
class VerifiedToken:
    subject: str
    claims: dict[str, Any] = field(default_factory=dict)


class TokenVerifier:
    """Verify ``Authorization`` header values against the cached JWKS."""

    def __init__(self, jwks: JWKSCache) -> None:
        self._jwks = jwks

    async def verify(self, authorization: Optional[str]) -> VerifiedToken:
        if not authorization:
            raise TokenVerificationError(MISSING_HEADER)
        if not authorization.startswith(BEARER_PREFIX):
            raise TokenVerificationError(BAD_FORMAT)
        token = authorization[len(BEARER_PREFIX):].strip()
        if not token:
            raise TokenVerificationError(BAD_FORMAT)

        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as exc:
            raise TokenVerificationError(BAD_FORMAT) from exc

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise TokenVerificationError(BAD_FORMAT)
        algorithm = header.get("alg")
        if algorithm not in ALLOWED_ALGORITHMS:
            raise TokenVerificationError(BAD_FORMAT)

        try:
            key = await self._jwks.public_key_for(kid)
        except UnknownKeyError as exc:
            raise TokenVerificationError(UNKNOWN_KEY) from exc
        except JWKSFetchError as exc:
            raise InternalError("failed to fetch signing keys", details=str(exc)) from exc

        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[algorithm],
                leeway=0,
                options={"verify_aud": False},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenVerificationError(EXPIRED) from exc
        except (jwt.ImmatureSignatureError, jwt.InvalidIssuedAtError) as exc:
            raise TokenVerificationError(NOT_YET_VALID) from exc
        except jwt.InvalidSignatureError as exc:
            raise TokenVerificationError(BAD_SIGNATURE) from exc
        except jwt.InvalidTokenError as exc:
            raise TokenVerificationError(BAD_FORMAT) from exc

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise TokenVerificationError(MISSING_SUB)

        return VerifiedToken(subject=subject, claims=claims)
