"""Authentication middleware for the dashboard API.

Rules:
1. Only paths under /api/v1/ are guarded; /, /health, /docs and the
   webhook receiver (/api/webhooks/*, signature-authenticated) pass through.
2. ``Authorization: Bearer <Clerk session JWT>`` is verified against the
   cached JWKS (TokenVerifier).
3. The token subject is mapped to the internal user id (IdentityBridge).
4. On success: ``request.state.user_id`` (UUID) and
   ``request.state.clerk_user_id`` are set for the handlers.
5. On failure the request never reaches a handler: 401 for credential
   problems, 500 when signing keys or the user store are unavailable.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from valtro.auth.identity import IdentityBridge
from valtro.auth.tokens import TokenVerificationError, TokenVerifier
from valtro.errors import UnauthorizedError, ValtroError

logger = logging.getLogger(__name__)

PROTECTED_PATH_PREFIX = "/api/v1/"


class AuthMiddleware(BaseHTTPMiddleware):
    """Authenticate /api/v1 requests with a Clerk bearer token."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if not (path.startswith(PROTECTED_PATH_PREFIX) or path == PROTECTED_PATH_PREFIX.rstrip("/")):
            return await call_next(request)
        # CORS preflight carries no credentials.
        if request.method == "OPTIONS":
            return await call_next(request)

        verifier: TokenVerifier = request.app.state.token_verifier
        identity: IdentityBridge = request.app.state.identity_bridge

        try:
            token = await verifier.verify(request.headers.get("Authorization"))
            user_id = await identity.internal_id_for(token.subject)
        except TokenVerificationError as exc:
            logger.warning("token rejected: %s", exc.reason, extra={"path": path})
            return JSONResponse(exc.to_dict(), status_code=exc.status_code)
        except UnauthorizedError as exc:
            logger.warning("authentication failed: %s", exc.message, extra={"path": path})
            return JSONResponse(exc.to_dict(), status_code=exc.status_code)
        except ValtroError as exc:
            logger.error("authentication unavailable: %s", exc.message, extra={"details": exc.details})
            return JSONResponse(
                {"error": exc.error, "message": exc.message},
                status_code=exc.status_code,
            )

        request.state.user_id = user_id
        request.state.clerk_user_id = token.subject
        return await call_next(request)
