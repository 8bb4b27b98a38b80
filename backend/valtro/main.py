"""FastAPI application factory for the Valtro backend."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.exceptions import HTTPException as StarletteHTTPException

from valtro.api import onboarding, organizations, projects, users, webhooks
from valtro.auth.identity import IdentityBridge
from valtro.auth.jwks import JWKSCache
from valtro.auth.tokens import TokenVerifier
from valtro.auth.webhooks import WebhookVerifier
from valtro.config import Settings, get_settings
from valtro.db.engine import build_session_factory, create_engine_from_settings, ping
from valtro.db.models import Base
from valtro.db.repositories import SessionUserDirectory
from valtro.errors import ValtroError
from valtro.middleware.auth import AuthMiddleware
from valtro.middleware.request_logging import RequestLoggingMiddleware
from valtro.services.webhooks import WebhookReconciler

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


async def init_schema(engine: AsyncEngine) -> None:
    """Create any missing tables and indexes."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: probe the database (fatal on failure), create tables. Shutdown: cleanup."""
    engine: AsyncEngine = app.state.engine
    try:
        await ping(engine)
    except Exception:
        logger.critical("database unreachable at startup", exc_info=True)
        raise
    await init_schema(engine)
    logger.info("database connected", extra={"driver": engine.url.drivername})

    yield

    if app.state.owns_http_client:
        await app.state.http_client.aclose()
    await engine.dispose()


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValtroError)
    async def valtro_error_handler(request: Request, exc: ValtroError):
        if exc.status_code >= 500:
            logger.error(
                "%s %s failed: %s", request.method, request.url.path, exc.message,
                extra={"details": exc.details},
            )
            body = {"error": exc.error, "message": exc.message}
        else:
            body = exc.to_dict()
        return JSONResponse(body, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            {"error": "validation_error", "message": "invalid request", "details": details},
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        error = {404: "not_found", 405: "method_not_allowed"}.get(exc.status_code, "http_error")
        return JSONResponse(
            {"error": error, "message": str(exc.detail)},
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            {"error": "internal_error", "message": "internal server error"},
            status_code=500,
        )


def create_app(
    settings: Optional[Settings] = None,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators (engine, caches, verifiers) are built here and hung on
    ``app.state`` so tests can build an app against their own database and
    a mocked JWKS endpoint.
    """
    settings = settings or get_settings()
    app = FastAPI(
        title="Valtro API",
        version=VERSION,
        description="Organizations, projects and SDK API keys for Valtro.",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    engine = create_engine_from_settings(settings)
    session_factory = build_session_factory(engine)
    owns_http_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient()

    jwks = JWKSCache(
        settings.jwks_url,
        http_client=http_client,
        ttl=settings.jwks_cache_ttl_seconds,
        timeout=settings.jwks_fetch_timeout_seconds,
    )
    identity = IdentityBridge(
        SessionUserDirectory(session_factory),
        ttl=settings.identity_cache_ttl_seconds,
        max_entries=settings.identity_cache_max_entries,
    )
    webhook_verifier = WebhookVerifier(settings.clerk_webhook_signing_secret)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.http_client = http_client
    app.state.owns_http_client = owns_http_client
    app.state.jwks = jwks
    app.state.token_verifier = TokenVerifier(jwks)
    app.state.identity_bridge = identity
    app.state.webhook_reconciler = WebhookReconciler(webhook_verifier, identity)

    # Last added runs first: CORS -> logging -> auth -> routes.
    origins = settings.get_cors_origins()
    allow_credentials = origins != ["*"]
    if not allow_credentials:
        logger.warning("CORS_ORIGINS=* disables credentials; use exact origins in production")
    app.add_middleware(AuthMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app)

    app.include_router(onboarding.router, prefix="/api/v1/onboarding", tags=["onboarding"])
    app.include_router(organizations.router, prefix="/api/v1/organizations", tags=["organizations"])
    app.include_router(projects.router, prefix="/api/v1/projects", tags=["projects"])
    app.include_router(users.router, prefix="/api/v1/users", tags=["users"])
    app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])

    @app.get("/")
    async def welcome():
        return {"message": "Welcome to the Valtro API!"}

    @app.get("/health")
    async def health():
        try:
            await ping(app.state.engine)
        except Exception as exc:
            logger.warning("health check: database unreachable: %s", exc)
            return JSONResponse(
                {"status": "error", "database": "unhealthy", "message": "database connection failed"},
                status_code=503,
            )
        return {"status": "ok", "database": "healthy"}

    return app


def run() -> None:
    """Console entry point: configure logging and serve with uvicorn."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "valtro.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
