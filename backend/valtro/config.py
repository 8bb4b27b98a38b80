"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and .env file support.
Access the singleton via get_settings(). DATABASE_URL, CLERK_FRONTEND_API and
CLERK_WEBHOOK_SIGNING_SECRET have no defaults: a process started without them
fails during settings validation.
"""

import json
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Valtro backend."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str

    @model_validator(mode="after")
    def _normalize_database_url(self) -> "Settings":
        """Ensure database_url uses the asyncpg driver.

        PaaS providers (Railway, Heroku) set DATABASE_URL as
        ``postgresql://...`` which defaults to psycopg2 in SQLAlchemy.
        """
        url = self.database_url
        if url.startswith("postgres://"):
            self.database_url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgresql://") and "+asyncpg" not in url:
            self.database_url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self

    # Auth (Clerk)
    clerk_frontend_api: str = Field(min_length=1)
    clerk_webhook_signing_secret: str = Field(min_length=1)

    jwks_cache_ttl_seconds: float = Field(default=300, gt=0)
    jwks_fetch_timeout_seconds: float = Field(default=10, gt=0)
    identity_cache_ttl_seconds: float = Field(default=600, gt=0)
    identity_cache_max_entries: int = Field(default=10_000, ge=1)

    @field_validator("clerk_frontend_api")
    @classmethod
    def _strip_scheme(cls, value: str) -> str:
        """Accept ``https://foo.clerk.accounts.dev`` as well as the bare domain."""
        value = value.strip()
        for scheme in ("https://", "http://"):
            if value.startswith(scheme):
                value = value[len(scheme):]
        return value.rstrip("/")

    @property
    def jwks_url(self) -> str:
        return f"https://{self.clerk_frontend_api}/.well-known/jwks.json"

    # CORS: comma-separated or JSON array.
    # Stored as str so pydantic-settings doesn't JSON-decode plain comma values.
    cors_origins: str = "http://localhost:3000"

    def get_cors_origins(self) -> list[str]:
        """Parse CORS origins from string: JSON array or comma-separated."""
        v = self.cors_origins.strip()
        if not v:
            return []
        if v.startswith("["):
            try:
                items = json.loads(v)
                raw = [x.strip() for x in items if isinstance(x, str) and x.strip()]
            except json.JSONDecodeError:
                raw = [x.strip() for x in v.split(",") if x.strip()]
        else:
            raw = [x.strip() for x in v.split(",") if x.strip()]
        return [o.rstrip("/") for o in raw]


@lru_cache()
def get_settings() -> Settings:
    """Return cached Settings singleton."""
    return Settings()


def reset_settings() -> None:
    """Clear the settings cache. Used in tests."""
    get_settings.cache_clear()
