"""Test fixtures for the Valtro backend.

Each test gets its own SQLite database file, a FastAPI app wired to it, a
fake Clerk JWKS endpoint served through ``httpx.MockTransport`` and helpers
to mint session tokens and sign webhook deliveries.
"""

import base64
import json
import os
import time
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from jwt.algorithms import RSAAlgorithm
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from svix.webhooks import Webhook

WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"valtro-test-webhook-signing-key").decode()
CLERK_FRONTEND_API = "clerk.valtro.test"

# Settings are required at import time of anything calling get_settings().
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("CLERK_FRONTEND_API", CLERK_FRONTEND_API)
os.environ.setdefault("CLERK_WEBHOOK_SIGNING_SECRET", WEBHOOK_SECRET)

from valtro.config import Settings  # noqa: E402
from valtro.db.models import User  # noqa: E402
from valtro.main import create_app, init_schema  # noqa: E402


# ── Keys, tokens, clocks ──────────────────────


def public_jwk(kid: str, private_key: rsa.RSAPrivateKey, *, use: str = "sig") -> dict[str, Any]:
    jwk = RSAAlgorithm.to_jwk(private_key.public_key(), as_dict=True)
    return {**jwk, "use": use, "alg": "RS256", "kid": kid}


@pytest.fixture(scope="session")
def rsa_keys() -> dict[str, rsa.RSAPrivateKey]:
    """Two signing keys, ``key-1`` and ``key-2`` (for rotation tests)."""
    return {
        kid: rsa.generate_private_key(public_exponent=65537, key_size=2048)
        for kid in ("key-1", "key-2")
    }


class FakeJWKS:
    """In-process Clerk JWKS endpoint. Counts every request it serves."""

    def __init__(self, keys: dict[str, rsa.RSAPrivateKey]) -> None:
        self.keys = dict(keys)
        self.requests = 0
        self.status_code = 200
        self.body: Optional[bytes] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "unavailable"})
        if self.body is not None:
            return httpx.Response(200, content=self.body)
        return httpx.Response(
            200, json={"keys": [public_jwk(kid, key) for kid, key in self.keys.items()]}
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_jwks(rsa_keys: dict[str, rsa.RSAPrivateKey]) -> FakeJWKS:
    return FakeJWKS({"key-1": rsa_keys["key-1"]})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_token(
    private_key: rsa.RSAPrivateKey,
    *,
    kid: Optional[str] = "key-1",
    sub: Optional[str] = "user_idp_abc",
    algorithm: str = "RS256",
    expires_in: int = 300,
    **claims: Any,
) -> str:
    now = int(time.time())
    payload: dict[str, Any] = {"iat": now, "nbf": now, "exp": now + expires_in}
    if sub is not None:
        payload["sub"] = sub
    payload.update(claims)
    headers = {"kid": kid} if kid is not None else {}
    return jwt.encode(payload, private_key, algorithm=algorithm, headers=headers)


@pytest.fixture
def token_for(rsa_keys: dict[str, rsa.RSAPrivateKey]) -> Callable[..., str]:
    def _token_for(sub: str = "user_idp_abc", **kwargs: Any) -> str:
        return make_token(rsa_keys["key-1"], sub=sub, **kwargs)

    return _token_for


@pytest.fixture
def auth_headers(token_for: Callable[..., str]) -> Callable[[str], dict[str, str]]:
    def _auth_headers(sub: str = "user_idp_abc") -> dict[str, str]:
        return {"Authorization": f"Bearer {token_for(sub)}"}

    return _auth_headers


# ── Webhooks ──────────────────────────────────


def sign_delivery(secret: str, msg_id: str, timestamp: str, body: bytes) -> str:
    """The ``svix-signature`` header value (``v1,<sig>``) for one delivery."""
    sent_at = datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
    return Webhook(secret).sign(msg_id, sent_at, body.decode())


def signed_delivery(
    payload: dict[str, Any],
    *,
    secret: str = WEBHOOK_SECRET,
    msg_id: Optional[str] = None,
    timestamp: Optional[int] = None,
) -> tuple[bytes, dict[str, str]]:
    """Serialise ``payload`` and build matching svix headers."""
    body = json.dumps(payload).encode()
    msg_id = msg_id or f"msg_{uuid.uuid4().hex}"
    ts = str(timestamp if timestamp is not None else int(time.time()))
    headers = {
        "svix-id": msg_id,
        "svix-timestamp": ts,
        "svix-signature": sign_delivery(secret, msg_id, ts, body),
        "content-type": "application/json",
    }
    return body, headers


def clerk_user_payload(
    clerk_user_id: str = "idp_x",
    *,
    email: str = "a@b.co",
    first_name: Optional[str] = "A",
    last_name: Optional[str] = "B",
    **extra: Any,
) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": clerk_user_id,
        "object": "user",
        "email_addresses": [
            {
                "id": "e1",
                "email_address": email,
                "verification": {"status": "verified"},
            }
        ],
        "primary_email_address_id": "e1",
        "first_name": first_name,
        "last_name": last_name,
    }
    data.update(extra)
    return data


def clerk_event(event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": event_type,
        "object": "event",
        "data": data,
        "timestamp": int(time.time() * 1000),
        "instance_id": "ins_test",
    }


# ── App, database, client ─────────────────────


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy, not pysqlite, issue BEGIN so SAVEPOINT works."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'valtro.db'}",
        clerk_frontend_api=CLERK_FRONTEND_API,
        clerk_webhook_signing_secret=WEBHOOK_SECRET,
        cors_origins="http://localhost:3000",
    )


@pytest.fixture
async def app(settings: Settings, fake_jwks: FakeJWKS) -> AsyncGenerator[Any, None]:
    """FastAPI app bound to a fresh database and the fake JWKS endpoint."""
    http_client = fake_jwks.client()
    application = create_app(settings, http_client=http_client)
    enable_sqlite_savepoints(application.state.engine)
    await init_schema(application.state.engine)
    yield application
    await http_client.aclose()
    await application.state.engine.dispose()


@pytest.fixture
async def client(app: Any) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX AsyncClient bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def session_factory(app: Any) -> async_sessionmaker[AsyncSession]:
    return app.state.session_factory


@pytest.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Any]:
    """Insert and commit a live user; returns the User."""

    async def _make_user(clerk_user_id: str, email: Optional[str] = None, **fields: Any) -> User:
        async with session_factory() as session:
            user = User(
                id=uuid.uuid4(),
                clerk_user_id=clerk_user_id,
                email=email or f"{clerk_user_id}@example.com",
                full_name=fields.pop("full_name", "Test User"),
                **fields,
            )
            session.add(user)
            await session.commit()
            return user

    return _make_user


@pytest.fixture
async def user_a(make_user: Callable[..., Any]) -> User:
    return await make_user("user_idp_abc", "u1@example.com", full_name="User One")


@pytest.fixture
async def user_b(make_user: Callable[..., Any]) -> User:
    return await make_user("user_idp_def", "u2@example.com", full_name="User Two")
