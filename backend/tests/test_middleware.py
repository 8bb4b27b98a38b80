from httpx import AsyncClient
from sqlalchemy import func, select

from conftest import FakeJWKS, make_token
from valtro.db.models import Organization, User


async def test_no_auth_header_returns_401(client: AsyncClient) -> None:
    resp = await client.get("/api/v1/organizations")
    assert resp.status_code == 401
    data = resp.json()
    assert data["error"] == "unauthorized"
    assert data["message"] == "invalid token: missing header"


async def test_invalid_auth_header_returns_401(client: AsyncClient) -> None:
    resp = await client.get(
        "/api/v1/organizations",
        headers={"Authorization": "Bearer not-a-valid-token"},
    )
    assert resp.status_code == 401
    assert resp.json()["message"] == "invalid token: bad format"


async def test_expired_token_returns_401(client: AsyncClient, rsa_keys, user_a: User) -> None:
    token = make_token(rsa_keys["key-1"], sub=user_a.clerk_user_id, expires_in=-10)
    resp = await client.get("/api/v1/users/profile", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "invalid token: expired"


async def test_valid_token_for_unknown_user_returns_401(client: AsyncClient, auth_headers) -> None:
    resp = await client.get("/api/v1/users/profile", headers=auth_headers("user_nobody"))
    assert resp.status_code == 401
    assert resp.json()["message"] == "user not found"


async def test_valid_token_resolves_internal_user(
    client: AsyncClient, auth_headers, user_a: User
) -> None:
    resp = await client.get("/api/v1/users/profile", headers=auth_headers())
    assert resp.status_code == 200
    data = resp.json()
    assert data["message"] == "user profile retrieved successfully"
    assert data["data"]["id"] == str(user_a.id)
    assert data["data"]["clerk_user_id"] == "user_idp_abc"
    assert data["data"]["email"] == "u1@example.com"


async def test_jwks_outage_returns_500(
    client: AsyncClient, fake_jwks: FakeJWKS, auth_headers, user_a: User
) -> None:
    fake_jwks.status_code = 503
    resp = await client.get("/api/v1/users/profile", headers=auth_headers())
    assert resp.status_code == 500
    data = resp.json()
    assert data["message"] == "failed to fetch signing keys"
    assert "details" not in data


async def test_jwks_fetched_once_across_requests(
    client: AsyncClient, fake_jwks: FakeJWKS, auth_headers, user_a: User
) -> None:
    for _ in range(5):
        assert (await client.get("/api/v1/users/profile", headers=auth_headers())).status_code == 200
    assert fake_jwks.requests == 1


async def test_public_paths_skip_auth(client: AsyncClient) -> None:
    assert (await client.get("/health")).status_code == 200
    assert (await client.get("/")).status_code == 200


async def test_rejected_token_never_reaches_handler(client: AsyncClient, session_factory) -> None:
    resp = await client.post(
        "/api/v1/onboarding",
        json={"organization_name": "Acme", "project_name": "Web"},
        headers={"Authorization": "Token abc"},
    )
    assert resp.status_code == 401

    async with session_factory() as session:
        assert await session.scalar(select(func.count(Organization.id))) == 0
