"""Cached access to the IdP's published signing keys (JWKS).

The cache holds one immutable snapshot ``{kid: RSAPublicKey}`` plus the
instant it was fetched. Reads copy the snapshot reference under a short
thread lock and never wait on the network. A stale or empty cache triggers
one refresh; concurrent misses queue on an asyncio lock and re-check
freshness once they hold it, so a burst of requests costs a single fetch.
Failed fetches leave the previous snapshot untouched and are never cached.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx
import jwt
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_TIMEOUT_SECONDS = 10.0


class JWKSError(Exception):
    """Base class for signing-key lookup failures."""


class UnknownKeyError(JWKSError):
    """The requested ``kid`` is not in a fresh key set."""

    def __init__(self, kid: str) -> None:
        super().__init__(f"unknown signing key: {kid}")
        self.kid = kid


class JWKSFetchError(JWKSError):
    """The key set could not be fetched or parsed."""


@dataclass(frozen=True)
class _Snapshot:
    keys: dict[str, RSAPublicKey] = field(default_factory=dict)
    fetched_at: float = 0.0


def parse_jwks(document: object) -> dict[str, RSAPublicKey]:
    """Build ``{kid: key}`` from a JWKS document.

    Non-RSA entries and keys published for another use (``"use": "enc"``)
    are skipped, as PyJWKClient does. A structurally broken document or RSA
    entry raises JWKSFetchError.
    """
    if not isinstance(document, dict) or not isinstance(document.get("keys"), list):
        raise JWKSFetchError("JWKS document has no 'keys' array")

    keys: dict[str, RSAPublicKey] = {}
    for entry in document["keys"]:
        if not isinstance(entry, dict):
            raise JWKSFetchError("JWKS entry is not an object")
        if entry.get("kty") != "RSA":
            continue
        if entry.get("use") not in ("sig", None):
            continue
        try:
            jwk = jwt.PyJWK(entry)
        except (jwt.PyJWKError, jwt.InvalidKeyError, ValueError) as exc:
            raise JWKSFetchError(f"invalid RSA key for kid {entry.get('kid')}: {exc}") from exc
        if not jwk.key_id:
            raise JWKSFetchError("RSA JWK missing kid")
        keys[jwk.key_id] = jwk.key
    return keys


class JWKSCache:
    """Process-wide cache of the IdP signing keys.

    ``clock`` must be monotonic; tests pass a fake to move time forward.
    ``http_client`` is borrowed, not closed; when omitted a client is opened
    per refresh.
    """

    def __init__(
        self,
        url: str,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        ttl: float = DEFAULT_TTL_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._url = url
        self._http_client = http_client
        self._ttl = ttl
        self._timeout = timeout
        self._clock = clock
        self._snapshot: Optional[_Snapshot] = None
        self._snapshot_lock = threading.Lock()
        self._refresh_lock = asyncio.Lock()

    @property
    def url(self) -> str:
        return self._url

    def _fresh_snapshot(self) -> Optional[_Snapshot]:
        with self._snapshot_lock:
            snapshot = self._snapshot
        if snapshot is not None and self._clock() - snapshot.fetched_at < self._ttl:
            return snapshot
        return None

    async def public_key_for(self, kid: str) -> RSAPublicKey:
        """Return the RSA key for ``kid``, refreshing the set if it is stale."""
        snapshot = self._fresh_snapshot()
        if snapshot is None:
            async with self._refresh_lock:
                snapshot = self._fresh_snapshot()
                if snapshot is None:
                    snapshot = await self._refresh()

        key = snapshot.keys.get(kid)
        if key is None:
            raise UnknownKeyError(kid)
        return key

    async def _refresh(self) -> _Snapshot:
        if self._http_client is not None:
            keys = await self._fetch(self._http_client)
        else:
            async with httpx.AsyncClient() as client:
                keys = await self._fetch(client)

        snapshot = _Snapshot(keys=keys, fetched_at=self._clock())
        with self._snapshot_lock:
            self._snapshot = snapshot
        logger.info("JWKS refreshed", extra={"jwks_url": self._url, "key_count": len(keys)})
        return snapshot

    async def _fetch(self, client: httpx.AsyncClient) -> dict[str, RSAPublicKey]:
        try:
            response = await client.get(self._url, timeout=self._timeout)
        except httpx.HTTPError as exc:
            logger.warning("JWKS fetch failed: %s", exc, extra={"jwks_url": self._url})
            raise JWKSFetchError(f"JWKS request failed: {exc}") from exc

        if response.status_code != 200:
            logger.warning(
                "JWKS fetch returned HTTP %d", response.status_code,
                extra={"jwks_url": self._url},
            )
            raise JWKSFetchError(f"JWKS endpoint returned HTTP {response.status_code}")

        try:
            document = response.json()
        except ValueError as exc:
            logger.warning("JWKS response is not valid JSON", extra={"jwks_url": self._url})
            raise JWKSFetchError("JWKS response is not valid JSON") from exc

        try:
            return parse_jwks(document)
        except JWKSFetchError as exc:
            logger.warning("JWKS document rejected: %s", exc, extra={"jwks_url": self._url})
            raise
