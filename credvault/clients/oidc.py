"""
OpenID Connect provider utilities.

These helpers discover provider metadata, build PKCE authorization URLs,
exchange authorization codes and verify provider-signed tokens against the
provider's JWKS.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple
from urllib.parse import urlencode

import httpx
import jwt

logger = logging.getLogger(__name__)

ALLOWED_SIGNING_ALGORITHMS = frozenset(
    {"RS256", "RS384", "RS512", "PS256", "PS384", "PS512", "ES256", "ES384", "ES512"}
)


class OIDCProviderUnavailableError(Exception):
    """Raised when the provider cannot be reached or answers with a server error."""


class OIDCDiscoveryError(OIDCProviderUnavailableError):
    """Raised when discovery returns an unusable document."""


class OIDCTokenExchangeError(Exception):
    """Raised when the token endpoint rejects the authorization code."""


class OIDCTokenValidationError(Exception):
    """Raised when a provider-signed token fails verification."""


@dataclass(frozen=True, slots=True)
class OIDCMetadata:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    end_session_endpoint: Optional[str] = None


def generate_code_verifier() -> str:
    """Create a PKCE code verifier from 32 random bytes."""
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).decode("ascii").rstrip("=")


def code_challenge_for(verifier: str) -> str:
    """S256 code challenge for ``verifier``."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


class OIDCHttpClient:
    """Thin async HTTP layer over the provider endpoints."""

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _get_json(self, url: str) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            raise OIDCProviderUnavailableError(f"Request to {url} failed") from exc

        if response.status_code != 200:
            raise OIDCProviderUnavailableError(
                f"{url} answered with status {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise OIDCProviderUnavailableError(f"{url} did not return JSON") from exc
        if not isinstance(payload, dict):
            raise OIDCProviderUnavailableError(f"{url} did not return a JSON object")
        return payload

    async def discover(self, issuer: str) -> OIDCMetadata:
        normalized = issuer.rstrip("/")
        payload = await self._get_json(f"{normalized}/.well-known/openid-configuration")

        authorization_endpoint = payload.get("authorization_endpoint")
        token_endpoint = payload.get("token_endpoint")
        jwks_uri = payload.get("jwks_uri")
        if not authorization_endpoint or not token_endpoint or not jwks_uri:
            raise OIDCDiscoveryError("Discovery response missing required endpoints")

        discovered_issuer = str(payload.get("issuer") or normalized).rstrip("/")
        if discovered_issuer != normalized:
            raise OIDCDiscoveryError("Discovery issuer mismatch")

        return OIDCMetadata(
            issuer=str(payload.get("issuer") or normalized),
            authorization_endpoint=str(authorization_endpoint),
            token_endpoint=str(token_endpoint),
            jwks_uri=str(jwks_uri),
            end_session_endpoint=payload.get("end_session_endpoint"),
        )

    async def fetch_jwks(self, jwks_uri: str) -> Dict[str, Any]:
        return await self._get_json(jwks_uri)

    async def post_token(
        self,
        token_endpoint: str,
        data: Dict[str, str],
        auth: Optional[Tuple[str, str]] = None,
    ) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.post(token_endpoint, data=data, auth=auth)
        except httpx.HTTPError as exc:
            raise OIDCProviderUnavailableError("Token request failed") from exc

        if response.status_code >= 500:
            raise OIDCProviderUnavailableError(
                f"Token endpoint answered with status {response.status_code}"
            )
        if response.status_code != 200:
            raise OIDCTokenExchangeError(
                f"Token endpoint rejected the request ({response.status_code})"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise OIDCProviderUnavailableError("Token endpoint did not return JSON") from exc
        if not isinstance(payload, dict):
            raise OIDCProviderUnavailableError("Token endpoint did not return a JSON object")
        return payload


JWKSLoader = Callable[[], Awaitable[Dict[str, Any]]]


class IDTokenVerifier:
    """Verify provider-signed JWTs for one issuer and client id."""

    def __init__(
        self,
        *,
        issuer: str,
        client_id: str,
        jwks_loader: JWKSLoader,
        cache_seconds: int = 300,
        refetch_interval_seconds: int = 30,
        leeway: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.issuer = issuer
        self.client_id = client_id
        self._load_jwks = jwks_loader
        self._cache_seconds = cache_seconds
        self._refetch_interval = refetch_interval_seconds
        self._leeway = leeway
        self._clock = clock
        self._keys: Dict[str, jwt.PyJWK] = {}
        self._fetched_at: Optional[float] = None
        self._lock = asyncio.Lock()

    async def _refresh_keys(self) -> None:
        jwks = await self._load_jwks()
        try:
            key_set = jwt.PyJWKSet.from_dict(jwks)
        except jwt.PyJWKSetError as exc:
            raise OIDCProviderUnavailableError("Provider JWKS has no usable keys") from exc
        self._keys = {key.key_id or "": key for key in key_set.keys}
        self._fetched_at = self._clock()
        logger.debug("Loaded %d signing key(s) for %s", len(self._keys), self.issuer)

    async def _signing_key(self, kid: str) -> jwt.PyJWK:
        async with self._lock:
            age = None if self._fetched_at is None else self._clock() - self._fetched_at
            if age is None or age > self._cache_seconds:
                await self._refresh_keys()
            elif kid not in self._keys:
                # Unknown kids force at most one refetch per interval.
                if age >= self._refetch_interval:
                    await self._refresh_keys()
                else:
                    logger.debug("Skipping JWKS refetch for unknown key id %r", kid)
        key = self._keys.get(kid)
        if key is None:
            raise OIDCTokenValidationError("Signing key not found in provider JWKS")
        return key

    async def verify(self, token: str) -> Dict[str, Any]:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as exc:
            raise OIDCTokenValidationError("Malformed token") from exc

        algorithm = header.get("alg")
        if algorithm not in ALLOWED_SIGNING_ALGORITHMS:
            raise OIDCTokenValidationError("Unsupported token algorithm")

        signing_key = await self._signing_key(str(header.get("kid") or ""))
        try:
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=[algorithm],
                audience=self.client_id,
                issuer=self.issuer,
                leeway=self._leeway,
                options={"require": ["exp", "iat", "iss", "aud", "sub"]},
            )
        except jwt.PyJWTError as exc:
            raise OIDCTokenValidationError(f"Token validation failed: {exc}") from exc

        audience = claims.get("aud")
        if isinstance(audience, list) and len(audience) > 1:
            if claims.get("azp") != self.client_id:
                raise OIDCTokenValidationError("Authorized party mismatch")
        return claims


class AuthorizationCodeClient:
    """Build authorization URLs and exchange codes for one registered client."""

    def __init__(
        self,
        *,
        http: OIDCHttpClient,
        metadata: OIDCMetadata,
        client_id: str,
        redirect_uri: str,
        scopes: Sequence[str],
        client_secret: Optional[str] = None,
    ) -> None:
        self._http = http
        self._metadata = metadata
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.scopes = tuple(scopes)
        self._client_secret = client_secret

    def authorization_url(self, state: str, code_challenge: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        separator = "&" if "?" in self._metadata.authorization_endpoint else "?"
        return f"{self._metadata.authorization_endpoint}{separator}{urlencode(params)}"

    async def exchange(self, code: str, code_verifier: str) -> Dict[str, Any]:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "code_verifier": code_verifier,
        }
        auth = (self.client_id, self._client_secret) if self._client_secret else None
        payload = await self._http.post_token(self._metadata.token_endpoint, data, auth)
        if not payload.get("access_token"):
            raise OIDCProviderUnavailableError("Token response missing access_token")
        if not payload.get("id_token"):
            raise OIDCProviderUnavailableError("Token response missing id_token")
        return payload


__all__ = [
    "ALLOWED_SIGNING_ALGORITHMS",
    "AuthorizationCodeClient",
    "IDTokenVerifier",
    "OIDCDiscoveryError",
    "OIDCHttpClient",
    "OIDCMetadata",
    "OIDCProviderUnavailableError",
    "OIDCTokenExchangeError",
    "OIDCTokenValidationError",
    "code_challenge_for",
    "generate_code_verifier",
]
