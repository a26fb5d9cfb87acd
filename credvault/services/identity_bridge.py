"""
Federation with an external OpenID Connect provider.

The bridge discovers the provider lazily, runs the authorization code flow
with PKCE and turns verified provider tokens into :class:`FederatedIdentity`
values. Provider failures surface as :class:`ServiceUnavailableError`; a
rejected code or token surfaces as :class:`AuthenticationError`.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError as PydanticValidationError

from credvault.clients.oidc import (
    AuthorizationCodeClient,
    IDTokenVerifier,
    OIDCHttpClient,
    OIDCMetadata,
    OIDCProviderUnavailableError,
    OIDCTokenExchangeError,
    OIDCTokenValidationError,
    code_challenge_for,
    generate_code_verifier,
)
from credvault.core.config import OIDCSettings
from credvault.core.errors import (
    AuthenticationError,
    ServiceUnavailableError,
    ValidationError,
)
from credvault.models.credentials import ExternalTokenSet, FederatedIdentity

logger = logging.getLogger(__name__)

CODE_REUSE_WINDOW_SECONDS = 60 * 60


def _claim_is_true(value: Any) -> bool:
    """Accept boolean ``true`` and the string ``"true"`` some providers send."""
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def identity_from_claims(claims: Dict[str, Any]) -> FederatedIdentity:
    """Map verified provider claims onto a :class:`FederatedIdentity`."""
    return FederatedIdentity(
        subject=str(claims.get("sub") or ""),
        email=str(claims.get("email") or ""),
        email_verified=_claim_is_true(claims.get("email_verified")),
        name=str(claims.get("name") or ""),
        preferred_username=str(claims.get("preferred_username") or ""),
        given_name=str(claims.get("given_name") or ""),
        family_name=str(claims.get("family_name") or ""),
    )


class ExternalIdentityBridge:
    """Authorization code flow and token verification against one provider."""

    def __init__(
        self,
        settings: OIDCSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._http = OIDCHttpClient(
            timeout=settings.http_timeout_seconds, transport=transport
        )
        self._lock = asyncio.Lock()
        self._metadata: Optional[OIDCMetadata] = None
        self._verifier: Optional[IDTokenVerifier] = None
        self._code_client: Optional[AuthorizationCodeClient] = None

    @property
    def configured(self) -> bool:
        return self._settings.is_configured

    @property
    def initialized(self) -> bool:
        return self._metadata is not None

    @property
    def metadata(self) -> Optional[OIDCMetadata]:
        return self._metadata

    async def initialize(self) -> None:
        """Discover the provider once; later calls return immediately."""
        if not self.configured:
            raise ServiceUnavailableError("External identity provider is not configured.")
        if self._metadata is not None:
            return

        async with self._lock:
            if self._metadata is not None:
                return
            issuer = str(self._settings.issuer_url)
            try:
                metadata = await self._http.discover(issuer)
            except OIDCProviderUnavailableError as exc:
                logger.warning("OIDC discovery for %s failed: %s", issuer, exc)
                raise ServiceUnavailableError(
                    "External identity provider is unavailable."
                ) from exc

            jwks_uri = metadata.jwks_uri
            self._verifier = IDTokenVerifier(
                issuer=metadata.issuer,
                client_id=str(self._settings.client_id),
                jwks_loader=lambda: self._http.fetch_jwks(jwks_uri),
                cache_seconds=self._settings.jwks_cache_seconds,
                refetch_interval_seconds=self._settings.jwks_refetch_interval_seconds,
            )
            self._code_client = AuthorizationCodeClient(
                http=self._http,
                metadata=metadata,
                client_id=str(self._settings.client_id),
                redirect_uri=str(self._settings.redirect_uri),
                scopes=self._settings.scopes,
                client_secret=self._settings.client_secret,
            )
            self._metadata = metadata
            logger.info("OIDC provider %s initialized", metadata.issuer)

    async def build_authorization_url(self, state: str) -> Tuple[str, str]:
        """Return the provider login URL and the PKCE verifier the caller must keep."""
        await self.initialize()
        assert self._code_client is not None
        code_verifier = generate_code_verifier()
        url = self._code_client.authorization_url(state, code_challenge_for(code_verifier))
        return url, code_verifier

    async def _verify(self, token: str) -> FederatedIdentity:
        assert self._verifier is not None
        try:
            claims = await self._verifier.verify(token)
        except OIDCTokenValidationError as exc:
            logger.info("Rejected provider token: %s", exc)
            raise AuthenticationError() from exc
        except OIDCProviderUnavailableError as exc:
            logger.warning("Could not load provider signing keys: %s", exc)
            raise ServiceUnavailableError(
                "External identity provider is unavailable."
            ) from exc
        try:
            return identity_from_claims(claims)
        except PydanticValidationError as exc:
            raise AuthenticationError() from exc

    async def exchange_code(
        self, code: str, code_verifier: str
    ) -> Tuple[ExternalTokenSet, FederatedIdentity, str]:
        """Redeem ``code`` and return the provider tokens and the verified identity."""
        if not code or not code_verifier:
            raise ValidationError("Authorization code and code verifier are required.")
        await self.initialize()
        assert self._code_client is not None

        try:
            payload = await self._code_client.exchange(code, code_verifier)
        except OIDCTokenExchangeError as exc:
            logger.info("Authorization code exchange rejected: %s", exc)
            raise AuthenticationError() from exc
        except OIDCProviderUnavailableError as exc:
            logger.warning("Authorization code exchange failed: %s", exc)
            raise ServiceUnavailableError(
                "External identity provider is unavailable."
            ) from exc

        try:
            tokens = ExternalTokenSet.model_validate(payload)
        except PydanticValidationError as exc:
            raise ServiceUnavailableError("Malformed token response from provider.") from exc

        raw_id_token = str(payload["id_token"])
        identity = await self._verify(raw_id_token)
        return tokens, identity, raw_id_token

    async def verify_bearer_token(self, token: str) -> FederatedIdentity:
        """Verify a provider-issued token presented directly by a client."""
        if not token:
            raise AuthenticationError()
        await self.initialize()
        return await self._verify(token)

    async def build_logout_url(
        self,
        post_logout_redirect_uri: Optional[str] = None,
        id_token_hint: Optional[str] = None,
    ) -> str:
        await self.initialize()
        assert self._metadata is not None
        endpoint = self._metadata.end_session_endpoint or (
            f"{self._metadata.issuer.rstrip('/')}/protocol/openid-connect/logout"
        )
        params = {
            key: value
            for key, value in (
                ("post_logout_redirect_uri", post_logout_redirect_uri),
                ("id_token_hint", id_token_hint),
            )
            if value
        }
        if not params:
            return endpoint
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"


class AuthorizationCodeRegistry:
    """Remember redeemed authorization codes so each one is accepted once."""

    def __init__(
        self,
        *,
        window_seconds: int = CODE_REUSE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = window_seconds
        self._clock = clock
        self._seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def claim(self, code: str) -> bool:
        """Return ``True`` the first time ``code`` is seen within the window."""
        now = self._clock()
        with self._lock:
            expired = [key for key, seen_at in self._seen.items() if now - seen_at > self._window]
            for key in expired:
                del self._seen[key]
            if code in self._seen:
                return False
            self._seen[code] = now
            return True

    def release(self, code: str) -> None:
        """Forget ``code`` so it can be redeemed again after a failed attempt."""
        with self._lock:
            self._seen.pop(code, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)


__all__ = [
    "AuthorizationCodeRegistry",
    "CODE_REUSE_WINDOW_SECONDS",
    "ExternalIdentityBridge",
    "identity_from_claims",
]
