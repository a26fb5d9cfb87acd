"""
Resolve a request's principal from either a bearer token or an API key.

The schemes are tried in a fixed order. The first scheme whose credential is
present decides the outcome: its failure is final and later schemes are not
consulted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal, Mapping, Optional, Protocol, Sequence

from credvault.core.errors import AUTHENTICATION_REQUIRED, AuthenticationError
from credvault.services.api_keys import APIKeyManager
from credvault.services.tokens import TokenVerifier

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "access_token"
API_KEY_HEADER = "x-api-key"

AuthVia = Literal["bearer", "api_key"]


@dataclass(frozen=True, slots=True)
class AuthenticatedPrincipal:
    user_id: str
    auth_via: AuthVia
    permissions: frozenset[str] = field(default_factory=frozenset)
    api_key_id: Optional[str] = None


def _authorization(headers: Mapping[str, str], scheme: str) -> Optional[str]:
    """Return the credential after ``<scheme> `` or ``None`` for another scheme."""
    value = headers.get("authorization")
    if value is None:
        return None
    label, _, credential = value.strip().partition(" ")
    if label.lower() != scheme.lower():
        return None
    return credential.strip()


class CredentialScheme(Protocol):
    name: AuthVia

    def extract(
        self, headers: Mapping[str, str], cookies: Mapping[str, str]
    ) -> Optional[str]:
        ...

    def resolve(self, credential: str) -> AuthenticatedPrincipal:
        ...


class BearerTokenScheme:
    """``Authorization: Bearer`` or, without any Authorization header, the access cookie."""

    name: AuthVia = "bearer"

    def __init__(self, verifier: TokenVerifier) -> None:
        self._verifier = verifier

    def extract(
        self, headers: Mapping[str, str], cookies: Mapping[str, str]
    ) -> Optional[str]:
        if "authorization" in headers:
            return _authorization(headers, "Bearer")
        return cookies.get(ACCESS_TOKEN_COOKIE)

    def resolve(self, credential: str) -> AuthenticatedPrincipal:
        user_id = self._verifier.verify(credential, "access")
        return AuthenticatedPrincipal(user_id=user_id, auth_via=self.name)


class APIKeyScheme:
    """``X-API-Key`` header, else ``Authorization: ApiKey <key>``."""

    name: AuthVia = "api_key"

    def __init__(self, manager: APIKeyManager) -> None:
        self._manager = manager

    def extract(
        self, headers: Mapping[str, str], cookies: Mapping[str, str]
    ) -> Optional[str]:
        if API_KEY_HEADER in headers:
            return headers[API_KEY_HEADER].strip()
        return _authorization(headers, "ApiKey")

    def resolve(self, credential: str) -> AuthenticatedPrincipal:
        principal = self._manager.verify(credential)
        return AuthenticatedPrincipal(
            user_id=principal.user_id,
            auth_via=self.name,
            permissions=principal.permissions,
            api_key_id=principal.key_id,
        )


class CompositeAuthenticator:
    """Apply an ordered policy of credential schemes to request headers."""

    def __init__(self, schemes: Sequence[CredentialScheme]) -> None:
        if not schemes:
            raise ValueError("At least one credential scheme is required.")
        self.schemes = tuple(schemes)

    @classmethod
    def default(
        cls, *, verifier: TokenVerifier, api_keys: APIKeyManager
    ) -> "CompositeAuthenticator":
        """Bearer tokens first, then API keys."""
        return cls((BearerTokenScheme(verifier), APIKeyScheme(api_keys)))

    def authenticate(
        self,
        headers: Mapping[str, str],
        cookies: Optional[Mapping[str, str]] = None,
    ) -> AuthenticatedPrincipal:
        normalized = {key.lower(): value for key, value in headers.items()}
        cookie_jar = cookies or {}
        for scheme in self.schemes:
            credential = scheme.extract(normalized, cookie_jar)
            if credential is None:
                continue
            try:
                return scheme.resolve(credential)
            except AuthenticationError:
                logger.debug("Credential presented via %s was rejected", scheme.name)
                raise
        raise AuthenticationError(AUTHENTICATION_REQUIRED)


__all__ = [
    "ACCESS_TOKEN_COOKIE",
    "APIKeyScheme",
    "AuthenticatedPrincipal",
    "BearerTokenScheme",
    "CompositeAuthenticator",
    "CredentialScheme",
]
