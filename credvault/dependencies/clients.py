"""
Factory functions to provide shared stores and services as FastAPI dependencies.
"""

from functools import lru_cache

from credvault.clients import SQLiteCredentialStore, SQLiteUserDirectory
from credvault.core.config import get_settings
from credvault.services import (
    APIKeyManager,
    AuthorizationCodeRegistry,
    CompositeAuthenticator,
    ExternalIdentityBridge,
    OAuthStateSigner,
    RefreshTokenStore,
    TokenIssuer,
    TokenVerifier,
    UsageRecorder,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_credential_store() -> SQLiteCredentialStore:
    """Provide the shared SQLite store for refresh tokens and API keys."""
    return SQLiteCredentialStore(_settings().database_path)


@lru_cache()
def get_user_directory() -> SQLiteUserDirectory:
    return SQLiteUserDirectory(_settings().database_path)


@lru_cache()
def get_token_issuer() -> TokenIssuer:
    security = _settings().security
    return TokenIssuer(
        secret=security.jwt_secret,
        algorithm=security.jwt_algorithm,
        access_ttl=security.access_token_ttl,
        refresh_ttl=security.refresh_token_ttl,
    )


@lru_cache()
def get_token_verifier() -> TokenVerifier:
    security = _settings().security
    return TokenVerifier(secret=security.jwt_secret, algorithm=security.jwt_algorithm)


@lru_cache()
def get_refresh_token_store() -> RefreshTokenStore:
    """Provide refresh token rotation backed by the credential store."""
    return RefreshTokenStore(
        store=get_credential_store(),
        issuer=get_token_issuer(),
        verifier=get_token_verifier(),
    )


@lru_cache()
def get_usage_recorder() -> UsageRecorder:
    """Provide the background recorder for API key last-used timestamps."""
    return UsageRecorder(
        get_credential_store().touch_api_key,
        maxsize=_settings().api_keys.usage_queue_size,
    )


@lru_cache()
def get_api_key_manager() -> APIKeyManager:
    settings = _settings().api_keys
    return APIKeyManager(
        store=get_credential_store(),
        usage_recorder=get_usage_recorder(),
        max_active_per_owner=settings.max_active_per_owner,
        default_prefix=settings.default_prefix,
    )


@lru_cache()
def get_oauth_state_signer() -> OAuthStateSigner:
    """Provide the OAuth state signer keyed by CSRF_SECRET or JWT_SECRET."""
    security = _settings().security
    return OAuthStateSigner(
        security.state_secret, ttl_seconds=security.oauth_state_ttl_seconds
    )


@lru_cache()
def get_authenticator() -> CompositeAuthenticator:
    return CompositeAuthenticator.default(
        verifier=get_token_verifier(), api_keys=get_api_key_manager()
    )


@lru_cache()
def get_identity_bridge() -> ExternalIdentityBridge:
    """Provide the lazily initialized OIDC bridge."""
    return ExternalIdentityBridge(_settings().oidc)


@lru_cache()
def get_code_registry() -> AuthorizationCodeRegistry:
    return AuthorizationCodeRegistry()


__all__ = [
    "get_api_key_manager",
    "get_authenticator",
    "get_code_registry",
    "get_credential_store",
    "get_identity_bridge",
    "get_oauth_state_signer",
    "get_refresh_token_store",
    "get_token_issuer",
    "get_token_verifier",
    "get_usage_recorder",
    "get_user_directory",
]
