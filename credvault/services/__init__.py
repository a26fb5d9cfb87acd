"""Service layer exports."""

from .api_keys import APIKeyManager, APIKeyPrincipal, GeneratedKey
from .authenticator import AuthenticatedPrincipal, CompositeAuthenticator
from .identity_bridge import AuthorizationCodeRegistry, ExternalIdentityBridge
from .oauth_state import OAuthStateSigner
from .refresh_tokens import RefreshTokenStore
from .tokens import TokenIssuer, TokenVerifier
from .usage import UsageRecorder

__all__ = [
    "APIKeyManager",
    "APIKeyPrincipal",
    "AuthenticatedPrincipal",
    "AuthorizationCodeRegistry",
    "CompositeAuthenticator",
    "ExternalIdentityBridge",
    "GeneratedKey",
    "OAuthStateSigner",
    "RefreshTokenStore",
    "TokenIssuer",
    "TokenVerifier",
    "UsageRecorder",
]
