"""Public schema exports."""

from .api_keys import APIKeyCreate, APIKeyCreated, APIKeyUpdate, APIKeyView
from .auth import (
    ExternalTokens,
    FederatedLoginResult,
    OAuthCallbackPayload,
    OIDCLogoutPayload,
    TokenPair,
)

__all__ = [
    "APIKeyCreate",
    "APIKeyCreated",
    "APIKeyUpdate",
    "APIKeyView",
    "ExternalTokens",
    "FederatedLoginResult",
    "OAuthCallbackPayload",
    "OIDCLogoutPayload",
    "TokenPair",
]
