"""Expose persistence and provider clients."""

from .oidc import (
    AuthorizationCodeClient,
    IDTokenVerifier,
    OIDCHttpClient,
    OIDCMetadata,
)
from .sqlite_store import SQLiteCredentialStore
from .user_directory import SQLiteUserDirectory, UserDirectory

__all__ = [
    "AuthorizationCodeClient",
    "IDTokenVerifier",
    "OIDCHttpClient",
    "OIDCMetadata",
    "SQLiteCredentialStore",
    "SQLiteUserDirectory",
    "UserDirectory",
]
