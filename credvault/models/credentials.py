"""
Domain models for credential persistence and identity federation.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class DeviceInfo(BaseModel):
    """Where a session was opened from, as reported by the request."""

    user_agent: str = "Unknown"
    ip_address: str = "Unknown"


class RefreshTokenRecord(BaseModel):
    """A persisted refresh token row. Only the digest of the token is kept."""

    id: str
    user_id: str
    token_hash: str = Field(..., description="SHA-256 hex digest of the token value.")
    expires_at: datetime
    user_agent: str = "Unknown"
    ip_address: str = "Unknown"
    created_at: datetime


class APIKeyRecord(BaseModel):
    """Represents an API key row stored in SQLite."""

    id: str
    user_id: str
    name: str
    key_hash: str = Field(..., description="SHA-256 hex digest of the plaintext key.")
    key_prefix: str = Field(..., max_length=20)
    permissions: List[str] = Field(default_factory=list)
    is_active: bool = True
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class FederatedIdentity(BaseModel):
    """Verified identity claims produced from an external provider token."""

    subject: str = Field(..., min_length=1)
    email: str = ""
    email_verified: bool = False
    name: str = ""
    preferred_username: str = ""
    given_name: str = ""
    family_name: str = ""


class ExternalTokenSet(BaseModel):
    """Tokens returned by the provider's token endpoint."""

    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    expires_in: Optional[int] = None


class LocalUser(BaseModel):
    """Local account that a federated subject maps to."""

    id: str
    external_subject: Optional[str] = None
    email: str = ""
    first_name: str = ""
    last_name: str = ""

    @property
    def profile_complete(self) -> bool:
        return bool(self.first_name and self.last_name)


__all__ = [
    "APIKeyRecord",
    "DeviceInfo",
    "ExternalTokenSet",
    "FederatedIdentity",
    "LocalUser",
    "RefreshTokenRecord",
]
