"""
Request and response bodies for API key management.

Responses are built from :class:`APIKeyRecord` but never carry the stored
digest; the plaintext only appears in :class:`APIKeyCreated`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from credvault.models.credentials import APIKeyRecord


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UTCDateTime = Annotated[datetime, AfterValidator(_as_utc)]


class APIKeyCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=100)
    permissions: List[str] = Field(default_factory=list)
    expires_at: Optional[UTCDateTime] = Field(None, alias="expiresAt")


class APIKeyUpdate(BaseModel):
    """Partial update; only fields present in the body are applied."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    is_active: Optional[bool] = Field(None, alias="isActive")
    expires_at: Optional[UTCDateTime] = Field(None, alias="expiresAt")


class APIKeyView(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    key_prefix: str = Field(..., alias="keyPrefix")
    is_active: bool = Field(..., alias="isActive")
    permissions: List[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    last_used_at: Optional[datetime] = Field(None, alias="lastUsedAt")
    created_at: datetime = Field(..., alias="createdAt")

    @classmethod
    def from_record(cls, record: APIKeyRecord) -> "APIKeyView":
        return cls(
            id=record.id,
            name=record.name,
            key_prefix=record.key_prefix,
            is_active=record.is_active,
            permissions=list(record.permissions),
            expires_at=record.expires_at,
            last_used_at=record.last_used_at,
            created_at=record.created_at,
        )


class APIKeyCreated(APIKeyView):
    key: str = Field(..., description="Plaintext key. Returned only once.")

    @classmethod
    def from_created(cls, record: APIKeyRecord, plaintext: str) -> "APIKeyCreated":
        view = APIKeyView.from_record(record)
        return cls(**view.model_dump(), key=plaintext)


__all__ = ["APIKeyCreate", "APIKeyCreated", "APIKeyUpdate", "APIKeyView"]
