"""
API key generation, verification and owner-scoped management.

Only a SHA-256 digest of each key is stored; the plaintext is returned once
by :meth:`APIKeyManager.create` and can never be recovered afterwards.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Tuple
from uuid import uuid4

from credvault.clients.sqlite_store import SQLiteCredentialStore
from credvault.core.errors import AuthenticationError, RateLimitError, ValidationError
from credvault.models.credentials import APIKeyRecord
from credvault.services.usage import UsageRecorder

logger = logging.getLogger(__name__)

DISPLAY_PREFIX_MAX = 20
_RANDOM_BYTES = 32
_DISPLAY_FRAGMENT = 8


def hash_api_key(plaintext: str) -> str:
    """Return the 64-character hex digest stored for ``plaintext``."""
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class GeneratedKey:
    plaintext: str
    key_hash: str
    display_prefix: str


@dataclass(frozen=True, slots=True)
class APIKeyPrincipal:
    user_id: str
    key_id: str
    permissions: frozenset[str] = field(default_factory=frozenset)


def generate_api_key(prefix_label: str) -> GeneratedKey:
    """Create ``<label>_<random>`` with its digest and display prefix."""
    label = (prefix_label or "").strip()
    if not label:
        raise ValidationError("API key prefix label must not be empty.")

    random_portion = (
        base64.urlsafe_b64encode(secrets.token_bytes(_RANDOM_BYTES))
        .decode("ascii")
        .rstrip("=")
    )
    plaintext = f"{label}_{random_portion}"
    display_prefix = f"{label}_{random_portion[:_DISPLAY_FRAGMENT]}"[:DISPLAY_PREFIX_MAX]
    return GeneratedKey(
        plaintext=plaintext,
        key_hash=hash_api_key(plaintext),
        display_prefix=display_prefix,
    )


class APIKeyManager:
    """Create, verify and manage API keys for their owners."""

    def __init__(
        self,
        *,
        store: SQLiteCredentialStore,
        usage_recorder: UsageRecorder,
        max_active_per_owner: int = 10,
        default_prefix: str = "sk_live",
    ) -> None:
        self._store = store
        self._usage = usage_recorder
        self._max_active = max_active_per_owner
        self._default_prefix = default_prefix

    @staticmethod
    def generate(prefix_label: str) -> GeneratedKey:
        return generate_api_key(prefix_label)

    def create(
        self,
        *,
        user_id: str,
        name: str,
        permissions: Iterable[str] = (),
        expires_at: Optional[datetime] = None,
        prefix_label: Optional[str] = None,
    ) -> Tuple[APIKeyRecord, str]:
        """Persist a new key and return it with its plaintext.

        Raises :class:`RateLimitError` without writing anything when the owner
        already has the maximum number of active keys.
        """
        if not user_id:
            raise ValidationError("API keys must belong to a user.")
        if not name or not name.strip():
            raise ValidationError("API key name must not be empty.")

        generated = self.generate(prefix_label or self._default_prefix)
        now = datetime.now(timezone.utc)
        record = APIKeyRecord(
            id=str(uuid4()),
            user_id=user_id,
            name=name.strip(),
            key_hash=generated.key_hash,
            key_prefix=generated.display_prefix,
            permissions=sorted(set(permissions)),
            is_active=True,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        if not self._store.insert_api_key_within_limit(
            record, limit=self._max_active, now=now
        ):
            logger.info("User %s reached the active API key limit", user_id)
            raise RateLimitError(self._max_active)

        logger.info("Created API key %s (%s) for user %s", record.id, record.key_prefix, user_id)
        return record, generated.plaintext

    def verify(self, presented: str) -> APIKeyPrincipal:
        """Resolve the owner of ``presented`` or raise :class:`AuthenticationError`."""
        if not presented:
            raise AuthenticationError()

        record = self._store.get_api_key_by_hash(hash_api_key(presented))
        if record is None:
            logger.debug("Rejected API key: unknown digest")
            raise AuthenticationError()
        now = datetime.now(timezone.utc)
        if not record.is_active:
            logger.info("Rejected inactive API key %s", record.id)
            raise AuthenticationError()
        if record.is_expired(now):
            logger.info("Rejected expired API key %s", record.id)
            raise AuthenticationError()

        self._usage.submit(record.id, now)
        return APIKeyPrincipal(
            user_id=record.user_id,
            key_id=record.id,
            permissions=frozenset(record.permissions),
        )

    def list_keys(self, user_id: str) -> List[APIKeyRecord]:
        return self._store.list_api_keys(user_id)

    def get_key(self, user_id: str, key_id: str) -> Optional[APIKeyRecord]:
        return self._store.get_api_key(user_id=user_id, key_id=key_id)

    def update_key(self, user_id: str, key_id: str, **changes: Any) -> Optional[APIKeyRecord]:
        """Apply a partial update; re-activating a key counts toward the limit."""
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationError("API key name must not be empty.")
        try:
            return self._store.update_api_key(
                user_id=user_id,
                key_id=key_id,
                now=datetime.now(timezone.utc),
                active_limit=self._max_active,
                **changes,
            )
        except RateLimitError:
            logger.info("User %s cannot re-activate API key %s: limit reached", user_id, key_id)
            raise

    def delete_key(self, user_id: str, key_id: str) -> bool:
        deleted = self._store.delete_api_key(user_id=user_id, key_id=key_id)
        if deleted:
            logger.info("Deleted API key %s for user %s", key_id, user_id)
        return deleted

    def purge_expired(self) -> int:
        return self._store.purge_expired_api_keys(datetime.now(timezone.utc))


__all__ = [
    "APIKeyManager",
    "APIKeyPrincipal",
    "DISPLAY_PREFIX_MAX",
    "GeneratedKey",
    "generate_api_key",
    "hash_api_key",
]
