"""
Refresh token persistence, rotation and revocation.

A refresh token is accepted only when its signature and expiry check out and
a row for its digest still exists. Rotation consumes that row and inserts the
replacement in one transaction, so each refresh token can be used once.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from typing import List, Tuple
from uuid import uuid4

from credvault.clients.sqlite_store import SQLiteCredentialStore
from credvault.core.errors import AuthenticationError
from credvault.models.credentials import DeviceInfo, RefreshTokenRecord
from credvault.services.tokens import TokenIssuer, TokenVerifier

logger = logging.getLogger(__name__)


def hash_refresh_token(token: str) -> str:
    """Digest used as the storage key for a refresh token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class RefreshTokenStore:
    """Issue, rotate and revoke persisted refresh tokens."""

    def __init__(
        self,
        *,
        store: SQLiteCredentialStore,
        issuer: TokenIssuer,
        verifier: TokenVerifier,
        replace_same_address: bool = True,
    ) -> None:
        self._store = store
        self._issuer = issuer
        self._verifier = verifier
        self._replace_same_address = replace_same_address

    def _mint(self, user_id: str, device: DeviceInfo) -> Tuple[str, RefreshTokenRecord]:
        token = self._issuer.issue_refresh(user_id)
        now = datetime.now(timezone.utc)
        record = RefreshTokenRecord(
            id=str(uuid4()),
            user_id=user_id,
            token_hash=hash_refresh_token(token),
            expires_at=now + self._issuer.refresh_ttl,
            user_agent=device.user_agent,
            ip_address=device.ip_address,
            created_at=now,
        )
        return token, record

    def issue(self, user_id: str, device: DeviceInfo | None = None) -> str:
        """Mint a refresh token for ``user_id`` and persist its row.

        An earlier session of the same user from the same address is replaced.
        """
        token, record = self._mint(user_id, device or DeviceInfo())
        self._store.insert_refresh_token(
            record, replace_same_address=self._replace_same_address
        )
        logger.info("Issued refresh token for user %s", user_id)
        return token

    def rotate(self, presented: str, device: DeviceInfo | None = None) -> Tuple[str, str]:
        """Consume ``presented`` and return ``(user_id, new_refresh_token)``."""
        user_id = self._verifier.verify(presented, "refresh")

        new_token, record = self._mint(user_id, device or DeviceInfo())
        replaced = self._store.replace_refresh_token(
            user_id=user_id,
            token_hash=hash_refresh_token(presented),
            now=datetime.now(timezone.utc),
            replacement=record,
        )
        if not replaced:
            logger.warning(
                "Refresh token for user %s was already consumed or revoked", user_id
            )
            raise AuthenticationError()
        return user_id, new_token

    def revoke(self, presented: str) -> bool:
        """Delete the row for one token value, whatever its state."""
        return self._store.delete_refresh_token(hash_refresh_token(presented))

    def revoke_all(self, user_id: str) -> int:
        removed = self._store.delete_refresh_tokens_for_user(user_id)
        logger.info("Revoked %d refresh token(s) for user %s", removed, user_id)
        return removed

    def list_sessions(self, user_id: str) -> List[RefreshTokenRecord]:
        return self._store.list_refresh_tokens(
            user_id=user_id, now=datetime.now(timezone.utc)
        )

    def delete_session(self, user_id: str, session_id: str) -> bool:
        return self._store.delete_refresh_token_by_id(user_id=user_id, record_id=session_id)

    def purge_expired(self) -> int:
        return self._store.purge_expired_refresh_tokens(datetime.now(timezone.utc))


__all__ = ["RefreshTokenStore", "hash_refresh_token"]
