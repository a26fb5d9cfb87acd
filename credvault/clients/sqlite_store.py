"""SQLite-backed persistence for refresh token rows and API keys."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Optional

from credvault.core.errors import RateLimitError
from credvault.models.credentials import APIKeyRecord, RefreshTokenRecord

_API_KEY_UPDATABLE = frozenset({"name", "is_active", "expires_at"})


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _iso_or_none(value: Optional[datetime]) -> Optional[str]:
    return _iso(value) if value is not None else None


def _refresh_from_row(row: sqlite3.Row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row["id"],
        user_id=row["user_id"],
        token_hash=row["token_hash"],
        expires_at=datetime.fromisoformat(row["expires_at"]),
        user_agent=row["user_agent"],
        ip_address=row["ip_address"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _api_key_from_row(row: sqlite3.Row) -> APIKeyRecord:
    return APIKeyRecord(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        key_hash=row["key_hash"],
        key_prefix=row["key_prefix"],
        permissions=json.loads(row["permissions"] or "[]"),
        is_active=bool(row["is_active"]),
        expires_at=datetime.fromisoformat(row["expires_at"]) if row["expires_at"] else None,
        last_used_at=(
            datetime.fromisoformat(row["last_used_at"]) if row["last_used_at"] else None
        ),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class SQLiteCredentialStore:
    """Credential tables with transactional read-then-write primitives.

    Write sequences that must be atomic (refresh rotation, the active API key
    count check) run inside ``BEGIN IMMEDIATE`` transactions, which SQLite
    serializes across connections and threads.
    """

    def __init__(self, db_path: str, *, busy_timeout: float = 30.0) -> None:
        self._db_path = Path(db_path)
        self._busy_timeout = busy_timeout
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(
            self._db_path,
            timeout=self._busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS refresh_tokens (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    token_hash TEXT NOT NULL UNIQUE,
                    expires_at TEXT NOT NULL,
                    user_agent TEXT NOT NULL,
                    ip_address TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS ix_refresh_tokens_user
                    ON refresh_tokens (user_id);

                CREATE TABLE IF NOT EXISTS api_keys (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    key_hash TEXT NOT NULL UNIQUE,
                    key_prefix TEXT NOT NULL,
                    permissions TEXT NOT NULL DEFAULT '[]',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    expires_at TEXT,
                    last_used_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS ix_api_keys_user
                    ON api_keys (user_id);
                """
            )

    # Refresh tokens

    def insert_refresh_token(
        self, record: RefreshTokenRecord, *, replace_same_address: bool = False
    ) -> None:
        with self._transaction() as conn:
            if replace_same_address:
                conn.execute(
                    "DELETE FROM refresh_tokens WHERE user_id = ? AND ip_address = ?",
                    (record.user_id, record.ip_address),
                )
            self._insert_refresh_row(conn, record)

    @staticmethod
    def _insert_refresh_row(conn: sqlite3.Connection, record: RefreshTokenRecord) -> None:
        conn.execute(
            """
            INSERT INTO refresh_tokens
                (id, user_id, token_hash, expires_at, user_agent, ip_address, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.user_id,
                record.token_hash,
                _iso(record.expires_at),
                record.user_agent,
                record.ip_address,
                _iso(record.created_at),
            ),
        )

    def replace_refresh_token(
        self,
        *,
        user_id: str,
        token_hash: str,
        now: datetime,
        replacement: RefreshTokenRecord,
    ) -> bool:
        """Delete the matching live row and insert ``replacement`` atomically.

        Returns ``False`` without writing anything when no row matched.
        """
        with self._transaction() as conn:
            deleted = conn.execute(
                """
                DELETE FROM refresh_tokens
                WHERE user_id = ? AND token_hash = ? AND expires_at > ?
                """,
                (user_id, token_hash, _iso(now)),
            ).rowcount
            if deleted != 1:
                return False
            self._insert_refresh_row(conn, replacement)
        return True

    def delete_refresh_token(self, token_hash: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM refresh_tokens WHERE token_hash = ?", (token_hash,)
            )
        return cursor.rowcount > 0

    def delete_refresh_tokens_for_user(self, user_id: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM refresh_tokens WHERE user_id = ?", (user_id,)
            )
        return cursor.rowcount

    def delete_refresh_token_by_id(self, *, user_id: str, record_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM refresh_tokens WHERE user_id = ? AND id = ?",
                (user_id, record_id),
            )
        return cursor.rowcount > 0

    def list_refresh_tokens(self, *, user_id: str, now: datetime) -> List[RefreshTokenRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM refresh_tokens
                WHERE user_id = ? AND expires_at > ?
                ORDER BY created_at DESC
                """,
                (user_id, _iso(now)),
            ).fetchall()
        return [_refresh_from_row(row) for row in rows]

    def get_refresh_token(self, token_hash: str) -> Optional[RefreshTokenRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM refresh_tokens WHERE token_hash = ?", (token_hash,)
            ).fetchone()
        return _refresh_from_row(row) if row else None

    def purge_expired_refresh_tokens(self, now: datetime) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM refresh_tokens WHERE expires_at <= ?", (_iso(now),)
            )
        return cursor.rowcount

    # API keys

    def insert_api_key_within_limit(
        self, record: APIKeyRecord, *, limit: int, now: datetime
    ) -> bool:
        """Insert ``record`` unless the owner already has ``limit`` active keys."""
        with self._transaction() as conn:
            (active,) = conn.execute(
                """
                SELECT COUNT(*) FROM api_keys
                WHERE user_id = ? AND is_active = 1
                  AND (expires_at IS NULL OR expires_at > ?)
                """,
                (record.user_id, _iso(now)),
            ).fetchone()
            if active >= limit:
                return False
            conn.execute(
                """
                INSERT INTO api_keys
                    (id, user_id, name, key_hash, key_prefix, permissions, is_active,
                     expires_at, last_used_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.user_id,
                    record.name,
                    record.key_hash,
                    record.key_prefix,
                    json.dumps(sorted(set(record.permissions))),
                    int(record.is_active),
                    _iso_or_none(record.expires_at),
                    _iso_or_none(record.last_used_at),
                    _iso(record.created_at),
                    _iso(record.updated_at),
                ),
            )
        return True

    def count_api_keys(self, user_id: str) -> int:
        with self._connect() as conn:
            (count,) = conn.execute(
                "SELECT COUNT(*) FROM api_keys WHERE user_id = ?", (user_id,)
            ).fetchone()
        return count

    def get_api_key_by_hash(self, key_hash: str) -> Optional[APIKeyRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM api_keys WHERE key_hash = ?", (key_hash,)
            ).fetchone()
        return _api_key_from_row(row) if row else None

    def get_api_key(self, *, user_id: str, key_id: str) -> Optional[APIKeyRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM api_keys WHERE user_id = ? AND id = ?", (user_id, key_id)
            ).fetchone()
        return _api_key_from_row(row) if row else None

    def list_api_keys(self, user_id: str) -> List[APIKeyRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM api_keys WHERE user_id = ? ORDER BY created_at",
                (user_id,),
            ).fetchall()
        return [_api_key_from_row(row) for row in rows]

    def update_api_key(
        self,
        *,
        user_id: str,
        key_id: str,
        now: datetime,
        active_limit: Optional[int] = None,
        **changes: Any,
    ) -> Optional[APIKeyRecord]:
        """Apply ``changes`` and return the updated row, or ``None`` if absent.

        With ``active_limit`` set, an update that turns an inactive or expired
        key into an active one raises :class:`RateLimitError` when the owner
        already has that many other active keys.
        """
        unknown = set(changes) - _API_KEY_UPDATABLE
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

        values: dict[str, Any] = {}
        for field, value in changes.items():
            if field == "is_active":
                values[field] = int(bool(value))
            elif field == "expires_at":
                values[field] = _iso_or_none(value)
            else:
                values[field] = value
        values["updated_at"] = _iso(now)

        assignments = ", ".join(f"{field} = ?" for field in values)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM api_keys WHERE user_id = ? AND id = ?", (user_id, key_id)
            ).fetchone()
            if row is None:
                return None
            current = _api_key_from_row(row)
            updated = current.model_copy(update=changes)
            was_active = current.is_active and not current.is_expired(now)
            becomes_active = updated.is_active and not updated.is_expired(now)
            if active_limit is not None and becomes_active and not was_active:
                (others,) = conn.execute(
                    """
                    SELECT COUNT(*) FROM api_keys
                    WHERE user_id = ? AND id != ? AND is_active = 1
                      AND (expires_at IS NULL OR expires_at > ?)
                    """,
                    (user_id, key_id, _iso(now)),
                ).fetchone()
                if others >= active_limit:
                    raise RateLimitError(active_limit)
            conn.execute(
                f"UPDATE api_keys SET {assignments} WHERE user_id = ? AND id = ?",
                (*values.values(), user_id, key_id),
            )
            row = conn.execute(
                "SELECT * FROM api_keys WHERE user_id = ? AND id = ?", (user_id, key_id)
            ).fetchone()
        return _api_key_from_row(row)

    def touch_api_key(self, key_id: str, used_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE api_keys SET last_used_at = ? WHERE id = ?",
                (_iso(used_at), key_id),
            )

    def delete_api_key(self, *, user_id: str, key_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM api_keys WHERE user_id = ? AND id = ?", (user_id, key_id)
            )
        return cursor.rowcount > 0

    def purge_expired_api_keys(self, now: datetime) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM api_keys WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (_iso(now),),
            )
        return cursor.rowcount


__all__ = ["SQLiteCredentialStore"]
