"""SQLite-backed mapping from external identity subjects to local users."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Protocol
from uuid import uuid4

from credvault.models.credentials import FederatedIdentity, LocalUser


class UserDirectory(Protocol):
    """What the federation routes need from the surrounding user system."""

    def find_or_create_from_identity(self, identity: FederatedIdentity) -> LocalUser: ...


def _split_full_name(full_name: str) -> tuple[str, str]:
    parts = full_name.strip().split(maxsplit=1)
    if not parts:
        return "", ""
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[1]


class SQLiteUserDirectory:
    """Minimal user table keyed by external subject, falling back to email."""

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(
            self._db_path, timeout=30.0, isolation_level=None, check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction taken up front, so lookups and inserts are serialized."""
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
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    external_subject TEXT UNIQUE,
                    email TEXT NOT NULL DEFAULT '',
                    first_name TEXT NOT NULL DEFAULT '',
                    last_name TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                )
                """
            )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> LocalUser:
        return LocalUser(
            id=row["id"],
            external_subject=row["external_subject"],
            email=row["email"],
            first_name=row["first_name"],
            last_name=row["last_name"],
        )

    def get(self, user_id: str) -> Optional[LocalUser]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._from_row(row) if row else None

    def create_user(
        self,
        email: str,
        *,
        first_name: str = "",
        last_name: str = "",
        external_subject: Optional[str] = None,
    ) -> LocalUser:
        user = LocalUser(
            id=str(uuid4()),
            external_subject=external_subject,
            email=email,
            first_name=first_name,
            last_name=last_name,
        )
        with self._transaction() as conn:
            self._insert(conn, user)
        return user

    @staticmethod
    def _insert(conn: sqlite3.Connection, user: LocalUser) -> None:
        conn.execute(
            """
            INSERT INTO users (id, external_subject, email, first_name, last_name, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                user.id,
                user.external_subject,
                user.email,
                user.first_name,
                user.last_name,
                datetime.now(timezone.utc).isoformat(),
            ),
        )

    def find_or_create_from_identity(self, identity: FederatedIdentity) -> LocalUser:
        """Resolve the local user for ``identity``, linking by email when possible."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE external_subject = ?", (identity.subject,)
            ).fetchone()
            if row:
                if identity.email and row["email"] != identity.email:
                    conn.execute(
                        "UPDATE users SET email = ? WHERE id = ?",
                        (identity.email, row["id"]),
                    )
                    return self._from_row(row).model_copy(update={"email": identity.email})
                return self._from_row(row)

            if identity.email and identity.email_verified:
                row = conn.execute(
                    "SELECT * FROM users WHERE email = ? AND external_subject IS NULL",
                    (identity.email,),
                ).fetchone()
                if row:
                    conn.execute(
                        "UPDATE users SET external_subject = ? WHERE id = ?",
                        (identity.subject, row["id"]),
                    )
                    return self._from_row(row).model_copy(
                        update={"external_subject": identity.subject}
                    )

            first_name = identity.given_name
            last_name = identity.family_name
            if not (first_name or last_name):
                first_name, last_name = _split_full_name(identity.name)
            user = LocalUser(
                id=str(uuid4()),
                external_subject=identity.subject,
                email=identity.email,
                first_name=first_name,
                last_name=last_name,
            )
            self._insert(conn, user)
        return user


__all__ = ["SQLiteUserDirectory", "UserDirectory"]
