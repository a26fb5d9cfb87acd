"""Tests for the credential maintenance script."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from credvault.clients.sqlite_store import SQLiteCredentialStore
from credvault.models.credentials import RefreshTokenRecord
from scripts import maintenance


def test_check_reports_valid_settings(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = maintenance.main(["check"])

    assert exit_code == maintenance.EXIT_OK
    assert "Settings OK." in capsys.readouterr().out


def test_check_fails_without_signing_secret(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.delenv("JWT_SECRET", raising=False)

    exit_code = maintenance.main(["check"])

    assert exit_code == maintenance.EXIT_VALIDATION_ERROR
    assert "JWT_SECRET" in capsys.readouterr().err


def test_purge_removes_expired_rows(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db_path = tmp_path / "credvault.db"
    store = SQLiteCredentialStore(str(db_path))
    now = datetime.now(timezone.utc)
    for record_id, expires_at in (("stale", now - timedelta(hours=1)), ("live", now + timedelta(hours=1))):
        store.insert_refresh_token(
            RefreshTokenRecord(
                id=record_id,
                user_id="user-1",
                token_hash=record_id * 8,
                expires_at=expires_at,
                created_at=now,
            )
        )

    exit_code = maintenance.main(["purge", "--db-path", str(db_path)])

    assert exit_code == maintenance.EXIT_OK
    assert "Removed 1 expired refresh token(s) and 0 expired API key(s)." in capsys.readouterr().out
    assert [row.id for row in store.list_refresh_tokens(user_id="user-1", now=now)] == ["live"]


def test_purge_requires_existing_database(tmp_path: Path) -> None:
    exit_code = maintenance.main(["purge", "--db-path", str(tmp_path / "missing.db")])

    assert exit_code == maintenance.EXIT_RUNTIME_ERROR
