try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import threading
from datetime import datetime, timedelta, timezone

import pytest

from credvault.core.errors import AuthenticationError
from credvault.models.credentials import DeviceInfo, RefreshTokenRecord
from credvault.services.refresh_tokens import hash_refresh_token


def test_issue_persists_only_the_digest(refresh_store, credential_store):
    token = refresh_store.issue("user-1", DeviceInfo(user_agent="pytest", ip_address="10.0.0.1"))

    record = credential_store.get_refresh_token(hash_refresh_token(token))
    assert record is not None
    assert record.user_id == "user-1"
    assert record.token_hash != token
    assert record.user_agent == "pytest"


def test_rotation_returns_new_token_and_consumes_old(refresh_store):
    token = refresh_store.issue("user-1")

    user_id, replacement = refresh_store.rotate(token)

    assert user_id == "user-1"
    assert replacement != token
    with pytest.raises(AuthenticationError):
        refresh_store.rotate(token)
    assert refresh_store.rotate(replacement)[0] == "user-1"


def test_rotation_rejects_revoked_tokens(refresh_store):
    token = refresh_store.issue("user-1")

    assert refresh_store.revoke_all("user-1") == 1
    with pytest.raises(AuthenticationError):
        refresh_store.rotate(token)


def test_rotation_rejects_access_tokens(refresh_store, token_issuer):
    with pytest.raises(AuthenticationError):
        refresh_store.rotate(token_issuer.issue_access("user-1"))


def test_rotation_rejects_signed_token_without_row(refresh_store, token_issuer):
    unknown = token_issuer.issue_refresh("user-1")

    with pytest.raises(AuthenticationError):
        refresh_store.rotate(unknown)


def test_concurrent_rotation_has_exactly_one_winner(refresh_store):
    token = refresh_store.issue("user-1")
    workers = 8
    barrier = threading.Barrier(workers)
    outcomes: list[str] = []
    lock = threading.Lock()

    def attempt() -> None:
        barrier.wait()
        try:
            refresh_store.rotate(token)
        except AuthenticationError:
            result = "rejected"
        else:
            result = "rotated"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("rotated") == 1
    assert outcomes.count("rejected") == workers - 1
    assert len(refresh_store.list_sessions("user-1")) == 1


def test_issue_replaces_session_from_same_address(refresh_store):
    home = DeviceInfo(ip_address="10.0.0.1")
    refresh_store.issue("user-1", home)
    latest = refresh_store.issue("user-1", home)
    refresh_store.issue("user-1", DeviceInfo(ip_address="10.0.0.2"))

    sessions = refresh_store.list_sessions("user-1")

    assert sorted(session.ip_address for session in sessions) == ["10.0.0.1", "10.0.0.2"]
    assert refresh_store.rotate(latest)[0] == "user-1"


def test_revoke_single_token(refresh_store):
    kept = refresh_store.issue("user-1", DeviceInfo(ip_address="10.0.0.1"))
    dropped = refresh_store.issue("user-1", DeviceInfo(ip_address="10.0.0.2"))

    assert refresh_store.revoke(dropped) is True
    assert refresh_store.revoke(dropped) is False
    assert refresh_store.rotate(kept)[0] == "user-1"


def test_delete_session_is_owner_scoped(refresh_store):
    refresh_store.issue("user-1")
    (session,) = refresh_store.list_sessions("user-1")

    assert refresh_store.delete_session("user-2", session.id) is False
    assert refresh_store.delete_session("user-1", session.id) is True
    assert refresh_store.list_sessions("user-1") == []


def test_purge_expired_removes_only_stale_rows(refresh_store, credential_store):
    now = datetime.now(timezone.utc)
    credential_store.insert_refresh_token(
        RefreshTokenRecord(
            id="stale",
            user_id="user-1",
            token_hash="0" * 64,
            expires_at=now - timedelta(minutes=1),
            ip_address="10.9.9.9",
            created_at=now - timedelta(days=31),
        )
    )
    refresh_store.issue("user-1")

    assert refresh_store.purge_expired() == 1
    assert len(refresh_store.list_sessions("user-1")) == 1
