"""
Signed OAuth state tokens and general-purpose CSRF tokens.

State tokens have the form ``<nonce>.<unix_timestamp>.<hex_signature>`` where
the signature is an HMAC-SHA256 over the nonce, the timestamp and a hash of
the requester's IP address. They are self-verifying and never stored.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets
import time
from typing import Callable, Tuple

from credvault.core.errors import StateTokenError

DEFAULT_STATE_TTL_SECONDS = 10 * 60
CSRF_TOKEN_BYTES = 32


def hash_ip(ip_address: str) -> str:
    """SHA-256 hex digest of a client address, so the raw address is not signed."""
    return hashlib.sha256(ip_address.encode("utf-8")).hexdigest()


class OAuthStateSigner:
    """Generate and validate IP-bound, time-limited state tokens."""

    def __init__(
        self,
        secret_key: str,
        *,
        ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret_key:
            raise ValueError("State signing secret must be provided.")
        self._secret_key = secret_key.encode("utf-8")
        self._ttl = ttl_seconds
        self._clock = clock

    def _sign(self, nonce: str, timestamp: int, ip_hash: str) -> str:
        message = f"{nonce}.{timestamp}.{ip_hash}".encode("utf-8")
        return hmac.new(self._secret_key, message, hashlib.sha256).hexdigest()

    def generate(self, ip_hash: str) -> str:
        nonce = base64.urlsafe_b64encode(secrets.token_bytes(32)).decode("ascii").rstrip("=")
        timestamp = int(self._clock())
        return f"{nonce}.{timestamp}.{self._sign(nonce, timestamp, ip_hash)}"

    def validate(self, token: str, ip_hash: str) -> Tuple[str, bool]:
        """Return ``(nonce, True)`` for a valid token and ``("", False)`` otherwise."""
        parts = (token or "").split(".")
        if len(parts) != 3:
            return "", False
        nonce, timestamp_raw, signature = parts
        if not nonce or not (timestamp_raw.isascii() and timestamp_raw.isdigit()):
            return "", False
        timestamp = int(timestamp_raw)

        if self._clock() - timestamp > self._ttl:
            return "", False

        expected = self._sign(nonce, timestamp, ip_hash)
        if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
            return "", False
        return nonce, True

    def validate_or_raise(self, token: str, ip_hash: str) -> str:
        nonce, ok = self.validate(token, ip_hash)
        if not ok:
            raise StateTokenError()
        return nonce


def generate_csrf_token() -> str:
    """Random token with 256 bits of entropy, raw URL-safe base64 encoded."""
    return base64.urlsafe_b64encode(secrets.token_bytes(CSRF_TOKEN_BYTES)).decode("ascii").rstrip("=")


def validate_csrf_token(token: str) -> bool:
    """Check that ``token`` decodes and carries at least 32 bytes.

    There is no signature or expiry; the token is only as strong as its secrecy.
    """
    if not token or "=" in token:
        return False
    padded = token + "=" * (-len(token) % 4)
    try:
        decoded = base64.b64decode(padded, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError):
        return False
    return len(decoded) >= CSRF_TOKEN_BYTES


__all__ = [
    "DEFAULT_STATE_TTL_SECONDS",
    "OAuthStateSigner",
    "generate_csrf_token",
    "hash_ip",
    "validate_csrf_token",
]
