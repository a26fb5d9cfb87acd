"""
Signed access and refresh tokens.

Both token kinds share one HMAC-signed JWT primitive and differ only in
lifetime and in the ``typ`` claim. Issuing and verifying never touch storage.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Literal

import jwt

from credvault.core.errors import AuthenticationError, ValidationError

logger = logging.getLogger(__name__)

TokenType = Literal["access", "refresh"]

_REQUIRED_CLAIMS = ["sub", "exp", "iat", "jti"]


class TokenIssuer:
    """Mint signed tokens for an identified subject."""

    def __init__(
        self,
        *,
        secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=30),
    ) -> None:
        if not secret:
            raise ValueError("Token signing secret must be provided.")
        self._secret = secret
        self._algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def issue(self, user_id: str, ttl: timedelta, token_type: TokenType = "access") -> str:
        """Return a token for ``user_id`` that expires after ``ttl``."""
        if not user_id or not user_id.strip():
            raise ValidationError("Cannot issue a token for an empty user id.")

        now = datetime.now(timezone.utc)
        claims = {
            "sub": user_id,
            "jti": secrets.token_urlsafe(32),
            "typ": token_type,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def issue_access(self, user_id: str) -> str:
        return self.issue(user_id, self.access_ttl, "access")

    def issue_refresh(self, user_id: str) -> str:
        return self.issue(user_id, self.refresh_ttl, "refresh")


class TokenVerifier:
    """Verify tokens minted by :class:`TokenIssuer` and return their subject."""

    def __init__(self, *, secret: str, algorithm: str = "HS256", leeway: int = 0) -> None:
        if not secret:
            raise ValueError("Token signing secret must be provided.")
        self._secret = secret
        self._algorithm = algorithm
        self._leeway = leeway

    def verify(self, token: str, token_type: TokenType = "access") -> str:
        """Return the user id carried by ``token``.

        Every failure raises the same :class:`AuthenticationError`; the cause is
        only logged.
        """
        if not token:
            raise AuthenticationError()
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                leeway=self._leeway,
                options={"require": _REQUIRED_CLAIMS},
            )
        except jwt.PyJWTError as exc:
            logger.debug("Rejected %s token: %s", token_type, exc.__class__.__name__)
            raise AuthenticationError() from None

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            logger.debug("Rejected %s token: missing subject", token_type)
            raise AuthenticationError()
        if claims.get("typ") != token_type:
            logger.debug("Rejected token: expected %s, got %r", token_type, claims.get("typ"))
            raise AuthenticationError()
        return subject


__all__ = ["TokenIssuer", "TokenType", "TokenVerifier"]
