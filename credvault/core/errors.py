"""Error taxonomy shared by the credential services."""

from __future__ import annotations

INVALID_CREDENTIALS = "Invalid credentials"
AUTHENTICATION_REQUIRED = "Authentication required"
INVALID_STATE = "Invalid state"


class CredentialError(Exception):
    """Base class for every error raised by the credential services."""


class ValidationError(CredentialError):
    """Required input was missing or empty; raised before any cryptographic work."""


class AuthenticationError(CredentialError):
    """The presented credential was not accepted.

    The message is always one of the generic constants above so that callers
    never learn why a credential was refused.
    """

    def __init__(self, message: str = INVALID_CREDENTIALS) -> None:
        super().__init__(message)


class RateLimitError(CredentialError):
    """The owner already holds the maximum number of active API keys."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"A maximum of {limit} active API keys is allowed.")
        self.limit = limit


class ServiceUnavailableError(CredentialError):
    """The external identity provider is unreachable or not configured."""


class StateTokenError(CredentialError):
    """The OAuth state token is invalid for any reason."""

    def __init__(self) -> None:
        super().__init__(INVALID_STATE)


__all__ = [
    "AUTHENTICATION_REQUIRED",
    "INVALID_CREDENTIALS",
    "INVALID_STATE",
    "AuthenticationError",
    "CredentialError",
    "RateLimitError",
    "ServiceUnavailableError",
    "StateTokenError",
    "ValidationError",
]
