"""
Application configuration models and helpers.

Centralizes settings management so the token services, the API key manager
and the OIDC bridge all receive their secrets and limits explicitly instead
of reading process-wide state.
"""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Annotated, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_SETTINGS_CONFIG = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
    populate_by_name=True,
)


class SecuritySettings(BaseSettings):
    """Signing secrets and token lifetimes."""

    model_config = _SETTINGS_CONFIG

    jwt_secret: str = Field(..., validation_alias="JWT_SECRET", min_length=1)
    jwt_algorithm: str = Field("HS256", validation_alias="JWT_ALGORITHM")
    csrf_secret: Optional[str] = Field(
        None,
        validation_alias="CSRF_SECRET",
        description="Secret for OAuth state signatures. Falls back to JWT_SECRET.",
    )
    access_token_ttl_seconds: int = Field(
        15 * 60, validation_alias="ACCESS_TOKEN_TTL_SECONDS", gt=0
    )
    refresh_token_ttl_seconds: int = Field(
        30 * 24 * 60 * 60, validation_alias="REFRESH_TOKEN_TTL_SECONDS", gt=0
    )
    oauth_state_ttl_seconds: int = Field(
        10 * 60, validation_alias="OAUTH_STATE_TTL_SECONDS", gt=0
    )

    @property
    def state_secret(self) -> str:
        return self.csrf_secret or self.jwt_secret

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(seconds=self.access_token_ttl_seconds)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(seconds=self.refresh_token_ttl_seconds)


class APIKeySettings(BaseSettings):
    """Limits for long-lived API keys."""

    model_config = _SETTINGS_CONFIG

    max_active_per_owner: int = Field(10, validation_alias="API_KEY_MAX_ACTIVE", gt=0)
    default_prefix: str = Field("sk_live", validation_alias="API_KEY_DEFAULT_PREFIX")
    usage_queue_size: int = Field(
        1000,
        validation_alias="API_KEY_USAGE_QUEUE_SIZE",
        gt=0,
        description="Upper bound on pending last-used updates.",
    )


class OIDCSettings(BaseSettings):
    """External OpenID Connect provider configuration."""

    model_config = _SETTINGS_CONFIG

    issuer_url: Optional[str] = Field(None, validation_alias="OIDC_ISSUER_URL")
    client_id: Optional[str] = Field(None, validation_alias="OIDC_CLIENT_ID")
    client_secret: Optional[str] = Field(
        None,
        validation_alias="OIDC_CLIENT_SECRET",
        description="Only required for confidential clients; PKCE is always used.",
    )
    redirect_uri: Optional[str] = Field(None, validation_alias="OIDC_REDIRECT_URI")
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        ("openid", "profile", "email"), validation_alias="OIDC_SCOPES"
    )
    http_timeout_seconds: float = Field(10.0, validation_alias="OIDC_HTTP_TIMEOUT", gt=0)
    jwks_cache_seconds: int = Field(300, validation_alias="OIDC_JWKS_CACHE_SECONDS")
    jwks_refetch_interval_seconds: int = Field(
        30,
        validation_alias="OIDC_JWKS_REFETCH_INTERVAL_SECONDS",
        ge=0,
        description="Minimum gap between JWKS fetches forced by an unknown key id.",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(scope.strip() for scope in value.split(",") if scope.strip())

    @property
    def is_configured(self) -> bool:
        return bool(self.issuer_url and self.client_id and self.redirect_uri)


class CookieSettings(BaseSettings):
    """Attributes applied to the access and refresh cookies."""

    model_config = _SETTINGS_CONFIG

    secure: bool = Field(True, validation_alias="COOKIE_SECURE")
    samesite: Literal["lax", "strict", "none"] = Field(
        "lax", validation_alias="COOKIE_SAMESITE"
    )
    domain: Optional[str] = Field(None, validation_alias="COOKIE_DOMAIN")


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = _SETTINGS_CONFIG

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    database_path: str = Field("data/credvault.db", validation_alias="CREDVAULT_DB_PATH")
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    api_keys: APIKeySettings = Field(default_factory=APIKeySettings)
    oidc: OIDCSettings = Field(default_factory=OIDCSettings)
    cookies: CookieSettings = Field(default_factory=CookieSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "APIKeySettings",
    "AppSettings",
    "CookieSettings",
    "OIDCSettings",
    "SecuritySettings",
    "get_settings",
]
