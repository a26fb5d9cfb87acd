"""Schemas related to token refresh and the OIDC flow."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from credvault.models.credentials import ExternalTokenSet


class TokenPair(BaseModel):
    """Locally issued access and refresh tokens."""

    access: str
    refresh: str


class OAuthCallbackPayload(BaseModel):
    """Payload sent to complete the OIDC authorization code exchange."""

    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(..., description="Authorization code returned by the provider.")
    state: str = Field(..., description="Signed state token issued by the login endpoint.")
    code_verifier: str = Field(
        ...,
        alias="codeVerifier",
        description="PKCE verifier returned alongside the authorization URL.",
    )


class OIDCLogoutPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    post_logout_redirect_uri: Optional[str] = Field(None, alias="postLogoutRedirectUri")
    id_token: Optional[str] = Field(None, alias="idToken")


class ExternalTokens(BaseModel):
    """Provider tokens echoed back to the client after a successful callback."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., alias="accessToken")
    refresh_token: Optional[str] = Field(None, alias="refreshToken")
    id_token: Optional[str] = Field(None, alias="idToken")
    expires_in: Optional[int] = Field(None, alias="expiresIn")

    @classmethod
    def from_token_set(cls, tokens: ExternalTokenSet, id_token: str) -> "ExternalTokens":
        return cls(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            id_token=id_token,
            expires_in=tokens.expires_in,
        )


class FederatedLoginResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access: str
    refresh: str
    profile_complete: bool = Field(..., alias="profileComplete")
    external_tokens: Optional[ExternalTokens] = Field(
        None, alias="externalTokens"
    )


__all__ = [
    "ExternalTokens",
    "FederatedLoginResult",
    "OAuthCallbackPayload",
    "OIDCLogoutPayload",
    "TokenPair",
]
