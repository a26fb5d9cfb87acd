"""
FastAPI routes for session tokens and OIDC federation.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from credvault.core.config import CookieSettings
from credvault.core.errors import (
    AuthenticationError,
    CredentialError,
    RateLimitError,
    ServiceUnavailableError,
    StateTokenError,
    ValidationError,
)
from credvault.dependencies import (
    get_code_registry,
    get_cookie_settings,
    get_current_principal,
    get_identity_bridge,
    get_oauth_state_signer,
    get_refresh_token_store,
    get_token_issuer,
    get_token_verifier,
    get_user_directory,
)
from credvault.models.credentials import FederatedIdentity
from credvault.schemas import (
    ExternalTokens,
    FederatedLoginResult,
    OAuthCallbackPayload,
    OIDCLogoutPayload,
    TokenPair,
)
from credvault.services import AuthenticatedPrincipal, TokenIssuer
from credvault.services.authenticator import ACCESS_TOKEN_COOKIE
from credvault.services.oauth_state import generate_csrf_token, hash_ip
from credvault.utils.http import (
    REFRESH_TOKEN_COOKIE,
    client_ip,
    device_info,
    refresh_credential,
)

router = APIRouter()
logger = logging.getLogger(__name__)

_ERROR_STATUS: tuple[tuple[type[CredentialError], HTTPStatus], ...] = (
    (ValidationError, HTTPStatus.UNPROCESSABLE_ENTITY),
    (AuthenticationError, HTTPStatus.UNAUTHORIZED),
    (RateLimitError, HTTPStatus.TOO_MANY_REQUESTS),
    (ServiceUnavailableError, HTTPStatus.SERVICE_UNAVAILABLE),
    (StateTokenError, HTTPStatus.BAD_REQUEST),
)


def http_error(exc: CredentialError) -> HTTPException:
    """Translate a credential error into the matching ``HTTPException``."""
    for error_type, status in _ERROR_STATUS:
        if isinstance(exc, error_type):
            headers = (
                {"WWW-Authenticate": "Bearer"}
                if status == HTTPStatus.UNAUTHORIZED
                else None
            )
            return HTTPException(status_code=status, detail=str(exc), headers=headers)
    return HTTPException(status_code=HTTPStatus.INTERNAL_SERVER_ERROR, detail=str(exc))


def set_token_cookies(
    response: Response,
    cookies: CookieSettings,
    issuer: TokenIssuer,
    *,
    access: str,
    refresh: str,
) -> None:
    for name, value, lifetime in (
        (ACCESS_TOKEN_COOKIE, access, issuer.access_ttl),
        (REFRESH_TOKEN_COOKIE, refresh, issuer.refresh_ttl),
    ):
        response.set_cookie(
            name,
            value,
            max_age=int(lifetime.total_seconds()),
            path="/",
            domain=cookies.domain,
            secure=cookies.secure,
            httponly=True,
            samesite=cookies.samesite,
        )


def clear_token_cookies(response: Response, cookies: CookieSettings) -> None:
    for name in (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE):
        response.set_cookie(
            name,
            "",
            max_age=-1,
            path="/",
            domain=cookies.domain,
            secure=cookies.secure,
            httponly=True,
            samesite=cookies.samesite,
        )


def _revoke_presented_sessions(request: Request, verifier: Any, refresh_store: Any) -> None:
    """Revoke every refresh row of the owner of a valid presented refresh token."""
    presented = refresh_credential(request)
    if not presented:
        return
    try:
        user_id = verifier.verify(presented, "refresh")
    except AuthenticationError:
        logger.debug("Ignoring invalid refresh credential on logout")
        return
    refresh_store.revoke_all(user_id)


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.post("/auth/refresh", response_model=TokenPair)
def refresh_session(
    request: Request,
    response: Response,
    refresh_store: Annotated[Any, Depends(get_refresh_token_store)],
    issuer: Annotated[Any, Depends(get_token_issuer)],
    cookies: Annotated[CookieSettings, Depends(get_cookie_settings)],
) -> TokenPair:
    """Rotate the presented refresh token and mint a new access token."""
    presented = refresh_credential(request)
    if not presented:
        raise http_error(AuthenticationError())
    try:
        user_id, new_refresh = refresh_store.rotate(presented, device_info(request))
    except AuthenticationError as exc:
        raise http_error(exc) from exc

    access = issuer.issue_access(user_id)
    set_token_cookies(response, cookies, issuer, access=access, refresh=new_refresh)
    return TokenPair(access=access, refresh=new_refresh)


@router.post("/auth/logout", status_code=HTTPStatus.NO_CONTENT)
def logout(
    request: Request,
    refresh_store: Annotated[Any, Depends(get_refresh_token_store)],
    verifier: Annotated[Any, Depends(get_token_verifier)],
    cookies: Annotated[CookieSettings, Depends(get_cookie_settings)],
) -> Response:
    """Revoke the caller's refresh tokens when identifiable; always succeeds."""
    _revoke_presented_sessions(request, verifier, refresh_store)
    response = Response(status_code=HTTPStatus.NO_CONTENT)
    clear_token_cookies(response, cookies)
    return response


@router.get("/auth/me")
async def whoami(
    principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
) -> dict:
    return {
        "userId": principal.user_id,
        "authVia": principal.auth_via,
        "permissions": sorted(principal.permissions),
        "apiKeyId": principal.api_key_id,
    }


@router.get("/auth/sessions")
def list_sessions(
    principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
    refresh_store: Annotated[Any, Depends(get_refresh_token_store)],
) -> list[dict]:
    return [
        {
            "id": record.id,
            "userAgent": record.user_agent,
            "ipAddress": record.ip_address,
            "createdAt": record.created_at.isoformat(),
            "expiresAt": record.expires_at.isoformat(),
        }
        for record in refresh_store.list_sessions(principal.user_id)
    ]


@router.delete("/auth/sessions/{session_id}", status_code=HTTPStatus.NO_CONTENT)
def delete_session(
    session_id: str,
    principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
    refresh_store: Annotated[Any, Depends(get_refresh_token_store)],
) -> Response:
    if not refresh_store.delete_session(principal.user_id, session_id):
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="Session not found.")
    return Response(status_code=HTTPStatus.NO_CONTENT)


@router.get("/auth/csrf")
async def issue_csrf_token() -> dict:
    return {"csrfToken": generate_csrf_token()}


# OIDC federation


def _issue_local_session(
    request: Request,
    response: Response,
    identity: FederatedIdentity,
    *,
    directory: Any,
    issuer: TokenIssuer,
    refresh_store: Any,
    cookies: CookieSettings,
    external_tokens: ExternalTokens | None = None,
) -> FederatedLoginResult:
    user = directory.find_or_create_from_identity(identity)
    access = issuer.issue_access(user.id)
    refresh = refresh_store.issue(user.id, device_info(request))
    set_token_cookies(response, cookies, issuer, access=access, refresh=refresh)
    logger.info("Federated login for user %s (subject %s)", user.id, identity.subject)
    return FederatedLoginResult(
        access=access,
        refresh=refresh,
        profile_complete=user.profile_complete,
        external_tokens=external_tokens,
    )


@router.get("/auth/oidc/login")
async def start_oidc_login(
    request: Request,
    bridge: Annotated[Any, Depends(get_identity_bridge)],
    signer: Annotated[Any, Depends(get_oauth_state_signer)],
) -> dict:
    """Issue a signed state and the provider authorization URL."""
    state = signer.generate(hash_ip(client_ip(request)))
    try:
        authorization_url, code_verifier = await bridge.build_authorization_url(state)
    except ServiceUnavailableError as exc:
        raise http_error(exc) from exc
    return {
        "authorizationURL": authorization_url,
        "state": state,
        "codeVerifier": code_verifier,
    }


@router.post(
    "/auth/oidc/callback",
    response_model=FederatedLoginResult,
    response_model_by_alias=True,
)
async def complete_oidc_login(
    payload: OAuthCallbackPayload,
    request: Request,
    response: Response,
    bridge: Annotated[Any, Depends(get_identity_bridge)],
    signer: Annotated[Any, Depends(get_oauth_state_signer)],
    code_registry: Annotated[Any, Depends(get_code_registry)],
    directory: Annotated[Any, Depends(get_user_directory)],
    issuer: Annotated[Any, Depends(get_token_issuer)],
    refresh_store: Annotated[Any, Depends(get_refresh_token_store)],
    cookies: Annotated[CookieSettings, Depends(get_cookie_settings)],
) -> FederatedLoginResult:
    """Validate state, redeem the code once and open a local session."""
    try:
        signer.validate_or_raise(payload.state, hash_ip(client_ip(request)))
    except StateTokenError as exc:
        logger.info("Rejected OIDC callback with an invalid state")
        raise http_error(exc) from exc

    if not code_registry.claim(payload.code):
        logger.warning("Authorization code presented more than once")
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Authorization code has already been used.",
        )

    try:
        tokens, identity, raw_id_token = await bridge.exchange_code(
            payload.code, payload.code_verifier
        )
    except ServiceUnavailableError as exc:
        # The provider never consumed the code, so the client may retry it.
        code_registry.release(payload.code)
        raise http_error(exc) from exc
    except (ValidationError, AuthenticationError) as exc:
        raise http_error(exc) from exc

    return _issue_local_session(
        request,
        response,
        identity,
        directory=directory,
        issuer=issuer,
        refresh_store=refresh_store,
        cookies=cookies,
        external_tokens=ExternalTokens.from_token_set(tokens, raw_id_token),
    )


@router.post(
    "/auth/oidc/validate",
    response_model=FederatedLoginResult,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def validate_provider_token(
    request: Request,
    response: Response,
    bridge: Annotated[Any, Depends(get_identity_bridge)],
    directory: Annotated[Any, Depends(get_user_directory)],
    issuer: Annotated[Any, Depends(get_token_issuer)],
    refresh_store: Annotated[Any, Depends(get_refresh_token_store)],
    cookies: Annotated[CookieSettings, Depends(get_cookie_settings)],
) -> FederatedLoginResult:
    """Exchange a provider-issued bearer token for a local token pair."""
    authorization = request.headers.get("authorization", "")
    if not authorization.startswith("Bearer ") or not authorization[7:].strip():
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Missing or invalid Authorization header.",
        )
    try:
        identity = await bridge.verify_bearer_token(authorization[7:].strip())
    except (AuthenticationError, ServiceUnavailableError) as exc:
        raise http_error(exc) from exc

    return _issue_local_session(
        request,
        response,
        identity,
        directory=directory,
        issuer=issuer,
        refresh_store=refresh_store,
        cookies=cookies,
    )


@router.post("/auth/oidc/logout")
async def oidc_logout(
    payload: OIDCLogoutPayload,
    request: Request,
    response: Response,
    bridge: Annotated[Any, Depends(get_identity_bridge)],
    refresh_store: Annotated[Any, Depends(get_refresh_token_store)],
    verifier: Annotated[Any, Depends(get_token_verifier)],
    cookies: Annotated[CookieSettings, Depends(get_cookie_settings)],
) -> dict:
    """Return the provider end-session URL and end local sessions."""
    try:
        logout_url = await bridge.build_logout_url(
            payload.post_logout_redirect_uri, payload.id_token
        )
    except ServiceUnavailableError as exc:
        raise http_error(exc) from exc

    _revoke_presented_sessions(request, verifier, refresh_store)
    clear_token_cookies(response, cookies)
    return {"logoutURL": logout_url}


__all__ = ["clear_token_cookies", "http_error", "router", "set_token_cookies"]
