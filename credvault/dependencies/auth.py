"""Request authentication as a FastAPI dependency."""

from http import HTTPStatus
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from credvault.core.errors import AuthenticationError
from credvault.services import AuthenticatedPrincipal, CompositeAuthenticator

from .clients import get_authenticator


def get_current_principal(
    request: Request,
    authenticator: Annotated[CompositeAuthenticator, Depends(get_authenticator)],
) -> AuthenticatedPrincipal:
    """Resolve the caller or answer 401 with a bearer challenge."""
    try:
        return authenticator.authenticate(request.headers, request.cookies)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


PrincipalDependency = Depends(get_current_principal)

__all__ = ["PrincipalDependency", "get_current_principal"]
