"""
FastAPI routes for managing the caller's API keys.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Response

from credvault.api.routes import http_error
from credvault.core.errors import RateLimitError, ValidationError
from credvault.dependencies import get_api_key_manager, get_current_principal
from credvault.schemas import APIKeyCreate, APIKeyCreated, APIKeyUpdate, APIKeyView
from credvault.services import AuthenticatedPrincipal

router = APIRouter(prefix="/api-keys")
logger = logging.getLogger(__name__)


def require_session_principal(
    principal: Annotated[AuthenticatedPrincipal, Depends(get_current_principal)],
) -> AuthenticatedPrincipal:
    """Key management needs a bearer session; an API key cannot mint more keys."""
    if principal.auth_via != "bearer":
        raise HTTPException(
            status_code=HTTPStatus.FORBIDDEN,
            detail="API keys cannot be managed with an API key.",
        )
    return principal


SessionPrincipal = Annotated[AuthenticatedPrincipal, Depends(require_session_principal)]


def _not_found() -> HTTPException:
    return HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="API key not found.")


@router.post("", status_code=HTTPStatus.CREATED, response_model=APIKeyCreated)
def create_api_key(
    payload: APIKeyCreate,
    principal: SessionPrincipal,
    manager: Annotated[Any, Depends(get_api_key_manager)],
) -> APIKeyCreated:
    """Create a key; the plaintext appears in this response and nowhere else."""
    try:
        record, plaintext = manager.create(
            user_id=principal.user_id,
            name=payload.name,
            permissions=payload.permissions,
            expires_at=payload.expires_at,
        )
    except (RateLimitError, ValidationError) as exc:
        raise http_error(exc) from exc
    return APIKeyCreated.from_created(record, plaintext)


@router.get("", response_model=list[APIKeyView])
def list_api_keys(
    principal: SessionPrincipal,
    manager: Annotated[Any, Depends(get_api_key_manager)],
) -> list[APIKeyView]:
    return [APIKeyView.from_record(record) for record in manager.list_keys(principal.user_id)]


@router.get("/{key_id}", response_model=APIKeyView)
def get_api_key(
    key_id: str,
    principal: SessionPrincipal,
    manager: Annotated[Any, Depends(get_api_key_manager)],
) -> APIKeyView:
    record = manager.get_key(principal.user_id, key_id)
    if record is None:
        raise _not_found()
    return APIKeyView.from_record(record)


@router.patch("/{key_id}", response_model=APIKeyView)
def update_api_key(
    key_id: str,
    payload: APIKeyUpdate,
    principal: SessionPrincipal,
    manager: Annotated[Any, Depends(get_api_key_manager)],
) -> APIKeyView:
    changes = payload.model_dump(exclude_unset=True)
    if any(changes.get(field, "") is None for field in ("name", "is_active")):
        raise http_error(ValidationError("name and isActive cannot be null."))
    try:
        record = manager.update_key(principal.user_id, key_id, **changes)
    except (RateLimitError, ValidationError) as exc:
        raise http_error(exc) from exc
    if record is None:
        raise _not_found()
    logger.info("Updated API key %s fields %s", key_id, sorted(changes))
    return APIKeyView.from_record(record)


@router.delete("/{key_id}", status_code=HTTPStatus.NO_CONTENT)
def delete_api_key(
    key_id: str,
    principal: SessionPrincipal,
    manager: Annotated[Any, Depends(get_api_key_manager)],
) -> Response:
    if not manager.delete_key(principal.user_id, key_id):
        raise _not_found()
    return Response(status_code=HTTPStatus.NO_CONTENT)


__all__ = ["router"]
