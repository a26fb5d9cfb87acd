"""Expose dependency helpers for FastAPI routers."""

from .auth import PrincipalDependency, get_current_principal
from .clients import (
    get_api_key_manager,
    get_authenticator,
    get_code_registry,
    get_credential_store,
    get_identity_bridge,
    get_oauth_state_signer,
    get_refresh_token_store,
    get_token_issuer,
    get_token_verifier,
    get_usage_recorder,
    get_user_directory,
)
from .config import SettingsDependency, get_app_settings, get_cookie_settings

__all__ = [
    "PrincipalDependency",
    "SettingsDependency",
    "get_api_key_manager",
    "get_app_settings",
    "get_authenticator",
    "get_code_registry",
    "get_cookie_settings",
    "get_credential_store",
    "get_current_principal",
    "get_identity_bridge",
    "get_oauth_state_signer",
    "get_refresh_token_store",
    "get_token_issuer",
    "get_token_verifier",
    "get_usage_recorder",
    "get_user_directory",
]
