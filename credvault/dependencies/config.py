"""
FastAPI dependency utilities for injecting configuration.
"""

from typing import Annotated

from fastapi import Depends

from credvault.core.config import AppSettings, CookieSettings, get_settings


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning the process-wide settings."""
    return get_settings()


SettingsDependency = Depends(get_app_settings)


def get_cookie_settings(
    settings: Annotated[AppSettings, SettingsDependency],
) -> CookieSettings:
    return settings.cookies


__all__ = ["SettingsDependency", "get_app_settings", "get_cookie_settings"]
