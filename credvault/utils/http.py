"""HTTP request helpers shared by the auth routes."""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from credvault.models.credentials import DeviceInfo

REFRESH_TOKEN_COOKIE = "refresh_token"
REFRESH_TOKEN_HEADER = "x-refresh-token"


def _strip_port(address: str) -> str:
    address = address.strip()
    if address.startswith("["):
        # [ipv6]:port
        return address[1:].split("]", 1)[0]
    if address.count(":") == 1:
        return address.split(":", 1)[0]
    return address


def client_ip(request: Request) -> str:
    """Best-effort client address, honoring proxy headers first."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return _strip_port(first)
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return _strip_port(real_ip)
    if request.client and request.client.host:
        return _strip_port(request.client.host)
    return "Unknown"


def device_info(request: Request) -> DeviceInfo:
    return DeviceInfo(
        user_agent=request.headers.get("user-agent") or "Unknown",
        ip_address=client_ip(request),
    )


def refresh_credential(request: Request) -> Optional[str]:
    """Locate a refresh token on the request.

    Checked in order: the ``X-Refresh-Token`` header, the raw ``Authorization``
    header (a ``Bearer`` prefix is tolerated), then the ``refresh_token``
    cookie.
    """
    header_value = request.headers.get(REFRESH_TOKEN_HEADER)
    if header_value and header_value.strip():
        return header_value.strip()

    authorization = request.headers.get("authorization")
    if authorization and authorization.strip():
        value = authorization.strip()
        if value[:7].lower() == "bearer ":
            value = value[7:].strip()
        if value:
            return value

    cookie_value = request.cookies.get(REFRESH_TOKEN_COOKIE)
    if cookie_value:
        return cookie_value
    return None


__all__ = [
    "REFRESH_TOKEN_COOKIE",
    "REFRESH_TOKEN_HEADER",
    "client_ip",
    "device_info",
    "refresh_credential",
]
