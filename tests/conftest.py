"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import json
import time
from types import SimpleNamespace

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from credvault.clients import SQLiteCredentialStore, SQLiteUserDirectory
from credvault.core.config import CookieSettings, OIDCSettings
from credvault.services import (
    APIKeyManager,
    AuthorizationCodeRegistry,
    CompositeAuthenticator,
    ExternalIdentityBridge,
    OAuthStateSigner,
    RefreshTokenStore,
    TokenIssuer,
    TokenVerifier,
    UsageRecorder,
)

SIGNING_SECRET = "unit-test-signing-secret"
ISSUER = "https://idp.example.com/realms/credvault"
CLIENT_ID = "credvault-web"
REDIRECT_URI = "https://app.example.com/auth/callback"


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


class FakeProvider:
    """In-memory OpenID provider served through ``httpx.MockTransport``."""

    issuer = ISSUER
    client_id = CLIENT_ID
    redirect_uri = REDIRECT_URI

    def __init__(self) -> None:
        self.keys = {"key-1": rsa.generate_private_key(public_exponent=65537, key_size=2048)}
        self.published = ["key-1"]
        self.signing_kid = "key-1"
        self.discovery_status = 200
        self.discovery_overrides: dict = {}
        self.token_status = 200
        self.claim_overrides: dict = {}
        self.requests: list[httpx.Request] = []

    def add_key(self, kid: str) -> None:
        self.keys[kid] = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.published.append(kid)

    def jwks(self) -> dict:
        keys = []
        for kid in self.published:
            jwk = json.loads(RSAAlgorithm.to_jwk(self.keys[kid].public_key()))
            jwk.update({"kid": kid, "alg": "RS256", "use": "sig"})
            keys.append(jwk)
        return {"keys": keys}

    def id_token(self, **overrides) -> str:
        now = int(time.time())
        claims = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "sub": "provider-subject-1",
            "iat": now,
            "exp": now + 300,
            "email": "ada@example.com",
            "email_verified": True,
            "name": "Ada Lovelace",
            "given_name": "Ada",
            "family_name": "Lovelace",
        }
        claims.update(self.claim_overrides)
        claims.update(overrides)
        return jwt.encode(
            claims,
            self.keys[self.signing_kid],
            algorithm="RS256",
            headers={"kid": self.signing_kid},
        )

    def requests_to(self, suffix: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path.endswith(suffix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/.well-known/openid-configuration"):
            document = {
                "issuer": ISSUER,
                "authorization_endpoint": f"{ISSUER}/protocol/openid-connect/auth",
                "token_endpoint": f"{ISSUER}/protocol/openid-connect/token",
                "jwks_uri": f"{ISSUER}/protocol/openid-connect/certs",
                "end_session_endpoint": f"{ISSUER}/protocol/openid-connect/logout",
            }
            document.update(self.discovery_overrides)
            document = {key: value for key, value in document.items() if value is not None}
            return httpx.Response(self.discovery_status, json=document)
        if path.endswith("/certs"):
            return httpx.Response(200, json=self.jwks())
        if path.endswith("/token"):
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(
                200,
                json={
                    "access_token": "provider-access-token",
                    "refresh_token": "provider-refresh-token",
                    "id_token": self.id_token(),
                    "token_type": "Bearer",
                    "expires_in": 300,
                },
            )
        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def oidc_settings(**overrides) -> OIDCSettings:
    values = {
        "issuer_url": ISSUER,
        "client_id": CLIENT_ID,
        "client_secret": None,
        "redirect_uri": REDIRECT_URI,
    }
    values.update(overrides)
    return OIDCSettings(**values)


@pytest.fixture
def make_oidc_settings():
    return oidc_settings


@pytest.fixture
def oidc_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def identity_bridge(oidc_provider) -> ExternalIdentityBridge:
    return ExternalIdentityBridge(oidc_settings(), transport=oidc_provider.transport())


@pytest.fixture
def credential_store(tmp_path) -> SQLiteCredentialStore:
    return SQLiteCredentialStore(str(tmp_path / "credentials.db"))


@pytest.fixture
def user_directory(tmp_path) -> SQLiteUserDirectory:
    return SQLiteUserDirectory(str(tmp_path / "users.db"))


@pytest.fixture
def token_issuer() -> TokenIssuer:
    return TokenIssuer(secret=SIGNING_SECRET)


@pytest.fixture
def token_verifier() -> TokenVerifier:
    return TokenVerifier(secret=SIGNING_SECRET)


@pytest.fixture
def refresh_store(credential_store, token_issuer, token_verifier) -> RefreshTokenStore:
    return RefreshTokenStore(
        store=credential_store, issuer=token_issuer, verifier=token_verifier
    )


@pytest.fixture
def usage_recorder(credential_store):
    recorder = UsageRecorder(credential_store.touch_api_key, maxsize=100)
    recorder.start()
    yield recorder
    recorder.stop()


@pytest.fixture
def api_key_manager(credential_store, usage_recorder) -> APIKeyManager:
    return APIKeyManager(store=credential_store, usage_recorder=usage_recorder)


@pytest.fixture
def authenticator(token_verifier, api_key_manager) -> CompositeAuthenticator:
    return CompositeAuthenticator.default(verifier=token_verifier, api_keys=api_key_manager)


@pytest.fixture
def services(
    credential_store,
    user_directory,
    token_issuer,
    token_verifier,
    refresh_store,
    usage_recorder,
    api_key_manager,
    authenticator,
    identity_bridge,
    oidc_provider,
):
    return SimpleNamespace(
        store=credential_store,
        directory=user_directory,
        issuer=token_issuer,
        verifier=token_verifier,
        refresh_store=refresh_store,
        usage=usage_recorder,
        api_keys=api_key_manager,
        authenticator=authenticator,
        bridge=identity_bridge,
        provider=oidc_provider,
        signer=OAuthStateSigner(SIGNING_SECRET),
        codes=AuthorizationCodeRegistry(),
        cookies=CookieSettings(secure=False),
    )


@pytest.fixture
def app(services):
    from credvault import dependencies
    from credvault.main import app as application

    application.dependency_overrides.update(
        {
            dependencies.get_refresh_token_store: lambda: services.refresh_store,
            dependencies.get_token_issuer: lambda: services.issuer,
            dependencies.get_token_verifier: lambda: services.verifier,
            dependencies.get_api_key_manager: lambda: services.api_keys,
            dependencies.get_authenticator: lambda: services.authenticator,
            dependencies.get_user_directory: lambda: services.directory,
            dependencies.get_identity_bridge: lambda: services.bridge,
            dependencies.get_oauth_state_signer: lambda: services.signer,
            dependencies.get_code_registry: lambda: services.codes,
            dependencies.get_cookie_settings: lambda: services.cookies,
        }
    )
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def call(app):
    """Send one request through a fresh client so no cookies carry over."""

    async def _call(method: str, url: str, **kwargs) -> httpx.Response:
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://testserver"
        ) as client:
            return await client.request(method, url, **kwargs)

    return _call
