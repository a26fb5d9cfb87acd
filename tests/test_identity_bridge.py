try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import base64
import hashlib
import time
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest

from credvault.clients.oidc import IDTokenVerifier, OIDCTokenValidationError
from credvault.core.errors import (
    AuthenticationError,
    ServiceUnavailableError,
    ValidationError,
)
from credvault.services.identity_bridge import (
    AuthorizationCodeRegistry,
    ExternalIdentityBridge,
    identity_from_claims,
)


def _challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


@pytest.mark.anyio
async def test_initialize_discovers_once(identity_bridge, oidc_provider):
    await identity_bridge.initialize()
    await identity_bridge.initialize()

    assert identity_bridge.initialized
    assert identity_bridge.metadata.issuer == oidc_provider.issuer
    assert len(oidc_provider.requests_to("/.well-known/openid-configuration")) == 1


@pytest.mark.anyio
async def test_unconfigured_bridge_is_unavailable(make_oidc_settings):
    bridge = ExternalIdentityBridge(make_oidc_settings(issuer_url=None))

    assert not bridge.configured
    with pytest.raises(ServiceUnavailableError):
        await bridge.initialize()


@pytest.mark.anyio
@pytest.mark.parametrize(
    "status, overrides",
    [
        (500, {}),
        (200, {"issuer": "https://evil.example.com"}),
        (200, {"jwks_uri": None}),
        (200, {"token_endpoint": None}),
    ],
)
async def test_bad_discovery_is_unavailable(identity_bridge, oidc_provider, status, overrides):
    oidc_provider.discovery_status = status
    oidc_provider.discovery_overrides = overrides

    with pytest.raises(ServiceUnavailableError):
        await identity_bridge.initialize()
    assert not identity_bridge.initialized


@pytest.mark.anyio
async def test_network_failure_is_unavailable(make_oidc_settings):
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    bridge = ExternalIdentityBridge(make_oidc_settings(), transport=httpx.MockTransport(refuse))

    with pytest.raises(ServiceUnavailableError):
        await bridge.initialize()


@pytest.mark.anyio
async def test_authorization_url_uses_pkce(identity_bridge, oidc_provider):
    url, verifier = await identity_bridge.build_authorization_url("state-123")

    parsed = urlparse(url)
    query = {key: values[0] for key, values in parse_qs(parsed.query).items()}
    assert url.startswith(f"{oidc_provider.issuer}/protocol/openid-connect/auth?")
    assert query["client_id"] == oidc_provider.client_id
    assert query["redirect_uri"] == oidc_provider.redirect_uri
    assert query["response_type"] == "code"
    assert query["scope"] == "openid profile email"
    assert query["state"] == "state-123"
    assert query["code_challenge_method"] == "S256"
    assert query["code_challenge"] == _challenge(verifier)
    assert len(verifier) >= 43


@pytest.mark.anyio
async def test_exchange_code_returns_tokens_and_identity(identity_bridge, oidc_provider):
    _, verifier = await identity_bridge.build_authorization_url("state")

    tokens, identity, raw_id_token = await identity_bridge.exchange_code("auth-code", verifier)

    assert tokens.access_token == "provider-access-token"
    assert tokens.refresh_token == "provider-refresh-token"
    assert raw_id_token == tokens.id_token
    assert identity.subject == "provider-subject-1"
    assert identity.email == "ada@example.com"
    assert identity.email_verified is True
    assert (identity.given_name, identity.family_name) == ("Ada", "Lovelace")

    (token_request,) = oidc_provider.requests_to("/token")
    form = parse_qs(token_request.content.decode())
    assert form["grant_type"] == ["authorization_code"]
    assert form["code"] == ["auth-code"]
    assert form["code_verifier"] == [verifier]


@pytest.mark.anyio
async def test_confidential_client_uses_basic_auth(make_oidc_settings, oidc_provider):
    bridge = ExternalIdentityBridge(
        make_oidc_settings(client_secret="s3cret"), transport=oidc_provider.transport()
    )

    await bridge.exchange_code("auth-code", "verifier")

    (token_request,) = oidc_provider.requests_to("/token")
    assert token_request.headers["authorization"].startswith("Basic ")


@pytest.mark.anyio
async def test_rejected_code_is_an_authentication_error(identity_bridge, oidc_provider):
    oidc_provider.token_status = 400

    with pytest.raises(AuthenticationError):
        await identity_bridge.exchange_code("bad-code", "verifier")


@pytest.mark.anyio
async def test_provider_error_during_exchange_is_unavailable(identity_bridge, oidc_provider):
    oidc_provider.token_status = 502

    with pytest.raises(ServiceUnavailableError):
        await identity_bridge.exchange_code("auth-code", "verifier")


@pytest.mark.anyio
async def test_exchange_requires_code_and_verifier(identity_bridge):
    with pytest.raises(ValidationError):
        await identity_bridge.exchange_code("", "verifier")
    with pytest.raises(ValidationError):
        await identity_bridge.exchange_code("code", "")


@pytest.mark.anyio
async def test_id_token_for_other_audience_is_rejected(identity_bridge, oidc_provider):
    oidc_provider.claim_overrides = {"aud": "some-other-client"}

    with pytest.raises(AuthenticationError):
        await identity_bridge.exchange_code("auth-code", "verifier")


@pytest.mark.anyio
async def test_verify_bearer_token(identity_bridge, oidc_provider):
    identity = await identity_bridge.verify_bearer_token(oidc_provider.id_token())

    assert identity.subject == "provider-subject-1"


@pytest.mark.anyio
@pytest.mark.parametrize(
    "overrides",
    [
        {"exp": int(time.time()) - 600},
        {"iss": "https://other-issuer.example.com"},
        {"aud": "another-client"},
    ],
)
async def test_invalid_bearer_tokens_are_rejected(identity_bridge, oidc_provider, overrides):
    with pytest.raises(AuthenticationError):
        await identity_bridge.verify_bearer_token(oidc_provider.id_token(**overrides))


@pytest.mark.anyio
async def test_tampered_bearer_token_is_rejected(identity_bridge, oidc_provider):
    header, payload, signature = oidc_provider.id_token().split(".")
    flipped = ("A" if signature[0] != "A" else "B") + signature[1:]

    with pytest.raises(AuthenticationError):
        await identity_bridge.verify_bearer_token(f"{header}.{payload}.{flipped}")


@pytest.mark.anyio
async def test_unknown_key_id_triggers_one_refetch(make_oidc_settings, oidc_provider):
    bridge = ExternalIdentityBridge(
        make_oidc_settings(jwks_refetch_interval_seconds=0),
        transport=oidc_provider.transport(),
    )
    await bridge.verify_bearer_token(oidc_provider.id_token())
    assert len(oidc_provider.requests_to("/certs")) == 1

    oidc_provider.add_key("key-2")
    oidc_provider.signing_kid = "key-2"
    identity = await bridge.verify_bearer_token(oidc_provider.id_token())

    assert identity.subject == "provider-subject-1"
    assert len(oidc_provider.requests_to("/certs")) == 2

    await bridge.verify_bearer_token(oidc_provider.id_token())
    assert len(oidc_provider.requests_to("/certs")) == 2


@pytest.mark.anyio
async def test_unknown_key_ids_refetch_at_most_once_per_interval(oidc_provider):
    now = [0.0]
    fetches = []

    async def load_jwks() -> dict:
        fetches.append(now[0])
        return oidc_provider.jwks()

    verifier = IDTokenVerifier(
        issuer=oidc_provider.issuer,
        client_id=oidc_provider.client_id,
        jwks_loader=load_jwks,
        refetch_interval_seconds=30,
        clock=lambda: now[0],
    )
    await verifier.verify(oidc_provider.id_token())
    forged = [
        jwt.encode(
            {"sub": "attacker"},
            oidc_provider.keys["key-1"],
            algorithm="RS256",
            headers={"kid": f"forged-{index}"},
        )
        for index in range(5)
    ]

    now[0] = 31.0
    for token in forged:
        with pytest.raises(OIDCTokenValidationError):
            await verifier.verify(token)
    assert fetches == [0.0, 31.0]

    now[0] = 50.0
    with pytest.raises(OIDCTokenValidationError):
        await verifier.verify(forged[0])
    assert len(fetches) == 2

    now[0] = 62.0
    with pytest.raises(OIDCTokenValidationError):
        await verifier.verify(forged[1])
    assert fetches == [0.0, 31.0, 62.0]


@pytest.mark.anyio
async def test_token_signed_with_unpublished_key_is_rejected(identity_bridge, oidc_provider):
    oidc_provider.add_key("rogue")
    oidc_provider.published.remove("rogue")
    oidc_provider.signing_kid = "rogue"

    with pytest.raises(AuthenticationError):
        await identity_bridge.verify_bearer_token(oidc_provider.id_token())


@pytest.mark.anyio
async def test_logout_url_encodes_present_parameters(identity_bridge, oidc_provider):
    url = await identity_bridge.build_logout_url(
        "https://app.example.com/signed-out?from=menu", "id.token.value"
    )

    parsed = urlparse(url)
    assert url.startswith(f"{oidc_provider.issuer}/protocol/openid-connect/logout?")
    assert parse_qs(parsed.query) == {
        "post_logout_redirect_uri": ["https://app.example.com/signed-out?from=menu"],
        "id_token_hint": ["id.token.value"],
    }
    assert await identity_bridge.build_logout_url() == (
        f"{oidc_provider.issuer}/protocol/openid-connect/logout"
    )
    only_hint = await identity_bridge.build_logout_url(None, "hint")
    assert "post_logout_redirect_uri" not in only_hint


@pytest.mark.anyio
async def test_logout_url_falls_back_without_end_session_endpoint(
    identity_bridge, oidc_provider
):
    oidc_provider.discovery_overrides = {"end_session_endpoint": None}

    url = await identity_bridge.build_logout_url("https://app.example.com/")

    assert url == (
        f"{oidc_provider.issuer}/protocol/openid-connect/logout"
        "?post_logout_redirect_uri=https%3A%2F%2Fapp.example.com%2F"
    )


def test_identity_from_claims_defaults():
    identity = identity_from_claims({"sub": "abc"})

    assert identity.subject == "abc"
    assert identity.email == ""
    assert identity.email_verified is False


def test_code_registry_accepts_each_code_once():
    registry = AuthorizationCodeRegistry()

    assert registry.claim("code-1") is True
    assert registry.claim("code-1") is False
    assert registry.claim("code-2") is True


def test_code_registry_forgets_codes_after_window():
    now = [0.0]
    registry = AuthorizationCodeRegistry(window_seconds=3600, clock=lambda: now[0])

    registry.claim("code-1")
    now[0] = 3601.0

    assert registry.claim("code-1") is True
    assert len(registry) == 1


@pytest.mark.parametrize(
    "value, expected",
    [
        (True, True),
        ("true", True),
        ("TRUE", True),
        (False, False),
        ("false", False),
        ("False", False),
        ("yes", False),
        ("", False),
        (1, False),
        (None, False),
    ],
)
def test_email_verified_claim_parsing(value, expected):
    identity = identity_from_claims(
        {"sub": "abc", "email": "grace@example.com", "email_verified": value}
    )

    assert identity.email_verified is expected


def test_code_registry_release_allows_code_again():
    registry = AuthorizationCodeRegistry()
    registry.claim("code-1")

    registry.release("code-1")
    registry.release("never-claimed")

    assert registry.claim("code-1") is True
