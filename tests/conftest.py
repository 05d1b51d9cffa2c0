"""Pytest configuration and fixtures."""

import json
import time
from collections.abc import Callable, Generator
from typing import Any
from urllib.parse import parse_qsl

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from flask import Flask
from flask.testing import FlaskClient
from jwt.algorithms import RSAAlgorithm

from oidc_gate.app import create_app
from oidc_gate.core.config import AppConfig, RelyingPartySettings
from oidc_gate.core.oidc.discovery import ProviderMetadata

ISSUER = "https://idp.example/realms/r1"
CLIENT_ID = "app1"
KEY_ID = "test-key"

TokenFactory = Callable[..., str]


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    """Provider signing key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_private_key() -> rsa.RSAPrivateKey:
    """A key the provider does not publish."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def jwks(rsa_private_key: rsa.RSAPrivateKey) -> dict[str, Any]:
    """Provider JWKS document."""
    jwk = json.loads(RSAAlgorithm.to_jwk(rsa_private_key.public_key()))
    jwk.update({"kid": KEY_ID, "use": "sig", "alg": "RS256"})
    return {"keys": [jwk]}


@pytest.fixture
def discovery_document() -> dict[str, Any]:
    """Keycloak-style discovery document."""
    base = f"{ISSUER}/protocol/openid-connect"
    return {
        "issuer": ISSUER,
        "authorization_endpoint": f"{base}/auth",
        "token_endpoint": f"{base}/token",
        "userinfo_endpoint": f"{base}/userinfo",
        "end_session_endpoint": f"{base}/logout",
        "jwks_uri": f"{base}/certs",
        "scopes_supported": ["openid", "phone", "profile", "email", "address", "offline_access"],
    }


@pytest.fixture
def provider_metadata(discovery_document: dict[str, Any], jwks: dict[str, Any]) -> ProviderMetadata:
    """Parsed provider metadata."""
    return ProviderMetadata.from_config(discovery_document, jwks)


@pytest.fixture
def settings() -> RelyingPartySettings:
    """Relying-party settings matching the test provider."""
    return RelyingPartySettings(
        issuer_url=ISSUER,
        client_id=CLIENT_ID,
        client_secret="s3cret",
        realm_admin_role="Admin",
        realm_access_roles="user,admin",
    )


@pytest.fixture
def make_token(rsa_private_key: rsa.RSAPrivateKey) -> TokenFactory:
    """Mint signed tokens.

    Claims passed as None are removed from the defaults.
    """

    def _make(
        claims: dict[str, Any] | None = None,
        key: Any = None,
        kid: str | None = KEY_ID,
        algorithm: str = "RS256",
    ) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "sub": "user-1",
            "iat": now,
            "exp": now + 300,
        }
        for name, value in (claims or {}).items():
            if value is None:
                payload.pop(name, None)
            else:
                payload[name] = value
        headers = {"kid": kid} if kid else None
        return jwt.encode(payload, key or rsa_private_key, algorithm=algorithm, headers=headers)

    return _make


@pytest.fixture
def make_access_token(make_token: TokenFactory) -> Callable[..., str]:
    """Mint an access token carrying realm roles."""

    def _make(roles: list[str] | None = None, **claims: Any) -> str:
        if roles is not None:
            claims["realm_access"] = {"roles": roles}
        claims.setdefault("aud", "account")
        return make_token(claims)

    return _make


class FakeProvider:
    """In-memory OIDC provider served through httpx.MockTransport."""

    def __init__(self, discovery: dict[str, Any], jwks: dict[str, Any]) -> None:
        self.discovery = discovery
        self.jwks = jwks
        self.token_responses: list[tuple[int, Any]] = []
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url.endswith("/.well-known/openid-configuration"):
            return httpx.Response(200, json=self.discovery)
        if url == self.discovery.get("jwks_uri"):
            return httpx.Response(200, json=self.jwks)
        if url == self.discovery.get("token_endpoint"):
            if not self.token_responses:
                return httpx.Response(500, json={"error": "server_error"})
            status, body = self.token_responses.pop(0)
            return httpx.Response(status, json=body)
        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def token_requests(self) -> list[dict[str, str]]:
        """Form bodies posted to the token endpoint."""
        return [
            dict(parse_qsl(r.content.decode()))
            for r in self.requests
            if str(r.url) == self.discovery.get("token_endpoint")
        ]

    def count(self, suffix: str) -> int:
        return sum(1 for r in self.requests if str(r.url).endswith(suffix))


@pytest.fixture
def provider(discovery_document: dict[str, Any], jwks: dict[str, Any]) -> FakeProvider:
    """Fake provider endpoints."""
    return FakeProvider(discovery_document, jwks)


@pytest.fixture
def app(settings: RelyingPartySettings, provider: FakeProvider) -> Generator[Flask, None, None]:
    """Create application for testing against the fake provider."""
    provisioned: list[dict[str, Any]] = []
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key",
        },
        app_config=AppConfig(relying_party=settings),
        provisioner=provisioned.append,
        transport=provider.transport,
    )
    app.config["PROVISIONED"] = provisioned
    yield app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()
