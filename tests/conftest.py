"""
Pytest configuration and shared fixtures for SSO engine tests.

This module provides common fixtures used across all test files:
- A controllable clock
- RSA signing keys and ID token minting (PyJWT, independent of the engine)
- A fake identity provider served through httpx.MockTransport
- Provider and manager instances wired to the fake IdP
"""

import json
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

# Environment setup before any imports
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_LEVEL"] = "WARNING"

# Ensure project root is in path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sso_engine.auth.sso.config_store import InMemoryConfigStore  # noqa: E402
from sso_engine.auth.sso.manager import SSOManager  # noqa: E402
from sso_engine.auth.sso.providers import OktaProvider  # noqa: E402
from sso_engine.config import SSOSettings  # noqa: E402
from sso_engine.types.sso import ProviderConfig  # noqa: E402

CLIENT_ID = "client-abc"
CLIENT_SECRET = "s3cret-value"
OKTA_DOMAIN = "acme.okta.com"
OKTA_ISSUER = "https://acme.okta.com"
REDIRECT_URI = "https://app/callback"
NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable time source passed to components as `clock`."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records waits and advances a clock."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.calls: List[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds=seconds)


def make_rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def jwk_for(private_key: rsa.RSAPrivateKey, kid: str, **overrides: Any) -> Dict[str, Any]:
    """Public JWK for a key, as an IdP would publish it."""
    jwk = json.loads(RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk.update({"kid": kid, "use": "sig", "alg": "RS256"})
    jwk.update(overrides)
    return jwk


def mint_id_token(
    private_key: rsa.RSAPrivateKey,
    kid: Optional[str] = "key-1",
    now: datetime = NOW,
    **claims: Any,
) -> str:
    """
    Mint an RS256 ID token with sensible defaults.

    Pass a claim as None to leave it out.
    """
    payload = {
        "iss": OKTA_ISSUER,
        "sub": "user-42",
        "aud": CLIENT_ID,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=1)).timestamp()),
        "email": "user42@example.com",
    }
    payload.update(claims)
    payload = {k: v for k, v in payload.items() if v is not None}
    headers = {"kid": kid} if kid is not None else None
    return jwt.encode(payload, private_key, algorithm="RS256", headers=headers)


class FakeIdP:
    """
    In-process identity provider routed by URL path suffix.

    Token endpoint behaviour: queued responses in `token_queue` are served
    first; otherwise an authorization_code grant for `accepted_code` or any
    refresh_token grant returns `token_body()`, and anything else is
    rejected with invalid_grant.
    """

    def __init__(
        self,
        signing_key: rsa.RSAPrivateKey,
        issuer: str = OKTA_ISSUER,
        kid: str = "key-1",
    ):
        self.signing_key = signing_key
        self.issuer = issuer
        self.kid = kid
        self.jwks: Dict[str, Any] = {"keys": [jwk_for(signing_key, kid)]}
        self.userinfo: Dict[str, Any] = {
            "sub": "user-42",
            "email": "user42@example.com",
            "email_verified": True,
            "name": "User Forty-Two",
        }
        self.accepted_code = "code123"
        self.access_tokens = {"at-1", "at-2", "tok_1"}
        self.issue_id_token = True
        self.id_token_claims: Dict[str, Any] = {}
        self.token_queue: List[Tuple[int, Any]] = []
        self.device_response: Dict[str, Any] = {
            "device_code": "dev-code-1",
            "user_code": "WDJB-MJHT",
            "verification_uri": f"{issuer}/activate",
            "verification_uri_complete": f"{issuer}/activate?user_code=WDJB-MJHT",
            "expires_in": 600,
            "interval": 5,
        }
        self.discovery: Optional[Dict[str, Any]] = None
        self.requests: List[httpx.Request] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())

    def count(self, path_suffix: str) -> int:
        return sum(1 for r in self.requests if r.url.path.endswith(path_suffix))

    def last_request(self, path_suffix: str) -> httpx.Request:
        return [r for r in self.requests if r.url.path.endswith(path_suffix)][-1]

    @staticmethod
    def form(request: httpx.Request) -> Dict[str, str]:
        return dict(parse_qsl(request.content.decode("utf-8")))

    def mint(self, **claims: Any) -> str:
        claims.setdefault("iss", self.issuer)
        return mint_id_token(self.signing_key, self.kid, **claims)

    def token_body(self, **overrides: Any) -> Dict[str, Any]:
        body = {
            "access_token": "at-1",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "rt-1",
            "scope": "openid profile email",
        }
        if self.issue_id_token:
            body["id_token"] = self.mint(**self.id_token_claims)
        body.update(overrides)
        return body

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/.well-known/openid-configuration") and self.discovery:
            return httpx.Response(200, json=self.discovery)
        if path.endswith("/keys") or path.endswith("/certs"):
            return httpx.Response(200, json=self.jwks)
        if path.endswith("/userinfo") or path.endswith("/me"):
            scheme, _, token = request.headers.get("Authorization", "").partition(" ")
            if scheme != "Bearer" or token not in self.access_tokens:
                return httpx.Response(401, json={"error": "invalid_token"})
            return httpx.Response(200, json=self.userinfo)
        if path.endswith(("/device/authorize", "/devicecode", "/device/code")):
            return httpx.Response(200, json=self.device_response)
        if path.endswith("/token"):
            return self._token(request)
        return httpx.Response(404, json={"error": "not_found"})

    def _token(self, request: httpx.Request) -> httpx.Response:
        if self.token_queue:
            status, body = self.token_queue.pop(0)
            return httpx.Response(status, json=body)

        form = self.form(request)
        grant = form.get("grant_type")
        if grant == "authorization_code" and form.get("code") == self.accepted_code:
            return httpx.Response(200, json=self.token_body())
        if grant == "refresh_token":
            return httpx.Response(200, json=self.token_body(access_token="at-2"))
        return httpx.Response(
            400,
            json={"error": "invalid_grant", "error_description": "The authorization code is invalid"},
        )


@pytest.fixture(scope="session")
def signing_key():
    """RSA key the fake IdP signs ID tokens with."""
    return make_rsa_key()


@pytest.fixture(scope="session")
def other_key():
    """An unrelated RSA key, for forged signatures."""
    return make_rsa_key()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sso_settings():
    return SSOSettings(
        http_timeout_seconds=5.0,
        jwks_cache_ttl_seconds=3600,
        clock_skew_seconds=300,
        pending_auth_ttl_seconds=600,
    )


@pytest.fixture
def idp(signing_key):
    return FakeIdP(signing_key)


@pytest.fixture
def http_client(idp):
    return idp.client()


@pytest.fixture
def okta_config():
    return ProviderConfig(
        provider_id="okta",
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        issuer_base=OKTA_DOMAIN,
    )


@pytest.fixture
def okta_provider(okta_config, sso_settings, http_client, clock):
    return OktaProvider(
        okta_config,
        settings=sso_settings,
        http_client=http_client,
        clock=clock,
    )


@pytest.fixture
def manager(okta_config, sso_settings, http_client, clock):
    sso_manager = SSOManager(
        InMemoryConfigStore([okta_config]),
        settings=sso_settings,
        http_client=http_client,
        clock=clock,
    )
    sso_manager.load_providers([okta_config])
    return sso_manager
