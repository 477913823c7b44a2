"""
SSO (Single Sign-On) Authentication Module.

This module provides the relying-party side of OAuth2 / OpenID Connect:
- Authorization code flow with PKCE (browser redirect)
- Device authorization flow (headless clients)
- ID token verification against the provider's published JWKS

Security Architecture:
- Every ID token is checked for signature, expiry, issuer, audience and nonce
- Authorization states and device codes are single use
- Signing keys are cached for a bounded time and refetched on a kid miss

Usage:
    from sso_engine.auth.sso import DevicePoller, InMemoryConfigStore, SSOManager

    manager = SSOManager(InMemoryConfigStore([okta_config]))
    await manager.init()

    url = await manager.start_authorization_flow("okta", "https://app/callback")
    result = await manager.handle_callback(state, code)

    session = await manager.start_device_flow("okta")
    result = await DevicePoller(manager.poll_device_flow, "okta", session).run()
"""

from sso_engine.auth.sso.config_store import (
    InMemoryConfigStore,
    JSONFileConfigStore,
    SSOConfigStore,
)
from sso_engine.auth.sso.device_poll import DevicePoller, PollerState, next_poll_interval
from sso_engine.auth.sso.jwks import JWKSKeyCache
from sso_engine.auth.sso.manager import SSOManager
from sso_engine.auth.sso.pending import PendingAuthorizationTable
from sso_engine.auth.sso.providers import (
    AzureADProvider,
    GoogleProvider,
    OIDCProvider,
    OktaProvider,
    SSOProvider,
    SSOProviderFactory,
)

__all__ = [
    # Providers
    "SSOProvider",
    "OIDCProvider",
    "OktaProvider",
    "AzureADProvider",
    "GoogleProvider",
    "SSOProviderFactory",
    "JWKSKeyCache",
    # Flow state
    "SSOManager",
    "PendingAuthorizationTable",
    "DevicePoller",
    "PollerState",
    "next_poll_interval",
    # Configuration stores
    "SSOConfigStore",
    "InMemoryConfigStore",
    "JSONFileConfigStore",
]
