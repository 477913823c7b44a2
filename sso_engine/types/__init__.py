"""
Type definitions for the SSO engine.
"""

from .sso import (
    CachedJwk,
    DEFAULT_SCOPES,
    DeviceAuthSession,
    DeviceFlowPollResult,
    DevicePollResult,
    DevicePollStatus,
    IdTokenClaims,
    OIDCEndpoints,
    PendingAuthorization,
    ProviderConfig,
    ProviderFamily,
    SSOAuthResult,
    TokenResponse,
    UserInfo,
)

__all__ = [
    "CachedJwk",
    "DEFAULT_SCOPES",
    "DeviceAuthSession",
    "DeviceFlowPollResult",
    "DevicePollResult",
    "DevicePollStatus",
    "IdTokenClaims",
    "OIDCEndpoints",
    "PendingAuthorization",
    "ProviderConfig",
    "ProviderFamily",
    "SSOAuthResult",
    "TokenResponse",
    "UserInfo",
]
