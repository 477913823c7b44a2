"""
SSO Type Definitions.

This module defines the data models shared by the SSO engine: provider
configuration, the pending authorization record kept between redirect and
callback, token/userinfo/ID-token values, cached signing keys, and the
device-code session and poll outcomes.

Security Considerations:
- Secrets and tokens are excluded from repr() so they never reach logs
- IdTokenClaims is only ever built by a provider after full validation
- Values produced by providers are immutable
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

DEFAULT_SCOPES = ("openid", "profile", "email")


# =============================================================================
# Enums
# =============================================================================


class ProviderFamily(str, Enum):
    """Identity provider families with a concrete implementation."""

    OIDC = "oidc"
    OKTA = "okta"
    AZURE = "azure"
    GOOGLE = "google"


class DevicePollStatus(str, Enum):
    """
    Outcome of a single device-code poll.

    PENDING and SLOW_DOWN are iteration signals, not failures; the others
    are terminal.
    """

    PENDING = "authorization_pending"
    SLOW_DOWN = "slow_down"
    SUCCESS = "success"
    EXPIRED = "expired_token"
    DENIED = "access_denied"

    @property
    def is_terminal(self) -> bool:
        return self not in (DevicePollStatus.PENDING, DevicePollStatus.SLOW_DOWN)


# =============================================================================
# Configuration Models
# =============================================================================


class ProviderConfig(BaseModel):
    """
    Configuration for one identity provider.

    Immutable once loaded; the manager rebuilds providers wholesale whenever
    configuration changes.

    Security:
    - client_secret is a SecretStr and never appears in repr() or logs
    """

    model_config = ConfigDict(frozen=True)

    provider_id: str = Field(
        ...,
        description="Unique provider id (e.g. 'okta', 'azure', 'google')",
        min_length=1,
        max_length=64,
    )
    client_id: str = Field(
        ...,
        description="OAuth client id registered with the IdP",
        min_length=1,
    )
    client_secret: Optional[SecretStr] = Field(
        None,
        description="OAuth client secret (confidential clients only)",
    )
    issuer_base: Optional[str] = Field(
        None,
        description="Issuer domain, tenant id or issuer URL depending on family",
    )
    scopes: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SCOPES),
        description="Requested scopes, in order",
    )
    enabled: bool = Field(
        default=True,
        description="Whether the provider may start new flows",
    )
    provider_type: Optional[str] = Field(
        None,
        description="Provider family; defaults to provider_id",
    )
    display_name: Optional[str] = Field(
        None,
        description="Human-readable name shown on login screens",
    )
    use_discovery: bool = Field(
        default=False,
        description="Resolve endpoints from the issuer's discovery document",
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form data kept alongside the configuration",
    )

    @model_validator(mode="before")
    @classmethod
    def accept_domain_and_tenant(cls, data: Any) -> Any:
        """Accept legacy 'domain' / 'tenant_id' keys as issuer_base."""
        if isinstance(data, dict) and not data.get("issuer_base"):
            legacy = data.get("domain") or data.get("tenant_id")
            if legacy:
                data = {**data, "issuer_base": legacy}
        return data

    @field_validator("provider_id", "provider_type")
    @classmethod
    def normalize_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip().lower()

    @field_validator("issuer_base")
    @classmethod
    def strip_issuer_base(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().rstrip("/")
        return v or None

    @field_validator("scopes")
    @classmethod
    def clean_scopes(cls, v: List[str]) -> List[str]:
        return [scope.strip() for scope in v if scope and scope.strip()]

    @property
    def family(self) -> str:
        """Provider family used to pick an implementation."""
        return self.provider_type or self.provider_id

    def client_secret_value(self) -> Optional[str]:
        if self.client_secret is None:
            return None
        return self.client_secret.get_secret_value() or None

    def to_storage_dict(self) -> Dict[str, Any]:
        """Serialize for a configuration store, secret included."""
        data = self.model_dump(mode="json")
        data["client_secret"] = self.client_secret_value()
        return data


class OIDCEndpoints(BaseModel):
    """Resolved endpoint URLs for one provider."""

    model_config = ConfigDict(frozen=True)

    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    jwks_uri: str
    device_authorization_endpoint: Optional[str] = None
    issuer: str = Field(
        ...,
        description="Expected issuer prefix for ID tokens",
    )


# =============================================================================
# Flow State Models
# =============================================================================


class PendingAuthorization(BaseModel):
    """
    Context saved between starting a redirect flow and its callback.

    Redeemable exactly once, and never after the pending lifetime elapses.
    """

    model_config = ConfigDict(frozen=True)

    state: str = Field(..., min_length=1, repr=False)
    provider_id: str
    code_verifier: str = Field(..., repr=False)
    redirect_uri: str
    nonce: Optional[str] = Field(None, repr=False)
    created_at: datetime

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.created_at > ttl


class DeviceAuthSession(BaseModel):
    """
    Device-code session descriptor held by the polling client.

    Only poll_interval_seconds may change (it grows on slow_down).
    """

    model_config = ConfigDict(validate_assignment=True)

    device_code: str = Field(..., frozen=True, repr=False)
    user_code: str = Field(..., frozen=True)
    verification_uri: str = Field(..., frozen=True)
    verification_uri_complete: Optional[str] = Field(None, frozen=True)
    expires_at: datetime = Field(..., frozen=True)
    poll_interval_seconds: int = Field(default=5, ge=1)

    @classmethod
    def from_device_payload(
        cls,
        data: Dict[str, Any],
        now: datetime,
        default_interval: int = 5,
    ) -> "DeviceAuthSession":
        """
        Build a session from a device authorization response.

        Some IdPs (Google) still send verification_url instead of
        verification_uri.
        """
        expires_in = int(data["expires_in"])
        return cls(
            device_code=data["device_code"],
            user_code=data["user_code"],
            verification_uri=data.get("verification_uri") or data.get("verification_url"),
            verification_uri_complete=data.get("verification_uri_complete"),
            expires_at=now + timedelta(seconds=expires_in),
            poll_interval_seconds=int(data.get("interval") or default_interval),
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


# =============================================================================
# Token & Identity Models
# =============================================================================


class TokenResponse(BaseModel):
    """Tokens returned by a provider's token endpoint."""

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(..., min_length=1, repr=False)
    refresh_token: Optional[str] = Field(None, repr=False)
    id_token: Optional[str] = Field(None, repr=False)
    expires_in: int = Field(default=3600)
    token_type: str = Field(default="Bearer")
    scopes: Optional[List[str]] = None

    @classmethod
    def from_token_payload(cls, data: Dict[str, Any]) -> "TokenResponse":
        scope = data.get("scope")
        return cls(
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            id_token=data.get("id_token"),
            expires_in=data.get("expires_in") or 3600,
            token_type=data.get("token_type") or "Bearer",
            scopes=scope.split() if isinstance(scope, str) else None,
        )


class UserInfo(BaseModel):
    """User information from a provider's userinfo endpoint."""

    model_config = ConfigDict(frozen=True)

    subject: str = Field(..., min_length=1)
    email: Optional[str] = None
    email_verified: Optional[bool] = None
    name: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    picture: Optional[str] = None
    raw_claims: Dict[str, Any] = Field(default_factory=dict, repr=False)

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "UserInfo":
        """Map standard OIDC userinfo claims."""
        return cls(
            subject=claims.get("sub"),
            email=claims.get("email"),
            email_verified=claims.get("email_verified"),
            name=claims.get("name"),
            given_name=claims.get("given_name"),
            family_name=claims.get("family_name"),
            picture=claims.get("picture"),
            raw_claims=dict(claims),
        )


class IdTokenClaims(BaseModel):
    """
    Claims of an ID token that passed signature, expiry, issuer, audience
    and nonce checks.
    """

    model_config = ConfigDict(frozen=True)

    issuer: str
    subject: str
    audience: str
    issued_at: datetime
    expires_at: datetime
    nonce: Optional[str] = Field(None, repr=False)
    email: Optional[str] = None
    all_claims: Dict[str, Any] = Field(default_factory=dict, repr=False)


class CachedJwk(BaseModel):
    """One RSA signing key from a provider's JWKS."""

    model_config = ConfigDict(frozen=True)

    kid: str
    modulus: int = Field(..., gt=0)
    exponent: int = Field(..., gt=0)
    fetched_at: datetime

    def public_key(self) -> rsa.RSAPublicKey:
        return rsa.RSAPublicNumbers(self.exponent, self.modulus).public_key()


# =============================================================================
# Results
# =============================================================================


class DevicePollResult(BaseModel):
    """Provider-level outcome of one device-code poll."""

    model_config = ConfigDict(frozen=True)

    status: DevicePollStatus
    tokens: Optional[TokenResponse] = None

    @model_validator(mode="after")
    def tokens_only_on_success(self) -> "DevicePollResult":
        if (self.status == DevicePollStatus.SUCCESS) != (self.tokens is not None):
            raise ValueError("tokens must be present exactly when status is SUCCESS")
        return self


class SSOAuthResult(BaseModel):
    """Composed result of a completed SSO authentication."""

    model_config = ConfigDict(frozen=True)

    provider_id: str
    tokens: TokenResponse
    user_info: UserInfo
    id_claims: Optional[IdTokenClaims] = None


class DeviceFlowPollResult(BaseModel):
    """Manager-level outcome of one device-code poll."""

    model_config = ConfigDict(frozen=True)

    status: DevicePollStatus
    result: Optional[SSOAuthResult] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
