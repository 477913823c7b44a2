"""
Exception classes for the SSO engine.

Every error raised out of the engine carries a machine-readable kind and
error code plus a message that is safe to show to an end user. Messages never
contain client secrets, tokens, PKCE verifiers or device codes.

Exception Hierarchy:
    SSOError (base)
    ├── ConfigError
    │   └── ProviderNotFoundError
    ├── NetworkError
    ├── ProtocolError
    ├── ValidationError
    │   ├── KeyNotFoundError
    │   └── NonceMismatchError
    ├── FlowStateError
    │   └── ExpiredDeviceCodeError
    └── UserDeniedError
"""

from enum import Enum
from typing import Any, Dict, Optional

from sso_engine.utils.logging import clean_idp_text

# Caps for free text copied from IdP error responses
MAX_OAUTH_ERROR_LENGTH = 64
MAX_OAUTH_ERROR_DESCRIPTION_LENGTH = 200


class ErrorKind(str, Enum):
    """Broad error categories surfaced to the calling system."""

    CONFIG = "config_error"
    NETWORK = "network_error"
    PROTOCOL = "protocol_error"
    VALIDATION = "validation_error"
    FLOW_STATE = "flow_state_error"
    USER_DENIED = "user_denied_error"


class ErrorCode(str, Enum):
    """
    Standardized error codes.

    These give callers a stable identifier for each failure so they can
    branch on it without parsing messages.
    """

    # Configuration
    CONFIG_ERROR = "CONFIG_ERROR"
    MISSING_SETTING = "MISSING_SETTING"
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    UNSUPPORTED_FLOW = "UNSUPPORTED_FLOW"

    # Network
    NETWORK_ERROR = "NETWORK_ERROR"
    IDP_TIMEOUT = "IDP_TIMEOUT"

    # Protocol
    PROTOCOL_ERROR = "PROTOCOL_ERROR"
    IDP_ERROR_RESPONSE = "IDP_ERROR_RESPONSE"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    INVALID_JWKS = "INVALID_JWKS"

    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MALFORMED_TOKEN = "MALFORMED_TOKEN"
    UNSUPPORTED_ALGORITHM = "UNSUPPORTED_ALGORITHM"
    MISSING_KID = "MISSING_KID"
    KEY_NOT_FOUND = "KEY_NOT_FOUND"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_NOT_YET_VALID = "TOKEN_NOT_YET_VALID"
    INVALID_ISSUER = "INVALID_ISSUER"
    INVALID_AUDIENCE = "INVALID_AUDIENCE"
    NONCE_MISMATCH = "NONCE_MISMATCH"

    # Flow state
    FLOW_STATE_ERROR = "FLOW_STATE_ERROR"
    INVALID_STATE = "INVALID_STATE"
    EXPIRED_DEVICE_CODE = "EXPIRED_DEVICE_CODE"
    DEVICE_CODE_USED = "DEVICE_CODE_USED"
    DEVICE_POLL_IN_PROGRESS = "DEVICE_POLL_IN_PROGRESS"

    # User decision
    USER_DENIED = "USER_DENIED"


class SSOError(Exception):
    """
    Base exception class for all SSO engine errors.

    Attributes:
        message: Human-safe error message.
        error_code: Machine-readable error code from ErrorCode.
        kind: Broad category from ErrorKind.
        status_code: HTTP status hint for the layer exposing the engine.
        details: Additional context (must not contain sensitive data).
        internal_message: Detailed message for logging only.
    """

    kind: ErrorKind = ErrorKind.CONFIG
    status_code: int = 500
    default_error_code: ErrorCode = ErrorCode.CONFIG_ERROR
    default_message: str = "Single sign-on failed"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        self.internal_message = internal_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the exception to a dictionary for an API response.

        Returns:
            Dictionary with error information suitable for JSON serialization.
        """
        response = {
            "success": False,
            "error": self.message,
            "error_kind": self.kind.value,
            "error_code": self.error_code.value,
        }
        if self.details:
            response["details"] = self.details
        return response

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"kind={self.kind.value!r}, "
            f"error_code={self.error_code.value!r})"
        )


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigError(SSOError):
    """
    Raised when provider configuration is missing or invalid.

    Use this for:
    - Missing issuer domain / tenant
    - Provider families that do not support a requested flow
    """

    kind = ErrorKind.CONFIG
    status_code = 500
    default_error_code = ErrorCode.CONFIG_ERROR
    default_message = "SSO provider is misconfigured"

    def __init__(
        self,
        message: Optional[str] = None,
        setting: Optional[str] = None,
        provider_id: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        details = details or {}
        if setting:
            details["setting"] = setting
        if provider_id:
            details["provider_id"] = provider_id

        super().__init__(
            message=message,
            error_code=error_code or (ErrorCode.MISSING_SETTING if setting else None),
            details=details,
            internal_message=internal_message,
        )


class ProviderNotFoundError(ConfigError):
    """Raised when a provider id is unknown or its provider is disabled."""

    status_code = 404
    default_error_code = ErrorCode.PROVIDER_NOT_FOUND
    default_message = "Provider not found"

    def __init__(self, provider_id: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Provider not found: {provider_id}",
            provider_id=provider_id,
            error_code=ErrorCode.PROVIDER_NOT_FOUND,
        )


# =============================================================================
# Network Errors
# =============================================================================


class NetworkError(SSOError):
    """Raised when an identity provider cannot be reached or times out."""

    kind = ErrorKind.NETWORK
    status_code = 502
    default_error_code = ErrorCode.NETWORK_ERROR
    default_message = "Identity provider is unreachable"


# =============================================================================
# Protocol Errors
# =============================================================================


class ProtocolError(SSOError):
    """
    Raised when an identity provider returns an unexpected response.

    Use this for:
    - Non-200 responses from token/userinfo/JWKS/device endpoints
    - Malformed JSON or missing required fields
    """

    kind = ErrorKind.PROTOCOL
    status_code = 502
    default_error_code = ErrorCode.PROTOCOL_ERROR
    default_message = "Unexpected response from identity provider"

    def __init__(
        self,
        message: Optional[str] = None,
        oauth_error: Optional[str] = None,
        oauth_error_description: Optional[str] = None,
        http_status: Optional[int] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        self.oauth_error = clean_idp_text(oauth_error, MAX_OAUTH_ERROR_LENGTH)
        self.oauth_error_description = clean_idp_text(
            oauth_error_description, MAX_OAUTH_ERROR_DESCRIPTION_LENGTH
        )
        self.http_status = http_status

        details = details or {}
        if self.oauth_error:
            details["error"] = self.oauth_error
        if self.oauth_error_description:
            details["error_description"] = self.oauth_error_description
        if http_status is not None:
            details["http_status"] = http_status

        super().__init__(
            message=message,
            error_code=error_code or (
                ErrorCode.IDP_ERROR_RESPONSE if self.oauth_error else None
            ),
            details=details,
            internal_message=internal_message,
        )


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(SSOError):
    """
    Raised when an ID token fails cryptographic or semantic validation.

    Always fatal for the authentication attempt and never retried.
    """

    kind = ErrorKind.VALIDATION
    status_code = 401
    default_error_code = ErrorCode.VALIDATION_ERROR
    default_message = "ID token validation failed"


class KeyNotFoundError(ValidationError):
    """Raised when the token's kid is absent from the provider's key set."""

    default_error_code = ErrorCode.KEY_NOT_FOUND
    default_message = "key not found"

    def __init__(self, kid: Optional[str] = None):
        super().__init__(
            details={"kid": kid[:64]} if kid else None,
        )


class NonceMismatchError(ValidationError):
    """Raised when the ID token nonce differs from the one sent at authorization."""

    default_error_code = ErrorCode.NONCE_MISMATCH
    default_message = "Nonce mismatch"


# =============================================================================
# Flow State Errors
# =============================================================================


class FlowStateError(SSOError):
    """Raised for unknown, expired or already-consumed state or device codes."""

    kind = ErrorKind.FLOW_STATE
    status_code = 400
    default_error_code = ErrorCode.INVALID_STATE
    default_message = "Invalid or expired state parameter"


class ExpiredDeviceCodeError(FlowStateError):
    """Raised when a device code has expired before the user approved it."""

    default_error_code = ErrorCode.EXPIRED_DEVICE_CODE
    default_message = "Device code expired"


# =============================================================================
# User Decision Errors
# =============================================================================


class UserDeniedError(SSOError):
    """Raised when the user explicitly rejects a device authorization."""

    kind = ErrorKind.USER_DENIED
    status_code = 403
    default_error_code = ErrorCode.USER_DENIED
    default_message = "User denied authorization"
