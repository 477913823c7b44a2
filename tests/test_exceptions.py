"""
Tests for the SSO exception hierarchy.
"""

import pytest

from sso_engine.exceptions import (
    ConfigError,
    ErrorCode,
    ErrorKind,
    ExpiredDeviceCodeError,
    FlowStateError,
    KeyNotFoundError,
    NetworkError,
    NonceMismatchError,
    ProtocolError,
    ProviderNotFoundError,
    SSOError,
    UserDeniedError,
    ValidationError,
)


class TestErrorKinds:
    """Every error maps onto exactly one kind."""

    @pytest.mark.parametrize(
        "error,kind",
        [
            (ConfigError(), ErrorKind.CONFIG),
            (ProviderNotFoundError("okta"), ErrorKind.CONFIG),
            (NetworkError(), ErrorKind.NETWORK),
            (ProtocolError(), ErrorKind.PROTOCOL),
            (ValidationError(), ErrorKind.VALIDATION),
            (KeyNotFoundError("k1"), ErrorKind.VALIDATION),
            (NonceMismatchError(), ErrorKind.VALIDATION),
            (FlowStateError(), ErrorKind.FLOW_STATE),
            (ExpiredDeviceCodeError(), ErrorKind.FLOW_STATE),
            (UserDeniedError(), ErrorKind.USER_DENIED),
        ],
    )
    def test_kind(self, error, kind):
        assert isinstance(error, SSOError)
        assert error.kind == kind


class TestMessages:
    """Tests for messages and serialization."""

    def test_provider_not_found(self):
        error = ProviderNotFoundError("okta")

        assert error.message == "Provider not found: okta"
        assert error.error_code == ErrorCode.PROVIDER_NOT_FOUND
        assert error.details == {"provider_id": "okta"}

    def test_key_not_found(self):
        error = KeyNotFoundError("key-9")

        assert str(error) == "key not found"
        assert error.details == {"kid": "key-9"}

    def test_config_error_setting(self):
        error = ConfigError("Okta domain is required", setting="issuer_base")

        assert error.error_code == ErrorCode.MISSING_SETTING
        assert error.details["setting"] == "issuer_base"

    def test_to_dict(self):
        error = ValidationError("Token has expired", error_code=ErrorCode.TOKEN_EXPIRED)

        assert error.to_dict() == {
            "success": False,
            "error": "Token has expired",
            "error_kind": "validation_error",
            "error_code": "TOKEN_EXPIRED",
        }

    def test_repr(self):
        assert repr(UserDeniedError()) == (
            "UserDeniedError(message='User denied authorization', "
            "kind='user_denied_error', error_code='USER_DENIED')"
        )


class TestProtocolError:
    """Tests for IdP error details."""

    def test_oauth_fields(self):
        error = ProtocolError(
            "Token exchange failed",
            oauth_error="invalid_grant",
            oauth_error_description="The authorization code is invalid",
            http_status=400,
        )

        assert error.error_code == ErrorCode.IDP_ERROR_RESPONSE
        assert error.details == {
            "error": "invalid_grant",
            "error_description": "The authorization code is invalid",
            "http_status": 400,
        }

    def test_description_redacted_and_capped(self):
        error = ProtocolError(
            oauth_error="invalid_client",
            oauth_error_description="bad client_secret=hunter2 " + "x" * 500,
        )

        assert "hunter2" not in error.details["error_description"]
        assert len(error.details["error_description"]) == 200

    def test_error_string_redacted_and_capped(self):
        error = ProtocolError(oauth_error="Bearer at-live-123 " + "y" * 200)

        assert "at-live-123" not in error.oauth_error
        assert len(error.oauth_error) == 64
        assert error.details["error"] == error.oauth_error

    def test_without_oauth_error(self):
        error = ProtocolError("Malformed response", error_code=ErrorCode.MALFORMED_RESPONSE)

        assert error.error_code == ErrorCode.MALFORMED_RESPONSE
        assert error.details == {}
