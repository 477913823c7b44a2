"""
Tests for ID token validation.

Tokens are minted with PyJWT, so the engine's verifier is checked against an
independent encoder. Every rejection branch of the validation algorithm is
covered, and each rejection must raise rather than return claims.
"""

import base64
import json
from datetime import timedelta

import pytest

from conftest import CLIENT_ID, NOW, OKTA_ISSUER, mint_id_token
from sso_engine.exceptions import (
    ErrorCode,
    KeyNotFoundError,
    NonceMismatchError,
    ValidationError,
)


def _segment(data) -> str:
    raw = json.dumps(data).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _unsigned(header, payload) -> str:
    return f"{_segment(header)}.{_segment(payload)}.{_segment('sig')}"


def _claims(**overrides):
    claims = {
        "iss": OKTA_ISSUER,
        "sub": "user-42",
        "aud": CLIENT_ID,
        "iat": int(NOW.timestamp()),
        "exp": int((NOW + timedelta(hours=1)).timestamp()),
    }
    claims.update(overrides)
    return claims


class TestValidToken:
    """Tests for tokens that pass every check."""

    @pytest.mark.asyncio
    async def test_returns_validated_claims(self, okta_provider, idp):
        claims = await okta_provider.validate_id_token(idp.mint(nonce="n0"), nonce="n0")

        assert claims.subject == "user-42"
        assert claims.issuer == OKTA_ISSUER
        assert claims.audience == CLIENT_ID
        assert claims.email == "user42@example.com"
        assert claims.nonce == "n0"
        assert claims.issued_at == NOW
        assert claims.expires_at == NOW + timedelta(hours=1)
        assert claims.all_claims["sub"] == "user-42"

    @pytest.mark.asyncio
    async def test_nonce_not_checked_when_none_was_sent(self, okta_provider, idp):
        claims = await okta_provider.validate_id_token(idp.mint(nonce="anything"))
        assert claims.subject == "user-42"

    @pytest.mark.asyncio
    async def test_small_clock_skew_is_tolerated(self, okta_provider, idp):
        iat = int((NOW + timedelta(minutes=4)).timestamp())
        claims = await okta_provider.validate_id_token(idp.mint(iat=iat))
        assert claims.subject == "user-42"

    @pytest.mark.asyncio
    async def test_issuer_with_path_under_base(self, okta_provider, idp):
        claims = await okta_provider.validate_id_token(
            idp.mint(iss=f"{OKTA_ISSUER}/oauth2/default")
        )
        assert claims.issuer == f"{OKTA_ISSUER}/oauth2/default"


class TestStructureAndHeader:
    """Tests for steps 1-2: segments, algorithm and kid."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d"])
    async def test_rejects_wrong_segment_count(self, okta_provider, token):
        with pytest.raises(ValidationError) as exc_info:
            await okta_provider.validate_id_token(token)
        assert exc_info.value.error_code == ErrorCode.MALFORMED_TOKEN

    @pytest.mark.asyncio
    async def test_rejects_undecodable_header(self, okta_provider):
        with pytest.raises(ValidationError) as exc_info:
            await okta_provider.validate_id_token("!!!.e30.sig")
        assert exc_info.value.error_code == ErrorCode.MALFORMED_TOKEN

    @pytest.mark.asyncio
    @pytest.mark.parametrize("alg", ["HS256", "none", "RS512", "ES256", None])
    async def test_rejects_non_rs256(self, okta_provider, idp, alg):
        token = _unsigned({"alg": alg, "kid": "key-1"}, _claims())

        with pytest.raises(ValidationError) as exc_info:
            await okta_provider.validate_id_token(token)

        assert exc_info.value.error_code == ErrorCode.UNSUPPORTED_ALGORITHM
        # Rejected before any key lookup
        assert idp.count("/keys") == 0

    @pytest.mark.asyncio
    async def test_rejects_missing_kid(self, okta_provider, signing_key):
        token = mint_id_token(signing_key, kid=None)

        with pytest.raises(ValidationError) as exc_info:
            await okta_provider.validate_id_token(token)

        assert exc_info.value.error_code == ErrorCode.MISSING_KID


class TestSignature:
    """Tests for steps 3-4: key resolution and RSA-SHA256 verification."""

    @pytest.mark.asyncio
    async def test_unknown_kid_is_key_not_found(self, okta_provider, signing_key):
        token = mint_id_token(signing_key, kid="rotated-away")

        with pytest.raises(KeyNotFoundError) as exc_info:
            await okta_provider.validate_id_token(token)

        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.message == "key not found"

    @pytest.mark.asyncio
    async def test_unknown_kid_fails_regardless_of_payload(self, okta_provider):
        token = _unsigned({"alg": "RS256", "kid": "rotated-away"}, {"anything": True})

        with pytest.raises(KeyNotFoundError):
            await okta_provider.validate_id_token(token)

    @pytest.mark.asyncio
    async def test_rejects_signature_from_other_key(self, okta_provider, other_key):
        token = mint_id_token(other_key, kid="key-1")

        with pytest.raises(ValidationError) as exc_info:
            await okta_provider.validate_id_token(token)

        assert exc_info.value.error_code == ErrorCode.INVALID_SIGNATURE

    @pytest.mark.asyncio
    async def test_rejects_tampered_payload(self, okta_provider, idp):
        header, _, signature = idp.mint().split(".")
        forged_payload = _segment(_claims(sub="admin"))

        with pytest.raises(ValidationError) as exc_info:
            await okta_provider.validate_id_token(f"{header}.{forged_payload}.{signature}")

        assert exc_info.value.error_code == ErrorCode.INVALID_SIGNATURE

    @pytest.mark.asyncio
    async def test_rejects_garbage_signature(self, okta_provider, idp):
        header, payload, _ = idp.mint().split(".")

        with pytest.raises(ValidationError) as exc_info:
            await okta_provider.validate_id_token(f"{header}.{payload}.not+base64")

        assert exc_info.value.error_code == ErrorCode.INVALID_SIGNATURE


class TestClaims:
    """Tests for steps 5-9: timing, issuer, audience and nonce."""

    @pytest.mark.asyncio
    async def test_rejects_expired_token(self, okta_provider, idp):
        exp = int((NOW - timedelta(seconds=1)).timestamp())

        with pytest.raises(ValidationError) as exc_info:
            await okta_provider.validate_id_token(idp.mint(exp=exp))

        assert exc_info.value.error_code == ErrorCode.TOKEN_EXPIRED

    @pytest.mark.asyncio
    async def test_expiry_follows_clock(self, okta_provider, idp, clock):
        token = idp.mint()
        clock.advance(hours=1, seconds=1)

        with pytest.raises(ValidationError) as exc_info:
            await okta_provider.validate_id_token(token)

        assert exc_info.value.error_code == ErrorCode.TOKEN_EXPIRED

    @pytest.mark.asyncio
    async def test_rejects_token_issued_beyond_skew(self, okta_provider, idp):
        iat = int((NOW + timedelta(minutes=6)).timestamp())

        with pytest.raises(ValidationError) as exc_info:
            await okta_provider.validate_id_token(idp.mint(iat=iat))

        assert exc_info.value.error_code == ErrorCode.TOKEN_NOT_YET_VALID

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["exp", "iat"])
    async def test_rejects_missing_timestamps(self, okta_provider, idp, missing):
        with pytest.raises(ValidationError) as exc_info:
            await okta_provider.validate_id_token(idp.mint(**{missing: None}))

        assert exc_info.value.error_code == ErrorCode.MALFORMED_TOKEN

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "issuer",
        [
            "https://evil.example.com",
            "https://acme.okta.com.evil.test",
            "http://acme.okta.com",
            None,
        ],
    )
    async def test_rejects_wrong_issuer(self, okta_provider, signing_key, issuer):
        token = mint_id_token(signing_key, iss=issuer)

        with pytest.raises(ValidationError) as exc_info:
            await okta_provider.validate_id_token(token)

        assert exc_info.value.error_code == ErrorCode.INVALID_ISSUER

    @pytest.mark.asyncio
    @pytest.mark.parametrize("audience", ["someone-else", "", [CLIENT_ID], [CLIENT_ID, "other"]])
    async def test_rejects_wrong_audience(self, okta_provider, idp, audience):
        with pytest.raises(ValidationError) as exc_info:
            await okta_provider.validate_id_token(idp.mint(aud=audience))

        assert exc_info.value.error_code == ErrorCode.INVALID_AUDIENCE

    @pytest.mark.asyncio
    async def test_rejects_nonce_mismatch(self, okta_provider, idp):
        with pytest.raises(NonceMismatchError) as exc_info:
            await okta_provider.validate_id_token(idp.mint(nonce="n1"), nonce="n0")

        assert exc_info.value.message == "Nonce mismatch"
        assert exc_info.value.error_code == ErrorCode.NONCE_MISMATCH

    @pytest.mark.asyncio
    async def test_rejects_missing_nonce_when_expected(self, okta_provider, idp):
        with pytest.raises(NonceMismatchError):
            await okta_provider.validate_id_token(idp.mint(), nonce="n0")

    @pytest.mark.asyncio
    async def test_rejects_missing_subject(self, okta_provider, idp):
        with pytest.raises(ValidationError) as exc_info:
            await okta_provider.validate_id_token(idp.mint(sub=None))

        assert exc_info.value.error_code == ErrorCode.MALFORMED_TOKEN


class TestKeyCaching:
    """Tests that validation reuses the JWKS cache."""

    @pytest.mark.asyncio
    async def test_second_validation_within_ttl_does_not_fetch(self, okta_provider, idp):
        await okta_provider.validate_id_token(idp.mint())
        await okta_provider.validate_id_token(idp.mint())

        assert idp.count("/keys") == 1

    @pytest.mark.asyncio
    async def test_one_refetch_after_ttl(self, okta_provider, idp, clock):
        await okta_provider.validate_id_token(idp.mint())
        clock.advance(minutes=61)

        # Token minted for the new "now" so it is not expired
        token = mint_id_token(idp.signing_key, now=clock.now)
        await okta_provider.validate_id_token(token)
        await okta_provider.validate_id_token(token)

        assert idp.count("/keys") == 2

    @pytest.mark.asyncio
    async def test_keys_fetched_from_okta_path(self, okta_provider, idp):
        await okta_provider.validate_id_token(idp.mint())

        request = idp.last_request("/keys")
        assert str(request.url) == "https://acme.okta.com/oauth2/v1/keys"
