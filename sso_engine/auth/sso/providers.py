"""
SSO Provider Abstraction Layer.

This module provides the abstract provider interface and concrete
implementations for OpenID Connect identity providers: a generic
standard-OIDC provider plus Okta, Microsoft Entra ID (Azure AD) and Google
variants that differ only in endpoint layout and vendor quirks.

Security Considerations:
- ID tokens are verified with RS256 only, against the provider's JWKS
- Issuer, audience, expiry and nonce are checked after the signature
- Any failed check aborts validation; partial claims are never returned
- Client secrets and tokens are never logged or placed in error messages
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, ClassVar, Dict, List, Optional, Type
from urllib.parse import urlencode

import httpx
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from pydantic import ValidationError as PydanticValidationError

from sso_engine.auth.sso.jwks import JWKSKeyCache
from sso_engine.auth.sso.pkce import CODE_CHALLENGE_METHOD, base64url_decode, code_challenge
from sso_engine.config import SSOSettings, get_settings
from sso_engine.exceptions import (
    MAX_OAUTH_ERROR_LENGTH,
    ConfigError,
    ErrorCode,
    NetworkError,
    NonceMismatchError,
    ProtocolError,
    ValidationError,
)
from sso_engine.types.sso import (
    CachedJwk,
    DeviceAuthSession,
    DevicePollResult,
    DevicePollStatus,
    IdTokenClaims,
    OIDCEndpoints,
    ProviderConfig,
    ProviderFamily,
    TokenResponse,
    UserInfo,
)
from sso_engine.utils.logging import clean_idp_text

logger = logging.getLogger(__name__)

ID_TOKEN_ALGORITHM = "RS256"
DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

# Token endpoint error codes that are expected outcomes while device polling
_DEVICE_POLL_ERRORS: Dict[str, DevicePollStatus] = {
    "authorization_pending": DevicePollStatus.PENDING,
    "slow_down": DevicePollStatus.SLOW_DOWN,
    "expired_token": DevicePollStatus.EXPIRED,
    "access_denied": DevicePollStatus.DENIED,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class SSOProvider(ABC):
    """
    Abstract base class for SSO providers.

    All providers expose the same capability set so the manager can drive
    redirect and device flows without knowing which IdP is behind them.
    """

    family: ClassVar[str]
    default_display_name: ClassVar[str]

    def __init__(
        self,
        config: ProviderConfig,
        settings: Optional[SSOSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the SSO provider.

        Args:
            config: Provider configuration
            settings: Engine settings (timeouts, skew, cache lifetime)
            http_client: Shared HTTP client; one is created on demand if omitted
            clock: Time source, injectable for tests
        """
        self.config = config
        self.settings = settings or get_settings().sso
        self._http_client = http_client
        self._owns_client = http_client is None
        self._clock = clock or _utcnow

    @property
    def provider_id(self) -> str:
        return self.config.provider_id

    @property
    def display_name(self) -> str:
        return self.config.display_name or self.default_display_name

    @property
    def is_enabled(self) -> bool:
        return self.config.enabled

    @abstractmethod
    async def build_authorization_url(
        self,
        redirect_uri: str,
        state: str,
        code_verifier: str,
        nonce: Optional[str] = None,
    ) -> str:
        """
        Build the URL the user's browser is sent to for login.

        Args:
            redirect_uri: Callback URL after authentication
            state: CSRF protection state parameter
            code_verifier: PKCE verifier; only its S256 challenge is sent
            nonce: Optional replay-protection nonce for the ID token
        """

    @abstractmethod
    async def exchange_code(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> TokenResponse:
        """Exchange an authorization code for tokens."""

    @abstractmethod
    async def fetch_user_info(self, access_token: str) -> UserInfo:
        """Fetch user information with a bearer access token."""

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> TokenResponse:
        """Obtain new tokens with a refresh token."""

    @abstractmethod
    async def validate_id_token(
        self,
        id_token: str,
        nonce: Optional[str] = None,
    ) -> IdTokenClaims:
        """
        Verify an ID token and return its claims.

        Raises:
            ValidationError: If any signature or claim check fails
        """

    @abstractmethod
    async def start_device_auth(self) -> DeviceAuthSession:
        """Start a device-code authorization."""

    @abstractmethod
    async def poll_device_auth(self, device_code: str) -> DevicePollResult:
        """Poll the token endpoint once for a device code."""

    async def aclose(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # -------------------------------------------------------------------------
    # HTTP helpers
    # -------------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.settings.http_timeout_seconds,
            )
        return self._http_client

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request with the configured timeout, mapping transport failures."""
        try:
            return await self._client().request(
                method,
                url,
                timeout=self.settings.http_timeout_seconds,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"{self.provider_id}: request to IdP timed out ({type(e).__name__})")
            raise NetworkError(
                f"{self.display_name} did not respond in time",
                error_code=ErrorCode.IDP_TIMEOUT,
                internal_message=str(e),
            )
        except httpx.HTTPError as e:
            logger.warning(f"{self.provider_id}: request to IdP failed ({type(e).__name__})")
            raise NetworkError(
                f"Could not reach {self.display_name}",
                internal_message=str(e),
            )

    @staticmethod
    def _json_body(response: httpx.Response) -> Optional[Dict[str, Any]]:
        try:
            data = response.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    def _error_from_response(self, response: httpx.Response, message: str) -> ProtocolError:
        """Build a ProtocolError from a non-200 IdP response."""
        data = self._json_body(response) or {}
        raw_error = data.get("error")
        oauth_error = (
            clean_idp_text(raw_error, MAX_OAUTH_ERROR_LENGTH) if isinstance(raw_error, str) else None
        )
        description = data.get("error_description")
        description = description if isinstance(description, str) else None

        logger.warning(
            f"{self.provider_id}: {message} "
            f"(HTTP {response.status_code}, error={oauth_error or '-'})"
        )
        return ProtocolError(
            f"{message}: {oauth_error}" if oauth_error else message,
            oauth_error=oauth_error,
            oauth_error_description=description,
            http_status=response.status_code,
        )

    def _require_json(self, response: httpx.Response) -> Dict[str, Any]:
        data = self._json_body(response)
        if data is None:
            raise ProtocolError(
                f"Malformed response from {self.display_name}",
                error_code=ErrorCode.MALFORMED_RESPONSE,
                http_status=response.status_code,
            )
        return data

    async def _get_json(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        action: str = "Request",
    ) -> Dict[str, Any]:
        response = await self._send("GET", url, headers=headers)
        if response.status_code != 200:
            raise self._error_from_response(response, f"{action} failed")
        return self._require_json(response)

    async def _post_form(self, url: str, form: Dict[str, str]) -> httpx.Response:
        return await self._send(
            "POST",
            url,
            data=form,
            headers={"Accept": "application/json"},
        )


class OIDCProvider(SSOProvider):
    """
    Standard OpenID Connect provider.

    Endpoints live directly under the issuer ({issuer}/authorize,
    {issuer}/token, {issuer}/userinfo, {issuer}/keys,
    {issuer}/device/authorize) unless use_discovery is set, in which case
    they are read from {issuer}/.well-known/openid-configuration.
    Vendor subclasses override the endpoint layout and claim mapping.
    """

    family = ProviderFamily.OIDC.value
    default_display_name = "OpenID Connect"

    def __init__(
        self,
        config: ProviderConfig,
        settings: Optional[SSOSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(config, settings, http_client, clock)
        self._validate_config()
        self._endpoints: Optional[OIDCEndpoints] = (
            None if config.use_discovery else self._static_endpoints()
        )
        self.jwks = JWKSKeyCache(
            self._fetch_key_set,
            ttl=self.settings.jwks_cache_ttl,
            clock=self._clock,
            name=self.provider_id,
        )

    def _validate_config(self) -> None:
        if not self.config.issuer_base:
            raise ConfigError(
                f"{self.display_name} provider requires issuer_base (the issuer URL)",
                setting="issuer_base",
                provider_id=self.provider_id,
            )

    @property
    def issuer_url(self) -> str:
        base = self.config.issuer_base or ""
        if "://" not in base:
            base = f"https://{base}"
        return base

    @property
    def scope(self) -> str:
        return " ".join(self.config.scopes)

    def _static_endpoints(self) -> OIDCEndpoints:
        issuer = self.issuer_url
        return OIDCEndpoints(
            authorization_endpoint=f"{issuer}/authorize",
            token_endpoint=f"{issuer}/token",
            userinfo_endpoint=f"{issuer}/userinfo",
            jwks_uri=f"{issuer}/keys",
            device_authorization_endpoint=f"{issuer}/device/authorize",
            issuer=issuer,
        )

    async def get_endpoints(self) -> OIDCEndpoints:
        """Return the provider endpoints, discovering them on first use if configured."""
        if self._endpoints is None:
            self._endpoints = await self._discover_endpoints()
        return self._endpoints

    async def _discover_endpoints(self) -> OIDCEndpoints:
        discovery_url = f"{self.issuer_url}/.well-known/openid-configuration"
        document = await self._get_json(discovery_url, action="OIDC discovery")

        try:
            endpoints = OIDCEndpoints(
                authorization_endpoint=document["authorization_endpoint"],
                token_endpoint=document["token_endpoint"],
                userinfo_endpoint=document["userinfo_endpoint"],
                jwks_uri=document["jwks_uri"],
                device_authorization_endpoint=document.get("device_authorization_endpoint"),
                # Pin to the configured issuer, not whatever the document claims
                issuer=self.issuer_url,
            )
        except (KeyError, PydanticValidationError):
            raise ProtocolError(
                "OIDC discovery document is missing required endpoints",
                error_code=ErrorCode.MALFORMED_RESPONSE,
            )

        logger.info(f"Discovered OIDC endpoints for {self.provider_id}")
        return endpoints

    async def _fetch_key_set(self) -> Dict[str, Any]:
        endpoints = await self.get_endpoints()
        return await self._get_json(endpoints.jwks_uri, action="JWKS fetch")

    def _client_credentials(self) -> Dict[str, str]:
        form = {"client_id": self.config.client_id}
        secret = self.config.client_secret_value()
        if secret:
            form["client_secret"] = secret
        return form

    def _extra_authorization_params(self) -> Dict[str, str]:
        return {}

    # -------------------------------------------------------------------------
    # Redirect flow
    # -------------------------------------------------------------------------

    async def build_authorization_url(
        self,
        redirect_uri: str,
        state: str,
        code_verifier: str,
        nonce: Optional[str] = None,
    ) -> str:
        endpoints = await self.get_endpoints()

        params = {
            "client_id": self.config.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "scope": self.scope,
            "state": state,
            "code_challenge": code_challenge(code_verifier),
            "code_challenge_method": CODE_CHALLENGE_METHOD,
        }
        params.update(self._extra_authorization_params())
        if nonce is not None:
            params["nonce"] = nonce

        separator = "&" if "?" in endpoints.authorization_endpoint else "?"
        return f"{endpoints.authorization_endpoint}{separator}{urlencode(params)}"

    async def exchange_code(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> TokenResponse:
        form = {
            **self._client_credentials(),
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        }
        return await self._token_request(form, "Authorization code exchange")

    async def refresh_token(self, refresh_token: str) -> TokenResponse:
        form = {
            **self._client_credentials(),
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": self.scope,
        }
        return await self._token_request(form, "Token refresh")

    async def _token_request(self, form: Dict[str, str], action: str) -> TokenResponse:
        endpoints = await self.get_endpoints()
        response = await self._post_form(endpoints.token_endpoint, form)
        if response.status_code != 200:
            raise self._error_from_response(response, f"{action} failed")
        return self._parse_tokens(response)

    def _parse_tokens(self, response: httpx.Response) -> TokenResponse:
        data = self._require_json(response)
        try:
            return TokenResponse.from_token_payload(data)
        except PydanticValidationError:
            raise ProtocolError(
                "Token response is missing an access token",
                error_code=ErrorCode.MALFORMED_RESPONSE,
            )

    async def fetch_user_info(self, access_token: str) -> UserInfo:
        endpoints = await self.get_endpoints()
        data = await self._get_json(
            endpoints.userinfo_endpoint,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
            action="User info request",
        )
        try:
            return self._parse_user_info(data)
        except PydanticValidationError:
            raise ProtocolError(
                "User info response has no subject",
                error_code=ErrorCode.MALFORMED_RESPONSE,
            )

    def _parse_user_info(self, data: Dict[str, Any]) -> UserInfo:
        return UserInfo.from_claims(data)

    # -------------------------------------------------------------------------
    # ID token validation
    # -------------------------------------------------------------------------

    async def validate_id_token(
        self,
        id_token: str,
        nonce: Optional[str] = None,
    ) -> IdTokenClaims:
        """
        Validate an ID token.

        Steps, each of which aborts on failure:
        1. Exactly three dot-separated segments
        2. Header alg is RS256 and kid is present
        3. Signing key resolved from the JWKS cache by kid
        4. RSA-SHA256 signature over the transmitted "header.payload" bytes
        5. Payload decoded
        6. Not expired; not issued further in the future than the clock skew
        7. Issuer starts with the expected issuer base
        8. Audience equals the configured client id
        9. Nonce matches when one was sent at authorization time

        Args:
            id_token: The compact-serialized JWT
            nonce: Nonce sent in the authorization request, if any

        Returns:
            Validated claims

        Raises:
            ValidationError: On any failed check (KeyNotFoundError and
                NonceMismatchError are subclasses)
        """
        parts = id_token.split(".") if isinstance(id_token, str) else []
        if len(parts) != 3:
            raise ValidationError(
                "Invalid ID token format",
                error_code=ErrorCode.MALFORMED_TOKEN,
            )
        header_segment, payload_segment, signature_segment = parts

        header = self._decode_segment(header_segment, "header")
        alg = header.get("alg")
        if alg != ID_TOKEN_ALGORITHM:
            raise ValidationError(
                f"Unsupported ID token algorithm: {str(alg)[:16]} (expected {ID_TOKEN_ALGORITHM})",
                error_code=ErrorCode.UNSUPPORTED_ALGORITHM,
            )
        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise ValidationError(
                "Missing kid in ID token header",
                error_code=ErrorCode.MISSING_KID,
            )

        endpoints = await self.get_endpoints()
        jwk = await self.jwks.get_signing_key(kid)

        signing_input = f"{header_segment}.{payload_segment}".encode("utf-8")
        self._verify_signature(jwk, signing_input, signature_segment)

        claims = self._decode_segment(payload_segment, "payload")
        return self._validate_claims(claims, endpoints.issuer, nonce)

    def _verify_signature(self, jwk: CachedJwk, signing_input: bytes, signature_segment: str) -> None:
        try:
            signature = base64url_decode(signature_segment)
            jwk.public_key().verify(
                signature,
                signing_input,
                padding.PKCS1v15(),
                hashes.SHA256(),
            )
        except InvalidSignature:
            logger.warning(f"{self.provider_id}: ID token signature rejected (kid {jwk.kid[:16]!r})")
            raise ValidationError(
                "Invalid ID token signature",
                error_code=ErrorCode.INVALID_SIGNATURE,
            )
        except ValueError:
            # Undecodable signature or unusable key numbers
            logger.warning(f"{self.provider_id}: ID token signature could not be checked")
            raise ValidationError(
                "ID token signature verification failed",
                error_code=ErrorCode.INVALID_SIGNATURE,
            )

    @staticmethod
    def _decode_segment(segment: str, label: str) -> Dict[str, Any]:
        try:
            data = json.loads(base64url_decode(segment))
        except ValueError:
            raise ValidationError(
                f"Malformed ID token {label}",
                error_code=ErrorCode.MALFORMED_TOKEN,
            )
        if not isinstance(data, dict):
            raise ValidationError(
                f"Malformed ID token {label}",
                error_code=ErrorCode.MALFORMED_TOKEN,
            )
        return data

    def _validate_claims(
        self,
        claims: Dict[str, Any],
        expected_issuer: str,
        nonce: Optional[str],
    ) -> IdTokenClaims:
        exp = claims.get("exp")
        iat = claims.get("iat")
        if not _is_number(exp) or not _is_number(iat):
            raise ValidationError(
                "ID token is missing exp or iat",
                error_code=ErrorCode.MALFORMED_TOKEN,
            )

        now = self._clock().timestamp()
        if now > exp:
            raise ValidationError("ID token has expired", error_code=ErrorCode.TOKEN_EXPIRED)
        if iat > now + self.settings.clock_skew_seconds:
            raise ValidationError(
                "ID token issued in the future",
                error_code=ErrorCode.TOKEN_NOT_YET_VALID,
            )

        iss = claims.get("iss")
        if not isinstance(iss, str) or not self._issuer_matches(iss, expected_issuer):
            raise ValidationError(
                "Invalid issuer in ID token",
                error_code=ErrorCode.INVALID_ISSUER,
            )

        aud = claims.get("aud")
        if not isinstance(aud, str) or aud != self.config.client_id:
            raise ValidationError(
                "Invalid audience in ID token",
                error_code=ErrorCode.INVALID_AUDIENCE,
            )

        token_nonce = claims.get("nonce")
        if nonce is not None and token_nonce != nonce:
            logger.warning(f"{self.provider_id}: ID token nonce mismatch")
            raise NonceMismatchError()

        sub = claims.get("sub")
        if not isinstance(sub, str) or not sub:
            raise ValidationError(
                "ID token has no subject",
                error_code=ErrorCode.MALFORMED_TOKEN,
            )

        try:
            issued_at = datetime.fromtimestamp(iat, tz=timezone.utc)
            expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise ValidationError(
                "ID token timestamps are out of range",
                error_code=ErrorCode.MALFORMED_TOKEN,
            )

        return IdTokenClaims(
            issuer=iss,
            subject=sub,
            audience=aud,
            issued_at=issued_at,
            expires_at=expires_at,
            nonce=token_nonce if isinstance(token_nonce, str) else None,
            email=self._claims_email(claims),
            all_claims=claims,
        )

    def _issuer_matches(self, issuer: str, expected_issuer: str) -> bool:
        """
        The issuer must start with the expected base, ending at a path
        boundary so that https://idp.example.com.evil.test never matches.
        """
        prefix = expected_issuer.rstrip("/")
        return issuer == prefix or issuer.startswith(prefix + "/")

    def _claims_email(self, claims: Dict[str, Any]) -> Optional[str]:
        email = claims.get("email")
        return email if isinstance(email, str) else None

    # -------------------------------------------------------------------------
    # Device flow
    # -------------------------------------------------------------------------

    def _device_authorization_form(self) -> Dict[str, str]:
        return {"client_id": self.config.client_id, "scope": self.scope}

    async def start_device_auth(self) -> DeviceAuthSession:
        endpoints = await self.get_endpoints()
        if not endpoints.device_authorization_endpoint:
            raise ConfigError(
                f"{self.display_name} does not support device authorization",
                provider_id=self.provider_id,
                error_code=ErrorCode.UNSUPPORTED_FLOW,
            )

        response = await self._post_form(
            endpoints.device_authorization_endpoint,
            self._device_authorization_form(),
        )
        if response.status_code != 200:
            raise self._error_from_response(response, "Device authorization failed")
        data = self._require_json(response)

        try:
            session = DeviceAuthSession.from_device_payload(
                data,
                now=self._clock(),
                default_interval=self.settings.device_poll_default_interval,
            )
        except (KeyError, TypeError, ValueError):
            raise ProtocolError(
                "Device authorization response is missing required fields",
                error_code=ErrorCode.MALFORMED_RESPONSE,
            )

        logger.info(
            f"Device authorization started for {self.provider_id}, "
            f"interval {session.poll_interval_seconds}s, expires {session.expires_at.isoformat()}"
        )
        return session

    async def poll_device_auth(self, device_code: str) -> DevicePollResult:
        """
        Poll once for a device code.

        The token endpoint's error string is mapped to a DevicePollStatus
        here and nowhere else. Unknown errors raise ProtocolError.
        """
        endpoints = await self.get_endpoints()
        form = {
            **self._client_credentials(),
            "grant_type": DEVICE_CODE_GRANT_TYPE,
            "device_code": device_code,
        }
        response = await self._post_form(endpoints.token_endpoint, form)

        if response.status_code == 200:
            return DevicePollResult(
                status=DevicePollStatus.SUCCESS,
                tokens=self._parse_tokens(response),
            )

        data = self._json_body(response) or {}
        error = data.get("error")
        status = _DEVICE_POLL_ERRORS.get(error) if isinstance(error, str) else None
        if status is None:
            raise self._error_from_response(response, "Device authorization poll failed")

        logger.debug(f"{self.provider_id}: device poll returned {status.value}")
        return DevicePollResult(status=status)


class OktaProvider(OIDCProvider):
    """
    Okta provider.

    issuer_base is the Okta domain (your-org.okta.com) for the org
    authorization server, or a custom authorization server issuer
    (your-org.okta.com/oauth2/default).
    """

    family = ProviderFamily.OKTA.value
    default_display_name = "Okta"

    def _validate_config(self) -> None:
        if not self.config.issuer_base:
            raise ConfigError(
                "Okta requires issuer_base (your Okta domain, e.g. your-org.okta.com)",
                setting="issuer_base",
                provider_id=self.provider_id,
            )

    def _static_endpoints(self) -> OIDCEndpoints:
        issuer = self.issuer_url
        # Custom authorization servers already carry /oauth2/{server_id}
        base = f"{issuer}/v1" if "/oauth2/" in issuer else f"{issuer}/oauth2/v1"
        return OIDCEndpoints(
            authorization_endpoint=f"{base}/authorize",
            token_endpoint=f"{base}/token",
            userinfo_endpoint=f"{base}/userinfo",
            jwks_uri=f"{base}/keys",
            device_authorization_endpoint=f"{base}/device/authorize",
            issuer=issuer,
        )


class AzureADProvider(OIDCProvider):
    """
    Microsoft Entra ID (Azure AD) provider, v2.0 endpoints.

    issuer_base is the directory tenant id. User info comes from Microsoft
    Graph /me, whose field names differ from standard OIDC claims.
    """

    family = ProviderFamily.AZURE.value
    default_display_name = "Microsoft Entra ID"

    LOGIN_HOST = "https://login.microsoftonline.com"
    GRAPH_ME_ENDPOINT = "https://graph.microsoft.com/v1.0/me"
    MULTI_TENANT_ALIASES = frozenset({"common", "organizations", "consumers"})
    _TENANT_GUID_RE = re.compile(
        r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
        re.IGNORECASE,
    )

    def _validate_config(self) -> None:
        if not self.config.issuer_base:
            raise ConfigError(
                "Azure AD requires issuer_base (the directory tenant id)",
                setting="issuer_base",
                provider_id=self.provider_id,
            )

    @property
    def tenant(self) -> str:
        return self.config.issuer_base or "common"

    @property
    def issuer_url(self) -> str:
        # Tokens carry the tenant GUID; aliases and domain names only pin the host
        if self._TENANT_GUID_RE.match(self.tenant):
            return f"{self.LOGIN_HOST}/{self.tenant}"
        return f"{self.LOGIN_HOST}/"

    def _static_endpoints(self) -> OIDCEndpoints:
        base = f"{self.LOGIN_HOST}/{self.tenant}"
        return OIDCEndpoints(
            authorization_endpoint=f"{base}/oauth2/v2.0/authorize",
            token_endpoint=f"{base}/oauth2/v2.0/token",
            userinfo_endpoint=self.GRAPH_ME_ENDPOINT,
            jwks_uri=f"{base}/discovery/v2.0/keys",
            device_authorization_endpoint=f"{base}/oauth2/v2.0/devicecode",
            issuer=self.issuer_url,
        )

    def _extra_authorization_params(self) -> Dict[str, str]:
        return {"response_mode": "query"}

    def _parse_user_info(self, data: Dict[str, Any]) -> UserInfo:
        return UserInfo(
            subject=data.get("id"),
            email=data.get("mail") or data.get("userPrincipalName"),
            name=data.get("displayName"),
            given_name=data.get("givenName"),
            family_name=data.get("surname"),
            raw_claims=dict(data),
        )

    def _claims_email(self, claims: Dict[str, Any]) -> Optional[str]:
        email = claims.get("email") or claims.get("preferred_username")
        return email if isinstance(email, str) else None


class GoogleProvider(OIDCProvider):
    """
    Google provider.

    Endpoints are fixed; issuer_base is not required. Google issues ID
    tokens with iss either "https://accounts.google.com" or
    "accounts.google.com".
    """

    family = ProviderFamily.GOOGLE.value
    default_display_name = "Google"

    ISSUERS = ("https://accounts.google.com", "accounts.google.com")

    def _validate_config(self) -> None:
        pass

    @property
    def issuer_url(self) -> str:
        return self.ISSUERS[0]

    def _static_endpoints(self) -> OIDCEndpoints:
        return OIDCEndpoints(
            authorization_endpoint="https://accounts.google.com/o/oauth2/v2/auth",
            token_endpoint="https://oauth2.googleapis.com/token",
            userinfo_endpoint="https://openidconnect.googleapis.com/v1/userinfo",
            jwks_uri="https://www.googleapis.com/oauth2/v3/certs",
            device_authorization_endpoint="https://oauth2.googleapis.com/device/code",
            issuer=self.issuer_url,
        )

    def _issuer_matches(self, issuer: str, expected_issuer: str) -> bool:
        return issuer in self.ISSUERS


DEFAULT_PROVIDER_CLASSES: Dict[str, Type[SSOProvider]] = {
    ProviderFamily.OIDC.value: OIDCProvider,
    ProviderFamily.OKTA.value: OktaProvider,
    ProviderFamily.AZURE.value: AzureADProvider,
    ProviderFamily.GOOGLE.value: GoogleProvider,
}


class SSOProviderFactory:
    """
    Factory for creating SSO provider instances.

    Each manager owns its own factory; there is no shared registry.
    """

    def __init__(self, provider_classes: Optional[Dict[str, Type[SSOProvider]]] = None):
        if provider_classes is None:
            provider_classes = DEFAULT_PROVIDER_CLASSES
        self._providers: Dict[str, Type[SSOProvider]] = dict(provider_classes)

    def register_provider(self, family: str, provider_class: Type[SSOProvider]) -> None:
        """
        Register a provider class for a family name.

        Args:
            family: Family name matched against ProviderConfig.family
            provider_class: The provider class (must extend SSOProvider)
        """
        if not issubclass(provider_class, SSOProvider):
            raise ValueError("Provider class must extend SSOProvider")
        self._providers[family.lower()] = provider_class
        logger.info(f"Registered SSO provider family: {family}")

    def create_provider(self, config: ProviderConfig, **kwargs: Any) -> Optional[SSOProvider]:
        """
        Create a provider for a configuration.

        Returns:
            The provider, or None if the family is unknown

        Raises:
            ConfigError: If the configuration lacks a required setting
        """
        provider_class = self._providers.get(config.family)
        if provider_class is None:
            return None
        return provider_class(config, **kwargs)

    def get_supported_types(self) -> List[str]:
        return list(self._providers)
