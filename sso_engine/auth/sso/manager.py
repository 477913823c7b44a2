"""
SSO Manager.

Orchestrates providers and owns every piece of mutable flow state: the
provider map, the pending authorization table and the record of device codes
that already reached a terminal outcome. Each manager is constructed
explicitly with its configuration store; nothing is shared between instances.
"""

import hashlib
import logging
import threading
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from sso_engine.auth.sso.config_store import SSOConfigStore
from sso_engine.auth.sso.pending import PendingAuthorizationTable
from sso_engine.auth.sso.pkce import generate_code_verifier, generate_state
from sso_engine.auth.sso.providers import SSOProvider, SSOProviderFactory
from sso_engine.config import SSOSettings, get_settings
from sso_engine.exceptions import ConfigError, ErrorCode, FlowStateError, ProviderNotFoundError
from sso_engine.types.sso import (
    DeviceAuthSession,
    DeviceFlowPollResult,
    DevicePollStatus,
    PendingAuthorization,
    ProviderConfig,
    SSOAuthResult,
    TokenResponse,
)
from sso_engine.utils.logging import clear_flow_context, set_flow_context, short_id

logger = logging.getLogger(__name__)

# Retention for finished device codes; exceeds the device code lifetimes IdPs issue
FINISHED_DEVICE_CODE_RETENTION = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SSOManager:
    """
    Flow-level entry point for the calling system.

    Usage:
        async with SSOManager(JSONFileConfigStore("providers.json")) as manager:
            await manager.init()
            url = await manager.start_authorization_flow("okta", redirect_uri)
            ...
            result = await manager.handle_callback(state, code)
    """

    def __init__(
        self,
        config_store: SSOConfigStore,
        settings: Optional[SSOSettings] = None,
        factory: Optional[SSOProviderFactory] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            config_store: Where provider configurations are kept
            settings: Engine settings; defaults to the environment
            factory: Provider factory; a default one is created if omitted
            http_client: HTTP client shared by all providers
            clock: Time source, injectable for tests
        """
        self.config_store = config_store
        self.settings = settings or get_settings().sso
        self.factory = factory or SSOProviderFactory()
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=self.settings.http_timeout_seconds,
        )
        self._clock = clock or _utcnow

        self._providers: Dict[str, SSOProvider] = {}
        self.pending = PendingAuthorizationTable(
            ttl=self.settings.pending_auth_ttl,
            clock=self._clock,
        )
        self._finished_device_codes: "OrderedDict[str, datetime]" = OrderedDict()
        self._polling_device_codes: Set[str] = set()
        self._device_lock = threading.Lock()

    async def __aenter__(self) -> "SSOManager":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Release the HTTP client if this manager created it."""
        if self._owns_client:
            await self._http_client.aclose()

    # -------------------------------------------------------------------------
    # Provider management
    # -------------------------------------------------------------------------

    async def init(self) -> None:
        """Load provider configurations from the store."""
        configs = await self.config_store.get_configs()
        self.load_providers(configs)

    def load_providers(self, configs: List[ProviderConfig]) -> None:
        """
        Rebuild the provider map from configurations.

        Unknown provider families are ignored and misconfigured providers are
        skipped with an error log; neither stops the others from loading.
        Disabled providers are loaded but cannot start or finish flows.
        """
        providers: Dict[str, SSOProvider] = {}
        for config in configs:
            try:
                provider = self._create_provider(config)
            except ConfigError as e:
                logger.error(f"Skipping SSO provider {config.provider_id}: {e.message}")
                continue
            if provider is None:
                logger.warning(
                    f"Ignoring SSO provider {config.provider_id}: unknown type {config.family!r}"
                )
                continue
            providers[config.provider_id] = provider

        self._providers = providers
        logger.info(
            f"Loaded {len(providers)} SSO providers "
            f"({len(self.enabled_providers)} enabled)"
        )

    def _create_provider(self, config: ProviderConfig) -> Optional[SSOProvider]:
        return self.factory.create_provider(
            config,
            settings=self.settings,
            http_client=self._http_client,
            clock=self._clock,
        )

    def get_provider(self, provider_id: str) -> Optional[SSOProvider]:
        return self._providers.get(provider_id.lower())

    @property
    def enabled_providers(self) -> List[SSOProvider]:
        return [p for p in self._providers.values() if p.is_enabled]

    @property
    def has_enabled_providers(self) -> bool:
        return any(p.is_enabled for p in self._providers.values())

    def list_providers(self) -> List[Dict[str, Any]]:
        """Describe loaded providers for a login screen or admin view."""
        return [
            {
                "provider_id": p.provider_id,
                "display_name": p.display_name,
                "type": p.config.family,
                "enabled": p.is_enabled,
            }
            for p in self._providers.values()
        ]

    def _require_provider(self, provider_id: str) -> SSOProvider:
        provider = self.get_provider(provider_id)
        if provider is None or not provider.is_enabled:
            raise ProviderNotFoundError(provider_id)
        return provider

    async def get_configs(self) -> List[ProviderConfig]:
        return await self.config_store.get_configs()

    async def save_config(self, config: ProviderConfig) -> None:
        """
        Persist a provider configuration and reload all providers.

        Raises:
            ConfigError: If the configuration cannot build a provider
        """
        if self._create_provider(config) is None:
            raise ConfigError(
                f"Unsupported provider type: {config.family}",
                setting="provider_type",
                provider_id=config.provider_id,
            )
        await self.config_store.save_config(config)
        await self.init()

    async def delete_config(self, provider_id: str) -> bool:
        """Remove a provider configuration and reload. Returns False if it did not exist."""
        deleted = await self.config_store.delete_config(provider_id)
        if deleted:
            await self.init()
        return deleted

    # -------------------------------------------------------------------------
    # Redirect flow
    # -------------------------------------------------------------------------

    async def start_authorization_flow(
        self,
        provider_id: str,
        redirect_uri: str,
        nonce: Optional[str] = None,
    ) -> str:
        """
        Start an authorization-code flow with PKCE.

        Returns:
            The URL to send the user's browser to

        Raises:
            ProviderNotFoundError: If the provider is unknown or disabled
        """
        provider = self._require_provider(provider_id)
        state = generate_state()
        code_verifier = generate_code_verifier()

        url = await provider.build_authorization_url(
            redirect_uri,
            state,
            code_verifier,
            nonce=nonce,
        )
        self.pending.put(
            state,
            PendingAuthorization(
                state=state,
                provider_id=provider.provider_id,
                code_verifier=code_verifier,
                redirect_uri=redirect_uri,
                nonce=nonce,
                created_at=self._clock(),
            ),
        )

        logger.info(
            f"Started authorization flow for {provider.provider_id} (state {short_id(state)})"
        )
        return url

    async def handle_callback(self, state: str, code: str) -> SSOAuthResult:
        """
        Complete an authorization-code flow.

        The pending authorization is consumed before anything else happens,
        so a state can never be redeemed twice, even when this call fails.

        Raises:
            FlowStateError: If the state is unknown, already used or expired
            ValidationError: If the ID token fails validation
            ProtocolError / NetworkError: If the IdP misbehaves
        """
        pending = self.pending.take_and_remove(state)
        set_flow_context(provider_id=pending.provider_id, flow_id=short_id(state))
        try:
            provider = self._require_provider(pending.provider_id)
            tokens = await provider.exchange_code(
                code,
                pending.code_verifier,
                pending.redirect_uri,
            )
            result = await self._complete_authentication(provider, tokens, pending.nonce)
            logger.info(f"SSO callback completed for {provider.provider_id}")
            return result
        finally:
            clear_flow_context()

    async def _complete_authentication(
        self,
        provider: SSOProvider,
        tokens: TokenResponse,
        nonce: Optional[str],
    ) -> SSOAuthResult:
        id_claims = None
        if tokens.id_token:
            id_claims = await provider.validate_id_token(tokens.id_token, nonce)
        user_info = await provider.fetch_user_info(tokens.access_token)

        return SSOAuthResult(
            provider_id=provider.provider_id,
            tokens=tokens,
            user_info=user_info,
            id_claims=id_claims,
        )

    async def refresh_tokens(self, provider_id: str, refresh_token: str) -> TokenResponse:
        provider = self._require_provider(provider_id)
        return await provider.refresh_token(refresh_token)

    # -------------------------------------------------------------------------
    # Device flow
    # -------------------------------------------------------------------------

    async def start_device_flow(self, provider_id: str) -> DeviceAuthSession:
        provider = self._require_provider(provider_id)
        return await provider.start_device_auth()

    async def poll_device_flow(self, provider_id: str, device_code: str) -> DeviceFlowPollResult:
        """
        Poll once for a device code.

        PENDING and SLOW_DOWN are returned as statuses, as are EXPIRED and
        DENIED; only SUCCESS carries a result. Once a device code reaches a
        terminal status it cannot be polled again.

        Raises:
            FlowStateError: If the device code already finished or another
                poll for it is still in flight
        """
        provider = self._require_provider(provider_id)
        key = self._device_code_key(provider.provider_id, device_code)
        self._claim_device_code(key)

        set_flow_context(provider_id=provider.provider_id, flow_id=key[:8])
        try:
            outcome = await provider.poll_device_auth(device_code)
            if not outcome.status.is_terminal:
                return DeviceFlowPollResult(status=outcome.status)

            self._mark_device_code_finished(key)
            if outcome.status != DevicePollStatus.SUCCESS:
                logger.info(f"Device flow for {provider.provider_id} ended: {outcome.status.value}")
                return DeviceFlowPollResult(status=outcome.status)

            result = await self._complete_authentication(provider, outcome.tokens, nonce=None)
            logger.info(f"Device flow completed for {provider.provider_id}")
            return DeviceFlowPollResult(status=DevicePollStatus.SUCCESS, result=result)
        finally:
            self._release_device_code(key)
            clear_flow_context()

    @staticmethod
    def _device_code_key(provider_id: str, device_code: str) -> str:
        # Only a digest is retained, never the device code itself
        return hashlib.sha256(f"{provider_id}:{device_code}".encode("utf-8")).hexdigest()

    def _claim_device_code(self, key: str) -> None:
        """Check and reserve a device code for one poll, atomically."""
        with self._device_lock:
            self._prune_finished_device_codes()
            if key in self._finished_device_codes:
                raise FlowStateError(
                    "Device code has already been used",
                    error_code=ErrorCode.DEVICE_CODE_USED,
                )
            if key in self._polling_device_codes:
                raise FlowStateError(
                    "Device code is already being polled",
                    error_code=ErrorCode.DEVICE_POLL_IN_PROGRESS,
                )
            self._polling_device_codes.add(key)

    def _release_device_code(self, key: str) -> None:
        with self._device_lock:
            self._polling_device_codes.discard(key)

    def _mark_device_code_finished(self, key: str) -> None:
        with self._device_lock:
            self._finished_device_codes[key] = self._clock()

    def _prune_finished_device_codes(self) -> None:
        cutoff = self._clock() - FINISHED_DEVICE_CODE_RETENTION
        while self._finished_device_codes:
            key, finished_at = next(iter(self._finished_device_codes.items()))
            if finished_at > cutoff:
                break
            del self._finished_device_codes[key]
