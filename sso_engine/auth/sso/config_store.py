"""
Provider configuration storage.

The manager depends only on the SSOConfigStore protocol. Two stores are
provided: an in-memory one for tests and embedding, and a JSON file store
for small single-instance deployments.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

from pydantic import ValidationError as PydanticValidationError

from sso_engine.config import get_settings
from sso_engine.exceptions import ConfigError
from sso_engine.types.sso import ProviderConfig

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_PATH = "./data/sso_providers.json"


@runtime_checkable
class SSOConfigStore(Protocol):
    """Where provider configurations are read from and written to."""

    async def get_configs(self) -> List[ProviderConfig]:
        ...

    async def save_config(self, config: ProviderConfig) -> None:
        ...

    async def delete_config(self, provider_id: str) -> bool:
        ...


class InMemoryConfigStore:
    """Configuration store backed by a dict."""

    def __init__(self, configs: Optional[List[ProviderConfig]] = None):
        self._configs: Dict[str, ProviderConfig] = {
            config.provider_id: config for config in configs or []
        }

    async def get_configs(self) -> List[ProviderConfig]:
        return list(self._configs.values())

    async def save_config(self, config: ProviderConfig) -> None:
        self._configs[config.provider_id] = config

    async def delete_config(self, provider_id: str) -> bool:
        return self._configs.pop(provider_id.lower(), None) is not None


class JSONFileConfigStore:
    """
    File-based provider configuration storage.

    Configurations are stored as a JSON object keyed by provider id. The file
    holds client secrets, so it is written with owner-only permissions.
    Suitable for a single instance; use a database for anything larger.
    """

    def __init__(self, storage_path: Optional[str] = None):
        """
        Initialize the configuration store.

        Args:
            storage_path: Path to the JSON file. Defaults to
                         SSOSettings.config_store_path (SSO_CONFIG_STORE_PATH)
                         or ./data/sso_providers.json
        """
        self.storage_path = Path(
            storage_path
            or get_settings().sso.config_store_path
            or DEFAULT_STORAGE_PATH
        )
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        logger.info(f"SSO config storage initialized at: {self.storage_path}")

    def _load(self) -> Dict[str, dict]:
        """Load raw configurations from disk."""
        if not self.storage_path.exists():
            return {}
        try:
            with open(self.storage_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(
                "SSO configuration file is not valid JSON",
                setting="config_store_path",
                internal_message=str(e),
            )
        if not isinstance(data, dict):
            raise ConfigError(
                "SSO configuration file must contain a JSON object",
                setting="config_store_path",
            )
        return data

    def _save(self, data: Dict[str, dict]) -> None:
        """Write configurations to disk atomically."""
        tmp_path = self.storage_path.with_suffix(self.storage_path.suffix + ".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.storage_path)

    async def get_configs(self) -> List[ProviderConfig]:
        with self._lock:
            data = self._load()

        configs = []
        for provider_id, raw in data.items():
            if not isinstance(raw, dict):
                logger.error(f"Ignoring SSO config {provider_id!r}: entry is not an object")
                continue
            try:
                configs.append(ProviderConfig(**{"provider_id": provider_id, **raw}))
            except PydanticValidationError as e:
                logger.error(
                    f"Ignoring invalid SSO config {provider_id!r}: "
                    f"{e.error_count()} validation errors"
                )
        logger.debug(f"Loaded {len(configs)} SSO provider configs from storage")
        return configs

    async def save_config(self, config: ProviderConfig) -> None:
        with self._lock:
            data = self._load()
            data[config.provider_id] = config.to_storage_dict()
            self._save(data)
        logger.info(f"Saved SSO config for provider: {config.provider_id}")

    async def delete_config(self, provider_id: str) -> bool:
        provider_id = provider_id.lower()
        with self._lock:
            data = self._load()
            if provider_id not in data:
                return False
            del data[provider_id]
            self._save(data)
        logger.info(f"Deleted SSO config for provider: {provider_id}")
        return True
