"""
Tests for provider configuration stores.
"""

import json
import os
import stat

import pytest

from sso_engine.auth.sso.config_store import (
    InMemoryConfigStore,
    JSONFileConfigStore,
    SSOConfigStore,
)
from sso_engine.config import reload_settings
from sso_engine.exceptions import ConfigError
from sso_engine.types.sso import ProviderConfig


@pytest.fixture
def okta():
    return ProviderConfig(
        provider_id="okta",
        client_id="client-abc",
        client_secret="s3cret",
        issuer_base="acme.okta.com",
        scopes=["openid", "email"],
    )


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "config" / "sso_providers.json"


class TestInMemoryConfigStore:
    """Tests for the dict-backed store."""

    @pytest.mark.asyncio
    async def test_save_get_delete(self, okta):
        store = InMemoryConfigStore()

        await store.save_config(okta)
        assert await store.get_configs() == [okta]

        assert await store.delete_config("OKTA") is True
        assert await store.get_configs() == []
        assert await store.delete_config("okta") is False

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryConfigStore(), SSOConfigStore)


class TestJSONFileConfigStore:
    """Tests for the JSON file store."""

    @pytest.mark.asyncio
    async def test_round_trip_keeps_secret(self, okta, store_path):
        store = JSONFileConfigStore(str(store_path))
        await store.save_config(okta)

        configs = await JSONFileConfigStore(str(store_path)).get_configs()

        assert len(configs) == 1
        assert configs[0].provider_id == "okta"
        assert configs[0].client_secret_value() == "s3cret"
        assert configs[0].scopes == ["openid", "email"]

    @pytest.mark.asyncio
    async def test_file_is_owner_only(self, okta, store_path):
        await JSONFileConfigStore(str(store_path)).save_config(okta)

        mode = stat.S_IMODE(os.stat(store_path).st_mode)
        assert mode == 0o600

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, store_path):
        assert await JSONFileConfigStore(str(store_path)).get_configs() == []

    @pytest.mark.asyncio
    async def test_delete(self, okta, store_path):
        store = JSONFileConfigStore(str(store_path))
        await store.save_config(okta)

        assert await store.delete_config("okta") is True
        assert await store.delete_config("okta") is False
        assert json.loads(store_path.read_text()) == {}

    @pytest.mark.asyncio
    async def test_invalid_json_is_config_error(self, store_path):
        store = JSONFileConfigStore(str(store_path))
        store_path.write_text("{not json")

        with pytest.raises(ConfigError):
            await store.get_configs()

    @pytest.mark.asyncio
    async def test_invalid_entries_are_skipped(self, store_path):
        store = JSONFileConfigStore(str(store_path))
        store_path.write_text(json.dumps({
            "okta": {"client_id": "abc", "domain": "acme.okta.com"},
            "broken": {"issuer_base": "no-client-id.example.com"},
            "junk": "not-an-object",
        }))

        configs = await store.get_configs()

        assert [c.provider_id for c in configs] == ["okta"]
        assert configs[0].issuer_base == "acme.okta.com"

    def test_satisfies_protocol(self, store_path):
        assert isinstance(JSONFileConfigStore(str(store_path)), SSOConfigStore)


class TestDefaultStoragePath:
    """Tests for where the file store lives when no path is given."""

    @pytest.fixture
    def configured_path(self, tmp_path, monkeypatch):
        path = tmp_path / "from-settings" / "providers.json"
        monkeypatch.setenv("SSO_CONFIG_STORE_PATH", str(path))
        reload_settings()
        yield path
        monkeypatch.delenv("SSO_CONFIG_STORE_PATH")
        reload_settings()

    def test_uses_settings_path(self, configured_path):
        assert JSONFileConfigStore().storage_path == configured_path

    def test_explicit_path_wins(self, configured_path, store_path):
        assert JSONFileConfigStore(str(store_path)).storage_path == store_path

    @pytest.mark.asyncio
    async def test_settings_path_round_trip(self, configured_path, okta):
        await JSONFileConfigStore().save_config(okta)

        assert configured_path.exists()
        assert [c.provider_id for c in await JSONFileConfigStore().get_configs()] == ["okta"]
