"""Unit tests for ProviderRegistry, one-shot installation and host config."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from codex_provider.errors import ProviderFactoryError, ProviderNotFoundError
from codex_provider.plugin import DEFAULT_MODELS, PROVIDER_FACTORY, apply_provider_config
from codex_provider.provider import CodexLanguageModel, CodexProvider
from codex_provider.registry import (
    InstallState,
    OneShotInstaller,
    ProviderRegistry,
    install_codex_provider,
    install_state,
    reset_install_state,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# =============================================================================
# ProviderRegistry
# =============================================================================


class TestProviderRegistry:
    """Tests for factory lookup and the model cache."""

    def test_register_and_resolve(self):
        registry = ProviderRegistry()
        registry.register("codex", CodexProvider)

        assert registry.has("codex")
        assert registry.names() == ["codex"]
        assert isinstance(registry.provider("codex"), CodexProvider)

    def test_provider_instantiated_once(self):
        registry = ProviderRegistry()
        factory = MagicMock(side_effect=CodexProvider)
        registry.register("codex", factory)

        assert registry.provider("codex") is registry.provider("codex")
        factory.assert_called_once()

    def test_unknown_provider(self):
        with pytest.raises(ProviderNotFoundError):
            ProviderRegistry().provider("missing")

    def test_factory_failure_wrapped(self):
        registry = ProviderRegistry()
        registry.register("bad", MagicMock(side_effect=RuntimeError("no binary")))

        with pytest.raises(ProviderFactoryError, match="no binary"):
            registry.provider("bad")

    def test_factory_returning_non_provider(self):
        registry = ProviderRegistry()
        registry.register("bad", lambda: object())

        with pytest.raises(ProviderFactoryError, match="language_model"):
            registry.provider("bad")

    def test_model_cache_hit(self):
        registry = ProviderRegistry()
        registry.register("codex", CodexProvider)

        first = registry.get_model("codex", "gpt-5")
        second = registry.get_model("codex", "gpt-5")

        assert isinstance(first, CodexLanguageModel)
        assert first is second
        assert registry.cache_stats()["size"] == 1

    def test_model_cache_expires(self):
        clock = FakeClock()
        registry = ProviderRegistry(ttl_seconds=300, clock=clock)
        registry.register("codex", CodexProvider)

        first = registry.get_model("codex", "gpt-5")
        clock.now = 299
        assert registry.get_model("codex", "gpt-5") is first
        clock.now = 301 + 299
        assert registry.cache_stats()["expired"] == 1
        assert registry.get_model("codex", "gpt-5") is not first

    def test_model_cache_bounded_lru(self):
        registry = ProviderRegistry(max_size=2)
        registry.register("codex", CodexProvider)

        registry.get_model("codex", "a")
        registry.get_model("codex", "b")
        registry.get_model("codex", "a")
        registry.get_model("codex", "c")

        assert registry.cache_stats()["keys"] == ["codex/a", "codex/c"]

    def test_reregister_evicts_cached_models(self):
        registry = ProviderRegistry()
        registry.register("codex", CodexProvider)
        registry.get_model("codex", "a")

        registry.register("codex", CodexProvider)

        assert registry.cache_stats()["size"] == 0

    def test_unregister_and_clear(self):
        registry = ProviderRegistry()
        registry.register("codex", CodexProvider)
        registry.get_model("codex", "a")
        registry.clear_cache()
        assert registry.cache_stats()["size"] == 0

        registry.unregister("codex")
        assert registry.has("codex") is False


# =============================================================================
# One-shot installation
# =============================================================================


class TestOneShotInstaller:
    """Tests for the tri-state install guard."""

    @pytest.mark.asyncio
    async def test_applies_once(self):
        installer = OneShotInstaller()
        calls = []

        async def install():
            calls.append(1)

        await installer.ensure(install)
        await installer.ensure(install)

        assert calls == [1]
        assert installer.state == InstallState.APPLIED

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_attempt(self):
        installer = OneShotInstaller()
        release = asyncio.Event()
        calls = []

        async def install():
            calls.append(1)
            await release.wait()

        first = asyncio.create_task(installer.ensure(install))
        await asyncio.sleep(0)
        second = asyncio.create_task(installer.ensure(install))
        await asyncio.sleep(0)
        assert installer.state == InstallState.APPLYING

        release.set()
        await asyncio.gather(first, second)

        assert calls == [1]
        assert installer.state == InstallState.APPLIED

    @pytest.mark.asyncio
    async def test_failure_allows_retry(self):
        installer = OneShotInstaller()
        attempts = []

        async def install():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("transient")

        with pytest.raises(RuntimeError):
            await installer.ensure(install)
        assert installer.state == InstallState.FAILED
        assert isinstance(installer.error, RuntimeError)

        await installer.ensure(install)
        assert installer.state == InstallState.APPLIED
        assert len(attempts) == 2


class TestInstallCodexProvider:
    """Tests for the module-level codex installer."""

    @pytest.fixture(autouse=True)
    def _reset(self):
        reset_install_state()
        yield
        reset_install_state()

    @pytest.mark.asyncio
    async def test_registers_codex(self):
        registry = ProviderRegistry()

        await install_codex_provider(registry)

        assert registry.has("codex")
        assert install_state() == InstallState.APPLIED
        assert isinstance(registry.provider("codex"), CodexProvider)

    @pytest.mark.asyncio
    async def test_keeps_existing_registration(self):
        registry = ProviderRegistry()
        custom = MagicMock(side_effect=CodexProvider)
        registry.register("codex", custom)

        await install_codex_provider(registry)
        registry.provider("codex")

        custom.assert_called_once()


# =============================================================================
# Host config
# =============================================================================


class TestApplyProviderConfig:
    """Tests for the host config hook."""

    def test_empty_config(self):
        config = apply_provider_config({})

        entry = config["provider"]["codex"]
        assert entry["npm"] == "codex-mcp-provider"
        assert entry["name"] == "Codex CLI"
        assert entry["options"] == {"providerFactory": PROVIDER_FACTORY}
        assert set(entry["models"]) == set(DEFAULT_MODELS)

    def test_user_values_win(self):
        config = {
            "provider": {
                "codex": {
                    "name": "My Codex",
                    "models": {"gpt-5": {"name": "Custom GPT-5"}, "local": {"name": "Local"}},
                    "options": {"providerFactory": "pkg:factory", "binary": "/opt/codex"},
                },
                "other": {"name": "Other"},
            }
        }

        result = apply_provider_config(config)

        assert result is config
        entry = config["provider"]["codex"]
        assert entry["name"] == "My Codex"
        assert entry["models"]["gpt-5"] == {"name": "Custom GPT-5"}
        assert entry["models"]["local"] == {"name": "Local"}
        assert "o3" in entry["models"]
        assert entry["options"] == {"providerFactory": "pkg:factory", "binary": "/opt/codex"}
        assert config["provider"]["other"] == {"name": "Other"}

    def test_defaults_not_shared_between_configs(self):
        first = apply_provider_config({})
        first["provider"]["codex"]["models"]["gpt-5"]["name"] = "mutated"

        second = apply_provider_config({})

        assert second["provider"]["codex"]["models"]["gpt-5"]["name"] == "GPT-5"
