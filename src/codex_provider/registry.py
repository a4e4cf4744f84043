"""Provider factory registry.

Hosts look providers up by name through an injected registry rather than
resolving import paths at runtime. Each name maps to a factory returning a
``LanguageModelProvider``; resolved models are cached with a TTL and a size
bound.

Installation of the codex factory is guarded by a one-shot state machine:

    PENDING -> APPLYING -> APPLIED
                        -> FAILED   (next call retries)

Concurrent installers share one in-flight attempt through a shared future.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from .errors import ProviderFactoryError, ProviderNotFoundError
from .options import PROVIDER_ID
from .provider import create_codex_provider

logger = logging.getLogger(__name__)

CACHE_MAX_SIZE = 100
CACHE_TTL_SECONDS = 5 * 60


@runtime_checkable
class LanguageModelProvider(Protocol):
    """What a provider factory must produce."""

    def language_model(self, model_id: str) -> Any: ...

    def text_embedding_model(self, model_id: str) -> Any: ...

    def image_model(self, model_id: str) -> Any: ...


ProviderFactory = Callable[[], LanguageModelProvider]


@dataclass
class CacheEntry:
    value: Any
    timestamp: float


class ProviderRegistry:
    """Named provider factories plus a bounded model cache."""

    def __init__(
        self,
        max_size: int = CACHE_MAX_SIZE,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factories: dict[str, ProviderFactory] = {}
        self._providers: dict[str, LanguageModelProvider] = {}
        self._models: OrderedDict[str, CacheEntry] = OrderedDict()
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._clock = clock

    def register(self, name: str, factory: ProviderFactory) -> None:
        if name in self._factories:
            logger.debug(f"Replacing provider factory: {name}")
            self._evict_provider(name)
        self._factories[name] = factory

    def unregister(self, name: str) -> None:
        self._factories.pop(name, None)
        self._evict_provider(name)

    def has(self, name: str) -> bool:
        return name in self._factories

    def names(self) -> list[str]:
        return sorted(self._factories)

    def provider(self, name: str) -> LanguageModelProvider:
        """Instantiate (once) and return the provider registered as ``name``.

        Raises:
            ProviderNotFoundError: No factory registered under ``name``
            ProviderFactoryError: The factory raised or returned a non-provider
        """
        if name in self._providers:
            return self._providers[name]

        factory = self._factories.get(name)
        if factory is None:
            raise ProviderNotFoundError(f"No provider registered for '{name}'")

        try:
            provider = factory()
        except Exception as e:
            raise ProviderFactoryError(f"Provider factory for '{name}' failed: {e}") from e

        if not isinstance(provider, LanguageModelProvider):
            raise ProviderFactoryError(
                f"Provider factory for '{name}' returned {type(provider).__name__}, "
                "which does not implement language_model()"
            )

        self._providers[name] = provider
        return provider

    def get_model(self, provider_name: str, model_id: str) -> Any:
        """Resolve a language model, serving repeats from the cache."""
        key = f"{provider_name}/{model_id}"
        entry = self._models.get(key)
        if entry is not None:
            if self._clock() - entry.timestamp < self._ttl:
                self._models.move_to_end(key)
                return entry.value
            del self._models[key]

        model = self.provider(provider_name).language_model(model_id)
        self._models[key] = CacheEntry(model, self._clock())
        self._models.move_to_end(key)
        self._trim_cache()
        logger.debug(f"Loaded model {key}")
        return model

    def cache_stats(self) -> dict[str, Any]:
        now = self._clock()
        expired = sum(1 for entry in self._models.values() if now - entry.timestamp >= self._ttl)
        return {
            "size": len(self._models),
            "max_size": self._max_size,
            "ttl_seconds": self._ttl,
            "expired": expired,
            "keys": list(self._models),
        }

    def clear_cache(self) -> None:
        self._models.clear()

    def _trim_cache(self) -> None:
        now = self._clock()
        for key in [k for k, e in self._models.items() if now - e.timestamp >= self._ttl]:
            del self._models[key]
        while len(self._models) > self._max_size:
            self._models.popitem(last=False)

    def _evict_provider(self, name: str) -> None:
        self._providers.pop(name, None)
        prefix = f"{name}/"
        for key in [k for k in self._models if k.startswith(prefix)]:
            del self._models[key]


# =============================================================================
# One-shot installation
# =============================================================================


class InstallState(str, Enum):
    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"


class OneShotInstaller:
    """Runs an async install step at most once successfully.

    Callers arriving while an attempt is in flight await the same future;
    after success every call is a no-op; after failure the next call retries.
    """

    def __init__(self) -> None:
        self.state = InstallState.PENDING
        self.error: BaseException | None = None
        self._future: asyncio.Future[None] | None = None

    async def ensure(self, install: Callable[[], Awaitable[None]]) -> None:
        if self.state == InstallState.APPLIED:
            return
        if self.state == InstallState.APPLYING and self._future is not None:
            await asyncio.shield(self._future)
            return

        self.state = InstallState.APPLYING
        self.error = None
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._future = future
        try:
            await install()
        except Exception as e:
            self.state = InstallState.FAILED
            self.error = e
            future.set_exception(e)
            # Retrieved here so waiters-less failures do not warn
            future.exception()
            raise
        self.state = InstallState.APPLIED
        future.set_result(None)

    def reset(self) -> None:
        self.state = InstallState.PENDING
        self.error = None
        self._future = None


_installer = OneShotInstaller()


async def install_codex_provider(registry: ProviderRegistry) -> None:
    """Register the codex factory on ``registry`` exactly once."""

    async def install() -> None:
        if registry.has(PROVIDER_ID):
            logger.info("Codex provider already registered")
            return
        registry.register(PROVIDER_ID, create_codex_provider)
        logger.info("Registered codex provider factory")

    await _installer.ensure(install)


def install_state() -> InstallState:
    return _installer.state


def reset_install_state() -> None:
    """Forget a previous installation. Intended for tests."""
    _installer.reset()
