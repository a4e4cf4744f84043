"""Host config hook that declares the codex provider and its models."""

from __future__ import annotations

import copy
from typing import Any

from .options import PROVIDER_ID

PACKAGE_NAME = "codex-mcp-provider"
PROVIDER_DISPLAY_NAME = "Codex CLI"
PROVIDER_FACTORY = "codex_provider.provider:create_codex_provider"

DEFAULT_MODELS: dict[str, dict[str, Any]] = {
    "gpt-5-codex": {"name": "GPT-5 Codex", "reasoning": True},
    "gpt-5": {"name": "GPT-5", "reasoning": True},
    "gpt-5-mini": {"name": "GPT-5 Mini"},
    "o3": {"name": "O3", "reasoning": True},
    "o3-mini": {"name": "O3 Mini", "reasoning": True},
    "o4-mini": {"name": "O4 Mini"},
    "codex-mini-latest": {"name": "Codex Mini"},
    "gpt-4o": {"name": "GPT-4o"},
    "gpt-4.1": {"name": "GPT-4.1"},
    "gpt-3.5-turbo": {"name": "GPT-3.5 Turbo"},
}


def apply_provider_config(config: dict[str, Any]) -> dict[str, Any]:
    """Fill in the ``codex`` provider entry of a host config, in place.

    User-supplied values win: models declared by the user override the
    defaults with the same id, and an existing ``providerFactory``, ``npm``
    or ``name`` is kept.

    Returns:
        The same config object, for chaining
    """
    providers = config.setdefault("provider", {})
    existing = providers.get(PROVIDER_ID) or {}

    options = dict(existing.get("options") or {})
    if not options.get("providerFactory"):
        options["providerFactory"] = PROVIDER_FACTORY

    models = copy.deepcopy(DEFAULT_MODELS)
    models.update(existing.get("models") or {})

    providers[PROVIDER_ID] = {
        **existing,
        "npm": existing.get("npm") or PACKAGE_NAME,
        "name": existing.get("name") or PROVIDER_DISPLAY_NAME,
        "models": models,
        "options": options,
    }
    return config
