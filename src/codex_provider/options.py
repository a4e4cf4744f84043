"""Provider options.

Options are read per call from ``CallOptions.provider_options["codex"]`` and
accept both snake_case and the camelCase keys used by host configs
(``spawnCwd``, ``approvalPolicy``, ``streamCommandOutput``, ...).
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .protocol.messages import ClientInfo
from .transport.stdio import StdioTransportConfig
from .utils import DEFAULT_REASONING_EFFORT

PROVIDER_ID = "codex"

ApprovalPolicy = Literal["untrusted", "on-failure", "on-request", "never"]
SandboxMode = Literal["read-only", "workspace-write", "danger-full-access"]
ReasoningEffort = Literal["minimal", "low", "medium", "high"]


class CodexProviderOptions(BaseModel):
    """Per-call configuration for the Codex provider."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    # Subprocess
    binary: str = "codex"
    args: list[str] = Field(default_factory=lambda: ["mcp-server"])
    env: dict[str, str] | None = None
    spawn_cwd: str | None = None

    # Tool arguments
    cwd: str | None = None
    approval_policy: ApprovalPolicy | None = None
    sandbox_mode: SandboxMode | None = None
    model: str | None = None
    reasoning_effort: ReasoningEffort = DEFAULT_REASONING_EFFORT

    # Stream shaping
    stream_command_output: bool = False
    stream_reasoning: bool = True

    client_info: ClientInfo | None = None

    @classmethod
    def from_provider_options(cls, provider_options: dict[str, Any] | None) -> CodexProviderOptions:
        """Pick this provider's entry out of a host's provider options map."""
        entry = (provider_options or {}).get(PROVIDER_ID)
        if isinstance(entry, cls):
            return entry
        return cls.model_validate(entry or {})

    def transport_config(self) -> StdioTransportConfig:
        return StdioTransportConfig(
            command=self.binary,
            args=list(self.args),
            cwd=self.spawn_cwd,
            env=self.env,
        )
