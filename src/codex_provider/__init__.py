"""Codex MCP Provider.

Exposes the Codex CLI's ``mcp-server`` mode as a streaming language model:
a JSON-RPC client over the subprocess's stdio plus an adapter that turns
``codex/event`` notifications into framed text stream parts.
"""

from .cancellation import CancellationToken
from .client import CodexCallResult, CodexMCPClient, PendingCall
from .errors import (
    AbortedError,
    CodexProviderError,
    CodexStreamError,
    CodexToolError,
    MessageParseError,
    ProcessExitError,
    RpcError,
    TransportClosedError,
    TransportError,
)
from .options import PROVIDER_ID, CodexProviderOptions
from .plugin import apply_provider_config
from .protocol.events import (
    Channel,
    Finish,
    GenerationOutcome,
    StreamPart,
    TextDelta,
    TextEnd,
    TextStart,
    Usage,
)
from .provider import (
    CallOptions,
    CodexLanguageModel,
    CodexProvider,
    CodexStream,
    GenerateResult,
    create_codex_provider,
)
from .registry import ProviderRegistry, install_codex_provider
from .stream.adapter import CodexStreamAdapter
from .transport.stdio import StdioProcessTransport, StdioTransportConfig

__version__ = "0.1.0"

__all__ = [
    # Client
    "CodexMCPClient",
    "CodexCallResult",
    "PendingCall",
    "CancellationToken",
    "StdioProcessTransport",
    "StdioTransportConfig",
    # Streaming
    "CodexStreamAdapter",
    "Channel",
    "GenerationOutcome",
    "StreamPart",
    "TextStart",
    "TextDelta",
    "TextEnd",
    "Finish",
    "Usage",
    # Provider
    "PROVIDER_ID",
    "CodexProviderOptions",
    "CallOptions",
    "CodexLanguageModel",
    "CodexProvider",
    "CodexStream",
    "GenerateResult",
    "create_codex_provider",
    "ProviderRegistry",
    "install_codex_provider",
    "apply_provider_config",
    # Errors
    "CodexProviderError",
    "TransportError",
    "TransportClosedError",
    "ProcessExitError",
    "MessageParseError",
    "RpcError",
    "AbortedError",
    "CodexToolError",
    "CodexStreamError",
]
