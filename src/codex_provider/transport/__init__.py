"""Subprocess transport for the Codex MCP server."""

from .stdio import (
    MessageTransport,
    StdioProcessTransport,
    StdioTransportConfig,
    TransportHooks,
    TransportState,
)

__all__ = [
    "MessageTransport",
    "StdioProcessTransport",
    "StdioTransportConfig",
    "TransportHooks",
    "TransportState",
]
