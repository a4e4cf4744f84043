"""Exception hierarchy for the Codex provider.

Errors fall into four groups:
- Transport-fatal: the subprocess could not be spawned, written to, or exited.
  Always terminal for every pending call.
- Protocol: a malformed line or a JSON-RPC error object.
- Cancellation: the caller aborted the operation.
- Application: the tool call succeeded on the wire but reported a failure.
"""

from __future__ import annotations

import json
from typing import Any


class CodexProviderError(Exception):
    """Base class for all Codex provider errors."""


# =============================================================================
# Transport-fatal
# =============================================================================


class TransportError(CodexProviderError):
    """The subprocess transport failed (spawn, write, broken pipe)."""


class TransportClosedError(TransportError):
    """The session is closed and cannot be used for new requests."""


class ProcessExitError(TransportError):
    """The MCP server process exited while the session was open."""

    def __init__(
        self,
        code: int | None,
        signal: str | None = None,
        stderr: str = "",
        command: str = "codex mcp-server",
    ) -> None:
        self.code = code
        self.signal = signal
        self.stderr = stderr
        message = f"{command} exited with code {'null' if code is None else code}"
        if signal:
            message += f" signal {signal}"
        if stderr:
            message += f"\n{stderr}"
        super().__init__(message)


# =============================================================================
# Protocol
# =============================================================================


class MessageParseError(CodexProviderError):
    """An inbound line was not valid JSON."""

    def __init__(self, line: str, cause: Exception | None = None) -> None:
        self.line = line
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to parse MCP message{detail}")


class RpcError(CodexProviderError):
    """A JSON-RPC error object returned for a request."""

    def __init__(self, code: int | None, message: str, data: Any | None = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        if data is not None:
            super().__init__(f"{message}: {json.dumps(data)}")
        else:
            super().__init__(message)

    @classmethod
    def from_payload(cls, error: Any) -> RpcError:
        """Build from the ``error`` member of a response."""
        if not isinstance(error, dict):
            return cls(None, str(error))
        return cls(
            code=error.get("code"),
            message=str(error.get("message", "Unknown error")),
            data=error.get("data"),
        )


# =============================================================================
# Cancellation
# =============================================================================


class AbortedError(CodexProviderError):
    """The operation was aborted by the caller."""

    def __init__(self, message: str = "Aborted") -> None:
        super().__init__(message)


# =============================================================================
# Application
# =============================================================================


class CodexToolError(CodexProviderError):
    """The codex tool call returned an error payload or an invalid result."""


class CodexStreamError(CodexProviderError):
    """The server reported a ``stream_error`` or ``error`` event."""

    def __init__(self, message: str, event_type: str = "error") -> None:
        self.event_type = event_type
        super().__init__(message)


# =============================================================================
# Provider registry
# =============================================================================


class UnsupportedModelError(CodexProviderError):
    """The provider does not support the requested model kind."""


class ProviderNotFoundError(CodexProviderError):
    """No factory is registered under the requested provider name."""


class ProviderFactoryError(CodexProviderError):
    """A registered factory failed to produce a provider."""
