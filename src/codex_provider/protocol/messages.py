"""JSON-RPC 2.0 message types for the Codex MCP server.

Wire format is newline-delimited JSON. Every line is one of:
- Request:      {"jsonrpc": "2.0", "id": 0, "method": "tools/call", "params": {...}}
- Notification: {"jsonrpc": "2.0", "method": "codex/event", "params": {...}}
- Response:     {"jsonrpc": "2.0", "id": 0, "result": {...}}
                {"jsonrpc": "2.0", "id": 0, "error": {"code": -1, "message": "..."}}
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel

JSONRPC_VERSION = "2.0"
MCP_PROTOCOL_VERSION = "2025-06-18"

# Methods
INITIALIZE_METHOD = "initialize"
INITIALIZED_NOTIFICATION = "notifications/initialized"
CANCELLED_NOTIFICATION = "notifications/cancelled"
TOOLS_CALL_METHOD = "tools/call"
CODEX_EVENT_PREFIX = "codex/event"
CODEX_TOOL_NAME = "codex"

DEFAULT_CLIENT_NAME = "opencode"
DEFAULT_CLIENT_VERSION = "0.0.0"


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: int
    method: str
    params: Any | None = None


class JsonRpcNotification(BaseModel):
    """JSON-RPC 2.0 notification (no response expected)."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: Any | None = None


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any | None = None


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: str | int | None
    result: Any | None = None
    error: JsonRpcError | None = None


class ClientInfo(BaseModel):
    """Client identification sent during the handshake."""

    name: str = DEFAULT_CLIENT_NAME
    version: str = DEFAULT_CLIENT_VERSION


def to_request_key(request_id: int | str) -> str:
    """Key used for the pending-request map."""
    return request_id if isinstance(request_id, str) else str(request_id)


def to_wire(message: BaseModel) -> dict[str, Any]:
    """Dump a message for the wire, omitting unset optional members."""
    return message.model_dump(exclude_none=True)


def make_request(request_id: int, method: str, params: Any | None = None) -> dict[str, Any]:
    return to_wire(JsonRpcRequest(id=request_id, method=method, params=params))


def make_notification(method: str, params: Any | None = None) -> dict[str, Any]:
    return to_wire(JsonRpcNotification(method=method, params=params))


def initialize_params(client_info: ClientInfo | None = None) -> dict[str, Any]:
    """Params for the ``initialize`` request."""
    info = client_info or ClientInfo()
    return {
        "protocolVersion": MCP_PROTOCOL_VERSION,
        "capabilities": {"tools": {}},
        "clientInfo": {"name": info.name, "version": info.version},
    }


def is_response(message: dict[str, Any]) -> bool:
    """Any message carrying an ``id`` is routed to the correlator."""
    return "id" in message


def is_notification(message: dict[str, Any]) -> bool:
    return "id" not in message and isinstance(message.get("method"), str)
