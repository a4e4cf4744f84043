"""Wire protocol and stream part definitions."""

from .events import (
    Channel,
    CodexEventType,
    Finish,
    FinishReason,
    GenerationOutcome,
    StreamPart,
    TextDelta,
    TextEnd,
    TextStart,
    Usage,
)
from .messages import (
    CANCELLED_NOTIFICATION,
    CODEX_EVENT_PREFIX,
    CODEX_TOOL_NAME,
    INITIALIZE_METHOD,
    INITIALIZED_NOTIFICATION,
    JSONRPC_VERSION,
    MCP_PROTOCOL_VERSION,
    TOOLS_CALL_METHOD,
    ClientInfo,
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    initialize_params,
    is_notification,
    is_response,
    make_notification,
    make_request,
    to_request_key,
)

__all__ = [
    # Messages
    "JsonRpcRequest",
    "JsonRpcNotification",
    "JsonRpcResponse",
    "JsonRpcError",
    "ClientInfo",
    "make_request",
    "make_notification",
    "initialize_params",
    "is_response",
    "is_notification",
    "to_request_key",
    # Constants
    "JSONRPC_VERSION",
    "MCP_PROTOCOL_VERSION",
    "INITIALIZE_METHOD",
    "INITIALIZED_NOTIFICATION",
    "CANCELLED_NOTIFICATION",
    "TOOLS_CALL_METHOD",
    "CODEX_EVENT_PREFIX",
    "CODEX_TOOL_NAME",
    # Stream parts
    "Channel",
    "CodexEventType",
    "GenerationOutcome",
    "FinishReason",
    "Usage",
    "TextStart",
    "TextDelta",
    "TextEnd",
    "Finish",
    "StreamPart",
]
