"""Event-to-stream adaptation."""

from .adapter import CodexStreamAdapter, parse_request_id
from .state import ChannelPhase, ChannelState, StreamState

__all__ = [
    "CodexStreamAdapter",
    "StreamState",
    "ChannelState",
    "ChannelPhase",
    "parse_request_id",
]
