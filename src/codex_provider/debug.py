"""Opt-in RPC traffic tracing.

Set ``CODEX_PROVIDER_DEBUG=1`` to log every JSON-RPC message sent to and
received from the MCP server, plus every routed codex event, on the
``codex_provider.rpc`` logger at DEBUG level.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from .transport.stdio import TransportHooks

DEBUG_ENV_VAR = "CODEX_PROVIDER_DEBUG"

rpc_logger = logging.getLogger("codex_provider.rpc")


def is_debug_enabled() -> bool:
    return os.environ.get(DEBUG_ENV_VAR, "").lower() in ("1", "true", "yes")


def debug_log(message: str, extra: dict[str, Any] | None = None) -> None:
    """Log ``message`` with a compact JSON payload when tracing is enabled."""
    if not is_debug_enabled():
        return
    if extra:
        rpc_logger.debug(f"{message} {json.dumps(extra, default=str)}")
    else:
        rpc_logger.debug(message)


def rpc_debug_hooks() -> TransportHooks:
    """Transport hooks that trace traffic through ``debug_log``."""
    return TransportHooks(
        on_send=lambda payload: debug_log("rpc.send", {"payload": payload}),
        on_receive=lambda payload: debug_log("rpc.receive", {"payload": payload}),
    )
