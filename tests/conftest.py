"""Pytest configuration and shared fixtures.

``FakeTransport`` stands in for the subprocess: it records every outbound
message and lets tests push inbound messages, transport failures and process
exits by hand. An optional responder answers requests asynchronously, the
way a real server's replies arrive on a later loop iteration.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from codex_provider.client import CodexMCPClient
from codex_provider.errors import ProcessExitError

Responder = Callable[[dict[str, Any]], list[dict[str, Any]] | None]


class FakeTransport:
    """In-memory MessageTransport."""

    def __init__(self, responder: Responder | None = None) -> None:
        self.responder = responder
        self.sent: list[dict[str, Any]] = []
        self.start_calls = 0
        self.close_calls = 0
        self.closed = False
        self._on_message: Callable[[dict[str, Any]], None] = lambda message: None
        self._on_error: Callable[[Exception], None] = lambda error: None
        self._on_exit: Callable[[int | None, str | None], None] = lambda code, signal: None

    @property
    def is_closed(self) -> bool:
        return self.closed

    def bind(self, on_message, on_error, on_exit) -> None:
        self._on_message = on_message
        self._on_error = on_error
        self._on_exit = on_exit

    async def start(self) -> None:
        self.start_calls += 1

    def send(self, message: dict[str, Any]) -> None:
        if self.closed:
            return
        self.sent.append(message)
        if self.responder is None:
            return
        loop = asyncio.get_running_loop()
        for reply in self.responder(message) or []:
            loop.call_soon(self.push, reply)

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True

    # Test controls

    def push(self, message: dict[str, Any]) -> None:
        if not self.closed:
            self._on_message(message)

    def fail(self, error: Exception) -> None:
        self._on_error(error)

    def exit(self, code: int | None, signal: str | None = None, stderr: str = "") -> None:
        self.closed = True
        self._on_error(ProcessExitError(code, signal, stderr=stderr))
        self._on_exit(code, signal)

    def methods(self) -> list[str | None]:
        return [message.get("method") for message in self.sent]

    def requests(self, method: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m.get("method") == method and "id" in m]


def codex_event(msg_type: str, request_id: Any = None, **fields: Any) -> dict[str, Any]:
    """Build a ``codex/event`` notification."""
    params: dict[str, Any] = {"msg": {"type": msg_type, **fields}}
    if request_id is not None:
        params["_meta"] = {"requestId": request_id}
    return {"jsonrpc": "2.0", "method": "codex/event", "params": params}


def handshake_responder(
    on_tool_call: Callable[[dict[str, Any]], list[dict[str, Any]]] | None = None,
) -> Responder:
    """Answer ``initialize`` and delegate ``tools/call`` to ``on_tool_call``."""

    def respond(message: dict[str, Any]) -> list[dict[str, Any]] | None:
        method = message.get("method")
        if method == "initialize":
            return [
                {
                    "jsonrpc": "2.0",
                    "id": message["id"],
                    "result": {"protocolVersion": "2025-06-18", "capabilities": {"tools": {}}},
                }
            ]
        if method == "tools/call" and on_tool_call is not None:
            return on_tool_call(message)
        return None

    return respond


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def make_client() -> Callable[..., tuple[CodexMCPClient, FakeTransport]]:
    """Factory for a client wired to a fresh FakeTransport."""

    def factory(responder: Responder | None = None) -> tuple[CodexMCPClient, FakeTransport]:
        transport = FakeTransport(responder)
        return CodexMCPClient(transport=transport), transport

    return factory


@pytest.fixture
def event() -> Callable[..., dict[str, Any]]:
    return codex_event


@pytest.fixture
def responder() -> Callable[..., Responder]:
    return handshake_responder
