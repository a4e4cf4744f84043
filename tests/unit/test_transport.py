"""Unit tests for StdioProcessTransport that do not need a live server."""

import asyncio
import logging
import sys
from unittest.mock import MagicMock

import pytest

from codex_provider.debug import DEBUG_ENV_VAR, debug_log, is_debug_enabled, rpc_debug_hooks
from codex_provider.errors import MessageParseError, TransportError
from codex_provider.transport.stdio import (
    MessageTransport,
    StdioProcessTransport,
    StdioTransportConfig,
    TransportHooks,
    TransportState,
    _split_returncode,
)


def bound_transport(hooks=None):
    transport = StdioProcessTransport(StdioTransportConfig(), hooks)
    on_message, on_error, on_exit = MagicMock(), MagicMock(), MagicMock()
    transport.bind(on_message, on_error, on_exit)
    return transport, on_message, on_error, on_exit


class TestConfig:
    """Tests for transport configuration."""

    def test_defaults(self):
        config = StdioTransportConfig()
        assert config.command == "codex"
        assert config.args == ["mcp-server"]
        assert config.command_line == "codex mcp-server"
        assert config.line_limit >= 1024 * 1024

    def test_satisfies_protocol(self):
        assert isinstance(StdioProcessTransport(), MessageTransport)

    def test_split_returncode(self):
        assert _split_returncode(0) == (0, None)
        assert _split_returncode(3) == (3, None)
        assert _split_returncode(-9) == (None, "SIGKILL")
        assert _split_returncode(None) == (None, None)


class TestLineHandling:
    """Tests for inbound line parsing."""

    def test_json_object_delivered(self):
        transport, on_message, on_error, _ = bound_transport()

        transport._handle_line(b'{"jsonrpc":"2.0","method":"codex/event"}\n')

        on_message.assert_called_once_with({"jsonrpc": "2.0", "method": "codex/event"})
        on_error.assert_not_called()

    def test_blank_line_skipped(self):
        transport, on_message, on_error, _ = bound_transport()

        transport._handle_line(b"   \n")

        on_message.assert_not_called()
        on_error.assert_not_called()

    def test_invalid_json_reports_parse_error(self):
        transport, on_message, on_error, _ = bound_transport()

        transport._handle_line(b"Starting codex...\n")

        on_message.assert_not_called()
        error = on_error.call_args.args[0]
        assert isinstance(error, MessageParseError)
        assert error.line == "Starting codex..."

    def test_non_object_json_ignored(self):
        transport, on_message, _, _ = bound_transport()

        transport._handle_line(b"[1, 2, 3]\n")

        on_message.assert_not_called()

    def test_receive_hook_sees_parsed_payload(self):
        on_receive = MagicMock()
        transport, _, _, _ = bound_transport(TransportHooks(on_receive=on_receive))

        transport._handle_line(b'{"id": 1, "result": {}}')

        on_receive.assert_called_once_with({"id": 1, "result": {}})

    def test_handler_exception_is_contained(self):
        transport, on_message, _, _ = bound_transport()
        on_message.side_effect = RuntimeError("listener bug")

        transport._handle_line(b'{"id": 1}')
        transport._handle_line(b'{"id": 2}')

        assert on_message.call_count == 2


def sleeper_config():
    # Blocks on stdin until closed or terminated
    return StdioTransportConfig(command=sys.executable, args=["-c", "import sys; sys.stdin.read()"])


class TestLifecycle:
    """Tests for start/send/close without a live server."""

    @pytest.mark.asyncio
    async def test_spawn_failure(self, tmp_path):
        transport = StdioProcessTransport(StdioTransportConfig(command=str(tmp_path / "missing")))
        on_error = MagicMock()
        transport.bind(MagicMock(), on_error, MagicMock())

        with pytest.raises(TransportError, match="Failed to launch"):
            await transport.start()

        on_error.assert_called_once()
        assert transport.state == TransportState.CLOSED

    def test_send_before_start_is_dropped(self):
        on_send = MagicMock()
        transport, _, on_error, _ = bound_transport(TransportHooks(on_send=on_send))

        transport.send({"jsonrpc": "2.0", "method": "ping"})

        on_send.assert_not_called()
        on_error.assert_not_called()

    def test_close_is_idempotent(self):
        transport, _, _, on_exit = bound_transport()

        transport.close()
        transport.close()

        assert transport.is_closed is True
        on_exit.assert_not_called()

    @pytest.mark.asyncio
    async def test_close_terminates_child(self):
        transport = StdioProcessTransport(sleeper_config())
        on_error, on_exit = MagicMock(), MagicMock()
        transport.bind(MagicMock(), on_error, on_exit)
        await transport.start()
        assert transport.state == TransportState.CONNECTED

        transport.close()
        returncode = await transport.wait_closed(timeout=5)

        assert returncode is not None
        assert transport.is_closed is True
        on_error.assert_not_called()
        on_exit.assert_not_called()

    @pytest.mark.asyncio
    async def test_close_during_spawn_terminates_child(self):
        transport = StdioProcessTransport(sleeper_config())
        on_message, on_error, on_exit = MagicMock(), MagicMock(), MagicMock()
        transport.bind(on_message, on_error, on_exit)

        task = asyncio.create_task(transport.start())
        await asyncio.sleep(0)
        assert transport.state == TransportState.CONNECTING
        transport.close()
        await task

        assert transport.state == TransportState.CLOSED
        assert transport.pid is not None
        returncode = await transport.wait_closed(timeout=5)
        assert returncode is not None
        on_error.assert_not_called()
        on_exit.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_after_stdin_closed_is_dropped(self):
        on_send = MagicMock()
        transport = StdioProcessTransport(sleeper_config(), TransportHooks(on_send=on_send))
        on_error = MagicMock()
        transport.bind(MagicMock(), on_error, MagicMock())
        await transport.start()

        transport._process.stdin.close()
        transport.send({"jsonrpc": "2.0", "method": "ping"})

        on_send.assert_not_called()
        on_error.assert_not_called()
        transport.close()
        assert await transport.wait_closed(timeout=5) is not None


class TestDebugTracing:
    """Tests for opt-in RPC tracing."""

    def test_disabled_by_default(self, monkeypatch):
        monkeypatch.delenv(DEBUG_ENV_VAR, raising=False)
        assert is_debug_enabled() is False

    @pytest.mark.parametrize("value", ["1", "true", "YES"])
    def test_enabled_values(self, monkeypatch, value):
        monkeypatch.setenv(DEBUG_ENV_VAR, value)
        assert is_debug_enabled() is True

    def test_hooks_log_traffic(self, monkeypatch, caplog):
        monkeypatch.setenv(DEBUG_ENV_VAR, "1")
        hooks = rpc_debug_hooks()

        with caplog.at_level(logging.DEBUG, logger="codex_provider.rpc"):
            hooks.on_send({"id": 0, "method": "initialize"})
            hooks.on_receive({"id": 0, "result": {}})

        messages = [r.getMessage() for r in caplog.records if r.name == "codex_provider.rpc"]
        assert messages[0].startswith("rpc.send ")
        assert '"method": "initialize"' in messages[0]
        assert messages[1].startswith("rpc.receive ")

    def test_silent_when_disabled(self, monkeypatch, caplog):
        monkeypatch.delenv(DEBUG_ENV_VAR, raising=False)

        with caplog.at_level(logging.DEBUG, logger="codex_provider.rpc"):
            debug_log("notification", {"x": 1})

        assert not [r for r in caplog.records if r.name == "codex_provider.rpc"]
