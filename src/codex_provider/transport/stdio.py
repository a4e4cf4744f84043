"""Subprocess transport for the Codex MCP server.

Launches ``codex mcp-server`` (or a configured command) and exchanges
newline-delimited JSON over its stdin/stdout. Stderr is collected so that
an unexpected exit can be reported with the server's own diagnostics.

Three event classes are surfaced through callbacks bound by the owner:
- message: one parsed JSON object per stdout line, in arrival order
- error:   spawn failure, unexpected exit, or an unparsable line
- exit:    the process exited while the session was open (code, signal)
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import signal as signal_module
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from ..errors import MessageParseError, ProcessExitError, TransportError

logger = logging.getLogger(__name__)

ENCODING = "utf-8"

MessageCallback = Callable[[dict[str, Any]], None]
ErrorCallback = Callable[[Exception], None]
ExitCallback = Callable[[int | None, str | None], None]


class TransportState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass
class StdioTransportConfig:
    """Configuration for the subprocess transport."""

    command: str = "codex"
    args: list[str] = field(default_factory=lambda: ["mcp-server"])
    cwd: str | None = None
    env: dict[str, str] | None = None

    # Aggregated agent messages can be far larger than asyncio's 64 KiB default
    line_limit: int = 16 * 1024 * 1024

    @property
    def command_line(self) -> str:
        return " ".join([self.command, *self.args])


@dataclass
class TransportHooks:
    """Observability hooks invoked for every outbound and inbound message."""

    on_send: Callable[[dict[str, Any]], None] | None = None
    on_receive: Callable[[Any], None] | None = None


@runtime_checkable
class MessageTransport(Protocol):
    """What the RPC client needs from a transport.

    Implementations must deliver inbound messages strictly in arrival order
    and report at most one terminal failure.
    """

    @property
    def is_closed(self) -> bool: ...

    def bind(
        self,
        on_message: MessageCallback,
        on_error: ErrorCallback,
        on_exit: ExitCallback,
    ) -> None: ...

    async def start(self) -> None: ...

    def send(self, message: dict[str, Any]) -> None: ...

    def close(self) -> None: ...


def _split_returncode(returncode: int | None) -> tuple[int | None, str | None]:
    """Split an asyncio returncode into (exit code, signal name)."""
    if returncode is None or returncode >= 0:
        return returncode, None
    try:
        return None, signal_module.Signals(-returncode).name
    except ValueError:
        return None, str(-returncode)


class StdioProcessTransport:
    """Transport over a child process's stdin/stdout.

    Wire format:
    - Outbound: one JSON object + LF per message to the child's stdin
    - Inbound: one JSON object per line from the child's stdout (blank lines skipped)

    Usage:
        transport = StdioProcessTransport(StdioTransportConfig())
        transport.bind(on_message, on_error, on_exit)
        await transport.start()
        transport.send({"jsonrpc": "2.0", "id": 0, "method": "initialize"})
        ...
        transport.close()
    """

    def __init__(
        self,
        config: StdioTransportConfig | None = None,
        hooks: TransportHooks | None = None,
    ) -> None:
        self.config = config or StdioTransportConfig()
        self.hooks = hooks or TransportHooks()
        self._state = TransportState.DISCONNECTED
        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._stderr_chunks: list[str] = []
        self._close_requested = False

        self._on_message: MessageCallback = lambda message: None
        self._on_error: ErrorCallback = lambda error: None
        self._on_exit: ExitCallback = lambda code, signal: None

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state == TransportState.CLOSED

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def stderr_text(self) -> str:
        return "".join(self._stderr_chunks)

    def bind(
        self,
        on_message: MessageCallback,
        on_error: ErrorCallback,
        on_exit: ExitCallback,
    ) -> None:
        """Attach the owner's callbacks. Must be called before ``start()``."""
        self._on_message = on_message
        self._on_error = on_error
        self._on_exit = on_exit

    async def start(self) -> None:
        """Launch the subprocess and start the reader tasks.

        Raises:
            TransportError: If the process cannot be spawned
        """
        if self._state != TransportState.DISCONNECTED:
            return

        self._state = TransportState.CONNECTING

        env = None
        if self.config.env:
            env = {**os.environ, **self.config.env}

        try:
            process = await asyncio.create_subprocess_exec(
                self.config.command,
                *self.config.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.config.cwd,
                env=env,
                limit=self.config.line_limit,
            )
        except OSError as e:
            self._state = TransportState.CLOSED
            error = TransportError(f"Failed to launch {self.config.command_line}: {e}")
            self._emit_error(error)
            raise error from e

        self._process = process

        if self._close_requested:
            # close() ran while the spawn was in flight
            logger.debug(f"Closed during launch, terminating subprocess (pid={process.pid})")
            self._terminate(process)
            return

        self._state = TransportState.CONNECTED
        self._stderr_task = asyncio.create_task(self._read_stderr())
        self._reader_task = asyncio.create_task(self._read_stdout())

        logger.info(f"Launched subprocess: {self.config.command_line} (pid={self._process.pid})")

    def send(self, message: dict[str, Any]) -> None:
        """Write one message as a JSON line. Dropped if the session is closed."""
        process = self._process
        if self.is_closed or process is None or process.stdin is None:
            logger.debug(f"Dropping message on closed transport: {message.get('method')}")
            return
        if process.stdin.is_closing():
            logger.debug(f"Dropping message, stdin is closing: {message.get('method')}")
            return

        if self.hooks.on_send:
            self.hooks.on_send(message)

        # The pipe transport buffers writes and never raises here. A broken pipe
        # closes stdin, so later sends are dropped above and the dead process
        # is reported through stdout EOF as ProcessExitError.
        line = json.dumps(message, ensure_ascii=False, separators=(",", ":")) + "\n"
        process.stdin.write(line.encode(ENCODING))

    def close(self) -> None:
        """Tear down the session. Idempotent and does not wait for exit.

        Safe to call while ``start()`` is still spawning: the process is
        terminated as soon as the spawn returns.
        """
        if self._close_requested:
            return
        self._close_requested = True
        self._state = TransportState.CLOSED

        if self._reader_task and not self._reader_task.done():
            self._reader_task.cancel()

        if self._process is not None:
            self._terminate(self._process)

    def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.stdin and not process.stdin.is_closing():
            with contextlib.suppress(OSError, RuntimeError):
                process.stdin.close()

        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            logger.debug(f"Sent SIGTERM to subprocess (pid={process.pid})")

    async def wait_closed(self, timeout: float = 5.0) -> int | None:
        """Wait for the process to exit after ``close()``, killing it on timeout."""
        process = self._process
        if process is None:
            return None
        try:
            returncode = await asyncio.wait_for(process.wait(), timeout=timeout)
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            returncode = await process.wait()

        if self._stderr_task and not self._stderr_task.done():
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task

        logger.info(f"Subprocess terminated (pid={process.pid})")
        return returncode

    # ------------------------------------------------------------------
    # Reader loops
    # ------------------------------------------------------------------

    async def _read_stdout(self) -> None:
        """Sole source of inbound messages. Processes lines strictly in order."""
        process = self._process
        if process is None or process.stdout is None:
            return

        try:
            while True:
                try:
                    line = await process.stdout.readline()
                except ValueError as e:
                    # Line exceeded the configured limit; the stream cannot resync
                    self._fail(TransportError(f"Inbound message too large: {e}"))
                    return
                if not line:
                    break
                self._handle_line(line)
        except asyncio.CancelledError:
            return

        await self._handle_process_exit()

    def _handle_line(self, raw: bytes) -> None:
        text = raw.decode(ENCODING, errors="replace").strip()
        if not text:
            return

        try:
            message = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse message from server: {e} (line: {text[:80]})")
            self._emit_error(MessageParseError(text, e))
            return

        if self.hooks.on_receive:
            self.hooks.on_receive(message)

        if not isinstance(message, dict):
            logger.debug(f"Ignoring non-object message: {text[:80]}")
            return

        try:
            self._on_message(message)
        except Exception as e:
            logger.exception(f"Error handling inbound message: {e}")

    async def _read_stderr(self) -> None:
        """Buffer stderr so an unexpected exit can include it."""
        process = self._process
        if process is None or process.stderr is None:
            return

        try:
            while True:
                chunk = await process.stderr.read(4096)
                if not chunk:
                    break
                text = chunk.decode(ENCODING, errors="replace")
                self._stderr_chunks.append(text)
                logger.debug(f"[codex stderr] {text.rstrip()}")
        except asyncio.CancelledError:
            pass

    async def _handle_process_exit(self) -> None:
        """Stdout hit EOF: wait for the exit status and report it as fatal."""
        process = self._process
        if process is None or self._close_requested:
            return

        returncode = await process.wait()
        if self._stderr_task:
            with contextlib.suppress(TimeoutError, asyncio.CancelledError):
                await asyncio.wait_for(asyncio.shield(self._stderr_task), timeout=1.0)

        if self._close_requested:
            return
        self._state = TransportState.CLOSED

        code, signal_name = _split_returncode(returncode)
        error = ProcessExitError(
            code,
            signal_name,
            stderr=self.stderr_text,
            command=self.config.command_line,
        )
        logger.info(f"Subprocess exited (pid={process.pid}, code={code}, signal={signal_name})")
        self._emit_error(error)
        self._on_exit(code, signal_name)

    # ------------------------------------------------------------------
    # Error reporting
    # ------------------------------------------------------------------

    def _emit_error(self, error: Exception) -> None:
        try:
            self._on_error(error)
        except Exception as e:
            logger.exception(f"Error handler failed: {e}")

    def _fail(self, error: TransportError) -> None:
        if self.is_closed:
            return
        logger.error(f"Transport failure: {error}")
        self._emit_error(error)
        self.close()
