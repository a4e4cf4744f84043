"""JSON-RPC client for the Codex MCP server.

Owns one transport session and layers on top of it:
- request/response correlation by integer id (0, 1, 2, ... per session)
- per-request cancellation via CancellationToken
- notification fan-out through a NotificationRouter
- the one-shot ``initialize`` handshake

Failure model: a transport error or process exit rejects every pending
request with the same error and closes the session for good. An
unparsable line is logged and skipped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .cancellation import CancellationToken
from .errors import (
    AbortedError,
    MessageParseError,
    RpcError,
    TransportClosedError,
)
from .protocol.messages import (
    CANCELLED_NOTIFICATION,
    CODEX_EVENT_PREFIX,
    CODEX_TOOL_NAME,
    INITIALIZE_METHOD,
    INITIALIZED_NOTIFICATION,
    TOOLS_CALL_METHOD,
    ClientInfo,
    JsonRpcError,
    JsonRpcResponse,
    initialize_params,
    is_notification,
    is_response,
    make_notification,
    make_request,
    to_request_key,
)
from .router import Notification, NotificationListener, NotificationRouter
from .transport.stdio import (
    MessageTransport,
    StdioProcessTransport,
    StdioTransportConfig,
    TransportHooks,
)

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[Exception], None]
ExitHandler = Callable[[int | None, str | None], None]

METHOD_NOT_FOUND = -32601


@dataclass
class PendingRequest:
    """An issued request awaiting its response."""

    id: int
    future: asyncio.Future[Any]
    cleanup: Callable[[], None]


@dataclass(frozen=True)
class PendingCall:
    """Handle returned by ``call()``: the assigned id and its completion."""

    id: int
    future: asyncio.Future[Any]


@dataclass(frozen=True)
class CodexCallResult:
    request_id: int
    result: Any


class CodexMCPClient:
    """Request correlator and notification router over one MCP session.

    Not shared across generations: create one client per call, and close it
    when the call completes.

    Usage:
        client = CodexMCPClient(StdioTransportConfig(command="codex"))
        await client.initialize()
        outcome = await client.call_codex({"prompt": "hi"})
        client.close()
    """

    def __init__(
        self,
        config: StdioTransportConfig | None = None,
        hooks: TransportHooks | None = None,
        transport: MessageTransport | None = None,
    ) -> None:
        self._transport: MessageTransport = transport or StdioProcessTransport(config, hooks)
        self._transport.bind(self._handle_message, self._handle_error, self._handle_exit)

        self._pending: dict[str, PendingRequest] = {}
        self._router = NotificationRouter()
        self._error_handlers: list[ErrorHandler] = []
        self._exit_handlers: list[ExitHandler] = []

        self._request_counter = 0
        self._closed = False
        self._failure: Exception | None = None
        self._exit_reported = False

        self._init_task: asyncio.Task[None] | None = None
        self._initialized = False

    @property
    def transport(self) -> MessageTransport:
        return self._transport

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the underlying transport (spawns the process)."""
        self._ensure_open()
        await self._transport.start()

    async def initialize(self, client_info: ClientInfo | dict[str, Any] | None = None) -> None:
        """Run the handshake once.

        Concurrent callers share a single in-flight attempt. Once it has
        succeeded further calls return immediately; after a failure the next
        call starts a fresh attempt.
        """
        if self._initialized:
            return

        if self._init_task is None:
            info = ClientInfo.model_validate(client_info) if client_info is not None else None
            self._init_task = asyncio.create_task(self._initialize_internal(info))

        task = self._init_task
        try:
            await asyncio.shield(task)
        except Exception:
            if task.done() and self._init_task is task:
                self._init_task = None
            raise

        self._initialized = True

    async def _initialize_internal(self, client_info: ClientInfo | None) -> None:
        await self.start()
        result = await self.request(INITIALIZE_METHOD, initialize_params(client_info))
        if isinstance(result, dict) and "error" in result:
            raise RpcError(None, "Codex MCP server returned an error during initialization")
        self.notify(INITIALIZED_NOTIFICATION)
        logger.debug("MCP handshake complete")

    def close(self) -> None:
        """Close the session. Idempotent; pending requests are rejected."""
        if not self._closed:
            self._closed = True
            self._reject_all(TransportClosedError("Codex MCP client closed"))
        self._transport.close()

    async def aclose(self, timeout: float = 5.0) -> None:
        """Close and wait for the subprocess to exit."""
        self.close()
        wait_closed = getattr(self._transport, "wait_closed", None)
        if wait_closed is not None:
            await wait_closed(timeout)

    async def __aenter__(self) -> CodexMCPClient:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def call(
        self,
        method: str,
        params: Any | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> PendingCall:
        """Send a request and return its id plus a future for the result.

        The id is returned synchronously so callers can scope notification
        filtering before any response or event for it is processed.

        Raises:
            TransportClosedError: If the session is already closed
        """
        self._ensure_open()

        request_id = self._request_counter
        self._request_counter += 1
        key = to_request_key(request_id)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

        if cancel_token is not None and cancel_token.cancelled:
            future.set_exception(AbortedError())
            return PendingCall(request_id, future)

        remove_cancel: Callable[[], None] | None = None

        def on_cancel() -> None:
            self.cancel_request(request_id)

        def cleanup() -> None:
            if remove_cancel is not None:
                remove_cancel()

        if cancel_token is not None:
            remove_cancel = cancel_token.add_callback(on_cancel)

        self._pending[key] = PendingRequest(request_id, future, cleanup)
        self._transport.send(make_request(request_id, method, params))
        return PendingCall(request_id, future)

    async def request(
        self,
        method: str,
        params: Any | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> Any:
        """Send a request and await its result."""
        return await self.call(method, params, cancel_token).future

    def cancel_request(self, request_id: int) -> bool:
        """Abort one pending request.

        Removes it, tells the server (best effort), and rejects its future
        with AbortedError. A response arriving later is ignored. Returns False
        if the request was no longer pending.
        """
        entry = self._pending.pop(to_request_key(request_id), None)
        if entry is None:
            return False
        entry.cleanup()
        self._send_cancelled(request_id)
        if not entry.future.done():
            entry.future.set_exception(AbortedError())
        return True

    def notify(self, method: str, params: Any | None = None) -> None:
        """Send a notification. Dropped silently once the session is closed."""
        if self._closed:
            logger.debug(f"Not sending {method}: client closed")
            return
        self._transport.send(make_notification(method, params))

    async def call_codex(
        self,
        arguments: dict[str, Any],
        cancel_token: CancellationToken | None = None,
        on_notification: NotificationListener | None = None,
        on_request_id: Callable[[int], None] | None = None,
    ) -> CodexCallResult:
        """Invoke the ``codex`` tool and await its final result.

        Args:
            arguments: Tool arguments (prompt, model, cwd, ...)
            cancel_token: Aborts the call when fired
            on_notification: Receives ``codex/event*`` notifications while the
                call is outstanding
            on_request_id: Called synchronously with the assigned request id

        Raises:
            AbortedError: If the token fired first
            RpcError: If the server answered with an error object
            TransportError: If the process failed or exited
        """
        await self.initialize()

        unsubscribe: Callable[[], None] | None = None
        if on_notification is not None:
            listener = on_notification

            def forward(notification: Notification) -> None:
                if str(notification.get("method", "")).startswith(CODEX_EVENT_PREFIX):
                    listener(notification)

            unsubscribe = self.on_notification(forward)

        try:
            pending = self.call(
                TOOLS_CALL_METHOD,
                {"name": CODEX_TOOL_NAME, "arguments": arguments},
                cancel_token,
            )
            if on_request_id is not None:
                on_request_id(pending.id)
            result = await pending.future
            return CodexCallResult(request_id=pending.id, result=result)
        finally:
            if unsubscribe is not None:
                unsubscribe()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_notification(self, listener: NotificationListener) -> Callable[[], None]:
        return self._router.subscribe(listener)

    def on_error(self, handler: ErrorHandler) -> Callable[[], None]:
        self._error_handlers.append(handler)
        return lambda: self._discard(self._error_handlers, handler)

    def on_exit(self, handler: ExitHandler) -> Callable[[], None]:
        self._exit_handlers.append(handler)
        return lambda: self._discard(self._exit_handlers, handler)

    # ------------------------------------------------------------------
    # Transport callbacks
    # ------------------------------------------------------------------

    def _handle_message(self, message: dict[str, Any]) -> None:
        if is_response(message) and "method" in message:
            self._reject_server_request(message)
            return

        if is_response(message):
            raw_id = message.get("id")
            if not isinstance(raw_id, (int, str)) or isinstance(raw_id, bool):
                logger.debug(f"Ignoring response with invalid id: {raw_id!r}")
                return
            entry = self._pending.pop(to_request_key(raw_id), None)
            if entry is None:
                logger.debug(f"Ignoring response for unknown request: {raw_id}")
                return
            entry.cleanup()
            if entry.future.done():
                return
            error = message.get("error")
            if error is not None:
                entry.future.set_exception(RpcError.from_payload(error))
            else:
                entry.future.set_result(message.get("result"))
            return

        if is_notification(message):
            self._router.dispatch(message)
            return

        logger.debug("Ignoring message without id or method")

    def _handle_error(self, error: Exception) -> None:
        if isinstance(error, MessageParseError):
            logger.warning(f"Skipping unparsable server output: {error}")
            return
        if self._closed:
            return

        self._closed = True
        self._failure = error
        logger.debug(f"Session failed: {error}")

        for handler in list(self._error_handlers):
            try:
                handler(error)
            except Exception as e:
                logger.exception(f"Error handler failed: {e}")

        self._reject_all(error)
        self._transport.close()

    def _handle_exit(self, code: int | None, signal: str | None) -> None:
        if self._exit_reported:
            return
        self._exit_reported = True
        for handler in list(self._exit_handlers):
            try:
                handler(code, signal)
            except Exception as e:
                logger.exception(f"Exit handler failed: {e}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise TransportClosedError("Codex MCP client is closed") from self._failure

    def _reject_all(self, error: Exception) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for entry in pending:
            entry.cleanup()
            if not entry.future.done():
                entry.future.set_exception(error)

    def _send_cancelled(self, request_id: int) -> None:
        try:
            self.notify(CANCELLED_NOTIFICATION, {"requestId": request_id})
        except Exception as e:
            logger.debug(f"Failed to send cancellation for request {request_id}: {e}")

    def _reject_server_request(self, message: dict[str, Any]) -> None:
        """Answer server-initiated requests; this client implements none."""
        method = message.get("method")
        logger.debug(f"Rejecting server request: {method}")
        response = JsonRpcResponse(
            id=message.get("id"),
            error=JsonRpcError(code=METHOD_NOT_FOUND, message=f"Method not found: {method}"),
        )
        if not self._closed:
            self._transport.send(response.model_dump(exclude_none=True))

    @staticmethod
    def _discard(handlers: list[Any], handler: Any) -> None:
        if handler in handlers:
            handlers.remove(handler)
