"""Codex event to stream part adapter.

Turns ``codex/event`` notifications and the final ``tools/call`` result into
framed stream parts.

Event mapping:
- agent_message_delta            -> text delta
- agent_message                  -> text delta of the unseen suffix
- agent_reasoning_delta          -> reasoning delta (deduplicated)
- agent_reasoning                -> reasoning delta of the unseen suffix
- agent_reasoning_section_break  -> reasoning "\\n" (deduplicated)
- exec_command_output_delta      -> command output delta (opt-in, base64 aware)
- task_complete                  -> finish(stop)
- stream_error / error           -> finish(error)

Whichever terminal signal is observed first wins: a terminal notification,
the RPC result, a transport failure, or cancellation. Everything after that
is logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from ..cancellation import CancellationToken
from ..client import CodexMCPClient
from ..debug import debug_log
from ..errors import AbortedError, CodexStreamError, CodexToolError, TransportError
from ..protocol.events import Channel, CodexEventType, Finish, GenerationOutcome, StreamPart
from ..protocol.messages import CODEX_EVENT_PREFIX, ClientInfo
from ..utils import decode_exec_chunk, extract_text_from_result, shared_prefix_length
from .state import StreamState

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any], str], None]


def parse_request_id(raw: Any) -> int | None:
    """Read ``_meta.requestId`` as an int; None when it is not numeric."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            return None
    return None


class CodexStreamAdapter:
    """Drives one ``codex`` tool call and produces its stream parts.

    Usage:
        adapter = CodexStreamAdapter(client)
        task = asyncio.create_task(adapter.run(arguments, cancel_token))
        async for part in adapter.parts():
            ...
    """

    def __init__(
        self,
        client: CodexMCPClient,
        *,
        include_reasoning: bool = True,
        include_command_output: bool = False,
        client_info: ClientInfo | dict[str, Any] | None = None,
    ) -> None:
        self._client = client
        self._include_reasoning = include_reasoning
        self._include_command_output = include_command_output
        self._client_info = client_info

        # Unbounded: a slow consumer must never stall the stdout reader
        self._queue: asyncio.Queue[StreamPart | None] = asyncio.Queue()
        self.state = StreamState(
            emit=self._enqueue,
            on_finalize=self._release,
            include_reasoning=include_reasoning,
        )

        self._request_id: int | None = None
        self._last_agent_message = ""
        self._last_reasoning_message = ""
        self._cleanups: list[Callable[[], None]] = []

        self._handlers: dict[str, EventHandler] = {
            CodexEventType.AGENT_MESSAGE_DELTA.value: self._handle_agent_message_delta,
            CodexEventType.AGENT_MESSAGE.value: self._handle_agent_message,
            CodexEventType.AGENT_REASONING_DELTA.value: self._handle_reasoning_delta,
            CodexEventType.AGENT_REASONING.value: self._handle_reasoning,
            CodexEventType.AGENT_REASONING_SECTION_BREAK.value: self._handle_section_break,
            CodexEventType.EXEC_COMMAND_OUTPUT_DELTA.value: self._handle_exec_output,
            CodexEventType.TASK_COMPLETE.value: self._handle_task_complete,
            CodexEventType.STREAM_ERROR.value: self._handle_error_event,
            CodexEventType.ERROR.value: self._handle_error_event,
        }

    @property
    def request_id(self) -> int | None:
        return self._request_id

    @property
    def finished(self) -> bool:
        return self.state.finished

    # ------------------------------------------------------------------
    # Driving the call
    # ------------------------------------------------------------------

    async def run(
        self,
        arguments: dict[str, Any],
        cancel_token: CancellationToken | None = None,
    ) -> None:
        """Run the tool call to completion. Never raises except on task cancellation."""
        if cancel_token is not None and cancel_token.cancelled:
            self.abort()
            self._cleanup()
            return

        if cancel_token is not None:
            self._cleanups.append(cancel_token.add_callback(self.abort))
        self._cleanups.append(self._client.on_notification(self.handle_notification))
        self._cleanups.append(self._client.on_error(self._handle_client_error))
        self._cleanups.append(self._client.on_exit(self._handle_client_exit))

        try:
            await self._client.initialize(self._client_info)
            outcome = await self._client.call_codex(
                arguments,
                cancel_token=cancel_token,
                on_notification=lambda n: debug_log("notification", {"notification": n}),
                on_request_id=self._set_request_id,
            )
            self.handle_result(outcome.result)
        except asyncio.CancelledError:
            self.abort()
            raise
        except Exception as e:
            if self.state.finished:
                logger.debug(f"Call ended after stream was finalized: {e!r}")
            elif isinstance(e, AbortedError):
                self.state.finish(GenerationOutcome.ABORTED, e)
            else:
                self.state.finish(GenerationOutcome.ERROR, e)
        finally:
            self._cleanup()

    def abort(self) -> None:
        """Finalize as aborted. No-op once the stream has finished."""
        if self.state.finished:
            return
        if self._request_id is not None:
            self._client.cancel_request(self._request_id)
        self.state.finish(GenerationOutcome.ABORTED, AbortedError())

    async def parts(self) -> AsyncIterator[StreamPart]:
        """Yield stream parts until the Finish frame has been delivered."""
        while True:
            part = await self._queue.get()
            if part is None:
                return
            yield part

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    def handle_notification(self, notification: dict[str, Any]) -> None:
        method = notification.get("method")
        if not isinstance(method, str) or not method.startswith(CODEX_EVENT_PREFIX):
            return

        params = notification.get("params")
        if not isinstance(params, dict):
            params = {}

        if not self._matches_request(params.get("_meta")):
            return

        msg = params.get("msg")
        if not isinstance(msg, dict):
            msg = {}
        event_type = msg.get("type")
        if not isinstance(event_type, str):
            event_type = method.split("/")[-1]

        if self.state.finished:
            logger.debug(f"Ignoring {event_type} event after stream finished")
            return

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug(f"Ignoring codex event: {event_type}")
            return
        handler(msg, event_type)

    def handle_result(self, result: Any) -> None:
        """Apply the final ``tools/call`` result unless a terminal event came first."""
        if self.state.finished:
            logger.debug("Ignoring tool result after stream finished")
            return

        if not isinstance(result, dict):
            self.state.finish(
                GenerationOutcome.ERROR,
                CodexToolError("Codex MCP tool returned an invalid result"),
            )
            return

        text = extract_text_from_result(result)
        if result.get("isError"):
            self.state.finish(
                GenerationOutcome.ERROR,
                CodexToolError(text or "Codex MCP tool invocation failed"),
            )
            return

        if text:
            self._last_agent_message = self._push_snapshot(
                Channel.TEXT, self._last_agent_message, text, "call_result"
            )
        self.state.finish(GenerationOutcome.STOP)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _handle_agent_message_delta(self, msg: dict[str, Any], event_type: str) -> None:
        delta = msg.get("delta")
        if isinstance(delta, str) and delta:
            self.state.push_delta(Channel.TEXT, delta, event_type)
            self._last_agent_message += delta

    def _handle_agent_message(self, msg: dict[str, Any], event_type: str) -> None:
        message = msg.get("message")
        if not isinstance(message, str):
            return
        if not message:
            self._last_agent_message = ""
            return
        self._last_agent_message = self._push_snapshot(
            Channel.TEXT, self._last_agent_message, message, "agent_message_delta_from_full"
        )

    def _handle_reasoning_delta(self, msg: dict[str, Any], event_type: str) -> None:
        if not self._include_reasoning:
            return
        delta = msg.get("delta")
        if isinstance(delta, str) and delta:
            self.state.push_reasoning(delta, event_type)
            self._last_reasoning_message += delta

    def _handle_reasoning(self, msg: dict[str, Any], event_type: str) -> None:
        if not self._include_reasoning:
            return
        text = msg.get("text")
        if not isinstance(text, str):
            return
        if not text:
            self._last_reasoning_message = ""
            return
        self._last_reasoning_message = self._push_snapshot(
            Channel.REASONING, self._last_reasoning_message, text, event_type
        )

    def _handle_section_break(self, msg: dict[str, Any], event_type: str) -> None:
        if not self._include_reasoning:
            return
        self.state.push_reasoning("\n", event_type)
        self._last_reasoning_message += "\n"

    def _handle_exec_output(self, msg: dict[str, Any], event_type: str) -> None:
        if not self._include_command_output:
            return
        chunk = msg.get("chunk")
        if not isinstance(chunk, str):
            return
        decoded = decode_exec_chunk(chunk)
        if decoded:
            self.state.push_delta(Channel.EXEC, decoded, event_type)
        else:
            logger.debug(f"Dropping non-text command output chunk ({len(chunk)} chars)")

    def _handle_task_complete(self, msg: dict[str, Any], event_type: str) -> None:
        self.state.finish(GenerationOutcome.STOP)

    def _handle_error_event(self, msg: dict[str, Any], event_type: str) -> None:
        message = msg.get("message")
        if not isinstance(message, str):
            message = f"Codex {event_type}"
        self.state.finish(GenerationOutcome.ERROR, CodexStreamError(message, event_type))

    # ------------------------------------------------------------------
    # Client lifecycle events
    # ------------------------------------------------------------------

    def _handle_client_error(self, error: Exception) -> None:
        self.state.finish(GenerationOutcome.ERROR, error)

    def _handle_client_exit(self, code: int | None, signal: str | None) -> None:
        detail = "null" if code is None else str(code)
        if signal:
            detail += f", {signal}"
        self.state.finish(
            GenerationOutcome.ERROR,
            TransportError(f"codex mcp-server exited unexpectedly ({detail})"),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _push_snapshot(self, channel: Channel, accumulated: str, snapshot: str, source: str) -> str:
        """Emit only the part of ``snapshot`` beyond what was already streamed."""
        delta = snapshot[shared_prefix_length(accumulated, snapshot) :]
        if delta:
            if channel == Channel.REASONING:
                self.state.push_reasoning(delta, source)
            else:
                self.state.push_delta(channel, delta, source)
        return snapshot

    def _matches_request(self, meta: Any) -> bool:
        if self._request_id is None or not isinstance(meta, dict) or "requestId" not in meta:
            return True
        meta_request_id = parse_request_id(meta["requestId"])
        return meta_request_id is None or meta_request_id == self._request_id

    def _set_request_id(self, request_id: int) -> None:
        self._request_id = request_id

    def _enqueue(self, part: StreamPart) -> None:
        self._queue.put_nowait(part)
        if isinstance(part, Finish):
            self._queue.put_nowait(None)

    def _release(self) -> None:
        self._client.close()

    def _cleanup(self) -> None:
        cleanups, self._cleanups = self._cleanups, []
        for cleanup in cleanups:
            cleanup()
        self._client.close()
