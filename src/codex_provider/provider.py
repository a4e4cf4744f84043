"""Language model provider backed by the Codex MCP server.

Each ``do_stream`` call spawns its own ``codex mcp-server`` process, runs a
single ``codex`` tool call, and tears the process down when the stream
finishes. Sessions are never shared between calls.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from .cancellation import CancellationToken
from .client import CodexMCPClient
from .debug import rpc_debug_hooks
from .errors import UnsupportedModelError
from .options import PROVIDER_ID, CodexProviderOptions
from .prompt import build_conversation_payload, build_prompt, build_tool_arguments
from .protocol.events import Channel, Finish, FinishReason, StreamPart, TextDelta, Usage
from .stream.adapter import CodexStreamAdapter

logger = logging.getLogger(__name__)

ClientFactory = Callable[[CodexProviderOptions], CodexMCPClient]


@dataclass
class CallOptions:
    """Inputs for one generation.

    Attributes:
        prompt: Conversation messages ({"role": ..., "content": str | parts})
        cancel_token: Aborts the generation when fired
        provider_options: Per-provider option maps, keyed by provider id
    """

    prompt: list[dict[str, Any]] = field(default_factory=list)
    cancel_token: CancellationToken | None = None
    provider_options: dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerateResult:
    content: list[dict[str, Any]]
    reasoning: str
    finish_reason: FinishReason
    usage: Usage
    warnings: list[str] = field(default_factory=list)


def default_client_factory(options: CodexProviderOptions) -> CodexMCPClient:
    return CodexMCPClient(options.transport_config(), hooks=rpc_debug_hooks())


class CodexStream:
    """Async iterator over the stream parts of one generation.

    Leaving the iteration early (break, ``aclose()``) aborts the generation
    and tears down the subprocess.
    """

    def __init__(
        self,
        adapter: CodexStreamAdapter,
        arguments: dict[str, Any],
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self._adapter = adapter
        self._task = asyncio.create_task(adapter.run(arguments, cancel_token))

    @property
    def adapter(self) -> CodexStreamAdapter:
        return self._adapter

    def __aiter__(self) -> AsyncIterator[StreamPart]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamPart]:
        try:
            async for part in self._adapter.parts():
                yield part
        finally:
            if not self._adapter.finished:
                self._adapter.abort()

    async def aclose(self) -> None:
        """Abort if still running and wait for the call to unwind."""
        self._adapter.abort()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    async def collect(self) -> list[StreamPart]:
        return [part async for part in self]


class CodexLanguageModel:
    """A single Codex model exposed through the streaming interface."""

    provider = PROVIDER_ID
    specification_version = "v2"

    def __init__(self, model_id: str, client_factory: ClientFactory | None = None) -> None:
        self.model_id = model_id
        self._client_factory = client_factory or default_client_factory

    def __repr__(self) -> str:
        return f"CodexLanguageModel(model_id={self.model_id!r})"

    def do_stream(self, options: CallOptions) -> CodexStream:
        """Start a generation and return its stream. Requires a running loop."""
        provider_options = CodexProviderOptions.from_provider_options(options.provider_options)
        payload = build_conversation_payload(options.prompt)
        arguments = build_tool_arguments(
            build_prompt(payload),
            provider_options,
            model_id=self.model_id,
            default_cwd=os.getcwd(),
        )

        client = self._client_factory(provider_options)
        adapter = CodexStreamAdapter(
            client,
            include_reasoning=provider_options.stream_reasoning,
            include_command_output=provider_options.stream_command_output,
            client_info=provider_options.client_info,
        )
        logger.debug(f"Starting codex generation (model={arguments['model']})")
        return CodexStream(adapter, arguments, options.cancel_token)

    async def do_generate(self, options: CallOptions) -> GenerateResult:
        """Run a generation to completion and return the collected text.

        Raises:
            The error carried by the Finish frame when the generation failed
        """
        text_parts: list[str] = []
        reasoning_parts: list[str] = []
        finish: Finish | None = None

        async for part in self.do_stream(options):
            if isinstance(part, TextDelta):
                if part.id == Channel.TEXT.value:
                    text_parts.append(part.delta)
                elif part.id == Channel.REASONING.value:
                    reasoning_parts.append(part.delta)
            elif isinstance(part, Finish):
                finish = part

        if finish is not None and finish.error is not None:
            raise finish.error

        text = "".join(text_parts)
        return GenerateResult(
            content=[{"type": "text", "text": text}] if text else [],
            reasoning="".join(reasoning_parts),
            finish_reason=finish.finish_reason if finish else "stop",
            usage=finish.usage if finish else Usage(),
        )


class CodexProvider:
    """Provider entry point: hands out language models by id."""

    provider_id = PROVIDER_ID

    def __init__(self, client_factory: ClientFactory | None = None) -> None:
        self._client_factory = client_factory

    def language_model(self, model_id: str) -> CodexLanguageModel:
        return CodexLanguageModel(model_id, self._client_factory)

    def text_embedding_model(self, model_id: str) -> Any:
        raise UnsupportedModelError(
            f"Codex provider does not support text embeddings (requested model: {model_id})"
        )

    def image_model(self, model_id: str) -> Any:
        raise UnsupportedModelError(
            f"Codex provider does not support image models (requested model: {model_id})"
        )


def create_codex_provider(client_factory: ClientFactory | None = None) -> CodexProvider:
    return CodexProvider(client_factory)
