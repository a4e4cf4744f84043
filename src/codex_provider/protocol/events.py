"""Codex event notifications and the output stream parts.

Inbound: ``codex/event`` notifications carry ``params.msg.type`` plus an
optional ``params._meta.requestId`` scoping the event to one ``tools/call``.

Outbound: an ordered sequence of stream parts over three channels:
    TextStart(id) -> TextDelta(id, delta)* -> TextEnd(id)
followed by exactly one Finish frame.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal


class CodexEventType(str, Enum):
    """``msg.type`` discriminants the adapter understands."""

    AGENT_MESSAGE_DELTA = "agent_message_delta"
    AGENT_MESSAGE = "agent_message"
    AGENT_REASONING_DELTA = "agent_reasoning_delta"
    AGENT_REASONING = "agent_reasoning"
    AGENT_REASONING_SECTION_BREAK = "agent_reasoning_section_break"
    EXEC_COMMAND_OUTPUT_DELTA = "exec_command_output_delta"
    TASK_COMPLETE = "task_complete"
    STREAM_ERROR = "stream_error"
    ERROR = "error"


class Channel(str, Enum):
    """Logical output channels, valued by their stream part id."""

    TEXT = "codex-text"
    REASONING = "codex-reasoning"
    EXEC = "codex-exec"


class GenerationOutcome(str, Enum):
    """Terminal state of a generation. ABORTED is a variant of ERROR."""

    STOP = "stop"
    ERROR = "error"
    ABORTED = "aborted"


FinishReason = Literal["stop", "error"]


@dataclass(frozen=True)
class Usage:
    """Token usage. The MCP server never reports counts."""

    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None


@dataclass(frozen=True)
class TextStart:
    id: str
    type: Literal["text-start"] = "text-start"


@dataclass(frozen=True)
class TextDelta:
    id: str
    delta: str
    type: Literal["text-delta"] = "text-delta"


@dataclass(frozen=True)
class TextEnd:
    id: str
    type: Literal["text-end"] = "text-end"


@dataclass(frozen=True)
class Finish:
    """The single terminal frame of a stream."""

    outcome: GenerationOutcome
    usage: Usage = field(default_factory=Usage)
    error: BaseException | None = None
    type: Literal["finish"] = "finish"

    @property
    def finish_reason(self) -> FinishReason:
        return "stop" if self.outcome == GenerationOutcome.STOP else "error"


StreamPart = TextStart | TextDelta | TextEnd | Finish
