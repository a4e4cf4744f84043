"""Per-channel framing state for one generation.

Each channel (text, reasoning, command output) moves through
ABSENT -> STARTED -> ENDED. A start frame is emitted lazily on the first
non-empty delta; end frames are emitted only during finalization, and only
for channels that were started. Finalization happens exactly once and ends
with a single Finish frame.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from ..protocol.events import (
    Channel,
    Finish,
    GenerationOutcome,
    StreamPart,
    TextDelta,
    TextEnd,
    TextStart,
    Usage,
)
from ..utils import normalize_reasoning

logger = logging.getLogger(__name__)


class ChannelPhase(str, Enum):
    ABSENT = "absent"
    STARTED = "started"
    ENDED = "ended"


@dataclass
class ChannelState:
    """Framing and dedup trackers for one channel."""

    channel: Channel
    phase: ChannelPhase = ChannelPhase.ABSENT
    last_raw: str = ""
    last_normalized: str = ""


class StreamState:
    """Emits stream parts for one generation and guards its terminal state.

    Args:
        emit: Receives every stream part, in order
        on_finalize: Called once after the Finish frame (releases the client)
        include_reasoning: When False, reasoning content is dropped
    """

    def __init__(
        self,
        emit: Callable[[StreamPart], None],
        on_finalize: Callable[[], None] | None = None,
        include_reasoning: bool = True,
    ) -> None:
        self._emit = emit
        self._on_finalize = on_finalize
        self._include_reasoning = include_reasoning
        self._channels: dict[Channel, ChannelState] = {}
        self._outcome: GenerationOutcome | None = None
        self._error: BaseException | None = None
        self.reasoning_delta_seen = False

    @property
    def finished(self) -> bool:
        return self._outcome is not None

    @property
    def outcome(self) -> GenerationOutcome | None:
        return self._outcome

    @property
    def error(self) -> BaseException | None:
        return self._error

    def channel(self, channel: Channel) -> ChannelState | None:
        return self._channels.get(channel)

    def ensure_started(self, channel: Channel) -> None:
        if self.finished:
            return
        state = self._channels.get(channel)
        if state is None:
            state = ChannelState(channel)
            self._channels[channel] = state
        if state.phase == ChannelPhase.ABSENT:
            state.phase = ChannelPhase.STARTED
            self._emit(TextStart(id=channel.value))

    def push_delta(self, channel: Channel, delta: str, source: str | None = None) -> None:
        if self.finished or not delta:
            return
        if channel == Channel.REASONING and not self._include_reasoning:
            return
        self.ensure_started(channel)
        logger.debug(f"{channel.value} delta ({source or 'unknown'}): {len(delta)} chars")
        self._emit(TextDelta(id=channel.value, delta=delta))

    def push_reasoning(self, chunk: str, source: str | None = None) -> None:
        """Emit a reasoning delta unless it repeats the previous one."""
        if self.finished or not chunk or not self._include_reasoning:
            return

        state = self._channels.get(Channel.REASONING)
        last_raw = state.last_raw if state else ""
        last_normalized = state.last_normalized if state else ""

        normalized = normalize_reasoning(chunk)
        if not normalized and chunk == "\n" and last_raw == "\n":
            return
        if normalized and normalized == last_normalized:
            return
        if not normalized and last_raw == chunk:
            return

        self.reasoning_delta_seen = True
        self.push_delta(Channel.REASONING, chunk, source)

        state = self._channels[Channel.REASONING]
        state.last_raw = chunk
        if normalized:
            state.last_normalized = normalized

    def finish(
        self,
        outcome: GenerationOutcome,
        error: BaseException | None = None,
    ) -> bool:
        """Finalize the stream. Returns False if it was already finalized."""
        if self.finished:
            logger.debug(f"Ignoring {outcome.value} after stream finished ({self._outcome})")
            return False

        self._outcome = outcome
        self._error = error

        for state in self._channels.values():
            if state.phase == ChannelPhase.STARTED:
                state.phase = ChannelPhase.ENDED
                self._emit(TextEnd(id=state.channel.value))

        self._emit(Finish(outcome=outcome, usage=Usage(), error=error))

        if self._on_finalize is not None:
            try:
                self._on_finalize()
            except Exception as e:
                logger.exception(f"Stream finalizer failed: {e}")
        return True
