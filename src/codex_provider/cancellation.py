"""Cooperative cancellation token.

Wraps an ``asyncio.Event`` so callers can either await cancellation or
register a synchronous callback that fires the moment ``cancel()`` is called.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

CancelCallback = Callable[[], None]


class CancellationToken:
    """One-shot cancellation signal shared between a caller and the client."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[CancelCallback] = []
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        """Fire the token. Callbacks run synchronously, in registration order."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.exception(f"Cancellation callback failed: {e}")

    def add_callback(self, callback: CancelCallback) -> Callable[[], None]:
        """Register ``callback``; returns a disposer that unregisters it.

        The callback is not invoked if the token is already cancelled; callers
        check ``cancelled`` first.
        """
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    async def wait(self) -> None:
        await self._event.wait()
