"""Notification fan-out.

Every server message that has a ``method`` but no ``id`` is delivered to all
currently registered listeners, in registration order, synchronously, one
message at a time. The router does not interpret payloads or deduplicate;
scoping a listener to one request is the listener's job.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Notification = dict[str, Any]
NotificationListener = Callable[[Notification], None]


class NotificationRouter:
    """Ordered, synchronous listener registry."""

    def __init__(self) -> None:
        self._listeners: list[NotificationListener] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        """Add ``listener``; returns a disposer that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, notification: Notification) -> None:
        """Deliver one notification to every listener.

        A snapshot of the listener list is taken so listeners may unsubscribe
        themselves during dispatch. A failing listener does not prevent
        delivery to the ones after it.
        """
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.exception(f"Error handling notification {notification.get('method')}: {e}")

    def clear(self) -> None:
        self._listeners.clear()
