"""Score invalidation channel.

Decouples the event store's write path from the score cache: the store
publishes a member id after every append and subscribers (the aggregator's
cache) react on their own. Publishing is fire-and-forget; a failing
subscriber is logged and never propagates to the writer.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

InvalidationCallback = Callable[[str], None]


class InvalidationChannel:
    """In-process publish/subscribe channel keyed by member id."""

    def __init__(self) -> None:
        self._subscribers: list[InvalidationCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: InvalidationCallback) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: InvalidationCallback) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, member_id: str) -> None:
        """Notify all subscribers that ``member_id`` has new events."""
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(member_id)
            except Exception as exc:
                logger.warning(
                    "Invalidation subscriber failed: %s",
                    exc,
                    extra={"member_id": member_id},
                )
