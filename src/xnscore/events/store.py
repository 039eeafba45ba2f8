"""Append-only score event store.

Provides the EventStore protocol and the in-memory implementation. The
durable SQLAlchemy implementation lives in ``xnscore.events.sql_store``.

Guarantees:
- Append-only: events are never mutated or deleted
- Appends for one member are serialized; different members run in parallel
- History is ordered by timestamp ascending regardless of arrival order
- Every successful append bumps the member's version and publishes an
  invalidation on the channel
"""

from __future__ import annotations

import bisect
import logging
import threading
from collections.abc import Callable, Iterator
from datetime import datetime
from typing import Protocol, runtime_checkable

from xnscore.clock import Clock, utc_now
from xnscore.errors import ValidationError
from xnscore.events.channel import InvalidationChannel
from xnscore.events.validation import validate_event
from xnscore.models.score_event import ScoreEvent, ScoreEventKind

logger = logging.getLogger(__name__)


class EventHistory:
    """Lazy, finite, restartable view over one member's events.

    Bound to the member's version at the time it was read, so iterating it
    again yields the same sequence even if new events arrive meanwhile.
    """

    def __init__(
        self,
        member_id: str,
        version: int,
        loader: Callable[[], Iterator[ScoreEvent]],
    ) -> None:
        self.member_id = member_id
        self.version = version
        self._loader = loader

    def __iter__(self) -> Iterator[ScoreEvent]:
        return self._loader()


@runtime_checkable
class EventStore(Protocol):
    """Structural interface shared by the in-memory and SQL stores."""

    channel: InvalidationChannel

    def append(self, event: ScoreEvent) -> str: ...

    def history(
        self,
        member_id: str,
        kind: ScoreEventKind | None = None,
        since: datetime | None = None,
    ) -> EventHistory: ...

    def version(self, member_id: str) -> int: ...


class MemberLocks:
    """Lazily created per-member locks."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, member_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(member_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[member_id] = lock
            return lock


def _filtered(
    events: tuple[ScoreEvent, ...],
    kind: ScoreEventKind | None,
    since: datetime | None,
) -> Iterator[ScoreEvent]:
    for event in events:
        if kind is not None and event.kind != kind:
            continue
        if since is not None and event.timestamp < since:
            continue
        yield event


class InMemoryEventStore:
    """Thread-safe in-memory event store.

    Args:
        channel: Invalidation channel; a private one is created if omitted.
        clock: Time source for the future-timestamp check.
        max_clock_skew_seconds: Tolerated lead of event timestamps over the clock.
    """

    def __init__(
        self,
        channel: InvalidationChannel | None = None,
        clock: Clock = utc_now,
        max_clock_skew_seconds: int = 0,
    ) -> None:
        self.channel = channel or InvalidationChannel()
        self._clock = clock
        self._max_clock_skew_seconds = max_clock_skew_seconds
        self._events: dict[str, list[ScoreEvent]] = {}
        self._by_id: dict[str, ScoreEvent] = {}
        self._versions: dict[str, int] = {}
        self._ids_lock = threading.Lock()
        self._member_locks = MemberLocks()

    def append(self, event: ScoreEvent) -> str:
        """Validate and append an event.

        Re-appending an identical event (same event_id) is a no-op.

        Returns:
            The stored event id.

        Raises:
            ValidationError: If the event is malformed, or reuses an existing
                event id with different content.
        """
        validate_event(event, self._clock(), self._max_clock_skew_seconds)

        with self._member_locks.get(event.member_id):
            with self._ids_lock:
                existing = self._by_id.get(event.event_id)
                if existing is not None:
                    if existing.model_dump() != event.model_dump():
                        raise ValidationError(
                            code="EVENT_ID_CONFLICT",
                            message=f"Event id {event.event_id} already used by another event",
                            details={"event_id": event.event_id},
                        )
                    return event.event_id
                self._by_id[event.event_id] = event

            member_events = self._events.setdefault(event.member_id, [])
            bisect.insort_right(member_events, event, key=lambda e: e.timestamp)
            self._versions[event.member_id] = self._versions.get(event.member_id, 0) + 1

        logger.debug(
            "Appended score event",
            extra={"member_id": event.member_id, "kind": event.kind.value},
        )
        self.channel.publish(event.member_id)
        return event.event_id

    def history(
        self,
        member_id: str,
        kind: ScoreEventKind | None = None,
        since: datetime | None = None,
    ) -> EventHistory:
        """Events for ``member_id`` ordered by timestamp, optionally filtered."""
        with self._member_locks.get(member_id):
            frozen = tuple(self._events.get(member_id, ()))
            version = self._versions.get(member_id, 0)
        return EventHistory(member_id, version, lambda: _filtered(frozen, kind, since))

    def version(self, member_id: str) -> int:
        with self._member_locks.get(member_id):
            return self._versions.get(member_id, 0)
