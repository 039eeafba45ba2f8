"""Durable SQLAlchemy-backed event store.

Works with any SQLAlchemy URL (SQLite for local runs and tests, PostgreSQL in
production). The durable write is committed before ``append`` returns.

Environment Variables:
    XNSCORE_DATABASE_URL: Connection string; when unset the in-memory store is used.

Ordering:
    Events are read back ordered by (timestamp, seq), where seq is the
    insertion sequence. A history view is pinned to the highest seq visible
    when it was created, so re-iterating it never picks up later appends.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from xnscore.clock import Clock, utc_now
from xnscore.errors import EventStoreUnavailableError, ValidationError
from xnscore.events.channel import InvalidationChannel
from xnscore.events.store import EventHistory, MemberLocks
from xnscore.events.validation import validate_event
from xnscore.models.score_event import ScoreEvent, ScoreEventKind
from xnscore.persistence.db import create_db_engine
from xnscore.persistence.tables import metadata, score_events

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine
    from sqlalchemy.engine import Row

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _epoch_micros(value: datetime) -> int:
    delta = value - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def _row_to_event(row: Row[Any]) -> ScoreEvent:
    return ScoreEvent(
        event_id=row.event_id,
        member_id=row.member_id,
        kind=ScoreEventKind(row.kind),
        timestamp=datetime.fromisoformat(row.ts),
        magnitude=row.magnitude,
        metadata=json.loads(row.metadata_json),
    )


class SqlEventStore:
    """Event store persisted through SQLAlchemy Core.

    Args:
        engine: SQLAlchemy engine. The ``score_events`` table is created if missing.
        channel: Invalidation channel; a private one is created if omitted.
        clock: Time source for the future-timestamp check.
        max_clock_skew_seconds: Tolerated lead of event timestamps over the clock.
    """

    def __init__(
        self,
        engine: Engine,
        channel: InvalidationChannel | None = None,
        clock: Clock = utc_now,
        max_clock_skew_seconds: int = 0,
    ) -> None:
        self.channel = channel or InvalidationChannel()
        self._engine = engine
        self._clock = clock
        self._max_clock_skew_seconds = max_clock_skew_seconds
        self._member_locks = MemberLocks()
        try:
            metadata.create_all(engine)
        except SQLAlchemyError as exc:
            raise EventStoreUnavailableError(f"Failed to initialize event store: {exc}") from exc

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> SqlEventStore:
        """Create a store from a database URL."""
        return cls(create_db_engine(url), **kwargs)

    def append(self, event: ScoreEvent) -> str:
        """Validate and durably append an event.

        Re-appending an identical event (same event_id) is a no-op.

        Raises:
            ValidationError: If the event is malformed or its id is already
                used by a different event.
            EventStoreUnavailableError: If the backend write fails.
        """
        validate_event(event, self._clock(), self._max_clock_skew_seconds)

        with self._member_locks.get(event.member_id):
            try:
                with self._engine.begin() as conn:
                    existing = self._find(conn, event.event_id)
                    if existing is not None:
                        self._check_same(existing, event)
                        return event.event_id
                    conn.execute(
                        score_events.insert().values(
                            event_id=event.event_id,
                            member_id=event.member_id,
                            kind=event.kind.value,
                            ts_us=_epoch_micros(event.timestamp),
                            ts=event.timestamp.isoformat(),
                            magnitude=event.magnitude,
                            metadata_json=json.dumps(event.metadata, sort_keys=True),
                            recorded_at=self._clock().isoformat(),
                        )
                    )
            except IntegrityError:
                # Concurrent writer stored the same event id first.
                existing = self._find_committed(event.event_id)
                if existing is None:
                    raise EventStoreUnavailableError(
                        f"Event {event.event_id} insert failed without a stored row"
                    ) from None
                self._check_same(existing, event)
                return event.event_id
            except SQLAlchemyError as exc:
                logger.error(
                    "Event store write failed: %s",
                    exc,
                    extra={"member_id": event.member_id},
                )
                raise EventStoreUnavailableError(f"Event store write failed: {exc}") from exc

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
        """Events for ``member_id`` ordered by timestamp, optionally filtered.

        Raises:
            EventStoreUnavailableError: If the backend cannot be read.
        """
        try:
            with self._engine.connect() as conn:
                max_seq, count = conn.execute(
                    select(func.max(score_events.c.seq), func.count()).where(
                        score_events.c.member_id == member_id
                    )
                ).one()
        except SQLAlchemyError as exc:
            raise EventStoreUnavailableError(f"Event store read failed: {exc}") from exc

        def load() -> Iterator[ScoreEvent]:
            if not max_seq:
                return iter(())
            return self._load(member_id, int(max_seq), kind, since)

        return EventHistory(member_id, int(count or 0), load)

    def version(self, member_id: str) -> int:
        """Number of events stored for the member; grows with every append."""
        try:
            with self._engine.connect() as conn:
                count = conn.execute(
                    select(func.count()).where(score_events.c.member_id == member_id)
                ).scalar_one()
        except SQLAlchemyError as exc:
            raise EventStoreUnavailableError(f"Event store read failed: {exc}") from exc
        return int(count)

    def _load(
        self,
        member_id: str,
        max_seq: int,
        kind: ScoreEventKind | None,
        since: datetime | None,
    ) -> Iterator[ScoreEvent]:
        query = select(score_events).where(
            score_events.c.member_id == member_id,
            score_events.c.seq <= max_seq,
        )
        if kind is not None:
            query = query.where(score_events.c.kind == kind.value)
        if since is not None:
            query = query.where(score_events.c.ts_us >= _epoch_micros(since))
        query = query.order_by(score_events.c.ts_us, score_events.c.seq)
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(query).all()
        except SQLAlchemyError as exc:
            raise EventStoreUnavailableError(f"Event store read failed: {exc}") from exc
        return (_row_to_event(row) for row in rows)

    def _find(self, conn: Connection, event_id: str) -> ScoreEvent | None:
        row = conn.execute(
            select(score_events).where(score_events.c.event_id == event_id)
        ).first()
        return _row_to_event(row) if row is not None else None

    def _find_committed(self, event_id: str) -> ScoreEvent | None:
        try:
            with self._engine.connect() as conn:
                return self._find(conn, event_id)
        except SQLAlchemyError as exc:
            raise EventStoreUnavailableError(f"Event store read failed: {exc}") from exc

    @staticmethod
    def _check_same(existing: ScoreEvent, event: ScoreEvent) -> None:
        if existing.model_dump() != event.model_dump():
            raise ValidationError(
                code="EVENT_ID_CONFLICT",
                message=f"Event id {event.event_id} already used by another event",
                details={"event_id": event.event_id},
            )
