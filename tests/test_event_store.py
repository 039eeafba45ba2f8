"""Tests for the in-memory event store and write-time validation.

Tests cover:
1. Validation codes (naive/future timestamp, magnitude range, circle reference)
2. Timestamp ordering regardless of arrival order
3. Idempotent re-append and event id conflicts
4. History views: filters, restartability, version pinning
5. Invalidation publishing and subscriber isolation
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta

import pytest

from tests.fixtures.synthetic import NOW, make_event
from xnscore.clock import FixedClock
from xnscore.errors import ValidationError
from xnscore.events import EventStore, InMemoryEventStore, InvalidationChannel
from xnscore.models.score_event import ScoreEventKind


@pytest.fixture
def store() -> InMemoryEventStore:
    return InMemoryEventStore(clock=FixedClock(NOW))


class TestValidation:
    """Malformed events are rejected and never stored."""

    def test_naive_timestamp_rejected(self, store: InMemoryEventStore) -> None:
        event = make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, datetime(2025, 6, 1))

        with pytest.raises(ValidationError) as exc_info:
            store.append(event)

        assert exc_info.value.code == "NAIVE_TIMESTAMP"
        assert store.version("m-1") == 0

    def test_future_timestamp_rejected(self, store: InMemoryEventStore) -> None:
        event = make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, NOW + timedelta(seconds=1))

        with pytest.raises(ValidationError) as exc_info:
            store.append(event)

        assert exc_info.value.code == "FUTURE_TIMESTAMP"

    def test_clock_skew_tolerance_accepts_slightly_future_event(self) -> None:
        store = InMemoryEventStore(clock=FixedClock(NOW), max_clock_skew_seconds=5)
        event = make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, NOW + timedelta(seconds=5))

        store.append(event)

        assert store.version("m-1") == 1

    @pytest.mark.parametrize(
        ("kind", "magnitude"),
        [
            (ScoreEventKind.DEPOSIT_LOCKED, 0.0),
            (ScoreEventKind.VOUCH_RECEIVED, 100.5),
            (ScoreEventKind.ON_TIME_PAYMENT, -1.0),
            (ScoreEventKind.ON_TIME_PAYMENT, float("nan")),
            (ScoreEventKind.KYC_VERIFIED, 2.0),
        ],
    )
    def test_magnitude_out_of_range_rejected(
        self, store: InMemoryEventStore, kind: ScoreEventKind, magnitude: float
    ) -> None:
        event = make_event("m-1", kind, NOW - timedelta(days=1), magnitude=magnitude)

        with pytest.raises(ValidationError) as exc_info:
            store.append(event)

        assert exc_info.value.code == "MAGNITUDE_OUT_OF_RANGE"
        assert store.version("m-1") == 0

    def test_circle_lifecycle_event_requires_circle_id(self, store: InMemoryEventStore) -> None:
        event = make_event("m-1", ScoreEventKind.CIRCLE_JOINED, NOW - timedelta(days=1))

        with pytest.raises(ValidationError) as exc_info:
            store.append(event)

        assert exc_info.value.code == "MISSING_CIRCLE_ID"


class TestOrdering:
    """History is timestamp ordered regardless of arrival order."""

    def test_out_of_order_appends_are_read_in_timestamp_order(
        self, store: InMemoryEventStore
    ) -> None:
        late = make_event("m-1", ScoreEventKind.LATE_PAYMENT, NOW - timedelta(days=1))
        early = make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, NOW - timedelta(days=5))
        middle = make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, NOW - timedelta(days=3))

        for event in (late, early, middle):
            store.append(event)

        ids = [e.event_id for e in store.history("m-1")]
        assert ids == [early.event_id, middle.event_id, late.event_id]

    def test_equal_timestamps_keep_append_order(self, store: InMemoryEventStore) -> None:
        at = NOW - timedelta(days=2)
        first = make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, at)
        second = make_event("m-1", ScoreEventKind.LATE_PAYMENT, at)

        store.append(first)
        store.append(second)

        assert [e.event_id for e in store.history("m-1")] == [first.event_id, second.event_id]

    def test_concurrent_appends_for_one_member_are_all_stored_in_order(
        self, store: InMemoryEventStore
    ) -> None:
        barrier = threading.Barrier(5)

        def worker(offset: int) -> None:
            barrier.wait()
            for i in range(10):
                store.append(
                    make_event(
                        "m-1",
                        ScoreEventKind.ON_TIME_PAYMENT,
                        NOW - timedelta(hours=offset + 5 * i),
                    )
                )

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        timestamps = [e.timestamp for e in store.history("m-1")]
        assert store.version("m-1") == 50
        assert timestamps == sorted(timestamps)


class TestIdempotency:
    """Same event id: identical content is a no-op, different content conflicts."""

    def test_identical_reappend_is_noop(self, store: InMemoryEventStore) -> None:
        event = make_event(
            "m-1", ScoreEventKind.ON_TIME_PAYMENT, NOW - timedelta(days=1), event_id="evt-1"
        )

        assert store.append(event) == "evt-1"
        assert store.append(event) == "evt-1"

        assert store.version("m-1") == 1
        assert len(list(store.history("m-1"))) == 1

    def test_conflicting_reuse_of_event_id_rejected(self, store: InMemoryEventStore) -> None:
        at = NOW - timedelta(days=1)
        store.append(make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, at, event_id="evt-1"))

        with pytest.raises(ValidationError) as exc_info:
            store.append(
                make_event("m-1", ScoreEventKind.LATE_PAYMENT, at, event_id="evt-1")
            )

        assert exc_info.value.code == "EVENT_ID_CONFLICT"
        assert store.version("m-1") == 1


class TestHistory:
    """History views are filtered, restartable and pinned to their version."""

    def test_kind_and_since_filters(self, store: InMemoryEventStore) -> None:
        store.append(make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, NOW - timedelta(days=10)))
        store.append(make_event("m-1", ScoreEventKind.LATE_PAYMENT, NOW - timedelta(days=5)))
        store.append(make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, NOW - timedelta(days=1)))

        on_time = list(store.history("m-1", kind=ScoreEventKind.ON_TIME_PAYMENT))
        recent = list(store.history("m-1", since=NOW - timedelta(days=6)))

        assert len(on_time) == 2
        assert [e.kind for e in recent] == [
            ScoreEventKind.LATE_PAYMENT,
            ScoreEventKind.ON_TIME_PAYMENT,
        ]

    def test_history_is_restartable_and_pinned(self, store: InMemoryEventStore) -> None:
        store.append(make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, NOW - timedelta(days=2)))
        history = store.history("m-1")

        store.append(make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, NOW - timedelta(days=1)))

        assert history.version == 1
        assert len(list(history)) == 1
        assert len(list(history)) == 1
        assert len(list(store.history("m-1"))) == 2

    def test_unknown_member_has_empty_history(self, store: InMemoryEventStore) -> None:
        history = store.history("nobody")

        assert list(history) == []
        assert history.version == 0

    def test_satisfies_event_store_protocol(self, store: InMemoryEventStore) -> None:
        assert isinstance(store, EventStore)


class TestInvalidation:
    """Every successful append publishes the member id."""

    def test_append_publishes_member_id_once(self) -> None:
        channel = InvalidationChannel()
        published: list[str] = []
        channel.subscribe(published.append)
        store = InMemoryEventStore(channel=channel, clock=FixedClock(NOW))
        event = make_event("m-1", ScoreEventKind.KYC_VERIFIED, NOW - timedelta(days=1))

        store.append(event)
        store.append(event)

        assert published == ["m-1"]

    def test_failing_subscriber_does_not_break_append(self, store: InMemoryEventStore) -> None:
        def broken(member_id: str) -> None:
            raise RuntimeError("subscriber down")

        received: list[str] = []
        store.channel.subscribe(broken)
        store.channel.subscribe(received.append)

        store.append(make_event("m-1", ScoreEventKind.KYC_VERIFIED, NOW - timedelta(days=1)))

        assert store.version("m-1") == 1
        assert received == ["m-1"]

    def test_unsubscribed_callback_not_called(self, store: InMemoryEventStore) -> None:
        received: list[str] = []
        store.channel.subscribe(received.append)
        store.channel.unsubscribe(received.append)

        store.append(make_event("m-1", ScoreEventKind.KYC_VERIFIED, NOW - timedelta(days=1)))

        assert received == []
