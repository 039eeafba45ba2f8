"""Tests for the SQLAlchemy-backed event store (SQLite file databases)."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from tests.fixtures.synthetic import NOW, make_event
from xnscore.clock import FixedClock
from xnscore.config import EngineConfig
from xnscore.errors import EventStoreUnavailableError, ValidationError
from xnscore.events.sql_store import SqlEventStore, score_events
from xnscore.events.store import EventStore
from xnscore.models.score_event import ScoreEventKind
from xnscore.service import XnScoreService


def _make_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'events.db'}"


@pytest.fixture
def sql_store(tmp_path: Path) -> SqlEventStore:
    return SqlEventStore.from_url(_make_url(tmp_path), clock=FixedClock(NOW))


class TestSqlAppendAndRead:
    def test_round_trips_event_fields(self, sql_store: SqlEventStore) -> None:
        event = make_event(
            "m-1",
            ScoreEventKind.CIRCLE_JOINED,
            NOW - timedelta(days=3),
            circle_id="c-1",
            slot=4,
        )

        sql_store.append(event)
        [stored] = list(sql_store.history("m-1"))

        assert stored.model_dump() == event.model_dump()
        assert stored.circle_id == "c-1"
        assert stored.timestamp.utcoffset() == timedelta(0)

    def test_history_is_timestamp_ordered(self, sql_store: SqlEventStore) -> None:
        late = make_event("m-1", ScoreEventKind.LATE_PAYMENT, NOW - timedelta(days=1))
        early = make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, NOW - timedelta(days=9))

        sql_store.append(late)
        sql_store.append(early)

        assert [e.event_id for e in sql_store.history("m-1")] == [early.event_id, late.event_id]

    def test_filters_by_kind_and_since(self, sql_store: SqlEventStore) -> None:
        sql_store.append(make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, NOW - timedelta(days=9)))
        sql_store.append(make_event("m-1", ScoreEventKind.LATE_PAYMENT, NOW - timedelta(days=4)))
        sql_store.append(make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, NOW - timedelta(days=2)))

        on_time = list(sql_store.history("m-1", kind=ScoreEventKind.ON_TIME_PAYMENT))
        recent = list(sql_store.history("m-1", since=NOW - timedelta(days=5)))

        assert len(on_time) == 2
        assert len(recent) == 2

    def test_history_view_is_pinned(self, sql_store: SqlEventStore) -> None:
        sql_store.append(make_event("m-1", ScoreEventKind.KYC_VERIFIED, NOW - timedelta(days=2)))
        history = sql_store.history("m-1")

        sql_store.append(
            make_event("m-1", ScoreEventKind.PROFILE_COMPLETED, NOW - timedelta(days=3))
        )

        assert history.version == 1
        assert [e.kind for e in history] == [ScoreEventKind.KYC_VERIFIED]
        assert sql_store.version("m-1") == 2

    def test_events_survive_a_new_store_instance(self, tmp_path: Path) -> None:
        first = SqlEventStore.from_url(_make_url(tmp_path), clock=FixedClock(NOW))
        first.append(make_event("m-1", ScoreEventKind.KYC_VERIFIED, NOW - timedelta(days=1)))

        second = SqlEventStore.from_url(_make_url(tmp_path), clock=FixedClock(NOW))

        assert second.version("m-1") == 1

    def test_satisfies_event_store_protocol(self, sql_store: SqlEventStore) -> None:
        assert isinstance(sql_store, EventStore)


class TestSqlIdempotencyAndValidation:
    def test_identical_reappend_is_noop(self, sql_store: SqlEventStore) -> None:
        published: list[str] = []
        sql_store.channel.subscribe(published.append)
        event = make_event(
            "m-1", ScoreEventKind.ON_TIME_PAYMENT, NOW - timedelta(days=1), event_id="evt-1"
        )

        sql_store.append(event)
        sql_store.append(event)

        assert sql_store.version("m-1") == 1
        assert published == ["m-1"]

    def test_conflicting_event_id_rejected(self, sql_store: SqlEventStore) -> None:
        at = NOW - timedelta(days=1)
        sql_store.append(make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, at, event_id="evt-1"))

        with pytest.raises(ValidationError) as exc_info:
            sql_store.append(
                make_event(
                    "m-1", ScoreEventKind.ON_TIME_PAYMENT, at, magnitude=9.0, event_id="evt-1"
                )
            )

        assert exc_info.value.code == "EVENT_ID_CONFLICT"

    def test_invalid_event_never_reaches_database(self, sql_store: SqlEventStore) -> None:
        with pytest.raises(ValidationError):
            sql_store.append(
                make_event("m-1", ScoreEventKind.ON_TIME_PAYMENT, NOW + timedelta(days=1))
            )

        assert sql_store.version("m-1") == 0


class TestSqlUnavailable:
    def test_read_failure_raises_store_unavailable(self, sql_store: SqlEventStore) -> None:
        score_events.drop(sql_store._engine)

        with pytest.raises(EventStoreUnavailableError):
            sql_store.version("m-1")
        with pytest.raises(EventStoreUnavailableError):
            sql_store.history("m-1")

    def test_write_failure_raises_store_unavailable(self, sql_store: SqlEventStore) -> None:
        score_events.drop(sql_store._engine)

        with pytest.raises(EventStoreUnavailableError):
            sql_store.append(
                make_event("m-1", ScoreEventKind.KYC_VERIFIED, NOW - timedelta(days=1))
            )


class TestServiceFromConfig:
    def test_database_url_selects_sql_store(self, tmp_path: Path) -> None:
        config = EngineConfig(database_url=_make_url(tmp_path))

        service = XnScoreService.from_config(config, clock=FixedClock(NOW))

        assert isinstance(service.store, SqlEventStore)

    def test_without_database_url_uses_in_memory_store(self) -> None:
        service = XnScoreService.from_config(EngineConfig(), clock=FixedClock(NOW))

        assert not isinstance(service.store, SqlEventStore)
