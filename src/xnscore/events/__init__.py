"""Append-only score event log and invalidation channel."""

from xnscore.events.channel import InvalidationCallback, InvalidationChannel
from xnscore.events.sql_store import SqlEventStore
from xnscore.events.store import EventHistory, EventStore, InMemoryEventStore
from xnscore.events.validation import validate_event

__all__ = [
    "EventHistory",
    "EventStore",
    "InMemoryEventStore",
    "InvalidationCallback",
    "InvalidationChannel",
    "SqlEventStore",
    "validate_event",
]
