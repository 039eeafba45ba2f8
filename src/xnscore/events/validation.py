"""Write-time validation for score events.

Malformed events are rejected before they reach storage; nothing invalid is
ever persisted.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from xnscore.errors import ValidationError
from xnscore.models.score_event import (
    CIRCLE_LIFECYCLE_KINDS,
    MAGNITUDE_RANGES,
    ScoreEvent,
    ScoreEventKind,
)


def validate_event(event: ScoreEvent, now: datetime, max_clock_skew_seconds: int = 0) -> None:
    """Validate a score event against write-time rules.

    Args:
        event: Event to validate.
        now: Current time (tz-aware).
        max_clock_skew_seconds: Tolerated lead of the event timestamp over ``now``.

    Raises:
        ValidationError: On naive or future timestamp, out-of-range magnitude,
            or missing circle reference.
    """
    if event.timestamp.tzinfo is None or event.timestamp.utcoffset() is None:
        raise ValidationError(
            code="NAIVE_TIMESTAMP",
            message="Event timestamp must be timezone-aware",
            details={"event_id": event.event_id},
        )

    if event.timestamp > now + timedelta(seconds=max_clock_skew_seconds):
        raise ValidationError(
            code="FUTURE_TIMESTAMP",
            message="Event timestamp is in the future",
            details={"event_id": event.event_id, "timestamp": event.timestamp.isoformat()},
        )

    low, high = MAGNITUDE_RANGES[ScoreEventKind(event.kind)]
    if not math.isfinite(event.magnitude) or not low <= event.magnitude <= high:
        raise ValidationError(
            code="MAGNITUDE_OUT_OF_RANGE",
            message=(
                f"Magnitude {event.magnitude} outside allowed range [{low}, {high}] "
                f"for {event.kind.value}"
            ),
            details={"event_id": event.event_id, "kind": event.kind.value},
        )

    if event.kind in CIRCLE_LIFECYCLE_KINDS and not event.circle_id:
        raise ValidationError(
            code="MISSING_CIRCLE_ID",
            message=f"{event.kind.value} events require metadata.circle_id",
            details={"event_id": event.event_id},
        )
