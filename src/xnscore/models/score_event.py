"""Score event model.

A ScoreEvent is an immutable record of something that affects a member's
XnScore. Events are never edited or deleted; corrections are appended as
compensating events (e.g. DEFAULT_RESOLVED, DEPOSIT_RELEASED, VOUCH_REVOKED).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ScoreEventKind(StrEnum):
    """Closed set of score-relevant event kinds."""

    ON_TIME_PAYMENT = "ON_TIME_PAYMENT"
    LATE_PAYMENT = "LATE_PAYMENT"
    MISSED_PAYMENT = "MISSED_PAYMENT"
    CIRCLE_JOINED = "CIRCLE_JOINED"
    CIRCLE_COMPLETED = "CIRCLE_COMPLETED"
    CIRCLE_DEFAULTED = "CIRCLE_DEFAULTED"
    CIRCLE_ABANDONED = "CIRCLE_ABANDONED"
    DEFAULT_RESOLVED = "DEFAULT_RESOLVED"
    DEPOSIT_LOCKED = "DEPOSIT_LOCKED"
    DEPOSIT_RELEASED = "DEPOSIT_RELEASED"
    VOUCH_RECEIVED = "VOUCH_RECEIVED"
    VOUCH_REVOKED = "VOUCH_REVOKED"
    ENDORSEMENT_RECEIVED = "ENDORSEMENT_RECEIVED"
    VOUCHEE_DEFAULTED = "VOUCHEE_DEFAULTED"
    KYC_VERIFIED = "KYC_VERIFIED"
    PROFILE_COMPLETED = "PROFILE_COMPLETED"


PAYMENT_KINDS: frozenset[ScoreEventKind] = frozenset(
    {
        ScoreEventKind.ON_TIME_PAYMENT,
        ScoreEventKind.LATE_PAYMENT,
        ScoreEventKind.MISSED_PAYMENT,
    }
)

CIRCLE_LIFECYCLE_KINDS: frozenset[ScoreEventKind] = frozenset(
    {
        ScoreEventKind.CIRCLE_JOINED,
        ScoreEventKind.CIRCLE_COMPLETED,
        ScoreEventKind.CIRCLE_DEFAULTED,
        ScoreEventKind.CIRCLE_ABANDONED,
    }
)

CIRCLE_ENDING_KINDS: frozenset[ScoreEventKind] = frozenset(
    {
        ScoreEventKind.CIRCLE_COMPLETED,
        ScoreEventKind.CIRCLE_DEFAULTED,
        ScoreEventKind.CIRCLE_ABANDONED,
    }
)

# Written only by the vouch and endorsement ledgers, never by integration callers.
LEDGER_OWNED_KINDS: frozenset[ScoreEventKind] = frozenset(
    {
        ScoreEventKind.VOUCH_RECEIVED,
        ScoreEventKind.VOUCH_REVOKED,
        ScoreEventKind.ENDORSEMENT_RECEIVED,
        ScoreEventKind.VOUCHEE_DEFAULTED,
    }
)

_MAX_AMOUNT = 10_000_000.0

# Inclusive (low, high) magnitude bounds per kind. Payments and deposits carry
# an amount, vouch events carry points, milestones carry 1.0.
MAGNITUDE_RANGES: dict[ScoreEventKind, tuple[float, float]] = {
    ScoreEventKind.ON_TIME_PAYMENT: (0.0, _MAX_AMOUNT),
    ScoreEventKind.LATE_PAYMENT: (0.0, _MAX_AMOUNT),
    ScoreEventKind.MISSED_PAYMENT: (0.0, _MAX_AMOUNT),
    ScoreEventKind.CIRCLE_JOINED: (0.0, 1.0),
    ScoreEventKind.CIRCLE_COMPLETED: (0.0, 1.0),
    ScoreEventKind.CIRCLE_DEFAULTED: (0.0, 1.0),
    ScoreEventKind.CIRCLE_ABANDONED: (0.0, 1.0),
    ScoreEventKind.DEFAULT_RESOLVED: (0.0, 1.0),
    ScoreEventKind.DEPOSIT_LOCKED: (0.01, _MAX_AMOUNT),
    ScoreEventKind.DEPOSIT_RELEASED: (0.01, _MAX_AMOUNT),
    ScoreEventKind.VOUCH_RECEIVED: (0.0, 100.0),
    ScoreEventKind.VOUCH_REVOKED: (0.0, 100.0),
    ScoreEventKind.ENDORSEMENT_RECEIVED: (0.0, 1.0),
    ScoreEventKind.VOUCHEE_DEFAULTED: (0.0, 1.0),
    ScoreEventKind.KYC_VERIFIED: (0.0, 1.0),
    ScoreEventKind.PROFILE_COMPLETED: (0.0, 1.0),
}


class ScoreEvent(BaseModel):
    """Immutable score-relevant event for one member."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    member_id: str = Field(..., min_length=1)
    kind: ScoreEventKind
    timestamp: datetime
    magnitude: float = 1.0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def circle_id(self) -> str | None:
        """Circle referenced by the event, if any."""
        value = self.metadata.get("circle_id")
        return str(value) if value is not None else None
