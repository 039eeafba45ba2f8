"""XnScore domain models."""

from xnscore.models.member import InMemoryMemberRegistry, Member, MemberRegistry
from xnscore.models.score_event import (
    CIRCLE_ENDING_KINDS,
    CIRCLE_LIFECYCLE_KINDS,
    LEDGER_OWNED_KINDS,
    MAGNITUDE_RANGES,
    PAYMENT_KINDS,
    ScoreEvent,
    ScoreEventKind,
)
from xnscore.models.snapshot import (
    ALL_FACTORS,
    FactorScore,
    FactorStatus,
    ScoreFactor,
    ScoreSnapshot,
    Tier,
)
from xnscore.models.vouch import Endorsement, Vouch, VouchStatus

__all__ = [
    "ALL_FACTORS",
    "CIRCLE_ENDING_KINDS",
    "CIRCLE_LIFECYCLE_KINDS",
    "Endorsement",
    "FactorScore",
    "FactorStatus",
    "InMemoryMemberRegistry",
    "LEDGER_OWNED_KINDS",
    "MAGNITUDE_RANGES",
    "Member",
    "MemberRegistry",
    "PAYMENT_KINDS",
    "ScoreEvent",
    "ScoreEventKind",
    "ScoreFactor",
    "ScoreSnapshot",
    "Tier",
    "Vouch",
    "VouchStatus",
]
