"""Voucher reliability standing.

Reliability by recorded vouchee defaults:

    0-1  good
    2    warning
    3-4  poor
    5+   restricted (cannot issue new vouches)

A degraded status recovers to good once no vouchee default has been recorded
for its clean period: 180 days from warning, 270 from poor, 360 from
restricted.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from xnscore.models.score_event import ScoreEvent
from xnscore.scoring.factors import distinct_vouchee_defaults


class ReliabilityStatus(StrEnum):
    GOOD = "good"
    WARNING = "warning"
    POOR = "poor"
    RESTRICTED = "restricted"


# (minimum vouchee defaults, status), strictest first.
RELIABILITY_THRESHOLDS: tuple[tuple[int, ReliabilityStatus], ...] = (
    (5, ReliabilityStatus.RESTRICTED),
    (3, ReliabilityStatus.POOR),
    (2, ReliabilityStatus.WARNING),
)

RECOVERY_CLEAN_DAYS: dict[ReliabilityStatus, int] = {
    ReliabilityStatus.WARNING: 180,
    ReliabilityStatus.POOR: 270,
    ReliabilityStatus.RESTRICTED: 360,
}


def reliability_status(vouchee_defaults: int) -> ReliabilityStatus:
    for minimum, status in RELIABILITY_THRESHOLDS:
        if vouchee_defaults >= minimum:
            return status
    return ReliabilityStatus.GOOD


class VoucherStanding(BaseModel):
    """An Elder's vouching record."""

    model_config = ConfigDict(frozen=True)

    member_id: str
    vouchee_defaults: int
    reliability_status: ReliabilityStatus
    can_vouch: bool
    last_vouchee_default_at: datetime | None = None
    restricted_until: datetime | None = None


def voucher_standing(
    member_id: str, events: Sequence[ScoreEvent], now: datetime
) -> VoucherStanding:
    """Derive an Elder's standing from the VOUCHEE_DEFAULTED events on their log."""
    impacts = distinct_vouchee_defaults(events)
    count = len(impacts)
    status = reliability_status(count)
    last = impacts[-1].timestamp if impacts else None
    recovered_at = None
    if status != ReliabilityStatus.GOOD and last is not None:
        recovered_at = last + timedelta(days=RECOVERY_CLEAN_DAYS[status])
        if now >= recovered_at:
            status = ReliabilityStatus.GOOD
    restricted = status == ReliabilityStatus.RESTRICTED
    return VoucherStanding(
        member_id=member_id,
        vouchee_defaults=count,
        reliability_status=status,
        can_vouch=not restricted,
        last_vouchee_default_at=last,
        restricted_until=recovered_at if restricted else None,
    )
