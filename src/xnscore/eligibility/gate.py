"""Eligibility gate.

Answers "may this member do X?" by combining the member's tier and score,
open defaults, and the circle's policy. Pure read; never mutates state.

Every decision carries the full list of failing reasons. Any failure to
establish the member's standing is reported as SCORE_UNAVAILABLE and makes
the decision ineligible: the gate fails closed, never open.
"""

from __future__ import annotations

import logging
import math
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from xnscore.circles.directory import Circle, CircleDirectory
from xnscore.clock import Clock, utc_now
from xnscore.errors import StaleDataError, StorageUnavailableError
from xnscore.models.member import Member, MemberRegistry
from xnscore.models.snapshot import ScoreSnapshot, Tier
from xnscore.scoring.aggregator import ScoreAggregator

logger = logging.getLogger(__name__)

# (minimum contribution amount, required account age in days), largest first.
ACCOUNT_AGE_REQUIREMENTS: tuple[tuple[float, int], ...] = (
    (1000.0, 180),
    (500.0, 90),
)

# (minimum contribution amount, required XnScore), largest first. Below the
# smallest bracket the base minimum applies.
AMOUNT_SCORE_REQUIREMENTS: tuple[tuple[float, float], ...] = (
    (1000.0, 75.0),
    (500.0, 60.0),
    (200.0, 45.0),
)
BASE_MIN_SCORE = 25.0


class Reason(StrEnum):
    MEMBER_NOT_FOUND = "MEMBER_NOT_FOUND"
    MEMBER_INACTIVE = "MEMBER_INACTIVE"
    CIRCLE_NOT_FOUND = "CIRCLE_NOT_FOUND"
    TIER_BELOW_CIRCLE_MINIMUM = "TIER_BELOW_CIRCLE_MINIMUM"
    CIRCLE_FULL = "CIRCLE_FULL"
    CRITICAL_TIER = "CRITICAL_TIER"
    UNRESOLVED_DEFAULT = "UNRESOLVED_DEFAULT"
    ALREADY_MEMBER = "ALREADY_MEMBER"
    ACCOUNT_TOO_NEW = "ACCOUNT_TOO_NEW"
    SCORE_BELOW_AMOUNT_MINIMUM = "SCORE_BELOW_AMOUNT_MINIMUM"
    SCORE_UNAVAILABLE = "SCORE_UNAVAILABLE"
    NOT_CIRCLE_MEMBER = "NOT_CIRCLE_MEMBER"
    INVALID_SLOT = "INVALID_SLOT"
    SLOT_NOT_ALLOWED_FOR_TIER = "SLOT_NOT_ALLOWED_FOR_TIER"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    ADVANCE_NOT_AVAILABLE = "ADVANCE_NOT_AVAILABLE"
    ADVANCE_LIMIT_EXCEEDED = "ADVANCE_LIMIT_EXCEEDED"


class EligibilityDecision(BaseModel):
    """Outcome of an eligibility query."""

    model_config = ConfigDict(frozen=True)

    eligible: bool
    reasons: list[Reason] = Field(default_factory=list)
    tier: Tier | None = None
    score: float | None = None

    @classmethod
    def from_reasons(
        cls, reasons: list[Reason], snapshot: ScoreSnapshot | None
    ) -> EligibilityDecision:
        return cls(
            eligible=not reasons,
            reasons=reasons,
            tier=snapshot.tier if snapshot is not None else None,
            score=snapshot.score if snapshot is not None else None,
        )


def required_account_age_days(contribution_amount: float) -> int:
    """Minimum account age for a circle with the given contribution."""
    for min_amount, days in ACCOUNT_AGE_REQUIREMENTS:
        if contribution_amount >= min_amount:
            return days
    return 0


def min_score_for_amount(contribution_amount: float) -> float:
    """Minimum XnScore for a circle with the given contribution."""
    for min_amount, score in AMOUNT_SCORE_REQUIREMENTS:
        if contribution_amount >= min_amount:
            return score
    return BASE_MIN_SCORE


class EligibilityGate:
    """Read-only eligibility checks over scores and circles."""

    def __init__(
        self,
        aggregator: ScoreAggregator,
        members: MemberRegistry,
        circles: CircleDirectory,
        clock: Clock = utc_now,
    ) -> None:
        self._aggregator = aggregator
        self._members = members
        self._circles = circles
        self._resolver = aggregator.resolver
        self._clock = clock

    def can_join(self, member_id: str, circle_id: str) -> EligibilityDecision:
        """Whether the member may join the circle, with every failing reason."""
        reasons: list[Reason] = []
        member = self._member(member_id, reasons)
        circle = self._circles.find(circle_id)
        if circle is None:
            reasons.append(Reason.CIRCLE_NOT_FOUND)
        snapshot = self._snapshot(member, reasons)

        if snapshot is not None:
            tier = snapshot.tier
            if not self._resolver.benefits(tier).can_join_circles:
                reasons.append(Reason.CRITICAL_TIER)
            if snapshot.has_unresolved_default:
                reasons.append(Reason.UNRESOLVED_DEFAULT)
            if circle is not None and self._resolver.score_floor(tier) < circle.min_xn_score:
                reasons.append(Reason.TIER_BELOW_CIRCLE_MINIMUM)
            if circle is not None:
                # The base minimum is already enforced by the critical-tier check.
                required = min_score_for_amount(circle.contribution_amount)
                if required > BASE_MIN_SCORE and snapshot.score < required:
                    reasons.append(Reason.SCORE_BELOW_AMOUNT_MINIMUM)

        if member is not None and circle is not None:
            required_days = required_account_age_days(circle.contribution_amount)
            if member.whole_account_age_days(self._clock()) < required_days:
                reasons.append(Reason.ACCOUNT_TOO_NEW)

        if circle is not None:
            if circle.is_member(member_id):
                reasons.append(Reason.ALREADY_MEMBER)
            elif circle.is_full:
                reasons.append(Reason.CIRCLE_FULL)

        decision = EligibilityDecision.from_reasons(reasons, snapshot)
        self._log(decision, "can_join", member_id, circle_id=circle_id)
        return decision

    def can_take_payout_slot(
        self, member_id: str, circle_id: str, slot: int
    ) -> EligibilityDecision:
        """Whether the member's tier allows the 1-based payout ``slot`` in the circle."""
        reasons: list[Reason] = []
        member = self._member(member_id, reasons)
        circle: Circle | None = self._circles.find(circle_id)
        if circle is None:
            reasons.append(Reason.CIRCLE_NOT_FOUND)
        elif not circle.is_member(member_id):
            reasons.append(Reason.NOT_CIRCLE_MEMBER)
        if circle is not None and not 1 <= slot <= circle.max_members:
            reasons.append(Reason.INVALID_SLOT)
        snapshot = self._snapshot(member, reasons)

        if snapshot is not None and circle is not None and 1 <= slot <= circle.max_members:
            earliest = self._resolver.benefits(snapshot.tier).earliest_slot(circle.max_members)
            if earliest is None or slot < earliest:
                reasons.append(Reason.SLOT_NOT_ALLOWED_FOR_TIER)

        decision = EligibilityDecision.from_reasons(reasons, snapshot)
        self._log(decision, "can_take_payout_slot", member_id, circle_id=circle_id, slot=slot)
        return decision

    def can_request_advance(self, member_id: str, amount: float) -> EligibilityDecision:
        """Whether the member may request an advance of ``amount``."""
        reasons: list[Reason] = []
        if not math.isfinite(amount) or amount <= 0:
            reasons.append(Reason.INVALID_AMOUNT)
        member = self._member(member_id, reasons)
        snapshot = self._snapshot(member, reasons)

        if snapshot is not None:
            benefits = self._resolver.benefits(snapshot.tier)
            if benefits.advance_limit <= 0 or benefits.advance_apr_pct is None:
                reasons.append(Reason.ADVANCE_NOT_AVAILABLE)
            elif amount > benefits.advance_limit:
                reasons.append(Reason.ADVANCE_LIMIT_EXCEEDED)
            if snapshot.has_unresolved_default:
                reasons.append(Reason.UNRESOLVED_DEFAULT)

        decision = EligibilityDecision.from_reasons(reasons, snapshot)
        self._log(decision, "can_request_advance", member_id, amount=amount)
        return decision

    def _member(self, member_id: str, reasons: list[Reason]) -> Member | None:
        member = self._members.find(member_id)
        if member is None:
            reasons.append(Reason.MEMBER_NOT_FOUND)
        elif not member.active:
            reasons.append(Reason.MEMBER_INACTIVE)
        return member

    def _snapshot(self, member: Member | None, reasons: list[Reason]) -> ScoreSnapshot | None:
        """Current snapshot, or None with SCORE_UNAVAILABLE when standing is unknown."""
        if member is None:
            return None
        try:
            snapshot = self._aggregator.compute_score(member.member_id)
        except (StaleDataError, StorageUnavailableError) as exc:
            logger.warning(
                "Eligibility failing closed: %s",
                exc,
                extra={"member_id": member.member_id},
            )
            reasons.append(Reason.SCORE_UNAVAILABLE)
            return None
        if snapshot.stale:
            reasons.append(Reason.SCORE_UNAVAILABLE)
        return snapshot

    @staticmethod
    def _log(decision: EligibilityDecision, check: str, member_id: str, **context: object) -> None:
        logger.info(
            "Eligibility decision",
            extra={
                "check": check,
                "member_id": member_id,
                "eligible": decision.eligible,
                "reasons": [r.value for r in decision.reasons],
                **context,
            },
        )
