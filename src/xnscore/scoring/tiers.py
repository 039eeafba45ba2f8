"""Tier resolution and tier-gated benefits.

Maps an aggregated score onto one of six tiers using the policy thresholds.
Transitions are purely score-driven unless the policy sets a hysteresis
margin, in which case a previous tier is kept until the score clears the
boundary by that margin in either direction.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from xnscore.models.snapshot import Tier
from xnscore.scoring.policy import ScoringPolicy


class TierBenefits(BaseModel):
    """Fixed benefits record for a tier.

    Payout slots are 1-based positions in the rotation. ``min_payout_slot`` is
    the earliest slot the tier may take; ``last_slots_only`` restricts the tier
    to the final N slots of the circle instead. A tier with neither may not
    hold a slot at all.
    """

    model_config = ConfigDict(frozen=True)

    tier: Tier
    can_join_circles: bool
    min_payout_slot: int | None = Field(default=None, ge=1)
    last_slots_only: int | None = Field(default=None, ge=1)
    early_withdrawal_fee_pct: float | None = Field(default=None, ge=0.0)
    late_bonus_pct: float = Field(default=0.0, ge=0.0)
    advance_limit: float = Field(default=0.0, ge=0.0)
    advance_apr_pct: float | None = Field(default=None, ge=0.0)
    description: str = ""

    def earliest_slot(self, circle_size: int) -> int | None:
        """Earliest payout slot this tier may take in a circle of ``circle_size``."""
        if self.min_payout_slot is not None:
            return min(self.min_payout_slot, circle_size)
        if self.last_slots_only is not None:
            return max(circle_size - self.last_slots_only + 1, 1)
        return None


TIER_BENEFITS: dict[Tier, TierBenefits] = {
    Tier.ELITE: TierBenefits(
        tier=Tier.ELITE,
        can_join_circles=True,
        min_payout_slot=1,
        early_withdrawal_fee_pct=0.5,
        late_bonus_pct=3.0,
        advance_limit=5000.0,
        advance_apr_pct=6.0,
        description="Lowest fees, highest limits, maximum trust",
    ),
    Tier.EXCELLENT: TierBenefits(
        tier=Tier.EXCELLENT,
        can_join_circles=True,
        min_payout_slot=1,
        early_withdrawal_fee_pct=1.0,
        late_bonus_pct=2.5,
        advance_limit=3000.0,
        advance_apr_pct=8.0,
        description="Access to premium circles",
    ),
    Tier.GOOD: TierBenefits(
        tier=Tier.GOOD,
        can_join_circles=True,
        min_payout_slot=4,
        early_withdrawal_fee_pct=2.0,
        late_bonus_pct=2.0,
        advance_limit=1500.0,
        advance_apr_pct=10.0,
        description="Standard access to most circles",
    ),
    Tier.FAIR: TierBenefits(
        tier=Tier.FAIR,
        can_join_circles=True,
        min_payout_slot=7,
        early_withdrawal_fee_pct=3.0,
        late_bonus_pct=1.0,
        advance_limit=500.0,
        advance_apr_pct=12.0,
        description="Limited circle options",
    ),
    Tier.POOR: TierBenefits(
        tier=Tier.POOR,
        can_join_circles=True,
        last_slots_only=3,
        description="Restricted, may require a voucher",
    ),
    Tier.CRITICAL: TierBenefits(
        tier=Tier.CRITICAL,
        can_join_circles=False,
        description="Cannot join new circles",
    ),
}


class TierProgress(BaseModel):
    """Distance from the current tier to the next one up."""

    model_config = ConfigDict(frozen=True)

    current_tier: Tier
    next_tier: Tier | None
    points_needed: float
    progress_pct: int


class TierResolver:
    """Stateless score-to-tier mapping with optional hysteresis."""

    def __init__(
        self,
        policy: ScoringPolicy,
        benefits: dict[Tier, TierBenefits] | None = None,
    ) -> None:
        self._policy = policy
        self._benefits = benefits or TIER_BENEFITS

    def score_floor(self, tier: Tier) -> float:
        """Minimum score of ``tier``."""
        return self._policy.tier_thresholds[tier]

    def resolve(self, score: float, previous_tier: Tier | None = None) -> Tier:
        """Resolve the tier for ``score``.

        Args:
            score: Aggregated score 0-100.
            previous_tier: Tier from the previous snapshot. Only consulted when
                the policy has a hysteresis margin.

        Returns:
            The resolved Tier.
        """
        plain = self._plain_tier(score)
        margin = self._policy.tier_hysteresis
        if previous_tier is None or margin <= 0.0 or plain == previous_tier:
            return plain

        if plain < previous_tier:
            # Promotion: every boundary crossed must be cleared by the margin.
            tier = previous_tier
            while tier > plain and score >= self.score_floor(Tier(tier - 1)) + margin:
                tier = Tier(tier - 1)
            return tier

        tier = previous_tier
        while tier < plain and score < self.score_floor(tier) - margin:
            tier = Tier(tier + 1)
        return tier

    def _plain_tier(self, score: float) -> Tier:
        for tier in sorted(Tier):
            if score >= self.score_floor(tier):
                return tier
        return Tier.CRITICAL

    def benefits(self, tier: Tier) -> TierBenefits:
        return self._benefits[tier]

    def progress_to_next_tier(self, score: float) -> TierProgress:
        """Points needed and percentage progress toward the next tier up."""
        current = self._plain_tier(score)
        if current == Tier.ELITE:
            return TierProgress(
                current_tier=current, next_tier=None, points_needed=0.0, progress_pct=100
            )
        next_tier = Tier(current - 1)
        floor = self.score_floor(current)
        target = self.score_floor(next_tier)
        progress = (score - floor) / (target - floor)
        return TierProgress(
            current_tier=current,
            next_tier=next_tier,
            points_needed=round(target - score, 2),
            progress_pct=max(0, min(100, round(progress * 100))),
        )
