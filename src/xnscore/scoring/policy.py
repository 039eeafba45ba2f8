"""Scoring policy: the tunable constants of the XnScore engine.

Factor maxima, tier thresholds, the account-age cap table, bonus and penalty
sizes, and Elder vouch limits all live here so they can be changed without
touching the calculators. All fields are immutable after construction and
validated fail-closed.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from xnscore.models.snapshot import ALL_FACTORS, ScoreFactor, Tier

_MAX_SUM_TOLERANCE = 1e-9

DEFAULT_FACTOR_MAX: dict[ScoreFactor, float] = {
    ScoreFactor.PAYMENT_HISTORY: 35.0,
    ScoreFactor.CIRCLE_COMPLETION: 25.0,
    ScoreFactor.TIME_RELIABILITY: 20.0,
    ScoreFactor.SECURITY_DEPOSIT: 10.0,
    ScoreFactor.DIVERSITY_SOCIAL: 7.0,
    ScoreFactor.ENGAGEMENT: 3.0,
}

# Minimum score for each tier; Critical is everything below Poor.
DEFAULT_TIER_THRESHOLDS: dict[Tier, float] = {
    Tier.ELITE: 88.0,
    Tier.EXCELLENT: 75.0,
    Tier.GOOD: 60.0,
    Tier.FAIR: 45.0,
    Tier.POOR: 25.0,
    Tier.CRITICAL: 0.0,
}

# (account age in days, exclusive upper bound) -> cap
DEFAULT_AGE_CAPS: tuple[tuple[int, float], ...] = (
    (180, 75.0),
    (365, 85.0),
    (547, 90.0),
)


class ElderVouchLimits(BaseModel):
    """Vouching capacity of an Elder at a given tier."""

    model_config = ConfigDict(frozen=True)

    max_concurrent_vouches: int = Field(..., ge=0)
    max_points_per_vouch: float = Field(..., ge=0.0)


DEFAULT_ELDER_LIMITS: dict[Tier, ElderVouchLimits] = {
    Tier.ELITE: ElderVouchLimits(max_concurrent_vouches=5, max_points_per_vouch=15.0),
    Tier.EXCELLENT: ElderVouchLimits(max_concurrent_vouches=3, max_points_per_vouch=10.0),
}


class ScoringPolicy(BaseModel):
    """Complete, validated scoring configuration."""

    model_config = ConfigDict(frozen=True)

    factor_max: dict[ScoreFactor, float] = Field(
        default_factory=lambda: dict(DEFAULT_FACTOR_MAX),
        description="Maximum points per factor (must cover all 6, sum to 100)",
    )
    tier_thresholds: dict[Tier, float] = Field(
        default_factory=lambda: dict(DEFAULT_TIER_THRESHOLDS),
        description="Score floor per tier, strictly decreasing from Elite to Critical",
    )
    age_caps: tuple[tuple[int, float], ...] = Field(
        default=DEFAULT_AGE_CAPS,
        description="(days_below, cap) pairs in ascending day order",
    )
    mature_age_cap: float = Field(default=100.0, gt=0.0, le=100.0)
    tier_hysteresis: float = Field(default=0.0, ge=0.0)
    first_circle_bonus: float = Field(default=5.0, ge=0.0)
    default_penalty: float = Field(default=5.0, ge=0.0)
    vouchee_default_penalty: float = Field(default=5.0, ge=0.0)
    max_vouch_points_per_member: float = Field(default=20.0, ge=0.0)
    elder_limits: dict[Tier, ElderVouchLimits] = Field(
        default_factory=lambda: dict(DEFAULT_ELDER_LIMITS)
    )
    reference_deposit_amount: float = Field(default=500.0, gt=0.0)
    history_window_days: int = Field(default=730, gt=0)
    default_lookback_days: int = Field(default=365, gt=0)
    dormancy_gap_days: int = Field(default=90, gt=0)
    dormancy_decay: float = Field(default=0.8, gt=0.0, le=1.0)
    dormancy_floor: float = Field(default=0.4, ge=0.0, le=1.0)
    tenure_time_constant_days: float = Field(default=365.0, gt=0.0)
    longevity_milestone_days: int = Field(default=365, gt=0)
    endorsement_min_shared_tenure_days: int = Field(default=30, ge=0)
    cache_ttl_seconds: int = Field(default=3600, gt=0)
    max_clock_skew_seconds: int = Field(default=0, ge=0)
    recent_events_limit: int = Field(default=20, gt=0)

    @model_validator(mode="after")
    def _validate_policy(self) -> ScoringPolicy:
        missing = set(ALL_FACTORS) - set(self.factor_max)
        if missing:
            raise ValueError(f"factor_max missing factors: {sorted(f.value for f in missing)}")
        total = sum(self.factor_max.values())
        if abs(total - 100.0) > _MAX_SUM_TOLERANCE:
            raise ValueError(f"Factor maxima must sum to 100 (got {total:.10f})")

        missing_tiers = set(Tier) - set(self.tier_thresholds)
        if missing_tiers:
            missing_names = sorted(t.name for t in missing_tiers)
            raise ValueError(f"tier_thresholds missing tiers: {missing_names}")
        floors = [self.tier_thresholds[t] for t in sorted(Tier)]
        if any(upper <= lower for upper, lower in zip(floors, floors[1:], strict=False)):
            raise ValueError("Tier thresholds must strictly decrease from ELITE to CRITICAL")
        if self.tier_thresholds[Tier.CRITICAL] != 0.0:
            raise ValueError("CRITICAL tier threshold must be 0")

        days = [d for d, _ in self.age_caps]
        caps = [c for _, c in self.age_caps]
        if days != sorted(set(days)):
            raise ValueError("age_caps days must be strictly ascending")
        if caps != sorted(caps) or (caps and caps[-1] > self.mature_age_cap):
            raise ValueError("age_caps must be non-decreasing and not exceed mature_age_cap")
        return self

    def age_cap(self, account_age_days: float) -> float:
        """Hard score ceiling for an account of the given age."""
        for days_below, cap in self.age_caps:
            if account_age_days < days_below:
                return cap
        return self.mature_age_cap

    def next_age_cap_milestone(self, account_age_days: float) -> tuple[int, float] | None:
        """Next (day, cap) at which the age cap rises, or None when fully matured."""
        for index, (days_below, _cap) in enumerate(self.age_caps):
            if account_age_days < days_below:
                if index + 1 < len(self.age_caps):
                    return days_below, self.age_caps[index + 1][1]
                return days_below, self.mature_age_cap
        return None

    def elder_limits_for(self, tier: Tier) -> ElderVouchLimits | None:
        """Vouch limits for an Elder of ``tier``; None when the tier cannot vouch."""
        return self.elder_limits.get(tier)


DEFAULT_POLICY = ScoringPolicy()
