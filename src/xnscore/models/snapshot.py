"""Score snapshot models.

Defines:
- Tier: six trust tiers, 1 (Elite) through 6 (Critical)
- ScoreFactor: the six scoring factors
- FactorStatus: per-factor health label
- FactorScore: bounded sub-score for one factor
- ScoreSnapshot: cached aggregate score, owned by the aggregator
"""

from __future__ import annotations

from datetime import datetime
from enum import IntEnum, StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Tier(IntEnum):
    """Trust tiers. Lower number means more trust."""

    ELITE = 1
    EXCELLENT = 2
    GOOD = 3
    FAIR = 4
    POOR = 5
    CRITICAL = 6

    @property
    def label(self) -> str:
        return self.name.title()


class ScoreFactor(StrEnum):
    """The six XnScore factors."""

    PAYMENT_HISTORY = "PAYMENT_HISTORY"
    CIRCLE_COMPLETION = "CIRCLE_COMPLETION"
    TIME_RELIABILITY = "TIME_RELIABILITY"
    SECURITY_DEPOSIT = "SECURITY_DEPOSIT"
    DIVERSITY_SOCIAL = "DIVERSITY_SOCIAL"
    ENGAGEMENT = "ENGAGEMENT"


ALL_FACTORS: tuple[ScoreFactor, ...] = tuple(ScoreFactor)


class FactorStatus(StrEnum):
    """Health label for a factor, by share of its maximum."""

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    NEEDS_WORK = "needs_work"
    CRITICAL = "critical"


class FactorScore(BaseModel):
    """Bounded sub-score produced by one factor calculator."""

    model_config = ConfigDict(frozen=True)

    factor: ScoreFactor
    raw_score: float = Field(..., ge=0.0)
    max_score: float = Field(..., gt=0.0)
    components: dict[str, float] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _bounded(self) -> FactorScore:
        if self.raw_score > self.max_score + 1e-9:
            raise ValueError(
                f"{self.factor.value} raw_score {self.raw_score} exceeds max {self.max_score}"
            )
        return self

    @property
    def ratio(self) -> float:
        return self.raw_score / self.max_score

    @property
    def status(self) -> FactorStatus:
        ratio = self.ratio
        if ratio >= 0.9:
            return FactorStatus.EXCELLENT
        if ratio >= 0.7:
            return FactorStatus.GOOD
        if ratio >= 0.5:
            return FactorStatus.FAIR
        if ratio >= 0.25:
            return FactorStatus.NEEDS_WORK
        return FactorStatus.CRITICAL


class ScoreSnapshot(BaseModel):
    """Aggregated XnScore for one member at one point in time.

    Exclusively written by the ScoreAggregator; read-only elsewhere.
    ``score`` keeps full precision, ``display_score`` is rounded to 0.5.
    """

    model_config = ConfigDict(frozen=True)

    member_id: str
    score: float = Field(..., ge=0.0, le=100.0)
    display_score: float = Field(..., ge=0.0, le=100.0)
    raw_score: float = Field(..., ge=0.0, le=100.0, description="Score before the age cap")
    age_cap: float
    age_cap_applied: bool
    account_age_days: float
    tier_at_computation: Tier
    factor_breakdown: dict[ScoreFactor, FactorScore]
    bonuses: dict[str, float] = Field(default_factory=dict)
    penalties: dict[str, float] = Field(default_factory=dict)
    has_unresolved_default: bool = False
    event_version: int = 0
    computed_at: datetime
    expires_at: datetime
    stale: bool = False

    @model_validator(mode="after")
    def _require_all_factors(self) -> ScoreSnapshot:
        """Fail closed: every snapshot carries all six factors."""
        missing = set(ALL_FACTORS) - set(self.factor_breakdown)
        if missing:
            raise ValueError(f"Snapshot missing factors: {sorted(f.value for f in missing)}")
        return self

    @property
    def tier(self) -> Tier:
        return self.tier_at_computation
