"""XnScore scoring: factor calculators, aggregation, tiers and policy."""

from xnscore.scoring.aggregator import ScoreAggregator, compute_snapshot, round_to_half
from xnscore.scoring.factors import FACTOR_CALCULATORS, compute_factors
from xnscore.scoring.policy import DEFAULT_POLICY, ElderVouchLimits, ScoringPolicy
from xnscore.scoring.tiers import TIER_BENEFITS, TierBenefits, TierProgress, TierResolver

__all__ = [
    "DEFAULT_POLICY",
    "ElderVouchLimits",
    "FACTOR_CALCULATORS",
    "ScoreAggregator",
    "ScoringPolicy",
    "TIER_BENEFITS",
    "TierBenefits",
    "TierProgress",
    "TierResolver",
    "compute_factors",
    "compute_snapshot",
    "round_to_half",
]
