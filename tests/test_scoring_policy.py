"""Tests for ScoringPolicy validation and the age cap table."""

from __future__ import annotations

import pydantic
import pytest

from xnscore.models.snapshot import ScoreFactor, Tier
from xnscore.scoring.policy import DEFAULT_POLICY, ScoringPolicy


class TestPolicyValidation:
    def test_default_factor_maxima_sum_to_one_hundred(self) -> None:
        assert sum(DEFAULT_POLICY.factor_max.values()) == pytest.approx(100.0)

    def test_rejects_maxima_not_summing_to_one_hundred(self) -> None:
        factor_max = dict(DEFAULT_POLICY.factor_max)
        factor_max[ScoreFactor.ENGAGEMENT] = 5.0

        with pytest.raises(pydantic.ValidationError, match="sum to 100"):
            ScoringPolicy(factor_max=factor_max)

    def test_rejects_missing_factor(self) -> None:
        factor_max = dict(DEFAULT_POLICY.factor_max)
        del factor_max[ScoreFactor.ENGAGEMENT]
        factor_max[ScoreFactor.PAYMENT_HISTORY] = 38.0

        with pytest.raises(pydantic.ValidationError, match="missing factors"):
            ScoringPolicy(factor_max=factor_max)

    def test_rejects_non_decreasing_thresholds(self) -> None:
        thresholds = dict(DEFAULT_POLICY.tier_thresholds)
        thresholds[Tier.GOOD] = 80.0

        with pytest.raises(pydantic.ValidationError, match="strictly decrease"):
            ScoringPolicy(tier_thresholds=thresholds)

    def test_rejects_nonzero_critical_floor(self) -> None:
        thresholds = dict(DEFAULT_POLICY.tier_thresholds)
        thresholds[Tier.CRITICAL] = 5.0

        with pytest.raises(pydantic.ValidationError, match="CRITICAL"):
            ScoringPolicy(tier_thresholds=thresholds)

    def test_rejects_decreasing_age_caps(self) -> None:
        with pytest.raises(pydantic.ValidationError, match="age_caps"):
            ScoringPolicy(age_caps=((180, 90.0), (365, 80.0)))

    def test_rejects_negative_hysteresis(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            ScoringPolicy(tier_hysteresis=-1.0)

    def test_policy_is_immutable(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            DEFAULT_POLICY.cache_ttl_seconds = 10  # type: ignore[misc]


class TestAgeCap:
    @pytest.mark.parametrize(
        ("age_days", "cap"),
        [
            (0.0, 75.0),
            (179.9, 75.0),
            (180.0, 85.0),
            (280.0, 85.0),
            (364.9, 85.0),
            (365.0, 90.0),
            (546.0, 90.0),
            (547.0, 100.0),
            (2000.0, 100.0),
        ],
    )
    def test_cap_table(self, age_days: float, cap: float) -> None:
        assert DEFAULT_POLICY.age_cap(age_days) == cap

    @pytest.mark.parametrize(
        ("age_days", "milestone"),
        [
            (10.0, (180, 85.0)),
            (200.0, (365, 90.0)),
            (400.0, (547, 100.0)),
            (600.0, None),
        ],
    )
    def test_next_age_cap_milestone(
        self, age_days: float, milestone: tuple[int, float] | None
    ) -> None:
        assert DEFAULT_POLICY.next_age_cap_milestone(age_days) == milestone


class TestElderLimits:
    def test_only_elite_and_excellent_may_vouch(self) -> None:
        assert DEFAULT_POLICY.elder_limits_for(Tier.ELITE) is not None
        assert DEFAULT_POLICY.elder_limits_for(Tier.EXCELLENT) is not None
        assert DEFAULT_POLICY.elder_limits_for(Tier.GOOD) is None

    def test_elite_limits(self) -> None:
        limits = DEFAULT_POLICY.elder_limits_for(Tier.ELITE)

        assert limits is not None
        assert limits.max_concurrent_vouches == 5
        assert limits.max_points_per_vouch == 15.0
