"""Eligibility gate."""

from xnscore.eligibility.gate import (
    ACCOUNT_AGE_REQUIREMENTS,
    AMOUNT_SCORE_REQUIREMENTS,
    BASE_MIN_SCORE,
    EligibilityDecision,
    EligibilityGate,
    Reason,
    min_score_for_amount,
    required_account_age_days,
)

__all__ = [
    "ACCOUNT_AGE_REQUIREMENTS",
    "AMOUNT_SCORE_REQUIREMENTS",
    "BASE_MIN_SCORE",
    "EligibilityDecision",
    "EligibilityGate",
    "Reason",
    "min_score_for_amount",
    "required_account_age_days",
]
