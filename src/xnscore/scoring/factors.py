"""XnScore factor calculators.

Six independent pure functions, one per factor. Each takes a member's event
history, the account age in days, the evaluation time and the policy, and
returns a bounded FactorScore. No I/O and no shared mutable state: the same
inputs always give the same output.

Component weights are expressed against the default factor maxima
(35/25/20/10/7/3) and scaled when the policy changes a factor's maximum.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timedelta

from xnscore.models.score_event import (
    CIRCLE_ENDING_KINDS,
    PAYMENT_KINDS,
    ScoreEvent,
    ScoreEventKind,
)
from xnscore.models.snapshot import FactorScore, ScoreFactor
from xnscore.scoring.policy import ScoringPolicy

FactorCalculator = Callable[[Sequence[ScoreEvent], float, datetime, ScoringPolicy], FactorScore]

# Payment history (of 35)
ON_TIME_RATE_WEIGHT = 22.0
STREAK_CAP = 50
STREAK_STEP = 0.04
PAYMENT_DEPTH_WEIGHT = 11.0
PAYMENT_DEPTH_FULL_CREDIT = 144
DEFAULT_RETAINED_FRACTION = 0.3

# Circle completion (of 25)
COMPLETION_RATE_WEIGHT = 20.0
FULL_CYCLE_POINT = 1.0
FULL_CYCLE_CAP = 5

# Diversity & social (of 7)
ACTIVE_CIRCLE_POINT = 1.0
ACTIVE_CIRCLE_CAP = 3
ENDORSEMENT_POINT = 0.5
ENDORSEMENT_CAP = 4.0

# Recorded on a member's log by other members; not the member's own activity.
PASSIVE_KINDS: frozenset[ScoreEventKind] = frozenset(
    {
        ScoreEventKind.VOUCH_RECEIVED,
        ScoreEventKind.VOUCH_REVOKED,
        ScoreEventKind.ENDORSEMENT_RECEIVED,
        ScoreEventKind.VOUCHEE_DEFAULTED,
    }
)

_BASE_MAX: dict[ScoreFactor, float] = {
    ScoreFactor.PAYMENT_HISTORY: 35.0,
    ScoreFactor.CIRCLE_COMPLETION: 25.0,
    ScoreFactor.TIME_RELIABILITY: 20.0,
    ScoreFactor.SECURITY_DEPOSIT: 10.0,
    ScoreFactor.DIVERSITY_SOCIAL: 7.0,
    ScoreFactor.ENGAGEMENT: 3.0,
}


def _ordered(events: Iterable[ScoreEvent]) -> list[ScoreEvent]:
    """Timestamp order; stable, so ties keep their append order."""
    return sorted(events, key=lambda e: e.timestamp)


def _scale(factor: ScoreFactor, policy: ScoringPolicy) -> float:
    return policy.factor_max[factor] / _BASE_MAX[factor]


def _bounded(
    factor: ScoreFactor,
    raw: float,
    policy: ScoringPolicy,
    components: dict[str, float],
) -> FactorScore:
    max_score = policy.factor_max[factor]
    return FactorScore(
        factor=factor,
        raw_score=min(max(raw, 0.0), max_score),
        max_score=max_score,
        components=components,
    )


def distinct_defaults(events: Iterable[ScoreEvent]) -> list[ScoreEvent]:
    """First CIRCLE_DEFAULTED report per circle, in timestamp order.

    A default re-reported for the same circle under a new event id is a
    retry, not a second default.
    """
    seen: set[str] = set()
    firsts: list[ScoreEvent] = []
    for event in _ordered(events):
        if event.kind != ScoreEventKind.CIRCLE_DEFAULTED:
            continue
        key = event.circle_id or event.event_id
        if key not in seen:
            seen.add(key)
            firsts.append(event)
    return firsts


def distinct_vouchee_defaults(events: Iterable[ScoreEvent]) -> list[ScoreEvent]:
    """First VOUCHEE_DEFAULTED record per (vouch, circle), in timestamp order."""
    seen: set[tuple[str, str]] = set()
    firsts: list[ScoreEvent] = []
    for event in _ordered(events):
        if event.kind != ScoreEventKind.VOUCHEE_DEFAULTED:
            continue
        key = (str(event.metadata.get("vouch_id", event.event_id)), event.circle_id or "")
        if key not in seen:
            seen.add(key)
            firsts.append(event)
    return firsts


def unresolved_defaults(
    events: Iterable[ScoreEvent],
    now: datetime,
    lookback_days: int,
) -> list[ScoreEvent]:
    """Defaults inside the lookback window not cleared by a DEFAULT_RESOLVED.

    Defaults are counted once per circle. A DEFAULT_RESOLVED naming a circle
    clears that circle's default; otherwise it clears the most recent
    outstanding one.
    """
    ordered = _ordered(events)
    counted = {e.event_id for e in distinct_defaults(ordered)}
    outstanding: list[ScoreEvent] = []
    for event in ordered:
        if event.event_id in counted:
            outstanding.append(event)
        elif event.kind == ScoreEventKind.DEFAULT_RESOLVED and outstanding:
            matching = [d for d in outstanding if d.circle_id == event.circle_id]
            outstanding.remove(matching[-1] if matching else outstanding[-1])
    cutoff = now - timedelta(days=lookback_days)
    return [e for e in outstanding if e.timestamp >= cutoff]


def current_on_time_streak(events: Iterable[ScoreEvent]) -> int:
    """Consecutive on-time payments ending at the most recent payment."""
    streak = 0
    for event in reversed(_ordered(e for e in events if e.kind in PAYMENT_KINDS)):
        if event.kind != ScoreEventKind.ON_TIME_PAYMENT:
            break
        streak += 1
    return streak


def _circle_outcomes(events: Sequence[ScoreEvent]) -> tuple[set[str], dict[str, ScoreEventKind]]:
    """Joined circle ids, and the first ending kind recorded per circle."""
    joined: set[str] = set()
    ended: dict[str, ScoreEventKind] = {}
    for event in events:
        circle_id = event.circle_id
        if circle_id is None:
            continue
        if event.kind == ScoreEventKind.CIRCLE_JOINED:
            joined.add(circle_id)
        elif event.kind in CIRCLE_ENDING_KINDS and circle_id not in ended:
            ended[circle_id] = event.kind
    return joined, ended


def payment_history(
    events: Sequence[ScoreEvent],
    account_age_days: float,
    now: datetime,
    policy: ScoringPolicy,
) -> FactorScore:
    """Payment History (max 35).

    On-time rate, the current on-time streak with diminishing value, and the
    depth of payment history. An unresolved default in the default lookback
    window keeps only 30% of the factor.
    """
    ordered = _ordered(events)
    payments = [e for e in ordered if e.kind in PAYMENT_KINDS]
    total = len(payments)
    on_time = sum(1 for e in payments if e.kind == ScoreEventKind.ON_TIME_PAYMENT)
    scale = _scale(ScoreFactor.PAYMENT_HISTORY, policy)

    rate_points = (on_time / total) * ON_TIME_RATE_WEIGHT if total else 0.0
    streak = current_on_time_streak(payments)
    streak_points = min(streak, STREAK_CAP) * STREAK_STEP
    depth_points = min(total / PAYMENT_DEPTH_FULL_CREDIT, 1.0) * PAYMENT_DEPTH_WEIGHT

    raw = (rate_points + streak_points + depth_points) * scale
    defaults = unresolved_defaults(ordered, now, policy.default_lookback_days)
    if defaults:
        raw *= DEFAULT_RETAINED_FRACTION

    return _bounded(
        ScoreFactor.PAYMENT_HISTORY,
        raw,
        policy,
        {
            "on_time_rate": rate_points * scale,
            "streak": streak_points * scale,
            "depth": depth_points * scale,
            "unresolved_defaults": float(len(defaults)),
        },
    )


def circle_completion(
    events: Sequence[ScoreEvent],
    account_age_days: float,
    now: datetime,
    policy: ScoringPolicy,
) -> FactorScore:
    """Circle Completion (max 25): completion_rate * 20 + min(full_cycles, 5)."""
    _joined, ended = _circle_outcomes(_ordered(events))
    completed = sum(1 for kind in ended.values() if kind == ScoreEventKind.CIRCLE_COMPLETED)
    finished = len(ended)
    scale = _scale(ScoreFactor.CIRCLE_COMPLETION, policy)

    rate = completed / finished if finished else 0.0
    rate_points = rate * COMPLETION_RATE_WEIGHT
    cycle_points = min(completed, FULL_CYCLE_CAP) * FULL_CYCLE_POINT

    return _bounded(
        ScoreFactor.CIRCLE_COMPLETION,
        (rate_points + cycle_points) * scale,
        policy,
        {
            "completion_rate": rate_points * scale,
            "full_cycles": cycle_points * scale,
        },
    )


def dormancy_gaps(
    events: Sequence[ScoreEvent],
    account_age_days: float,
    now: datetime,
    policy: ScoringPolicy,
) -> int:
    """Count periods longer than the dormancy threshold with no member activity.

    Gaps are measured over [max(account creation, window start), now].
    Vouch and endorsement events do not count as activity.
    """
    created_at = now - timedelta(days=account_age_days)
    window_start = now - timedelta(days=policy.history_window_days)
    start = max(created_at, window_start)
    points = [start]
    points.extend(
        e.timestamp
        for e in _ordered(events)
        if e.kind not in PASSIVE_KINDS and start <= e.timestamp <= now
    )
    points.append(now)
    threshold = timedelta(days=policy.dormancy_gap_days)
    return sum(
        1 for earlier, later in zip(points, points[1:], strict=False) if later - earlier > threshold
    )


def time_reliability(
    events: Sequence[ScoreEvent],
    account_age_days: float,
    now: datetime,
    policy: ScoringPolicy,
) -> FactorScore:
    """Time & Reliability (max 20).

    Asymptotic tenure curve times a sustained-activity multiplier that decays
    once per dormancy gap, down to the policy floor.
    """
    max_score = policy.factor_max[ScoreFactor.TIME_RELIABILITY]
    tenure = max_score * (1.0 - math.exp(-account_age_days / policy.tenure_time_constant_days))
    gaps = dormancy_gaps(events, account_age_days, now, policy)
    multiplier = max(policy.dormancy_decay**gaps, policy.dormancy_floor)
    return _bounded(
        ScoreFactor.TIME_RELIABILITY,
        tenure * multiplier,
        policy,
        {"tenure": tenure, "activity_multiplier": multiplier, "dormancy_gaps": float(gaps)},
    )


def net_locked_deposit(events: Iterable[ScoreEvent]) -> float:
    """Deposit amount still locked (locked minus released, never negative)."""
    locked = 0.0
    for event in _ordered(events):
        if event.kind == ScoreEventKind.DEPOSIT_LOCKED:
            locked += event.magnitude
        elif event.kind == ScoreEventKind.DEPOSIT_RELEASED:
            locked = max(locked - event.magnitude, 0.0)
    return locked


def security_deposit(
    events: Sequence[ScoreEvent],
    account_age_days: float,
    now: datetime,
    policy: ScoringPolicy,
) -> FactorScore:
    """Security Deposit (max 10): min(locked / reference, 1) * 10."""
    locked = net_locked_deposit(events)
    max_score = policy.factor_max[ScoreFactor.SECURITY_DEPOSIT]
    ratio = min(locked / policy.reference_deposit_amount, 1.0)
    return _bounded(
        ScoreFactor.SECURITY_DEPOSIT,
        ratio * max_score,
        policy,
        {"locked_amount": locked},
    )


def active_circle_count(events: Sequence[ScoreEvent]) -> int:
    joined, ended = _circle_outcomes(_ordered(events))
    return len(joined - set(ended))


def diversity_social(
    events: Sequence[ScoreEvent],
    account_age_days: float,
    now: datetime,
    policy: ScoringPolicy,
) -> FactorScore:
    """Diversity & Social (max 7): min(active_circles, 3) + min(endorsements * 0.5, 4)."""
    active = active_circle_count(events)
    endorsements = sum(1 for e in events if e.kind == ScoreEventKind.ENDORSEMENT_RECEIVED)
    scale = _scale(ScoreFactor.DIVERSITY_SOCIAL, policy)
    circle_points = min(active, ACTIVE_CIRCLE_CAP) * ACTIVE_CIRCLE_POINT
    endorsement_points = min(endorsements * ENDORSEMENT_POINT, ENDORSEMENT_CAP)
    return _bounded(
        ScoreFactor.DIVERSITY_SOCIAL,
        (circle_points + endorsement_points) * scale,
        policy,
        {
            "active_circles": circle_points * scale,
            "endorsements": endorsement_points * scale,
        },
    )


def engagement(
    events: Sequence[ScoreEvent],
    account_age_days: float,
    now: datetime,
    policy: ScoringPolicy,
) -> FactorScore:
    """Engagement (max 3): one point each for profile, KYC and longevity, awarded once."""
    kinds = {e.kind for e in events}
    scale = _scale(ScoreFactor.ENGAGEMENT, policy)
    profile = 1.0 if ScoreEventKind.PROFILE_COMPLETED in kinds else 0.0
    kyc = 1.0 if ScoreEventKind.KYC_VERIFIED in kinds else 0.0
    longevity = 1.0 if account_age_days >= policy.longevity_milestone_days else 0.0
    return _bounded(
        ScoreFactor.ENGAGEMENT,
        (profile + kyc + longevity) * scale,
        policy,
        {
            "profile_completed": profile * scale,
            "kyc_verified": kyc * scale,
            "longevity": longevity * scale,
        },
    )


FACTOR_CALCULATORS: dict[ScoreFactor, FactorCalculator] = {
    ScoreFactor.PAYMENT_HISTORY: payment_history,
    ScoreFactor.CIRCLE_COMPLETION: circle_completion,
    ScoreFactor.TIME_RELIABILITY: time_reliability,
    ScoreFactor.SECURITY_DEPOSIT: security_deposit,
    ScoreFactor.DIVERSITY_SOCIAL: diversity_social,
    ScoreFactor.ENGAGEMENT: engagement,
}


def compute_factors(
    events: Sequence[ScoreEvent],
    account_age_days: float,
    now: datetime,
    policy: ScoringPolicy,
) -> dict[ScoreFactor, FactorScore]:
    """Run all six calculators over the same history."""
    return {
        factor: calculator(events, account_age_days, now, policy)
        for factor, calculator in FACTOR_CALCULATORS.items()
    }
