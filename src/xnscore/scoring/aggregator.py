"""Score aggregator.

Deterministic aggregation of one member's event history into a ScoreSnapshot:
1. Sum the six factor sub-scores over the history window
2. Add the first-circle bonus once if any circle was ever completed
3. Add active vouch points, bounded per member
4. Subtract the permanent default penalty per defaulted circle in the window,
   and the voucher penalty per vouchee default in the window
5. Clamp to [0, 100], then apply the account-age cap
6. Round to the nearest 0.5 for display; keep full precision internally
7. Resolve the tier (with the previous tier when hysteresis is enabled)

Snapshots are cached per member and reused while the member's event version
is unchanged and the snapshot has not expired. A snapshot expires at the
earlier of the cache TTL and the next active vouch expiry.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from xnscore.clock import Clock, utc_now
from xnscore.errors import EventStoreUnavailableError, StaleDataError
from xnscore.events.store import EventStore, MemberLocks
from xnscore.models.member import Member, MemberRegistry
from xnscore.models.score_event import ScoreEvent, ScoreEventKind
from xnscore.models.snapshot import ScoreSnapshot, Tier
from xnscore.scoring.factors import (
    compute_factors,
    distinct_defaults,
    distinct_vouchee_defaults,
    unresolved_defaults,
)
from xnscore.scoring.policy import DEFAULT_POLICY, ScoringPolicy
from xnscore.scoring.tiers import TierResolver

logger = logging.getLogger(__name__)

# State-carrying kinds that keep counting after they leave the history window.
DURABLE_KINDS: frozenset[ScoreEventKind] = frozenset(
    {
        ScoreEventKind.KYC_VERIFIED,
        ScoreEventKind.PROFILE_COMPLETED,
        ScoreEventKind.DEPOSIT_LOCKED,
        ScoreEventKind.DEPOSIT_RELEASED,
        ScoreEventKind.CIRCLE_JOINED,
    }
)

BONUS_FIRST_CIRCLE = "first_circle"
BONUS_VOUCHES = "vouches"
PENALTY_DEFAULTS = "defaults"
PENALTY_VOUCHEE_DEFAULTS = "vouchee_defaults"


class VouchPointsSource(Protocol):
    """Read side of the vouch ledger as seen by the aggregator."""

    def active_points(self, recipient_id: str, now: datetime) -> float: ...

    def next_expiry(self, recipient_id: str, now: datetime) -> datetime | None: ...


def round_to_half(value: float) -> float:
    """Round to the nearest 0.5, halves rounding up."""
    return int(value * 2 + 0.5) / 2


def window_events(
    events: Sequence[ScoreEvent], now: datetime, policy: ScoringPolicy
) -> list[ScoreEvent]:
    """Events inside the history window, plus durable-state events of any age."""
    window_start = now - timedelta(days=policy.history_window_days)
    return [e for e in events if e.timestamp >= window_start or e.kind in DURABLE_KINDS]


def compute_snapshot(
    member: Member,
    events: Sequence[ScoreEvent],
    now: datetime,
    policy: ScoringPolicy = DEFAULT_POLICY,
    resolver: TierResolver | None = None,
    vouch_points: float = 0.0,
    previous_tier: Tier | None = None,
    event_version: int = 0,
    expires_at: datetime | None = None,
) -> ScoreSnapshot:
    """Pure score computation for one member.

    Args:
        member: Member being scored.
        events: Full event history, timestamp ordered.
        now: Evaluation time.
        policy: Scoring policy.
        resolver: Tier resolver; built from ``policy`` if omitted.
        vouch_points: Sum of active vouch points before the per-member bound.
        previous_tier: Tier of the previous snapshot, for hysteresis.
        event_version: Event version the history was read at.
        expires_at: Snapshot expiry; defaults to ``now`` plus the cache TTL.

    Returns:
        The computed ScoreSnapshot.
    """
    resolver = resolver or TierResolver(policy)
    age_days = member.account_age_days(now)
    windowed = window_events(events, now, policy)

    breakdown = compute_factors(windowed, age_days, now, policy)
    factor_sum = sum(f.raw_score for f in breakdown.values())

    bonuses: dict[str, float] = {}
    # Derived from the full history so repeated completion events never double-credit.
    if any(e.kind == ScoreEventKind.CIRCLE_COMPLETED for e in events):
        bonuses[BONUS_FIRST_CIRCLE] = policy.first_circle_bonus
    bounded_vouch_points = min(max(vouch_points, 0.0), policy.max_vouch_points_per_member)
    if bounded_vouch_points > 0.0:
        bonuses[BONUS_VOUCHES] = bounded_vouch_points

    penalties: dict[str, float] = {}
    window_start = now - timedelta(days=policy.history_window_days)
    defaults_in_window = sum(1 for e in distinct_defaults(events) if e.timestamp >= window_start)
    if defaults_in_window:
        penalties[PENALTY_DEFAULTS] = defaults_in_window * policy.default_penalty
    vouchee_defaults_in_window = sum(
        1 for e in distinct_vouchee_defaults(events) if e.timestamp >= window_start
    )
    if vouchee_defaults_in_window:
        penalties[PENALTY_VOUCHEE_DEFAULTS] = (
            vouchee_defaults_in_window * policy.vouchee_default_penalty
        )

    raw = factor_sum + sum(bonuses.values()) - sum(penalties.values())
    raw = min(max(raw, 0.0), 100.0)
    age_cap = policy.age_cap(age_days)
    score = min(raw, age_cap)

    return ScoreSnapshot(
        member_id=member.member_id,
        score=score,
        display_score=round_to_half(score),
        raw_score=raw,
        age_cap=age_cap,
        age_cap_applied=raw > age_cap,
        account_age_days=age_days,
        tier_at_computation=resolver.resolve(score, previous_tier),
        factor_breakdown=breakdown,
        bonuses=bonuses,
        penalties=penalties,
        has_unresolved_default=bool(
            unresolved_defaults(events, now, policy.default_lookback_days)
        ),
        event_version=event_version,
        computed_at=now,
        expires_at=expires_at or now + timedelta(seconds=policy.cache_ttl_seconds),
    )


@dataclass
class _CacheEntry:
    snapshot: ScoreSnapshot
    invalidated: bool = False


class ScoreAggregator:
    """Cached, per-member-serialized score computation.

    Args:
        store: Event store to read histories from. The aggregator subscribes
            to its invalidation channel.
        members: Member registry.
        vouches: Source of active vouch points; no vouch points when omitted.
        policy: Scoring policy.
        resolver: Tier resolver; built from ``policy`` if omitted.
        clock: Time source.
    """

    def __init__(
        self,
        store: EventStore,
        members: MemberRegistry,
        vouches: VouchPointsSource | None = None,
        policy: ScoringPolicy = DEFAULT_POLICY,
        resolver: TierResolver | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._members = members
        self._vouches = vouches
        self._policy = policy
        self._resolver = resolver or TierResolver(policy)
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}
        self._locks = MemberLocks()
        store.channel.subscribe(self.invalidate)

    @property
    def policy(self) -> ScoringPolicy:
        return self._policy

    @property
    def resolver(self) -> TierResolver:
        return self._resolver

    def attach_vouches(self, vouches: VouchPointsSource) -> None:
        """Set the vouch source after construction (the ledger depends on scores too)."""
        self._vouches = vouches

    def invalidate(self, member_id: str) -> None:
        """Mark the member's cached snapshot as outdated. Keeps it for stale fallback."""
        entry = self._cache.get(member_id)
        if entry is not None:
            entry.invalidated = True

    def compute_score(self, member_id: str) -> ScoreSnapshot:
        """Return the member's current score snapshot.

        Raises:
            MemberNotFoundError: If the member is not registered.
            StaleDataError: If the event store is unavailable and nothing is cached.
        """
        member = self._members.get(member_id)
        with self._locks.get(member_id):
            now = self._clock()
            entry = self._cache.get(member_id)
            try:
                version = self._store.version(member_id)
                if entry is not None and self._is_fresh(entry, version, now):
                    return entry.snapshot
                history = self._store.history(member_id)
                events = list(history)
            except EventStoreUnavailableError as exc:
                if entry is None:
                    logger.error(
                        "Score unavailable: event store down and no cached snapshot",
                        extra={"member_id": member_id},
                    )
                    raise StaleDataError(member_id) from exc
                logger.warning(
                    "Serving stale score snapshot: %s",
                    exc,
                    extra={"member_id": member_id},
                )
                return entry.snapshot.model_copy(update={"stale": True})

            snapshot = self._compute(member, events, history.version, now, entry)
            if entry is None or snapshot.event_version >= entry.snapshot.event_version:
                self._cache[member_id] = _CacheEntry(snapshot=snapshot)

        logger.debug(
            "Computed score",
            extra={
                "member_id": member_id,
                "score": snapshot.score,
                "tier": snapshot.tier.name,
                "event_version": snapshot.event_version,
            },
        )
        return snapshot

    def tier_for(self, member_id: str) -> Tier:
        """Current tier of the member."""
        return self.compute_score(member_id).tier

    def recent_events(self, member_id: str, limit: int | None = None) -> list[ScoreEvent]:
        """Most recent events for the member, newest first.

        Raises:
            MemberNotFoundError: If the member is not registered.
            EventStoreUnavailableError: If the event store cannot be read.
        """
        self._members.get(member_id)
        limit = limit if limit is not None else self._policy.recent_events_limit
        events = list(self._store.history(member_id))
        return list(reversed(events[-limit:])) if limit > 0 else []

    def _is_fresh(self, entry: _CacheEntry, version: int, now: datetime) -> bool:
        snapshot = entry.snapshot
        return (
            not entry.invalidated
            and snapshot.event_version == version
            and snapshot.computed_at <= now <= snapshot.expires_at
        )

    def _compute(
        self,
        member: Member,
        events: Sequence[ScoreEvent],
        version: int,
        now: datetime,
        entry: _CacheEntry | None,
    ) -> ScoreSnapshot:
        vouch_points = 0.0
        expires_at = now + timedelta(seconds=self._policy.cache_ttl_seconds)
        if self._vouches is not None:
            vouch_points = self._vouches.active_points(member.member_id, now)
            next_expiry = self._vouches.next_expiry(member.member_id, now)
            if next_expiry is not None:
                expires_at = min(expires_at, next_expiry)
        return compute_snapshot(
            member,
            events,
            now,
            policy=self._policy,
            resolver=self._resolver,
            vouch_points=vouch_points,
            previous_tier=entry.snapshot.tier if entry is not None else None,
            event_version=version,
            expires_at=expires_at,
        )
