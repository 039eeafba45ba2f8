"""Tests for the eligibility gate.

The gate is exercised against a score board that pins each member's score,
so every tier can be checked without building a matching event history.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from tests.fixtures.synthetic import NOW
from xnscore.circles.directory import Circle, InMemoryCircleDirectory
from xnscore.clock import FixedClock
from xnscore.eligibility.gate import (
    EligibilityGate,
    Reason,
    min_score_for_amount,
    required_account_age_days,
)
from xnscore.errors import StaleDataError
from xnscore.models.member import InMemoryMemberRegistry, Member
from xnscore.models.snapshot import ScoreSnapshot, Tier
from xnscore.scoring.aggregator import compute_snapshot
from xnscore.scoring.policy import DEFAULT_POLICY
from xnscore.scoring.tiers import TierResolver

TIER_SCORES = {
    Tier.ELITE: 95.0,
    Tier.EXCELLENT: 80.0,
    Tier.GOOD: 65.0,
    Tier.FAIR: 50.0,
    Tier.POOR: 30.0,
    Tier.CRITICAL: 10.0,
}


class _ScoreBoard:
    """Aggregator stand-in returning pinned scores."""

    def __init__(self, members: InMemoryMemberRegistry) -> None:
        self.resolver = TierResolver(DEFAULT_POLICY)
        self._members = members
        self._scores: dict[str, float] = {}
        self._defaults: set[str] = set()
        self._stale: set[str] = set()
        self._unavailable: set[str] = set()

    def pin(
        self,
        member_id: str,
        score: float,
        default: bool = False,
        stale: bool = False,
        unavailable: bool = False,
    ) -> None:
        self._scores[member_id] = score
        if default:
            self._defaults.add(member_id)
        if stale:
            self._stale.add(member_id)
        if unavailable:
            self._unavailable.add(member_id)

    def compute_score(self, member_id: str) -> ScoreSnapshot:
        member = self._members.get(member_id)
        if member_id in self._unavailable:
            raise StaleDataError(member_id)
        score = self._scores[member_id]
        snapshot = compute_snapshot(member, [], NOW)
        return snapshot.model_copy(
            update={
                "score": score,
                "tier_at_computation": self.resolver.resolve(score),
                "has_unresolved_default": member_id in self._defaults,
                "stale": member_id in self._stale,
            }
        )


@pytest.fixture
def members() -> InMemoryMemberRegistry:
    return InMemoryMemberRegistry()


@pytest.fixture
def board(members: InMemoryMemberRegistry) -> _ScoreBoard:
    return _ScoreBoard(members)


@pytest.fixture
def circles() -> InMemoryCircleDirectory:
    return InMemoryCircleDirectory(
        [
            Circle(circle_id="open", max_members=10, min_xn_score=0.0),
            Circle(circle_id="premium", max_members=10, min_xn_score=70.0),
            Circle(circle_id="standard", max_members=10, min_xn_score=30.0),
            Circle(circle_id="big-stakes", max_members=10, contribution_amount=1000.0),
            Circle(circle_id="mid-stakes", max_members=10, contribution_amount=500.0),
            Circle(circle_id="small-stakes", max_members=10, contribution_amount=200.0),
            Circle(
                circle_id="full",
                max_members=2,
                members={"x": NOW - timedelta(days=5), "y": NOW - timedelta(days=5)},
            ),
        ]
    )


@pytest.fixture
def gate(
    board: _ScoreBoard, members: InMemoryMemberRegistry, circles: InMemoryCircleDirectory
) -> EligibilityGate:
    return EligibilityGate(board, members, circles, clock=FixedClock(NOW))  # type: ignore[arg-type]


@pytest.fixture
def add_member(members: InMemoryMemberRegistry, board: _ScoreBoard):
    def _add(member_id: str, tier: Tier, age_days: int = 400, **flags: bool) -> str:
        members.register(
            Member(member_id=member_id, account_created_at=NOW - timedelta(days=age_days))
        )
        board.pin(member_id, TIER_SCORES[tier], **flags)
        return member_id

    return _add


class TestCanJoin:
    def test_eligible_member(self, gate: EligibilityGate, add_member) -> None:
        add_member("m-1", Tier.EXCELLENT)

        decision = gate.can_join("m-1", "premium")

        assert decision.eligible is True
        assert decision.reasons == []
        assert decision.tier == Tier.EXCELLENT
        assert decision.score == 80.0

    def test_critical_member_gets_every_reason(self, gate: EligibilityGate, add_member) -> None:
        add_member("m-1", Tier.CRITICAL)

        decision = gate.can_join("m-1", "standard")

        assert decision.eligible is False
        assert decision.reasons == [Reason.CRITICAL_TIER, Reason.TIER_BELOW_CIRCLE_MINIMUM]

    def test_minimum_compares_tier_floor(self, gate: EligibilityGate, add_member) -> None:
        # A Good member at 65 is below a 70 minimum; so is every Good member.
        add_member("m-1", Tier.GOOD)

        decision = gate.can_join("m-1", "premium")

        assert decision.reasons == [Reason.TIER_BELOW_CIRCLE_MINIMUM]

    def test_unresolved_default_blocks(self, gate: EligibilityGate, add_member) -> None:
        add_member("m-1", Tier.GOOD, default=True)

        assert gate.can_join("m-1", "open").reasons == [Reason.UNRESOLVED_DEFAULT]

    @pytest.mark.parametrize(
        ("circle_id", "age_days", "eligible"),
        [
            ("big-stakes", 179, False),
            ("big-stakes", 180, True),
            ("mid-stakes", 89, False),
            ("mid-stakes", 90, True),
            ("open", 1, True),
        ],
    )
    def test_account_age_by_contribution(
        self,
        gate: EligibilityGate,
        add_member,
        circle_id: str,
        age_days: int,
        eligible: bool,
    ) -> None:
        add_member("m-1", Tier.ELITE, age_days=age_days)

        decision = gate.can_join("m-1", circle_id)

        assert decision.eligible is eligible
        assert (Reason.ACCOUNT_TOO_NEW in decision.reasons) is not eligible

    @pytest.mark.parametrize(
        ("circle_id", "tier", "eligible"),
        [
            ("big-stakes", Tier.EXCELLENT, True),
            ("big-stakes", Tier.GOOD, False),
            ("mid-stakes", Tier.GOOD, True),
            ("mid-stakes", Tier.FAIR, False),
            ("small-stakes", Tier.FAIR, True),
            ("small-stakes", Tier.POOR, False),
            ("open", Tier.POOR, True),
        ],
    )
    def test_score_minimum_by_contribution(
        self,
        gate: EligibilityGate,
        add_member,
        circle_id: str,
        tier: Tier,
        eligible: bool,
    ) -> None:
        add_member("m-1", tier)

        decision = gate.can_join("m-1", circle_id)

        assert decision.eligible is eligible
        if not eligible:
            assert decision.reasons == [Reason.SCORE_BELOW_AMOUNT_MINIMUM]

    def test_critical_member_not_double_reported_for_amount(
        self, gate: EligibilityGate, add_member
    ) -> None:
        add_member("m-1", Tier.CRITICAL)

        assert gate.can_join("m-1", "open").reasons == [Reason.CRITICAL_TIER]

    def test_full_circle(self, gate: EligibilityGate, add_member) -> None:
        add_member("m-1", Tier.ELITE)

        assert gate.can_join("m-1", "full").reasons == [Reason.CIRCLE_FULL]

    def test_existing_member(self, gate: EligibilityGate, add_member) -> None:
        add_member("x", Tier.ELITE)

        assert gate.can_join("x", "full").reasons == [Reason.ALREADY_MEMBER]

    def test_unknown_member_and_circle(self, gate: EligibilityGate) -> None:
        decision = gate.can_join("ghost", "nowhere")

        assert decision.reasons == [Reason.MEMBER_NOT_FOUND, Reason.CIRCLE_NOT_FOUND]
        assert decision.tier is None

    def test_inactive_member(
        self, gate: EligibilityGate, add_member, members: InMemoryMemberRegistry
    ) -> None:
        add_member("m-1", Tier.ELITE)
        members.deactivate("m-1")

        assert gate.can_join("m-1", "open").reasons == [Reason.MEMBER_INACTIVE]


class TestFailClosed:
    def test_stale_snapshot_is_ineligible(self, gate: EligibilityGate, add_member) -> None:
        add_member("m-1", Tier.ELITE, stale=True)

        decision = gate.can_join("m-1", "open")

        assert decision.eligible is False
        assert decision.reasons == [Reason.SCORE_UNAVAILABLE]

    def test_unavailable_score_is_ineligible(self, gate: EligibilityGate, add_member) -> None:
        add_member("m-1", Tier.ELITE, unavailable=True)

        for decision in (
            gate.can_join("m-1", "open"),
            gate.can_request_advance("m-1", 100.0),
        ):
            assert decision.eligible is False
            assert Reason.SCORE_UNAVAILABLE in decision.reasons
            assert decision.tier is None


class TestPayoutSlot:
    @pytest.fixture
    def seated(
        self, add_member, circles: InMemoryCircleDirectory
    ):
        def _seat(tier: Tier) -> str:
            member_id = add_member(f"m-{tier.name.lower()}", tier)
            circles.add_member("open", member_id, NOW - timedelta(days=10))
            return member_id

        return _seat

    @pytest.mark.parametrize(
        ("tier", "slot", "eligible"),
        [
            (Tier.ELITE, 1, True),
            (Tier.GOOD, 3, False),
            (Tier.GOOD, 4, True),
            (Tier.FAIR, 6, False),
            (Tier.FAIR, 7, True),
            (Tier.POOR, 7, False),
            (Tier.POOR, 8, True),
            (Tier.CRITICAL, 10, False),
        ],
    )
    def test_slot_by_tier(
        self, gate: EligibilityGate, seated, tier: Tier, slot: int, eligible: bool
    ) -> None:
        member_id = seated(tier)

        decision = gate.can_take_payout_slot(member_id, "open", slot)

        assert decision.eligible is eligible
        if not eligible:
            assert decision.reasons == [Reason.SLOT_NOT_ALLOWED_FOR_TIER]

    @pytest.mark.parametrize("slot", [0, 11])
    def test_slot_out_of_range(self, gate: EligibilityGate, seated, slot: int) -> None:
        member_id = seated(Tier.ELITE)

        assert gate.can_take_payout_slot(member_id, "open", slot).reasons == [
            Reason.INVALID_SLOT
        ]

    def test_requires_circle_membership(self, gate: EligibilityGate, add_member) -> None:
        add_member("m-1", Tier.ELITE)

        assert gate.can_take_payout_slot("m-1", "open", 1).reasons == [
            Reason.NOT_CIRCLE_MEMBER
        ]


class TestAdvance:
    def test_within_limit(self, gate: EligibilityGate, add_member) -> None:
        add_member("m-1", Tier.GOOD)

        assert gate.can_request_advance("m-1", 1500.0).eligible is True

    def test_over_limit(self, gate: EligibilityGate, add_member) -> None:
        add_member("m-1", Tier.GOOD)

        assert gate.can_request_advance("m-1", 1500.01).reasons == [
            Reason.ADVANCE_LIMIT_EXCEEDED
        ]

    @pytest.mark.parametrize("tier", [Tier.POOR, Tier.CRITICAL])
    def test_not_available_to_low_tiers(
        self, gate: EligibilityGate, add_member, tier: Tier
    ) -> None:
        add_member("m-1", tier)

        assert gate.can_request_advance("m-1", 10.0).reasons == [Reason.ADVANCE_NOT_AVAILABLE]

    @pytest.mark.parametrize("amount", [0.0, -5.0, float("nan")])
    def test_invalid_amount(self, gate: EligibilityGate, add_member, amount: float) -> None:
        add_member("m-1", Tier.ELITE)

        assert Reason.INVALID_AMOUNT in gate.can_request_advance("m-1", amount).reasons

    def test_open_default_blocks_advance(self, gate: EligibilityGate, add_member) -> None:
        add_member("m-1", Tier.EXCELLENT, default=True)

        assert gate.can_request_advance("m-1", 100.0).reasons == [Reason.UNRESOLVED_DEFAULT]


@pytest.mark.parametrize(
    ("contribution", "days"),
    [(0.0, 0), (499.99, 0), (500.0, 90), (999.0, 90), (1000.0, 180), (5000.0, 180)],
)
def test_required_account_age_days(contribution: float, days: int) -> None:
    assert required_account_age_days(contribution) == days


@pytest.mark.parametrize(
    ("contribution", "score"),
    [(0.0, 25.0), (199.99, 25.0), (200.0, 45.0), (500.0, 60.0), (999.0, 60.0), (1000.0, 75.0)],
)
def test_min_score_for_amount(contribution: float, score: float) -> None:
    assert min_score_for_amount(contribution) == score
