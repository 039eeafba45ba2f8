"""Tests for the voucher cascade and voucher reliability standing.

Tests cover:
1. Reliability thresholds and clean-period recovery
2. A vouchee's default recorded against each Elder with an active vouch
3. Retried default reports recorded once
4. Restricted Elders and Elders with open defaults cannot vouch
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta

import pytest

from tests.fixtures.synthetic import NOW, make_event
from xnscore.audit.sink import InMemoryAuditSink
from xnscore.clock import FixedClock
from xnscore.errors import VouchError
from xnscore.events.store import InMemoryEventStore
from xnscore.models.score_event import ScoreEventKind
from xnscore.models.snapshot import Tier
from xnscore.scoring.aggregator import PENALTY_VOUCHEE_DEFAULTS
from xnscore.service import XnScoreService
from xnscore.vouching.ledger import VouchLedger
from xnscore.vouching.standing import ReliabilityStatus, reliability_status, voucher_standing

K = ScoreEventKind
TTL = timedelta(days=90)


def _impacts(member_id: str, count: int, last_days_ago: int = 10) -> list:
    return [
        make_event(
            member_id,
            K.VOUCHEE_DEFAULTED,
            NOW - timedelta(days=last_days_ago + i),
            vouch_id=f"v-{i}",
            circle_id=f"c-{i}",
        )
        for i in range(count)
    ]


@pytest.mark.parametrize(
    ("count", "status"),
    [
        (0, ReliabilityStatus.GOOD),
        (1, ReliabilityStatus.GOOD),
        (2, ReliabilityStatus.WARNING),
        (3, ReliabilityStatus.POOR),
        (4, ReliabilityStatus.POOR),
        (5, ReliabilityStatus.RESTRICTED),
        (9, ReliabilityStatus.RESTRICTED),
    ],
)
def test_reliability_thresholds(count: int, status: ReliabilityStatus) -> None:
    assert reliability_status(count) == status


class TestVoucherStanding:
    def test_restricted_until_clean_period_ends(self) -> None:
        standing = voucher_standing("e-1", _impacts("e-1", 5), NOW)

        assert standing.reliability_status == ReliabilityStatus.RESTRICTED
        assert standing.can_vouch is False
        assert standing.restricted_until == NOW - timedelta(days=10) + timedelta(days=360)

    def test_recovers_after_clean_period(self) -> None:
        events = _impacts("e-1", 5, last_days_ago=10)
        recovered_at = NOW - timedelta(days=10) + timedelta(days=360)

        standing = voucher_standing("e-1", events, recovered_at)

        assert standing.reliability_status == ReliabilityStatus.GOOD
        assert standing.can_vouch is True
        assert standing.vouchee_defaults == 5

    def test_warning_recovers_sooner(self) -> None:
        events = _impacts("e-1", 2, last_days_ago=181)

        assert voucher_standing("e-1", events, NOW).reliability_status == ReliabilityStatus.GOOD
        assert voucher_standing("e-1", events, NOW - timedelta(days=2)).reliability_status == (
            ReliabilityStatus.WARNING
        )

    def test_repeated_record_counts_once(self) -> None:
        events = _impacts("e-1", 2)
        events.append(
            make_event(
                "e-1",
                K.VOUCHEE_DEFAULTED,
                NOW - timedelta(days=1),
                event_id="retry",
                vouch_id="v-0",
                circle_id="c-0",
            )
        )

        assert voucher_standing("e-1", events, NOW).vouchee_defaults == 2


class TestCascade:
    @pytest.fixture
    def vouched(
        self, service: XnScoreService, seed_elder: Callable[..., str]
    ) -> tuple[str, str]:
        elder = seed_elder()
        service.register_member("newcomer", "Newcomer", NOW - timedelta(days=60))
        service.issue_vouch(elder, "newcomer", 10.0, TTL)
        return elder, "newcomer"

    def _default(self, service: XnScoreService, member_id: str) -> None:
        service.record_event(
            make_event(member_id, K.CIRCLE_DEFAULTED, NOW - timedelta(days=1), circle_id="c-9")
        )

    def test_default_penalizes_voucher(
        self,
        service: XnScoreService,
        audit_sink: InMemoryAuditSink,
        vouched: tuple[str, str],
    ) -> None:
        elder, newcomer = vouched
        before = service.score(elder)

        self._default(service, newcomer)
        after = service.score(elder)

        impacts = list(service.store.history(elder, kind=K.VOUCHEE_DEFAULTED))
        assert len(impacts) == 1
        assert impacts[0].metadata["defaulter_id"] == newcomer
        assert impacts[0].circle_id == "c-9"
        assert after.penalties[PENALTY_VOUCHEE_DEFAULTS] == 5.0
        assert after.score <= before.score
        assert audit_sink.actions()[-1] == "vouch.cascade_applied"

    def test_retried_default_recorded_once(
        self, service: XnScoreService, vouched: tuple[str, str]
    ) -> None:
        elder, newcomer = vouched

        self._default(service, newcomer)
        self._default(service, newcomer)

        assert len(list(service.store.history(elder, kind=K.VOUCHEE_DEFAULTED))) == 1
        assert service.voucher_standing(elder).vouchee_defaults == 1

    def test_revoked_vouch_not_penalized(
        self, service: XnScoreService, vouched: tuple[str, str]
    ) -> None:
        elder, newcomer = vouched
        vouch = service.vouches.active_vouches_for(newcomer)[0]
        service.revoke_vouch(vouch.vouch_id, elder)

        self._default(service, newcomer)

        assert list(service.store.history(elder, kind=K.VOUCHEE_DEFAULTED)) == []

    def test_member_without_vouches_cascades_nothing(
        self, service: XnScoreService, audit_sink: InMemoryAuditSink
    ) -> None:
        service.register_member("loner", account_created_at=NOW - timedelta(days=60))

        self._default(service, "loner")

        assert "vouch.cascade_applied" not in audit_sink.actions()


class TestStandingBlocksVouching:
    @pytest.fixture
    def clock(self) -> FixedClock:
        return FixedClock(NOW)

    @pytest.fixture
    def store(self, clock: FixedClock) -> InMemoryEventStore:
        return InMemoryEventStore(clock=clock)

    @pytest.fixture
    def ledger(self, store: InMemoryEventStore, clock: FixedClock) -> VouchLedger:
        return VouchLedger(store, lambda _: Tier.ELITE, clock=clock)

    def test_restricted_elder_cannot_vouch(
        self, ledger: VouchLedger, store: InMemoryEventStore
    ) -> None:
        for event in _impacts("elder", 5):
            store.append(event)

        with pytest.raises(VouchError) as exc_info:
            ledger.issue_vouch("elder", "r-1", 5.0, TTL)

        assert exc_info.value.code == "VOUCHER_RESTRICTED"
        assert ledger.vouches_issued_by("elder") == []

    def test_poor_reliability_still_vouches(
        self, ledger: VouchLedger, store: InMemoryEventStore
    ) -> None:
        for event in _impacts("elder", 4):
            store.append(event)

        assert ledger.issue_vouch("elder", "r-1", 5.0, TTL)

    def test_restriction_lifts_after_clean_period(
        self, ledger: VouchLedger, store: InMemoryEventStore, clock: FixedClock
    ) -> None:
        for event in _impacts("elder", 5, last_days_ago=10):
            store.append(event)

        clock.set(NOW + timedelta(days=351))

        assert ledger.issue_vouch("elder", "r-1", 5.0, TTL)

    def test_elder_with_open_default_cannot_vouch(
        self, ledger: VouchLedger, store: InMemoryEventStore
    ) -> None:
        store.append(
            make_event("elder", K.CIRCLE_DEFAULTED, NOW - timedelta(days=3), circle_id="c")
        )

        with pytest.raises(VouchError) as exc_info:
            ledger.issue_vouch("elder", "r-1", 5.0, TTL)

        assert exc_info.value.code == "ELDER_UNRESOLVED_DEFAULT"

    def test_resolved_default_allows_vouching(
        self, ledger: VouchLedger, store: InMemoryEventStore
    ) -> None:
        store.append(
            make_event("elder", K.CIRCLE_DEFAULTED, NOW - timedelta(days=3), circle_id="c")
        )
        store.append(
            make_event("elder", K.DEFAULT_RESOLVED, NOW - timedelta(days=1), circle_id="c")
        )

        assert ledger.issue_vouch("elder", "r-1", 5.0, TTL)
