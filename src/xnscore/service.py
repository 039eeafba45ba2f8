"""XnScore service facade.

Wires the event store, aggregator, tier resolver, vouch and endorsement
ledgers, the voucher cascade and the eligibility gate into one object, and
records an audit event for every trust-affecting write. The HTTP API and the CLI both go
through this facade.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict

from xnscore.audit.sink import AuditSink, InMemoryAuditSink, build_audit_event
from xnscore.circles.directory import Circle, CircleDirectory, InMemoryCircleDirectory
from xnscore.circles.disbursement import AdvanceReceipt, Disbursement, InMemoryDisbursement
from xnscore.clock import Clock, utc_now
from xnscore.config import EngineConfig
from xnscore.eligibility.gate import EligibilityDecision, EligibilityGate
from xnscore.errors import EligibilityDeniedError, ValidationError
from xnscore.events.sql_store import SqlEventStore
from xnscore.events.store import EventStore, InMemoryEventStore
from xnscore.models.member import InMemoryMemberRegistry, Member, MemberRegistry
from xnscore.models.score_event import LEDGER_OWNED_KINDS, ScoreEvent, ScoreEventKind
from xnscore.models.snapshot import ScoreSnapshot, Tier
from xnscore.models.vouch import Endorsement, Vouch
from xnscore.persistence import (
    EndorsementRepository,
    SqlCircleDirectory,
    SqlEndorsementRepository,
    SqlMemberRegistry,
    SqlVouchRepository,
    VouchRepository,
    create_db_engine,
)
from xnscore.scoring.aggregator import ScoreAggregator
from xnscore.scoring.policy import DEFAULT_POLICY, ScoringPolicy
from xnscore.scoring.tiers import TierBenefits, TierProgress
from xnscore.vouching.cascade import VoucherCascade
from xnscore.vouching.endorsements import EndorsementLedger
from xnscore.vouching.ledger import VouchLedger
from xnscore.vouching.standing import VoucherStanding

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """Who performed an action, for the audit trail."""

    actor_id: str | None = None
    role: str | None = None
    request_id: str | None = None


SYSTEM_ACTOR = Actor(actor_id="system", role="SYSTEM")


class TierSummary(BaseModel):
    """Tier, benefits and progress for one member."""

    model_config = ConfigDict(frozen=True)

    member_id: str
    score: float
    display_score: float
    tier: Tier
    benefits: TierBenefits
    progress: TierProgress
    age_cap: float
    next_age_cap_day: int | None
    next_age_cap: float | None


class XnScoreService:
    """Entry point for all XnScore operations.

    Args:
        store: Event store; in-memory when omitted.
        members: Member registry.
        circles: Circle directory (external collaborator).
        disbursement: Payment rail for advances (external collaborator).
        audit_sink: Audit destination; in-memory when omitted.
        policy: Scoring policy.
        clock: Time source shared by every component.
        vouch_repository: Vouch storage; in-memory when omitted.
        endorsement_repository: Endorsement storage; in-memory when omitted.
    """

    def __init__(
        self,
        store: EventStore | None = None,
        members: MemberRegistry | None = None,
        circles: CircleDirectory | None = None,
        disbursement: Disbursement | None = None,
        audit_sink: AuditSink | None = None,
        policy: ScoringPolicy = DEFAULT_POLICY,
        clock: Clock = utc_now,
        vouch_repository: VouchRepository | None = None,
        endorsement_repository: EndorsementRepository | None = None,
    ) -> None:
        self.policy = policy
        self.clock = clock
        self.store = store or InMemoryEventStore(
            clock=clock, max_clock_skew_seconds=policy.max_clock_skew_seconds
        )
        self.members = members or InMemoryMemberRegistry()
        self.circles = circles or InMemoryCircleDirectory()
        self.disbursement = disbursement or InMemoryDisbursement()
        self.audit_sink = audit_sink or InMemoryAuditSink()

        self.aggregator = ScoreAggregator(self.store, self.members, policy=policy, clock=clock)
        self.vouches = VouchLedger(
            self.store, self.aggregator.tier_for, policy, clock, repository=vouch_repository
        )
        self.aggregator.attach_vouches(self.vouches)
        self.cascade = VoucherCascade(self.store, self.vouches, clock)
        self.endorsements = EndorsementLedger(
            self.store, self.circles, policy, clock, repository=endorsement_repository
        )
        self.gate = EligibilityGate(self.aggregator, self.members, self.circles, clock)

    @classmethod
    def from_config(cls, config: EngineConfig, **kwargs: Any) -> XnScoreService:
        """Build a service from environment configuration.

        With a database URL, every durable component shares one engine: the
        event store, member registry, circle directory and both ledgers'
        repositories. Components passed in ``kwargs`` are kept as given.
        """
        clock = kwargs.get("clock", utc_now)
        if config.database_url:
            engine = create_db_engine(config.database_url)
            if "store" not in kwargs:
                kwargs["store"] = SqlEventStore(
                    engine,
                    clock=clock,
                    max_clock_skew_seconds=config.policy.max_clock_skew_seconds,
                )
            if "members" not in kwargs:
                kwargs["members"] = SqlMemberRegistry(engine)
            if "circles" not in kwargs:
                kwargs["circles"] = SqlCircleDirectory(engine)
            if "vouch_repository" not in kwargs:
                kwargs["vouch_repository"] = SqlVouchRepository(engine)
            if "endorsement_repository" not in kwargs:
                kwargs["endorsement_repository"] = SqlEndorsementRepository(engine)
        return cls(policy=config.policy, **kwargs)

    # Members

    def register_member(
        self,
        member_id: str,
        display_name: str = "",
        account_created_at: datetime | None = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> Member:
        """Register a member; re-registering returns the existing record."""
        member = self.members.register(
            Member(
                member_id=member_id,
                display_name=display_name,
                account_created_at=account_created_at or self.clock(),
            )
        )
        self._audit("member.registered", "member", member_id, actor)
        return member

    def deactivate_member(self, member_id: str, actor: Actor = SYSTEM_ACTOR) -> Member:
        member = self.members.deactivate(member_id)
        self._audit("member.deactivated", "member", member_id, actor)
        return member

    # Events and scores

    def record_event(self, event: ScoreEvent, actor: Actor = SYSTEM_ACTOR) -> str:
        """Append an event for a registered member.

        A CIRCLE_JOINED event also records the membership in the circle
        directory; a CIRCLE_DEFAULTED event cascades to the defaulter's
        vouchers.

        Raises:
            MemberNotFoundError: If the member is not registered.
            ValidationError: If the event is malformed or its kind is written
                only by the vouch and endorsement ledgers.
            StorageUnavailableError: If the store cannot be written.
        """
        if event.kind in LEDGER_OWNED_KINDS:
            raise ValidationError(
                code="LEDGER_OWNED_KIND",
                message=f"{event.kind.value} events are recorded by the vouch and "
                "endorsement endpoints only",
                details={"event_id": event.event_id, "kind": event.kind.value},
            )
        self.members.get(event.member_id)
        event_id = self.store.append(event)
        self._audit(
            "score_event.appended",
            "score_event",
            event_id,
            actor,
            {"member_id": event.member_id, "kind": event.kind.value},
        )
        if event.kind == ScoreEventKind.CIRCLE_JOINED:
            self._record_membership(event)
        elif event.kind == ScoreEventKind.CIRCLE_DEFAULTED:
            for impact in self.cascade.apply_default(event):
                self._audit(
                    "vouch.cascade_applied",
                    "score_event",
                    impact.event_id,
                    actor,
                    {
                        "voucher_id": impact.member_id,
                        "defaulter_id": event.member_id,
                        "vouch_id": impact.metadata["vouch_id"],
                    },
                )
        return event_id

    def score(self, member_id: str) -> ScoreSnapshot:
        return self.aggregator.compute_score(member_id)

    def recent_events(self, member_id: str, limit: int | None = None) -> list[ScoreEvent]:
        return self.aggregator.recent_events(member_id, limit)

    def tier_summary(self, member_id: str) -> TierSummary:
        snapshot = self.score(member_id)
        resolver = self.aggregator.resolver
        milestone = self.policy.next_age_cap_milestone(snapshot.account_age_days)
        return TierSummary(
            member_id=member_id,
            score=snapshot.score,
            display_score=snapshot.display_score,
            tier=snapshot.tier,
            benefits=resolver.benefits(snapshot.tier),
            progress=resolver.progress_to_next_tier(snapshot.score),
            age_cap=snapshot.age_cap,
            next_age_cap_day=milestone[0] if milestone else None,
            next_age_cap=milestone[1] if milestone else None,
        )

    # Vouches and endorsements

    def issue_vouch(
        self,
        elder_id: str,
        recipient_id: str,
        points: float,
        ttl: timedelta,
        actor: Actor = SYSTEM_ACTOR,
    ) -> Vouch:
        """Issue a vouch to a registered recipient.

        Raises:
            MemberNotFoundError: If the recipient is not registered.
            VouchError: If the vouch is rejected.
        """
        self.members.get(recipient_id)
        vouch_id = self.vouches.issue_vouch(elder_id, recipient_id, points, ttl)
        vouch = self.vouches.get(vouch_id)
        self._audit(
            "vouch.issued",
            "vouch",
            vouch_id,
            actor,
            {"voucher_id": elder_id, "recipient_id": recipient_id, "points": points},
        )
        return vouch

    def revoke_vouch(
        self,
        vouch_id: str,
        actor_id: str,
        is_admin: bool = False,
        actor: Actor = SYSTEM_ACTOR,
    ) -> Vouch:
        vouch = self.vouches.revoke(vouch_id, actor_id, is_admin=is_admin)
        self._audit(
            "vouch.revoked",
            "vouch",
            vouch_id,
            actor,
            {"revoked_by": actor_id, "recipient_id": vouch.recipient_id},
        )
        return vouch

    def endorse(
        self,
        from_member_id: str,
        to_member_id: str,
        circle_id: str,
        message: str = "",
        actor: Actor = SYSTEM_ACTOR,
    ) -> Endorsement:
        self.members.get(from_member_id)
        self.members.get(to_member_id)
        endorsement = self.endorsements.record(from_member_id, to_member_id, circle_id, message)
        self._audit(
            "endorsement.recorded",
            "endorsement",
            endorsement.endorsement_id,
            actor,
            {"from_member_id": from_member_id, "to_member_id": to_member_id},
        )
        return endorsement

    def voucher_standing(self, member_id: str) -> VoucherStanding:
        """Reliability standing of ``member_id`` as a voucher."""
        self.members.get(member_id)
        return self.cascade.standing(member_id)

    # Circles

    def upsert_circle(self, circle: Circle, actor: Actor = SYSTEM_ACTOR) -> Circle:
        """Insert or update a circle's policy; known members keep their join dates."""
        stored = self.circles.add(circle)
        self._audit(
            "circle.upserted",
            "circle",
            circle.circle_id,
            actor,
            {"min_xn_score": circle.min_xn_score, "max_members": circle.max_members},
        )
        return stored

    def get_circle(self, circle_id: str) -> Circle:
        return self.circles.get(circle_id)

    # Eligibility and advances

    def can_join(self, member_id: str, circle_id: str) -> EligibilityDecision:
        return self.gate.can_join(member_id, circle_id)

    def request_advance(
        self, member_id: str, amount: float, actor: Actor = SYSTEM_ACTOR
    ) -> AdvanceReceipt:
        """Disburse an advance if the member's tier allows it.

        Raises:
            EligibilityDeniedError: If the gate rejects the request.
        """
        decision = self.gate.can_request_advance(member_id, amount)
        if not decision.eligible or decision.tier is None:
            raise EligibilityDeniedError("advance", [r.value for r in decision.reasons])
        apr = self.aggregator.resolver.benefits(decision.tier).advance_apr_pct or 0.0
        receipt = self.disbursement.disburse_advance(member_id, amount, apr, self.clock())
        self._audit(
            "advance.disbursed",
            "advance",
            receipt.advance_id,
            actor,
            {"member_id": member_id, "amount": amount, "apr_pct": apr},
        )
        return receipt

    def _record_membership(self, event: ScoreEvent) -> None:
        circle_id = event.circle_id
        if circle_id is None or self.circles.find(circle_id) is None:
            logger.warning(
                "Join recorded for a circle not in the directory",
                extra={"member_id": event.member_id, "circle_id": circle_id},
            )
            return
        self.circles.add_member(circle_id, event.member_id, event.timestamp)

    def _audit(
        self,
        action: str,
        resource_type: str,
        resource_id: str,
        actor: Actor,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.audit_sink.emit(
            build_audit_event(
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                actor_id=actor.actor_id,
                actor_role=actor.role,
                request_id=actor.request_id,
                details=details,
                occurred_at=self.clock(),
            )
        )
