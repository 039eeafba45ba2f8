"""Member routes for the XnScore API.

Provides:
- POST /v1/members (integration only)
- GET /v1/members/{member_id}/score
- GET /v1/members/{member_id}/tier
- GET /v1/members/{member_id}/vouches

Scores are read-only here: they are derived from the event log and never
accepted from callers.
"""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from xnscore.api.auth import RequireActor, enforce_policy
from xnscore.api.deps import ServiceDep
from xnscore.api.routes.vouches import VouchResponse
from xnscore.errors import EventStoreUnavailableError
from xnscore.models.score_event import ScoreEvent
from xnscore.models.snapshot import ScoreSnapshot

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["Members"])


class CreateMemberRequest(BaseModel):
    """Request body for POST /v1/members."""

    member_id: str = Field(..., min_length=1)
    display_name: str = ""
    account_created_at: datetime | None = None


class MemberResponse(BaseModel):
    member_id: str
    display_name: str
    account_created_at: str
    active: bool


class FactorBreakdown(BaseModel):
    factor: str
    raw_score: float
    max_score: float
    status: str
    components: dict[str, float]


class EventSummary(BaseModel):
    event_id: str
    kind: str
    timestamp: str
    magnitude: float
    metadata: dict[str, Any]

    @classmethod
    def from_event(cls, event: ScoreEvent) -> "EventSummary":
        return cls(
            event_id=event.event_id,
            kind=event.kind.value,
            timestamp=event.timestamp.isoformat(),
            magnitude=event.magnitude,
            metadata=event.metadata,
        )


class ScoreResponse(BaseModel):
    """Score view consumed by the presentation layer."""

    member_id: str
    score: float
    display_score: float
    raw_score: float
    tier: int
    tier_label: str
    age_cap: float
    age_cap_applied: bool
    account_age_days: float
    breakdown: list[FactorBreakdown]
    bonuses: dict[str, float]
    penalties: dict[str, float]
    has_unresolved_default: bool
    stale: bool
    computed_at: str
    recent_events: list[EventSummary]


class TierBenefitsResponse(BaseModel):
    can_join_circles: bool
    min_payout_slot: int | None
    last_slots_only: int | None
    early_withdrawal_fee_pct: float | None
    late_bonus_pct: float
    advance_limit: float
    advance_apr_pct: float | None
    description: str


class TierResponse(BaseModel):
    member_id: str
    score: float
    display_score: float
    tier: int
    tier_label: str
    benefits: TierBenefitsResponse
    next_tier: int | None
    points_to_next_tier: float
    progress_pct: int
    age_cap: float
    next_age_cap_day: int | None
    next_age_cap: float | None


class MemberVouchesResponse(BaseModel):
    member_id: str
    active_points: float
    received: list[VouchResponse]
    issued: list[VouchResponse]
    reliability_status: str
    vouchee_defaults: int
    can_vouch: bool


def _score_response(snapshot: ScoreSnapshot, recent: list[ScoreEvent]) -> ScoreResponse:
    return ScoreResponse(
        member_id=snapshot.member_id,
        score=snapshot.score,
        display_score=snapshot.display_score,
        raw_score=snapshot.raw_score,
        tier=int(snapshot.tier),
        tier_label=snapshot.tier.label,
        age_cap=snapshot.age_cap,
        age_cap_applied=snapshot.age_cap_applied,
        account_age_days=snapshot.account_age_days,
        breakdown=[
            FactorBreakdown(
                factor=factor.factor.value,
                raw_score=factor.raw_score,
                max_score=factor.max_score,
                status=factor.status.value,
                components=factor.components,
            )
            for factor in snapshot.factor_breakdown.values()
        ],
        bonuses=snapshot.bonuses,
        penalties=snapshot.penalties,
        has_unresolved_default=snapshot.has_unresolved_default,
        stale=snapshot.stale,
        computed_at=snapshot.computed_at.isoformat(),
        recent_events=[EventSummary.from_event(e) for e in recent],
    )


@router.post("/members", response_model=MemberResponse, status_code=201)
def create_member(
    request_body: CreateMemberRequest,
    actor: RequireActor,
    service: ServiceDep,
) -> MemberResponse:
    """Register a member. Re-registering an id returns the existing record."""
    enforce_policy(actor, "createMember")
    member = service.register_member(
        member_id=request_body.member_id,
        display_name=request_body.display_name,
        account_created_at=request_body.account_created_at,
        actor=actor.as_actor(),
    )
    return MemberResponse(
        member_id=member.member_id,
        display_name=member.display_name,
        account_created_at=member.account_created_at.isoformat(),
        active=member.active,
    )


@router.get("/members/{member_id}/score", response_model=ScoreResponse)
def get_member_score(member_id: str, actor: RequireActor, service: ServiceDep) -> ScoreResponse:
    """Current score, factor breakdown and recent score-relevant events."""
    enforce_policy(actor, "getMemberScore", member_id=member_id)
    snapshot = service.score(member_id)
    recent: list[ScoreEvent] = []
    if not snapshot.stale:
        try:
            recent = service.recent_events(member_id)
        except EventStoreUnavailableError as exc:
            logger.warning(
                "Recent events unavailable: %s", exc, extra={"member_id": member_id}
            )
    return _score_response(snapshot, recent)


@router.get("/members/{member_id}/tier", response_model=TierResponse)
def get_member_tier(member_id: str, actor: RequireActor, service: ServiceDep) -> TierResponse:
    """Tier, its benefits, and progress toward the next tier and age cap."""
    enforce_policy(actor, "getMemberTier", member_id=member_id)
    summary = service.tier_summary(member_id)
    benefits = summary.benefits
    return TierResponse(
        member_id=member_id,
        score=summary.score,
        display_score=summary.display_score,
        tier=int(summary.tier),
        tier_label=summary.tier.label,
        benefits=TierBenefitsResponse(
            can_join_circles=benefits.can_join_circles,
            min_payout_slot=benefits.min_payout_slot,
            last_slots_only=benefits.last_slots_only,
            early_withdrawal_fee_pct=benefits.early_withdrawal_fee_pct,
            late_bonus_pct=benefits.late_bonus_pct,
            advance_limit=benefits.advance_limit,
            advance_apr_pct=benefits.advance_apr_pct,
            description=benefits.description,
        ),
        next_tier=(
            int(summary.progress.next_tier) if summary.progress.next_tier is not None else None
        ),
        points_to_next_tier=summary.progress.points_needed,
        progress_pct=summary.progress.progress_pct,
        age_cap=summary.age_cap,
        next_age_cap_day=summary.next_age_cap_day,
        next_age_cap=summary.next_age_cap,
    )


@router.get("/members/{member_id}/vouches", response_model=MemberVouchesResponse)
def list_member_vouches(
    member_id: str, actor: RequireActor, service: ServiceDep
) -> MemberVouchesResponse:
    """Active vouches received and all vouches issued by the member."""
    enforce_policy(actor, "listMemberVouches", member_id=member_id)
    service.members.get(member_id)
    now = service.clock()
    received = service.vouches.active_vouches_for(member_id, now)
    issued = service.vouches.vouches_issued_by(member_id)
    standing = service.voucher_standing(member_id)
    return MemberVouchesResponse(
        member_id=member_id,
        active_points=sum(v.points_granted for v in received),
        received=[VouchResponse.from_vouch(v, v.status_at(now).value) for v in received],
        issued=[VouchResponse.from_vouch(v, v.status_at(now).value) for v in issued],
        reliability_status=standing.reliability_status.value,
        vouchee_defaults=standing.vouchee_defaults,
        can_vouch=standing.can_vouch,
    )
