"""Eligibility routes for the XnScore API.

Provides GET /v1/eligibility and GET /v1/eligibility/payout-slot. Both
always answer 200 with a reason list; an unknown member, circle or
unavailable score yields eligible=false, never an error.
"""

from fastapi import APIRouter, Query
from pydantic import BaseModel

from xnscore.api.auth import RequireActor, enforce_policy
from xnscore.api.deps import ServiceDep
from xnscore.eligibility.gate import EligibilityDecision

router = APIRouter(prefix="/v1", tags=["Eligibility"])


class EligibilityResponse(BaseModel):
    member_id: str
    circle_id: str
    eligible: bool
    reasons: list[str]
    tier: int | None = None
    score: float | None = None
    slot: int | None = None


def _response(
    member_id: str, circle_id: str, decision: EligibilityDecision, slot: int | None = None
) -> EligibilityResponse:
    return EligibilityResponse(
        member_id=member_id,
        circle_id=circle_id,
        eligible=decision.eligible,
        reasons=[r.value for r in decision.reasons],
        tier=int(decision.tier) if decision.tier is not None else None,
        score=decision.score,
        slot=slot,
    )


@router.get("/eligibility", response_model=EligibilityResponse)
def check_eligibility(
    actor: RequireActor,
    service: ServiceDep,
    member_id: str = Query(..., min_length=1),
    circle_id: str = Query(..., min_length=1),
) -> EligibilityResponse:
    """Whether the member may join the circle."""
    enforce_policy(actor, "checkEligibility", member_id=member_id)
    return _response(member_id, circle_id, service.can_join(member_id, circle_id))


@router.get("/eligibility/payout-slot", response_model=EligibilityResponse)
def check_payout_slot(
    actor: RequireActor,
    service: ServiceDep,
    member_id: str = Query(..., min_length=1),
    circle_id: str = Query(..., min_length=1),
    slot: int = Query(...),
) -> EligibilityResponse:
    """Whether the member's tier allows the payout slot in the circle."""
    enforce_policy(actor, "checkEligibility", member_id=member_id)
    decision = service.gate.can_take_payout_slot(member_id, circle_id, slot)
    return _response(member_id, circle_id, decision, slot)
