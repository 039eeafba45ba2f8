"""Advance request route for the XnScore API.

Provides POST /v1/advances. The tier decides the ceiling and APR; the
transfer itself is delegated to the disbursement collaborator.
"""

from fastapi import APIRouter
from pydantic import BaseModel, Field

from xnscore.api.auth import RequireActor, enforce_policy
from xnscore.api.deps import ServiceDep

router = APIRouter(prefix="/v1", tags=["Advances"])


class AdvanceRequest(BaseModel):
    """Request body for POST /v1/advances."""

    amount: float = Field(..., gt=0)
    member_id: str | None = Field(default=None, description="Defaults to the caller")


class AdvanceResponse(BaseModel):
    advance_id: str
    member_id: str
    amount: float
    apr_pct: float
    disbursed_at: str


@router.post("/advances", response_model=AdvanceResponse, status_code=201)
def request_advance(
    request_body: AdvanceRequest,
    actor: RequireActor,
    service: ServiceDep,
) -> AdvanceResponse:
    """Request a tier-gated advance. Denials return 403 ELIGIBILITY_DENIED with reasons."""
    member_id = request_body.member_id or actor.actor_id
    enforce_policy(actor, "requestAdvance", member_id=member_id)
    receipt = service.request_advance(member_id, request_body.amount, actor=actor.as_actor())
    return AdvanceResponse(
        advance_id=receipt.advance_id,
        member_id=receipt.member_id,
        amount=receipt.amount,
        apr_pct=receipt.apr_pct,
        disbursed_at=receipt.disbursed_at.isoformat(),
    )
