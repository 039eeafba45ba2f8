"""Vouch routes for the XnScore API.

Provides POST /v1/vouches and DELETE /v1/vouches/{vouch_id}.

Members holding an Elite or Excellent tier issue vouches for themselves;
admins may issue on behalf of an Elder and revoke any vouch.
"""

from datetime import timedelta

from fastapi import APIRouter
from pydantic import BaseModel, Field

from xnscore.api.auth import RequireActor, enforce_policy
from xnscore.api.deps import ServiceDep
from xnscore.models.vouch import Vouch

router = APIRouter(prefix="/v1", tags=["Vouches"])


class IssueVouchRequest(BaseModel):
    """Request body for POST /v1/vouches."""

    recipient_id: str = Field(..., min_length=1)
    points: float
    ttl_days: float = Field(..., gt=0, le=3650, allow_inf_nan=False)
    elder_id: str | None = Field(default=None, description="Defaults to the caller")


class VouchResponse(BaseModel):
    vouch_id: str
    voucher_id: str
    recipient_id: str
    points_granted: float
    issued_at: str
    expires_at: str
    status: str
    revoked_at: str | None = None
    revoked_by: str | None = None

    @classmethod
    def from_vouch(cls, vouch: Vouch, status: str | None = None) -> "VouchResponse":
        return cls(
            vouch_id=vouch.vouch_id,
            voucher_id=vouch.voucher_id,
            recipient_id=vouch.recipient_id,
            points_granted=vouch.points_granted,
            issued_at=vouch.issued_at.isoformat(),
            expires_at=vouch.expires_at.isoformat(),
            status=status or vouch.status.value,
            revoked_at=vouch.revoked_at.isoformat() if vouch.revoked_at else None,
            revoked_by=vouch.revoked_by,
        )


@router.post("/vouches", response_model=VouchResponse, status_code=201)
def issue_vouch(
    request_body: IssueVouchRequest,
    actor: RequireActor,
    service: ServiceDep,
) -> VouchResponse:
    """Issue a vouch from an Elder to a recipient."""
    elder_id = request_body.elder_id or actor.actor_id
    enforce_policy(actor, "issueVouch", member_id=elder_id)

    vouch = service.issue_vouch(
        elder_id=elder_id,
        recipient_id=request_body.recipient_id,
        points=request_body.points,
        ttl=timedelta(days=request_body.ttl_days),
        actor=actor.as_actor(),
    )
    return VouchResponse.from_vouch(vouch)


@router.delete("/vouches/{vouch_id}", response_model=VouchResponse)
def revoke_vouch(vouch_id: str, actor: RequireActor, service: ServiceDep) -> VouchResponse:
    """Revoke an active vouch. Only the issuing Elder or an admin may revoke."""
    enforce_policy(actor, "revokeVouch")
    vouch = service.revoke_vouch(
        vouch_id,
        actor_id=actor.actor_id,
        is_admin=actor.is_admin,
        actor=actor.as_actor(),
    )
    return VouchResponse.from_vouch(vouch)
