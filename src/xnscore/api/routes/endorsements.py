"""Endorsement route for the XnScore API."""

from fastapi import APIRouter
from pydantic import BaseModel, Field

from xnscore.api.auth import RequireActor, enforce_policy
from xnscore.api.deps import ServiceDep

router = APIRouter(prefix="/v1", tags=["Endorsements"])


class CreateEndorsementRequest(BaseModel):
    """Request body for POST /v1/endorsements."""

    to_member_id: str = Field(..., min_length=1)
    circle_id: str = Field(..., min_length=1)
    message: str = Field(default="", max_length=500)
    from_member_id: str | None = Field(default=None, description="Defaults to the caller")


class EndorsementResponse(BaseModel):
    endorsement_id: str
    from_member_id: str
    to_member_id: str
    circle_id: str
    message: str
    issued_at: str


@router.post("/endorsements", response_model=EndorsementResponse, status_code=201)
def create_endorsement(
    request_body: CreateEndorsementRequest,
    actor: RequireActor,
    service: ServiceDep,
) -> EndorsementResponse:
    """Endorse a fellow circle member after the minimum shared tenure."""
    from_member_id = request_body.from_member_id or actor.actor_id
    enforce_policy(actor, "createEndorsement", member_id=from_member_id)
    endorsement = service.endorse(
        from_member_id=from_member_id,
        to_member_id=request_body.to_member_id,
        circle_id=request_body.circle_id,
        message=request_body.message,
        actor=actor.as_actor(),
    )
    return EndorsementResponse(
        endorsement_id=endorsement.endorsement_id,
        from_member_id=endorsement.from_member_id,
        to_member_id=endorsement.to_member_id,
        circle_id=endorsement.circle_id,
        message=endorsement.message,
        issued_at=endorsement.issued_at.isoformat(),
    )
