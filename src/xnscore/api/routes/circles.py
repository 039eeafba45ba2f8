"""Circle directory routes for the XnScore API.

Provides:
- PUT /v1/circles/{circle_id} (integration only)
- GET /v1/circles/{circle_id}

The circle service owns circles; these routes keep the engine's copy of a
circle's policy in sync. Membership follows CIRCLE_JOINED events, and
members listed in a PUT are added with their join dates.
"""

from fastapi import APIRouter
from pydantic import AwareDatetime, BaseModel, Field

from xnscore.api.auth import RequireActor, enforce_policy
from xnscore.api.deps import ServiceDep
from xnscore.circles.directory import Circle

router = APIRouter(prefix="/v1", tags=["Circles"])


class UpsertCircleRequest(BaseModel):
    """Request body for PUT /v1/circles/{circle_id}."""

    name: str = ""
    min_xn_score: float = Field(default=0.0, ge=0.0, le=100.0, allow_inf_nan=False)
    max_members: int = Field(..., ge=1)
    contribution_amount: float = Field(default=0.0, ge=0.0, allow_inf_nan=False)
    members: dict[str, AwareDatetime] = Field(
        default_factory=dict, description="member_id -> joined_at"
    )


class CircleMemberResponse(BaseModel):
    member_id: str
    joined_at: str


class CircleResponse(BaseModel):
    circle_id: str
    name: str
    min_xn_score: float
    max_members: int
    contribution_amount: float
    spots_remaining: int
    members: list[CircleMemberResponse]

    @classmethod
    def from_circle(cls, circle: Circle) -> "CircleResponse":
        return cls(
            circle_id=circle.circle_id,
            name=circle.name,
            min_xn_score=circle.min_xn_score,
            max_members=circle.max_members,
            contribution_amount=circle.contribution_amount,
            spots_remaining=circle.spots_remaining,
            members=[
                CircleMemberResponse(member_id=member_id, joined_at=joined_at.isoformat())
                for member_id, joined_at in sorted(circle.members.items())
            ],
        )


@router.put("/circles/{circle_id}", response_model=CircleResponse)
def upsert_circle(
    circle_id: str,
    request_body: UpsertCircleRequest,
    actor: RequireActor,
    service: ServiceDep,
) -> CircleResponse:
    """Insert or update a circle's policy."""
    enforce_policy(actor, "upsertCircle")
    circle = service.upsert_circle(
        Circle(
            circle_id=circle_id,
            name=request_body.name,
            min_xn_score=request_body.min_xn_score,
            max_members=request_body.max_members,
            contribution_amount=request_body.contribution_amount,
            members=request_body.members,
        ),
        actor=actor.as_actor(),
    )
    return CircleResponse.from_circle(circle)


@router.get("/circles/{circle_id}", response_model=CircleResponse)
def get_circle(circle_id: str, actor: RequireActor, service: ServiceDep) -> CircleResponse:
    enforce_policy(actor, "getCircle")
    return CircleResponse.from_circle(service.get_circle(circle_id))
