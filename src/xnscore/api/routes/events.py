"""Score event ingestion route for the XnScore API.

Provides POST /v1/events for trusted internal callers (payment processing,
circle lifecycle, KYC). Events are validated and appended; re-posting the
same event_id is idempotent. Kinds written by the vouch and endorsement
ledgers are rejected with LEDGER_OWNED_KIND.
"""

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from xnscore.api.auth import RequireActor, enforce_policy
from xnscore.api.deps import ServiceDep
from xnscore.models.score_event import ScoreEvent, ScoreEventKind

router = APIRouter(prefix="/v1", tags=["Events"])


class AppendEventRequest(BaseModel):
    """Request body for POST /v1/events."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()), min_length=1)
    member_id: str = Field(..., min_length=1)
    kind: ScoreEventKind
    timestamp: datetime
    magnitude: float = 1.0
    metadata: dict[str, Any] = Field(default_factory=dict)


class AppendEventResponse(BaseModel):
    event_id: str
    member_id: str


@router.post("/events", response_model=AppendEventResponse, status_code=201)
def append_event(
    request_body: AppendEventRequest,
    actor: RequireActor,
    service: ServiceDep,
) -> AppendEventResponse:
    """Append a score event for a registered member."""
    enforce_policy(actor, "appendScoreEvent")
    event_id = service.record_event(
        ScoreEvent(**request_body.model_dump()),
        actor=actor.as_actor(),
    )
    return AppendEventResponse(event_id=event_id, member_id=request_body.member_id)
