"""Vouch and endorsement models."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class VouchStatus(StrEnum):
    """Vouch lifecycle: active -> revoked | expired."""

    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


class Vouch(BaseModel):
    """Time-bounded score boost granted by an Elder.

    The stored status only records explicit transitions; expiry is computed
    lazily by ``status_at`` so no scheduler precision is needed.
    """

    model_config = ConfigDict(frozen=True)

    vouch_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    voucher_id: str = Field(..., min_length=1)
    recipient_id: str = Field(..., min_length=1)
    points_granted: float = Field(..., gt=0)
    issued_at: datetime
    expires_at: datetime
    status: VouchStatus = VouchStatus.ACTIVE
    revoked_at: datetime | None = None
    revoked_by: str | None = None

    def status_at(self, now: datetime) -> VouchStatus:
        """Effective status at ``now``."""
        if self.status == VouchStatus.ACTIVE and now > self.expires_at:
            return VouchStatus.EXPIRED
        return self.status

    def is_active(self, now: datetime) -> bool:
        return self.status_at(now) == VouchStatus.ACTIVE


class Endorsement(BaseModel):
    """Peer testimonial. Carries no points on its own."""

    model_config = ConfigDict(frozen=True)

    endorsement_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    from_member_id: str = Field(..., min_length=1)
    to_member_id: str = Field(..., min_length=1)
    circle_id: str = Field(..., min_length=1)
    message: str = ""
    issued_at: datetime
