"""Member model and registry.

Score and tier are never stored on the member; they are derived from the
event log by the aggregator.
"""

from __future__ import annotations

import math
import threading
from datetime import datetime
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from xnscore.errors import MemberNotFoundError

SECONDS_PER_DAY = 86_400


class Member(BaseModel):
    """Registered member identity."""

    model_config = ConfigDict(frozen=True)

    member_id: str = Field(..., min_length=1)
    display_name: str = ""
    account_created_at: datetime
    active: bool = True

    def account_age_days(self, now: datetime) -> float:
        """Fractional account age in days at ``now`` (never negative)."""
        delta = (now - self.account_created_at).total_seconds() / SECONDS_PER_DAY
        return max(delta, 0.0)

    def whole_account_age_days(self, now: datetime) -> int:
        """Account age in completed days."""
        return math.floor(self.account_age_days(now))


@runtime_checkable
class MemberRegistry(Protocol):
    """Member lookup and registration. Members are never deleted, only deactivated."""

    def register(self, member: Member) -> Member: ...

    def get(self, member_id: str) -> Member: ...

    def find(self, member_id: str) -> Member | None: ...

    def deactivate(self, member_id: str) -> Member: ...


class InMemoryMemberRegistry:
    """Thread-safe in-memory member registry.

    Members are never deleted, only deactivated.
    """

    def __init__(self) -> None:
        self._members: dict[str, Member] = {}
        self._lock = threading.Lock()

    def register(self, member: Member) -> Member:
        """Register a member, or return the existing record for the same id."""
        with self._lock:
            existing = self._members.get(member.member_id)
            if existing is not None:
                return existing
            self._members[member.member_id] = member
            return member

    def get(self, member_id: str) -> Member:
        """Return the member.

        Raises:
            MemberNotFoundError: If the member is not registered.
        """
        with self._lock:
            member = self._members.get(member_id)
        if member is None:
            raise MemberNotFoundError(member_id)
        return member

    def find(self, member_id: str) -> Member | None:
        """Return the member, or None when unknown."""
        with self._lock:
            return self._members.get(member_id)

    def deactivate(self, member_id: str) -> Member:
        """Mark a member inactive."""
        with self._lock:
            member = self._members.get(member_id)
            if member is None:
                raise MemberNotFoundError(member_id)
            updated = member.model_copy(update={"active": False})
            self._members[member_id] = updated
            return updated
