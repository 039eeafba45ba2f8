"""Circle directory.

Circles are owned by an external service; the engine keeps a copy of their
policy (minimum XnScore, capacity, contribution) and membership, upserted by
integration callers and fed by CIRCLE_JOINED events. The in-memory directory
backs tests and the CLI; the SQL directory in ``xnscore.persistence`` backs
deployments with a database.
"""

from __future__ import annotations

import math
import threading
from datetime import datetime
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from xnscore.errors import CircleNotFoundError


class Circle(BaseModel):
    """Read-only view of a savings circle."""

    model_config = ConfigDict(frozen=True)

    circle_id: str = Field(..., min_length=1)
    name: str = ""
    min_xn_score: float = Field(default=0.0, ge=0.0, le=100.0)
    max_members: int = Field(..., ge=1)
    contribution_amount: float = Field(default=0.0, ge=0.0)
    members: dict[str, datetime] = Field(
        default_factory=dict, description="member_id -> joined_at"
    )

    @property
    def spots_remaining(self) -> int:
        return max(self.max_members - len(self.members), 0)

    @property
    def is_full(self) -> bool:
        return self.spots_remaining == 0

    def is_member(self, member_id: str) -> bool:
        return member_id in self.members

    def shared_tenure_days(self, member_a: str, member_b: str, now: datetime) -> int | None:
        """Whole days both members have been in the circle together, or None."""
        joined_a = self.members.get(member_a)
        joined_b = self.members.get(member_b)
        if joined_a is None or joined_b is None:
            return None
        seconds = (now - max(joined_a, joined_b)).total_seconds()
        return max(math.floor(seconds / 86_400), 0)


@runtime_checkable
class CircleDirectory(Protocol):
    """Local view of the external circle service."""

    def add(self, circle: Circle) -> Circle: ...

    def get(self, circle_id: str) -> Circle: ...

    def find(self, circle_id: str) -> Circle | None: ...

    def add_member(self, circle_id: str, member_id: str, joined_at: datetime) -> Circle: ...


def merge_circle(existing: Circle | None, incoming: Circle) -> Circle:
    """Incoming policy fields with the union of both member maps.

    A member already present keeps the original join date.
    """
    if existing is None:
        return incoming
    return incoming.model_copy(update={"members": {**incoming.members, **existing.members}})


class InMemoryCircleDirectory:
    """Thread-safe in-memory circle directory."""

    def __init__(self, circles: list[Circle] | None = None) -> None:
        self._circles: dict[str, Circle] = {c.circle_id: c for c in circles or []}
        self._lock = threading.Lock()

    def add(self, circle: Circle) -> Circle:
        """Insert or update a circle. Existing members keep their join dates."""
        with self._lock:
            merged = merge_circle(self._circles.get(circle.circle_id), circle)
            self._circles[circle.circle_id] = merged
        return merged

    def get(self, circle_id: str) -> Circle:
        """Return the circle.

        Raises:
            CircleNotFoundError: If the circle is unknown.
        """
        circle = self.find(circle_id)
        if circle is None:
            raise CircleNotFoundError(circle_id)
        return circle

    def find(self, circle_id: str) -> Circle | None:
        with self._lock:
            return self._circles.get(circle_id)

    def add_member(self, circle_id: str, member_id: str, joined_at: datetime) -> Circle:
        """Record a member joining. Re-adding keeps the original join date."""
        with self._lock:
            circle = self._circles.get(circle_id)
            if circle is None:
                raise CircleNotFoundError(circle_id)
            if member_id in circle.members:
                return circle
            updated = circle.model_copy(
                update={"members": {**circle.members, member_id: joined_at}}
            )
            self._circles[circle_id] = updated
            return updated
