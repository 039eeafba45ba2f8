"""Peer endorsement ledger.

Endorsements are testimonials between members who have shared a circle for
a minimum tenure. They carry no points directly; each recorded endorsement
appends an ENDORSEMENT_RECEIVED event that the Diversity & Social factor
counts (capped there).
"""

from __future__ import annotations

import logging

from xnscore.circles.directory import CircleDirectory
from xnscore.clock import Clock, utc_now
from xnscore.errors import EndorsementError
from xnscore.events.store import EventStore
from xnscore.models.score_event import ScoreEvent, ScoreEventKind
from xnscore.models.vouch import Endorsement
from xnscore.persistence.endorsements import EndorsementRepository, InMemoryEndorsementRepository
from xnscore.scoring.policy import DEFAULT_POLICY, ScoringPolicy

logger = logging.getLogger(__name__)


class EndorsementLedger:
    """Write-time enforcement of the endorsement rules.

    The repository claims the (from, to, circle) key before the event is
    appended, so duplicates are rejected even across processes.
    """

    def __init__(
        self,
        store: EventStore,
        circles: CircleDirectory,
        policy: ScoringPolicy = DEFAULT_POLICY,
        clock: Clock = utc_now,
        repository: EndorsementRepository | None = None,
    ) -> None:
        self._store = store
        self._circles = circles
        self._policy = policy
        self._clock = clock
        self._repository = (
            repository if repository is not None else InMemoryEndorsementRepository()
        )

    def record(
        self,
        from_member_id: str,
        to_member_id: str,
        circle_id: str,
        message: str = "",
    ) -> Endorsement:
        """Record an endorsement.

        Raises:
            CircleNotFoundError: If the circle is unknown.
            EndorsementError: SELF_ENDORSEMENT, NOT_CIRCLE_MEMBERS,
                INSUFFICIENT_SHARED_TENURE or DUPLICATE_ENDORSEMENT.
        """
        if from_member_id == to_member_id:
            raise EndorsementError("SELF_ENDORSEMENT", "Members cannot endorse themselves")

        circle = self._circles.get(circle_id)
        now = self._clock()
        shared_days = circle.shared_tenure_days(from_member_id, to_member_id, now)
        if shared_days is None:
            raise EndorsementError(
                "NOT_CIRCLE_MEMBERS",
                f"Both members must belong to circle {circle_id}",
            )
        required = self._policy.endorsement_min_shared_tenure_days
        if shared_days < required:
            raise EndorsementError(
                "INSUFFICIENT_SHARED_TENURE",
                f"Members have shared circle {circle_id} for {shared_days} days; "
                f"{required} required",
            )

        endorsement = Endorsement(
            from_member_id=from_member_id,
            to_member_id=to_member_id,
            circle_id=circle_id,
            message=message,
            issued_at=now,
        )
        if not self._repository.add(endorsement):
            raise EndorsementError(
                "DUPLICATE_ENDORSEMENT",
                f"{from_member_id} already endorsed {to_member_id} in circle {circle_id}",
            )
        try:
            self._store.append(
                ScoreEvent(
                    member_id=to_member_id,
                    kind=ScoreEventKind.ENDORSEMENT_RECEIVED,
                    timestamp=now,
                    metadata={
                        "endorsement_id": endorsement.endorsement_id,
                        "from_member_id": from_member_id,
                        "circle_id": circle_id,
                    },
                )
            )
        except Exception:
            # Compensation: release the key so the endorsement can be retried.
            self._repository.remove(endorsement.endorsement_id)
            raise

        logger.info(
            "Endorsement recorded",
            extra={
                "endorsement_id": endorsement.endorsement_id,
                "from_member_id": from_member_id,
                "to_member_id": to_member_id,
                "circle_id": circle_id,
            },
        )
        return endorsement

    def endorsements_for(self, member_id: str) -> list[Endorsement]:
        return sorted(self._repository.received_by(member_id), key=lambda e: e.issued_at)
