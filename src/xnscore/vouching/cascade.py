"""Voucher cascade.

When a member defaults on a circle, every Elder holding an active vouch for
that member shares the consequence. A VOUCHEE_DEFAULTED event is appended to
the Elder's own log; the aggregator turns it into a penalty inside the
history window, and it counts toward the Elder's reliability standing.
"""

from __future__ import annotations

import logging
import threading
import uuid

from xnscore.clock import Clock, utc_now
from xnscore.events.store import EventStore
from xnscore.models.score_event import ScoreEvent, ScoreEventKind
from xnscore.vouching.ledger import VouchLedger
from xnscore.vouching.standing import VoucherStanding, voucher_standing

logger = logging.getLogger(__name__)

_CASCADE_NAMESPACE = uuid.UUID("6f1c2b52-3f0e-4c55-9d4e-2a7d7f0b8c11")


class VoucherCascade:
    """Applies a vouchee's default to the Elders vouching for them.

    Args:
        store: Event store receiving the Elders' VOUCHEE_DEFAULTED events.
        vouches: Vouch ledger, for the defaulter's active vouches.
        clock: Time source.
    """

    def __init__(self, store: EventStore, vouches: VouchLedger, clock: Clock = utc_now) -> None:
        self._store = store
        self._vouches = vouches
        self._clock = clock
        self._lock = threading.Lock()

    def apply_default(self, default_event: ScoreEvent) -> list[ScoreEvent]:
        """Record the default against every Elder with an active vouch for the defaulter.

        Re-applying the same circle's default (a retried report) records
        nothing new.

        Returns:
            The VOUCHEE_DEFAULTED events appended.

        Raises:
            StorageUnavailableError: If an Elder's log cannot be read or written.
        """
        if default_event.kind != ScoreEventKind.CIRCLE_DEFAULTED:
            return []
        defaulter_id = default_event.member_id
        circle_id = default_event.circle_id or ""
        appended: list[ScoreEvent] = []
        with self._lock:
            for vouch in self._vouches.active_vouches_for(defaulter_id, self._clock()):
                recorded = self._store.history(
                    vouch.voucher_id, kind=ScoreEventKind.VOUCHEE_DEFAULTED
                )
                if any(
                    e.metadata.get("vouch_id") == vouch.vouch_id
                    and (e.circle_id or "") == circle_id
                    for e in recorded
                ):
                    continue
                event = ScoreEvent(
                    event_id=str(
                        uuid.uuid5(_CASCADE_NAMESPACE, f"{vouch.vouch_id}:{circle_id}")
                    ),
                    member_id=vouch.voucher_id,
                    kind=ScoreEventKind.VOUCHEE_DEFAULTED,
                    timestamp=default_event.timestamp,
                    magnitude=1.0,
                    metadata={
                        "vouch_id": vouch.vouch_id,
                        "defaulter_id": defaulter_id,
                        "circle_id": circle_id,
                        "default_event_id": default_event.event_id,
                    },
                )
                self._store.append(event)
                appended.append(event)

        for event in appended:
            logger.info(
                "Vouchee default recorded against Elder",
                extra={
                    "voucher_id": event.member_id,
                    "defaulter_id": defaulter_id,
                    "circle_id": circle_id,
                    "vouch_id": event.metadata["vouch_id"],
                },
            )
        return appended

    def standing(self, member_id: str) -> VoucherStanding:
        """Current standing of ``member_id`` as a voucher."""
        history = self._store.history(member_id, kind=ScoreEventKind.VOUCHEE_DEFAULTED)
        return voucher_standing(member_id, list(history), self._clock())
