"""Elder vouch ledger.

An Elder (Elite or Excellent tier) may grant a time-bounded score boost to
another member. Limits come from the Elder's tier at issuance; a later tier
drop does not touch vouches already issued. An Elder whose vouchees have
defaulted too often, or who carries an unresolved default of their own,
cannot vouch.

Expiry is lazy: every read treats ``now > expires_at`` as expired, so no
scheduler is required for correctness. ``sweep_expired`` persists those
transitions and can be run periodically by the VouchSweeper.

Issuing and revoking append VOUCH_RECEIVED / VOUCH_REVOKED events for the
recipient so the recipient's cached score is invalidated.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from xnscore.clock import Clock, utc_now
from xnscore.errors import (
    MemberNotFoundError,
    StaleDataError,
    StorageUnavailableError,
    VouchError,
    VouchNotFoundError,
)
from xnscore.events.store import EventStore
from xnscore.models.score_event import ScoreEvent, ScoreEventKind
from xnscore.models.snapshot import Tier
from xnscore.models.vouch import Vouch, VouchStatus
from xnscore.persistence.vouches import InMemoryVouchRepository, VouchRepository
from xnscore.scoring.factors import unresolved_defaults
from xnscore.scoring.policy import DEFAULT_POLICY, ScoringPolicy
from xnscore.vouching.standing import voucher_standing

logger = logging.getLogger(__name__)

ElderTierLookup = Callable[[str], Tier]


class VouchLedger:
    """Thread-safe vouch ledger over a vouch repository.

    Args:
        store: Event store receiving the recipient's vouch events.
        elder_tier: Returns the current tier of a prospective Elder.
        policy: Scoring policy (Elder limits and per-recipient cap).
        clock: Time source.
        repository: Vouch storage. Defaults to in-memory.
    """

    def __init__(
        self,
        store: EventStore,
        elder_tier: ElderTierLookup,
        policy: ScoringPolicy = DEFAULT_POLICY,
        clock: Clock = utc_now,
        repository: VouchRepository | None = None,
    ) -> None:
        self._store = store
        self._elder_tier = elder_tier
        self._policy = policy
        self._clock = clock
        self._repository = repository if repository is not None else InMemoryVouchRepository()
        self._lock = threading.RLock()

    def issue_vouch(
        self,
        elder_id: str,
        recipient_id: str,
        points: float,
        ttl: timedelta,
    ) -> str:
        """Issue a vouch from ``elder_id`` to ``recipient_id``.

        Returns:
            The new vouch id.

        Raises:
            VouchError: If any issuance rule is violated. Nothing is recorded.
            EventStoreUnavailableError: If the vouch event cannot be stored.
            StorageUnavailableError: If the vouch cannot be persisted.
        """
        if elder_id == recipient_id:
            raise VouchError("SELF_VOUCH", "An Elder cannot vouch for themselves")
        if not math.isfinite(points) or points <= 0:
            raise VouchError("INVALID_POINTS", f"Vouch points must be positive, got {points}")
        if ttl <= timedelta(0):
            raise VouchError("INVALID_TTL", "Vouch time-to-live must be positive")

        # Resolved before taking the ledger lock: scoring reads this ledger.
        tier = self._lookup_elder_tier(elder_id)
        limits = self._policy.elder_limits_for(tier)
        if limits is None:
            raise VouchError(
                "NOT_ELDER", f"Member {elder_id} is {tier.label} tier and cannot vouch"
            )
        if points > limits.max_points_per_vouch:
            raise VouchError(
                "POINTS_EXCEED_ELDER_LIMIT",
                f"{tier.label} Elders may grant at most {limits.max_points_per_vouch} points",
            )
        self._check_standing(elder_id)

        with self._lock:
            now = self._clock()
            active_issued = [
                v for v in self._repository.issued_by(elder_id) if v.is_active(now)
            ]
            if any(v.recipient_id == recipient_id for v in active_issued):
                raise VouchError(
                    "DUPLICATE_VOUCH",
                    f"Elder {elder_id} already has an active vouch for {recipient_id}",
                )
            if len(active_issued) >= limits.max_concurrent_vouches:
                raise VouchError(
                    "CONCURRENT_LIMIT_REACHED",
                    f"Elder {elder_id} has reached {limits.max_concurrent_vouches} active vouches",
                )
            received = self._active_points_locked(recipient_id, now)
            if received + points > self._policy.max_vouch_points_per_member:
                raise VouchError(
                    "RECIPIENT_POINTS_CAP",
                    f"Recipient {recipient_id} would exceed "
                    f"{self._policy.max_vouch_points_per_member} vouch points",
                )

            vouch = Vouch(
                voucher_id=elder_id,
                recipient_id=recipient_id,
                points_granted=points,
                issued_at=now,
                expires_at=now + ttl,
            )
            self._repository.add(vouch)
            try:
                self._store.append(
                    ScoreEvent(
                        member_id=recipient_id,
                        kind=ScoreEventKind.VOUCH_RECEIVED,
                        timestamp=now,
                        magnitude=points,
                        metadata={"vouch_id": vouch.vouch_id, "voucher_id": elder_id},
                    )
                )
            except Exception:
                # Compensation: the vouch never took effect.
                self._repository.remove(vouch.vouch_id)
                raise

        logger.info(
            "Vouch issued",
            extra={
                "vouch_id": vouch.vouch_id,
                "voucher_id": elder_id,
                "recipient_id": recipient_id,
                "points": points,
            },
        )
        return vouch.vouch_id

    def revoke(self, vouch_id: str, actor_id: str, is_admin: bool = False) -> Vouch:
        """Revoke an active vouch.

        Only the issuing Elder or an admin may revoke.

        Raises:
            VouchNotFoundError: If the vouch id is unknown.
            VouchError: UNAUTHORIZED_REVOKE or NOT_ACTIVE.
        """
        with self._lock:
            vouch = self.get(vouch_id)
            if actor_id != vouch.voucher_id and not is_admin:
                raise VouchError(
                    "UNAUTHORIZED_REVOKE",
                    "Only the issuing Elder or an admin may revoke a vouch",
                )
            now = self._clock()
            status = vouch.status_at(now)
            if status != VouchStatus.ACTIVE:
                raise VouchError("NOT_ACTIVE", f"Vouch {vouch_id} is {status.value}")

            self._store.append(
                ScoreEvent(
                    member_id=vouch.recipient_id,
                    kind=ScoreEventKind.VOUCH_REVOKED,
                    timestamp=now,
                    magnitude=vouch.points_granted,
                    metadata={"vouch_id": vouch_id, "revoked_by": actor_id},
                )
            )
            revoked = vouch.model_copy(
                update={"status": VouchStatus.REVOKED, "revoked_at": now, "revoked_by": actor_id}
            )
            self._repository.save(revoked)

        logger.info(
            "Vouch revoked",
            extra={"vouch_id": vouch_id, "actor_id": actor_id, "is_admin": is_admin},
        )
        return revoked

    def get(self, vouch_id: str) -> Vouch:
        vouch = self._repository.get(vouch_id)
        if vouch is None:
            raise VouchNotFoundError(vouch_id)
        return vouch

    def active_vouches_for(self, recipient_id: str, now: datetime | None = None) -> list[Vouch]:
        """Vouches currently boosting ``recipient_id``, oldest first."""
        now = now or self._clock()
        active = [v for v in self._repository.for_recipient(recipient_id) if v.is_active(now)]
        return sorted(active, key=lambda v: v.issued_at)

    def active_points(self, recipient_id: str, now: datetime) -> float:
        with self._lock:
            return self._active_points_locked(recipient_id, now)

    def next_expiry(self, recipient_id: str, now: datetime) -> datetime | None:
        """Earliest expiry among the recipient's active vouches."""
        expiries = [v.expires_at for v in self.active_vouches_for(recipient_id, now)]
        return min(expiries) if expiries else None

    def vouches_issued_by(self, elder_id: str) -> list[Vouch]:
        """All vouches ever issued by ``elder_id``, with stored status, oldest first."""
        return sorted(self._repository.issued_by(elder_id), key=lambda v: v.issued_at)

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Persist the EXPIRED status of lapsed vouches.

        Returns:
            Number of vouches transitioned.
        """
        now = now or self._clock()
        swept = 0
        with self._lock:
            for vouch in self._repository.stored_active():
                if not vouch.is_active(now):
                    self._repository.save(vouch.model_copy(update={"status": VouchStatus.EXPIRED}))
                    swept += 1
        if swept:
            logger.info("Expired vouches swept", extra={"count": swept})
        return swept

    def _active_points_locked(self, recipient_id: str, now: datetime) -> float:
        return sum(
            v.points_granted
            for v in self._repository.for_recipient(recipient_id)
            if v.is_active(now)
        )

    def _lookup_elder_tier(self, elder_id: str) -> Tier:
        try:
            return self._elder_tier(elder_id)
        except MemberNotFoundError as exc:
            raise VouchError("NOT_ELDER", f"Member {elder_id} is not registered") from exc
        except (StaleDataError, StorageUnavailableError) as exc:
            raise VouchError(
                "ELDER_STANDING_UNAVAILABLE",
                f"Cannot verify standing of Elder {elder_id}",
            ) from exc

    def _check_standing(self, elder_id: str) -> None:
        now = self._clock()
        try:
            history = list(self._store.history(elder_id))
        except StorageUnavailableError as exc:
            raise VouchError(
                "ELDER_STANDING_UNAVAILABLE",
                f"Cannot verify standing of Elder {elder_id}",
            ) from exc

        standing = voucher_standing(elder_id, history, now)
        if not standing.can_vouch:
            raise VouchError(
                "VOUCHER_RESTRICTED",
                f"Elder {elder_id} is restricted from vouching after "
                f"{standing.vouchee_defaults} vouchee defaults",
            )
        if unresolved_defaults(history, now, self._policy.default_lookback_days):
            raise VouchError(
                "ELDER_UNRESOLVED_DEFAULT",
                f"Elder {elder_id} has an unresolved circle default",
            )
