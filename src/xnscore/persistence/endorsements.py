"""Endorsement repositories.

At most one endorsement is stored per (from, to, circle) key. ``add``
claims the key atomically and reports whether it was free, so duplicate
detection holds across processes sharing a database.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from xnscore.errors import StorageUnavailableError
from xnscore.models.vouch import Endorsement
from xnscore.persistence.db import init_schema
from xnscore.persistence.tables import endorsements

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

EndorsementKey = tuple[str, str, str]


def endorsement_key(endorsement: Endorsement) -> EndorsementKey:
    return (endorsement.from_member_id, endorsement.to_member_id, endorsement.circle_id)


@runtime_checkable
class EndorsementRepository(Protocol):
    """Endorsement storage used by the endorsement ledger."""

    def add(self, endorsement: Endorsement) -> bool: ...

    def remove(self, endorsement_id: str) -> None: ...

    def received_by(self, member_id: str) -> list[Endorsement]: ...


class InMemoryEndorsementRepository:
    def __init__(self) -> None:
        self._endorsements: dict[EndorsementKey, Endorsement] = {}
        self._lock = threading.Lock()

    def add(self, endorsement: Endorsement) -> bool:
        """Store the endorsement; False when its key is already taken."""
        key = endorsement_key(endorsement)
        with self._lock:
            if key in self._endorsements:
                return False
            self._endorsements[key] = endorsement
            return True

    def remove(self, endorsement_id: str) -> None:
        with self._lock:
            for key, stored in list(self._endorsements.items()):
                if stored.endorsement_id == endorsement_id:
                    del self._endorsements[key]

    def received_by(self, member_id: str) -> list[Endorsement]:
        with self._lock:
            return [e for e in self._endorsements.values() if e.to_member_id == member_id]


class SqlEndorsementRepository:
    """Endorsement storage persisted through SQLAlchemy Core.

    The unique constraint on the endorsement key enforces deduplication.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        init_schema(engine)

    def add(self, endorsement: Endorsement) -> bool:
        """Store the endorsement; False when its key is already taken.

        Raises:
            StorageUnavailableError: If the database write fails.
        """
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    endorsements.insert().values(
                        endorsement_id=endorsement.endorsement_id,
                        from_member_id=endorsement.from_member_id,
                        to_member_id=endorsement.to_member_id,
                        circle_id=endorsement.circle_id,
                        message=endorsement.message,
                        issued_at=endorsement.issued_at.isoformat(),
                    )
                )
        except IntegrityError:
            return False
        except SQLAlchemyError as exc:
            logger.error(
                "Endorsement write failed: %s",
                exc,
                extra={"endorsement_id": endorsement.endorsement_id},
            )
            raise StorageUnavailableError(f"Endorsement write failed: {exc}") from exc
        return True

    def remove(self, endorsement_id: str) -> None:
        try:
            with self._engine.begin() as conn:
                conn.execute(
                    endorsements.delete().where(endorsements.c.endorsement_id == endorsement_id)
                )
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Endorsement delete failed: {exc}") from exc

    def received_by(self, member_id: str) -> list[Endorsement]:
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(
                    select(endorsements).where(endorsements.c.to_member_id == member_id)
                ).all()
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Endorsement read failed: {exc}") from exc
        return [
            Endorsement(
                endorsement_id=row.endorsement_id,
                from_member_id=row.from_member_id,
                to_member_id=row.to_member_id,
                circle_id=row.circle_id,
                message=row.message,
                issued_at=datetime.fromisoformat(row.issued_at),
            )
            for row in rows
        ]
