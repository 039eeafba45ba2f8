"""Vouch repositories.

Storage only: issuance limits, expiry and revocation rules live in
``xnscore.vouching.ledger``, which serializes writers. Stored status records
explicit transitions; expiry is applied lazily by ``Vouch.status_at``.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from xnscore.errors import StorageUnavailableError
from xnscore.models.vouch import Vouch, VouchStatus
from xnscore.persistence.db import init_schema
from xnscore.persistence.tables import vouches

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.engine import Row
    from sqlalchemy.sql import ColumnElement

logger = logging.getLogger(__name__)


@runtime_checkable
class VouchRepository(Protocol):
    """Vouch storage used by the vouch ledger."""

    def add(self, vouch: Vouch) -> None: ...

    def save(self, vouch: Vouch) -> None: ...

    def remove(self, vouch_id: str) -> None: ...

    def get(self, vouch_id: str) -> Vouch | None: ...

    def for_recipient(self, recipient_id: str) -> list[Vouch]: ...

    def issued_by(self, voucher_id: str) -> list[Vouch]: ...

    def stored_active(self) -> list[Vouch]: ...


class InMemoryVouchRepository:
    """Thread-safe in-memory vouch storage."""

    def __init__(self) -> None:
        self._vouches: dict[str, Vouch] = {}
        self._lock = threading.Lock()

    def add(self, vouch: Vouch) -> None:
        with self._lock:
            self._vouches[vouch.vouch_id] = vouch

    def save(self, vouch: Vouch) -> None:
        with self._lock:
            self._vouches[vouch.vouch_id] = vouch

    def remove(self, vouch_id: str) -> None:
        with self._lock:
            self._vouches.pop(vouch_id, None)

    def get(self, vouch_id: str) -> Vouch | None:
        with self._lock:
            return self._vouches.get(vouch_id)

    def for_recipient(self, recipient_id: str) -> list[Vouch]:
        with self._lock:
            return [v for v in self._vouches.values() if v.recipient_id == recipient_id]

    def issued_by(self, voucher_id: str) -> list[Vouch]:
        with self._lock:
            return [v for v in self._vouches.values() if v.voucher_id == voucher_id]

    def stored_active(self) -> list[Vouch]:
        with self._lock:
            return [v for v in self._vouches.values() if v.status == VouchStatus.ACTIVE]


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _row_to_vouch(row: Row[Any]) -> Vouch:
    return Vouch(
        vouch_id=row.vouch_id,
        voucher_id=row.voucher_id,
        recipient_id=row.recipient_id,
        points_granted=row.points_granted,
        issued_at=datetime.fromisoformat(row.issued_at),
        expires_at=datetime.fromisoformat(row.expires_at),
        status=VouchStatus(row.status),
        revoked_at=datetime.fromisoformat(row.revoked_at) if row.revoked_at else None,
        revoked_by=row.revoked_by,
    )


class SqlVouchRepository:
    """Vouch storage persisted through SQLAlchemy Core.

    Args:
        engine: SQLAlchemy engine. Missing tables are created.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        init_schema(engine)

    def add(self, vouch: Vouch) -> None:
        self._write(
            vouches.insert().values(
                vouch_id=vouch.vouch_id,
                voucher_id=vouch.voucher_id,
                recipient_id=vouch.recipient_id,
                points_granted=vouch.points_granted,
                issued_at=vouch.issued_at.isoformat(),
                expires_at=vouch.expires_at.isoformat(),
                status=vouch.status.value,
                revoked_at=_iso(vouch.revoked_at),
                revoked_by=vouch.revoked_by,
            ),
            vouch.vouch_id,
        )

    def save(self, vouch: Vouch) -> None:
        """Persist a status transition."""
        self._write(
            vouches.update()
            .where(vouches.c.vouch_id == vouch.vouch_id)
            .values(
                status=vouch.status.value,
                revoked_at=_iso(vouch.revoked_at),
                revoked_by=vouch.revoked_by,
            ),
            vouch.vouch_id,
        )

    def remove(self, vouch_id: str) -> None:
        self._write(vouches.delete().where(vouches.c.vouch_id == vouch_id), vouch_id)

    def get(self, vouch_id: str) -> Vouch | None:
        found = self._select(vouches.c.vouch_id == vouch_id)
        return found[0] if found else None

    def for_recipient(self, recipient_id: str) -> list[Vouch]:
        return self._select(vouches.c.recipient_id == recipient_id)

    def issued_by(self, voucher_id: str) -> list[Vouch]:
        return self._select(vouches.c.voucher_id == voucher_id)

    def stored_active(self) -> list[Vouch]:
        return self._select(vouches.c.status == VouchStatus.ACTIVE.value)

    def _write(self, statement: Any, vouch_id: str) -> None:
        try:
            with self._engine.begin() as conn:
                conn.execute(statement)
        except SQLAlchemyError as exc:
            logger.error("Vouch write failed: %s", exc, extra={"vouch_id": vouch_id})
            raise StorageUnavailableError(f"Vouch repository write failed: {exc}") from exc

    def _select(self, condition: ColumnElement[bool]) -> list[Vouch]:
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(select(vouches).where(condition)).all()
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Vouch repository read failed: {exc}") from exc
        return [_row_to_vouch(row) for row in rows]
