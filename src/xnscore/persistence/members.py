"""Members repository for SQL persistence.

Durable counterpart of ``InMemoryMemberRegistry``: registration is
idempotent per member id and deactivation is the only update.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from xnscore.errors import MemberNotFoundError, StorageUnavailableError
from xnscore.models.member import Member
from xnscore.persistence.db import init_schema
from xnscore.persistence.tables import members

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine
    from sqlalchemy.engine import Row

logger = logging.getLogger(__name__)


def _row_to_member(row: Row[Any]) -> Member:
    return Member(
        member_id=row.member_id,
        display_name=row.display_name,
        account_created_at=datetime.fromisoformat(row.account_created_at),
        active=bool(row.active),
    )


class SqlMemberRegistry:
    """Member registry persisted through SQLAlchemy Core.

    Args:
        engine: SQLAlchemy engine. Missing tables are created.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        init_schema(engine)

    def register(self, member: Member) -> Member:
        """Register a member, or return the existing record for the same id.

        Raises:
            StorageUnavailableError: If the database write fails.
        """
        try:
            with self._engine.begin() as conn:
                existing = self._select(conn, member.member_id)
                if existing is not None:
                    return existing
                conn.execute(
                    members.insert().values(
                        member_id=member.member_id,
                        display_name=member.display_name,
                        account_created_at=member.account_created_at.isoformat(),
                        active=member.active,
                    )
                )
        except IntegrityError:
            # Another writer registered the id first; theirs wins.
            existing = self.find(member.member_id)
            if existing is None:
                raise StorageUnavailableError(
                    f"Member {member.member_id} insert failed without a stored row"
                ) from None
            return existing
        except SQLAlchemyError as exc:
            logger.error(
                "Member registration failed: %s", exc, extra={"member_id": member.member_id}
            )
            raise StorageUnavailableError(f"Member registry write failed: {exc}") from exc
        return member

    def get(self, member_id: str) -> Member:
        """Return the member.

        Raises:
            MemberNotFoundError: If the member is not registered.
            StorageUnavailableError: If the database cannot be read.
        """
        member = self.find(member_id)
        if member is None:
            raise MemberNotFoundError(member_id)
        return member

    def find(self, member_id: str) -> Member | None:
        try:
            with self._engine.connect() as conn:
                return self._select(conn, member_id)
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Member registry read failed: {exc}") from exc

    def deactivate(self, member_id: str) -> Member:
        """Mark a member inactive."""
        try:
            with self._engine.begin() as conn:
                member = self._select(conn, member_id)
                if member is None:
                    raise MemberNotFoundError(member_id)
                conn.execute(
                    members.update()
                    .where(members.c.member_id == member_id)
                    .values(active=False)
                )
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Member registry write failed: {exc}") from exc
        return member.model_copy(update={"active": False})

    @staticmethod
    def _select(conn: Connection, member_id: str) -> Member | None:
        row = conn.execute(select(members).where(members.c.member_id == member_id)).first()
        return _row_to_member(row) if row is not None else None
