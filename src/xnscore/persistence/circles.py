"""Circle directory repository for SQL persistence.

Stores circle policy in ``circles`` and membership in ``circle_members``.
Upserting a circle replaces its policy and adds any members not yet
recorded; recorded join dates are never rewritten.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from xnscore.circles.directory import Circle
from xnscore.errors import CircleNotFoundError, StorageUnavailableError
from xnscore.persistence.db import init_schema
from xnscore.persistence.tables import circle_members, circles

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

logger = logging.getLogger(__name__)


class SqlCircleDirectory:
    """Circle directory persisted through SQLAlchemy Core.

    Args:
        engine: SQLAlchemy engine. Missing tables are created.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        init_schema(engine)

    def add(self, circle: Circle) -> Circle:
        """Insert or update a circle. Existing members keep their join dates.

        Raises:
            StorageUnavailableError: If the database write fails.
        """
        policy = {
            "name": circle.name,
            "min_xn_score": circle.min_xn_score,
            "max_members": circle.max_members,
            "contribution_amount": circle.contribution_amount,
        }
        try:
            with self._engine.begin() as conn:
                exists = conn.execute(
                    select(circles.c.circle_id).where(circles.c.circle_id == circle.circle_id)
                ).first()
                if exists is None:
                    conn.execute(circles.insert().values(circle_id=circle.circle_id, **policy))
                else:
                    conn.execute(
                        circles.update()
                        .where(circles.c.circle_id == circle.circle_id)
                        .values(**policy)
                    )
                known = self._member_dates(conn, circle.circle_id)
                for member_id, joined_at in circle.members.items():
                    if member_id not in known:
                        self._insert_member(conn, circle.circle_id, member_id, joined_at)
                stored = self._select(conn, circle.circle_id)
        except SQLAlchemyError as exc:
            logger.error(
                "Circle upsert failed: %s", exc, extra={"circle_id": circle.circle_id}
            )
            raise StorageUnavailableError(f"Circle directory write failed: {exc}") from exc

        logger.info(
            "Circle upserted",
            extra={"circle_id": circle.circle_id, "members": len(circle.members)},
        )
        if stored is None:
            raise StorageUnavailableError(f"Circle {circle.circle_id} missing after upsert")
        return stored

    def get(self, circle_id: str) -> Circle:
        """Return the circle.

        Raises:
            CircleNotFoundError: If the circle is unknown.
            StorageUnavailableError: If the database cannot be read.
        """
        circle = self.find(circle_id)
        if circle is None:
            raise CircleNotFoundError(circle_id)
        return circle

    def find(self, circle_id: str) -> Circle | None:
        try:
            with self._engine.connect() as conn:
                return self._select(conn, circle_id)
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Circle directory read failed: {exc}") from exc

    def add_member(self, circle_id: str, member_id: str, joined_at: datetime) -> Circle:
        """Record a member joining. Re-adding keeps the original join date.

        Raises:
            CircleNotFoundError: If the circle is unknown.
            StorageUnavailableError: If the database write fails.
        """
        try:
            with self._engine.begin() as conn:
                if self._select(conn, circle_id) is None:
                    raise CircleNotFoundError(circle_id)
                if member_id not in self._member_dates(conn, circle_id):
                    self._insert_member(conn, circle_id, member_id, joined_at)
        except IntegrityError:
            # Concurrent join for the same member; the first join date stands.
            logger.debug(
                "Circle member already recorded",
                extra={"circle_id": circle_id, "member_id": member_id},
            )
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Circle directory write failed: {exc}") from exc
        return self.get(circle_id)

    @staticmethod
    def _insert_member(
        conn: Connection, circle_id: str, member_id: str, joined_at: datetime
    ) -> None:
        conn.execute(
            circle_members.insert().values(
                circle_id=circle_id, member_id=member_id, joined_at=joined_at.isoformat()
            )
        )

    @staticmethod
    def _member_dates(conn: Connection, circle_id: str) -> dict[str, datetime]:
        rows = conn.execute(
            select(circle_members.c.member_id, circle_members.c.joined_at).where(
                circle_members.c.circle_id == circle_id
            )
        ).all()
        return {row.member_id: datetime.fromisoformat(row.joined_at) for row in rows}

    def _select(self, conn: Connection, circle_id: str) -> Circle | None:
        row = conn.execute(select(circles).where(circles.c.circle_id == circle_id)).first()
        if row is None:
            return None
        return Circle(
            circle_id=row.circle_id,
            name=row.name,
            min_xn_score=row.min_xn_score,
            max_members=row.max_members,
            contribution_amount=row.contribution_amount,
            members=self._member_dates(conn, circle_id),
        )
