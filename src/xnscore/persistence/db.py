"""Database connectivity helpers for XnScore.

Provides engine creation and schema initialization shared by the event
store, member registry, circle directory and vouch/endorsement repositories.
Every component built from one configuration shares a single engine.

Environment Variables:
    XNSCORE_DATABASE_URL: Connection string; when unset everything stays in memory.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError

from xnscore.errors import StorageUnavailableError
from xnscore.persistence.tables import metadata

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

XNSCORE_DATABASE_URL_ENV = "XNSCORE_DATABASE_URL"


def normalize_database_url(url: str) -> str:
    """Map the legacy ``postgres://`` scheme onto SQLAlchemy's ``postgresql://``."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def create_db_engine(url: str) -> Engine:
    """Create an engine for ``url`` with connection health checks enabled."""
    engine = create_engine(normalize_database_url(url), pool_pre_ping=True, echo=False)
    logger.info("Created database engine", extra={"dialect": engine.dialect.name})
    return engine


def init_schema(engine: Engine) -> None:
    """Create any missing XnScore tables.

    Raises:
        StorageUnavailableError: If the database cannot be reached.
    """
    try:
        metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise StorageUnavailableError(f"Failed to initialize database schema: {exc}") from exc
