"""Durable storage for XnScore.

SQLAlchemy Core repositories for members, circles, vouches and endorsements,
sharing one schema with the SQL event store. In-memory counterparts back
tests and single-process runs.
"""

from xnscore.persistence.circles import SqlCircleDirectory
from xnscore.persistence.db import (
    XNSCORE_DATABASE_URL_ENV,
    create_db_engine,
    init_schema,
    normalize_database_url,
)
from xnscore.persistence.endorsements import (
    EndorsementRepository,
    InMemoryEndorsementRepository,
    SqlEndorsementRepository,
)
from xnscore.persistence.members import SqlMemberRegistry
from xnscore.persistence.tables import metadata
from xnscore.persistence.vouches import (
    InMemoryVouchRepository,
    SqlVouchRepository,
    VouchRepository,
)

__all__ = [
    "EndorsementRepository",
    "InMemoryEndorsementRepository",
    "InMemoryVouchRepository",
    "SqlCircleDirectory",
    "SqlEndorsementRepository",
    "SqlMemberRegistry",
    "SqlVouchRepository",
    "VouchRepository",
    "XNSCORE_DATABASE_URL_ENV",
    "create_db_engine",
    "init_schema",
    "metadata",
    "normalize_database_url",
]
