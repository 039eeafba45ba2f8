"""SQLAlchemy Core table definitions.

All durable state shares one MetaData. Timestamps are stored as ISO-8601
strings with their UTC offset; event timestamps additionally carry an integer
microsecond column used for ordering and range filters.
"""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

score_events = Table(
    "score_events",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("event_id", String(64), nullable=False, unique=True),
    Column("member_id", String(128), nullable=False, index=True),
    Column("kind", String(32), nullable=False),
    Column("ts_us", BigInteger, nullable=False),
    Column("ts", String(40), nullable=False),
    Column("magnitude", Float, nullable=False),
    Column("metadata_json", Text, nullable=False),
    Column("recorded_at", String(40), nullable=False),
)

members = Table(
    "members",
    metadata,
    Column("member_id", String(128), primary_key=True),
    Column("display_name", String(256), nullable=False),
    Column("account_created_at", String(40), nullable=False),
    Column("active", Boolean, nullable=False),
)

circles = Table(
    "circles",
    metadata,
    Column("circle_id", String(128), primary_key=True),
    Column("name", String(256), nullable=False),
    Column("min_xn_score", Float, nullable=False),
    Column("max_members", Integer, nullable=False),
    Column("contribution_amount", Float, nullable=False),
)

circle_members = Table(
    "circle_members",
    metadata,
    Column("circle_id", String(128), ForeignKey("circles.circle_id"), primary_key=True),
    Column("member_id", String(128), primary_key=True),
    Column("joined_at", String(40), nullable=False),
)

vouches = Table(
    "vouches",
    metadata,
    Column("vouch_id", String(64), primary_key=True),
    Column("voucher_id", String(128), nullable=False, index=True),
    Column("recipient_id", String(128), nullable=False, index=True),
    Column("points_granted", Float, nullable=False),
    Column("issued_at", String(40), nullable=False),
    Column("expires_at", String(40), nullable=False),
    Column("status", String(16), nullable=False),
    Column("revoked_at", String(40), nullable=True),
    Column("revoked_by", String(128), nullable=True),
)

endorsements = Table(
    "endorsements",
    metadata,
    Column("endorsement_id", String(64), primary_key=True),
    Column("from_member_id", String(128), nullable=False),
    Column("to_member_id", String(128), nullable=False, index=True),
    Column("circle_id", String(128), nullable=False),
    Column("message", Text, nullable=False),
    Column("issued_at", String(40), nullable=False),
    UniqueConstraint("from_member_id", "to_member_id", "circle_id", name="uq_endorsement_key"),
)
