"""SQLAlchemy model for durable purge records.

One row per (provisioner_id, worker_type, cache_name). `version` is bumped on
every update and guards optimistic read-modify-write.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back aware UTC (SQLite drops tzinfo)."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    pass


class CachePurge(Base):
    __tablename__ = "cache_purges"

    provisioner_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    worker_type: Mapped[str] = mapped_column(String(64), primary_key=True)
    cache_name: Mapped[str] = mapped_column(String(255), primary_key=True)
    before: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_cache_purges_worker", "provisioner_id", "worker_type"),
        Index("ix_cache_purges_expires", "expires"),
    )
