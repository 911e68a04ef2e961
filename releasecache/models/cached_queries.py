"""Cached query entries and their release rows, for the relational backend."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from releasecache.models.base import Base


class CachedQuery(Base):
    """One cache entry: the result set of a query against one source."""

    __tablename__ = "cached_queries"
    __table_args__ = (
        UniqueConstraint("source_id", "query_hash", name="uq_cached_queries_source_hash"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    source_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    source_kind: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    query_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True,
    )
    result_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CachedRelease(Base):
    """A single release of a cached query, stored as its JSON document."""

    __tablename__ = "cached_releases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    query_id: Mapped[int] = mapped_column(
        ForeignKey("cached_queries.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    publish_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True,
    )
    payload: Mapped[str] = mapped_column(Text, nullable=False)
