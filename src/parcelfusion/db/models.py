"""
SQLAlchemy ORM Models

Tables of the incremental fetch cache: one freshness row per source,
the last-known records of each source keyed by (source_id, record_id) and
the rows a running write has staged but not promoted yet.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.parcelfusion.db.base import Base, TimestampMixin


class SourceMetadata(Base, TimestampMixin):
    """
    Freshness state of one source.

    Written only at the end of a successful run, so a failed or stopped
    run leaves the previous state in place.
    """
    __tablename__ = "source_metadata"

    source_id: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
        comment="Source registry id"
    )
    change_token: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Provider change marker (last edit date, ETag, ...)"
    )
    last_fetched: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the cached records were fetched"
    )
    record_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of records cached for the source"
    )

    def __repr__(self) -> str:
        return (
            f"<SourceMetadata(source_id='{self.source_id}', "
            f"record_count={self.record_count}, last_fetched={self.last_fetched})>"
        )


class CachedParcel(Base, TimestampMixin):
    """
    Last-known copy of one source record.

    ``raw`` is the record as the provider delivered it and is what a cached
    run re-reads; ``normalized`` is the NormalizedParcel JSON for inspection
    and downstream reuse.
    """
    __tablename__ = "cached_parcels"

    source_id: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
        comment="Source registry id"
    )
    record_id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        comment="Record identity within the source"
    )
    record_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Position in the provider stream, preserves order on re-read"
    )
    raw: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="Provider record"
    )
    normalized: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="NormalizedParcel as JSON"
    )

    __table_args__ = (
        Index("idx_cached_parcels_source_index", "source_id", "record_index"),
    )

    def __repr__(self) -> str:
        return f"<CachedParcel(source_id='{self.source_id}', record_id='{self.record_id}')>"


class StagedParcel(Base, TimestampMixin):
    """
    Record written by a run that has not been promoted yet.

    Each run stages under its own ``run_id`` in short committed batches and
    promotes its rows into cached_parcels in one final transaction, so the
    write lock is never held across a whole output pass.
    """
    __tablename__ = "staged_parcels"

    run_id: Mapped[str] = mapped_column(
        String(32),
        primary_key=True,
        comment="Staging key of one cache write"
    )
    record_id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        comment="Record identity within the source"
    )
    source_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Source registry id"
    )
    record_index: Mapped[int] = mapped_column(Integer, nullable=False)
    raw: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    normalized: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_staged_parcels_run_index", "run_id", "record_index"),
        Index("idx_staged_parcels_source", "source_id"),
    )

    def __repr__(self) -> str:
        return f"<StagedParcel(run_id='{self.run_id}', record_id='{self.record_id}')>"
