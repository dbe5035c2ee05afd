"""
Repository Pattern for Data Access

CRUD operations and cache-specific queries for the cache models.
"""
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.orm import Session

from src.parcelfusion.db.models import CachedParcel, SourceMetadata, StagedParcel
from src.parcelfusion.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class BaseRepository:
    """
    Base repository with common CRUD operations.
    """

    def __init__(self, model: Type[T]):
        """
        Initialize repository with model class.

        Args:
            model: SQLAlchemy model class
        """
        self.model = model

    def get_by_id(self, session: Session, id_value: Any) -> Optional[T]:
        """
        Get single row by primary key.

        Args:
            session: Database session
            id_value: Primary key value (tuple for composite keys)

        Returns:
            Model instance or None
        """
        return session.get(self.model, id_value)

    def count(self, session: Session) -> int:
        return session.execute(select(func.count()).select_from(self.model)).scalar_one()


class SourceMetadataRepository(BaseRepository):
    """Repository for per-source freshness rows."""

    def __init__(self):
        super().__init__(SourceMetadata)

    def get_all(self, session: Session) -> List[SourceMetadata]:
        query = select(SourceMetadata).order_by(SourceMetadata.source_id)
        return list(session.execute(query).scalars().all())

    def upsert(
        self,
        session: Session,
        source_id: str,
        change_token: Optional[str],
        last_fetched: datetime,
        record_count: int
    ) -> SourceMetadata:
        """
        Insert or update the freshness row of a source.

        Returns:
            SourceMetadata instance
        """
        values = {
            "source_id": source_id,
            "change_token": change_token,
            "last_fetched": last_fetched,
            "record_count": record_count,
        }
        stmt = insert(SourceMetadata).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["source_id"],
            set_={k: v for k, v in values.items() if k != "source_id"}
        )
        session.execute(stmt)
        session.flush()

        logger.info("source_metadata_upserted", source_id=source_id, record_count=record_count)
        return session.execute(
            select(SourceMetadata)
            .where(SourceMetadata.source_id == source_id)
            .execution_options(populate_existing=True)
        ).scalar_one()

    def delete_source(self, session: Session, source_id: str) -> int:
        result = session.execute(delete(SourceMetadata).where(SourceMetadata.source_id == source_id))
        return result.rowcount or 0


class CachedParcelRepository(BaseRepository):
    """Repository for cached source records."""

    def __init__(self):
        super().__init__(CachedParcel)

    def bulk_upsert(self, session: Session, rows: List[Dict[str, Any]]) -> int:
        """
        Insert or update many records of one or more sources.

        Args:
            session: Database session
            rows: Dicts with source_id, record_id, record_index, raw, normalized

        Returns:
            Number of rows written
        """
        if not rows:
            return 0

        stmt = insert(CachedParcel).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["source_id", "record_id"],
            set_={
                "record_index": stmt.excluded.record_index,
                "raw": stmt.excluded.raw,
                "normalized": stmt.excluded.normalized,
                "updated_at": func.now(),
            }
        )
        session.execute(stmt)
        session.flush()

        logger.debug("cached_parcels_upserted", count=len(rows))
        return len(rows)

    def count_for_source(self, session: Session, source_id: str) -> int:
        query = select(func.count()).select_from(CachedParcel).where(CachedParcel.source_id == source_id)
        return session.execute(query).scalar_one()

    def counts_by_source(self, session: Session) -> Dict[str, int]:
        query = select(CachedParcel.source_id, func.count()).group_by(CachedParcel.source_id)
        return {source_id: count for source_id, count in session.execute(query).all()}

    def iter_raw(self, session: Session, source_id: str, batch_size: int = 1000) -> Iterator[Dict[str, Any]]:
        """Stream raw records of a source in their original order."""
        query = (
            select(CachedParcel.raw)
            .where(CachedParcel.source_id == source_id)
            .order_by(CachedParcel.record_index, CachedParcel.record_id)
            .execution_options(yield_per=batch_size)
        )
        for raw in session.execute(query).scalars():
            yield raw

    def delete_source(self, session: Session, source_id: str) -> int:
        result = session.execute(delete(CachedParcel).where(CachedParcel.source_id == source_id))
        count = result.rowcount or 0
        logger.info("cached_parcels_deleted", source_id=source_id, count=count)
        return count


class StagedParcelRepository(BaseRepository):
    """Repository for rows staged by an unfinished cache write."""

    def __init__(self):
        super().__init__(StagedParcel)

    def stage(self, session: Session, run_id: str, rows: List[Dict[str, Any]]) -> int:
        """
        Stage cached_parcels rows under a run id.

        Args:
            session: Database session
            run_id: Staging key of the write
            rows: Dicts shaped like bulk_upsert rows

        Returns:
            Number of rows staged
        """
        if not rows:
            return 0

        stmt = insert(StagedParcel).values([dict(row, run_id=run_id) for row in rows])
        stmt = stmt.on_conflict_do_update(
            index_elements=["run_id", "record_id"],
            set_={
                "record_index": stmt.excluded.record_index,
                "raw": stmt.excluded.raw,
                "normalized": stmt.excluded.normalized,
            }
        )
        session.execute(stmt)
        session.flush()
        return len(rows)

    def iter_batches(self, session: Session, run_id: str, batch_size: int = 1000) -> Iterator[List[Dict[str, Any]]]:
        """Yield staged rows of a run as bulk_upsert batches, in record order."""
        query = (
            select(
                StagedParcel.source_id,
                StagedParcel.record_id,
                StagedParcel.record_index,
                StagedParcel.raw,
                StagedParcel.normalized,
            )
            .where(StagedParcel.run_id == run_id)
            .order_by(StagedParcel.record_index, StagedParcel.record_id)
            .execution_options(yield_per=batch_size)
        )
        batch: List[Dict[str, Any]] = []
        for row in session.execute(query).mappings():
            batch.append(dict(row))
            if len(batch) >= batch_size:
                yield batch
                batch = []
        if batch:
            yield batch

    def count_for_run(self, session: Session, run_id: str) -> int:
        query = select(func.count()).select_from(StagedParcel).where(StagedParcel.run_id == run_id)
        return session.execute(query).scalar_one()

    def delete_run(self, session: Session, run_id: str) -> int:
        result = session.execute(delete(StagedParcel).where(StagedParcel.run_id == run_id))
        return result.rowcount or 0

    def delete_source(self, session: Session, source_id: str) -> int:
        result = session.execute(delete(StagedParcel).where(StagedParcel.source_id == source_id))
        return result.rowcount or 0
